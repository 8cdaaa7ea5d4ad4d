from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, Iterator, List, Optional, TypeVar

from ..client import SalesforceClient
from ..exceptions import UnsupportedResourceType
from ..pagination import Page, PageToken
from ..ratelimit import Annotations, with_rate_limit_annotations
from ..reconcile import EdgeResult, GrantReconciler
from ..resources import Entitlement, Grant, Resource, ResourceType

_logger = logging.getLogger(__name__)

T = TypeVar("T")
S = TypeVar("S")


@dataclass
class SyncPage(Generic[T]):
    items: List[T] = field(default_factory=list)
    next_token: str = ""
    annotations: Annotations = field(default_factory=Annotations)


def translate_page(page: Page[S], convert: Callable[[S], T]) -> SyncPage[T]:
    """Convert every item of ``page``; the cursor and rate limit carry over."""
    return SyncPage(
        [convert(item) for item in page.items],
        page.next_token,
        with_rate_limit_annotations(page.rate_limit),
    )


def iter_pages(fetch: Callable[[PageToken], SyncPage[T]], page_size: int = 0) -> Iterator[T]:
    """Yield every item, following cursors until an empty one comes back."""
    token = PageToken("", page_size)
    while True:
        page = fetch(token)
        yield from page.items
        if not page.next_token:
            return
        token = PageToken(page.next_token, page_size)


class ResourceSyncer(abc.ABC):
    """List one resource type, its entitlements and grants, and mutate its edges.

    Subclasses set :attr:`resource_type` and implement :meth:`list`; the other
    operations default to "nothing to report" / "not supported".
    """

    resource_type: ResourceType

    def __init__(
        self,
        client: SalesforceClient,
        reconciler: Optional[GrantReconciler] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.reconciler = reconciler or GrantReconciler(client)
        self.logger = logger or _logger

    @abc.abstractmethod
    def list(self, token: PageToken) -> SyncPage[Resource]:
        ...

    def entitlements(self, resource: Resource, token: PageToken) -> SyncPage[Entitlement]:
        return SyncPage()

    def grants(self, resource: Resource, token: PageToken) -> SyncPage[Grant]:
        return SyncPage()

    def grant(self, principal: Resource, entitlement: Entitlement) -> EdgeResult:
        raise UnsupportedResourceType(self.resource_type.id, "grant")

    def revoke(self, grant: Grant) -> EdgeResult:
        raise UnsupportedResourceType(self.resource_type.id, "revoke")
