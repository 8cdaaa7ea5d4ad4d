"""Page-token protocol for bounded SOQL listings.

An empty token means "start a fresh listing" on the way in and "no more
pages" on the way out. Any other token must be passed back verbatim.

Fresh listings are sent as ``ORDER BY Id LIMIT <page size>``. Salesforce
treats LIMIT as a cap on the whole result and answers ``done`` once it is
reached, so a full page is followed by a keyset token (``after:<Id>``) that
re-runs the listing with ``Id > '<last Id>'``. Tokens that are not keyset
tokens are ``nextRecordsUrl`` continuations and are fetched as-is.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, List, NamedTuple, Optional, Tuple, TypeVar

from .query import SALESFORCE_PK, SalesforceQuery
from .ratelimit import RateLimitDescription

PAGE_SIZE_DEFAULT = 100
KEYSET_PREFIX = "after:"

T = TypeVar("T")


class QueryTarget(NamedTuple):
    """What to fetch next: SOQL text, or a continuation URL."""

    text: str
    is_continuation: bool
    page_size: int = PAGE_SIZE_DEFAULT


@dataclass
class PageToken:
    """Caller-side cursor: the opaque token plus the requested page size."""

    token: str = ""
    size: int = 0


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of results with the cursor for the next one."""

    items: List[T] = field(default_factory=list)
    next_token: str = ""
    rate_limit: Optional[RateLimitDescription] = None

    @property
    def has_more(self) -> bool:
        return self.next_token != ""


def effective_page_size(page_size: Optional[int]) -> int:
    if page_size is None or page_size <= 0:
        return PAGE_SIZE_DEFAULT
    return page_size


def keyset_token(last_id: str) -> str:
    return f"{KEYSET_PREFIX}{last_id}"


def is_keyset_token(cursor: str) -> bool:
    return cursor.startswith(KEYSET_PREFIX)


def resolve_query_target(
    query: SalesforceQuery,
    cursor: str,
    page_size: Optional[int],
) -> QueryTarget:
    """Pick the continuation URL if there is one, else a bounded query.

    The query is ordered by primary key so that successive pages are stable
    for an unchanging table. A keyset cursor restarts it after the last id
    already returned.
    """
    size = effective_page_size(page_size)
    if cursor and not is_keyset_token(cursor):
        return QueryTarget(cursor, True, size)
    if cursor:
        query.where_gt(SALESFORCE_PK, cursor[len(KEYSET_PREFIX):])
    query.order_by(SALESFORCE_PK).limit(size)
    return QueryTarget(str(query), False, size)


def interpret_response(done: bool, next_records_url: Optional[str]) -> Tuple[str, bool]:
    """Map Salesforce ``done``/``nextRecordsUrl`` onto ``(next_token, has_more)``."""
    if done or not next_records_url:
        return "", False
    return next_records_url, True


def next_page_token(
    target: QueryTarget,
    done: bool,
    next_records_url: Optional[str],
    returned: int,
    last_id: str,
) -> str:
    """Token for the page after the one just fetched for ``target``.

    A bounded query has more rows when the page came back full, or when
    Salesforce split it into batches (``done`` is false). Either way the
    listing resumes after ``last_id``. The last page of a table whose size
    is a multiple of the page size is therefore empty.
    """
    if target.is_continuation:
        token, _ = interpret_response(done, next_records_url)
        return token
    if last_id and (not done or returned >= target.page_size):
        return keyset_token(last_id)
    return ""
