"""Rate-limit telemetry read from the ``Sforce-Limit-Info`` response header.

The header looks like ``api-usage=<A>/<B>``. ``A`` is stored as ``remaining``
and ``B`` as ``limit``; ``A`` is really the usage count, and the status is
OVERLIMIT when ``A > B``. Consumers rely on this exact mapping.

Nothing here throttles: the descriptor is only observed and handed upwards.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional

from requests.adapters import BaseAdapter, HTTPAdapter

_logger = logging.getLogger(__name__)

RATE_LIMIT_HEADER = "Sforce-Limit-Info"
_RATE_LIMIT_RE = re.compile(r"^api-usage=(-?\d+)/(-?\d+)$")


class RateLimitStatus(enum.Enum):
    UNKNOWN = "unknown"
    OK = "ok"
    OVERLIMIT = "overlimit"


@dataclass(frozen=True)
class RateLimitDescription:
    status: RateLimitStatus
    limit: int
    remaining: int

    @property
    def is_overlimit(self) -> bool:
        return self.status is RateLimitStatus.OVERLIMIT

    def to_dict(self) -> dict:
        return {"status": self.status.value, "limit": self.limit, "remaining": self.remaining}


def parse_rate_limit_header(value: Optional[str]) -> Optional[RateLimitDescription]:
    """Parse a ``Sforce-Limit-Info`` value; None for absent or malformed input."""
    if not value:
        return None
    match = _RATE_LIMIT_RE.match(value.strip())
    if match is None:
        _logger.debug("Ignoring unparseable %s header: %r", RATE_LIMIT_HEADER, value)
        return None
    remaining = int(match.group(1))
    limit = int(match.group(2))
    status = RateLimitStatus.OVERLIMIT if remaining > limit else RateLimitStatus.OK
    return RateLimitDescription(status=status, limit=limit, remaining=remaining)


class RateLimitAdapter(HTTPAdapter):
    """HTTPAdapter that records the rate-limit header of the last response.

    ``rate_limit`` is reset before every send, so after a call it describes
    that call only (or is None when the response had no usable header).
    When ``base`` is given, requests are delegated to it instead of the
    network stack of HTTPAdapter.
    """

    def __init__(self, base: Optional[BaseAdapter] = None, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.base = base
        self.rate_limit: Optional[RateLimitDescription] = None

    def send(self, request, **kwargs):  # type: ignore[override]
        self.rate_limit = None
        if self.base is not None:
            response = self.base.send(request, **kwargs)
        else:
            response = super().send(request, **kwargs)
        self.rate_limit = parse_rate_limit_header(response.headers.get(RATE_LIMIT_HEADER))
        return response

    def close(self) -> None:
        if self.base is not None:
            self.base.close()
        super().close()


# ----------------------------------------------------------------------
# Annotations
# ----------------------------------------------------------------------
class Annotations(List[Any]):
    """Side-channel objects attached to a sync or grant result."""

    def rate_limits(self) -> List[RateLimitDescription]:
        return [a for a in self if isinstance(a, RateLimitDescription)]

    def contains(self, kind: type) -> bool:
        return any(isinstance(a, kind) for a in self)


def with_rate_limit_annotations(*descriptions: Optional[RateLimitDescription]) -> Annotations:
    """Wrap the given descriptors as annotations, dropping absent ones."""
    out = Annotations()
    for description in descriptions:
        if description is not None:
            out.append(description)
    return out
