"""
Bounded re-reads for eventually consistent lookups after a write.
"""

import logging
import threading
import time
from typing import Callable, Optional, TypeVar

from .exceptions import NotFoundError, OperationCancelledError, RetryExhaustedError

_logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0


def retry_not_found(
    fetch: Callable[[], T],
    *,
    operation: str,
    attempts: int = DEFAULT_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    before_attempt: Optional[Callable[[], None]] = None,
    cancel_event: Optional[threading.Event] = None,
) -> T:
    """
    Call ``fetch`` until it stops raising NotFoundError.

    ``before_attempt`` runs ahead of every attempt (used to drop cached
    responses). The wait after attempt ``n`` (0-based) is ``(n + 1) * base_delay``.
    Any other error is raised at once; cancellation during a wait raises
    OperationCancelledError.
    """
    for attempt in range(attempts):
        if before_attempt is not None:
            before_attempt()
        try:
            return fetch()
        except NotFoundError as e:
            _logger.debug("%s: not found yet (attempt %d/%d): %s", operation, attempt + 1, attempts, e)

        if attempt < attempts - 1:
            delay = (attempt + 1) * base_delay
            if cancel_event is not None:
                if cancel_event.wait(delay):
                    raise OperationCancelledError(f"{operation}: cancelled while waiting to retry")
            elif delay > 0:
                time.sleep(delay)

    raise RetryExhaustedError(operation, attempts)
