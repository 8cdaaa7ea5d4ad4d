"""Error taxonomy for the Salesforce access layer.

Every error can carry the rate-limit descriptor that was observed on the call
that failed, so callers can still report backpressure on the error path.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional

if TYPE_CHECKING:
    from .ratelimit import RateLimitDescription


class SalesforceError(RuntimeError):
    """Base class for every error raised by sfaccess."""

    def __init__(self, message: str, *, rate_limit: Optional["RateLimitDescription"] = None):
        super().__init__(message)
        self.rate_limit = rate_limit


class MissingCredentialsError(SalesforceError):
    """Raised when the required Salesforce env vars are not present."""

    def __init__(self, missing: List[str]):
        self.missing = missing
        super().__init__("Missing required environment variables: " + ", ".join(missing))


class AuthenticationError(SalesforceError):
    """Login or token exchange did not yield a usable session."""


class SalesforceRequestError(SalesforceError):
    """Salesforce answered an HTTP request with an error status."""

    def __init__(
        self,
        method: str,
        url: str,
        status_code: int,
        detail: Any = None,
        *,
        rate_limit: Optional["RateLimitDescription"] = None,
    ):
        self.method = method
        self.url = url
        self.status_code = status_code
        self.detail = detail
        super().__init__(
            f"HTTP {status_code} for {method} {url}: {describe_error_detail(detail)}",
            rate_limit=rate_limit,
        )


class RemoteQueryError(SalesforceError):
    """A SOQL query (or continuation) was rejected or could not be sent."""

    def __init__(self, query: str, reason: str, *, rate_limit=None):
        self.query = query
        super().__init__(f"query failed: {reason} (query: {query})", rate_limit=rate_limit)


class NotFoundError(SalesforceError):
    """Zero records matched a lookup that expected one."""


class AmbiguousResultError(SalesforceError):
    """More than one record matched a lookup that expected exactly one."""

    def __init__(self, query: str, count: int, *, rate_limit=None):
        self.query = query
        self.count = count
        super().__init__(f"expected 1 record, got {count} (query: {query})", rate_limit=rate_limit)


class CreateFailedError(SalesforceError):
    def __init__(self, table: str, reason: str, *, rate_limit=None):
        self.table = table
        super().__init__(f"failed to create {table}: {reason}", rate_limit=rate_limit)


class UpdateFailedError(SalesforceError):
    def __init__(self, table: str, object_id: str, reason: str, *, rate_limit=None):
        self.table = table
        self.object_id = object_id
        super().__init__(f"failed to update {table} {object_id}: {reason}", rate_limit=rate_limit)


class DeleteFailedError(SalesforceError):
    def __init__(self, table: str, object_id: str, reason: str, *, rate_limit=None):
        self.table = table
        self.object_id = object_id
        super().__init__(f"failed to delete {table} {object_id}: {reason}", rate_limit=rate_limit)


class PreconditionFailedError(SalesforceError):
    """A compare-and-clear found a different value than the one expected."""

    def __init__(self, field: str, expected: str, actual: str = "", *, rate_limit=None):
        self.field = field
        self.expected = expected
        self.actual = actual
        super().__init__(f"missing {field}: {expected}", rate_limit=rate_limit)


class UnsupportedResourceType(SalesforceError):
    def __init__(self, resource_type: str, operation: str):
        self.resource_type = resource_type
        self.operation = operation
        super().__init__(f"{operation}: unsupported resource type {resource_type!r}")


class ConfigurationError(SalesforceError):
    """Operator configuration is missing something an operation needs."""


class RetryExhaustedError(SalesforceError):
    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(f"failed to {operation} after {attempts} retries")


class OperationCancelledError(SalesforceError):
    """The caller's cancellation event was set while an operation was pending."""


class InvalidPrincipalError(SalesforceError):
    """A principal id does not carry a known user or group prefix."""


class FieldTypeError(SalesforceError):
    """A record field held a value of an unexpected type."""


class InvalidAccountRequestError(SalesforceError):
    """An account-provisioning request failed validation."""


def describe_error_detail(detail: Any) -> str:
    """Flatten a Salesforce error body into a readable string.

    Salesforce REST errors are usually a list of ``{"errorCode", "message"}``
    objects; anything else is stringified as-is.
    """
    if isinstance(detail, list):
        parts = []
        for item in detail:
            if isinstance(item, dict):
                code = item.get("errorCode") or item.get("statusCode") or "ERROR"
                parts.append(f"{code}: {item.get('message', '')}".strip())
            else:
                parts.append(str(item))
        return "; ".join(parts) if parts else "no detail"
    if isinstance(detail, dict):
        if "message" in detail:
            return str(detail["message"])
        return str(detail)
    if detail in (None, ""):
        return "no detail"
    return str(detail)
