"""Generic create/read/update/delete over Salesforce sObjects.

Every remote mutation made by sfaccess goes through :class:`ObjectStore`.
Nothing here retries: errors are wrapped with the table, id or query they
concern and raised to the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, Optional

import requests

from .api import SalesforceAPI
from .exceptions import (
    AmbiguousResultError,
    CreateFailedError,
    DeleteFailedError,
    NotFoundError,
    PreconditionFailedError,
    RemoteQueryError,
    SalesforceRequestError,
    UpdateFailedError,
    describe_error_detail,
)
from .pagination import Page, effective_page_size, next_page_token, resolve_query_target
from .query import SALESFORCE_PK, SalesforceQuery
from .ratelimit import RateLimitDescription

_logger = logging.getLogger(__name__)

# Keys Salesforce adds to every record that must never be sent back.
_READ_ONLY_KEYS = ("attributes", SALESFORCE_PK)


class Record:
    """A sparse sObject: the fields returned for one row, keyed by API name."""

    def __init__(
        self,
        table: str,
        fields: Mapping[str, Any],
        *,
        external_id_field: Optional[str] = None,
    ) -> None:
        self.table = table
        self.fields: Dict[str, Any] = dict(fields)
        self.external_id_field = external_id_field

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], table: str = "", **kwargs: Any) -> "Record":
        attributes = payload.get("attributes") or {}
        return cls(attributes.get("type") or table, payload, **kwargs)

    @property
    def id(self) -> str:
        return self.string_field(SALESFORCE_PK)

    @property
    def external_id(self) -> str:
        if not self.external_id_field:
            return ""
        return self.string_field(self.external_id_field)

    def field(self, name: str) -> Any:
        return self.fields.get(name)

    def string_field(self, name: str) -> str:
        value = self.fields.get(name)
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    def related(self, name: str) -> Optional["Record"]:
        """Return the nested relationship record ``name`` (e.g. ``Profile``), if any."""
        value = self.fields.get(name)
        if not isinstance(value, Mapping):
            return None
        return Record.from_payload(value)

    def __repr__(self) -> str:
        return f"Record({self.table!r}, id={self.id!r})"


class ObjectStore:
    """Record-level primitives on top of :class:`SalesforceAPI`."""

    def __init__(
        self,
        api: SalesforceAPI,
        *,
        page_size: Optional[int] = None,
        external_id_fields: Optional[Mapping[str, str]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api = api
        self.page_size = effective_page_size(page_size)
        self.external_id_fields = dict(external_id_fields or {})
        self.logger = logger or _logger

    @property
    def last_rate_limit(self) -> Optional[RateLimitDescription]:
        return self.api.rate_limit

    def _record(self, payload: Mapping[str, Any], table: str) -> Record:
        record = Record.from_payload(payload, table)
        record.external_id_field = self.external_id_fields.get(record.table)
        return record

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def query(
        self,
        q: SalesforceQuery,
        cursor: str = "",
        page_size: Optional[int] = None,
    ) -> Page[Record]:
        """Fetch one page of ``q``, or the page behind ``cursor`` when given."""
        target = resolve_query_target(q, cursor, page_size or self.page_size)
        try:
            if target.is_continuation:
                payload = self.api.query_more(target.text)
            else:
                payload = self.api.query(target.text)
        except SalesforceRequestError as e:
            self.logger.error("Error querying salesforce query=%s: %s", target.text, e)
            raise RemoteQueryError(
                target.text, describe_error_detail(e.detail), rate_limit=e.rate_limit
            ) from e
        except requests.RequestException as e:
            self.logger.error("Error querying salesforce query=%s: %s", target.text, e)
            raise RemoteQueryError(target.text, str(e), rate_limit=self.api.rate_limit) from e

        records = [self._record(r, q.table) for r in payload.get("records", [])]
        next_token = next_page_token(
            target,
            bool(payload.get("done", True)),
            payload.get("nextRecordsUrl"),
            len(records),
            records[-1].id if records else "",
        )
        return Page(records, next_token, self.api.rate_limit)

    def get_single_object(self, q: SalesforceQuery, *, strict: bool = False) -> Record:
        """Point lookup expecting at most one match.

        Zero matches raise NotFoundError. Several matches are logged and the
        first is returned, unless ``strict`` is set.
        """
        page = self.query(q)
        if not page.items:
            raise NotFoundError(f"no {q.table} matched query: {q}", rate_limit=page.rate_limit)
        if len(page.items) > 1:
            if strict:
                raise AmbiguousResultError(str(q), len(page.items), rate_limit=page.rate_limit)
            self.logger.warning(
                "Found too many Salesforce objects query=%s count=%d", q, len(page.items)
            )
        return page.items[0]

    def get_one(self, table: str, object_id: str) -> Record:
        """Read the full record ``table/object_id``."""
        try:
            payload = self.api.get_sobject(table, object_id)
        except SalesforceRequestError as e:
            if e.status_code == 404:
                raise NotFoundError(f"missing {table} {object_id}", rate_limit=e.rate_limit) from e
            raise
        if not payload:
            raise NotFoundError(f"missing {table} {object_id}", rate_limit=self.api.rate_limit)
        return self._record(payload, table)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create_object(self, table: str, values: Mapping[str, Any]) -> Optional[RateLimitDescription]:
        self.logger.debug("Starting CreateObject table=%s", table)
        try:
            payload = self.api.create_sobject(table, dict(values))
        except SalesforceRequestError as e:
            raise CreateFailedError(
                table, describe_error_detail(e.detail), rate_limit=e.rate_limit
            ) from e

        created_id = (payload or {}).get("id")
        self.logger.debug("Called Create() table=%s id=%s", table, created_id)
        if not created_id or (payload or {}).get("success") is False:
            raise CreateFailedError(
                table,
                describe_error_detail((payload or {}).get("errors")),
                rate_limit=self.api.rate_limit,
            )
        return self.api.rate_limit

    def delete_object(self, table: str, object_id: str) -> Optional[RateLimitDescription]:
        self.logger.debug("Starting DeleteObject table=%s id=%s", table, object_id)
        try:
            self.api.delete_sobject(table, object_id)
        except SalesforceRequestError as e:
            if e.status_code == 404:
                raise NotFoundError(f"missing {table} {object_id}", rate_limit=e.rate_limit) from e
            raise DeleteFailedError(
                table, object_id, describe_error_detail(e.detail), rate_limit=e.rate_limit
            ) from e
        return self.api.rate_limit

    def update_object(
        self, table: str, object_id: str, values: Mapping[str, Any]
    ) -> Optional[RateLimitDescription]:
        """PATCH ``values`` onto the record; read-only keys are dropped."""
        body = {k: v for k, v in values.items() if k not in _READ_ONLY_KEYS}
        try:
            self.api.update_sobject(table, object_id, body)
        except SalesforceRequestError as e:
            raise UpdateFailedError(
                table, object_id, describe_error_detail(e.detail), rate_limit=e.rate_limit
            ) from e
        return self.api.rate_limit

    def set_field(
        self, table: str, object_id: str, field: str, value: Any
    ) -> Optional[RateLimitDescription]:
        record = self.get_one(table, object_id)
        return self.update_object(table, record.id, {field: value})

    def set_one_field(
        self, table: str, object_id: str, field: str, value: Any
    ) -> Optional[RateLimitDescription]:
        """Like :meth:`set_field`, but send only a minimal copy of the record."""
        record = self.get_one(table, object_id)
        payload = self.copy_for_update(record, field)
        payload[field] = value
        return self.update_object(table, record.id, payload)

    def clear_field(
        self, table: str, object_id: str, field: str, expected: str
    ) -> Optional[RateLimitDescription]:
        """Clear ``field`` if it still holds ``expected``.

        Best effort only: another writer may change the field between the
        read and the write.
        """
        record = self.get_one(table, object_id)
        self._check_current(record, field, expected)
        return self.update_object(table, record.id, {field: None})

    def clear_one_field(
        self, table: str, object_id: str, field: str, expected: str
    ) -> Optional[RateLimitDescription]:
        record = self.get_one(table, object_id)
        self._check_current(record, field, expected)
        payload = self.copy_for_update(record, field)
        payload[field] = None
        return self.update_object(table, record.id, payload)

    def _check_current(self, record: Record, field: str, expected: str) -> None:
        actual = record.string_field(field)
        if actual != expected:
            raise PreconditionFailedError(field, expected, actual, rate_limit=self.api.rate_limit)

    @staticmethod
    def copy_for_update(record: Record, *allowed_fields: str) -> Dict[str, Any]:
        """Minimal update payload: the id, any external id, and non-empty allowed fields."""
        payload: Dict[str, Any] = {SALESFORCE_PK: record.id}
        if record.external_id_field:
            payload[record.external_id_field] = record.external_id
        for name in _unique(allowed_fields):
            value = record.string_field(name)
            if value == "":
                continue
            payload[name] = value
        return payload


def _unique(names: Iterable[str]):
    seen = set()
    for name in names:
        if name not in seen:
            seen.add(name)
            yield name
