from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

import requests
from requests.adapters import BaseAdapter

from .config import SFConfig
from .exceptions import (
    AuthenticationError,
    MissingCredentialsError,
    OperationCancelledError,
    SalesforceError,
    SalesforceRequestError,
)
from .ratelimit import RateLimitAdapter, RateLimitDescription
from .sf_auth import client_credentials_login, password_login

_logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (429, 500, 502, 503, 504)


class LoginState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    FAILED = "failed"


# ----------------------------------------------------------------------
# Main API client
# ----------------------------------------------------------------------
class SalesforceAPI:
    """Salesforce REST client: login, SOQL, sObject CRUD and raw Apex REST.

    Login happens lazily on the first call and is memoized; concurrent first
    callers share one login. A failed login is not cached, the next call tries
    again. Every response passes through a :class:`RateLimitAdapter`, and
    :attr:`rate_limit` describes the most recent call.
    """

    def __init__(
        self,
        cfg: Optional[SFConfig] = None,
        *,
        transport: Optional[BaseAdapter] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.cfg = cfg or SFConfig.from_env()
        self.session = requests.Session()
        self.adapter = RateLimitAdapter(base=transport)
        self.session.mount("https://", self.adapter)
        self.session.mount("http://", self.adapter)

        self.access_token: Optional[str] = None
        self.instance_url: Optional[str] = None
        self.api_version: Optional[str] = None
        self.cancel_event = cancel_event

        self.state = LoginState.UNINITIALIZED
        self._login_lock = threading.Lock()
        self._cache: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], Any] = {}

    @property
    def rate_limit(self) -> Optional[RateLimitDescription]:
        """Rate-limit descriptor observed on the most recent HTTP call."""
        return self.adapter.rate_limit

    # --------------------------- Login --------------------------------

    def connect(self) -> None:
        """Authenticate if that has not happened yet."""
        if self.state is LoginState.READY:
            return
        with self._login_lock:
            if self.state is LoginState.READY:
                return
            try:
                self._login()
            except (SalesforceError, requests.RequestException):
                self.state = LoginState.FAILED
                raise
            self.state = LoginState.READY

    def _login(self) -> None:
        # A supplied token takes precedence over any credential flow.
        if self.cfg.access_token and self.cfg.instance_url:
            _logger.debug("Using existing access token from configuration.")
            self.access_token = self.cfg.access_token
            self.instance_url = self.cfg.instance_url.rstrip("/")
        elif self.cfg.auth_flow == "token":
            missing = [
                k
                for k, v in {
                    "SF_ACCESS_TOKEN": self.cfg.access_token,
                    "SF_INSTANCE_URL": self.cfg.instance_url,
                }.items()
                if not v
            ]
            raise MissingCredentialsError(missing)
        elif self.cfg.auth_flow == "password":
            _logger.info("Performing SOAP login for %s", self.cfg.username)
            self.access_token, self.instance_url = password_login(
                self.session,
                self.cfg.login_url,
                self.cfg.username,
                self.cfg.password,
                self.cfg.security_token,
                timeout=self.cfg.http_timeout,
            )
        else:
            _logger.info("Performing OAuth login using auth flow: %s", self.cfg.auth_flow)
            self.access_token, self.instance_url = client_credentials_login(
                self.session,
                self.cfg.login_url,
                self.cfg.client_id,
                self.cfg.client_secret,
                timeout=self.cfg.http_timeout,
            )

        if not self.access_token or not self.instance_url:
            raise AuthenticationError("Authentication did not yield access_token and instance_url.")

        self.session.headers.update({"Authorization": f"Bearer {self.access_token}"})
        self.api_version = self.cfg.api_version or self._discover_latest_api_version()
        _logger.info(
            "Connected to Salesforce instance=%s api=%s",
            self.instance_url,
            self.api_version,
        )

    def _discover_latest_api_version(self) -> str:
        """Find the latest available API version."""
        r = self._request("GET", f"{self.instance_url}/services/data/")
        versions = r.json()
        if not versions:
            raise AuthenticationError("instance reported no REST API versions")
        best = sorted(versions, key=lambda v: float(v.get("version", "0")), reverse=True)[0]
        version_str = best.get("url", "").rstrip("/").split("/")[-1]
        _logger.debug("Latest API version discovered: %s", version_str)
        return version_str

    # --------------------------- Public methods -----------------------

    def data_path(self, suffix: str = "") -> str:
        """Instance-relative REST path, e.g. ``/services/data/v64.0/sobjects``."""
        self.connect()
        return f"/services/data/{self.api_version}{suffix}"

    def query(self, soql: str) -> Dict[str, Any]:
        """Run a SOQL query and return the raw page."""
        url = f"{self.instance_url_or_connect()}{self.data_path('/query')}"
        return self._get_json(url, params={"q": soql})

    def query_more(self, next_records_url: str) -> Dict[str, Any]:
        """Fetch the page behind a ``nextRecordsUrl``."""
        return self._get_json(f"{self.instance_url_or_connect()}{next_records_url}")

    def get_sobject(self, table: str, object_id: str) -> Dict[str, Any]:
        return self._get_json(self._sobject_url(table, object_id))

    def create_sobject(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a record; returns Salesforce's ``{"id", "success", "errors"}`` body."""
        r = self._request("POST", self._sobject_url(table), json=values)
        return r.json()

    def update_sobject(self, table: str, object_id: str, values: Dict[str, Any]) -> None:
        self._request("PATCH", self._sobject_url(table, object_id), json=values)

    def delete_sobject(self, table: str, object_id: str) -> None:
        self._request("DELETE", self._sobject_url(table, object_id))

    def apex_rest(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        """Call an instance-relative REST path; returns decoded JSON or None."""
        url = f"{self.instance_url_or_connect()}{path}"
        if method.upper() == "GET":
            return self._get_json(url)
        r = self._request(method.upper(), url, json=body)
        if not r.content:
            return None
        return r.json()

    def clear_caches(self) -> None:
        """Forget every cached GET response."""
        if self._cache:
            _logger.debug("Clearing %d cached responses", len(self._cache))
        self._cache.clear()

    def instance_url_or_connect(self) -> str:
        self.connect()
        return self.instance_url or ""

    # --------------------------- HTTP wrappers -----------------------

    def _sobject_url(self, table: str, object_id: Optional[str] = None) -> str:
        suffix = f"/sobjects/{table}" + (f"/{object_id}" if object_id else "")
        return f"{self.instance_url_or_connect()}{self.data_path(suffix)}"

    def _get_json(self, url: str, *, params: Optional[Dict[str, str]] = None) -> Any:
        key = (url, tuple(sorted((params or {}).items())))
        if self.cfg.http_cache and key in self._cache:
            _logger.debug("Cache hit for %s", url)
            # No call went out, so there is no rate-limit information.
            self.adapter.rate_limit = None
            return self._cache[key]
        payload = self._request("GET", url, params=params).json()
        if self.cfg.http_cache:
            self._cache[key] = payload
        return payload

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise OperationCancelledError("operation cancelled", rate_limit=self.rate_limit)

    def _pause(self, delay: float) -> None:
        if self.cancel_event is not None:
            if self.cancel_event.wait(delay):
                raise OperationCancelledError("operation cancelled", rate_limit=self.rate_limit)
        else:
            time.sleep(delay)

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        """Generic request with retry and logging.

        Only GET is retried; a failed write is reported straight away so a
        non-idempotent call is never replayed.
        """
        retries = max(1, self.cfg.http_retries) if method == "GET" else 1
        backoff = self.cfg.http_backoff

        if method != "GET":
            self.clear_caches()

        for attempt in range(1, retries + 1):
            self._check_cancelled()
            try:
                r = self.session.request(
                    method,
                    url,
                    params=params,
                    data=data,
                    json=json,
                    timeout=self.cfg.http_timeout,
                )
            except requests.RequestException as e:
                _logger.warning("Request error (attempt %d/%d): %s", attempt, retries, e)
                if attempt == retries:
                    raise
                self._pause(backoff * attempt)
                continue

            if r.status_code < 400:
                return r

            if r.status_code in RETRYABLE_STATUS and attempt < retries:
                _logger.warning("HTTP %s -> retrying %d/%d", r.status_code, attempt, retries)
                self._pause(backoff * attempt)
                continue

            try:
                detail = r.json()
            except ValueError:
                detail = r.text
            _logger.error("HTTP %s error for %s %s: %s", r.status_code, method, url, detail)
            raise SalesforceRequestError(
                method, url, r.status_code, detail, rate_limit=self.rate_limit
            )
        raise RuntimeError("Exceeded maximum retries.")
