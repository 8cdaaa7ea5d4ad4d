from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import urlparse

from .exceptions import ConfigurationError


AUTH_FLOWS = ("client_credentials", "password", "token")

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def parse_license_mapping(raw: Optional[str]) -> Dict[str, str]:
    """Parse the license -> least privileged profile mapping.

    Accepts either a JSON object or ``License=Profile`` pairs separated by
    ``;``. Non-string JSON values are dropped.
    """
    if not raw or not raw.strip():
        return {}

    text = raw.strip()
    if text.startswith("{"):
        try:
            decoded = json.loads(text)
        except ValueError as e:
            raise ConfigurationError(f"SF_LICENSE_PROFILE_MAPPING is not valid JSON: {e}") from e
        if not isinstance(decoded, dict):
            raise ConfigurationError("SF_LICENSE_PROFILE_MAPPING must be a JSON object")
        return {str(k): v for k, v in decoded.items() if isinstance(v, str)}

    mapping: Dict[str, str] = {}
    for pair in text.split(";"):
        if not pair.strip():
            continue
        license_name, sep, profile_name = pair.partition("=")
        if not sep or not license_name.strip() or not profile_name.strip():
            raise ConfigurationError(f"invalid license mapping entry: {pair!r}")
        mapping[license_name.strip()] = profile_name.strip()
    return mapping


def fall_back_to_https(domain: str) -> str:
    """Prefix ``https://`` when the domain carries no scheme.

    Lets an operator force ``http://`` (e.g. a local test server) by spelling
    the scheme out.
    """
    domain = (domain or "").strip()
    if not domain:
        return ""
    if not urlparse(domain).scheme:
        domain = f"https://{domain}"
    return domain.rstrip("/")


# ----------------------------------------------------------------------
# Configuration dataclass
# ----------------------------------------------------------------------
@dataclass
class SFConfig:
    """Connection, sync and transport settings."""

    # client_credentials | password | token
    auth_flow: str = "client_credentials"

    # Base login URL (not the instance URL)
    login_url: str = "https://login.salesforce.com"
    instance_url: Optional[str] = None

    client_id: Optional[str] = None
    client_secret: Optional[str] = None

    username: Optional[str] = None
    password: Optional[str] = None
    security_token: Optional[str] = None

    # Pre-provided token (token flow, or cached from elsewhere)
    access_token: Optional[str] = None

    # e.g. "v64.0"; otherwise auto-discover
    api_version: Optional[str] = None

    use_username_for_email: bool = False
    sync_connected_apps: bool = False
    sync_deactivated_users: bool = True
    sync_non_standard_users: bool = False
    license_to_least_privileged_profile: Dict[str, str] = field(default_factory=dict)

    http_timeout: float = 30.0
    # Transport-level attempts for GET only (network errors, 429 and 5xx).
    # Writes go out once, and the object layer on top never retries; 1 disables it.
    http_retries: int = 3
    http_backoff: float = 0.8
    http_cache: bool = False
    page_size: int = 100

    def __post_init__(self) -> None:
        if self.auth_flow not in AUTH_FLOWS:
            raise ConfigurationError(
                f"unsupported SF_AUTH_FLOW {self.auth_flow!r}; expected one of {', '.join(AUTH_FLOWS)}"
            )
        if self.instance_url:
            self.instance_url = fall_back_to_https(self.instance_url)
        if self.login_url:
            self.login_url = fall_back_to_https(self.login_url)

    @classmethod
    def from_env(cls) -> SFConfig:
        """Load configuration from SF_* environment variables."""
        return cls(
            auth_flow=os.getenv("SF_AUTH_FLOW", "client_credentials"),
            login_url=os.getenv("SF_LOGIN_URL", "https://login.salesforce.com"),
            instance_url=os.getenv("SF_INSTANCE_URL"),
            client_id=os.getenv("SF_CLIENT_ID"),
            client_secret=os.getenv("SF_CLIENT_SECRET"),
            username=os.getenv("SF_USERNAME"),
            password=os.getenv("SF_PASSWORD"),
            security_token=os.getenv("SF_SECURITY_TOKEN"),
            access_token=os.getenv("SF_ACCESS_TOKEN"),
            api_version=os.getenv("SF_API_VERSION"),
            use_username_for_email=_env_bool("SF_USE_USERNAME_FOR_EMAIL", False),
            sync_connected_apps=_env_bool("SF_SYNC_CONNECTED_APPS", False),
            sync_deactivated_users=_env_bool("SF_SYNC_DEACTIVATED_USERS", True),
            sync_non_standard_users=_env_bool("SF_SYNC_NON_STANDARD_USERS", False),
            license_to_least_privileged_profile=parse_license_mapping(
                os.getenv("SF_LICENSE_PROFILE_MAPPING")
            ),
            http_timeout=_env_number("SF_HTTP_TIMEOUT", 30.0, float),
            http_retries=_env_number("SF_HTTP_RETRIES", 3, int),
            http_backoff=_env_number("SF_HTTP_BACKOFF", 0.8, float),
            http_cache=_env_bool("SF_HTTP_CACHE", False),
            page_size=_env_number("SF_PAGE_SIZE", 100, int),
        )

    def describe(self) -> Dict[str, object]:
        """Loggable view of the settings; secrets are reduced to presence flags."""
        return {
            "auth_flow": self.auth_flow,
            "instance_url": self.instance_url,
            "login_url": self.login_url,
            "username": self.username,
            "password?": bool(self.password),
            "security_token?": bool(self.security_token),
            "client_secret?": bool(self.client_secret),
            "access_token?": bool(self.access_token),
            "api_version": self.api_version,
            "use_username_for_email": self.use_username_for_email,
            "sync_connected_apps": self.sync_connected_apps,
            "sync_deactivated_users": self.sync_deactivated_users,
            "sync_non_standard_users": self.sync_non_standard_users,
            "license_to_least_privileged_profile": dict(self.license_to_least_privileged_profile),
        }
