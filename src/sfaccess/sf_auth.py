"""Login flows that turn configured credentials into a bearer session.

Three flows are supported:

* ``token``              -- an access token is supplied up front.
* ``client_credentials`` -- OAuth2 client-credentials against ``/services/oauth2/token``.
* ``password``           -- SOAP ``login()`` with username, password and security token.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from typing import Dict, NamedTuple, Optional
from urllib.parse import urlparse
from xml.sax.saxutils import escape

import requests

from .exceptions import AuthenticationError, MissingCredentialsError

_logger = logging.getLogger(__name__)

SOAP_LOGIN_VERSION = "64.0"

_SOAP_NS = {
    "soapenv": "http://schemas.xmlsoap.org/soap/envelope/",
    "sf": "urn:partner.soap.sforce.com",
}

_SOAP_LOGIN_TEMPLATE = """<?xml version="1.0" encoding="utf-8" ?>
<env:Envelope xmlns:xsd="http://www.w3.org/2001/XMLSchema"
    xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
    xmlns:env="http://schemas.xmlsoap.org/soap/envelope/"
    xmlns:urn="urn:partner.soap.sforce.com">
  <env:Body>
    <urn:login>
      <urn:username>{username}</urn:username>
      <urn:password>{password}</urn:password>
    </urn:login>
  </env:Body>
</env:Envelope>"""


class SessionToken(NamedTuple):
    access_token: str
    instance_url: str


def require(values: Dict[str, Optional[str]]) -> None:
    """Raise MissingCredentialsError naming every empty entry of ``values``."""
    missing = [k for k, v in values.items() if not v]
    if missing:
        raise MissingCredentialsError(missing)


def client_credentials_login(
    session: requests.Session,
    login_url: str,
    client_id: Optional[str],
    client_secret: Optional[str],
    *,
    timeout: float = 30.0,
) -> SessionToken:
    """Perform the OAuth2 client credentials flow."""
    require(
        {
            "SF_CLIENT_ID": client_id,
            "SF_CLIENT_SECRET": client_secret,
            "SF_LOGIN_URL": login_url,
        }
    )

    token_url = f"{login_url.rstrip('/')}/services/oauth2/token"
    _logger.debug("Requesting access token from %s", token_url)
    try:
        r = session.post(
            token_url,
            data={
                "grant_type": "client_credentials",
                "client_id": client_id,
                "client_secret": client_secret,
            },
            timeout=timeout,
        )
    except requests.RequestException as e:
        raise AuthenticationError(f"token request failed: {e}") from e

    if r.status_code >= 400:
        raise AuthenticationError(f"Token request failed ({r.status_code}): {r.text}")

    payload = r.json()
    try:
        return SessionToken(payload["access_token"], payload["instance_url"].rstrip("/"))
    except KeyError as e:
        raise AuthenticationError(f"token response is missing {e.args[0]!r}") from e


def password_login(
    session: requests.Session,
    login_url: str,
    username: Optional[str],
    password: Optional[str],
    security_token: Optional[str] = None,
    *,
    timeout: float = 30.0,
) -> SessionToken:
    """Log in through the SOAP partner API and return the session id.

    Salesforce expects the security token appended to the password.
    """
    require({"SF_USERNAME": username, "SF_PASSWORD": password, "SF_LOGIN_URL": login_url})

    soap_url = f"{login_url.rstrip('/')}/services/Soap/u/{SOAP_LOGIN_VERSION}"
    body = _SOAP_LOGIN_TEMPLATE.format(
        username=escape(username or ""),
        password=escape((password or "") + (security_token or "")),
    )
    _logger.debug("Performing SOAP login for %s at %s", username, soap_url)
    try:
        r = session.post(
            soap_url,
            data=body.encode("utf-8"),
            headers={"Content-Type": "text/xml; charset=UTF-8", "SOAPAction": "login"},
            timeout=timeout,
        )
    except requests.RequestException as e:
        raise AuthenticationError(f"SOAP login failed: {e}") from e

    if r.status_code >= 400:
        raise AuthenticationError(f"SOAP login failed ({r.status_code}): {_soap_fault(r.text)}")

    return parse_soap_login_response(r.text)


def parse_soap_login_response(text: str) -> SessionToken:
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise AuthenticationError(f"unreadable SOAP login response: {e}") from e

    session_id = root.findtext(".//sf:result/sf:sessionId", namespaces=_SOAP_NS)
    server_url = root.findtext(".//sf:result/sf:serverUrl", namespaces=_SOAP_NS)
    if not session_id or not server_url:
        raise AuthenticationError("SOAP login response carried no session")

    parsed = urlparse(server_url)
    return SessionToken(session_id, f"{parsed.scheme}://{parsed.netloc}")


def _soap_fault(text: str) -> str:
    try:
        root = ET.fromstring(text)
    except ET.ParseError:
        return text
    fault = root.findtext(".//faultstring")
    return fault or text
