"""Shared fixtures: an in-memory Salesforce org behind a requests adapter."""

import itertools
import json
import re
from collections import defaultdict
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from sfaccess.api import SalesforceAPI
from sfaccess.client import SalesforceClient
from sfaccess.config import SFConfig
from sfaccess.ratelimit import RATE_LIMIT_HEADER
from sfaccess.sync.connector import SalesforceConnector

INSTANCE_URL = "https://fake.my.salesforce.com"
API_VERSION = "v64.0"

# Salesforce key prefixes per table.
ID_PREFIXES = {
    "User": "005",
    "Group": "00G",
    "GroupMember": "011",
    "Profile": "00e",
    "UserRole": "00E",
    "UserLicense": "100",
    "UserLogin": "060",
    "PermissionSet": "0PS",
    "PermissionSetAssignment": "0Pa",
    "PermissionSetGroup": "0PG",
    "PermissionSetGroupComponent": "0PH",
    "ConnectedApplication": "0H4",
}

# Rows that Salesforce refuses to duplicate.
UNIQUE_KEYS = {
    "GroupMember": ("GroupId", "UserOrGroupId"),
    "PermissionSetAssignment": ("AssigneeId", "PermissionSetId"),
    "PermissionSetGroupComponent": ("PermissionSetGroupId", "PermissionSetId"),
}

_SOQL_RE = re.compile(
    r"^SELECT (?P<cols>.+?) FROM (?P<table>\w+)"
    r"(?: WHERE (?P<where>.+?))?"
    r"(?: ORDER BY (?P<order>[\w.]+))?"
    r"(?: LIMIT (?P<limit>\d+))?$"
)
_PREDICATE_RE = re.compile(r"^(?P<field>[\w.]+) (?P<op>=|!=|<|>) '(?P<value>.*)'$")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class FakeSalesforce(BaseAdapter):
    """Just enough of the Salesforce REST API for the client.

    Serves SOQL (comparison predicates, ORDER BY, LIMIT as a cap on the
    whole result and ``nextRecordsUrl`` continuations in batches of
    ``batch_size``), sObject CRUD, the chatter identity
    resource, the password reset call and the OAuth token endpoint. Every
    response carries a ``Sforce-Limit-Info`` header.
    """

    def __init__(self) -> None:
        super().__init__()
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self.requests: List[requests.PreparedRequest] = []
        self.limit_info: Optional[str] = "api-usage=25/15000"
        self.info = {
            "id": "005000000000001",
            "email": "admin@example.com",
            "firstName": "Ada",
            "lastName": "Admin",
            "companyName": "Acme Corp",
        }
        self.password_resets: List[str] = []
        # Ids hidden from the next N matching queries (eventual consistency).
        self.hidden: Dict[str, int] = {}
        self.hide_created_users_for = 0
        self._failures: Dict[Tuple[str, str], List[Tuple[int, Any]]] = defaultdict(list)
        self._cursors: Dict[str, Tuple[List[str], str, List[str], int]] = {}
        self._counter = itertools.count(1)
        # Rows per response batch; Salesforce uses 2000 by default.
        self.batch_size = 2000

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------
    def add(self, table: str, **fields: Any) -> str:
        record_id = fields.pop("Id", None) or self._new_id(table)
        self.tables[table][record_id] = {"attributes": {"type": table}, "Id": record_id, **fields}
        return record_id

    def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        return self.tables[table].get(record_id)

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return list(self.tables[table].values())

    def fail_next(self, method: str, path_suffix: str, status: int, body: Any = None) -> None:
        """Answer the next ``method`` whose path ends with ``path_suffix`` with ``status``."""
        self._failures[(method, path_suffix)].append((status, body))

    def calls(self, method: Optional[str] = None) -> List[requests.PreparedRequest]:
        return [r for r in self.requests if method is None or r.method == method]

    def soql_sent(self) -> List[str]:
        out = []
        for request in self.requests:
            q = parse_qs(urlparse(request.url).query).get("q")
            if q:
                out.append(q[0])
        return out

    def _new_id(self, table: str) -> str:
        return f"{ID_PREFIXES.get(table, '0XX')}{next(self._counter):012d}"

    # ------------------------------------------------------------------
    # Adapter
    # ------------------------------------------------------------------
    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        self.requests.append(request)
        parsed = urlparse(request.url)
        path = parsed.path

        for (method, suffix), queued in self._failures.items():
            if queued and method == request.method and path.endswith(suffix):
                status, body = queued.pop(0)
                return self._response(request, status, body)

        if path == "/services/oauth2/token":
            return self._response(
                request, 200, {"access_token": "00DFAKE!token", "instance_url": INSTANCE_URL}
            )
        if path == "/services/data/":
            return self._response(
                request,
                200,
                [
                    {"version": "63.0", "url": "/services/data/v63.0"},
                    {"version": "64.0", "url": "/services/data/v64.0"},
                ],
            )

        prefix = f"/services/data/{API_VERSION}"
        if not path.startswith(prefix):
            return self._response(request, 404, [{"errorCode": "NOT_FOUND", "message": path}])
        rest = path[len(prefix):]

        if rest == "/query":
            soql = parse_qs(parsed.query)["q"][0]
            return self._query(request, soql)
        if rest.startswith("/query/"):
            return self._query_more(request, rest[len("/query/"):])
        if rest == "/chatter/users/me":
            return self._response(request, 200, self.info)

        parts = rest.strip("/").split("/")
        if parts[0] != "sobjects" or len(parts) < 2:
            return self._response(request, 404, [{"errorCode": "NOT_FOUND", "message": rest}])
        table = parts[1]
        if len(parts) == 4 and parts[3] == "password" and request.method == "DELETE":
            self.password_resets.append(parts[2])
            return self._response(request, 204)
        if len(parts) == 2 and request.method == "POST":
            return self._create(request, table)
        if len(parts) == 3:
            return self._by_id(request, table, parts[2])
        return self._response(request, 405)

    def close(self) -> None:
        pass

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------
    def _query(self, request, soql: str):
        match = _SOQL_RE.match(soql)
        if match is None:
            return self._response(
                request, 400, [{"errorCode": "MALFORMED_QUERY", "message": soql}]
            )
        table = match.group("table")
        columns = match.group("cols").split(",")
        predicates = []
        if match.group("where"):
            for clause in match.group("where").split(" AND "):
                p = _PREDICATE_RE.match(clause)
                if p is None:
                    return self._response(
                        request, 400, [{"errorCode": "MALFORMED_QUERY", "message": clause}]
                    )
                predicates.append((p.group("field"), p.group("op"), p.group("value")))

        matched = []
        for row in self.tables[table].values():
            if not all(self._matches(row, f, op, v) for f, op, v in predicates):
                continue
            if self.hidden.get(row["Id"], 0) > 0:
                self.hidden[row["Id"]] -= 1
                continue
            matched.append(row)
        if match.group("order"):
            order = match.group("order")
            matched.sort(key=lambda r: _as_text(r.get(order)))

        ids = [r["Id"] for r in matched]
        if match.group("limit"):
            ids = ids[: int(match.group("limit"))]
        return self._page(request, table, columns, ids, 0, self.batch_size)

    def _query_more(self, request, cursor_key: str):
        cursor_id, _, offset = cursor_key.partition("-")
        if cursor_id not in self._cursors:
            return self._response(
                request, 400, [{"errorCode": "INVALID_QUERY_LOCATOR", "message": cursor_key}]
            )
        ids, table, columns, limit = self._cursors[cursor_id]
        return self._page(request, table, columns, ids, int(offset), limit)

    def _page(self, request, table, columns, ids, offset, limit):
        chunk = ids[offset : offset + limit]
        records = [self._project(self.tables[table][i], columns) for i in chunk if i in self.tables[table]]
        body: Dict[str, Any] = {"totalSize": len(ids), "done": True, "records": records}
        if offset + limit < len(ids):
            cursor_id = f"01gFAKE{next(self._counter)}"
            self._cursors[cursor_id] = (ids, table, columns, limit)
            body["done"] = False
            body["nextRecordsUrl"] = f"/services/data/{API_VERSION}/query/{cursor_id}-{offset + limit}"
        return self._response(request, 200, body)

    def _matches(self, row, field, op, value) -> bool:
        actual = _as_text(self._lookup(row, field))
        if op == "=":
            return actual == value
        if op == "!=":
            return actual != value
        if op == ">":
            return actual > value
        return actual < value

    def _lookup(self, row, field):
        if "." not in field:
            return row.get(field)
        related = self._related(row, field.split(".", 1)[0])
        if related is None:
            return None
        return related.get(field.split(".", 1)[1])

    def _related(self, row, relationship):
        related_id = row.get(f"{relationship}Id")
        if not related_id:
            return None
        for rows in self.tables.values():
            if related_id in rows:
                return rows[related_id]
        return None

    def _project(self, row, columns):
        out: Dict[str, Any] = {"attributes": dict(row["attributes"])}
        for column in columns:
            if "." in column:
                relationship, _, name = column.partition(".")
                related = self._related(row, relationship)
                if related is None:
                    out[relationship] = None
                    continue
                nested = out.get(relationship) or {"attributes": dict(related["attributes"])}
                nested[name] = related.get(name)
                out[relationship] = nested
            else:
                out[column] = row.get(column)
        return out

    def _create(self, request, table):
        values = json.loads(request.body or b"{}")
        for key in UNIQUE_KEYS.get(table, ()):
            if not values.get(key):
                return self._response(
                    request,
                    400,
                    [{"errorCode": "REQUIRED_FIELD_MISSING", "message": f"Required fields are missing: [{key}]"}],
                )
        keys = UNIQUE_KEYS.get(table)
        if keys:
            for row in self.tables[table].values():
                if all(row.get(k) == values.get(k) for k in keys):
                    return self._response(
                        request,
                        400,
                        [{"errorCode": "DUPLICATE_VALUE", "message": "duplicate value found"}],
                    )
        if table == "User":
            values.setdefault("IsActive", True)
            values.setdefault("UserType", "Standard")
        record_id = self.add(table, **values)
        if table == "User" and self.hide_created_users_for:
            self.hidden[record_id] = self.hide_created_users_for
        return self._response(request, 201, {"id": record_id, "success": True, "errors": []})

    def _by_id(self, request, table, record_id):
        row = self.tables[table].get(record_id)
        if row is None:
            return self._response(
                request,
                404,
                [{"errorCode": "NOT_FOUND", "message": "The requested resource does not exist"}],
            )
        if request.method == "GET":
            return self._response(request, 200, row)
        if request.method == "PATCH":
            values = json.loads(request.body or b"{}")
            if "Id" in values and values["Id"] != record_id:
                return self._response(request, 400, [{"errorCode": "INVALID_FIELD", "message": "Id"}])
            row.update({k: v for k, v in values.items() if k != "Id"})
            return self._response(request, 204)
        if request.method == "DELETE":
            del self.tables[table][record_id]
            return self._response(request, 204)
        return self._response(request, 405)

    def _response(self, request, status: int, body: Any = None) -> requests.Response:
        r = requests.Response()
        r.status_code = status
        r.request = request
        r.url = request.url
        r.encoding = "utf-8"
        r.headers = CaseInsensitiveDict()
        if self.limit_info is not None:
            r.headers[RATE_LIMIT_HEADER] = self.limit_info
        if body is None:
            r._content = b""
        else:
            r._content = json.dumps(body).encode("utf-8")
            r.headers["Content-Type"] = "application/json;charset=UTF-8"
        return r


def seed_org(fake: FakeSalesforce) -> SimpleNamespace:
    """A small org: one license, three profiles, roles, users, groups and permission sets."""
    ids = SimpleNamespace()
    ids.license = fake.add("UserLicense", Name="Salesforce", LicenseDefinitionKey="SFDC", Status="Active")
    ids.admin_profile = fake.add("Profile", Name="System Administrator", UserLicenseId=ids.license)
    ids.standard_profile = fake.add("Profile", Name="Standard User", UserLicenseId=ids.license)
    ids.minimum_profile = fake.add(
        "Profile", Name="Minimum Access - Salesforce", UserLicenseId=ids.license
    )
    ids.ceo_role = fake.add("UserRole", Name="CEO")
    ids.sales_role = fake.add("UserRole", Name="Sales")

    ids.alice = fake.add(
        "User",
        FirstName="Alice",
        LastName="Anders",
        Email="alice@example.com",
        Username="alice@example.com.prod",
        IsActive=True,
        UserType="Standard",
        ProfileId=ids.standard_profile,
        UserRoleId=ids.sales_role,
        LastLoginDate="2024-01-31T09:15:00.000+0000",
    )
    ids.bob = fake.add(
        "User",
        FirstName="Bob",
        LastName="Brown",
        Email="bob@example.com",
        Username="bob@example.com.prod",
        IsActive=False,
        UserType="Standard",
        ProfileId=ids.admin_profile,
        UserRoleId=None,
        LastLoginDate=None,
    )
    ids.carol = fake.add(
        "User",
        FirstName="Carol",
        LastName="Chen",
        Email="carol@example.com",
        Username="carol@example.com.prod",
        IsActive=True,
        UserType="Standard",
        ProfileId=ids.admin_profile,
        UserRoleId=None,
        LastLoginDate=None,
    )
    ids.guest = fake.add(
        "User",
        FirstName="Site",
        LastName="Guest",
        Email="guest@example.com",
        Username="guest@example.com",
        IsActive=True,
        UserType="Guest",
        ProfileId=ids.standard_profile,
        UserRoleId=None,
        LastLoginDate=None,
    )
    ids.carol_login = fake.add("UserLogin", UserId=ids.carol, IsFrozen=True, IsPasswordLocked=False)
    ids.alice_login = fake.add("UserLogin", UserId=ids.alice, IsFrozen=False, IsPasswordLocked=False)

    ids.engineering = fake.add(
        "Group", Name="Engineering", DeveloperName="Engineering", Type="Regular", RelatedId=None
    )
    ids.sales_group = fake.add(
        "Group", Name="", DeveloperName="Sales", Type="Role", RelatedId=ids.sales_role
    )
    ids.org_group = fake.add(
        "Group", Name="", DeveloperName="AllInternalUsers", Type="Organization", RelatedId=None
    )
    ids.alice_in_engineering = fake.add("GroupMember", GroupId=ids.engineering, UserOrGroupId=ids.alice)
    ids.sales_in_engineering = fake.add(
        "GroupMember", GroupId=ids.engineering, UserOrGroupId=ids.sales_group
    )

    ids.api_access = fake.add(
        "PermissionSet",
        Name="API_Access",
        Label="API Access",
        Type="Regular",
        ProfileId=None,
    )
    ids.admin_owned = fake.add(
        "PermissionSet",
        Name="X00ex00000018ozh_128_09_04_12_1",
        Label="00ex00000018ozh_128_09_04_12_1",
        Type="Profile",
        ProfileId=ids.admin_profile,
    )
    ids.alice_api_access = fake.add(
        "PermissionSetAssignment", AssigneeId=ids.alice, PermissionSetId=ids.api_access, IsActive=True
    )

    ids.sales_bundle = fake.add(
        "PermissionSetGroup",
        DeveloperName="Sales_Bundle",
        MasterLabel="Sales Bundle",
        Description="",
        Language="en_US",
        NamespacePrefix=None,
        HasActivationRequired=False,
        IsDeleted=False,
    )
    ids.bundle_api_access = fake.add(
        "PermissionSetGroupComponent",
        PermissionSetGroupId=ids.sales_bundle,
        PermissionSetId=ids.api_access,
        IsDeleted=False,
    )

    ids.workbench = fake.add(
        "ConnectedApplication",
        Name="Workbench",
        CreatedById=ids.alice,
        CreatedDate="2023-05-01T12:00:00.000+0000",
        LastModifiedDate="2023-05-01T12:00:00.000+0000",
    )
    return ids


@pytest.fixture
def fake_sf():
    return FakeSalesforce()


@pytest.fixture
def org(fake_sf):
    return seed_org(fake_sf)


@pytest.fixture
def sf_config():
    return SFConfig(
        auth_flow="token",
        access_token="00DFAKE!token",
        instance_url=INSTANCE_URL,
        api_version=API_VERSION,
        http_backoff=0.0,
    )


@pytest.fixture
def api(sf_config, fake_sf):
    return SalesforceAPI(sf_config, transport=fake_sf)


@pytest.fixture
def client(api):
    return SalesforceClient(api, page_size=100, retry_base_delay=0.0)


@pytest.fixture
def connector(client):
    return SalesforceConnector(
        client,
        sync_connected_apps=True,
        license_to_least_privileged_profile={"Salesforce": "Minimum Access - Salesforce"},
    )
