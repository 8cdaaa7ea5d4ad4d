"""SOQL query builder.

Builds the small subset of SOQL the sync needs: a column list, AND-combined
comparison predicates, ``IN`` sub-selects, a single ORDER BY field and a LIMIT.
Values are interpolated verbatim between single quotes, so only ids, enum
values and caller-validated strings may be passed in.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

SALESFORCE_PK = "Id"
ALL_FIELDS_KEYWORD = "Fields(standard)"

TABLE_CONNECTED_APPS = "ConnectedApplication"
TABLE_GROUP_MEMBERSHIPS = "GroupMember"
TABLE_GROUPS = "Group"
TABLE_PERMISSION_ASSIGNMENTS = "PermissionSetAssignment"
TABLE_PERMISSION_SET_GROUP_COMPONENTS = "PermissionSetGroupComponent"
TABLE_PERMISSION_SET_GROUPS = "PermissionSetGroup"
TABLE_PERMISSION_SETS = "PermissionSet"
TABLE_PROFILES = "Profile"
TABLE_ROLES = "UserRole"
TABLE_USER_LICENSES = "UserLicense"
TABLE_USER_LOGINS = "UserLogin"
TABLE_USERS = "User"

# Default column lists. Order is preserved in the rendered SELECT.
TABLE_FIELDS: Dict[str, List[str]] = {
    TABLE_USERS: [
        "FirstName",
        "LastName",
        "Email",
        "Username",
        "IsActive",
        "UserType",
        "ProfileId",
        "UserRoleId",
        "LastLoginDate",
    ],
    TABLE_ROLES: ["Name"],
    TABLE_PROFILES: ["Name", "UserLicenseId"],
    TABLE_USER_LICENSES: ["Name", "LicenseDefinitionKey", "Status"],
    TABLE_PERMISSION_ASSIGNMENTS: ["PermissionSetId", "AssigneeId", "IsActive"],
    TABLE_GROUP_MEMBERSHIPS: ["GroupId", "UserOrGroupId"],
    TABLE_PERMISSION_SETS: ["Name", "Label", "Type", "ProfileId", "Profile.Name"],
    TABLE_GROUPS: ["Name", "DeveloperName", "Type", "RelatedId", "Related.Name"],
    TABLE_PERMISSION_SET_GROUPS: [
        "DeveloperName",
        "MasterLabel",
        "Description",
        "Language",
        "NamespacePrefix",
        "HasActivationRequired",
        "IsDeleted",
    ],
    TABLE_PERMISSION_SET_GROUP_COMPONENTS: [
        "PermissionSetGroupId",
        "PermissionSetId",
        "IsDeleted",
    ],
    TABLE_CONNECTED_APPS: ["Name", "CreatedById", "CreatedDate", "LastModifiedDate"],
    TABLE_USER_LOGINS: ["UserId", "IsFrozen", "IsPasswordLocked"],
}

OP_EQ = "="
OP_NEQ = "!="
OP_LT = "<"
OP_GT = ">"
OP_IN = "IN"


def default_fields(table: str) -> List[str]:
    """Return a copy of the registered default columns for ``table``."""
    return list(TABLE_FIELDS.get(table, []))


class SalesforceQuery:
    """Fluent SOQL builder.

    Example::

        soql = str(
            SalesforceQuery("User")
            .where_eq("UserType", "Standard")
            .order_by("Id")
            .limit(50)
        )
    """

    def __init__(self, table: str, *columns: str) -> None:
        self.table = table
        self.columns: List[str] = list(columns) if columns else default_fields(table)
        self.predicates: List[Tuple[str, str, str]] = []
        self.order_by_field: Optional[str] = None
        self.limit_value: Optional[int] = None

    def where_eq(self, field: str, value: str) -> "SalesforceQuery":
        self.predicates.append((field, OP_EQ, f"'{value}'"))
        return self

    def where_not_eq(self, field: str, value: str) -> "SalesforceQuery":
        self.predicates.append((field, OP_NEQ, f"'{value}'"))
        return self

    def where_lt(self, field: str, value: str) -> "SalesforceQuery":
        self.predicates.append((field, OP_LT, f"'{value}'"))
        return self

    def where_gt(self, field: str, value: str) -> "SalesforceQuery":
        self.predicates.append((field, OP_GT, f"'{value}'"))
        return self

    def where_in(self, field: str, subquery: "SalesforceQuery") -> "SalesforceQuery":
        """Restrict ``field`` to the values selected by ``subquery``."""
        self.predicates.append((field, OP_IN, f"({subquery})"))
        return self

    def order_by(self, field: str) -> "SalesforceQuery":
        self.order_by_field = field
        return self

    def limit(self, n: int) -> "SalesforceQuery":
        if n < 0:
            raise ValueError(f"limit must be non-negative, got {n}")
        self.limit_value = n
        return self

    def columns_string(self) -> str:
        """Render the SELECT list with the primary key appended exactly once."""
        if not self.columns:
            return ALL_FIELDS_KEYWORD
        seen = set()
        out: List[str] = []
        for column in self.columns:
            if column == SALESFORCE_PK or column in seen:
                continue
            seen.add(column)
            out.append(column)
        out.append(SALESFORCE_PK)
        return ",".join(out)

    def __str__(self) -> str:
        parts = [f"SELECT {self.columns_string()} FROM {self.table}"]
        if self.predicates:
            parts.append("WHERE " + " AND ".join(f"{f} {op} {v}" for f, op, v in self.predicates))
        if self.order_by_field:
            parts.append(f"ORDER BY {self.order_by_field}")
        if self.limit_value:
            parts.append(f"LIMIT {self.limit_value}")
        return " ".join(parts)

    def __repr__(self) -> str:
        return f"SalesforceQuery({str(self)!r})"


def new_query(table: str, *columns: str) -> SalesforceQuery:
    return SalesforceQuery(table, *columns)
