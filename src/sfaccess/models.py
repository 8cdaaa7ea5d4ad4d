from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parseaddr
from typing import Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .exceptions import FieldTypeError, InvalidAccountRequestError, InvalidPrincipalError
from .objects import Record
from .query import SALESFORCE_PK

_logger = logging.getLogger(__name__)

SALESFORCE_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%f%z"

# Portal, community and guest users are not synced.
USER_TYPES_TO_SKIP = frozenset(
    {
        "CspLitePortal",
        "CustomerSuccess",
        "PowerCustomerSuccess",
        "CsnOnly",
        "Guest",
    }
)
STANDARD_USER_TYPE = "Standard"

GROUP_TYPE_ROLE = "Role"
GROUP_TYPE_ROLE_AND_SUBORDINATES = "RoleAndSubordinates"
GROUP_TYPE_ORGANIZATION = "Organization"
ORGANIZATION_GROUP_NAME = "All Internal Users"


# ----------------------------------------------------------------------
# Field helpers
# ----------------------------------------------------------------------
def parse_salesforce_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse ``2024-01-31T09:15:00.000+0000`` into an aware UTC datetime."""
    if not value:
        return None
    try:
        parsed = datetime.strptime(value, SALESFORCE_DATETIME_FORMAT)
    except ValueError as e:
        raise FieldTypeError(f"unexpected Salesforce datetime {value!r}") from e
    return parsed.astimezone(timezone.utc)


def get_bool_field(record: Record, field: str) -> bool:
    """Read a checkbox field that may arrive as a bool, ``"true"`` or ``1``."""
    value = record.field(field)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value == "true"
    if isinstance(value, (int, float)):
        return value == 1
    raise FieldTypeError(f"unexpected field {field} type: {value!r}")


def should_skip_user_type(record: Record, logger: Optional[logging.Logger] = None) -> bool:
    user_type = record.string_field("UserType")
    if user_type == "":
        # Salesforce occasionally returns users without a type.
        (logger or _logger).error("User type is empty id=%s", record.string_field(SALESFORCE_PK))
        return True
    return user_type in USER_TYPES_TO_SKIP


# ----------------------------------------------------------------------
# Principals
# ----------------------------------------------------------------------
class PrincipalKind(enum.Enum):
    USER = "user"
    GROUP = "group"


USER_ID_PREFIX = "005"
GROUP_ID_PREFIX = "00G"

# Salesforce key prefixes. This is tied to Salesforce's id encoding.
PRINCIPAL_ID_PREFIXES: Dict[str, PrincipalKind] = {
    USER_ID_PREFIX: PrincipalKind.USER,
    GROUP_ID_PREFIX: PrincipalKind.GROUP,
}


def classify_principal(principal_id: str) -> PrincipalKind:
    kind = PRINCIPAL_ID_PREFIXES.get((principal_id or "")[:3])
    if kind is None:
        raise InvalidPrincipalError(f"invalid principal id {principal_id}")
    return kind


# ----------------------------------------------------------------------
# Entities
# ----------------------------------------------------------------------
@dataclass
class SalesforceUser:
    id: str
    email: str = ""
    username: str = ""
    first_name: str = ""
    last_name: str = ""
    user_type: str = ""
    is_active: bool = False
    profile_id: str = ""
    user_role_id: str = ""
    last_login_date: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Record) -> "SalesforceUser":
        return cls(
            id=record.id,
            email=record.string_field("Email"),
            username=record.string_field("Username"),
            first_name=record.string_field("FirstName"),
            last_name=record.string_field("LastName"),
            user_type=record.string_field("UserType"),
            is_active=get_bool_field(record, "IsActive"),
            profile_id=record.string_field("ProfileId"),
            user_role_id=record.string_field("UserRoleId"),
            last_login_date=parse_salesforce_datetime(record.string_field("LastLoginDate")),
        )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class Company:
    name: str = ""


@dataclass
class Info:
    user: SalesforceUser
    company: Company


@dataclass
class UserLogin:
    id: str
    user_id: str
    is_frozen: bool = False
    is_password_locked: bool = False

    @classmethod
    def from_record(cls, record: Record) -> "UserLogin":
        return cls(
            id=record.id,
            user_id=record.string_field("UserId"),
            is_frozen=get_bool_field(record, "IsFrozen"),
            is_password_locked=get_bool_field(record, "IsPasswordLocked"),
        )


@dataclass
class Group:
    id: str
    name: str = ""
    type: str = ""
    related_id: str = ""
    developer_name: str = ""

    @classmethod
    def from_record(cls, record: Record) -> "Group":
        # Role groups have no name of their own; use the related role's.
        related = record.related("Related")
        name = related.string_field("Name") if related is not None else ""
        return cls(
            id=record.id,
            name=name or record.string_field("Name"),
            type=record.string_field("Type"),
            related_id=record.string_field("RelatedId"),
            developer_name=record.string_field("DeveloperName"),
        )

    @property
    def display_name(self) -> str:
        if self.type == GROUP_TYPE_ROLE_AND_SUBORDINATES:
            return f"{self.name} (role and subordinates)"
        if self.type == GROUP_TYPE_ROLE:
            return f"{self.name} (role)"
        if self.type == GROUP_TYPE_ORGANIZATION:
            return ORGANIZATION_GROUP_NAME
        return self.name


@dataclass
class GroupMembership:
    id: str
    group_id: str
    principal_id: str
    principal_kind: PrincipalKind


@dataclass
class Role:
    id: str
    name: str = ""

    @classmethod
    def from_record(cls, record: Record) -> "Role":
        return cls(id=record.id, name=record.string_field("Name"))


@dataclass
class Profile:
    id: str
    name: str = ""
    user_license_id: str = ""

    @classmethod
    def from_record(cls, record: Record) -> "Profile":
        return cls(
            id=record.id,
            name=record.string_field("Name"),
            user_license_id=record.string_field("UserLicenseId"),
        )


@dataclass
class UserLicense:
    id: str
    name: str = ""
    license_definition_key: str = ""
    status: str = ""

    @classmethod
    def from_record(cls, record: Record) -> "UserLicense":
        return cls(
            id=record.id,
            name=record.string_field("Name"),
            license_definition_key=record.string_field("LicenseDefinitionKey"),
            status=record.string_field("Status"),
        )


@dataclass
class PermissionSet:
    id: str
    name: str = ""
    label: str = ""
    type: str = ""
    profile_id: str = ""

    @classmethod
    def from_record(cls, record: Record) -> "PermissionSet":
        # Profile-owned permission sets carry a generated name; prefer the profile's.
        profile = record.related("Profile")
        name = profile.string_field("Name") if profile is not None else ""
        return cls(
            id=record.id,
            name=name or record.string_field("Name"),
            label=record.string_field("Label"),
            type=record.string_field("Type"),
            profile_id=record.string_field("ProfileId"),
        )

    @property
    def display_name(self) -> str:
        return f"{self.type} - {self.name}"


@dataclass
class PermissionSetAssignment:
    id: str
    user_id: str
    permission_set_id: str
    is_active: bool = False

    @classmethod
    def from_record(cls, record: Record) -> "PermissionSetAssignment":
        return cls(
            id=record.id,
            user_id=record.string_field("AssigneeId"),
            permission_set_id=record.string_field("PermissionSetId"),
            is_active=get_bool_field(record, "IsActive"),
        )


@dataclass
class PermissionSetGroup:
    id: str
    developer_name: str = ""
    master_label: str = ""
    description: str = ""
    language: str = ""
    namespace_prefix: str = ""
    has_activation_required: bool = False
    is_deleted: bool = False

    @classmethod
    def from_record(cls, record: Record) -> "PermissionSetGroup":
        return cls(
            id=record.id,
            developer_name=record.string_field("DeveloperName"),
            master_label=record.string_field("MasterLabel"),
            description=record.string_field("Description"),
            language=record.string_field("Language"),
            namespace_prefix=record.string_field("NamespacePrefix"),
            has_activation_required=get_bool_field(record, "HasActivationRequired"),
            is_deleted=get_bool_field(record, "IsDeleted"),
        )


@dataclass
class PermissionSetGroupComponent:
    id: str
    permission_set_group_id: str
    permission_set_id: str
    is_deleted: bool = False

    @classmethod
    def from_record(cls, record: Record) -> "PermissionSetGroupComponent":
        return cls(
            id=record.id,
            permission_set_group_id=record.string_field("PermissionSetGroupId"),
            permission_set_id=record.string_field("PermissionSetId"),
            is_deleted=get_bool_field(record, "IsDeleted"),
        )


@dataclass
class ConnectedApplication:
    id: str
    name: str = ""
    created_by_id: str = ""
    created_date: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Record) -> "ConnectedApplication":
        return cls(
            id=record.id,
            name=record.string_field("Name"),
            created_by_id=record.string_field("CreatedById"),
            created_date=parse_salesforce_datetime(record.string_field("CreatedDate")),
        )


# ----------------------------------------------------------------------
# Provisioning
# ----------------------------------------------------------------------
DEFAULT_TIME_ZONE = "America/New_York"


@dataclass
class UserCreateRequest:
    email: str
    profile_id: str
    last_name: str
    alias: str = ""
    first_name: str = ""
    time_zone_sid: str = DEFAULT_TIME_ZONE

    def validate(self) -> None:
        """Reject malformed email addresses and unknown IANA time zones."""
        _, address = parseaddr(self.email or "")
        if not address or "@" not in address or address != self.email.strip():
            raise InvalidAccountRequestError(f"invalid user email: {self.email!r}")
        try:
            ZoneInfo(self.time_zone_sid)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise InvalidAccountRequestError(f"invalid timezone: {self.time_zone_sid!r}") from e

    def to_fields(self) -> Dict[str, object]:
        """Field values for the ``User`` insert; the email doubles as username."""
        return {
            "Username": self.email,
            "Alias": self.alias,
            "Email": self.email,
            "LastName": self.last_name,
            "FirstName": self.first_name,
            "TimeZoneSidKey": self.time_zone_sid,
            "ProfileId": self.profile_id,
            "EmailEncodingKey": "UTF-8",
            "LocaleSidKey": "en_US",
            "LanguageLocaleKey": "en_US",
            "ContactId": None,
        }
