"""Typed Salesforce identity operations on top of :class:`ObjectStore`.

Listings return :class:`~sfaccess.pagination.Page` objects whose items are the
dataclasses of :mod:`sfaccess.models`; mutations return the rate-limit
descriptor observed on the write.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, TypeVar

from requests.adapters import BaseAdapter

from .api import SalesforceAPI
from .config import SFConfig
from .exceptions import InvalidAccountRequestError, InvalidPrincipalError, NotFoundError
from .models import (
    STANDARD_USER_TYPE,
    Company,
    ConnectedApplication,
    Group,
    GroupMembership,
    Info,
    PermissionSet,
    PermissionSetAssignment,
    PermissionSetGroup,
    PermissionSetGroupComponent,
    Profile,
    Role,
    SalesforceUser,
    UserCreateRequest,
    UserLicense,
    UserLogin,
    classify_principal,
    get_bool_field,
    should_skip_user_type,
)
from .objects import ObjectStore, Record
from .pagination import Page
from .query import (
    TABLE_CONNECTED_APPS,
    TABLE_GROUP_MEMBERSHIPS,
    TABLE_GROUPS,
    TABLE_PERMISSION_ASSIGNMENTS,
    TABLE_PERMISSION_SET_GROUP_COMPONENTS,
    TABLE_PERMISSION_SET_GROUPS,
    TABLE_PERMISSION_SETS,
    TABLE_PROFILES,
    TABLE_ROLES,
    TABLE_USER_LICENSES,
    TABLE_USER_LOGINS,
    TABLE_USERS,
    new_query,
)
from .ratelimit import RateLimitDescription
from .retry import DEFAULT_ATTEMPTS, DEFAULT_BASE_DELAY, retry_not_found

_logger = logging.getLogger(__name__)

INFO_PATH = "/chatter/users/me"
RESET_PASSWORD_PATH = "/sobjects/User/{user_id}/password"

T = TypeVar("T")


def _map_page(page: Page[Record], convert: Callable[[Record], Optional[T]]) -> Page[T]:
    items = []
    for record in page.items:
        item = convert(record)
        if item is not None:
            items.append(item)
    return Page(items, page.next_token, page.rate_limit)


class SalesforceClient(ObjectStore):
    """Users, groups, roles, profiles, permission sets and their assignments."""

    def __init__(
        self,
        api: SalesforceAPI,
        *,
        page_size: Optional[int] = None,
        sync_deactivated_users: bool = True,
        sync_non_standard_users: bool = False,
        retry_attempts: int = DEFAULT_ATTEMPTS,
        retry_base_delay: float = DEFAULT_BASE_DELAY,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(api, page_size=page_size, logger=logger)
        self.sync_deactivated_users = sync_deactivated_users
        self.sync_non_standard_users = sync_non_standard_users
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay

    @classmethod
    def from_config(
        cls,
        cfg: SFConfig,
        *,
        transport: Optional[BaseAdapter] = None,
        cancel_event: Optional[threading.Event] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "SalesforceClient":
        api = SalesforceAPI(cfg, transport=transport, cancel_event=cancel_event)
        return cls(
            api,
            page_size=cfg.page_size,
            sync_deactivated_users=cfg.sync_deactivated_users,
            sync_non_standard_users=cfg.sync_non_standard_users,
            logger=logger,
        )

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------
    def get_info(self) -> Info:
        """Return the authenticated user and their company."""
        payload = self.api.apex_rest("GET", self.api.data_path(INFO_PATH)) or {}
        return Info(
            user=SalesforceUser(
                id=payload.get("id", ""),
                email=payload.get("email", ""),
                first_name=payload.get("firstName", ""),
                last_name=payload.get("lastName", ""),
            ),
            company=Company(name=payload.get("companyName", "")),
        )

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def _user_query(self):
        q = new_query(TABLE_USERS)
        if not self.sync_non_standard_users:
            # Standard users hold full licenses; partner, portal and chatter
            # users are left out of the sync.
            q.where_eq("UserType", STANDARD_USER_TYPE)
        return q

    def _syncable_user(self, record: Record) -> Optional[SalesforceUser]:
        is_active = get_bool_field(record, "IsActive")
        if not self.sync_deactivated_users and not is_active:
            return None
        if should_skip_user_type(record, self.logger):
            return None
        return SalesforceUser.from_record(record)

    def get_users(self, cursor: str = "", page_size: Optional[int] = None) -> Page[SalesforceUser]:
        page = self.query(self._user_query(), cursor, page_size)
        return _map_page(page, self._syncable_user)

    def get_user(self, user_id: str) -> SalesforceUser:
        return SalesforceUser.from_record(
            self.get_single_object(new_query(TABLE_USERS).where_eq("Id", user_id))
        )

    def get_user_login(self, user_id: str) -> Optional[UserLogin]:
        """Freeze / lock state for ``user_id``; None when Salesforce has no row."""
        try:
            record = self.get_single_object(new_query(TABLE_USER_LOGINS).where_eq("UserId", user_id))
        except NotFoundError:
            return None
        return UserLogin.from_record(record)

    def get_user_by_email(self, email: str) -> SalesforceUser:
        """Look up a syncable user by email; NotFoundError when there is none.

        Non-standard users are considered here, so that an existing chatter
        user can be found and upgraded rather than duplicated.
        """
        if "'" in email or "\\" in email:
            raise InvalidAccountRequestError(f"invalid user email: {email!r}")
        page = self.query(new_query(TABLE_USERS).where_eq("Email", email))
        for record in page.items:
            if should_skip_user_type(record, self.logger):
                continue
            return SalesforceUser.from_record(record)
        raise NotFoundError(f"user with email {email} not found", rate_limit=page.rate_limit)

    def get_user_by_email_with_retry(self, email: str) -> SalesforceUser:
        """:meth:`get_user_by_email`, re-read while the new user is not yet visible."""
        return retry_not_found(
            lambda: self.get_user_by_email(email),
            operation="get user by email",
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            before_attempt=self.api.clear_caches,
            cancel_event=self.api.cancel_event,
        )

    def user_exists(self, email: str) -> bool:
        try:
            self.get_user_by_email(email)
        except NotFoundError:
            return False
        return True

    def create_user(self, request: UserCreateRequest) -> Optional[RateLimitDescription]:
        request.validate()
        return self.create_object(TABLE_USERS, request.to_fields())

    def send_reset_password_email(self, user_id: str) -> Optional[RateLimitDescription]:
        self.api.apex_rest("DELETE", self.api.data_path(RESET_PASSWORD_PATH.format(user_id=user_id)))
        return self.api.rate_limit

    def set_user_active_state(self, user_id: str, active: bool) -> Optional[RateLimitDescription]:
        return self.set_one_field(TABLE_USERS, user_id, "IsActive", bool(active))

    # ------------------------------------------------------------------
    # Roles and profiles
    # ------------------------------------------------------------------
    def get_user_roles(self, cursor: str = "", page_size: Optional[int] = None) -> Page[Role]:
        return _map_page(self.query(new_query(TABLE_ROLES), cursor, page_size), Role.from_record)

    def get_profiles(self, cursor: str = "", page_size: Optional[int] = None) -> Page[Profile]:
        return _map_page(
            self.query(new_query(TABLE_PROFILES), cursor, page_size), Profile.from_record
        )

    def get_profile_by_id(self, profile_id: str) -> Profile:
        return Profile.from_record(
            self.get_single_object(new_query(TABLE_PROFILES).where_eq("Id", profile_id))
        )

    def get_profile_by_name(self, name: str) -> Profile:
        return Profile.from_record(
            self.get_single_object(new_query(TABLE_PROFILES).where_eq("Name", name))
        )

    def get_user_license_by_id(self, license_id: str) -> UserLicense:
        return UserLicense.from_record(
            self.get_single_object(new_query(TABLE_USER_LICENSES).where_eq("Id", license_id))
        )

    def _assigned_users(
        self, field: str, value: str, cursor: str, page_size: Optional[int]
    ) -> Page[SalesforceUser]:
        q = new_query(TABLE_USERS).where_eq("UserType", STANDARD_USER_TYPE).where_eq(field, value)
        return _map_page(self.query(q, cursor, page_size), SalesforceUser.from_record)

    def get_profile_assignments(
        self, profile_id: str, cursor: str = "", page_size: Optional[int] = None
    ) -> Page[SalesforceUser]:
        return self._assigned_users("ProfileId", profile_id, cursor, page_size)

    def get_role_assignments(
        self, role_id: str, cursor: str = "", page_size: Optional[int] = None
    ) -> Page[SalesforceUser]:
        return self._assigned_users("UserRoleId", role_id, cursor, page_size)

    def add_user_to_profile(self, user_id: str, profile_id: str) -> Optional[RateLimitDescription]:
        return self.set_one_field(TABLE_USERS, user_id, "ProfileId", profile_id)

    # Same write as add_user_to_profile; named for the revoke path.
    set_new_user_profile = add_user_to_profile

    def add_user_to_role(self, user_id: str, role_id: str) -> Optional[RateLimitDescription]:
        return self.set_field(TABLE_USERS, user_id, "UserRoleId", role_id)

    def remove_user_from_role(self, user_id: str, role_id: str) -> Optional[RateLimitDescription]:
        return self.clear_field(TABLE_USERS, user_id, "UserRoleId", role_id)

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------
    def get_groups(self, cursor: str = "", page_size: Optional[int] = None) -> Page[Group]:
        return _map_page(self.query(new_query(TABLE_GROUPS), cursor, page_size), Group.from_record)

    def _membership(self, record: Record) -> Optional[GroupMembership]:
        principal_id = record.string_field("UserOrGroupId")
        try:
            kind = classify_principal(principal_id)
        except InvalidPrincipalError as e:
            self.logger.debug("Skipping group member record id=%s: %s", record.id, e)
            return None
        return GroupMembership(
            id=record.id,
            group_id=record.string_field("GroupId"),
            principal_id=principal_id,
            principal_kind=kind,
        )

    def get_group_memberships(
        self, group_id: str, cursor: str = "", page_size: Optional[int] = None
    ) -> Page[GroupMembership]:
        q = new_query(TABLE_GROUP_MEMBERSHIPS).where_eq("GroupId", group_id)
        return _map_page(self.query(q, cursor, page_size), self._membership)

    def find_group_membership(self, principal_id: str, group_id: str) -> Record:
        return self.get_single_object(
            new_query(TABLE_GROUP_MEMBERSHIPS)
            .where_eq("GroupId", group_id)
            .where_eq("UserOrGroupId", principal_id)
        )

    def add_user_to_group(self, principal_id: str, group_id: str) -> Optional[RateLimitDescription]:
        self.logger.debug("add-user-to-group user_id=%s group_id=%s", principal_id, group_id)
        return self.create_object(
            TABLE_GROUP_MEMBERSHIPS, {"GroupId": group_id, "UserOrGroupId": principal_id}
        )

    def remove_user_from_group(self, principal_id: str, group_id: str):
        """Delete the membership row; returns ``(removed, rate_limit)``."""
        try:
            found = self.find_group_membership(principal_id, group_id)
        except NotFoundError as e:
            return False, e.rate_limit
        return True, self.delete_object(TABLE_GROUP_MEMBERSHIPS, found.id)

    # ------------------------------------------------------------------
    # Permission sets
    # ------------------------------------------------------------------
    def get_permission_sets(
        self, cursor: str = "", page_size: Optional[int] = None
    ) -> Page[PermissionSet]:
        return _map_page(
            self.query(new_query(TABLE_PERMISSION_SETS), cursor, page_size),
            PermissionSet.from_record,
        )

    def get_permission_set_assignments(
        self, permission_set_id: str, cursor: str = "", page_size: Optional[int] = None
    ) -> Page[PermissionSetAssignment]:
        q = new_query(TABLE_PERMISSION_ASSIGNMENTS).where_eq("PermissionSetId", permission_set_id)
        return _map_page(self.query(q, cursor, page_size), PermissionSetAssignment.from_record)

    def find_permission_set_assignment(self, user_id: str, permission_set_id: str) -> Record:
        return self.get_single_object(
            new_query(TABLE_PERMISSION_ASSIGNMENTS)
            .where_eq("AssigneeId", user_id)
            .where_eq("PermissionSetId", permission_set_id)
        )

    def add_user_to_permission_set(
        self, user_id: str, permission_set_id: str
    ) -> Optional[RateLimitDescription]:
        return self.create_object(
            TABLE_PERMISSION_ASSIGNMENTS,
            {"AssigneeId": user_id, "PermissionSetId": permission_set_id},
        )

    def remove_user_from_permission_set(
        self, user_id: str, permission_set_id: str
    ) -> Optional[RateLimitDescription]:
        found = self.find_permission_set_assignment(user_id, permission_set_id)
        return self.delete_object(TABLE_PERMISSION_ASSIGNMENTS, found.id)

    # ------------------------------------------------------------------
    # Permission set groups
    # ------------------------------------------------------------------
    def get_permission_set_groups(
        self, cursor: str = "", page_size: Optional[int] = None
    ) -> Page[PermissionSetGroup]:
        return _map_page(
            self.query(new_query(TABLE_PERMISSION_SET_GROUPS), cursor, page_size),
            PermissionSetGroup.from_record,
        )

    def get_permission_set_group_components(
        self, permission_set_group_id: str, cursor: str = "", page_size: Optional[int] = None
    ) -> Page[PermissionSetGroupComponent]:
        q = new_query(TABLE_PERMISSION_SET_GROUP_COMPONENTS).where_eq(
            "PermissionSetGroupId", permission_set_group_id
        )
        return _map_page(self.query(q, cursor, page_size), PermissionSetGroupComponent.from_record)

    def get_one_permission_set_group_component(
        self, permission_set_group_id: str, permission_set_id: str
    ) -> Optional[PermissionSetGroupComponent]:
        """The component linking the two, None if absent; several matches are an error."""
        q = (
            new_query(TABLE_PERMISSION_SET_GROUP_COMPONENTS)
            .where_eq("PermissionSetGroupId", permission_set_group_id)
            .where_eq("PermissionSetId", permission_set_id)
        )
        try:
            record = self.get_single_object(q, strict=True)
        except NotFoundError:
            return None
        return PermissionSetGroupComponent.from_record(record)

    def create_permission_set_group_component(
        self, permission_set_group_id: str, permission_set_id: str
    ) -> Optional[RateLimitDescription]:
        return self.create_object(
            TABLE_PERMISSION_SET_GROUP_COMPONENTS,
            {"PermissionSetGroupId": permission_set_group_id, "PermissionSetId": permission_set_id},
        )

    def delete_permission_set_group_component(
        self, component_id: str
    ) -> Optional[RateLimitDescription]:
        return self.delete_object(TABLE_PERMISSION_SET_GROUP_COMPONENTS, component_id)

    # ------------------------------------------------------------------
    # Connected applications
    # ------------------------------------------------------------------
    def get_connected_applications(
        self, cursor: str = "", page_size: Optional[int] = None
    ) -> Page[ConnectedApplication]:
        return _map_page(
            self.query(new_query(TABLE_CONNECTED_APPS), cursor, page_size),
            ConnectedApplication.from_record,
        )
