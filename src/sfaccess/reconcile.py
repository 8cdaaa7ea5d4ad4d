"""Idempotent grant / revoke for every relationship kind.

Each kind is a two-state machine, Absent or Present. Moving an edge into the
state it is already in is reported as ALREADY_EXISTS / ALREADY_REVOKED rather
than raised, with one documented exception: group membership grants are not
checked first, a duplicate create is left to Salesforce.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .client import SalesforceClient
from .exceptions import (
    ConfigurationError,
    NotFoundError,
    PreconditionFailedError,
    UnsupportedResourceType,
)
from .query import TABLE_USERS
from .ratelimit import Annotations, RateLimitDescription, with_rate_limit_annotations
from .resources import (
    RESOURCE_TYPE_GROUP,
    RESOURCE_TYPE_PERMISSION_SET,
    RESOURCE_TYPE_USER,
    ResourceId,
)

_logger = logging.getLogger(__name__)


class EdgeOutcome(enum.Enum):
    GRANTED = "granted"
    REVOKED = "revoked"
    UPDATED = "updated"
    ALREADY_EXISTS = "already_exists"
    ALREADY_REVOKED = "already_revoked"


@dataclass(frozen=True)
class GrantAlreadyExists:
    """Annotation: the grant was present before the call."""


@dataclass(frozen=True)
class GrantAlreadyRevoked:
    """Annotation: the grant was absent before the call."""


@dataclass
class EdgeResult:
    outcome: EdgeOutcome
    annotations: Annotations = field(default_factory=Annotations)

    @property
    def changed(self) -> bool:
        return self.outcome not in (EdgeOutcome.ALREADY_EXISTS, EdgeOutcome.ALREADY_REVOKED)


def _result(outcome: EdgeOutcome, rate_limit: Optional[RateLimitDescription]) -> EdgeResult:
    annotations = with_rate_limit_annotations(rate_limit)
    if outcome is EdgeOutcome.ALREADY_EXISTS:
        annotations.append(GrantAlreadyExists())
    elif outcome is EdgeOutcome.ALREADY_REVOKED:
        annotations.append(GrantAlreadyRevoked())
    return EdgeResult(outcome, annotations)


def _require_type(principal: ResourceId, operation: str, *allowed: str) -> None:
    if principal.resource_type not in allowed:
        _logger.warning(
            "%s: unsupported principal principal_type=%s principal_id=%s",
            operation,
            principal.resource_type,
            principal.resource,
        )
        raise UnsupportedResourceType(principal.resource_type, operation)


class GrantReconciler:
    """Create / find / delete protocol over the six relationship kinds."""

    def __init__(
        self,
        client: SalesforceClient,
        license_to_least_privileged_profile: Optional[Mapping[str, str]] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.license_to_least_privileged_profile = dict(license_to_least_privileged_profile or {})
        self.logger = logger or _logger

    # ------------------------------------------------------------------
    # Group membership
    # ------------------------------------------------------------------
    def grant_group_membership(self, principal: ResourceId, group_id: str) -> EdgeResult:
        _require_type(
            principal, "grant group membership", RESOURCE_TYPE_USER.id, RESOURCE_TYPE_GROUP.id
        )
        rl = self.client.add_user_to_group(principal.resource, group_id)
        return _result(EdgeOutcome.GRANTED, rl)

    def revoke_group_membership(self, principal: ResourceId, group_id: str) -> EdgeResult:
        removed, rl = self.client.remove_user_from_group(principal.resource, group_id)
        if not removed:
            self.logger.info(
                "Group membership already absent principal_id=%s group_id=%s",
                principal.resource,
                group_id,
            )
            return _result(EdgeOutcome.ALREADY_REVOKED, rl)
        return _result(EdgeOutcome.REVOKED, rl)

    # ------------------------------------------------------------------
    # Permission set assignment
    # ------------------------------------------------------------------
    def grant_permission_set(self, principal: ResourceId, permission_set_id: str) -> EdgeResult:
        _require_type(principal, "grant permission set", RESOURCE_TYPE_USER.id)
        try:
            self.client.find_permission_set_assignment(principal.resource, permission_set_id)
        except NotFoundError:
            rl = self.client.add_user_to_permission_set(principal.resource, permission_set_id)
            return _result(EdgeOutcome.GRANTED, rl)
        return _result(EdgeOutcome.ALREADY_EXISTS, self.client.last_rate_limit)

    def revoke_permission_set(self, principal: ResourceId, permission_set_id: str) -> EdgeResult:
        try:
            rl = self.client.remove_user_from_permission_set(principal.resource, permission_set_id)
        except NotFoundError as e:
            return _result(EdgeOutcome.ALREADY_REVOKED, e.rate_limit)
        return _result(EdgeOutcome.REVOKED, rl)

    # ------------------------------------------------------------------
    # Permission set group component
    # ------------------------------------------------------------------
    # Here the permission set is the principal and the group is the target.
    def grant_permission_set_group_component(
        self, principal: ResourceId, permission_set_group_id: str
    ) -> EdgeResult:
        _require_type(principal, "grant permission set group", RESOURCE_TYPE_PERMISSION_SET.id)
        existing = self.client.get_one_permission_set_group_component(
            permission_set_group_id, principal.resource
        )
        if existing is not None:
            return _result(EdgeOutcome.ALREADY_EXISTS, self.client.last_rate_limit)
        rl = self.client.create_permission_set_group_component(
            permission_set_group_id, principal.resource
        )
        return _result(EdgeOutcome.GRANTED, rl)

    def revoke_permission_set_group_component(
        self, principal: ResourceId, permission_set_group_id: str
    ) -> EdgeResult:
        _require_type(principal, "revoke permission set group", RESOURCE_TYPE_PERMISSION_SET.id)
        existing = self.client.get_one_permission_set_group_component(
            permission_set_group_id, principal.resource
        )
        if existing is None:
            return _result(EdgeOutcome.ALREADY_REVOKED, self.client.last_rate_limit)
        rl = self.client.delete_permission_set_group_component(existing.id)
        return _result(EdgeOutcome.REVOKED, rl)

    # ------------------------------------------------------------------
    # Role assignment
    # ------------------------------------------------------------------
    def grant_role(self, principal: ResourceId, role_id: str) -> EdgeResult:
        _require_type(principal, "grant role", RESOURCE_TYPE_USER.id)
        user = self.client.get_one(TABLE_USERS, principal.resource)
        if user.string_field("UserRoleId") == role_id:
            return _result(EdgeOutcome.ALREADY_EXISTS, self.client.last_rate_limit)
        rl = self.client.add_user_to_role(principal.resource, role_id)
        return _result(EdgeOutcome.GRANTED, rl)

    def revoke_role(self, principal: ResourceId, role_id: str) -> EdgeResult:
        try:
            rl = self.client.remove_user_from_role(principal.resource, role_id)
        except PreconditionFailedError as e:
            self.logger.info(
                "Role no longer assigned user_id=%s role_id=%s current=%s",
                principal.resource,
                role_id,
                e.actual or "<none>",
            )
            return _result(EdgeOutcome.ALREADY_REVOKED, e.rate_limit)
        return _result(EdgeOutcome.REVOKED, rl)

    # ------------------------------------------------------------------
    # Profile assignment
    # ------------------------------------------------------------------
    def grant_profile(self, principal: ResourceId, profile_id: str) -> EdgeResult:
        _require_type(principal, "grant profile", RESOURCE_TYPE_USER.id)
        rl = self.client.add_user_to_profile(principal.resource, profile_id)
        return _result(EdgeOutcome.GRANTED, rl)

    def revoke_profile(self, principal: ResourceId, profile_id: str) -> EdgeResult:
        """Move the user onto the least privileged profile for the same license.

        A user always has exactly one profile, so the revoked profile is
        replaced, never cleared.
        """
        user = self.client.get_one(TABLE_USERS, principal.resource)
        if user.string_field("ProfileId") != profile_id:
            return _result(EdgeOutcome.ALREADY_REVOKED, self.client.last_rate_limit)

        profile = self.client.get_profile_by_id(profile_id)
        if not profile.user_license_id:
            raise NotFoundError(f"user license not found for profile {profile_id}")
        try:
            user_license = self.client.get_user_license_by_id(profile.user_license_id)
        except NotFoundError as e:
            raise NotFoundError(
                f"user license {profile.user_license_id} not found for profile {profile_id}",
                rate_limit=e.rate_limit,
            ) from e

        fallback_name = self.license_to_least_privileged_profile.get(user_license.name)
        if fallback_name is None:
            raise ConfigurationError(
                f"no least privileged profile found for license {user_license.name}. "
                "Please add a mapping in the connector configuration"
            )

        try:
            fallback = self.client.get_profile_by_name(fallback_name)
        except NotFoundError as e:
            raise NotFoundError(
                f"least privileged profile {fallback_name!r} not found", rate_limit=e.rate_limit
            ) from e

        self.logger.debug(
            "Setting user's profile to the least privileged profile principal_id=%s "
            "least_privileged_profile_id=%s user_license_name=%s least_privileged_profile_name=%s",
            principal.resource,
            fallback.id,
            user_license.name,
            fallback_name,
        )
        rl = self.client.set_new_user_profile(principal.resource, fallback.id)
        return _result(EdgeOutcome.REVOKED, rl)

    # ------------------------------------------------------------------
    # User activation
    # ------------------------------------------------------------------
    def set_user_active(self, user_id: str, active: bool) -> EdgeResult:
        rl = self.client.set_user_active_state(user_id, active)
        return _result(EdgeOutcome.UPDATED, rl)
