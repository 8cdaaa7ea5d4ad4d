from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from requests.adapters import BaseAdapter

from ..client import SalesforceClient
from ..config import SFConfig
from ..exceptions import SalesforceError, UnsupportedResourceType
from ..models import DEFAULT_TIME_ZONE, Info
from ..ratelimit import Annotations, with_rate_limit_annotations
from ..reconcile import GrantReconciler
from .base import ResourceSyncer
from .connected_apps import ConnectedApplicationSyncer
from .groups import GroupSyncer
from .permission_set_groups import PermissionSetGroupSyncer
from .permission_sets import PermissionSetSyncer
from .profiles import ProfileSyncer
from .roles import RoleSyncer
from .users import UserSyncer

_logger = logging.getLogger(__name__)

UPDATE_USER_STATUS_ACTION = "update_user_status"


def _string_field(display_name: str, description: str, placeholder: str, order: int, **extra):
    return {
        "display_name": display_name,
        "required": True,
        "description": description,
        "type": "string",
        "placeholder": placeholder,
        "order": order,
        **extra,
    }


ACCOUNT_CREATION_SCHEMA: Dict[str, Dict[str, Any]] = {
    "email": _string_field("Email", "This email will be used as the login for the user.", "Email", 1),
    "profileId": _string_field("Profile ID", "Salesforce Profile ID", "ProfileId", 2),
    "alias": _string_field("Alias", "User Alias", "Alias", 3),
    "last_name": _string_field("Last Name", "User last name", "LastName", 4),
    "first_name": _string_field("First Name", "User first name", "FirstName", 5),
    "timezone": _string_field(
        "Time Zone", "User time zone", "TimeZone", 6, default_value=DEFAULT_TIME_ZONE
    ),
}


class SalesforceConnector:
    """The set of syncers for one Salesforce org, plus validation and actions."""

    def __init__(
        self,
        client: SalesforceClient,
        *,
        use_username_for_email: bool = False,
        sync_connected_apps: bool = False,
        license_to_least_privileged_profile: Optional[Mapping[str, str]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.logger = logger or _logger
        self.use_username_for_email = use_username_for_email
        self.sync_connected_apps = sync_connected_apps
        self.reconciler = GrantReconciler(
            client, license_to_least_privileged_profile, logger=self.logger
        )

    @classmethod
    def from_config(
        cls,
        cfg: SFConfig,
        *,
        transport: Optional[BaseAdapter] = None,
        cancel_event: Optional[threading.Event] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "SalesforceConnector":
        (logger or _logger).debug("New Salesforce connector %s", cfg.describe())
        client = SalesforceClient.from_config(
            cfg, transport=transport, cancel_event=cancel_event, logger=logger
        )
        return cls(
            client,
            use_username_for_email=cfg.use_username_for_email,
            sync_connected_apps=cfg.sync_connected_apps,
            license_to_least_privileged_profile=cfg.license_to_least_privileged_profile,
            logger=logger,
        )

    def resource_syncers(self) -> List[ResourceSyncer]:
        kwargs = {"logger": self.logger}
        syncers: List[ResourceSyncer] = [
            UserSyncer(
                self.client,
                self.reconciler,
                use_username_for_email=self.use_username_for_email,
                **kwargs,
            ),
            GroupSyncer(self.client, self.reconciler, **kwargs),
            PermissionSetSyncer(self.client, self.reconciler, **kwargs),
            ProfileSyncer(self.client, self.reconciler, **kwargs),
            RoleSyncer(self.client, self.reconciler, **kwargs),
            PermissionSetGroupSyncer(self.client, self.reconciler, **kwargs),
        ]
        if self.sync_connected_apps:
            syncers.append(ConnectedApplicationSyncer(self.client, self.reconciler, **kwargs))
        return syncers

    def syncer(self, resource_type: str) -> ResourceSyncer:
        for candidate in self.resource_syncers():
            if candidate.resource_type.id == resource_type:
                return candidate
        raise UnsupportedResourceType(resource_type, "sync")

    def validate(self) -> Tuple[Info, Annotations]:
        """Check the credentials by reading the authenticated user.

        Returns the identity that was read and the rate limit of that call.
        """
        info = self.client.get_info()
        self.logger.info(
            "Validated Salesforce connection user=%s company=%s", info.user.email, info.company.name
        )
        return info, with_rate_limit_annotations(self.client.last_rate_limit)

    def metadata(self) -> Dict[str, Any]:
        return {
            "display_name": "Salesforce",
            "description": "Connector syncing Salesforce users",
            "account_creation_schema": ACCOUNT_CREATION_SCHEMA,
        }

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    def global_actions(self) -> Dict[str, Callable[[Mapping[str, Any]], Tuple[Dict[str, Any], Annotations]]]:
        return {UPDATE_USER_STATUS_ACTION: self.update_user_status}

    def update_user_status(self, args: Mapping[str, Any]) -> Tuple[Dict[str, Any], Annotations]:
        user_id = args.get("resource_id")
        if not isinstance(user_id, str) or not user_id:
            raise ValueError("missing resource ID")
        is_active = args.get("is_active")
        if not isinstance(is_active, bool):
            raise ValueError("missing is_active")

        try:
            result = self.reconciler.set_user_active(user_id, is_active)
        except SalesforceError:
            self.logger.error(
                "Failed to update user status resource_id=%s is_active=%s", user_id, is_active
            )
            raise
        return {"success": True}, result.annotations


def new_connector(cfg: Optional[SFConfig] = None, **kwargs: Any) -> SalesforceConnector:
    return SalesforceConnector.from_config(cfg or SFConfig.from_env(), **kwargs)
