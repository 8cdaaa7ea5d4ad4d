from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from ..exceptions import InvalidAccountRequestError
from ..models import DEFAULT_TIME_ZONE, SalesforceUser, UserCreateRequest, UserLogin
from ..pagination import PageToken
from ..ratelimit import with_rate_limit_annotations
from ..resources import (
    RESOURCE_TYPE_USER,
    USER_STATUS_DISABLED,
    USER_STATUS_ENABLED,
    Resource,
    ResourceId,
)
from .base import ResourceSyncer, SyncPage

_logger = logging.getLogger(__name__)

# Account-creation profile key -> UserCreateRequest attribute
ACCOUNT_FIELDS = {
    "email": "email",
    "alias": "alias",
    "first_name": "first_name",
    "last_name": "last_name",
    "profileId": "profile_id",
    "timezone": "time_zone_sid",
}


def user_resource(
    user: SalesforceUser,
    user_login: Optional[UserLogin] = None,
    use_username_for_email: bool = False,
) -> Resource:
    """Render a user; a frozen login disables an otherwise active user."""
    display_name = f"{user.first_name} {user.last_name}"
    status = USER_STATUS_DISABLED
    if user.is_active and not (user_login is not None and user_login.is_frozen):
        status = USER_STATUS_ENABLED

    email = user.username if use_username_for_email else user.email
    trait = {
        "profile": {
            "full_name": display_name,
            "username": user.username,
            "account_type": user.user_type,
            "email": email,
            "id": user.id,
        },
        "emails": [{"address": email, "primary": True}],
        "status": status,
        "login": user.username,
    }
    if user.last_login_date is not None:
        trait["last_login"] = user.last_login_date
    return Resource(ResourceId(RESOURCE_TYPE_USER.id, user.id), display_name, {"user": trait})


def account_request(profile: Mapping[str, Any]) -> UserCreateRequest:
    values = {}
    for key, attr in ACCOUNT_FIELDS.items():
        value = profile.get(key)
        if value is None and key == "timezone":
            value = DEFAULT_TIME_ZONE
        if not isinstance(value, str):
            raise InvalidAccountRequestError(f"missing {key} in account info")
        values[attr] = value
    return UserCreateRequest(**values)


class UserSyncer(ResourceSyncer):
    resource_type = RESOURCE_TYPE_USER

    def __init__(self, client, reconciler=None, *, use_username_for_email: bool = False, logger=None):
        super().__init__(client, reconciler, logger=logger)
        self.use_username_for_email = use_username_for_email

    def list(self, token: PageToken) -> SyncPage[Resource]:
        page = self.client.get_users(token.token, token.size)
        resources = []
        for user in page.items:
            # One failed enrichment aborts the whole page.
            login = self.client.get_user_login(user.id)
            resources.append(user_resource(user, login, self.use_username_for_email))
        return SyncPage(resources, page.next_token, with_rate_limit_annotations(page.rate_limit))

    def create_account(self, profile: Mapping[str, Any]) -> Resource:
        """Create (or reactivate) the account described by ``profile``.

        After the write the user is read back by email with retries, a
        password-reset email is sent, and the rendered user is returned.
        """
        request = account_request(profile)
        request.validate()

        if self.client.user_exists(request.email):
            existing = self.client.get_user_by_email(request.email)
            if not existing.is_active:
                self.client.set_user_active_state(existing.id, True)
                self.logger.info(
                    "User is inactive; activating user email=%s user_id=%s",
                    request.email,
                    existing.id,
                )
            else:
                self.logger.info("User already exists, skipping user creation email=%s", request.email)
        else:
            self.client.create_user(request)

        user = self.client.get_user_by_email_with_retry(request.email)

        self.logger.info("Sending reset password email email=%s", user.email)
        self.client.send_reset_password_email(user.id)
        self.logger.debug("Reset password email sent email=%s user_id=%s", user.email, user.id)

        login = self.client.get_user_login(user.id)
        return user_resource(user, login, self.use_username_for_email)
