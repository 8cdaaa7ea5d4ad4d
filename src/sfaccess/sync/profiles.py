from __future__ import annotations

from ..models import Profile
from ..pagination import PageToken
from ..reconcile import EdgeResult
from ..resources import (
    RESOURCE_TYPE_PROFILE,
    RESOURCE_TYPE_USER,
    Entitlement,
    Grant,
    Resource,
    ResourceId,
    assignment_entitlement,
    new_grant,
)
from .base import ResourceSyncer, SyncPage, translate_page

PROFILE_ASSIGNMENT_ENTITLEMENT = "assigned"


def profile_resource(profile: Profile) -> Resource:
    return Resource(ResourceId(RESOURCE_TYPE_PROFILE.id, profile.id), profile.name)


class ProfileSyncer(ResourceSyncer):
    """Profiles; revoking one downgrades the user instead of clearing it."""

    resource_type = RESOURCE_TYPE_PROFILE

    def list(self, token: PageToken) -> SyncPage[Resource]:
        return translate_page(self.client.get_profiles(token.token, token.size), profile_resource)

    def entitlements(self, resource: Resource, token: PageToken) -> SyncPage[Entitlement]:
        self.logger.debug(
            "Profiles.Entitlements display_name=%s id=%s", resource.display_name, resource.id.resource
        )
        return SyncPage(
            [
                assignment_entitlement(
                    resource,
                    PROFILE_ASSIGNMENT_ENTITLEMENT,
                    display_name=f"{resource.display_name} Profile",
                    description=f"Has the {resource.display_name} profile in Salesforce",
                    grantable_to=(RESOURCE_TYPE_USER,),
                )
            ]
        )

    def grants(self, resource: Resource, token: PageToken) -> SyncPage[Grant]:
        page = self.client.get_profile_assignments(resource.id.resource, token.token, token.size)
        return translate_page(
            page,
            lambda u: new_grant(
                resource, PROFILE_ASSIGNMENT_ENTITLEMENT, ResourceId(RESOURCE_TYPE_USER.id, u.id)
            ),
        )

    def grant(self, principal: Resource, entitlement: Entitlement) -> EdgeResult:
        return self.reconciler.grant_profile(principal.id, entitlement.resource.id.resource)

    def revoke(self, grant: Grant) -> EdgeResult:
        return self.reconciler.revoke_profile(grant.principal, grant.entitlement.resource.id.resource)
