from __future__ import annotations

from ..models import PermissionSet
from ..pagination import PageToken
from ..ratelimit import with_rate_limit_annotations
from ..reconcile import EdgeResult
from ..resources import (
    RESOURCE_TYPE_PERMISSION_SET,
    RESOURCE_TYPE_USER,
    Entitlement,
    Grant,
    Resource,
    ResourceId,
    assignment_entitlement,
    new_grant,
)
from .base import ResourceSyncer, SyncPage, translate_page

PERMISSION_SET_ASSIGNMENT_ENTITLEMENT = "assigned"


def permission_set_resource(permission_set: PermissionSet) -> Resource:
    return Resource(
        ResourceId(RESOURCE_TYPE_PERMISSION_SET.id, permission_set.id),
        permission_set.display_name,
    )


class PermissionSetSyncer(ResourceSyncer):
    resource_type = RESOURCE_TYPE_PERMISSION_SET

    def list(self, token: PageToken) -> SyncPage[Resource]:
        return translate_page(
            self.client.get_permission_sets(token.token, token.size), permission_set_resource
        )

    def entitlements(self, resource: Resource, token: PageToken) -> SyncPage[Entitlement]:
        return SyncPage(
            [
                assignment_entitlement(
                    resource,
                    PERMISSION_SET_ASSIGNMENT_ENTITLEMENT,
                    display_name=f"{resource.display_name} Permission Set",
                    description=f"Has the {resource.display_name} permission set in Salesforce",
                    grantable_to=(RESOURCE_TYPE_USER,),
                )
            ]
        )

    def grants(self, resource: Resource, token: PageToken) -> SyncPage[Grant]:
        page = self.client.get_permission_set_assignments(
            resource.id.resource, token.token, token.size
        )
        grants = []
        for assignment in page.items:
            if not assignment.is_active:
                self.logger.debug(
                    "Skipping inactive permission set assignment id=%s user_id=%s",
                    assignment.id,
                    assignment.user_id,
                )
                continue
            grants.append(
                new_grant(
                    resource,
                    PERMISSION_SET_ASSIGNMENT_ENTITLEMENT,
                    ResourceId(RESOURCE_TYPE_USER.id, assignment.user_id),
                )
            )
        return SyncPage(grants, page.next_token, with_rate_limit_annotations(page.rate_limit))

    def grant(self, principal: Resource, entitlement: Entitlement) -> EdgeResult:
        return self.reconciler.grant_permission_set(principal.id, entitlement.resource.id.resource)

    def revoke(self, grant: Grant) -> EdgeResult:
        return self.reconciler.revoke_permission_set(
            grant.principal, grant.entitlement.resource.id.resource
        )
