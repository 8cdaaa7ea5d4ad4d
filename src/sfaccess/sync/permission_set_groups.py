from __future__ import annotations

from ..models import PermissionSetGroup
from ..pagination import PageToken
from ..reconcile import EdgeResult
from ..resources import (
    RESOURCE_TYPE_PERMISSION_SET,
    RESOURCE_TYPE_PERMISSION_SET_GROUP,
    Entitlement,
    Grant,
    Resource,
    ResourceId,
    assignment_entitlement,
    new_grant,
)
from .base import ResourceSyncer, SyncPage, translate_page

PERMISSION_SET_GROUP_ASSIGNMENT_ENTITLEMENT = "assigned"


def permission_set_group_resource(group: PermissionSetGroup) -> Resource:
    return Resource(
        ResourceId(RESOURCE_TYPE_PERMISSION_SET_GROUP.id, group.id),
        group.master_label,
    )


class PermissionSetGroupSyncer(ResourceSyncer):
    """Permission set groups; their members are permission sets, not users."""

    resource_type = RESOURCE_TYPE_PERMISSION_SET_GROUP

    def list(self, token: PageToken) -> SyncPage[Resource]:
        return translate_page(
            self.client.get_permission_set_groups(token.token, token.size),
            permission_set_group_resource,
        )

    def entitlements(self, resource: Resource, token: PageToken) -> SyncPage[Entitlement]:
        return SyncPage(
            [
                assignment_entitlement(
                    resource,
                    PERMISSION_SET_GROUP_ASSIGNMENT_ENTITLEMENT,
                    display_name=f"{resource.display_name} Permission Set Group",
                    description=f"Has the {resource.display_name} permission set in Salesforce",
                    grantable_to=(RESOURCE_TYPE_PERMISSION_SET,),
                )
            ]
        )

    def grants(self, resource: Resource, token: PageToken) -> SyncPage[Grant]:
        page = self.client.get_permission_set_group_components(
            resource.id.resource, token.token, token.size
        )
        return translate_page(
            page,
            lambda c: new_grant(
                resource,
                PERMISSION_SET_GROUP_ASSIGNMENT_ENTITLEMENT,
                ResourceId(RESOURCE_TYPE_PERMISSION_SET.id, c.permission_set_id),
            ),
        )

    def grant(self, principal: Resource, entitlement: Entitlement) -> EdgeResult:
        return self.reconciler.grant_permission_set_group_component(
            principal.id, entitlement.resource.id.resource
        )

    def revoke(self, grant: Grant) -> EdgeResult:
        return self.reconciler.revoke_permission_set_group_component(
            grant.principal, grant.entitlement.resource.id.resource
        )
