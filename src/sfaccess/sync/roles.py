from __future__ import annotations

from ..models import Role
from ..pagination import PageToken
from ..reconcile import EdgeResult
from ..resources import (
    RESOURCE_TYPE_ROLE,
    RESOURCE_TYPE_USER,
    Entitlement,
    Grant,
    Resource,
    ResourceId,
    assignment_entitlement,
    new_grant,
)
from .base import ResourceSyncer, SyncPage, translate_page

ROLE_ASSIGNMENT_ENTITLEMENT = "assigned"


def role_resource(role: Role) -> Resource:
    return Resource(ResourceId(RESOURCE_TYPE_ROLE.id, role.id), role.name, {"role": {}})


class RoleSyncer(ResourceSyncer):
    resource_type = RESOURCE_TYPE_ROLE

    def list(self, token: PageToken) -> SyncPage[Resource]:
        return translate_page(self.client.get_user_roles(token.token, token.size), role_resource)

    def entitlements(self, resource: Resource, token: PageToken) -> SyncPage[Entitlement]:
        return SyncPage(
            [
                assignment_entitlement(
                    resource,
                    ROLE_ASSIGNMENT_ENTITLEMENT,
                    display_name=f"{resource.display_name} User Role",
                    description=f"Has the {resource.display_name} role in Salesforce",
                    grantable_to=(RESOURCE_TYPE_USER,),
                )
            ]
        )

    def grants(self, resource: Resource, token: PageToken) -> SyncPage[Grant]:
        page = self.client.get_role_assignments(resource.id.resource, token.token, token.size)
        return translate_page(
            page,
            lambda u: new_grant(
                resource, ROLE_ASSIGNMENT_ENTITLEMENT, ResourceId(RESOURCE_TYPE_USER.id, u.id)
            ),
        )

    def grant(self, principal: Resource, entitlement: Entitlement) -> EdgeResult:
        return self.reconciler.grant_role(principal.id, entitlement.resource.id.resource)

    def revoke(self, grant: Grant) -> EdgeResult:
        return self.reconciler.revoke_role(grant.principal, grant.entitlement.resource.id.resource)
