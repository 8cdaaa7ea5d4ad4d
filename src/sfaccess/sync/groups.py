from __future__ import annotations

from ..models import Group, PrincipalKind
from ..pagination import PageToken
from ..reconcile import EdgeResult
from ..resources import (
    RESOURCE_TYPE_GROUP,
    RESOURCE_TYPE_USER,
    Entitlement,
    Grant,
    Resource,
    ResourceId,
    assignment_entitlement,
    new_grant,
)
from .base import ResourceSyncer, SyncPage, translate_page

GROUP_MEMBER_ENTITLEMENT = "member"

_PRINCIPAL_TYPES = {
    PrincipalKind.USER: RESOURCE_TYPE_USER.id,
    PrincipalKind.GROUP: RESOURCE_TYPE_GROUP.id,
}


def group_resource(group: Group) -> Resource:
    return Resource(
        ResourceId(RESOURCE_TYPE_GROUP.id, group.id),
        group.display_name,
        {"group": {"type": group.type, "developer_name": group.developer_name}},
    )


class GroupSyncer(ResourceSyncer):
    resource_type = RESOURCE_TYPE_GROUP

    def list(self, token: PageToken) -> SyncPage[Resource]:
        return translate_page(self.client.get_groups(token.token, token.size), group_resource)

    def entitlements(self, resource: Resource, token: PageToken) -> SyncPage[Entitlement]:
        self.logger.debug(
            "Groups.Entitlements display_name=%s id=%s", resource.display_name, resource.id.resource
        )
        return SyncPage(
            [
                assignment_entitlement(
                    resource,
                    GROUP_MEMBER_ENTITLEMENT,
                    display_name=f"{resource.display_name} Group Member",
                    description=f"Is member of the {resource.display_name} group in Salesforce",
                    grantable_to=(RESOURCE_TYPE_USER,),
                )
            ]
        )

    def grants(self, resource: Resource, token: PageToken) -> SyncPage[Grant]:
        page = self.client.get_group_memberships(resource.id.resource, token.token, token.size)
        return translate_page(
            page,
            lambda m: new_grant(
                resource,
                GROUP_MEMBER_ENTITLEMENT,
                ResourceId(_PRINCIPAL_TYPES[m.principal_kind], m.principal_id),
            ),
        )

    def grant(self, principal: Resource, entitlement: Entitlement) -> EdgeResult:
        return self.reconciler.grant_group_membership(principal.id, entitlement.resource.id.resource)

    def revoke(self, grant: Grant) -> EdgeResult:
        return self.reconciler.revoke_group_membership(
            grant.principal, grant.entitlement.resource.id.resource
        )
