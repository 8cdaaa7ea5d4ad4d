from __future__ import annotations

from ..models import ConnectedApplication
from ..pagination import PageToken
from ..resources import RESOURCE_TYPE_CONNECTED_APP, Resource, ResourceId
from .base import ResourceSyncer, SyncPage, translate_page


def connected_application_resource(app: ConnectedApplication) -> Resource:
    return Resource(
        ResourceId(RESOURCE_TYPE_CONNECTED_APP.id, app.id),
        app.name,
        {
            "app": {
                "created_by_id": app.created_by_id,
                "created_date": app.created_date,
            }
        },
    )


class ConnectedApplicationSyncer(ResourceSyncer):
    """Connected apps are listed only; they expose no entitlements."""

    resource_type = RESOURCE_TYPE_CONNECTED_APP

    def list(self, token: PageToken) -> SyncPage[Resource]:
        return translate_page(
            self.client.get_connected_applications(token.token, token.size),
            connected_application_resource,
        )
