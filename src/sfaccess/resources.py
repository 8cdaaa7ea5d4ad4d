"""Normalized resource / entitlement / grant shapes produced by the syncers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class ResourceType:
    id: str
    display_name: str
    traits: Tuple[str, ...] = ()
    # Users carry no entitlements of their own; they only receive grants.
    skip_entitlements_and_grants: bool = False


RESOURCE_TYPE_USER = ResourceType("user", "User", ("user",), skip_entitlements_and_grants=True)
RESOURCE_TYPE_GROUP = ResourceType("group", "Group", ("group",))
RESOURCE_TYPE_PERMISSION_SET = ResourceType("permission", "Permission Set")
RESOURCE_TYPE_ROLE = ResourceType("role", "Role", ("role",))
RESOURCE_TYPE_PROFILE = ResourceType("profile", "Profile")
RESOURCE_TYPE_PERMISSION_SET_GROUP = ResourceType("permission_set_group", "Permission Set Group")
RESOURCE_TYPE_CONNECTED_APP = ResourceType("connected_application", "Connected Application", ("app",))

RESOURCE_TYPES: Dict[str, ResourceType] = {
    rt.id: rt
    for rt in (
        RESOURCE_TYPE_USER,
        RESOURCE_TYPE_GROUP,
        RESOURCE_TYPE_PERMISSION_SET,
        RESOURCE_TYPE_ROLE,
        RESOURCE_TYPE_PROFILE,
        RESOURCE_TYPE_PERMISSION_SET_GROUP,
        RESOURCE_TYPE_CONNECTED_APP,
    )
}

USER_STATUS_ENABLED = "enabled"
USER_STATUS_DISABLED = "disabled"


@dataclass(frozen=True)
class ResourceId:
    resource_type: str
    resource: str

    def __str__(self) -> str:
        return f"{self.resource_type}:{self.resource}"


@dataclass
class Resource:
    id: ResourceId
    display_name: str
    # Trait data keyed by trait name (e.g. "user" -> status, email, profile).
    traits: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def resource_type(self) -> str:
        return self.id.resource_type

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "resource_type": self.id.resource_type,
            "resource": self.id.resource,
            "display_name": self.display_name,
            "traits": {name: _jsonable(data) for name, data in self.traits.items()},
        }


@dataclass
class Entitlement:
    resource: Resource
    slug: str
    display_name: str = ""
    description: str = ""
    grantable_to: Tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return f"{self.resource.id}:{self.slug}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "resource": str(self.resource.id),
            "slug": self.slug,
            "display_name": self.display_name,
            "description": self.description,
            "grantable_to": list(self.grantable_to),
        }


@dataclass
class Grant:
    entitlement: Entitlement
    principal: ResourceId

    @property
    def id(self) -> str:
        return f"{self.entitlement.id}:{self.principal}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entitlement": self.entitlement.id,
            "principal": str(self.principal),
        }


def assignment_entitlement(
    resource: Resource,
    slug: str,
    *,
    display_name: str,
    description: str,
    grantable_to: Tuple[ResourceType, ...],
) -> Entitlement:
    return Entitlement(
        resource=resource,
        slug=slug,
        display_name=display_name,
        description=description,
        grantable_to=tuple(rt.id for rt in grantable_to),
    )


def new_grant(resource: Resource, slug: str, principal: ResourceId) -> Grant:
    """Grant of ``resource``'s ``slug`` entitlement to ``principal``."""
    return Grant(entitlement=Entitlement(resource=resource, slug=slug), principal=principal)


def parse_resource_id(text: str, default_type: Optional[str] = None) -> ResourceId:
    """Parse ``type:id`` (or a bare id when ``default_type`` is given)."""
    resource_type, sep, resource = text.partition(":")
    if not sep:
        if default_type is None:
            raise ValueError(f"expected TYPE:ID, got {text!r}")
        return ResourceId(default_type, text)
    return ResourceId(resource_type, resource)


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value
