"""
Built-in system roles and their permission sets.

Each role maps every catalog key to an explicit boolean. The grant lists
below are the policy; the complete maps are derived from them once at import
time and exposed read-only.
"""
import enum
from types import MappingProxyType
from typing import Iterable, Mapping

from app.features.permissions.catalog import (
    Action,
    Resource,
    iter_permission_keys,
    permission_key,
    valid_actions_for,
)


class SystemRole(str, enum.Enum):
    """The five fixed system roles, from most to least privileged."""
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    EDITOR = "editor"
    CONTRIBUTOR = "contributor"
    VIEWER = "viewer"


SYSTEM_ROLE_DESCRIPTIONS: Mapping[SystemRole, str] = MappingProxyType({
    SystemRole.SUPERADMIN: "Unrestricted access to every resource and action.",
    SystemRole.ADMIN: "Manages content, users and settings of the organization.",
    SystemRole.EDITOR: "Creates, edits and publishes content.",
    SystemRole.CONTRIBUTOR: "Reads content and taxonomy.",
    SystemRole.VIEWER: "Reads published content only.",
})


def _every_action(*resources: Resource) -> list[str]:
    return [
        permission_key(resource, action)
        for resource in resources
        for action in Action
        if action in valid_actions_for(resource)
    ]


def _grants(resource: Resource, *actions: Action) -> list[str]:
    return [permission_key(resource, action) for action in actions]


_ROLE_GRANTS: dict[SystemRole, list[str]] = {
    SystemRole.SUPERADMIN: list(iter_permission_keys()),
    SystemRole.ADMIN: [
        *_every_action(Resource.PAGE, Resource.BLOG, Resource.MEDIA, Resource.COURSE),
        *_grants(Resource.USER, Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE, Action.INVITE),
        *_grants(Resource.ORGANIZATION, Action.READ, Action.UPDATE),
        *_every_action(Resource.SETTING, Resource.ANALYTICS, Resource.API_KEY, Resource.CATEGORY, Resource.TAG),
    ],
    SystemRole.EDITOR: [
        *_grants(Resource.PAGE, Action.CREATE, Action.READ, Action.UPDATE, Action.PUBLISH, Action.UNPUBLISH),
        *_grants(Resource.BLOG, Action.CREATE, Action.READ, Action.UPDATE, Action.PUBLISH, Action.UNPUBLISH),
        *_grants(Resource.MEDIA, Action.CREATE, Action.READ, Action.UPDATE),
        *_grants(Resource.COURSE, Action.CREATE, Action.READ, Action.UPDATE, Action.PUBLISH, Action.UNPUBLISH),
        *_grants(Resource.CATEGORY, Action.CREATE, Action.READ, Action.UPDATE),
        *_grants(Resource.TAG, Action.CREATE, Action.READ, Action.UPDATE),
        *_grants(Resource.ANALYTICS, Action.READ),
    ],
    SystemRole.CONTRIBUTOR: [
        *_grants(Resource.PAGE, Action.READ),
        *_grants(Resource.BLOG, Action.READ),
        *_grants(Resource.MEDIA, Action.READ),
        *_grants(Resource.COURSE, Action.READ),
        *_grants(Resource.CATEGORY, Action.READ),
        *_grants(Resource.TAG, Action.READ),
    ],
    SystemRole.VIEWER: [
        *_grants(Resource.PAGE, Action.READ),
        *_grants(Resource.BLOG, Action.READ),
        *_grants(Resource.MEDIA, Action.READ),
        *_grants(Resource.COURSE, Action.READ),
    ],
}


def _complete(granted: Iterable[str]) -> Mapping[str, bool]:
    granted_keys = set(granted)
    return MappingProxyType({key: key in granted_keys for key in iter_permission_keys()})


SYSTEM_ROLE_PERMISSIONS: Mapping[SystemRole, Mapping[str, bool]] = MappingProxyType({
    role: _complete(grants) for role, grants in _ROLE_GRANTS.items()
})


_SYSTEM_ROLE_VALUES = frozenset(role.value for role in SystemRole)


def is_system_role(value: str) -> bool:
    """True when ``value`` is one of the five system role literals."""
    return value in _SYSTEM_ROLE_VALUES


def permissions_for(role: SystemRole) -> Mapping[str, bool]:
    """
    Complete, read-only permission set of a system role.

    ``superadmin`` has every key set to True here for display purposes only;
    resolution never consults this map for superadmin.
    """
    return SYSTEM_ROLE_PERMISSIONS[SystemRole(role)]
