"""
Permission catalog: the protectable resources, the actions, and which
actions are meaningful for each resource.

Permission keys use the wire format ``"<resource>.<action>"``, lowercase and
dot-separated. This module is pure data; nothing here touches the database.
"""
import enum
from types import MappingProxyType
from typing import Iterator, Mapping, Optional


class Resource(str, enum.Enum):
    """Protectable nouns."""
    PAGE = "page"
    BLOG = "blog"
    MEDIA = "media"
    COURSE = "course"
    USER = "user"
    ORGANIZATION = "organization"
    SETTING = "setting"
    ANALYTICS = "analytics"
    API_KEY = "api_key"
    CATEGORY = "category"
    TAG = "tag"


class Action(str, enum.Enum):
    """Verbs applied to resources."""
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    PUBLISH = "publish"
    UNPUBLISH = "unpublish"
    INVITE = "invite"
    MANAGE = "manage"
    ADMIN = "admin"


_CRUD = (Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE)
_PUBLISHABLE = _CRUD + (Action.PUBLISH, Action.UNPUBLISH)


# Declaration order is the order used by every UI listing
RESOURCE_ACTIONS: Mapping[Resource, frozenset[Action]] = MappingProxyType({
    Resource.PAGE: frozenset(_PUBLISHABLE),
    Resource.BLOG: frozenset(_PUBLISHABLE),
    Resource.MEDIA: frozenset(_CRUD),
    Resource.COURSE: frozenset(_PUBLISHABLE),
    Resource.USER: frozenset(_CRUD + (Action.INVITE, Action.MANAGE)),
    Resource.ORGANIZATION: frozenset((Action.READ, Action.UPDATE, Action.MANAGE, Action.ADMIN)),
    Resource.SETTING: frozenset((Action.READ, Action.UPDATE, Action.MANAGE)),
    Resource.ANALYTICS: frozenset((Action.READ,)),
    Resource.API_KEY: frozenset((Action.CREATE, Action.READ, Action.DELETE)),
    Resource.CATEGORY: frozenset(_CRUD),
    Resource.TAG: frozenset(_CRUD),
})


RESOURCE_LABELS: Mapping[Resource, str] = MappingProxyType({
    Resource.PAGE: "Pages",
    Resource.BLOG: "Blog",
    Resource.MEDIA: "Media",
    Resource.COURSE: "Courses",
    Resource.USER: "Users",
    Resource.ORGANIZATION: "Organization",
    Resource.SETTING: "Settings",
    Resource.ANALYTICS: "Analytics",
    Resource.API_KEY: "API keys",
    Resource.CATEGORY: "Categories",
    Resource.TAG: "Tags",
})


ACTION_LABELS: Mapping[Action, str] = MappingProxyType({
    Action.CREATE: "Create",
    Action.READ: "View",
    Action.UPDATE: "Edit",
    Action.DELETE: "Delete",
    Action.PUBLISH: "Publish",
    Action.UNPUBLISH: "Unpublish",
    Action.INVITE: "Invite",
    Action.MANAGE: "Manage",
    Action.ADMIN: "Administer",
})


# Labels that read better than "<action label> <resource label>"
PERMISSION_LABEL_OVERRIDES: Mapping[str, str] = MappingProxyType({
    "media.create": "Upload files",
    "media.read": "View files",
    "media.update": "Edit files",
    "media.delete": "Delete files",
    "blog.create": "Create posts",
    "blog.read": "View posts",
    "blog.update": "Edit posts",
    "blog.delete": "Delete posts",
    "blog.publish": "Publish posts",
    "blog.unpublish": "Unpublish posts",
    "user.manage": "Manage user permissions",
    "organization.read": "View organization details",
    "organization.update": "Edit organization details",
    "organization.manage": "Manage organization",
    "organization.admin": "Advanced organization settings",
})


RESOURCE_GROUPS: Mapping[str, tuple[Resource, ...]] = MappingProxyType({
    "Content": (Resource.PAGE, Resource.BLOG, Resource.COURSE),
    "Media": (Resource.MEDIA,),
    "Taxonomy": (Resource.CATEGORY, Resource.TAG),
    "Users": (Resource.USER, Resource.ORGANIZATION),
    "System": (Resource.SETTING, Resource.ANALYTICS, Resource.API_KEY),
})


def _coerce_resource(resource: "Resource | str") -> Optional[Resource]:
    if isinstance(resource, Resource):
        return resource
    try:
        return Resource(resource)
    except ValueError:
        return None


def _coerce_action(action: "Action | str") -> Optional[Action]:
    if isinstance(action, Action):
        return action
    try:
        return Action(action)
    except ValueError:
        return None


def all_resources() -> tuple[Resource, ...]:
    """Every declared resource, in catalog order."""
    return tuple(RESOURCE_ACTIONS)


def valid_actions_for(resource: "Resource | str") -> frozenset[Action]:
    """Actions declared valid for ``resource``; empty for unknown resources."""
    coerced = _coerce_resource(resource)
    if coerced is None:
        return frozenset()
    return RESOURCE_ACTIONS[coerced]


def is_valid_permission(resource: "Resource | str", action: "Action | str") -> bool:
    """True when ``(resource, action)`` is declared in the catalog."""
    coerced = _coerce_action(action)
    return coerced is not None and coerced in valid_actions_for(resource)


def permission_key(resource: "Resource | str", action: "Action | str") -> str:
    """Canonical wire key for a resource/action pair."""
    resource_value = resource.value if isinstance(resource, Resource) else str(resource)
    action_value = action.value if isinstance(action, Action) else str(action)
    return f"{resource_value}.{action_value}"


def parse_permission_key(key: str) -> Optional[tuple[Resource, Action]]:
    """
    Split a wire key into its catalog pair.

    Returns None when the key is malformed or names an undeclared pair.
    """
    if not isinstance(key, str) or key.count(".") != 1:
        return None
    resource_value, action_value = key.split(".")
    resource = _coerce_resource(resource_value)
    action = _coerce_action(action_value)
    if resource is None or action is None or action not in RESOURCE_ACTIONS[resource]:
        return None
    return resource, action


def iter_permission_keys() -> Iterator[str]:
    """Yield every valid permission key in catalog order."""
    for resource, actions in RESOURCE_ACTIONS.items():
        for action in Action:
            if action in actions:
                yield permission_key(resource, action)


def permission_label(resource: "Resource | str", action: "Action | str") -> str:
    """Human-readable label for a permission checkbox."""
    key = permission_key(resource, action)
    if key in PERMISSION_LABEL_OVERRIDES:
        return PERMISSION_LABEL_OVERRIDES[key]
    coerced_resource = _coerce_resource(resource)
    coerced_action = _coerce_action(action)
    if coerced_resource is None or coerced_action is None:
        return key
    return f"{ACTION_LABELS[coerced_action]} {RESOURCE_LABELS[coerced_resource].lower()}"


ALL_PERMISSION_KEYS: frozenset[str] = frozenset(iter_permission_keys())
