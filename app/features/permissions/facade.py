"""
Per-request permission queries.

A ``PermissionContext`` carries the principal of the current session and its
effective permission set, resolved once so that rendering many badges does
not re-run resolution per cell. Until a principal is loaded every query
answers ``Decision.UNKNOWN``.
"""
import enum
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from app.features.permissions.catalog import Action, Resource, permission_key
from app.features.permissions.principal import Principal, SystemPrincipal
from app.features.permissions.resolver import PermissionPair, PermissionResolver


class Decision(enum.Enum):
    ALLOW = "allow"
    DENY = "deny"
    UNKNOWN = "unknown"

    def __bool__(self) -> bool:
        # Only an explicit allow is truthy; implicit checks on UNKNOWN fail closed
        return self is Decision.ALLOW

    @classmethod
    def of(cls, allowed: bool) -> "Decision":
        return cls.ALLOW if allowed else cls.DENY


async def load_effective_permissions(resolver: PermissionResolver, principal: Principal) -> dict[str, bool]:
    """Resolve every catalog key for ``principal``."""
    return await resolver.effective_permissions(principal)


class PermissionContext:
    """Permission state of one session."""

    def __init__(self, principal: Optional[Principal] = None, permissions: Optional[Mapping[str, bool]] = None):
        self.principal = principal
        self._permissions = None if permissions is None else MappingProxyType(dict(permissions))

    @classmethod
    def unloaded(cls) -> "PermissionContext":
        return cls()

    @classmethod
    def denied(cls) -> "PermissionContext":
        """A loaded context that allows nothing, for sessions whose role cannot be read."""
        return cls(principal=None, permissions={})

    @classmethod
    async def load(cls, resolver: PermissionResolver, principal: Principal) -> "PermissionContext":
        permissions = await load_effective_permissions(resolver, principal)
        return cls(principal=principal, permissions=permissions)

    @property
    def is_loaded(self) -> bool:
        return self._permissions is not None

    @property
    def permissions(self) -> Optional[Mapping[str, bool]]:
        return self._permissions

    def _allowed(self, resource: "Resource | str", action: "Action | str") -> bool:
        if isinstance(self.principal, SystemPrincipal) and self.principal.is_superadmin:
            return True
        return self._permissions.get(permission_key(resource, action), False)

    def has_permission(self, resource: "Resource | str", action: "Action | str") -> Decision:
        if not self.is_loaded:
            return Decision.UNKNOWN
        return Decision.of(self._allowed(resource, action))

    def has_any_permission(self, pairs: Iterable[PermissionPair]) -> Decision:
        if not self.is_loaded:
            return Decision.UNKNOWN
        return Decision.of(any(self._allowed(resource, action) for resource, action in pairs))

    def has_all_permissions(self, pairs: Iterable[PermissionPair]) -> Decision:
        if not self.is_loaded:
            return Decision.UNKNOWN
        return Decision.of(all(self._allowed(resource, action) for resource, action in pairs))
