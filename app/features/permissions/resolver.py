"""
Permission resolution.

Two-level override-over-inheritance:

1. ``superadmin`` is allowed everything, without consulting any map.
2. Other system roles read their own complete permission set.
3. Custom roles read their sparse override map first; a key that is present
   wins whether True or False. Absent keys fall through to the base system
   role's set.
4. Anything still unresolved is a deny.

Every failure while loading a custom role (missing row, store error, corrupt
data) resolves to deny. Cancellation propagates to the caller.
"""
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Awaitable, Callable, Iterable, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.core import config
from app.features.permissions.catalog import Action, Resource, iter_permission_keys, permission_key
from app.features.permissions.principal import CustomPrincipal, Principal, SystemPrincipal
from app.features.permissions.system_roles import SystemRole, permissions_for
from app.utils import get_logger


log = get_logger(__name__)


PermissionPair = tuple["Resource | str", "Action | str"]


@dataclass(frozen=True)
class CustomRoleSnapshot:
    """Immutable view of a custom role definition, as used by resolution."""
    id: int
    organization_id: str
    based_on_role: SystemRole
    permissions: Mapping[str, bool] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def build(
        cls,
        role_id: int,
        organization_id: str,
        based_on_role: str,
        permissions: Optional[Mapping[str, object]],
    ) -> "CustomRoleSnapshot":
        """
        Build a snapshot from stored values.

        Raises ValueError when ``based_on_role`` is not a system role. A stored
        override whose value is not a boolean is read as an explicit deny.
        """
        overrides = {
            key: value if isinstance(value, bool) else False
            for key, value in (permissions or {}).items()
        }
        return cls(
            id=role_id,
            organization_id=organization_id,
            based_on_role=SystemRole(based_on_role),
            permissions=MappingProxyType(overrides),
        )


RoleLoader = Callable[[int], Awaitable[Optional[CustomRoleSnapshot]]]


class CustomRoleCache:
    """
    Per-process cache of custom role snapshots.

    Only definitions are cached, never decisions. ``invalidate`` bumps a
    per-role generation so that a load which started before the invalidation
    cannot repopulate the cache with the old definition.
    """

    def __init__(self, ttl: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[int, tuple[float, CustomRoleSnapshot]] = {}
        self._generations: dict[int, int] = {}

    @property
    def enabled(self) -> bool:
        return self.ttl > 0

    def generation(self, role_id: int) -> int:
        return self._generations.get(role_id, 0)

    def get(self, role_id: int) -> Optional[CustomRoleSnapshot]:
        entry = self._entries.get(role_id)
        if entry is None:
            return None
        expires_at, snapshot = entry
        if self._clock() >= expires_at:
            self._entries.pop(role_id, None)
            return None
        return snapshot

    def put(self, snapshot: CustomRoleSnapshot, generation: int) -> None:
        if not self.enabled or generation != self.generation(snapshot.id):
            return
        self._entries[snapshot.id] = (self._clock() + self.ttl, snapshot)

    def invalidate(self, role_id: int) -> None:
        self._generations[role_id] = self.generation(role_id) + 1
        self._entries.pop(role_id, None)

    def clear(self) -> None:
        self._entries.clear()
        self._generations.clear()


role_cache = CustomRoleCache(ttl=config.CUSTOM_ROLE_CACHE_TTL)


def expand_definition(based_on_role: SystemRole, overrides: Mapping[str, bool]) -> dict[str, bool]:
    """Complete permission set of a custom role: overrides first, then the base role."""
    base = permissions_for(based_on_role)
    return {key: overrides.get(key, base.get(key, False)) for key in iter_permission_keys()}


def evaluate(
    principal: Principal,
    key: str,
    definition: Optional[CustomRoleSnapshot] = None,
) -> bool:
    """
    Decide ``key`` for ``principal`` without any I/O.

    ``definition`` must be the loaded snapshot when ``principal`` is a custom
    role; None there means the role could not be loaded and yields deny.
    """
    if isinstance(principal, SystemPrincipal):
        if principal.is_superadmin:
            return True
        return permissions_for(principal.role).get(key, False)

    if definition is None or definition.id != principal.role_id:
        return False
    if key in definition.permissions:
        return definition.permissions[key]
    return permissions_for(definition.based_on_role).get(key, False)


class PermissionResolver:
    """
    Resolves permission checks for a principal.

    ``load_role`` fetches a custom role snapshot by id, returning None when it
    does not exist. The resolver holds no mutable state of its own; the
    optional cache is shared and invalidated by the role lifecycle service.
    """

    def __init__(self, load_role: RoleLoader, cache: Optional[CustomRoleCache] = None):
        self._load_role = load_role
        self._cache = cache

    async def load_definition(self, role_id: int) -> Optional[CustomRoleSnapshot]:
        """Load a custom role snapshot, returning None on any failure."""
        generation = 0
        if self._cache is not None:
            cached = self._cache.get(role_id)
            if cached is not None:
                return cached
            generation = self._cache.generation(role_id)

        try:
            snapshot = await self._load_role(role_id)
        except SQLAlchemyError:
            log.exception(f"Failed to load custom role {role_id}; denying")
            return None
        except ValueError as e:
            log.error(f"Custom role {role_id} is corrupt ({e}); denying")
            return None

        if snapshot is None:
            log.debug(f"Custom role {role_id} not found; denying")
            return None

        if self._cache is not None:
            self._cache.put(snapshot, generation)
        return snapshot

    async def _definition_for(self, principal: Principal) -> Optional[CustomRoleSnapshot]:
        if isinstance(principal, CustomPrincipal):
            return await self.load_definition(principal.role_id)
        return None

    async def resolve(self, principal: Principal, resource: "Resource | str", action: "Action | str") -> bool:
        """Return True when ``principal`` may perform ``action`` on ``resource``."""
        if isinstance(principal, SystemPrincipal) and principal.is_superadmin:
            return True

        key = permission_key(resource, action)
        definition = await self._definition_for(principal)
        allowed = evaluate(principal, key, definition)
        if not allowed:
            log.debug(f"Denied {key} for {principal}")
        return allowed

    async def has_any_permission(self, principal: Principal, pairs: Iterable[PermissionPair]) -> bool:
        """True when at least one pair resolves to allow. Stops at the first allow."""
        for resource, action in pairs:
            if await self.resolve(principal, resource, action):
                return True
        return False

    async def has_all_permissions(self, principal: Principal, pairs: Iterable[PermissionPair]) -> bool:
        """True when every pair resolves to allow. Stops at the first deny."""
        for resource, action in pairs:
            if not await self.resolve(principal, resource, action):
                return False
        return True

    async def effective_permissions(self, principal: Principal) -> dict[str, bool]:
        """
        Resolve every catalog key for ``principal``.

        The custom role, if any, is loaded once and every key is evaluated
        against that single snapshot.
        """
        definition = await self._definition_for(principal)
        return {key: evaluate(principal, key, definition) for key in iter_permission_keys()}
