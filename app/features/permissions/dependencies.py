"""
Permission dependencies for FastAPI routes.

Implements:
- Resolver and permission context construction per request
- Route guards (require_permission / require_any_permission / require_all_permissions)
- Audit actor extraction
- Access to other members' permissions
"""
from typing import Annotated, Iterable, List, Optional
from fastapi import Depends, HTTPException, status, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.exceptions import InvalidRoleReferenceError
from app.features.permissions.catalog import Action, Resource, permission_key
from app.features.permissions.facade import Decision, PermissionContext
from app.features.permissions.principal import CustomPrincipal, Principal, parse_role_reference
from app.features.permissions.repository import CustomRoleRepository
from app.features.permissions.resolver import PermissionPair, PermissionResolver, role_cache
from app.features.permissions.service import AuditActor, CustomRoleService
from app.features.users.repository import UserRepository
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def get_resolver(db: Annotated[AsyncSession, Depends(get_db)]) -> PermissionResolver:
    """Resolver backed by the request's database session and the shared role cache."""
    return PermissionResolver(CustomRoleRepository(db).load_snapshot, cache=role_cache)


def get_role_service(db: Annotated[AsyncSession, Depends(get_db)]) -> CustomRoleService:
    return CustomRoleService(db, cache=role_cache)


def principal_of(user: User) -> Optional[Principal]:
    """
    The principal of ``user``, or None when the stored role reference is unreadable.

    A custom role of another organization is never a valid principal for this user;
    that is checked when the role is loaded (see ``build_permission_context``).
    """
    try:
        return parse_role_reference(user.role)
    except InvalidRoleReferenceError as e:
        log.warning(f"User {user.id} has an invalid role reference: {e}")
        return None


async def build_permission_context(user: User, resolver: PermissionResolver) -> PermissionContext:
    """
    Effective permissions of ``user``.

    Unreadable role references and custom roles outside the user's
    organization yield a loaded context that allows nothing.
    """
    principal = principal_of(user)
    if principal is None:
        return PermissionContext.denied()

    if isinstance(principal, CustomPrincipal):
        definition = await resolver.load_definition(principal.role_id)
        if definition is None or definition.organization_id != user.organization_id:
            log.warning(f"User {user.id} references custom role {principal.role_id} outside their organization")
            return PermissionContext.denied()

    return await PermissionContext.load(resolver, principal)


async def get_permission_context(
    user: Annotated[User, Depends(get_current_user)],
    resolver: Annotated[PermissionResolver, Depends(get_resolver)],
) -> PermissionContext:
    """Effective permissions of the current user, resolved once per request."""
    return await build_permission_context(user, resolver)


def get_audit_actor(
    request: Request,
    user: Annotated[User, Depends(get_current_user)],
) -> AuditActor:
    return AuditActor(
        user_id=user.id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def _deny(decision: Decision, detail: str) -> None:
    if decision is Decision.UNKNOWN:
        # Never treat a context that failed to load as permission
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Permissions are not available yet",
        )
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def require_permission(resource: "Resource | str", action: "Action | str"):
    """
    FastAPI dependency to require a specific permission.

    Usage:
        @router.post("/pages")
        async def create_page(
            user: User = Depends(require_permission(Resource.PAGE, Action.CREATE))
        ):
            ...

    Returns:
        Dependency function that returns the current user if they have permission

    Raises:
        HTTPException: 403 if user doesn't have permission
    """
    async def permission_dependency(
        current_user: Annotated[User, Depends(get_current_user)],
        context: Annotated[PermissionContext, Depends(get_permission_context)],
    ) -> User:
        decision = context.has_permission(resource, action)
        if decision is not Decision.ALLOW:
            _deny(decision, f"Permission denied: {permission_key(resource, action)}")
        return current_user

    return permission_dependency


def require_any_permission(permissions: Iterable[PermissionPair]):
    """
    FastAPI dependency to require ANY of the specified permissions.

    Usage:
        @router.get("/reports")
        async def get_reports(
            user: User = Depends(require_any_permission([("analytics", "read"), ("setting", "manage")]))
        ):
            pass
    """
    pairs: List[PermissionPair] = list(permissions)

    async def permission_dependency(
        current_user: Annotated[User, Depends(get_current_user)],
        context: Annotated[PermissionContext, Depends(get_permission_context)],
    ) -> User:
        decision = context.has_any_permission(pairs)
        if decision is not Decision.ALLOW:
            keys = [permission_key(resource, action) for resource, action in pairs]
            _deny(decision, f"Permission denied: requires one of {keys}")
        return current_user

    return permission_dependency


def require_all_permissions(permissions: Iterable[PermissionPair]):
    """FastAPI dependency to require EVERY one of the specified permissions."""
    pairs: List[PermissionPair] = list(permissions)

    async def permission_dependency(
        current_user: Annotated[User, Depends(get_current_user)],
        context: Annotated[PermissionContext, Depends(get_permission_context)],
    ) -> User:
        decision = context.has_all_permissions(pairs)
        if decision is not Decision.ALLOW:
            keys = [permission_key(resource, action) for resource, action in pairs]
            _deny(decision, f"Permission denied: requires all of {keys}")
        return current_user

    return permission_dependency


# Holders of either may inspect other members' permissions
USER_INSPECTION_PERMISSIONS: List[PermissionPair] = [
    (Resource.USER, Action.MANAGE),
    (Resource.USER, Action.UPDATE),
]


async def get_inspectable_user(
    user_id: str,
    current_user: Annotated[User, Depends(get_current_user)],
    context: Annotated[PermissionContext, Depends(get_permission_context)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    The user named by the ``user_id`` path parameter, if the caller may see their permissions.

    Anyone may inspect themselves. Inspecting another member of the same
    organization requires ``user.manage`` or ``user.update``.

    Raises:
        HTTPException: 403 without the permission, 404 for unknown users or users of another organization
    """
    if user_id == current_user.id:
        return current_user

    decision = context.has_any_permission(USER_INSPECTION_PERMISSIONS)
    if decision is not Decision.ALLOW:
        _deny(decision, "Permission denied: cannot inspect other users' permissions")

    target = await UserRepository(db).get_by_id(user_id)
    if target is None or target.organization_id != current_user.organization_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return target
