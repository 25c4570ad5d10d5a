"""
Permission management API routes.

Provides the permission catalog, system role sets, the current user's
effective permissions and those of fellow members, custom role lifecycle, role assignment and the audit
trail. Custom roles are always scoped to the caller's organization.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.organizations.dependencies import get_current_organization
from app.features.organizations.models import Organization
from app.features.permissions.catalog import (
    Action,
    RESOURCE_GROUPS,
    RESOURCE_LABELS,
    Resource,
    all_resources,
    permission_key,
    permission_label,
    valid_actions_for,
)
from app.features.permissions.dependencies import (
    build_permission_context,
    get_audit_actor,
    get_inspectable_user,
    get_permission_context,
    get_resolver,
    get_role_service,
    require_permission,
)
from app.features.permissions.facade import Decision, PermissionContext
from app.features.permissions.models import AuditLog
from app.features.permissions.principal import CustomPrincipal, Principal, SystemPrincipal
from app.features.permissions.resolver import PermissionResolver
from app.features.permissions.schemas import (
    AssignRoleResponse,
    AssignRoleToUser,
    AssignedUser,
    AuditLogListResponse,
    AuditLogResponse,
    CatalogAction,
    CatalogResource,
    CatalogResponse,
    CustomRoleCreate,
    CustomRoleResponse,
    CustomRoleUpdate,
    EffectivePermissionsResponse,
    MessageResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    SystemRoleResponse,
)
from app.features.permissions.service import AuditActor, CustomRoleService
from app.features.permissions.system_roles import SYSTEM_ROLE_DESCRIPTIONS, SystemRole, permissions_for
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


router = APIRouter()


# ============================================================================
# Catalog and System Roles
# ============================================================================

@router.get("/catalog", response_model=CatalogResponse)
async def get_catalog(
    current_user: Annotated[User, Depends(get_current_user)]
):
    """List resources with their valid actions, for permission editors."""
    resources = []
    for resource in all_resources():
        actions = [action for action in Action if action in valid_actions_for(resource)]
        resources.append(CatalogResource(
            resource=resource.value,
            label=RESOURCE_LABELS[resource],
            actions=[
                CatalogAction(
                    action=action.value,
                    key=permission_key(resource, action),
                    label=permission_label(resource, action),
                )
                for action in actions
            ],
        ))
    groups = {name: [resource.value for resource in members] for name, members in RESOURCE_GROUPS.items()}
    return CatalogResponse(resources=resources, groups=groups)


@router.get("/system-roles", response_model=List[SystemRoleResponse])
async def list_system_roles(
    current_user: Annotated[User, Depends(get_current_user)]
):
    """List the five system roles with their complete permission sets."""
    return [
        SystemRoleResponse(
            role=role,
            description=SYSTEM_ROLE_DESCRIPTIONS[role],
            permissions=dict(permissions_for(role)),
        )
        for role in SystemRole
    ]


# ============================================================================
# Current User Permissions
# ============================================================================

@router.get("/me", response_model=EffectivePermissionsResponse)
async def get_my_permissions(
    current_user: Annotated[User, Depends(get_current_user)],
    context: Annotated[PermissionContext, Depends(get_permission_context)],
):
    """Every catalog permission resolved for the current user."""
    return EffectivePermissionsResponse(
        role=current_user.role,
        permissions=dict(context.permissions or {}),
    )


def _check_response(context: PermissionContext, check: PermissionCheckRequest) -> PermissionCheckResponse:
    decision = context.has_permission(check.resource, check.action)
    if decision is Decision.UNKNOWN:
        return PermissionCheckResponse(has_permission=False, reason="Permissions not loaded")
    key = permission_key(check.resource, check.action)
    return PermissionCheckResponse(
        has_permission=decision is Decision.ALLOW,
        reason=None if decision is Decision.ALLOW else f"Not granted: {key}",
    )


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    check: PermissionCheckRequest,
    context: Annotated[PermissionContext, Depends(get_permission_context)],
):
    """Check whether the current user may perform an action on a resource."""
    return _check_response(context, check)


# ============================================================================
# Other Members' Permissions
# ============================================================================

@router.get("/users/{user_id}", response_model=EffectivePermissionsResponse)
async def get_user_permissions(
    user: Annotated[User, Depends(get_inspectable_user)],
    resolver: Annotated[PermissionResolver, Depends(get_resolver)],
):
    """Every catalog permission resolved for a member of the caller's organization."""
    context = await build_permission_context(user, resolver)
    return EffectivePermissionsResponse(
        role=user.role,
        permissions=dict(context.permissions or {}),
    )


@router.post("/users/{user_id}/check", response_model=PermissionCheckResponse)
async def check_user_permission(
    check: PermissionCheckRequest,
    user: Annotated[User, Depends(get_inspectable_user)],
    resolver: Annotated[PermissionResolver, Depends(get_resolver)],
):
    """Check whether a member of the caller's organization may perform an action on a resource."""
    context = await build_permission_context(user, resolver)
    return _check_response(context, check)


# ============================================================================
# Custom Role Routes
# ============================================================================

@router.get("/roles", response_model=List[CustomRoleResponse])
async def list_custom_roles(
    current_user: Annotated[User, Depends(require_permission(Resource.SETTING, Action.READ))],
    organization: Annotated[Organization, Depends(get_current_organization)],
    service: Annotated[CustomRoleService, Depends(get_role_service)],
):
    """List custom roles of the caller's organization."""
    return await service.list_roles(organization.id)


@router.get("/roles/{role_id}", response_model=CustomRoleResponse)
async def get_custom_role(
    role_id: int,
    current_user: Annotated[User, Depends(require_permission(Resource.SETTING, Action.READ))],
    organization: Annotated[Organization, Depends(get_current_organization)],
    service: Annotated[CustomRoleService, Depends(get_role_service)],
):
    """Get a custom role of the caller's organization."""
    return await service.get_role(role_id, organization.id)


@router.post("/roles", response_model=CustomRoleResponse, status_code=status.HTTP_201_CREATED)
async def create_custom_role(
    role: CustomRoleCreate,
    current_user: Annotated[User, Depends(require_permission(Resource.SETTING, Action.MANAGE))],
    organization: Annotated[Organization, Depends(get_current_organization)],
    context: Annotated[PermissionContext, Depends(get_permission_context)],
    service: Annotated[CustomRoleService, Depends(get_role_service)],
    actor: Annotated[AuditActor, Depends(get_audit_actor)],
):
    """Create a custom role in the caller's organization."""
    return await service.create_role(
        organization_id=organization.id,
        name=role.name,
        description=role.description,
        based_on_role=role.based_on_role,
        permissions=role.permissions,
        is_default=role.is_default,
        created_by_id=current_user.id,
        actor=actor,
        grantor=context,
    )


@router.patch("/roles/{role_id}", response_model=CustomRoleResponse)
async def update_custom_role(
    role_id: int,
    role_update: CustomRoleUpdate,
    current_user: Annotated[User, Depends(require_permission(Resource.SETTING, Action.MANAGE))],
    organization: Annotated[Organization, Depends(get_current_organization)],
    service: Annotated[CustomRoleService, Depends(get_role_service)],
    context: Annotated[PermissionContext, Depends(get_permission_context)],
    actor: Annotated[AuditActor, Depends(get_audit_actor)],
):
    """Update a custom role. A supplied permission map replaces the stored one."""
    return await service.update_role(
        role_id,
        organization.id,
        role_update.model_dump(exclude_unset=True),
        actor=actor,
        grantor=context,
    )


@router.delete("/roles/{role_id}", response_model=MessageResponse)
async def delete_custom_role(
    role_id: int,
    current_user: Annotated[User, Depends(require_permission(Resource.SETTING, Action.MANAGE))],
    organization: Annotated[Organization, Depends(get_current_organization)],
    service: Annotated[CustomRoleService, Depends(get_role_service)],
    actor: Annotated[AuditActor, Depends(get_audit_actor)],
):
    """Delete a custom role no user holds."""
    await service.delete_role(role_id, organization.id, actor=actor)
    return MessageResponse(message="Custom role deleted")


# ============================================================================
# Assignment Routes
# ============================================================================

@router.post("/assignments/user-role", response_model=AssignRoleResponse)
async def assign_role_to_user(
    assignment: AssignRoleToUser,
    current_user: Annotated[User, Depends(require_permission(Resource.USER, Action.UPDATE))],
    context: Annotated[PermissionContext, Depends(get_permission_context)],
    organization: Annotated[Organization, Depends(get_current_organization)],
    service: Annotated[CustomRoleService, Depends(get_role_service)],
    actor: Annotated[AuditActor, Depends(get_audit_actor)],
):
    """
    Assign a system role or a custom role to a user of the caller's organization.

    The role may not allow anything the caller is not allowed.
    """
    if assignment.system_role is not None:
        target: Principal = SystemPrincipal(assignment.system_role)
    else:
        target = CustomPrincipal(assignment.role_id)

    user = await service.assign_role(assignment.user_id, organization.id, target, actor=actor, grantor=context)
    return AssignRoleResponse(message="Role assigned", user=AssignedUser.model_validate(user))


# ============================================================================
# Audit Logs
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    current_user: Annotated[User, Depends(require_permission(Resource.SETTING, Action.MANAGE))],
    organization: Annotated[Organization, Depends(get_current_organization)],
    db: Annotated[AsyncSession, Depends(get_db)],
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
):
    """List audit entries of the caller's organization, newest first."""
    stmt = select(AuditLog).where(AuditLog.organization_id == organization.id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)

    count_result = await db.execute(select(func.count()).select_from(stmt.subquery()))
    total = count_result.scalar_one()

    result = await db.execute(
        stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    items = result.scalars().all()

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        page_size=page_size,
        pages=(total + page_size - 1) // page_size,
    )
