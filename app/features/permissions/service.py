"""
Custom role lifecycle: create, update, delete and assignment.

All validation happens before anything is written, so a rejected operation
never leaves partial state. Each mutation commits, then invalidates the
cached definition so later checks in this process see the new state.
"""
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import RoleConflictError, RoleNotFoundError, RolePrivilegeError, RoleValidationError
from app.features.permissions.catalog import parse_permission_key
from app.features.permissions.facade import Decision, PermissionContext
from app.features.permissions.models import AuditLog, CustomRole
from app.features.permissions.principal import CustomPrincipal, Principal, SystemPrincipal, format_role_reference
from app.features.permissions.repository import CustomRoleRepository
from app.features.permissions.resolver import CustomRoleCache, CustomRoleSnapshot, expand_definition, role_cache
from app.features.permissions.system_roles import SystemRole, is_system_role, permissions_for
from app.features.users.models import User
from app.features.users.repository import UserRepository
from app.utils import get_logger


log = get_logger(__name__)


NAME_MAX_LENGTH = 100

UPDATABLE_FIELDS = frozenset({"name", "description", "based_on_role", "permissions", "is_default"})


@dataclass(frozen=True)
class AuditActor:
    """Who is performing a mutation, for the audit trail."""
    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def add_audit_log(
    db: AsyncSession,
    actor: Optional[AuditActor],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Stage an audit log entry in the current transaction.

    The entry is committed together with the change it describes.
    """
    actor = actor or AuditActor()
    audit_log = AuditLog(
        user_id=actor.user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        organization_id=organization_id,
        details=details,
        ip_address=actor.ip_address,
        user_agent=actor.user_agent,
    )
    db.add(audit_log)

    log.info(
        f"Audit: user={actor.user_id} action={action} resource={resource_type}:{resource_id} org={organization_id}"
    )
    return audit_log


# ============================================================================
# Validation
# ============================================================================

def validate_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise RoleValidationError("Role name is required", field="name")
    name = name.strip()
    if len(name) > NAME_MAX_LENGTH:
        raise RoleValidationError(f"Role name must be at most {NAME_MAX_LENGTH} characters", field="name")
    return name


def validate_base_role(value: Any) -> SystemRole:
    if isinstance(value, SystemRole):
        return value
    if not isinstance(value, str) or not is_system_role(value):
        raise RoleValidationError(f"Unrecognized base role: {value!r}", field="based_on_role")
    return SystemRole(value)


def validate_permissions(permissions: Any) -> Dict[str, bool]:
    """Check a sparse override map and return a plain copy of it."""
    if permissions is None:
        return {}
    if not isinstance(permissions, Mapping):
        raise RoleValidationError("Permissions must be an object of permission keys to booleans", field="permissions")
    validated: Dict[str, bool] = {}
    for key, value in permissions.items():
        if parse_permission_key(key) is None:
            raise RoleValidationError(f"Unknown permission key: {key!r}", field="permissions")
        if not isinstance(value, bool):
            raise RoleValidationError(f"Permission {key!r} must be true or false", field="permissions")
        validated[key] = value
    return validated


def ensure_grantable(permissions: Mapping[str, bool], grantor: Optional[PermissionContext]) -> None:
    """
    Refuse a role whose effective permissions exceed the grantor's own.

    ``grantor`` is the permission context of the caller; None means an
    internal caller (scripts, tests) and skips the check. Superadmin may
    grant anything.

    Raises:
        RolePrivilegeError: when any allowed key is not allowed for the grantor
    """
    if grantor is None:
        return
    if isinstance(grantor.principal, SystemPrincipal) and grantor.principal.is_superadmin:
        return
    excess = sorted(
        key for key, allowed in permissions.items()
        if allowed and grantor.has_permission(*key.split(".", 1)) is not Decision.ALLOW
    )
    if excess:
        raise RolePrivilegeError(f"Cannot grant permissions you do not hold: {', '.join(excess)}")


# ============================================================================
# Lifecycle manager
# ============================================================================

class CustomRoleService:
    """
    Lifecycle manager for organization-scoped custom roles.

    Reads return the latest committed state visible to the session. Writes
    lock the target row where the backend supports it; the foreign key from
    ``users.custom_role_id`` backs the in-use check on delete.
    """

    def __init__(self, db: AsyncSession, cache: CustomRoleCache = role_cache):
        self.db = db
        self.cache = cache
        self.roles = CustomRoleRepository(db)
        self.users = UserRepository(db)

    async def list_roles(self, organization_id: str) -> Sequence[CustomRole]:
        return await self.roles.list_by_organization(organization_id)

    async def get_role(self, role_id: int, organization_id: str, *, for_update: bool = False) -> CustomRole:
        """
        Fetch a role of ``organization_id``.

        Raises:
            RoleNotFoundError: when the role does not exist or belongs to another organization
        """
        role = await self.roles.get_by_id(role_id, for_update=for_update)
        if role is None or role.organization_id != organization_id:
            raise RoleNotFoundError("Role not found")
        return role

    async def create_role(
        self,
        organization_id: str,
        name: Any,
        based_on_role: Any,
        permissions: Any = None,
        description: Optional[str] = None,
        created_by_id: Optional[str] = None,
        is_default: bool = False,
        actor: Optional[AuditActor] = None,
        grantor: Optional[PermissionContext] = None,
    ) -> CustomRole:
        """
        Create a custom role.

        ``permissions`` is stored exactly as given: keys not present keep
        inheriting from ``based_on_role``.

        Raises:
            RoleValidationError: empty name, unknown base role or malformed permission map
            RolePrivilegeError: the role would allow something ``grantor`` is not allowed
            RoleConflictError: another role of the organization has the same name
        """
        name = validate_name(name)
        base = validate_base_role(based_on_role)
        overrides = validate_permissions(permissions)
        ensure_grantable(expand_definition(base, overrides), grantor)

        if await self.roles.get_by_name(organization_id, name) is not None:
            raise RoleConflictError("A role with that name already exists in the organization")

        if is_default:
            await self.roles.clear_default(organization_id)

        try:
            role = await self.roles.insert(CustomRole(
                organization_id=organization_id,
                name=name,
                description=description,
                based_on_role=base.value,
                is_default=bool(is_default),
                permissions=overrides,
                created_by_id=created_by_id,
            ))
        except IntegrityError:
            await self.db.rollback()
            raise RoleConflictError("A role with that name already exists in the organization")

        add_audit_log(
            self.db, actor, "create", "custom_role",
            resource_id=str(role.id),
            organization_id=organization_id,
            details={"name": name, "based_on_role": base.value, "permissions": overrides, "is_default": role.is_default},
        )
        await self.db.commit()
        self.cache.invalidate(role.id)

        log.info(f"Created custom role {role.id} ({name!r}) in org {organization_id} based on {base.value}")
        return role

    async def update_role(
        self,
        role_id: int,
        organization_id: str,
        fields: Mapping[str, Any],
        actor: Optional[AuditActor] = None,
        grantor: Optional[PermissionContext] = None,
    ) -> CustomRole:
        """
        Update any subset of name, description, based_on_role, permissions, is_default.

        A supplied ``permissions`` map replaces the stored overrides entirely.

        Raises:
            RoleNotFoundError: the role does not exist in ``organization_id``
            RoleValidationError: invalid field value or unknown field
            RoleConflictError: the new name is taken
            RolePrivilegeError: the role, before or after the change, would allow something
                ``grantor`` is not allowed
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise RoleValidationError(f"Unknown fields: {', '.join(sorted(unknown))}", field=sorted(unknown)[0])

        values: Dict[str, Any] = {}
        if "name" in fields:
            values["name"] = validate_name(fields["name"])
        if "description" in fields:
            description = fields["description"]
            if description is not None and not isinstance(description, str):
                raise RoleValidationError("Description must be a string", field="description")
            values["description"] = description
        if "based_on_role" in fields:
            values["based_on_role"] = validate_base_role(fields["based_on_role"]).value
        if "permissions" in fields:
            if fields["permissions"] is None:
                raise RoleValidationError("Permissions cannot be null", field="permissions")
            values["permissions"] = validate_permissions(fields["permissions"])
        if "is_default" in fields:
            if not isinstance(fields["is_default"], bool):
                raise RoleValidationError("is_default must be true or false", field="is_default")
            values["is_default"] = fields["is_default"]

        role = await self.get_role(role_id, organization_id, for_update=True)

        if grantor is not None:
            current = CustomRoleSnapshot.build(role.id, organization_id, role.based_on_role, role.permissions)
            ensure_grantable(expand_definition(current.based_on_role, current.permissions), grantor)
            ensure_grantable(
                expand_definition(
                    SystemRole(values.get("based_on_role", current.based_on_role)),
                    values.get("permissions", current.permissions),
                ),
                grantor,
            )

        if "name" in values and values["name"] != role.name:
            existing = await self.roles.get_by_name(organization_id, values["name"])
            if existing is not None and existing.id != role.id:
                raise RoleConflictError("A role with that name already exists in the organization")

        if values.get("is_default"):
            await self.roles.clear_default(organization_id, keep_id=role.id)

        try:
            role = await self.roles.update(role, values)
        except IntegrityError:
            await self.db.rollback()
            raise RoleConflictError("A role with that name already exists in the organization")

        add_audit_log(
            self.db, actor, "update", "custom_role",
            resource_id=str(role.id),
            organization_id=organization_id,
            details=values,
        )
        await self.db.commit()
        self.cache.invalidate(role.id)

        log.info(f"Updated custom role {role.id} fields={sorted(values)}")
        return role

    async def delete_role(
        self,
        role_id: int,
        organization_id: str,
        actor: Optional[AuditActor] = None,
    ) -> None:
        """
        Delete a role that no user references.

        Raises:
            RoleNotFoundError: the role does not exist in ``organization_id``
            RoleConflictError: users still hold the role
        """
        role = await self.get_role(role_id, organization_id, for_update=True)

        in_use = await self.users.count_users_with_role(role.id)
        if in_use:
            raise RoleConflictError(f"Role in use by {in_use} user(s); reassign them before deleting")

        role_name = role.name
        try:
            await self.roles.delete(role)
        except IntegrityError:
            # An assignment landed between the check and the delete
            await self.db.rollback()
            raise RoleConflictError("Role in use; reassign its users before deleting")

        add_audit_log(
            self.db, actor, "delete", "custom_role",
            resource_id=str(role_id),
            organization_id=organization_id,
            details={"name": role_name},
        )
        await self.db.commit()
        self.cache.invalidate(role_id)

        log.info(f"Deleted custom role {role_id} ({role_name!r}) from org {organization_id}")

    async def assign_role(
        self,
        user_id: str,
        organization_id: str,
        principal: Principal,
        actor: Optional[AuditActor] = None,
        grantor: Optional[PermissionContext] = None,
    ) -> User:
        """
        Point a user's role reference at a system role or a custom role of the same organization.

        Raises:
            RoleNotFoundError: unknown user, user of another organization, or unknown custom role
            RolePrivilegeError: the assigned role would allow something ``grantor`` is not allowed
        """
        user = await self.users.get_by_id(user_id)
        if user is None or user.organization_id != organization_id:
            raise RoleNotFoundError("User not found")

        custom_role_id: Optional[int] = None
        if isinstance(principal, CustomPrincipal):
            role = await self.get_role(principal.role_id, organization_id)
            custom_role_id = role.id
            if grantor is not None:
                definition = CustomRoleSnapshot.build(role.id, organization_id, role.based_on_role, role.permissions)
                ensure_grantable(expand_definition(definition.based_on_role, definition.permissions), grantor)
        else:
            ensure_grantable(permissions_for(principal.role), grantor)

        previous = user.role
        reference = format_role_reference(principal)
        user = await self.users.set_role(user, reference, custom_role_id)

        add_audit_log(
            self.db, actor, "assign", "user",
            resource_id=user.id,
            organization_id=organization_id,
            details={"previous_role": previous, "role": reference},
        )
        await self.db.commit()

        log.info(f"Assigned role {reference} to user {user.id} (was {previous})")
        return user
