"""
Custom role persistence.
"""
from typing import Optional, Sequence
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.models import CustomRole
from app.features.permissions.resolver import CustomRoleSnapshot


class CustomRoleRepository:
    """Reads and writes ``custom_roles`` rows within the caller's session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, role_id: int, *, for_update: bool = False) -> Optional[CustomRole]:
        stmt = select(CustomRole).where(CustomRole.id == role_id)
        if for_update:
            # Row lock on backends that support it; serializes concurrent edits of one role
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_name(self, organization_id: str, name: str) -> Optional[CustomRole]:
        result = await self.db.execute(
            select(CustomRole).where(
                CustomRole.organization_id == organization_id,
                CustomRole.name == name,
            )
        )
        return result.scalar_one_or_none()

    async def list_by_organization(self, organization_id: str) -> Sequence[CustomRole]:
        result = await self.db.execute(
            select(CustomRole)
            .where(CustomRole.organization_id == organization_id)
            .order_by(CustomRole.name)
        )
        return result.scalars().all()

    async def get_default(self, organization_id: str) -> Optional[CustomRole]:
        result = await self.db.execute(
            select(CustomRole).where(
                CustomRole.organization_id == organization_id,
                CustomRole.is_default.is_(True),
            )
        )
        return result.scalars().first()

    async def insert(self, role: CustomRole) -> CustomRole:
        self.db.add(role)
        await self.db.flush()
        await self.db.refresh(role)
        return role

    async def update(self, role: CustomRole, values: dict) -> CustomRole:
        for key, value in values.items():
            setattr(role, key, value)
        await self.db.flush()
        await self.db.refresh(role)
        return role

    async def delete(self, role: CustomRole) -> None:
        await self.db.delete(role)
        await self.db.flush()

    async def clear_default(self, organization_id: str, *, keep_id: Optional[int] = None) -> None:
        """Unset ``is_default`` on every role of the organization except ``keep_id``."""
        stmt = (
            update(CustomRole)
            .where(
                CustomRole.organization_id == organization_id,
                CustomRole.is_default.is_(True),
            )
            .values(is_default=False)
            .execution_options(synchronize_session="fetch")
        )
        if keep_id is not None:
            stmt = stmt.where(CustomRole.id != keep_id)
        await self.db.execute(stmt)

    async def load_snapshot(self, role_id: int) -> Optional[CustomRoleSnapshot]:
        """Role loader used by ``PermissionResolver``."""
        result = await self.db.execute(
            select(
                CustomRole.id,
                CustomRole.organization_id,
                CustomRole.based_on_role,
                CustomRole.permissions,
            ).where(CustomRole.id == role_id)
        )
        row = result.one_or_none()
        if row is None:
            return None
        return CustomRoleSnapshot.build(row.id, row.organization_id, row.based_on_role, row.permissions)
