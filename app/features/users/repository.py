"""
User lookups needed by the authorization core.
"""
from typing import Optional
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.principal import CustomPrincipal, format_role_reference
from app.features.users.models import User


class UserRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def count_users_with_role(self, role_id: int) -> int:
        """Number of users whose role reference points at custom role ``role_id``."""
        result = await self.db.execute(
            select(func.count())
            .select_from(User)
            .where(
                or_(
                    User.custom_role_id == role_id,
                    User.role == format_role_reference(CustomPrincipal(role_id)),
                )
            )
        )
        return result.scalar_one()

    async def set_role(self, user: User, reference: str, custom_role_id: Optional[int]) -> User:
        user.role = reference
        user.custom_role_id = custom_role_id
        await self.db.flush()
        await self.db.refresh(user)
        return user
