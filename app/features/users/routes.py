"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.catalog import Action, Resource
from app.features.permissions.dependencies import require_permission
from app.features.users.models import User
from app.features.users.schemas import UserResponse, UserPublic
from app.features.users.dependencies import get_current_user


router = APIRouter(tags=["users"])


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)]
):
    """Get current authenticated user's profile."""
    return user


@router.get("/", response_model=list[UserPublic])
async def list_users(
    user: Annotated[User, Depends(require_permission(Resource.USER, Action.READ))],
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = 0,
    limit: int = 50
):
    """List active users of the caller's organization."""
    result = await db.execute(
        select(User)
        .where(User.is_active.is_(True), User.organization_id == user.organization_id)
        .order_by(User.name)
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all()


@router.get("/{user_id}", response_model=UserPublic)
async def get_user_by_id(
    user_id: str,
    user: Annotated[User, Depends(require_permission(Resource.USER, Action.READ))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get a user of the caller's organization."""
    result = await db.execute(select(User).where(User.id == user_id))
    target = result.scalar_one_or_none()

    if target is None or target.organization_id != user.organization_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return target
