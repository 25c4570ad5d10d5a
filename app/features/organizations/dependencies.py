"""
Organization-related dependency injection functions.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.users.dependencies import get_current_user
from app.features.organizations.models import Organization


async def get_current_organization(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Organization:
    """
    Get the organization the current user belongs to.

    Args:
        user: Current authenticated user
        db: Database session

    Returns:
        The user's organization

    Raises:
        HTTPException: 400 if the user has no organization, 404 if it no longer exists
    """
    if user.organization_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User does not belong to an organization"
        )

    result = await db.execute(
        select(Organization).where(Organization.id == user.organization_id)
    )
    organization = result.scalar_one_or_none()

    if organization is None or not organization.is_active:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Organization not found"
        )

    return organization
