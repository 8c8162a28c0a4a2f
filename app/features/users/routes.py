"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.users.schemas import UserResponse, UserUpdate
from app.features.users.dependencies import get_current_user, get_current_admin_user
from app.features.permissions.dependencies import get_role_resolver
from app.features.permissions.resolver import RoleResolver


router = APIRouter(tags=["users"])


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)]
):
    """Get current authenticated user's profile."""
    return user


@router.patch("/me", response_model=UserResponse)
async def update_current_user_profile(
    update_data: UserUpdate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update current user's profile."""
    if update_data.name is not None:
        user.name = update_data.name

    await db.commit()
    await db.refresh(user)
    return user


async def _get_other_user(user_id: str, admin: User, db: AsyncSession) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    if user.id == admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot modify your own account"
        )
    return user


# System admin routes
@router.patch("/{user_id}/admin", response_model=UserResponse)
async def toggle_system_admin(
    user_id: str,
    admin: Annotated[User, Depends(get_current_admin_user)],
    resolver: Annotated[RoleResolver, Depends(get_role_resolver)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Toggle system-admin status for a user (system admin only)."""
    user = await _get_other_user(user_id, admin, db)

    user.is_system_admin = not user.is_system_admin
    await db.commit()
    await db.refresh(user)

    # Every cached role of this user was computed with the old flag
    resolver.invalidate_user(user.id)
    return user


@router.delete("/{user_id}")
async def deactivate_user(
    user_id: str,
    admin: Annotated[User, Depends(get_current_admin_user)],
    resolver: Annotated[RoleResolver, Depends(get_role_resolver)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Deactivate a user account (system admin only)."""
    user = await _get_other_user(user_id, admin, db)

    user.is_active = False
    await db.commit()
    resolver.invalidate_user(user.id)

    return {"message": "User deactivated successfully"}
