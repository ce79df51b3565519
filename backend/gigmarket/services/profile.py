from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.models.profile import Profile


async def get_profile_by_id(db: AsyncSession, profile_id: int) -> Profile | None:
    result = await db.execute(select(Profile).where(Profile.id == profile_id))
    return result.scalar_one_or_none()


async def get_provider_profile(db: AsyncSession, profile_id: int) -> Profile:
    """The profile of a service provider; 404 if missing, 422 for any other type."""
    profile = await get_profile_by_id(db, profile_id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Provider not found")
    if profile.user_type != "provider":
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Profile is not a service provider",
        )
    return profile


async def get_profile_by_auth_id(db: AsyncSession, auth_user_id: str) -> Profile | None:
    result = await db.execute(select(Profile).where(Profile.auth_user_id == auth_user_id))
    return result.scalar_one_or_none()


async def upsert_profile(
    db: AsyncSession,
    auth_user_id: str,
    *,
    full_name: str | None = None,
    user_type: str | None = None,
    phone: str | None = None,
    location: str | None = None,
    avatar_url: str | None = None,
) -> Profile:
    """Create a profile for the auth user on first call, update it afterwards.

    Fields passed as None are left untouched on update.
    """
    profile = await get_profile_by_auth_id(db, auth_user_id)

    if profile is None:
        profile = Profile(
            auth_user_id=auth_user_id,
            full_name=full_name,
            user_type=user_type or "client",
            phone=phone,
            location=location,
            avatar_url=avatar_url,
        )
        db.add(profile)
    else:
        if full_name is not None:
            profile.full_name = full_name
        if user_type is not None:
            profile.user_type = user_type
        if phone is not None:
            profile.phone = phone
        if location is not None:
            profile.location = location
        if avatar_url is not None:
            profile.avatar_url = avatar_url

    await db.commit()
    await db.refresh(profile)
    return profile
