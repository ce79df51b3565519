from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.api.schemas import ProfileResponse, ProfileUpsert
from gigmarket.core.config import settings
from gigmarket.core.deps import get_db
from gigmarket.core.rate_limit import limiter
from gigmarket.core.security import get_current_profile, get_token_subject
from gigmarket.models.profile import Profile
from gigmarket.services.profile import upsert_profile

router = APIRouter(prefix="/me", tags=["me"])


@router.get("", response_model=ProfileResponse)
async def get_me(profile: Profile = Depends(get_current_profile)) -> Profile:
    """Return the profile of the authenticated user."""
    return profile


@router.put("", response_model=ProfileResponse)
@limiter.limit(settings.rate_limit_profile)
async def put_me(
    request: Request,
    body: ProfileUpsert,
    auth_user_id: str = Depends(get_token_subject),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """Create or update the profile of the authenticated user."""
    return await upsert_profile(db, auth_user_id, **body.model_dump())
