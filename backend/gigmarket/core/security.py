from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.core.config import settings
from gigmarket.core.deps import get_db
from gigmarket.models.profile import Profile
from gigmarket.services.profile import get_profile_by_auth_id

bearer_scheme = HTTPBearer()


@dataclass(frozen=True)
class Identity:
    """The authenticated actor, passed explicitly into every service call."""

    profile_id: int
    user_type: str

    @property
    def is_client(self) -> bool:
        return self.user_type == "client"

    @property
    def is_provider(self) -> bool:
        return self.user_type == "provider"


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.jwt_expire_minutes)
    )
    to_encode.update({"exp": expire})
    if settings.jwt_audience and "aud" not in to_encode:
        to_encode["aud"] = settings.jwt_audience
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    """Decode and validate a JWT access token."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options={"verify_aud": settings.jwt_audience is not None},
        )
        return payload
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        ) from exc


def subject_from_token(token: str) -> str:
    payload = decode_access_token(token)
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token payload missing subject",
        )
    return str(sub)


async def get_token_subject(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> str:
    """FastAPI dependency: the auth user id carried by the Bearer token."""
    return subject_from_token(credentials.credentials)


async def profile_from_token(db: AsyncSession, token: str) -> Profile:
    profile = await get_profile_by_auth_id(db, subject_from_token(token))
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Profile not found",
        )
    return profile


async def get_current_profile(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """FastAPI dependency: the Profile row of the Bearer token's subject."""
    return await profile_from_token(db, credentials.credentials)


def identity_of(profile: Profile) -> Identity:
    return Identity(profile_id=profile.id, user_type=profile.user_type)


async def get_identity(profile: Profile = Depends(get_current_profile)) -> Identity:
    return identity_of(profile)
