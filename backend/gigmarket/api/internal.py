"""Endpoints for schedulers and operators, guarded by a shared API key."""

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.api.schemas import ReconcileResponse
from gigmarket.core.config import settings
from gigmarket.core.deps import get_db
from gigmarket.services.reconcile import reconcile_acceptances

router = APIRouter(prefix="/internal", tags=["internal"])


async def require_internal_key(
    x_internal_api_key: str | None = Header(default=None),
) -> None:
    if not settings.internal_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Internal API is disabled",
        )
    if not x_internal_api_key or not hmac.compare_digest(
        x_internal_api_key, settings.internal_api_key
    ):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key")


@router.post(
    "/reconcile",
    response_model=ReconcileResponse,
    dependencies=[Depends(require_internal_key)],
)
async def reconcile(db: AsyncSession = Depends(get_db)):
    """Repair accepted proposals that have no deal."""
    return await reconcile_acceptances(db)
