from fastapi import APIRouter

from gigmarket.core.config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


@router.get("/config/public")
async def public_config() -> dict:
    """Public platform configuration (currency, limits, etc.)."""
    return {
        "app_name": settings.app_name,
        "currency": settings.currency,
        "max_attachment_bytes": settings.max_attachment_bytes,
    }
