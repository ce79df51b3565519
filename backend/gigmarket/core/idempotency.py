"""``Idempotency-Key`` guard for endpoints that create deals."""

import logging

from fastapi import Header, HTTPException, Request, status

from gigmarket.core.config import settings
from gigmarket.core.redis_client import get_redis

logger = logging.getLogger(__name__)


async def check_idempotency(key: str, ttl: int) -> bool:
    """Claim ``key`` for ``ttl`` seconds; False if it was already claimed.

    With Redis down the request is let through: the database constraints
    still prevent a second deal.
    """
    try:
        r = await get_redis()
        return bool(await r.set(f"idempotent:{key}", "1", nx=True, ex=ttl))
    except Exception:
        logger.exception("Idempotency check failed for key=%s, allowing through", key)
        return True


async def idempotency_guard(
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
) -> None:
    """Refuse a repeated key with 409. Keys are scoped to the request path."""
    if not idempotency_key:
        return
    if not await check_idempotency(
        f"{request.url.path}:{idempotency_key}", ttl=settings.idempotency_ttl
    ):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Duplicate request (Idempotency-Key already used)",
        )
