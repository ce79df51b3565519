"""JSON page cache for public job browsing.

Cache failures never fail a request: reads fall through to the database and
writes are dropped.
"""

import json
import logging
from typing import Any

from gigmarket.core.redis_client import get_redis

logger = logging.getLogger(__name__)

JOBS_PREFIX = "cache:jobs"


def make_cache_key(*parts: object) -> str:
    return ":".join([JOBS_PREFIX, *("" if p is None else str(p) for p in parts)])


async def cache_get(key: str) -> Any | None:
    try:
        r = await get_redis()
        raw = await r.get(key)
    except Exception:
        logger.exception("Cache get failed for key=%s", key)
        return None
    return json.loads(raw) if raw is not None else None


async def cache_set(key: str, value: Any, ttl: int) -> None:
    try:
        r = await get_redis()
        await r.set(key, json.dumps(value), ex=ttl)
    except Exception:
        logger.exception("Cache set failed for key=%s", key)


async def invalidate_jobs_cache() -> None:
    """Drop every cached browse page; called after any job status change."""
    try:
        r = await get_redis()
        keys = [key async for key in r.scan_iter(match=f"{JOBS_PREFIX}:*", count=100)]
        if keys:
            await r.delete(*keys)
    except Exception:
        logger.exception("Jobs cache invalidation failed")
