"""Single-commit units of work for multi-write operations."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.core.realtime import discard_queued, publish_queued

logger = logging.getLogger(__name__)


@asynccontextmanager
async def atomic(
    db: AsyncSession, conflict_detail: str = "Conflicting update, please retry"
) -> AsyncIterator[AsyncSession]:
    """Run the block as one transaction and commit it.

    Any exception rolls every write of the block back. A uniqueness
    violation surfaces as 409 with ``conflict_detail``. Realtime events
    queued inside the block are published only after the commit succeeds.
    """
    try:
        yield db
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        discard_queued(db)
        logger.info("Integrity conflict rolled back: %s", exc.orig)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=conflict_detail
        ) from exc
    except BaseException:
        await db.rollback()
        discard_queued(db)
        raise

    await publish_queued(db)
