"""WebSocket subscription to row-change events.

``/realtime?token=<jwt>&table=<table>&filter=<column>=eq.<id>``

The connection is authorized once, when it opens: a subscriber may only
listen on rows it is allowed to read. Each event is forwarded as the JSON
text published by the services.
"""

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.core.realtime import channel_name, listen, parse_filter
from gigmarket.core.security import identity_of, profile_from_token
from gigmarket.db.session import async_session_factory
from gigmarket.models.conversation import Conversation
from gigmarket.models.job import Job

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


async def can_subscribe(db: AsyncSession, profile_id: int, table: str, value: int) -> bool:
    if table == "notifications":
        return value == profile_id
    if table == "messages":
        conversation = (
            await db.execute(select(Conversation).where(Conversation.id == value))
        ).scalar_one_or_none()
        return conversation is not None and profile_id in (
            conversation.client_id,
            conversation.provider_id,
        )
    if table == "proposals":
        client_id = (
            await db.execute(select(Job.client_id).where(Job.id == value))
        ).scalar_one_or_none()
        return client_id == profile_id
    return False



async def _forward(websocket: WebSocket, channel: str) -> None:
    async for payload in listen(channel):
        await websocket.send_text(payload)


async def _until_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def stream_channel(websocket: WebSocket, channel: str) -> None:
    """Forward events on ``channel`` until the subscriber goes away.

    The socket is read alongside the pub/sub stream, so a disconnect on a
    quiet channel releases the Redis subscription at once.
    """
    forward = asyncio.create_task(_forward(websocket, channel))
    closed = asyncio.create_task(_until_disconnect(websocket))
    try:
        done, _ = await asyncio.wait({forward, closed}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (forward, closed):
            task.cancel()
        await asyncio.gather(forward, closed, return_exceptions=True)

    if forward in done and not forward.cancelled():
        exc = forward.exception()
        if exc is not None and not isinstance(exc, WebSocketDisconnect):
            logger.error("Realtime stream failed on %s", channel, exc_info=exc)
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
            return
    logger.debug("Realtime subscriber left %s", channel)


@router.websocket("/realtime")
async def realtime(
    websocket: WebSocket,
    token: str = Query(...),
    table: str = Query(...),
    row_filter: str = Query(..., alias="filter"),
):
    try:
        column, value = parse_filter(table, row_filter)
    except ValueError as exc:
        logger.info("Realtime subscription refused: %s", exc)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    async with async_session_factory() as db:
        try:
            identity = identity_of(await profile_from_token(db, token))
        except HTTPException:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        allowed = await can_subscribe(db, identity.profile_id, table, value)

    if not allowed:
        logger.warning(
            "Realtime subscription denied",
            extra={"profile_id": identity.profile_id, "table": table, "value": value},
        )
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    await stream_channel(websocket, channel_name(table, column, value))
