"""Row-change events over Redis pub/sub.

Services publish INSERT/UPDATE events after commit on channels named
``realtime:<table>:<column>=eq.<value>``; the WebSocket endpoint subscribes
to one such channel per connection. Delivery is at-least-once with no
ordering guarantee, so consumers re-fetch on every event.
"""

import json
import logging
from collections.abc import AsyncIterator

from tenacity import retry, stop_after_attempt, wait_exponential

from gigmarket.core.redis_client import get_redis

logger = logging.getLogger(__name__)

# Tables and filter columns a subscriber may listen on
SUBSCRIBABLE: dict[str, frozenset[str]] = {
    "messages": frozenset({"conversation_id"}),
    "notifications": frozenset({"user_id"}),
    "proposals": frozenset({"job_id"}),
}


def channel_name(table: str, column: str, value: object) -> str:
    return f"realtime:{table}:{column}=eq.{value}"


def parse_filter(table: str, row_filter: str) -> tuple[str, int]:
    """Parse ``<column>=eq.<int>`` for a whitelisted table.

    Raises ValueError for anything else.
    """
    columns = SUBSCRIBABLE.get(table)
    if columns is None:
        raise ValueError(f"Table {table!r} is not subscribable")

    column, sep, rest = row_filter.partition("=")
    if not sep or column not in columns or not rest.startswith("eq."):
        raise ValueError(f"Unsupported filter {row_filter!r} for {table}")

    value = rest[3:]
    if not value.isdigit():
        raise ValueError(f"Filter value must be an integer id, got {value!r}")
    return column, int(value)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    reraise=True,
)
async def _publish(channel: str, payload: str) -> None:
    r = await get_redis()
    await r.publish(channel, payload)


async def publish_change(table: str, event: str, record: dict, column: str) -> None:
    """Publish a row change. Exceptions are caught and logged."""
    try:
        channel = channel_name(table, column, record[column])
        payload = json.dumps(
            {"table": table, "event": event, "record": record}, default=str
        )
        await _publish(channel, payload)
    except Exception:
        logger.exception("Realtime publish failed: %s %s", event, table)


async def listen(channel: str) -> AsyncIterator[str]:
    """Yield raw event payloads published on ``channel`` until cancelled."""
    r = await get_redis()
    pubsub = r.pubsub()
    await pubsub.subscribe(channel)
    try:
        async for message in pubsub.listen():
            if message.get("type") == "message":
                yield message["data"]
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()


# Events produced inside a transaction wait in ``session.info`` and are only
# published once that transaction has committed.
_QUEUE_KEY = "realtime_events"


def row_to_dict(obj) -> dict:
    return {c.key: getattr(obj, c.key) for c in obj.__table__.columns}


def queue_change(db, table: str, event: str, obj, column: str) -> None:
    db.info.setdefault(_QUEUE_KEY, []).append((table, event, obj, column))


def discard_queued(db) -> None:
    db.info.pop(_QUEUE_KEY, None)


async def publish_queued(db) -> None:
    events = db.info.pop(_QUEUE_KEY, [])
    for table, event, obj, column in events:
        await publish_change(table, event, row_to_dict(obj), column)
