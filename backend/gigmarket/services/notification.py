"""Counterparty notifications and their grouped read model.

Rows are inserted inside the caller's transaction so a notification exists
if and only if the state change it announces was committed. Realtime
delivery happens after commit and is fire-and-forget.
"""

import logging
from decimal import Decimal
from enum import StrEnum

from fastapi import HTTPException, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.core.config import settings
from gigmarket.core.realtime import publish_change, queue_change, row_to_dict
from gigmarket.core.security import Identity
from gigmarket.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationType(StrEnum):
    PROPOSAL_RECEIVED = "proposal_received"
    PROPOSAL_REJECTED = "proposal_rejected"
    DEAL_CREATED = "deal_created"
    DEAL_COMPLETED = "deal_completed"
    COUNTER_PROPOSAL = "counter_proposal"
    MESSAGE_RECEIVED = "message_received"


_TEMPLATES: dict[NotificationType, tuple[str, str]] = {
    NotificationType.PROPOSAL_RECEIVED: (
        "New Proposal",
        'You received a proposal of {amount} for "{job_title}".',
    ),
    NotificationType.PROPOSAL_REJECTED: (
        "Proposal Rejected",
        'Your proposal for "{job_title}" was declined.',
    ),
    NotificationType.DEAL_CREATED: (
        "Deal Created",
        'A deal for "{job_title}" was created for {amount}.',
    ),
    NotificationType.DEAL_COMPLETED: (
        "Deal Completed",
        'The deal for "{job_title}" was marked as completed.',
    ),
    NotificationType.COUNTER_PROPOSAL: (
        "Counter Offer",
        'You received a counter offer of {amount} for "{job_title}".',
    ),
    NotificationType.MESSAGE_RECEIVED: (
        "New Message",
        "{preview}",
    ),
}

_PREVIEW_LENGTH = 100


def format_amount(amount: Decimal | float | int) -> str:
    return f"{settings.currency} {Decimal(amount):,.2f}"


def _preview(text: str) -> str:
    text = " ".join(text.split())
    if len(text) <= _PREVIEW_LENGTH:
        return text
    return text[: _PREVIEW_LENGTH - 3] + "..."


async def notify(
    db: AsyncSession,
    type: NotificationType,
    *,
    user_id: int,
    actor_id: int | None,
    job_id: int | None = None,
    proposal_id: int | None = None,
    deal_id: int | None = None,
    conversation_id: int | None = None,
    **fields,
) -> Notification | None:
    """Add one notification for ``user_id`` to the current transaction.

    Returns None when the recipient is the actor; nobody is notified about
    their own action.
    """
    if user_id == actor_id:
        return None

    if "amount" in fields and not isinstance(fields["amount"], str):
        fields["amount"] = format_amount(fields["amount"])
    if "preview" in fields:
        fields["preview"] = _preview(fields["preview"])

    title, template = _TEMPLATES[type]
    notification = Notification(
        user_id=user_id,
        type=type.value,
        title=title,
        message=template.format(**fields),
        related_job_id=job_id,
        related_proposal_id=proposal_id,
        related_deal_id=deal_id,
        related_conversation_id=conversation_id,
        read=False,
    )
    db.add(notification)
    queue_change(db, "notifications", "INSERT", notification, "user_id")
    return notification


# ---------------------------------------------------------------------------
# Read model
# ---------------------------------------------------------------------------


def group_notifications(rows: list[Notification]) -> list[dict]:
    """Collapse message notifications per conversation.

    ``rows`` must be sorted newest first. A conversation with unread
    messages becomes one entry carrying the unread count; a fully read
    conversation shows its latest notification. Everything else passes
    through unchanged. Each entry lists the ids it stands for in
    ``notification_ids``.
    """
    grouped: list[dict] = []
    conversations: dict[int, list[Notification]] = {}

    for row in rows:
        if row.type == NotificationType.MESSAGE_RECEIVED and row.related_conversation_id:
            conversations.setdefault(row.related_conversation_id, []).append(row)
        else:
            entry = row_to_dict(row)
            entry["count"] = None
            entry["notification_ids"] = [row.id]
            grouped.append(entry)

    for conversation_id, items in conversations.items():
        latest = items[0]
        unread = [n for n in items if not n.read]
        entry = row_to_dict(latest)
        entry["notification_ids"] = [n.id for n in items]
        entry["count"] = None

        if unread:
            entry["count"] = len(unread)
            entry["read"] = False
            if len(unread) > 1:
                entry["title"] = f"{len(unread)} New Messages"
                entry["message"] = (
                    f"You have {len(unread)} unread messages in this conversation"
                )
            else:
                entry["title"] = "New Message"
        grouped.append(entry)

    grouped.sort(key=lambda n: (n["created_at"], n["id"]), reverse=True)
    return grouped


async def list_notifications(
    db: AsyncSession, identity: Identity, limit: int = 100
) -> list[dict]:
    result = await db.execute(
        select(Notification)
        .where(Notification.user_id == identity.profile_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
    )
    return group_notifications(list(result.scalars().all()))


async def unread_count(db: AsyncSession, identity: Identity) -> int:
    result = await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == identity.profile_id,
            Notification.read == False,  # noqa: E712
        )
    )
    return result.scalar() or 0


async def mark_notification_read(
    db: AsyncSession, identity: Identity, notification_id: int
) -> Notification:
    result = await db.execute(
        select(Notification).where(Notification.id == notification_id)
    )
    notification = result.scalar_one_or_none()
    if notification is None or notification.user_id != identity.profile_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found"
        )

    if not notification.read:
        notification.read = True
        await db.commit()
        await publish_change(
            "notifications", "UPDATE", row_to_dict(notification), "user_id"
        )
    return notification


async def _mark_read_where(db: AsyncSession, identity: Identity, *criteria) -> int:
    result = await db.execute(
        update(Notification)
        .where(
            Notification.user_id == identity.profile_id,
            Notification.read == False,  # noqa: E712
            *criteria,
        )
        .values(read=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    updated = result.rowcount or 0
    if updated:
        await publish_change(
            "notifications", "UPDATE", {"user_id": identity.profile_id}, "user_id"
        )
    return updated


async def mark_conversation_notifications_read(
    db: AsyncSession, identity: Identity, conversation_id: int
) -> int:
    """Mark every message notification of one conversation as read."""
    return await _mark_read_where(
        db,
        identity,
        Notification.type == NotificationType.MESSAGE_RECEIVED.value,
        Notification.related_conversation_id == conversation_id,
    )


async def mark_all_notifications_read(db: AsyncSession, identity: Identity) -> int:
    return await _mark_read_where(db, identity)
