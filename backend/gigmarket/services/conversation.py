import logging

from fastapi import HTTPException, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.api.schemas import ConversationCreate, MessageCreate, MessageResponse
from gigmarket.core.realtime import publish_change, queue_change, row_to_dict
from gigmarket.core.security import Identity
from gigmarket.db.base import utcnow
from gigmarket.models.conversation import Conversation
from gigmarket.models.message import Message
from gigmarket.models.proposal import Proposal
from gigmarket.services.job import get_job
from gigmarket.services.notification import NotificationType, notify
from gigmarket.services.profile import get_provider_profile
from gigmarket.services.transaction import atomic

logger = logging.getLogger(__name__)


def other_participant(conversation: Conversation, profile_id: int) -> int:
    if profile_id == conversation.client_id:
        return conversation.provider_id
    return conversation.client_id


def ensure_participant(conversation: Conversation, identity: Identity) -> None:
    if identity.profile_id not in (conversation.client_id, conversation.provider_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a participant in this conversation",
        )


async def get_conversation(
    db: AsyncSession, identity: Identity, conversation_id: int
) -> Conversation:
    result = await db.execute(select(Conversation).where(Conversation.id == conversation_id))
    conversation = result.scalar_one_or_none()
    if not conversation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found"
        )
    ensure_participant(conversation, identity)
    return conversation


async def find_or_add_conversation(
    db: AsyncSession,
    *,
    job_id: int,
    client_id: int,
    provider_id: int,
    proposal_id: int | None = None,
) -> Conversation:
    """Return the (job, client, provider) conversation, adding it if missing.

    Runs inside the caller's transaction.
    """
    result = await db.execute(
        select(Conversation).where(
            Conversation.job_id == job_id,
            Conversation.client_id == client_id,
            Conversation.provider_id == provider_id,
        )
    )
    conversation = result.scalar_one_or_none()
    if conversation is None:
        conversation = Conversation(
            job_id=job_id,
            client_id=client_id,
            provider_id=provider_id,
            proposal_id=proposal_id,
            status="active",
        )
        db.add(conversation)
        await db.flush()
    elif proposal_id is not None and conversation.proposal_id is None:
        conversation.proposal_id = proposal_id
    return conversation


async def get_or_create_conversation(
    db: AsyncSession, identity: Identity, data: ConversationCreate
) -> Conversation:
    """Open the conversation between the caller and the other side of a job.

    A client names a provider; a provider always talks to the job owner.
    The provider side must be a provider profile.
    """
    job = await get_job(db, data.job_id)

    if identity.profile_id == job.client_id:
        if data.provider_id is None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="provider_id is required when the client opens a conversation",
            )
        if data.provider_id == job.client_id:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="You cannot start a conversation with yourself",
            )
        await get_provider_profile(db, data.provider_id)
        provider_id = data.provider_id
    elif not identity.is_provider:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only providers can contact a job owner",
        )
    else:
        provider_id = identity.profile_id

    if data.proposal_id is not None:
        result = await db.execute(select(Proposal).where(Proposal.id == data.proposal_id))
        proposal = result.scalar_one_or_none()
        if (
            proposal is None
            or proposal.job_id != job.id
            or proposal.provider_id != provider_id
        ):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Proposal not found"
            )

    async with atomic(db, "Conversation was created concurrently, please retry"):
        conversation = await find_or_add_conversation(
            db,
            job_id=job.id,
            client_id=job.client_id,
            provider_id=provider_id,
            proposal_id=data.proposal_id,
        )
    return conversation


async def list_conversations(db: AsyncSession, identity: Identity) -> list[dict]:
    """Conversations of the caller, most recently active first."""
    me = identity.profile_id
    result = await db.execute(
        select(Conversation)
        .where(or_(Conversation.client_id == me, Conversation.provider_id == me))
        .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
    )
    conversations = list(result.scalars().all())
    if not conversations:
        return []
    ids = [c.id for c in conversations]

    unread_rows = (
        await db.execute(
            select(Message.conversation_id, func.count(Message.id))
            .where(
                Message.conversation_id.in_(ids),
                Message.sender_id != me,
                Message.read_at.is_(None),
            )
            .group_by(Message.conversation_id)
        )
    ).all()
    unread = {row[0]: row[1] for row in unread_rows}

    latest_ids = select(func.max(Message.id)).where(
        Message.conversation_id.in_(ids)
    ).group_by(Message.conversation_id)
    last_rows = (
        await db.execute(select(Message).where(Message.id.in_(latest_ids)))
    ).scalars().all()
    last = {m.conversation_id: m for m in last_rows}

    summaries = []
    for conversation in conversations:
        entry = row_to_dict(conversation)
        entry["job_title"] = conversation.job.title if conversation.job else None
        message = last.get(conversation.id)
        entry["last_message"] = (
            MessageResponse.model_validate(message).model_dump() if message else None
        )
        entry["unread_count"] = unread.get(conversation.id, 0)
        summaries.append(entry)
    return summaries


async def list_messages(
    db: AsyncSession,
    identity: Identity,
    conversation_id: int,
    offset: int = 0,
    limit: int = 100,
) -> list[Message]:
    await get_conversation(db, identity, conversation_id)
    result = await db.execute(
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all())


async def add_message(
    db: AsyncSession,
    conversation: Conversation,
    *,
    sender_id: int,
    content: str,
    message_type: str = "text",
    attachment_url: str | None = None,
    negotiation_data: dict | None = None,
    notify_recipient: bool = True,
) -> Message:
    """Add a message inside the caller's transaction and bump the thread."""
    message = Message(
        conversation_id=conversation.id,
        sender_id=sender_id,
        content=content,
        message_type=message_type,
        attachment_url=attachment_url,
        negotiation_data=negotiation_data,
    )
    db.add(message)
    conversation.updated_at = utcnow()
    await db.flush()
    queue_change(db, "messages", "INSERT", message, "conversation_id")

    if notify_recipient:
        await notify(
            db,
            NotificationType.MESSAGE_RECEIVED,
            user_id=other_participant(conversation, sender_id),
            actor_id=sender_id,
            job_id=conversation.job_id,
            conversation_id=conversation.id,
            preview=content,
        )
    return message


async def send_message(
    db: AsyncSession, identity: Identity, conversation_id: int, data: MessageCreate
) -> Message:
    conversation = await get_conversation(db, identity, conversation_id)
    if conversation.status != "active":
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Conversation is closed"
        )
    if data.message_type == "image" and not data.attachment_url:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Image messages require an attachment_url",
        )

    async with atomic(db):
        message = await add_message(
            db,
            conversation,
            sender_id=identity.profile_id,
            content=data.content,
            message_type=data.message_type,
            attachment_url=data.attachment_url,
        )
    return message


async def mark_message_read(db: AsyncSession, identity: Identity, message_id: int) -> Message:
    """Set read_at once; only the recipient may mark a message read."""
    result = await db.execute(select(Message).where(Message.id == message_id))
    message = result.scalar_one_or_none()
    if not message:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")

    await get_conversation(db, identity, message.conversation_id)
    if message.sender_id == identity.profile_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the recipient can mark a message as read",
        )

    if message.read_at is None:
        message.read_at = utcnow()
        await db.commit()
        await publish_change("messages", "UPDATE", row_to_dict(message), "conversation_id")
    return message
