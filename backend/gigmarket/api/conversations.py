from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.api.schemas import (
    AttachmentResponse,
    ConversationCreate,
    ConversationResponse,
    ConversationSummary,
    MarkReadResponse,
    MessageCreate,
    MessageResponse,
    OfferCreate,
)
from gigmarket.core.config import settings
from gigmarket.core.deps import get_db
from gigmarket.core.rate_limit import limiter
from gigmarket.core.security import Identity, get_identity
from gigmarket.services import conversation as conversation_svc
from gigmarket.services.negotiation import send_offer
from gigmarket.services.notification import mark_conversation_notifications_read
from gigmarket.services.storage import read_upload, upload_image

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.post("", response_model=ConversationResponse)
async def open_conversation(
    body: ConversationCreate,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    """Return the conversation for (job, client, provider), creating it if needed."""
    return await conversation_svc.get_or_create_conversation(db, identity, body)


@router.get("", response_model=list[ConversationSummary])
async def list_conversations(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    return await conversation_svc.list_conversations(db, identity)


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    return await conversation_svc.get_conversation(db, identity, conversation_id)


@router.get("/{conversation_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    conversation_id: int,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    return await conversation_svc.list_messages(
        db, identity, conversation_id, offset=offset, limit=limit
    )


@router.post(
    "/{conversation_id}/messages", response_model=MessageResponse, status_code=201
)
@limiter.limit(settings.rate_limit_messages)
async def send_message(
    request: Request,
    conversation_id: int,
    body: MessageCreate,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    return await conversation_svc.send_message(db, identity, conversation_id, body)


@router.post("/{conversation_id}/offers", response_model=MessageResponse, status_code=201)
@limiter.limit(settings.rate_limit_messages)
async def create_offer(
    request: Request,
    conversation_id: int,
    body: OfferCreate,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    """Send a structured service offer into the conversation."""
    return await send_offer(db, identity, conversation_id, body)


@router.post(
    "/{conversation_id}/attachments", response_model=AttachmentResponse, status_code=201
)
@limiter.limit(settings.rate_limit_messages)
async def upload_attachment(
    request: Request,
    conversation_id: int,
    filename: str | None = Query(default=None),
    content_type: str | None = Header(default=None),
    x_filename: str | None = Header(default=None),
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    """Upload a chat image (raw request body) and return its public URL."""
    await conversation_svc.get_conversation(db, identity, conversation_id)
    body = await read_upload(request)
    url = await upload_image(conversation_id, filename or x_filename, content_type, body)
    return AttachmentResponse(url=url, content_type=content_type, size=len(body))


@router.post("/{conversation_id}/notifications/read", response_model=MarkReadResponse)
async def read_conversation_notifications(
    conversation_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    await conversation_svc.get_conversation(db, identity, conversation_id)
    updated = await mark_conversation_notifications_read(db, identity, conversation_id)
    return MarkReadResponse(updated=updated)
