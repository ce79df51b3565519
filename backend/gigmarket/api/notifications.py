from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.api.schemas import MarkReadResponse, NotificationResponse, UnreadCountResponse
from gigmarket.core.deps import get_db
from gigmarket.core.security import Identity, get_identity
from gigmarket.services import notification as notification_svc

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    limit: int = Query(default=100, ge=1, le=500),
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    """Newest first; unread message notifications are grouped per conversation."""
    return await notification_svc.list_notifications(db, identity, limit=limit)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    return UnreadCountResponse(count=await notification_svc.unread_count(db, identity))


@router.post("/read-all", response_model=MarkReadResponse)
async def read_all(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    updated = await notification_svc.mark_all_notifications_read(db, identity)
    return MarkReadResponse(updated=updated)


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def read_notification(
    notification_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    return await notification_svc.mark_notification_read(db, identity, notification_id)
