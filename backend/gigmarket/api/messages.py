from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.api.schemas import CounterOfferRequest, MessageResponse, OfferActionResult
from gigmarket.core.deps import get_db
from gigmarket.core.idempotency import idempotency_guard
from gigmarket.core.security import Identity, get_identity
from gigmarket.services.conversation import mark_message_read
from gigmarket.services.negotiation import accept_offer, counter_offer, reject_offer

router = APIRouter(prefix="/messages", tags=["messages"])


@router.post("/{message_id}/read", response_model=MessageResponse)
async def read_message(
    message_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    return await mark_message_read(db, identity, message_id)


@router.post(
    "/{message_id}/accept-offer",
    response_model=OfferActionResult,
    dependencies=[Depends(idempotency_guard)],
)
async def accept_offer_message(
    message_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    """Accept an offer: creates the deal and starts the job."""
    message, proposal, deal = await accept_offer(db, identity, message_id)
    return {"message": message, "proposal": proposal, "deal": deal}


@router.post("/{message_id}/reject-offer", response_model=OfferActionResult)
async def reject_offer_message(
    message_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    message, proposal = await reject_offer(db, identity, message_id)
    return {"message": message, "proposal": proposal}


@router.post("/{message_id}/counter-offer", response_model=OfferActionResult, status_code=201)
async def counter_offer_message(
    message_id: int,
    body: CounterOfferRequest,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    """Counter an offer; returns the new counter-offer message."""
    message, proposal = await counter_offer(db, identity, message_id, body)
    return {"message": message, "proposal": proposal}
