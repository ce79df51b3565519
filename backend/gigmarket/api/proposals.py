from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.api.schemas import AcceptResult, CounterRequest, ProposalResponse
from gigmarket.core.config import settings
from gigmarket.core.deps import get_db
from gigmarket.core.idempotency import idempotency_guard
from gigmarket.core.rate_limit import limiter
from gigmarket.core.security import Identity, get_identity
from gigmarket.services import proposal as proposal_svc

router = APIRouter(prefix="/proposals", tags=["proposals"])


@router.get("/mine", response_model=list[ProposalResponse])
async def my_proposals(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    return await proposal_svc.list_provider_proposals(db, identity)


@router.post(
    "/{proposal_id}/accept",
    response_model=AcceptResult,
    dependencies=[Depends(idempotency_guard)],
)
async def accept_proposal(
    proposal_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    """Accept a pending proposal; opens the deal and starts the job."""
    proposal, deal = await proposal_svc.accept_proposal(db, identity, proposal_id)
    return {"proposal": proposal, "deal": deal}


@router.post("/{proposal_id}/reject", response_model=ProposalResponse)
async def reject_proposal(
    proposal_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    return await proposal_svc.reject_proposal(db, identity, proposal_id)


@router.post("/{proposal_id}/counter", response_model=ProposalResponse, status_code=201)
@limiter.limit(settings.rate_limit_proposals)
async def counter_proposal(
    request: Request,
    proposal_id: int,
    body: CounterRequest,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    """Counter a pending proposal; returns the new pending proposal."""
    return await proposal_svc.counter_proposal(db, identity, proposal_id, body)
