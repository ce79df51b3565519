from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.api.schemas import (
    AcceptResult,
    InterestResult,
    InterestRequest,
    JobCreate,
    JobFilter,
    JobResponse,
    PaginatedJobResponse,
    ProposalChainResponse,
    ProposalCreate,
    ProposalResponse,
)
from gigmarket.core.config import settings
from gigmarket.core.deps import get_db
from gigmarket.core.idempotency import idempotency_guard
from gigmarket.core.rate_limit import limiter
from gigmarket.core.security import Identity, get_identity
from gigmarket.services import job as job_svc
from gigmarket.services import proposal as proposal_svc

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=JobResponse, status_code=201)
async def create_job(
    body: JobCreate,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    return await job_svc.create_job(db, identity, body)


@router.get("", response_model=PaginatedJobResponse)
async def browse_jobs(
    category: str | None = Query(default=None),
    location: str | None = Query(default=None),
    urgent: bool | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    filters = JobFilter(category=category, location=location, urgent=urgent)
    return await job_svc.list_open_jobs(db, filters, offset=offset, limit=limit)


@router.get("/mine", response_model=list[JobResponse])
async def my_jobs(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    return await job_svc.list_jobs_for_client(db, identity)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: int, db: AsyncSession = Depends(get_db)):
    return await job_svc.get_job(db, job_id)


@router.delete("/{job_id}", response_model=JobResponse)
async def cancel_job(
    job_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    """Cancel an open job without proposals."""
    return await job_svc.cancel_job(db, identity, job_id)


# ---------------------------------------------------------------------------
# Proposals on a job
# ---------------------------------------------------------------------------


@router.get("/{job_id}/proposals", response_model=list[ProposalChainResponse])
async def list_job_proposals(
    job_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    """Proposals grouped into per-provider negotiation chains."""
    return await proposal_svc.list_job_proposal_chains(db, identity, job_id)


@router.post("/{job_id}/proposals", response_model=ProposalResponse, status_code=201)
@limiter.limit(settings.rate_limit_proposals)
async def create_proposal(
    request: Request,
    job_id: int,
    body: ProposalCreate,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    return await proposal_svc.create_proposal(db, identity, job_id, body)


@router.post("/{job_id}/interest", response_model=InterestResult, status_code=201)
@limiter.limit(settings.rate_limit_proposals)
async def express_interest(
    request: Request,
    job_id: int,
    body: InterestRequest,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    proposal, conversation = await proposal_svc.express_interest(db, identity, job_id, body)
    return {"proposal": proposal, "conversation_id": conversation.id}


@router.post(
    "/{job_id}/accept-budget",
    response_model=AcceptResult,
    status_code=201,
    dependencies=[Depends(idempotency_guard)],
)
@limiter.limit(settings.rate_limit_proposals)
async def accept_budget(
    request: Request,
    job_id: int,
    body: InterestRequest,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    proposal, deal = await proposal_svc.accept_budget(db, identity, job_id, body)
    return {"proposal": proposal, "deal": deal}
