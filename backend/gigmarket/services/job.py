import logging

from fastapi import HTTPException, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.api.schemas import JobCreate, JobFilter, JobResponse
from gigmarket.core.cache import cache_get, cache_set, invalidate_jobs_cache, make_cache_key
from gigmarket.core.config import settings
from gigmarket.core.security import Identity
from gigmarket.models.job import Job
from gigmarket.models.proposal import Proposal
from gigmarket.services.audit import log_audit
from gigmarket.services.state_machine import (
    Action,
    Actor,
    Entity,
    InvalidTransitionError,
    JobStatus,
    validate_transition,
)

logger = logging.getLogger(__name__)


async def create_job(db: AsyncSession, identity: Identity, data: JobCreate) -> Job:
    if not identity.is_client:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only clients can post jobs",
        )
    if data.budget_min > data.budget_max:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="budget_min must not exceed budget_max",
        )

    job = Job(
        client_id=identity.profile_id,
        title=data.title,
        description=data.description,
        category=data.category,
        location=data.location,
        status=JobStatus.OPEN.value,
        budget_min=data.budget_min,
        budget_max=data.budget_max,
        urgent=data.urgent,
    )
    db.add(job)
    await db.commit()
    await db.refresh(job, attribute_names=["client"])
    await invalidate_jobs_cache()
    logger.info("Job created", extra={"job_id": job.id, "client_id": job.client_id})
    return job


def _build_open_jobs_query(filters: JobFilter):
    query = select(Job).where(Job.status == JobStatus.OPEN.value)
    if filters.category is not None:
        query = query.where(Job.category == filters.category)
    if filters.location is not None:
        query = query.where(Job.location.ilike(f"%{filters.location}%"))
    if filters.urgent is not None:
        query = query.where(Job.urgent == filters.urgent)
    return query


async def list_open_jobs(
    db: AsyncSession,
    filters: JobFilter,
    offset: int = 0,
    limit: int = 20,
) -> dict:
    """Browse open jobs, newest first. Pages are cached in Redis."""
    cache_key = make_cache_key(
        filters.category, filters.location, filters.urgent, offset, limit
    )
    cached = await cache_get(cache_key)
    if cached is not None:
        return cached

    base = _build_open_jobs_query(filters)
    count_q = select(func.count()).select_from(base.with_only_columns(Job.id).subquery())
    total = (await db.execute(count_q)).scalar() or 0

    result = await db.execute(
        base.order_by(Job.created_at.desc(), Job.id.desc()).offset(offset).limit(limit)
    )
    items = [
        JobResponse.model_validate(job).model_dump(mode="json")
        for job in result.scalars().all()
    ]
    page = {
        "items": items,
        "total": total,
        "offset": offset,
        "limit": limit,
        "has_more": (offset + limit) < total,
    }
    await cache_set(cache_key, page, ttl=settings.cache_jobs_ttl)
    return page


async def list_jobs_for_client(db: AsyncSession, identity: Identity) -> list[Job]:
    result = await db.execute(
        select(Job)
        .where(Job.client_id == identity.profile_id)
        .order_by(Job.created_at.desc(), Job.id.desc())
    )
    return list(result.scalars().all())


async def get_job(db: AsyncSession, job_id: int) -> Job:
    result = await db.execute(select(Job).where(Job.id == job_id))
    job = result.scalar_one_or_none()
    if not job:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job


async def cancel_job(db: AsyncSession, identity: Identity, job_id: int) -> Job:
    """Cancel an open job that has not received any proposal."""
    job = await get_job(db, job_id)
    if job.client_id != identity.profile_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the job owner can cancel this job",
        )

    try:
        new_status = validate_transition(Entity.JOB, job.status, Action.CANCEL, Actor.CLIENT)
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    proposal_count = (
        await db.execute(select(func.count(Proposal.id)).where(Proposal.job_id == job.id))
    ).scalar() or 0
    if proposal_count:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Jobs with proposals cannot be cancelled",
        )

    job.status = new_status.value
    await log_audit(
        db,
        action="job.cancel",
        entity_type="job",
        entity_id=job.id,
        user_id=identity.profile_id,
    )
    await db.commit()
    await invalidate_jobs_cache()
    return job


async def start_job(db: AsyncSession, job_id: int) -> None:
    """Flip an open job to in_progress inside the caller's transaction.

    The flip is a conditional UPDATE so two concurrent acceptances cannot
    both start the same job; losing the race raises 409.
    """
    new_status = validate_transition(
        Entity.JOB, JobStatus.OPEN, Action.START, Actor.SYSTEM
    )
    result = await db.execute(
        update(Job)
        .where(Job.id == job_id, Job.status == JobStatus.OPEN.value)
        .values(status=new_status.value)
    )
    if result.rowcount != 1:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Job is no longer open",
        )


async def finish_job(db: AsyncSession, job_id: int) -> None:
    new_status = validate_transition(
        Entity.JOB, JobStatus.IN_PROGRESS, Action.FINISH, Actor.SYSTEM
    )
    await db.execute(
        update(Job)
        .where(Job.id == job_id, Job.status == JobStatus.IN_PROGRESS.value)
        .values(status=new_status.value)
    )
