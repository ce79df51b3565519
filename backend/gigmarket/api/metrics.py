"""Business metrics endpoint: lightweight aggregates for monitoring."""

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.core.deps import get_db
from gigmarket.models.deal import Deal
from gigmarket.models.job import Job
from gigmarket.models.proposal import Proposal

router = APIRouter(tags=["metrics"])


async def _count_by_status(db: AsyncSession, model) -> dict[str, int]:
    rows = (
        await db.execute(select(model.status, func.count()).group_by(model.status))
    ).all()
    return {row[0]: row[1] for row in rows}


@router.get("/metrics")
async def get_metrics(db: AsyncSession = Depends(get_db)) -> dict:
    jobs_by_status = await _count_by_status(db, Job)
    proposals_by_status = await _count_by_status(db, Proposal)
    deals_by_status = await _count_by_status(db, Deal)

    return {
        "jobs_by_status": jobs_by_status,
        "jobs_total": sum(jobs_by_status.values()),
        "proposals_by_status": proposals_by_status,
        "proposals_total": sum(proposals_by_status.values()),
        "deals_by_status": deals_by_status,
        "deals_total": sum(deals_by_status.values()),
    }
