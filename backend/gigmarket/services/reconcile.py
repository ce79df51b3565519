"""Detect and repair acceptances that never produced a deal.

Acceptance is a single transaction, so such rows only come from data
written before that guarantee existed or by hand. Each repair commits on
its own; one failing repair does not block the others.
"""

import logging

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.models.deal import Deal
from gigmarket.models.job import Job
from gigmarket.models.proposal import Proposal
from gigmarket.services.audit import log_audit
from gigmarket.services.deal import open_deal
from gigmarket.services.proposal import sync_negotiation_messages
from gigmarket.services.state_machine import DealStatus, JobStatus, ProposalStatus
from gigmarket.services.transaction import atomic

logger = logging.getLogger(__name__)

DEAL_CREATED = "deal_created"
DEMOTED = "demoted"


async def find_inconsistent_acceptances(db: AsyncSession) -> list[Proposal]:
    """Accepted proposals that no deal references."""
    result = await db.execute(
        select(Proposal)
        .outerjoin(Deal, Deal.proposal_id == Proposal.id)
        .where(Proposal.status == ProposalStatus.ACCEPTED.value, Deal.id.is_(None))
        .order_by(Proposal.id)
    )
    return list(result.scalars().all())


async def repair_acceptance(db: AsyncSession, proposal: Proposal) -> str:
    """Give an orphan acceptance its deal, or demote it if the job moved on.

    Must be called inside a transaction; returns the outcome.
    """
    job = (await db.execute(select(Job).where(Job.id == proposal.job_id))).scalar_one()
    active = (
        await db.execute(
            select(Deal.id).where(
                Deal.job_id == job.id, Deal.status == DealStatus.ACTIVE.value
            )
        )
    ).first()

    if active is None and job.status in (JobStatus.OPEN, JobStatus.IN_PROGRESS):
        deal = await open_deal(db, job, proposal, start=job.status == JobStatus.OPEN)
        await log_audit(
            db,
            action="reconcile.deal_created",
            entity_type="proposal",
            entity_id=proposal.id,
            details={"deal_id": deal.id, "job_id": job.id},
        )
        return DEAL_CREATED

    # Repair sits outside the lifecycle table: another deal owns the job,
    # so this acceptance can never be honoured.
    proposal.status = ProposalStatus.REJECTED.value
    await db.flush()
    await sync_negotiation_messages(db, proposal)
    await log_audit(
        db,
        action="reconcile.demote",
        entity_type="proposal",
        entity_id=proposal.id,
        details={"job_id": job.id, "job_status": job.status},
    )
    return DEMOTED


async def reconcile_acceptances(db: AsyncSession) -> dict:
    proposals = await find_inconsistent_acceptances(db)
    summary = {"checked": len(proposals), "deals_created": 0, "demoted": 0}

    for proposal_id in [p.id for p in proposals]:
        try:
            async with atomic(db):
                proposal = (
                    await db.execute(
                        select(Proposal)
                        .where(Proposal.id == proposal_id)
                        .with_for_update()
                        .execution_options(populate_existing=True)
                    )
                ).scalar_one()
                if proposal.status != ProposalStatus.ACCEPTED:
                    continue
                outcome = await repair_acceptance(db, proposal)
        except HTTPException as exc:
            logger.warning(
                "Reconcile of proposal %s skipped: %s", proposal_id, exc.detail
            )
            continue

        if outcome == DEAL_CREATED:
            summary["deals_created"] += 1
        else:
            summary["demoted"] += 1
        logger.info("Reconciled proposal %s: %s", proposal_id, outcome)

    if summary["checked"]:
        logger.info("Reconcile finished", extra=summary)
    return summary
