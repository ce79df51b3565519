import logging

from fastapi import HTTPException, status
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.core.security import Identity
from gigmarket.db.base import utcnow
from gigmarket.models.conversation import Conversation
from gigmarket.models.deal import Deal
from gigmarket.models.job import Job
from gigmarket.models.proposal import Proposal
from gigmarket.services.audit import log_audit
from gigmarket.services.job import finish_job, get_job, start_job
from gigmarket.services.notification import NotificationType, notify
from gigmarket.services.state_machine import (
    Action,
    Actor,
    DealStatus,
    Entity,
    InvalidTransitionError,
    get_available_actions,
    validate_transition,
)
from gigmarket.services.transaction import atomic

logger = logging.getLogger(__name__)


async def open_deal(
    db: AsyncSession,
    job: Job,
    proposal: Proposal,
    *,
    start: bool = True,
) -> Deal:
    """Create the deal for an accepted proposal inside the caller's transaction.

    Starts the job (unless ``start`` is False, for a job already in
    progress) and links the participants' conversation to the deal.
    """
    if start:
        await start_job(db, job.id)

    deal = Deal(
        job_id=job.id,
        client_id=job.client_id,
        provider_id=proposal.provider_id,
        proposal_id=proposal.id,
        agreed_amount=proposal.amount,
        status=DealStatus.ACTIVE.value,
    )
    db.add(deal)
    await db.flush()

    await db.execute(
        update(Conversation)
        .where(
            Conversation.job_id == job.id,
            Conversation.client_id == job.client_id,
            Conversation.provider_id == proposal.provider_id,
        )
        .values(deal_id=deal.id, proposal_id=proposal.id)
        .execution_options(synchronize_session=False)
    )

    logger.info(
        "Deal opened",
        extra={"deal_id": deal.id, "job_id": job.id, "proposal_id": proposal.id},
    )
    return deal


async def get_deal(db: AsyncSession, identity: Identity, deal_id: int) -> Deal:
    result = await db.execute(select(Deal).where(Deal.id == deal_id))
    deal = result.scalar_one_or_none()
    if not deal:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deal not found")
    if identity.profile_id not in (deal.client_id, deal.provider_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a participant in this deal",
        )
    return deal


async def list_deals_for_user(
    db: AsyncSession,
    identity: Identity,
    deal_status: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[Deal]:
    query = select(Deal).where(
        or_(Deal.client_id == identity.profile_id, Deal.provider_id == identity.profile_id)
    )
    if deal_status is not None:
        query = query.where(Deal.status == deal_status)
    result = await db.execute(
        query.order_by(Deal.created_at.desc(), Deal.id.desc()).offset(offset).limit(limit)
    )
    return list(result.scalars().all())


def deal_actions_for(deal: Deal, identity: Identity) -> list[str]:
    actor = Actor.CLIENT if identity.profile_id == deal.client_id else Actor.PROVIDER
    return get_available_actions(Entity.DEAL, deal.status, actor)


async def mark_deal_completed(db: AsyncSession, identity: Identity, deal_id: int) -> Deal:
    """Complete an active deal and its job. A second call is refused with 409."""
    deal = await get_deal(db, identity, deal_id)
    if deal.client_id != identity.profile_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the client can mark a deal as completed",
        )

    try:
        new_status = validate_transition(Entity.DEAL, deal.status, Action.COMPLETE, Actor.CLIENT)
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    job = await get_job(db, deal.job_id)

    async with atomic(db):
        # Conditional so a concurrent second completion cannot overwrite completed_at
        result = await db.execute(
            update(Deal)
            .where(Deal.id == deal.id, Deal.status == DealStatus.ACTIVE.value)
            .values(status=new_status.value, completed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Deal is already completed",
            )
        await finish_job(db, deal.job_id)
        await notify(
            db,
            NotificationType.DEAL_COMPLETED,
            user_id=deal.provider_id,
            actor_id=identity.profile_id,
            job_id=deal.job_id,
            deal_id=deal.id,
            proposal_id=deal.proposal_id,
            job_title=job.title,
        )
        await log_audit(
            db,
            action="deal.complete",
            entity_type="deal",
            entity_id=deal.id,
            user_id=identity.profile_id,
        )

    await db.refresh(deal)
    return deal
