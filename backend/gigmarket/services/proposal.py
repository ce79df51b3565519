"""Proposal lifecycle: bids, counters, acceptance and rejection.

A negotiation between a client and one provider on one job is a chain of
proposal rows. Countering closes the current row as ``countered`` and adds
a new pending row, so only the newest row of a chain is ever actionable.
Every multi-write operation runs as a single transaction.
"""

import logging

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.api.schemas import (
    CounterRequest,
    InterestRequest,
    ProposalCreate,
    ProposalPayload,
    dump_negotiation_payload,
    parse_negotiation_payload,
)
from gigmarket.core.realtime import queue_change
from gigmarket.core.security import Identity
from gigmarket.models.conversation import Conversation
from gigmarket.models.deal import Deal
from gigmarket.models.job import Job
from gigmarket.models.message import Message
from gigmarket.models.proposal import Proposal
from gigmarket.services.audit import log_audit
from gigmarket.services.conversation import add_message, find_or_add_conversation
from gigmarket.services.deal import open_deal
from gigmarket.services.job import get_job
from gigmarket.services.notification import NotificationType, notify
from gigmarket.services.state_machine import (
    Action,
    Actor,
    Entity,
    InvalidTransitionError,
    JobStatus,
    ProposalStatus,
    get_available_actions,
    validate_transition,
)
from gigmarket.services.transaction import atomic

logger = logging.getLogger(__name__)

LIVE_STATUSES = (ProposalStatus.PENDING.value, ProposalStatus.ACCEPTED.value)

ALREADY_APPLIED = "You have already applied to this job"
JOB_TAKEN = "This job already has an accepted proposal"

DEFAULT_INTEREST_MESSAGE = "I'm interested in this project. Let's discuss the details."
DEFAULT_ACCEPT_BUDGET_MESSAGE = (
    "I accept your budget and am ready to start working on this project."
)


# ---------------------------------------------------------------------------
# Lookups and guards
# ---------------------------------------------------------------------------


async def get_proposal(db: AsyncSession, proposal_id: int, *, for_update: bool = False) -> Proposal:
    query = select(Proposal).where(Proposal.id == proposal_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    proposal = result.scalar_one_or_none()
    if not proposal:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Proposal not found")
    return proposal


def actor_for(identity: Identity, job: Job, proposal: Proposal) -> Actor:
    """Role of the caller towards one proposal row.

    The job owner may answer any row of their job. The provider may only
    answer a row the client wrote, i.e. a counter offer addressed to them.
    """
    if identity.profile_id == job.client_id:
        return Actor.CLIENT
    if (
        identity.profile_id == proposal.provider_id
        and proposal.author_id is not None
        and proposal.author_id != proposal.provider_id
    ):
        return Actor.PROVIDER
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="You cannot respond to this proposal",
    )


def counterparty_of(actor: Actor, job: Job, proposal: Proposal) -> int:
    return proposal.provider_id if actor == Actor.CLIENT else job.client_id


def _check_transition(proposal: Proposal, action: Action, actor: Actor):
    try:
        return validate_transition(Entity.PROPOSAL, proposal.status, action, actor)
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc


def _ensure_job_open(job: Job) -> None:
    if job.status != JobStatus.OPEN:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Job is not open for proposals",
        )


async def _check_can_bid(db: AsyncSession, identity: Identity, job: Job) -> None:
    if not identity.is_provider:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only providers can submit proposals",
        )
    if job.client_id == identity.profile_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You cannot submit a proposal on your own job",
        )
    _ensure_job_open(job)

    result = await db.execute(
        select(Proposal.id).where(
            Proposal.job_id == job.id,
            Proposal.provider_id == identity.profile_id,
            Proposal.status.in_(LIVE_STATUSES),
        )
    )
    if result.first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=ALREADY_APPLIED)


# ---------------------------------------------------------------------------
# Negotiation message sync
# ---------------------------------------------------------------------------


async def sync_negotiation_messages(db: AsyncSession, proposal: Proposal) -> int:
    """Mirror ``proposal.status`` into every chat payload that links it.

    Runs inside the caller's transaction; returns the number of messages
    rewritten.
    """
    result = await db.execute(
        select(Message)
        .join(Conversation, Conversation.id == Message.conversation_id)
        .where(
            Conversation.job_id == proposal.job_id,
            Conversation.provider_id == proposal.provider_id,
            Message.message_type == "negotiation",
        )
    )
    changed = 0
    for message in result.scalars().all():
        if not message.negotiation_data:
            continue
        payload = parse_negotiation_payload(message.negotiation_data)
        if payload.proposal_id != proposal.id or payload.status == proposal.status:
            continue
        message.negotiation_data = dump_negotiation_payload(
            payload.model_copy(update={"status": proposal.status})
        )
        queue_change(db, "messages", "UPDATE", message, "conversation_id")
        changed += 1
    return changed


# ---------------------------------------------------------------------------
# In-transaction steps (shared with the chat negotiation bridge)
# ---------------------------------------------------------------------------


async def accept_in_transaction(
    db: AsyncSession, identity: Identity, job: Job, proposal: Proposal
) -> Deal:
    actor = actor_for(identity, job, proposal)
    new_status = _check_transition(proposal, Action.ACCEPT, actor)
    _ensure_job_open(job)

    proposal.status = new_status.value
    await db.flush()
    deal = await open_deal(db, job, proposal)
    await sync_negotiation_messages(db, proposal)
    queue_change(db, "proposals", "UPDATE", proposal, "job_id")

    await notify(
        db,
        NotificationType.DEAL_CREATED,
        user_id=counterparty_of(actor, job, proposal),
        actor_id=identity.profile_id,
        job_id=job.id,
        proposal_id=proposal.id,
        deal_id=deal.id,
        job_title=job.title,
        amount=deal.agreed_amount,
    )
    await log_audit(
        db,
        action="proposal.accept",
        entity_type="proposal",
        entity_id=proposal.id,
        user_id=identity.profile_id,
        details={"deal_id": deal.id, "amount": proposal.amount},
    )
    return deal


async def reject_in_transaction(
    db: AsyncSession, identity: Identity, job: Job, proposal: Proposal
) -> Proposal:
    actor = actor_for(identity, job, proposal)
    new_status = _check_transition(proposal, Action.REJECT, actor)

    proposal.status = new_status.value
    await db.flush()
    await sync_negotiation_messages(db, proposal)
    queue_change(db, "proposals", "UPDATE", proposal, "job_id")

    await notify(
        db,
        NotificationType.PROPOSAL_REJECTED,
        user_id=counterparty_of(actor, job, proposal),
        actor_id=identity.profile_id,
        job_id=job.id,
        proposal_id=proposal.id,
        job_title=job.title,
    )
    return proposal


async def counter_in_transaction(
    db: AsyncSession,
    identity: Identity,
    job: Job,
    proposal: Proposal,
    amount,
    message: str | None,
) -> Proposal:
    actor = actor_for(identity, job, proposal)
    new_status = _check_transition(proposal, Action.COUNTER, actor)
    _ensure_job_open(job)

    proposal.status = new_status.value
    # The old row must leave the live set before its successor is inserted
    await db.flush()

    counter = Proposal(
        job_id=proposal.job_id,
        provider_id=proposal.provider_id,
        author_id=identity.profile_id,
        previous_proposal_id=proposal.id,
        amount=amount,
        message=f"Counter offer: {message}" if message else "Counter offer",
        status=ProposalStatus.PENDING.value,
    )
    db.add(counter)
    await db.flush()

    await sync_negotiation_messages(db, proposal)
    queue_change(db, "proposals", "UPDATE", proposal, "job_id")
    queue_change(db, "proposals", "INSERT", counter, "job_id")

    await notify(
        db,
        NotificationType.COUNTER_PROPOSAL,
        user_id=counterparty_of(actor, job, proposal),
        actor_id=identity.profile_id,
        job_id=job.id,
        proposal_id=counter.id,
        job_title=job.title,
        amount=amount,
    )
    await log_audit(
        db,
        action="proposal.counter",
        entity_type="proposal",
        entity_id=proposal.id,
        user_id=identity.profile_id,
        details={"new_proposal_id": counter.id, "amount": amount},
    )
    return counter


# ---------------------------------------------------------------------------
# Provider operations
# ---------------------------------------------------------------------------


async def create_proposal(
    db: AsyncSession, identity: Identity, job_id: int, data: ProposalCreate
) -> Proposal:
    job = await get_job(db, job_id)
    await _check_can_bid(db, identity, job)

    if not (job.budget_min <= data.amount <= job.budget_max):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Amount must be between {job.budget_min} and {job.budget_max}",
        )

    async with atomic(db, ALREADY_APPLIED):
        proposal = Proposal(
            job_id=job.id,
            provider_id=identity.profile_id,
            author_id=identity.profile_id,
            amount=data.amount,
            message=data.message,
            status=ProposalStatus.PENDING.value,
        )
        db.add(proposal)
        await db.flush()
        queue_change(db, "proposals", "INSERT", proposal, "job_id")
        await notify(
            db,
            NotificationType.PROPOSAL_RECEIVED,
            user_id=job.client_id,
            actor_id=identity.profile_id,
            job_id=job.id,
            proposal_id=proposal.id,
            job_title=job.title,
            amount=proposal.amount,
        )

    logger.info("Proposal created", extra={"proposal_id": proposal.id, "job_id": job.id})
    return proposal


async def express_interest(
    db: AsyncSession, identity: Identity, job_id: int, data: InterestRequest
) -> tuple[Proposal, Conversation]:
    """Bid the posted budget and open the chat with a mirrored proposal message."""
    job = await get_job(db, job_id)
    await _check_can_bid(db, identity, job)
    text = data.message or DEFAULT_INTEREST_MESSAGE

    async with atomic(db, ALREADY_APPLIED):
        proposal = Proposal(
            job_id=job.id,
            provider_id=identity.profile_id,
            author_id=identity.profile_id,
            amount=job.budget_max,
            message=text,
            status=ProposalStatus.PENDING.value,
        )
        db.add(proposal)
        await db.flush()
        queue_change(db, "proposals", "INSERT", proposal, "job_id")

        conversation = await find_or_add_conversation(
            db,
            job_id=job.id,
            client_id=job.client_id,
            provider_id=identity.profile_id,
            proposal_id=proposal.id,
        )
        payload = ProposalPayload(amount=proposal.amount, proposal_id=proposal.id)
        await add_message(
            db,
            conversation,
            sender_id=identity.profile_id,
            content=text,
            message_type="negotiation",
            negotiation_data=dump_negotiation_payload(payload),
            notify_recipient=False,
        )
        await notify(
            db,
            NotificationType.PROPOSAL_RECEIVED,
            user_id=job.client_id,
            actor_id=identity.profile_id,
            job_id=job.id,
            proposal_id=proposal.id,
            conversation_id=conversation.id,
            job_title=job.title,
            amount=proposal.amount,
        )

    return proposal, conversation


async def accept_budget(
    db: AsyncSession, identity: Identity, job_id: int, data: InterestRequest
) -> tuple[Proposal, Deal]:
    """Take the job at its posted budget: accepted proposal and deal at once.

    Of several providers racing for the same job exactly one wins; the
    others get 409 from the uniqueness constraints or the conditional job
    update.
    """
    job = await get_job(db, job_id)
    await _check_can_bid(db, identity, job)

    async with atomic(db, JOB_TAKEN):
        # Accepting the posted budget is the client's acceptance in advance
        proposal = Proposal(
            job_id=job.id,
            provider_id=identity.profile_id,
            author_id=identity.profile_id,
            amount=job.budget_max,
            message=data.message or DEFAULT_ACCEPT_BUDGET_MESSAGE,
            status=ProposalStatus.ACCEPTED.value,
        )
        db.add(proposal)
        await db.flush()
        deal = await open_deal(db, job, proposal)
        queue_change(db, "proposals", "INSERT", proposal, "job_id")

        await notify(
            db,
            NotificationType.DEAL_CREATED,
            user_id=job.client_id,
            actor_id=identity.profile_id,
            job_id=job.id,
            proposal_id=proposal.id,
            deal_id=deal.id,
            job_title=job.title,
            amount=deal.agreed_amount,
        )
        await log_audit(
            db,
            action="proposal.accept_budget",
            entity_type="proposal",
            entity_id=proposal.id,
            user_id=identity.profile_id,
            details={"deal_id": deal.id, "amount": proposal.amount},
        )

    logger.info("Budget accepted", extra={"job_id": job.id, "deal_id": deal.id})
    return proposal, deal


# ---------------------------------------------------------------------------
# Responses to a proposal
# ---------------------------------------------------------------------------


async def accept_proposal(
    db: AsyncSession, identity: Identity, proposal_id: int
) -> tuple[Proposal, Deal]:
    async with atomic(db, JOB_TAKEN):
        proposal = await get_proposal(db, proposal_id, for_update=True)
        job = await get_job(db, proposal.job_id)
        deal = await accept_in_transaction(db, identity, job, proposal)
    return proposal, deal


async def reject_proposal(db: AsyncSession, identity: Identity, proposal_id: int) -> Proposal:
    async with atomic(db):
        proposal = await get_proposal(db, proposal_id, for_update=True)
        job = await get_job(db, proposal.job_id)
        await reject_in_transaction(db, identity, job, proposal)
    return proposal


async def counter_proposal(
    db: AsyncSession, identity: Identity, proposal_id: int, data: CounterRequest
) -> Proposal:
    """Close the proposal as countered and return the new pending row."""
    async with atomic(db, "This proposal was already answered"):
        proposal = await get_proposal(db, proposal_id, for_update=True)
        job = await get_job(db, proposal.job_id)
        counter = await counter_in_transaction(
            db, identity, job, proposal, data.amount, data.message
        )
    return counter


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def list_job_proposals(db: AsyncSession, identity: Identity, job_id: int) -> list[Proposal]:
    """All proposals of a job for its owner; a provider sees only their own."""
    job = await get_job(db, job_id)
    query = select(Proposal).where(Proposal.job_id == job.id)
    if identity.profile_id != job.client_id:
        query = query.where(Proposal.provider_id == identity.profile_id)
    result = await db.execute(query.order_by(Proposal.created_at.asc(), Proposal.id.asc()))
    return list(result.scalars().all())


def group_proposal_chains(proposals: list[Proposal]) -> list[dict]:
    """Group proposals into per-provider chains ordered by creation time.

    The newest row of each chain is its ``latest``; it is actionable only
    while pending. Chains are returned with the most recent activity first.
    """
    chains: dict[tuple[int, int], list[Proposal]] = {}
    for proposal in proposals:
        chains.setdefault((proposal.job_id, proposal.provider_id), []).append(proposal)

    grouped = []
    for (job_id, provider_id), rows in chains.items():
        rows.sort(key=lambda p: (p.created_at, p.id))
        latest = rows[-1]
        grouped.append({
            "job_id": job_id,
            "provider_id": provider_id,
            "provider": latest.provider,
            "proposals": rows,
            "latest": latest,
            "actionable_proposal_id": (
                latest.id if latest.status == ProposalStatus.PENDING else None
            ),
        })

    grouped.sort(key=lambda c: (c["latest"].created_at, c["latest"].id), reverse=True)
    return grouped


async def list_job_proposal_chains(
    db: AsyncSession, identity: Identity, job_id: int
) -> list[dict]:
    job = await get_job(db, job_id)
    chains = group_proposal_chains(await list_job_proposals(db, identity, job_id))
    for chain in chains:
        latest = chain["latest"]
        try:
            actor = actor_for(identity, job, latest)
        except HTTPException:
            chain["available_actions"] = []
            continue
        chain["available_actions"] = get_available_actions(
            Entity.PROPOSAL, latest.status, actor
        )
    return chains


async def list_provider_proposals(db: AsyncSession, identity: Identity) -> list[Proposal]:
    result = await db.execute(
        select(Proposal)
        .where(Proposal.provider_id == identity.profile_id)
        .order_by(Proposal.created_at.desc(), Proposal.id.desc())
    )
    return list(result.scalars().all())

