"""Offers exchanged inside a conversation.

An offer is a negotiation message; it carries no proposal row until it is
accepted. Answering an offer that links a proposal goes through the
proposal lifecycle, so either entry point ends in the same proposal, deal
and job state. Only the participant who did not send an offer may answer it.
"""

import logging
from decimal import Decimal

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.api.schemas import (
    CounterOfferPayload,
    CounterOfferRequest,
    NegotiationPayload,
    OfferCreate,
    OfferPayload,
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
from gigmarket.services import proposal as proposal_svc
from gigmarket.services.audit import log_audit
from gigmarket.services.conversation import add_message, get_conversation, other_participant
from gigmarket.services.deal import open_deal
from gigmarket.services.job import get_job
from gigmarket.services.notification import NotificationType, format_amount, notify
from gigmarket.services.profile import get_provider_profile
from gigmarket.services.state_machine import (
    Action,
    Actor,
    Entity,
    InvalidTransitionError,
    JobStatus,
    ProposalStatus,
    validate_transition,
)
from gigmarket.services.transaction import atomic

logger = logging.getLogger(__name__)

ACCEPTED_TEXT = "Offer accepted! Deal created for {amount}"
REJECTED_TEXT = "Offer rejected. Feel free to send a new offer or continue the discussion."
MATERIALIZED_MESSAGE = "Proposal from chat negotiation"


def _ensure_job_open(job: Job) -> None:
    if job.status != JobStatus.OPEN:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Job is no longer open for negotiation",
        )


async def _load_offer(
    db: AsyncSession, identity: Identity, message_id: int, action: Action
) -> tuple[Message, Conversation, NegotiationPayload]:
    """Load an offer message the caller may answer with ``action``."""
    result = await db.execute(
        select(Message)
        .where(Message.id == message_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    message = result.scalar_one_or_none()
    if not message:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    if message.message_type != "negotiation" or not message.negotiation_data:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Message is not an offer",
        )

    conversation = await get_conversation(db, identity, message.conversation_id)
    if message.sender_id == identity.profile_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You cannot respond to your own offer",
        )

    payload = parse_negotiation_payload(message.negotiation_data)
    try:
        validate_transition(Entity.OFFER, payload.status, action, Actor.ANY)
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return message, conversation, payload


def _set_status(message: Message, payload: NegotiationPayload, new_status: str, **extra) -> None:
    # negotiation_data.status (and the proposal link) are the only fields
    # that change after a message is sent
    message.negotiation_data = dump_negotiation_payload(
        payload.model_copy(update={"status": new_status, **extra})
    )


async def _linked_proposal(db: AsyncSession, payload: NegotiationPayload) -> Proposal | None:
    if payload.proposal_id is None:
        return None
    return await proposal_svc.get_proposal(db, payload.proposal_id, for_update=True)


async def send_offer(
    db: AsyncSession, identity: Identity, conversation_id: int, data: OfferCreate
) -> Message:
    conversation = await get_conversation(db, identity, conversation_id)
    _ensure_job_open(await get_job(db, conversation.job_id))
    await get_provider_profile(db, conversation.provider_id)

    payload = OfferPayload(
        service_description=data.service_description,
        proposed_cost=data.proposed_cost,
        service_date=data.service_date,
        service_time=data.service_time,
        additional_notes=data.additional_notes,
        attachment_url=data.attachment_url,
    )
    async with atomic(db):
        message = await add_message(
            db,
            conversation,
            sender_id=identity.profile_id,
            content=(
                f"Sent an offer: {data.service_description} - "
                f"{format_amount(data.proposed_cost)}"
            ),
            message_type="negotiation",
            attachment_url=data.attachment_url,
            negotiation_data=dump_negotiation_payload(payload),
        )
    return message


async def _materialize_and_open(
    db: AsyncSession,
    identity: Identity,
    job: Job,
    conversation: Conversation,
    message: Message,
    amount: Decimal,
) -> tuple[Proposal, Deal]:
    """Record an accepted chat offer as an accepted proposal plus its deal.

    A pending bid of the same provider is superseded by the offer: it is
    closed as countered and becomes the new row's predecessor.
    """
    await get_provider_profile(db, conversation.provider_id)
    result = await db.execute(
        select(Proposal).where(
            Proposal.job_id == job.id,
            Proposal.provider_id == conversation.provider_id,
            Proposal.status == ProposalStatus.PENDING.value,
        )
    )
    superseded = result.scalar_one_or_none()
    if superseded is not None:
        superseded.status = ProposalStatus.COUNTERED.value
        await db.flush()
        await proposal_svc.sync_negotiation_messages(db, superseded)
        queue_change(db, "proposals", "UPDATE", superseded, "job_id")

    proposal = Proposal(
        job_id=job.id,
        provider_id=conversation.provider_id,
        author_id=message.sender_id,
        previous_proposal_id=superseded.id if superseded else None,
        amount=amount,
        message=message.content or MATERIALIZED_MESSAGE,
        status=ProposalStatus.ACCEPTED.value,
    )
    db.add(proposal)
    await db.flush()
    deal = await open_deal(db, job, proposal)
    queue_change(db, "proposals", "INSERT", proposal, "job_id")

    await notify(
        db,
        NotificationType.DEAL_CREATED,
        user_id=message.sender_id,
        actor_id=identity.profile_id,
        job_id=job.id,
        proposal_id=proposal.id,
        deal_id=deal.id,
        conversation_id=conversation.id,
        job_title=job.title,
        amount=deal.agreed_amount,
    )
    await log_audit(
        db,
        action="offer.accept",
        entity_type="message",
        entity_id=message.id,
        user_id=identity.profile_id,
        details={"proposal_id": proposal.id, "deal_id": deal.id, "amount": amount},
    )
    return proposal, deal


async def accept_offer(
    db: AsyncSession, identity: Identity, message_id: int
) -> tuple[Message, Proposal, Deal]:
    """Accept an offer: proposal accepted, deal opened, job started, in one commit."""
    async with atomic(db, proposal_svc.JOB_TAKEN):
        message, conversation, payload = await _load_offer(
            db, identity, message_id, Action.ACCEPT
        )
        job = await get_job(db, conversation.job_id)

        proposal = await _linked_proposal(db, payload)
        if proposal is not None:
            deal = await proposal_svc.accept_in_transaction(db, identity, job, proposal)
        else:
            _ensure_job_open(job)
            proposal, deal = await _materialize_and_open(
                db, identity, job, conversation, message, payload.value
            )

        _set_status(message, payload, ProposalStatus.ACCEPTED.value, proposal_id=proposal.id)
        queue_change(db, "messages", "UPDATE", message, "conversation_id")
        await add_message(
            db,
            conversation,
            sender_id=identity.profile_id,
            content=ACCEPTED_TEXT.format(amount=format_amount(deal.agreed_amount)),
            notify_recipient=False,
        )

    return message, proposal, deal


async def reject_offer(
    db: AsyncSession, identity: Identity, message_id: int
) -> tuple[Message, Proposal | None]:
    async with atomic(db):
        message, conversation, payload = await _load_offer(
            db, identity, message_id, Action.REJECT
        )

        proposal = await _linked_proposal(db, payload)
        if proposal is not None and proposal.status == ProposalStatus.PENDING:
            job = await get_job(db, conversation.job_id)
            await proposal_svc.reject_in_transaction(db, identity, job, proposal)
        else:
            job = await get_job(db, conversation.job_id)
            await notify(
                db,
                NotificationType.PROPOSAL_REJECTED,
                user_id=message.sender_id,
                actor_id=identity.profile_id,
                job_id=job.id,
                conversation_id=conversation.id,
                job_title=job.title,
            )

        _set_status(message, payload, ProposalStatus.REJECTED.value)
        queue_change(db, "messages", "UPDATE", message, "conversation_id")
        await add_message(
            db,
            conversation,
            sender_id=identity.profile_id,
            content=REJECTED_TEXT,
            notify_recipient=False,
        )

    return message, proposal


async def counter_offer(
    db: AsyncSession, identity: Identity, message_id: int, data: CounterOfferRequest
) -> tuple[Message, Proposal | None]:
    """Close an offer as countered and post the counter as a new offer message.

    When the offer links a proposal the proposal chain is countered too and
    the new message links the new proposal row.
    """
    async with atomic(db, "This offer was already answered"):
        message, conversation, payload = await _load_offer(
            db, identity, message_id, Action.COUNTER
        )
        job = await get_job(db, conversation.job_id)
        _ensure_job_open(job)

        counter_proposal: Proposal | None = None
        proposal = await _linked_proposal(db, payload)
        if proposal is not None and proposal.status == ProposalStatus.PENDING:
            counter_proposal = await proposal_svc.counter_in_transaction(
                db, identity, job, proposal, data.amount, data.message
            )
        else:
            await notify(
                db,
                NotificationType.COUNTER_PROPOSAL,
                user_id=other_participant(conversation, identity.profile_id),
                actor_id=identity.profile_id,
                job_id=job.id,
                conversation_id=conversation.id,
                job_title=job.title,
                amount=data.amount,
            )

        _set_status(message, payload, ProposalStatus.COUNTERED.value)
        queue_change(db, "messages", "UPDATE", message, "conversation_id")

        counter_payload = CounterOfferPayload(
            amount=data.amount,
            original_amount=payload.value,
            message=data.message,
            proposal_id=counter_proposal.id if counter_proposal else None,
        )
        counter_message = await add_message(
            db,
            conversation,
            sender_id=identity.profile_id,
            content=f"Counter offer: {data.message}" if data.message else "Counter offer",
            message_type="negotiation",
            negotiation_data=dump_negotiation_payload(counter_payload),
            notify_recipient=False,
        )

    return counter_message, counter_proposal
