"""Integration tests for offers exchanged in chat and their bridge to proposals."""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import HTTPException
from sqlalchemy import func, select

from gigmarket.api.schemas import (
    ConversationCreate,
    CounterOfferRequest,
    InterestRequest,
    OfferCreate,
    OfferPayload,
    ProposalCreate,
    dump_negotiation_payload,
)
from gigmarket.models.conversation import Conversation
from gigmarket.models.deal import Deal
from gigmarket.models.job import Job
from gigmarket.models.message import Message
from gigmarket.models.notification import Notification
from gigmarket.models.proposal import Proposal
from gigmarket.services.conversation import get_or_create_conversation
from gigmarket.services.negotiation import (
    REJECTED_TEXT,
    accept_offer,
    counter_offer,
    reject_offer,
    send_offer,
)
from gigmarket.services.proposal import create_proposal, express_interest


async def _call(session_factory, fn, *args):
    async with session_factory() as s:
        return await fn(s, *args)


async def _messages(session_factory, conversation_id: int) -> list[Message]:
    async with session_factory() as s:
        result = await s.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.id)
        )
        return list(result.scalars().all())


@pytest.fixture
async def chat(session_factory, seed, people):
    """An open job and the provider's conversation with its owner."""
    job_id = await seed.job(people["client"])
    conversation = await _call(
        session_factory, get_or_create_conversation, people["provider"],
        ConversationCreate(job_id=job_id),
    )
    return job_id, conversation.id


def _offer(cost: str = "150") -> OfferCreate:
    return OfferCreate(
        service_description="Replace the trap and seal",
        proposed_cost=Decimal(cost),
        service_date="2026-11-02",
        service_time="10:00",
    )


class TestSendOffer:
    @pytest.mark.asyncio
    async def test_offer_message_payload(self, session_factory, people, chat):
        _, conversation_id = chat

        message = await _call(session_factory, send_offer, people["provider"], conversation_id, _offer())

        assert message.message_type == "negotiation"
        assert message.content == "Sent an offer: Replace the trap and seal - BDT 150.00"
        data = message.negotiation_data
        assert data["type"] == "offer"
        assert data["status"] == "pending"
        assert data["proposedCost"] == 150.0
        assert data["serviceDate"] == "2026-11-02"
        assert "proposalId" not in data

    @pytest.mark.asyncio
    async def test_stranger_cannot_send(self, session_factory, people, chat):
        _, conversation_id = chat
        with pytest.raises(HTTPException) as exc_info:
            await _call(
                session_factory, send_offer, people["other_provider"], conversation_id, _offer()
            )
        assert exc_info.value.status_code == 403


class TestAcceptOffer:
    @pytest.mark.asyncio
    async def test_accept_creates_proposal_deal_and_starts_job(self, session_factory, people, chat):
        job_id, conversation_id = chat
        offer = await _call(session_factory, send_offer, people["provider"], conversation_id, _offer())

        message, proposal, deal = await _call(
            session_factory, accept_offer, people["client"], offer.id
        )

        assert message.negotiation_data["status"] == "accepted"
        assert message.negotiation_data["proposalId"] == proposal.id
        assert proposal.status == "accepted"
        assert proposal.provider_id == people["provider"].profile_id
        assert deal.agreed_amount == Decimal("150")
        assert deal.proposal_id == proposal.id

        thread = await _messages(session_factory, conversation_id)
        assert thread[-1].content == "Offer accepted! Deal created for BDT 150.00"
        assert thread[-1].sender_id == people["client"].profile_id
        async with session_factory() as s:
            job_status = (await s.execute(select(Job.status).where(Job.id == job_id))).scalar_one()
            deal_notes = (
                await s.execute(
                    select(func.count()).select_from(Notification).where(
                        Notification.user_id == people["provider"].profile_id,
                        Notification.type == "deal_created",
                    )
                )
            ).scalar_one()
        assert job_status == "in_progress"
        assert deal_notes == 1

    @pytest.mark.asyncio
    async def test_sender_cannot_accept_own_offer(self, session_factory, people, chat):
        _, conversation_id = chat
        offer = await _call(session_factory, send_offer, people["provider"], conversation_id, _offer())

        with pytest.raises(HTTPException) as exc_info:
            await _call(session_factory, accept_offer, people["provider"], offer.id)
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_offer_can_only_be_answered_once(self, session_factory, people, chat):
        _, conversation_id = chat
        offer = await _call(session_factory, send_offer, people["provider"], conversation_id, _offer())
        await _call(session_factory, accept_offer, people["client"], offer.id)

        with pytest.raises(HTTPException) as exc_info:
            await _call(session_factory, accept_offer, people["client"], offer.id)
        assert exc_info.value.status_code == 409
        async with session_factory() as s:
            deals = (await s.execute(select(func.count()).select_from(Deal))).scalar_one()
        assert deals == 1

    @pytest.mark.asyncio
    async def test_text_message_is_not_an_offer(self, session_factory, people, chat):
        from gigmarket.api.schemas import MessageCreate
        from gigmarket.services.conversation import send_message

        _, conversation_id = chat
        text = await _call(
            session_factory, send_message, people["provider"], conversation_id,
            MessageCreate(content="hello"),
        )
        with pytest.raises(HTTPException) as exc_info:
            await _call(session_factory, accept_offer, people["client"], text.id)
        assert exc_info.value.status_code == 422

    @pytest.mark.asyncio
    async def test_pending_bid_is_superseded(self, session_factory, people, chat):
        job_id, conversation_id = chat
        bid = await _call(
            session_factory, create_proposal, people["provider"], job_id,
            ProposalCreate(amount=Decimal("190")),
        )
        offer = await _call(session_factory, send_offer, people["provider"], conversation_id, _offer())

        _, proposal, _ = await _call(session_factory, accept_offer, people["client"], offer.id)

        assert proposal.previous_proposal_id == bid.id
        async with session_factory() as s:
            old = (await s.execute(select(Proposal).where(Proposal.id == bid.id))).scalar_one()
        assert old.status == "countered"


class TestLinkedProposal:
    @pytest.mark.asyncio
    async def test_chat_counter_and_accept_follow_proposal_chain(self, session_factory, seed, people):
        client, provider = people["client"], people["provider"]
        job_id = await seed.job(client)
        proposal, conversation = await _call(
            session_factory, express_interest, provider, job_id, InterestRequest()
        )
        interest_message = (await _messages(session_factory, conversation.id))[0]

        counter_message, counter = await _call(
            session_factory, counter_offer, client, interest_message.id,
            CounterOfferRequest(amount=Decimal("170"), message="Materials included?"),
        )

        assert counter is not None
        assert counter.previous_proposal_id == proposal.id
        assert counter_message.negotiation_data["type"] == "counter_offer"
        assert counter_message.negotiation_data["proposalId"] == counter.id
        assert counter_message.negotiation_data["originalAmount"] == 200.0
        assert counter_message.content == "Counter offer: Materials included?"

        _, accepted, deal = await _call(session_factory, accept_offer, provider, counter_message.id)

        assert accepted.id == counter.id
        assert deal.agreed_amount == Decimal("170")
        thread = await _messages(session_factory, conversation.id)
        statuses = {
            m.id: m.negotiation_data["status"] for m in thread if m.negotiation_data
        }
        assert statuses[interest_message.id] == "countered"
        assert statuses[counter_message.id] == "accepted"


class TestRejectAndCounterOffer:
    @pytest.mark.asyncio
    async def test_reject_offer(self, session_factory, people, chat):
        _, conversation_id = chat
        offer = await _call(session_factory, send_offer, people["provider"], conversation_id, _offer())

        message, proposal = await _call(session_factory, reject_offer, people["client"], offer.id)

        assert proposal is None
        assert message.negotiation_data["status"] == "rejected"
        thread = await _messages(session_factory, conversation_id)
        assert thread[-1].content == REJECTED_TEXT
        async with session_factory() as s:
            kinds = (
                await s.execute(
                    select(Notification.type).where(
                        Notification.user_id == people["provider"].profile_id
                    )
                )
            ).scalars().all()
        assert "proposal_rejected" in kinds

    @pytest.mark.asyncio
    async def test_counter_offer_then_accept(self, session_factory, people, chat):
        job_id, conversation_id = chat
        offer = await _call(session_factory, send_offer, people["provider"], conversation_id, _offer())

        counter_message, counter = await _call(
            session_factory, counter_offer, people["client"], offer.id,
            CounterOfferRequest(amount=Decimal("120")),
        )

        assert counter is None
        assert counter_message.sender_id == people["client"].profile_id
        assert counter_message.negotiation_data["status"] == "pending"
        assert counter_message.negotiation_data["originalAmount"] == 150.0
        assert counter_message.content == "Counter offer"

        _, proposal, deal = await _call(
            session_factory, accept_offer, people["provider"], counter_message.id
        )
        assert deal.agreed_amount == Decimal("120")
        assert proposal.author_id == people["client"].profile_id
        assert proposal.provider_id == people["provider"].profile_id


class TestAcceptOfferRollback:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "target",
        [
            "gigmarket.services.negotiation.open_deal",
            "gigmarket.services.negotiation.log_audit",
        ],
    )
    async def test_failure_leaves_offer_bid_and_job_untouched(
        self, session_factory, people, chat, target
    ):
        job_id, conversation_id = chat
        bid = await _call(
            session_factory, create_proposal, people["provider"], job_id,
            ProposalCreate(amount=Decimal("190")),
        )
        offer = await _call(session_factory, send_offer, people["provider"], conversation_id, _offer())

        with patch(target, new=AsyncMock(side_effect=RuntimeError("storage down"))):
            with pytest.raises(RuntimeError):
                await _call(session_factory, accept_offer, people["client"], offer.id)

        async with session_factory() as s:
            statuses = (
                await s.execute(select(Proposal.status).order_by(Proposal.id))
            ).scalars().all()
            job_status = (await s.execute(select(Job.status).where(Job.id == job_id))).scalar_one()
            deals = (await s.execute(select(func.count()).select_from(Deal))).scalar_one()
            deal_notes = (
                await s.execute(
                    select(func.count()).select_from(Notification).where(
                        Notification.type == "deal_created"
                    )
                )
            ).scalar_one()
        assert statuses == ["pending"]
        assert job_status == "open"
        assert deals == 0
        assert deal_notes == 0

        thread = await _messages(session_factory, conversation_id)
        assert thread[-1].id == offer.id
        assert thread[-1].negotiation_data["status"] == "pending"

        _, proposal, _ = await _call(session_factory, accept_offer, people["client"], offer.id)
        assert proposal.previous_proposal_id == bid.id


class TestProviderRole:
    @pytest.mark.asyncio
    async def test_client_cannot_name_another_client(self, session_factory, seed, people):
        job_id = await seed.job(people["client"])
        other_client = await seed.profile("client", "cora")
        with pytest.raises(HTTPException) as exc_info:
            await _call(
                session_factory, get_or_create_conversation, people["client"],
                ConversationCreate(job_id=job_id, provider_id=other_client.profile_id),
            )
        assert exc_info.value.status_code == 422

    @pytest.mark.asyncio
    async def test_client_cannot_name_unknown_profile(self, session_factory, seed, people):
        job_id = await seed.job(people["client"])
        with pytest.raises(HTTPException) as exc_info:
            await _call(
                session_factory, get_or_create_conversation, people["client"],
                ConversationCreate(job_id=job_id, provider_id=9999),
            )
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_client_names_a_provider(self, session_factory, seed, people):
        job_id = await seed.job(people["client"])
        conversation = await _call(
            session_factory, get_or_create_conversation, people["client"],
            ConversationCreate(job_id=job_id, provider_id=people["provider"].profile_id),
        )
        assert conversation.provider_id == people["provider"].profile_id
        assert conversation.client_id == people["client"].profile_id

    @pytest.mark.asyncio
    async def test_non_owner_client_cannot_open_conversation(self, session_factory, seed, people):
        job_id = await seed.job(people["client"])
        other_client = await seed.profile("client", "cora")
        with pytest.raises(HTTPException) as exc_info:
            await _call(
                session_factory, get_or_create_conversation, other_client,
                ConversationCreate(job_id=job_id),
            )
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_offer_with_client_on_provider_side_is_refused(self, session_factory, seed, people):
        job_id = await seed.job(people["client"])
        other_client = await seed.profile("client", "cora")
        async with session_factory() as s:
            conversation = Conversation(
                job_id=job_id,
                client_id=people["client"].profile_id,
                provider_id=other_client.profile_id,
                status="active",
            )
            s.add(conversation)
            await s.flush()
            payload = OfferPayload(
                service_description="Fix it", proposed_cost=Decimal("120")
            )
            offer = Message(
                conversation_id=conversation.id,
                sender_id=people["client"].profile_id,
                content="Sent an offer: Fix it - BDT 120.00",
                message_type="negotiation",
                negotiation_data=dump_negotiation_payload(payload),
            )
            s.add(offer)
            await s.commit()
            conversation_id, offer_id = conversation.id, offer.id

        with pytest.raises(HTTPException) as exc_info:
            await _call(session_factory, accept_offer, other_client, offer_id)
        assert exc_info.value.status_code == 422

        with pytest.raises(HTTPException) as exc_info:
            await _call(session_factory, send_offer, people["client"], conversation_id, _offer())
        assert exc_info.value.status_code == 422

        async with session_factory() as s:
            assert (await s.execute(select(func.count()).select_from(Deal))).scalar_one() == 0
            assert (await s.execute(select(func.count()).select_from(Proposal))).scalar_one() == 0
