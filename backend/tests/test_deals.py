"""Tests for deal reads and completion."""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import HTTPException
from sqlalchemy import select

from gigmarket.api.schemas import InterestRequest
from gigmarket.core.security import Identity
from gigmarket.models.deal import Deal
from gigmarket.models.job import Job
from gigmarket.models.notification import Notification
from gigmarket.services.deal import (
    deal_actions_for,
    get_deal,
    list_deals_for_user,
    mark_deal_completed,
)
from gigmarket.services.proposal import accept_budget


def _make_deal(id: int = 1, client_id: int = 1, provider_id: int = 2, status: str = "active") -> Deal:
    deal = Deal(
        job_id=10,
        client_id=client_id,
        provider_id=provider_id,
        proposal_id=5,
        agreed_amount=Decimal("150.00"),
        status=status,
    )
    object.__setattr__(deal, "id", id)
    return deal


def _mock_db(scalar_result=None):
    db = AsyncMock()
    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = scalar_result
    db.execute = AsyncMock(return_value=mock_result)
    db.info = {}
    return db


def _mock_db_scalars(items: list):
    db = AsyncMock()
    mock_result = MagicMock()
    mock_scalars = MagicMock()
    mock_scalars.all.return_value = items
    mock_result.scalars.return_value = mock_scalars
    db.execute = AsyncMock(return_value=mock_result)
    return db


CLIENT = Identity(profile_id=1, user_type="client")
PROVIDER = Identity(profile_id=2, user_type="provider")
STRANGER = Identity(profile_id=3, user_type="provider")


class TestGetDeal:
    @pytest.mark.asyncio
    async def test_participant_reads_deal(self):
        deal = _make_deal()
        result = await get_deal(_mock_db(deal), PROVIDER, 1)
        assert result is deal

    @pytest.mark.asyncio
    async def test_not_found(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_deal(_mock_db(None), CLIENT, 99)
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_stranger_forbidden(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_deal(_mock_db(_make_deal()), STRANGER, 1)
        assert exc_info.value.status_code == 403


class TestListDeals:
    @pytest.mark.asyncio
    async def test_returns_rows(self):
        deals = [_make_deal(1), _make_deal(2)]
        result = await list_deals_for_user(_mock_db_scalars(deals), CLIENT)
        assert result == deals

    @pytest.mark.asyncio
    async def test_returns_empty_list(self):
        assert await list_deals_for_user(_mock_db_scalars([]), CLIENT, "completed") == []


class TestDealActions:
    def test_client_can_complete_active(self):
        assert deal_actions_for(_make_deal(), CLIENT) == ["complete"]

    def test_provider_has_none(self):
        assert deal_actions_for(_make_deal(), PROVIDER) == []

    def test_completed_has_none(self):
        assert deal_actions_for(_make_deal(status="completed"), CLIENT) == []


class TestMarkDealCompleted:
    @pytest.mark.asyncio
    async def test_provider_cannot_complete(self):
        with pytest.raises(HTTPException) as exc_info:
            await mark_deal_completed(_mock_db(_make_deal()), PROVIDER, 1)
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_completed_deal_is_conflict(self):
        deal = _make_deal(status="completed")
        deal.completed_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
        db = _mock_db(deal)

        with pytest.raises(HTTPException) as exc_info:
            await mark_deal_completed(db, CLIENT, 1)
        assert exc_info.value.status_code == 409
        db.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_completes_deal_and_job_once(self, session_factory, seed, people):
        client, provider = people["client"], people["provider"]
        job_id = await seed.job(client)
        async with session_factory() as s:
            _, deal = await accept_budget(s, provider, job_id, InterestRequest())

        async with session_factory() as s:
            completed = await mark_deal_completed(s, client, deal.id)
        assert completed.status == "completed"
        assert completed.completed_at is not None
        first_completed_at = completed.completed_at

        async with session_factory() as s:
            with pytest.raises(HTTPException) as exc_info:
                await mark_deal_completed(s, client, deal.id)
        assert exc_info.value.status_code == 409

        async with session_factory() as s:
            row = (await s.execute(select(Deal).where(Deal.id == deal.id))).scalar_one()
            job_status = (
                await s.execute(select(Job.status).where(Job.id == job_id))
            ).scalar_one()
            kinds = (
                await s.execute(
                    select(Notification.type).where(
                        Notification.user_id == provider.profile_id
                    )
                )
            ).scalars().all()
        assert row.completed_at.replace(tzinfo=None) == first_completed_at.replace(tzinfo=None)
        assert job_status == "completed"
        assert kinds == ["deal_completed"]
