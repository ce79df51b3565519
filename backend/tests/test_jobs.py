"""Tests for job posting, browsing and cancellation."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException

from gigmarket.api.schemas import JobCreate, JobFilter, ProposalCreate
from gigmarket.core.security import Identity
from gigmarket.services import job as job_svc
from gigmarket.services.job import cancel_job, create_job, list_open_jobs, start_job
from gigmarket.services.proposal import create_proposal


def _job_create(**overrides) -> JobCreate:
    data = {
        "title": "Assemble wardrobe",
        "description": "IKEA PAX, two doors",
        "category": "handyman",
        "location": "Dhaka, Gulshan",
        "budget_min": Decimal("50"),
        "budget_max": Decimal("80"),
    }
    data.update(overrides)
    return JobCreate(**data)


class TestCreateJob:
    @pytest.mark.asyncio
    async def test_provider_cannot_post(self):
        db = AsyncMock()
        with pytest.raises(HTTPException) as exc_info:
            await create_job(db, Identity(profile_id=2, user_type="provider"), _job_create())
        assert exc_info.value.status_code == 403
        db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_inverted_budget(self):
        db = AsyncMock()
        with pytest.raises(HTTPException) as exc_info:
            await create_job(
                db,
                Identity(profile_id=1, user_type="client"),
                _job_create(budget_min=Decimal("90"), budget_max=Decimal("80")),
            )
        assert exc_info.value.status_code == 422

    @pytest.mark.asyncio
    async def test_creates_open_job_and_invalidates_cache(self, db, people):
        job = await create_job(db, people["client"], _job_create(urgent=True))

        assert job.id is not None
        assert job.status == "open"
        assert job.urgent is True
        assert job.client.full_name == "carol"
        job_svc.invalidate_jobs_cache.assert_awaited()


class TestBrowseJobs:
    @pytest.mark.asyncio
    async def test_filters_and_pages(self, session_factory, seed, people):
        client = people["client"]
        for i in range(3):
            await seed.job(client, title=f"Job {i}")
        async with session_factory() as s:
            await create_job(s, client, _job_create(category="moving", location="Chittagong"))

        async with session_factory() as s:
            page = await list_open_jobs(s, JobFilter(category="plumbing"), offset=0, limit=2)
        assert page["total"] == 3
        assert len(page["items"]) == 2
        assert page["has_more"] is True
        assert page["items"][0]["title"] == "Job 2"

        async with session_factory() as s:
            page = await list_open_jobs(s, JobFilter(location="chittagong"))
        assert page["total"] == 1
        assert page["items"][0]["category"] == "moving"
        assert page["items"][0]["budget_max"] == 80.0
        job_svc.cache_set.assert_awaited()

    @pytest.mark.asyncio
    async def test_cached_page_skips_database(self):
        cached = {"items": [], "total": 0, "offset": 0, "limit": 20, "has_more": False}
        db = AsyncMock()
        with patch(
            "gigmarket.services.job.cache_get", new=AsyncMock(return_value=cached)
        ):
            page = await list_open_jobs(db, JobFilter())
        assert page == cached
        db.execute.assert_not_called()


class TestCancelJob:
    @pytest.mark.asyncio
    async def test_owner_cancels_job_without_proposals(self, session_factory, seed, people):
        job_id = await seed.job(people["client"])
        async with session_factory() as s:
            job = await cancel_job(s, people["client"], job_id)
        assert job.status == "cancelled"

        async with session_factory() as s:
            with pytest.raises(HTTPException) as exc_info:
                await cancel_job(s, people["client"], job_id)
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_job_with_proposals_cannot_be_cancelled(self, session_factory, seed, people):
        job_id = await seed.job(people["client"])
        async with session_factory() as s:
            await create_proposal(s, people["provider"], job_id, ProposalCreate(amount=Decimal("150")))

        async with session_factory() as s:
            with pytest.raises(HTTPException) as exc_info:
                await cancel_job(s, people["client"], job_id)
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_only_owner_cancels(self, session_factory, seed, people):
        job_id = await seed.job(people["client"])
        async with session_factory() as s:
            with pytest.raises(HTTPException) as exc_info:
                await cancel_job(s, people["provider"], job_id)
        assert exc_info.value.status_code == 403


class TestStartJob:
    @pytest.mark.asyncio
    async def test_conditional_start_conflict(self):
        db = AsyncMock()
        result = MagicMock()
        result.rowcount = 0
        db.execute = AsyncMock(return_value=result)

        with pytest.raises(HTTPException) as exc_info:
            await start_job(db, 7)
        assert exc_info.value.status_code == 409
        assert exc_info.value.detail == "Job is no longer open"
