from collections.abc import AsyncGenerator
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import gigmarket.models  # noqa: F401
from gigmarket.core.rate_limit import limiter
from gigmarket.core.security import Identity
from gigmarket.db.base import Base
from gigmarket.main import app
from gigmarket.models.job import Job
from gigmarket.models.profile import Profile


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client wired to the FastAPI app (no real server)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


@pytest.fixture(autouse=True)
def no_external_services():
    """Keep Redis (pub/sub, cache, idempotency) and rate limits out of unit tests."""
    limiter.enabled = False
    with (
        patch("gigmarket.core.realtime._publish", new=AsyncMock()) as publish,
        patch("gigmarket.services.job.cache_get", new=AsyncMock(return_value=None)),
        patch("gigmarket.services.job.cache_set", new=AsyncMock()),
        patch("gigmarket.services.job.invalidate_jobs_cache", new=AsyncMock()),
        patch(
            "gigmarket.core.idempotency.check_idempotency",
            new=AsyncMock(return_value=True),
        ),
    ):
        yield publish
    limiter.enabled = True
    app.dependency_overrides.clear()


@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """A throwaway SQLite database with the full schema.

    File based so that several sessions can hold their own connections.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


class Seed:
    """Builds committed marketplace rows for integration tests."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def profile(self, user_type: str, name: str) -> Identity:
        async with self.session_factory() as s:
            profile = Profile(auth_user_id=f"auth-{name}", full_name=name, user_type=user_type)
            s.add(profile)
            await s.commit()
            return Identity(profile_id=profile.id, user_type=user_type)

    async def job(
        self,
        client: Identity,
        budget_min: str = "100.00",
        budget_max: str = "200.00",
        title: str = "Fix the kitchen sink",
    ) -> int:
        async with self.session_factory() as s:
            job = Job(
                client_id=client.profile_id,
                title=title,
                description="Leaking under the counter",
                category="plumbing",
                location="Dhaka",
                status="open",
                budget_min=Decimal(budget_min),
                budget_max=Decimal(budget_max),
                urgent=False,
            )
            s.add(job)
            await s.commit()
            return job.id


@pytest.fixture
def seed(session_factory) -> Seed:
    return Seed(session_factory)


@pytest.fixture
async def people(seed) -> dict[str, Identity]:
    return {
        "client": await seed.profile("client", "carol"),
        "provider": await seed.profile("provider", "pete"),
        "other_provider": await seed.profile("provider", "paula"),
    }
