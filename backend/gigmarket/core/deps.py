from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.db.session import async_session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async database session.

    Anything left uncommitted when the request finishes is rolled back.
    """
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
