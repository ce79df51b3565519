"""Periodic repair of accepted proposals that never got a deal."""

import logging

from gigmarket.db.session import async_session_factory
from gigmarket.workers import celery_app, worker_loop

logger = logging.getLogger(__name__)


@celery_app.task(
    name="reconcile_accepted_proposals", bind=True, max_retries=3, default_retry_delay=60
)
def reconcile_accepted_proposals(self) -> dict:
    from gigmarket.services.reconcile import reconcile_acceptances

    async def _run() -> dict:
        async with async_session_factory() as db:
            try:
                return await reconcile_acceptances(db)
            finally:
                await db.close()

    try:
        return worker_loop().run_until_complete(_run())
    except Exception as exc:
        logger.exception("reconcile_accepted_proposals failed")
        raise self.retry(exc=exc)
