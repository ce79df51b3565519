import asyncio

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from gigmarket.core.config import settings
from gigmarket.core.logging_config import setup_logging

_loop = None


def worker_loop() -> asyncio.AbstractEventLoop:
    """Return the event loop every task in this worker process runs on.

    The async engine's connection pool is bound to the loop it was first
    used on, so tasks must not each create their own.
    """
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
    return _loop


@celery_setup_logging.connect
def _configure_logging(**kwargs) -> None:
    # Connected receiver stops Celery from installing its own handlers
    setup_logging(service="worker")


celery_app = Celery(
    "gigmarket_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    beat_schedule={
        "reconcile-accepted-proposals": {
            "task": "reconcile_accepted_proposals",
            "schedule": settings.reconcile_interval_minutes * 60.0,
        },
    },
)

import gigmarket.workers.reconcile  # noqa: F401, E402
