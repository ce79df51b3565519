"""One-line JSON log records on stdout, tagged with the service name."""

import logging
import sys

from pythonjsonlogger import jsonlogger

from gigmarket.core.config import settings

QUIET_LOGGERS = ("uvicorn.access", "httpx", "sqlalchemy.engine", "celery.beat")


def setup_logging(service: str = "api") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
            static_fields={"service": service},
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
