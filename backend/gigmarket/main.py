import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from gigmarket.api import (
    conversations,
    deals,
    health,
    internal,
    jobs,
    messages,
    metrics,
    notifications,
    profiles,
    proposals,
    realtime,
)
from gigmarket.core.config import settings
from gigmarket.core.logging_config import setup_logging
from gigmarket.core.middleware import RequestLoggingMiddleware
from gigmarket.core.rate_limit import limiter
from gigmarket.core.redis_client import close_redis
from gigmarket.db.session import engine
from gigmarket.services.state_machine import InvalidTransitionError

# Configure structured JSON logging before anything else
setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Check the database on startup; release DB and Redis connections on shutdown."""
    try:
        async with engine.begin():
            pass  # connection pool is initialised
        logger.info("Database connection established")
    except Exception as exc:
        logger.warning("Database connection not available at startup: %s", exc)
    yield
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="Gig Market API",
    description="REST API for the gig marketplace: jobs, proposals, deals, chat and notifications.",
    version="1.0.0",
    openapi_url="/api/openapi.json",
    docs_url="/api/docs",
    debug=settings.debug,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ---------------------------------------------------------------------------
# CORS middleware
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------
app.add_middleware(RequestLoggingMiddleware)


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------
@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
for module in (
    health,
    profiles,
    jobs,
    proposals,
    deals,
    conversations,
    messages,
    notifications,
    realtime,
    internal,
    metrics,
):
    app.include_router(module.router, prefix="/api")
