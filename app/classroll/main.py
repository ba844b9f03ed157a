# app/classroll/main.py
from fastapi import FastAPI, Request
from contextlib import asynccontextmanager
import redis.asyncio as redis
import asyncpg
import httpx
import logging

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config.config import settings
from .logging.logging_config import setup_logging
from .api import assistant, attendance, auth, notifications, teacher, webhooks
from .db.db_client import AsyncPostgresClient, DATABASE_ERRORS, init_connection
from .modules.whatsapp import WhatsAppClient
from .api.utilities.limiter import limiter

logger = logging.getLogger(__name__)

from fastapi.middleware.cors import CORSMiddleware


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Opens the PostgreSQL pool (bootstrapping the schema), the Redis pool and a
    shared HTTP client on startup; closes them on shutdown.
    """
    setup_logging()
    logger.info("Application starting...")

    app.state.http_client = httpx.AsyncClient(timeout=httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS))
    app.state.postgres_pool = None
    app.state.redis_pool = None

    try:
        postgres_pool = await asyncpg.create_pool(
            dsn=settings.DATABASE_URL, min_size=2, max_size=20, init=init_connection
        )
        await AsyncPostgresClient(pool=postgres_pool).create_schema()
        app.state.postgres_pool = postgres_pool

        app.state.redis_pool = redis.ConnectionPool.from_url(
            settings.APPLICATION_REDIS_URL, decode_responses=True
        )
        logger.info("PostgreSQL and Redis connection pools created.")
    except DATABASE_ERRORS + (ValueError,) as e:
        logger.error(f"ERROR: startup failed: {e}", exc_info=True)

    yield

    logger.info("Application shutting down...")
    if app.state.postgres_pool:
        await app.state.postgres_pool.close()
        logger.info("PostgreSQL connection pool closed.")
    if app.state.redis_pool:
        await app.state.redis_pool.disconnect()
        logger.info("Redis connection pool closed.")
    await app.state.http_client.aclose()


app = FastAPI(
    title="Classroll API",
    description="Attendance management API for teaching staff",
    version="1.0.0",
    lifespan=lifespan
)
app.state.limiter = limiter

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(auth.router, prefix="/api/v1")
app.include_router(teacher.router, prefix="/api/v1")
app.include_router(attendance.router, prefix="/api/v1")
app.include_router(notifications.router, prefix="/api/v1")
app.include_router(webhooks.router, prefix="/api/v1")
app.include_router(assistant.router, prefix="/api/v1")

@app.get("/health", tags=["System"])
def health_check(request: Request):
    """Liveness plus a summary of which backing services and integrations are configured."""
    whatsapp = WhatsAppClient.from_settings(getattr(request.app.state, "http_client", None))
    return {
        "status": "ok",
        "message": "Classroll API is running.",
        "database": getattr(request.app.state, "postgres_pool", None) is not None,
        "cache": getattr(request.app.state, "redis_pool", None) is not None,
        "whatsapp": whatsapp.check_configuration(),
    }
