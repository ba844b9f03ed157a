#app/classroll/api/dependencies.py
from fastapi import Request, Depends, HTTPException, status
import redis.asyncio as redis
import asyncpg
import httpx

from ..config.config import settings
from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..modules.assistant import AssistantClient
from ..modules.identity import FirebaseTokenVerifier
from ..modules.whatsapp import WhatsAppClient
from ..services.attendance_service import AttendanceService
from ..services.notification_service import NotificationService
from ..services.teacher_service import TeacherService


def get_redis_pool(request: Request) -> redis.ConnectionPool:
    """
    Provides the Redis connection pool stored on the application state.
    """
    redis_pool = getattr(request.app.state, "redis_pool", None)
    if redis_pool is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cache unavailable")
    return redis_pool

def get_postgres_pool(request: Request) -> asyncpg.Pool:
    """
    Provides the PostgreSQL connection pool stored on the application state.
    """
    postgres_pool = getattr(request.app.state, "postgres_pool", None)
    if postgres_pool is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database unavailable")
    return postgres_pool

def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_redis_client(redis_pool: redis.ConnectionPool = Depends(get_redis_pool)) -> RedisClient:
    return RedisClient(pool=redis_pool)

def get_db_client(postgres_pool: asyncpg.Pool = Depends(get_postgres_pool)) -> AsyncPostgresClient:
    return AsyncPostgresClient(pool=postgres_pool)


def get_token_verifier(
    http_client: httpx.AsyncClient = Depends(get_http_client),
    redis_client: RedisClient = Depends(get_redis_client)
) -> FirebaseTokenVerifier:
    return FirebaseTokenVerifier(
        project_id=settings.FIREBASE_PROJECT_ID,
        http_client=http_client,
        redis_client=redis_client,
        certs_url=settings.FIREBASE_CERTS_URL,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )

def get_whatsapp_client(http_client: httpx.AsyncClient = Depends(get_http_client)) -> WhatsAppClient:
    return WhatsAppClient.from_settings(http_client)

def get_assistant_client(http_client: httpx.AsyncClient = Depends(get_http_client)) -> AssistantClient:
    return AssistantClient.from_settings(http_client)


def get_teacher_service(db_client: AsyncPostgresClient = Depends(get_db_client)) -> TeacherService:
    """
    Builds a fresh TeacherService for every request on top of the shared pool.
    """
    return TeacherService(db_client=db_client)

def get_attendance_service(db_client: AsyncPostgresClient = Depends(get_db_client)) -> AttendanceService:
    return AttendanceService(db_client=db_client)

def get_notification_service(
    whatsapp_client: WhatsAppClient = Depends(get_whatsapp_client),
    db_client: AsyncPostgresClient = Depends(get_db_client)
) -> NotificationService:
    return NotificationService(
        whatsapp_client=whatsapp_client,
        db_client=db_client,
        delay_ms=settings.NOTIFICATION_DELAY_MS,
    )
