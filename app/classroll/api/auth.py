import logging
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from redis.exceptions import RedisError

from .schemas.auth import SyncResponse
from .schemas.teacher import ProfileResponse
from ..config.config import settings
from ..db.redis_client import RedisClient
from ..models.redis_models import TeacherSessionRedis, VerifiedPrincipal
from ..modules.identity import FirebaseTokenVerifier
from ..services.errors import AuthenticationError, ServiceError
from ..services.teacher_service import TeacherService
from .dependencies import get_redis_client, get_teacher_service, get_token_verifier
from .utilities.errors import to_http_exception
from .utilities.limiter import limiter

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"]
)
bearer_scheme = HTTPBearer(auto_error=False)

credentials_exception = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)


# --- Dependencies for protected routes ---
async def get_verified_principal(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    verifier: FirebaseTokenVerifier = Depends(get_token_verifier)
) -> VerifiedPrincipal:
    """Verifies the bearer Firebase ID token. No session is required here."""
    if credentials is None or not credentials.credentials:
        raise credentials_exception
    try:
        return await verifier.verify(credentials.credentials)
    except AuthenticationError as e:
        logger.warning(f"Token validation error: {e}")
        raise to_http_exception(e) from e
    except ServiceError as e:
        # Signing keys could not be fetched.
        raise to_http_exception(e)


async def get_current_teacher(
    principal: VerifiedPrincipal = Depends(get_verified_principal),
    redis_client: RedisClient = Depends(get_redis_client)
) -> VerifiedPrincipal:
    """
    Verified token AND an active Redis session (created by /auth/sync).
    A logged-out teacher is rejected even while their token is still valid.
    """
    try:
        session = await redis_client.get_teacher_session(principal.uid)
    except RedisError:
        logger.error("Redis error while checking the teacher session.", exc_info=True)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Session store unavailable")

    if session is None:
        logger.warning(f"Teacher '{principal.uid}' has a valid token but no active session. Denying access.")
        raise credentials_exception
    return principal


# --- Routes ---

@router.post("/sync", response_model=SyncResponse, summary="Verify the token, create or refresh the profile and open a session")
@limiter.limit("10/minute")
async def sync(
    request: Request,
    principal: VerifiedPrincipal = Depends(get_verified_principal),
    service: TeacherService = Depends(get_teacher_service),
    redis_client: RedisClient = Depends(get_redis_client)
):
    try:
        profile = await service.get_or_create_profile(principal)
    except ServiceError as e:
        raise to_http_exception(e)

    ttl = settings.TEACHER_SESSION_TTL_SECONDS
    now = datetime.now(timezone.utc)
    session = TeacherSessionRedis(
        principal=principal,
        session_id=uuid4(),
        session_start_time=now,
        session_end_time=now + timedelta(seconds=ttl),
    )
    try:
        await redis_client.save_teacher_session(session, ttl=ttl)
    except RedisError:
        logger.error(f"Could not store session for '{principal.uid}'.", exc_info=True)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Session store unavailable")

    logger.info(f"Teacher '{profile.email}' synced; session {session.session_id} opened.")
    return SyncResponse(
        profile=ProfileResponse.model_validate(profile.model_dump()),
        session_expires_at=session.session_end_time,
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT, summary="Close the teacher's session")
@limiter.limit("10/minute")
async def logout(
    request: Request,
    principal: VerifiedPrincipal = Depends(get_verified_principal),
    redis_client: RedisClient = Depends(get_redis_client)
):
    try:
        deleted = await redis_client.delete_teacher_session(principal.uid)
    except RedisError:
        logger.error(f"Could not delete session for '{principal.uid}'.", exc_info=True)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Session store unavailable")

    if deleted:
        logger.info(f"Teacher '{principal.uid}' logged out.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
