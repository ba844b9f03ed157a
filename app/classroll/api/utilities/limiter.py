# app/classroll/api/utilities/limiter.py

from fastapi import Request
import jwt

from slowapi import Limiter
from slowapi.util import get_remote_address

from ...config.config import settings

def get_limiter_key(request: Request) -> str:
    """
    Rate limit key: the token's subject (the teacher's Firebase uid) when a bearer
    token is present, otherwise the client IP. The signature is not checked here;
    a forged subject only changes which bucket the request is counted in.
    """
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        try:
            payload = jwt.decode(token, options={"verify_signature": False})
            subject = payload.get("sub")
            if subject:
                return str(subject)
        except jwt.PyJWTError:
            pass

    return get_remote_address(request)

# Falls back to in-process storage when no rate-limiter Redis is configured (local runs, tests).
limiter = Limiter(key_func=get_limiter_key, storage_uri=settings.RATE_LIMITER_REDIS_URL or "memory://")
