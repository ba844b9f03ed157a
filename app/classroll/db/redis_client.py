import json
import logging
from typing import Dict, Optional
import redis.asyncio as redis

from ..models.redis_models import TeacherSessionRedis

logger = logging.getLogger(__name__)

SIGNING_KEYS_KEY = "identity:signing_keys"


class RedisClient:
    """
    Redis client for sessions and cached identity-provider signing keys.
    """

    def __init__(self, pool: redis.ConnectionPool):
        self._redis = redis.Redis(connection_pool=pool, decode_responses=True)

    # ===== Teacher Session Management =====

    async def save_teacher_session(self, session: TeacherSessionRedis, ttl: int):
        """Stores the session with a TTL."""
        key = f"sessions:{session.principal.uid}"
        await self._redis.set(key, session.model_dump_json(), ex=ttl)

    async def get_teacher_session(self, uid: str) -> Optional[TeacherSessionRedis]:
        key = f"sessions:{uid}"
        session_json = await self._redis.get(key)
        return TeacherSessionRedis.model_validate_json(session_json) if session_json else None

    async def delete_teacher_session(self, uid: str) -> int:
        key = f"sessions:{uid}"
        return await self._redis.delete(key)

    # ===== Identity Provider Signing Keys =====

    async def save_signing_keys(self, keys: Dict[str, str], ttl: int):
        """Caches the provider's kid -> PEM certificate map for as long as the provider allows."""
        await self._redis.set(SIGNING_KEYS_KEY, json.dumps(keys), ex=max(ttl, 1))

    async def get_signing_keys(self) -> Optional[Dict[str, str]]:
        keys_json = await self._redis.get(SIGNING_KEYS_KEY)
        return json.loads(keys_json) if keys_json else None
