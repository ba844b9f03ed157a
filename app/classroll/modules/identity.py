# app/classroll/modules/identity.py

import logging
import re
from typing import Dict, Optional

import httpx
import jwt
from cryptography import x509
from redis.exceptions import RedisError

from ..db.redis_client import RedisClient
from ..models.redis_models import VerifiedPrincipal
from ..services.errors import ExternalServiceError, InvalidTokenError, TokenExpiredError

logger = logging.getLogger(__name__)

GOOGLE_CERTS_URL = "https://www.googleapis.com/robot/v1/metadata/x509/securetoken@system.gserviceaccount.com"
DEFAULT_KEYS_MAX_AGE = 3600


def _max_age(cache_control: Optional[str]) -> int:
    match = re.search(r"max-age=(\d+)", cache_control or "")
    return int(match.group(1)) if match else DEFAULT_KEYS_MAX_AGE


class FirebaseTokenVerifier:
    """
    Verifies Firebase ID tokens against Google's published signing certificates.
    The certificates are cached in Redis for as long as Google's Cache-Control allows.
    """

    def __init__(
        self,
        project_id: Optional[str],
        http_client: httpx.AsyncClient,
        redis_client: RedisClient,
        certs_url: str = GOOGLE_CERTS_URL,
        timeout: float = 10.0,
    ):
        self.project_id = project_id
        self._client = http_client
        self._redis = redis_client
        self.certs_url = certs_url
        self.timeout = timeout

    async def _signing_keys(self) -> Dict[str, str]:
        try:
            cached = await self._redis.get_signing_keys()
        except RedisError:
            logger.warning("Could not read cached signing keys from Redis; fetching them.", exc_info=True)
            cached = None
        if cached:
            return cached

        try:
            response = await self._client.get(self.certs_url, timeout=self.timeout)
            response.raise_for_status()
            keys = response.json()
            if not isinstance(keys, dict):
                raise ValueError(f"expected a kid -> certificate map, got {type(keys).__name__}")
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to fetch identity provider signing keys.", exc_info=True)
            raise ExternalServiceError("Could not fetch the identity provider's signing keys.") from e

        try:
            await self._redis.save_signing_keys(keys, _max_age(response.headers.get("cache-control")))
        except RedisError:
            logger.warning("Could not cache signing keys in Redis.", exc_info=True)
        return keys

    async def verify(self, token: str) -> VerifiedPrincipal:
        """
        Returns the principal the token was issued to.
        Raises TokenExpiredError or InvalidTokenError when the token is not acceptable.
        """
        if not self.project_id:
            raise ExternalServiceError("FIREBASE_PROJECT_ID is not configured.")

        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError as e:
            raise InvalidTokenError("Malformed token.") from e
        if header.get("alg") != "RS256":
            raise InvalidTokenError("Unexpected token algorithm.")

        keys = await self._signing_keys()
        certificate = keys.get(header.get("kid"))
        if certificate is None:
            raise InvalidTokenError("Token was signed with an unknown key.")
        try:
            public_key = x509.load_pem_x509_certificate(str(certificate).encode()).public_key()
        except ValueError as e:
            logger.error(f"Signing key {header.get('kid')} is not a readable certificate.", exc_info=True)
            raise ExternalServiceError("The identity provider's signing key could not be loaded.") from e

        try:
            claims = jwt.decode(
                token,
                public_key,
                algorithms=["RS256"],
                audience=self.project_id,
                issuer=f"https://securetoken.google.com/{self.project_id}",
                options={"require": ["exp", "iat", "sub", "aud", "iss"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpiredError("Token has expired.") from e
        except jwt.PyJWTError as e:
            logger.warning(f"Rejected identity token: {e}")
            raise InvalidTokenError("Invalid token.") from e

        uid = claims.get("sub")
        if not uid:
            raise InvalidTokenError("Token has no subject.")
        email = claims.get("email")
        name = claims.get("name") or (email.split("@")[0] if email else None)
        return VerifiedPrincipal(uid=uid, email=email, name=name)
