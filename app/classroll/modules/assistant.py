# app/classroll/modules/assistant.py

import logging
from typing import Optional

import httpx

from ..config.config import settings
from ..services.errors import ExternalServiceError
from .http_retry import post_with_retry

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful college AI assistant that helps with student information, "
    "attendance, and academic queries. Be concise and helpful."
)
NO_RESPONSE = "No response generated"


class AssistantClient:
    """Thin client for an OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_url: str,
        api_key: Optional[str],
        model: str,
        timeout: float = 10.0,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
    ):
        self._client = http_client
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

    @classmethod
    def from_settings(cls, http_client: httpx.AsyncClient) -> "AssistantClient":
        return cls(
            http_client,
            api_url=settings.AI_API_URL,
            api_key=settings.AI_API_KEY,
            model=settings.AI_MODEL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            max_attempts=settings.HTTP_MAX_ATTEMPTS,
            retry_delay=settings.HTTP_RETRY_DELAY_SECONDS,
        )

    async def generate(self, prompt: str) -> str:
        if not self.api_key:
            raise ExternalServiceError("AI_API_KEY is not configured.")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.2,
            "max_tokens": 2048,
        }
        try:
            response = await post_with_retry(
                self._client, self.api_url, json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout, max_attempts=self.max_attempts, retry_delay=self.retry_delay,
            )
            choices = response.json().get("choices") or []
        except httpx.HTTPError as e:
            logger.error(f"Assistant request failed: {e!r}")
            raise ExternalServiceError("The assistant is unavailable. Please try again later.") from e
        except ValueError as e:
            logger.error("Assistant returned a non-JSON response.", exc_info=True)
            raise ExternalServiceError("The assistant returned an unreadable response.") from e

        content = choices[0].get("message", {}).get("content") if choices else None
        return content or NO_RESPONSE
