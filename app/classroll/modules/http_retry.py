# app/classroll/modules/http_retry.py

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

# Provider-side throttling or temporary unavailability; anything else fails fast.
TRANSIENT_STATUS_CODES = frozenset({429, 503})


async def post_with_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    json: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
    max_attempts: int = 3,
    retry_delay: float = 2.0,
) -> httpx.Response:
    """
    POSTs `json` to `url`, retrying transient failures with a delay of
    `retry_delay * attempt` seconds.

    Returns the successful response. Raises httpx.HTTPStatusError for a
    non-transient status (or a transient one that outlived the attempts) and
    httpx.TransportError when the connection kept failing.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            response = await client.post(url, json=json, headers=headers, timeout=timeout)
        except httpx.TransportError as e:
            if attempt == max_attempts:
                raise
            logger.warning(f"POST {url} failed ({e.__class__.__name__}), attempt {attempt}/{max_attempts}. Retrying.")
        else:
            if response.status_code not in TRANSIENT_STATUS_CODES or attempt == max_attempts:
                response.raise_for_status()
                return response
            logger.warning(f"POST {url} returned {response.status_code}, attempt {attempt}/{max_attempts}. Retrying.")

        await asyncio.sleep(retry_delay * attempt)

    # Unreachable with max_attempts >= 1.
    raise ValueError("max_attempts must be at least 1")
