import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
import hmac

from ..config.config import settings
from ..modules.whatsapp import WhatsAppClient
from .dependencies import get_whatsapp_client
from .utilities.limiter import limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Provider Webhooks"])


def _dicts(value) -> List[dict]:
    return [item for item in value if isinstance(item, dict)] if isinstance(value, list) else []


def _delivery_statuses(payload) -> List[dict]:
    """Status objects from a Cloud API notification; malformed branches are skipped."""
    if not isinstance(payload, dict):
        return []
    statuses = []
    for entry in _dicts(payload.get("entry")):
        for change in _dicts(entry.get("changes")):
            value = change.get("value")
            if isinstance(value, dict):
                statuses.extend(_dicts(value.get("statuses")))
    return statuses


@router.get("/whatsapp", response_class=PlainTextResponse, summary="Meta webhook subscription handshake")
@limiter.limit("30/minute")
async def verify_subscription(
    request: Request,
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
):
    """Echoes hub.challenge back when the verify token matches the configured one."""
    verify_token = settings.WHATSAPP_VERIFY_TOKEN
    if (
        hub_mode == "subscribe"
        and verify_token
        and hub_verify_token
        and hmac.compare_digest(hub_verify_token.encode(), verify_token.encode())
    ):
        logger.info("WhatsApp webhook subscription verified.")
        return PlainTextResponse(hub_challenge or "")
    logger.warning("WhatsApp webhook subscription rejected.")
    raise HTTPException(status_code=403, detail="Webhook verification failed.")


@router.post("/whatsapp", summary="WhatsApp delivery status callbacks")
@limiter.limit("200/minute")
async def receive_status(
    request: Request,
    x_hub_signature_256: Optional[str] = Header(None, description="sha256=<hex HMAC-SHA256 of the raw body>"),
    whatsapp_client: WhatsAppClient = Depends(get_whatsapp_client)
):
    # 1. Security: the signature covers the raw body exactly as received.
    raw_body = await request.body()
    if not whatsapp_client.verify_webhook_signature(x_hub_signature_256, raw_body):
        raise HTTPException(status_code=403, detail="Invalid webhook signature.")

    # 2. Parse the payload
    try:
        payload = json.loads(raw_body)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Malformed payload: {e}")

    # 3. Log delivery statuses; nothing is persisted.
    statuses = _delivery_statuses(payload)
    for item in statuses:
        errors = item.get("errors")
        if errors:
            logger.warning(f"WhatsApp message {item.get('id')} to {item.get('recipient_id')} {item.get('status')}: {errors}")
        else:
            logger.info(f"WhatsApp message {item.get('id')} to {item.get('recipient_id')} {item.get('status')}.")

    return {"status": "success", "statuses": len(statuses)}
