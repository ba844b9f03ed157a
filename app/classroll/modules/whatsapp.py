# app/classroll/modules/whatsapp.py

import asyncio
import hashlib
import hmac
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from ..config.config import settings
from ..services.errors import InvalidPhoneNumber, ValidationError
from .http_retry import post_with_retry

logger = logging.getLogger(__name__)

CREDENTIALS_MISSING = "WhatsApp API credentials not configured"
UNREADABLE_RESPONSE = "Unreadable provider response"


class SendResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    phone: Optional[str] = None


class BulkSendResult(BaseModel):
    total: int
    successful: int
    failed: int
    results: List[SendResult] = Field(default_factory=list)


def format_phone_number(raw: Optional[str], country_code: str = "91") -> str:
    """
    Normalizes a phone number to digits only, prefixing `country_code` to a bare
    10-digit national number. Raises InvalidPhoneNumber outside 10-15 digits.
    """
    cleaned = re.sub(r"\D", "", raw or "")
    if len(cleaned) == 10:
        cleaned = country_code + cleaned
    if not 10 <= len(cleaned) <= 15:
        raise InvalidPhoneNumber(f"Invalid phone number length: {raw!r}")
    return cleaned


class WhatsAppClient:
    """
    Client for the WhatsApp Cloud API (Meta Graph API).

    Send methods never raise: every failure (bad number, missing credentials,
    provider error) comes back as an unsuccessful SendResult so bulk runs can go on.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        phone_number_id: Optional[str] = None,
        access_token: Optional[str] = None,
        app_secret: Optional[str] = None,
        api_version: str = "v22.0",
        country_code: str = "91",
        college_name: str = "MLA ACADEMY",
        college_phone: str = "",
        timeout: float = 10.0,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
    ):
        self._client = http_client
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.app_secret = app_secret
        self.api_version = api_version
        self.country_code = country_code
        self.college_name = college_name
        self.college_phone = college_phone
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

    @classmethod
    def from_settings(cls, http_client: httpx.AsyncClient) -> "WhatsAppClient":
        return cls(
            http_client,
            phone_number_id=settings.WHATSAPP_PHONE_NUMBER_ID,
            access_token=settings.WHATSAPP_ACCESS_TOKEN,
            app_secret=settings.WHATSAPP_APP_SECRET,
            api_version=settings.WHATSAPP_API_VERSION,
            country_code=settings.DEFAULT_COUNTRY_CODE,
            college_name=settings.COLLEGE_NAME,
            college_phone=settings.COLLEGE_CONTACT_PHONE,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            max_attempts=settings.HTTP_MAX_ATTEMPTS,
            retry_delay=settings.HTTP_RETRY_DELAY_SECONDS,
        )

    @property
    def messages_url(self) -> Optional[str]:
        if not self.phone_number_id:
            return None
        return f"https://graph.facebook.com/{self.api_version}/{self.phone_number_id}/messages"

    def format_phone_number(self, raw: Optional[str]) -> str:
        return format_phone_number(raw, self.country_code)

    async def _send(self, to: str, payload_body: Dict[str, Any], description: str) -> SendResult:
        try:
            phone = self.format_phone_number(to)
        except InvalidPhoneNumber as e:
            logger.warning(str(e))
            return SendResult(success=False, error="Invalid phone number", phone=to)

        if not (self.phone_number_id and self.access_token):
            logger.error(f"Cannot send {description} to {phone}: {CREDENTIALS_MISSING}.")
            return SendResult(success=False, error=CREDENTIALS_MISSING, phone=to)

        payload = {"messaging_product": "whatsapp", "recipient_type": "individual", "to": phone, **payload_body}
        headers = {"Authorization": f"Bearer {self.access_token}"}
        try:
            response = await post_with_retry(
                self._client, self.messages_url, json=payload, headers=headers, timeout=self.timeout,
                max_attempts=self.max_attempts, retry_delay=self.retry_delay,
            )
        except httpx.HTTPStatusError as e:
            error = _provider_error_message(e.response)
            logger.error(f"WhatsApp {description} to {phone} failed: {error}")
            return SendResult(success=False, error=error, phone=to)
        except httpx.HTTPError as e:
            logger.error(f"WhatsApp {description} to {phone} failed: {e!r}")
            return SendResult(success=False, error=str(e) or e.__class__.__name__, phone=to)

        try:
            messages = response.json().get("messages") or [{}]
            message_id = messages[0].get("id")
            message_id = str(message_id) if message_id is not None else None
        except (ValueError, AttributeError, IndexError, TypeError):
            logger.error(f"WhatsApp {description} to {phone} got an unreadable response: {response.text[:200]!r}")
            return SendResult(success=False, error=UNREADABLE_RESPONSE, phone=to)
        logger.info(f"WhatsApp {description} sent to {phone}.")
        return SendResult(success=True, message_id=message_id, phone=phone)

    async def send_text_message(self, to: str, message: str) -> SendResult:
        body = {"type": "text", "text": {"preview_url": False, "body": message}}
        return await self._send(to, body, "message")

    async def send_template_message(
        self, to: str, template_name: str, language_code: str = "en", components: Optional[List[Dict[str, Any]]] = None
    ) -> SendResult:
        body = {
            "type": "template",
            "template": {"name": template_name, "language": {"code": language_code}, "components": components or []},
        }
        return await self._send(to, body, f"template '{template_name}'")

    async def send_bulk_messages(self, recipients: List[str], message: str, delay_ms: int = 1000) -> BulkSendResult:
        """Sends the same text to each recipient in turn, pausing `delay_ms` between sends."""
        if not recipients:
            raise ValidationError("Recipients must be a non-empty list.")

        logger.info(f"Starting bulk send to {len(recipients)} recipients.")
        results = []
        for index, recipient in enumerate(recipients):
            results.append(await self.send_text_message(recipient, message))
            if index < len(recipients) - 1:
                await asyncio.sleep(delay_ms / 1000)

        successful = sum(1 for r in results if r.success)
        logger.info(f"Bulk send complete: {successful}/{len(recipients)} successful.")
        return BulkSendResult(total=len(results), successful=successful, failed=len(results) - successful, results=results)

    # ===== Message builders =====

    def attendance_message(self, student_name: str, day: Optional[str] = None) -> str:
        day = day or _today()
        return (
            f"🎓 {self.college_name}\n\n"
            f"Hi {student_name}, ✅\n\n"
            f"Your attendance for *{day}* has been marked successfully!\n\n"
            "Thank you for attending today.\n\n"
            "_This is an automated message_"
        )

    def absence_message(self, student_name: str, day: Optional[str] = None, subject: Optional[str] = None) -> str:
        day = day or _today()
        subject_line = f" for *{subject}*" if subject else ""
        contact = f" at {self.college_phone}" if self.college_phone else ""
        return (
            f"⚠️ {self.college_name}\n\n"
            f"Hi {student_name},\n\n"
            f"You were *absent*{subject_line} on *{day}*.\n\n"
            f"If you have a valid reason, please contact the office{contact}.\n\n"
            "_This is an automated message_"
        )

    def attendance_summary_message(self, student_name: str, attended: int, total: int, percentage: float) -> str:
        return (
            f"📊 {self.college_name}\n\n"
            f"Hi {student_name},\n\n"
            "Your attendance summary:\n\n"
            f"📅 Classes Attended: {attended}/{total}\n"
            f"📈 Percentage: {percentage}%\n\n"
            "Keep up the good work!\n\n"
            "_This is an automated message_"
        )

    def test_message(self) -> str:
        return (
            f"🎓 {self.college_name} - WhatsApp Integration Test\n\n"
            "This is a test message to verify your WhatsApp integration is working correctly.\n\n"
            "✅ If you receive this message, the integration is successful!\n\n"
            "Configuration:\n"
            f"• API Version: {self.api_version}\n"
            f"• Phone Number ID: {'Configured' if self.phone_number_id else 'Not configured'}\n"
            f"• Access Token: {'Configured' if self.access_token else 'Not configured'}\n\n"
            f"Sent at: {datetime.now().strftime('%d/%m/%Y, %H:%M:%S')}"
        )

    async def send_test_message(self, to: str) -> SendResult:
        return await self.send_text_message(to, self.test_message())

    # ===== Webhooks and health =====

    def verify_webhook_signature(self, signature: Optional[str], body: bytes) -> bool:
        """Checks an `X-Hub-Signature-256: sha256=<hex>` header against the raw request body."""
        if not self.app_secret:
            logger.error("WHATSAPP_APP_SECRET not configured; rejecting webhook.")
            return False
        if not signature:
            return False
        expected = "sha256=" + hmac.new(self.app_secret.encode(), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected.encode(), signature.encode())

    def check_configuration(self) -> Dict[str, Any]:
        return {
            "configured": bool(self.phone_number_id and self.access_token),
            "phone_number_id": bool(self.phone_number_id),
            "access_token": bool(self.access_token),
            "app_secret": bool(self.app_secret),
            "api_version": self.api_version,
            "college_name": self.college_name,
            "college_phone": self.college_phone,
        }


def _today() -> str:
    return datetime.now().strftime("%d/%m/%Y")


def _provider_error_message(response: httpx.Response) -> str:
    try:
        return response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return f"HTTP {response.status_code}"
