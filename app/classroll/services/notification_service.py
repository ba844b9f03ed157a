import asyncio
import logging
from datetime import date
from typing import Callable, List, Optional

from pydantic import BaseModel

from ..db.db_client import AsyncPostgresClient, DATABASE_ERRORS
from ..models.db_models import NotificationDetail, NotificationLog, normalize_code, page_count, page_offset
from ..modules.whatsapp import SendResult, WhatsAppClient
from .errors import PersistenceError, RecordNotFound, ValidationError

logger = logging.getLogger(__name__)


class RosterEntry(BaseModel):
    """A student as the caller knows them; parent_phone wins over phone."""
    student_id: str
    name: str = "Student"
    phone: Optional[str] = None
    parent_phone: Optional[str] = None

    @property
    def contact_phone(self) -> Optional[str]:
        return self.parent_phone or self.phone


class NotificationLogPage(BaseModel):
    logs: List[NotificationLog]
    count: int
    total: int
    page: int
    total_pages: int


class NotificationService:
    """
    Sends WhatsApp notifications to students and parents and records each run in
    the notification log. Individual send failures are reported, never raised.
    """
    def __init__(self, whatsapp_client: WhatsAppClient, db_client: AsyncPostgresClient, delay_ms: int = 1000):
        self.whatsapp_client = whatsapp_client
        self.db_client = db_client
        self.delay_ms = delay_ms

    async def _dispatch(self, entries: List[RosterEntry], message_for: Callable[[RosterEntry], str]) -> List[NotificationDetail]:
        details = []
        sent_any = False
        for entry in entries:
            phone = entry.contact_phone
            if not phone:
                details.append(NotificationDetail(
                    student_id=entry.student_id, name=entry.name, success=False, error="No phone number on file"
                ))
                continue

            # Pace the provider: fixed gap between consecutive sends.
            if sent_any:
                await asyncio.sleep(self.delay_ms / 1000)
            result = await self.whatsapp_client.send_text_message(phone, message_for(entry))
            sent_any = True
            details.append(NotificationDetail(
                student_id=entry.student_id, name=entry.name, phone=result.phone,
                success=result.success, message_id=result.message_id, error=result.error,
            ))
        return details

    async def _save_log(self, log: NotificationLog) -> None:
        try:
            await self.db_client.add_notification_log(log)
        except DATABASE_ERRORS:
            logger.error(f"Could not store notification log {log.log_id}.", exc_info=True)

    async def notify_absentees(
        self, record_id: str, roster: List[RosterEntry], sent_by: str, custom_message: Optional[str] = None
    ) -> NotificationLog:
        """Messages every roster entry that is not marked present on the record."""
        try:
            record = await self.db_client.get_attendance_record(record_id)
        except DATABASE_ERRORS as e:
            logger.error(f"Database error while loading record {record_id}.", exc_info=True)
            raise PersistenceError("A database error occurred while loading the attendance record.") from e
        if record is None:
            raise RecordNotFound(f"Attendance record ({record_id}) not found.")

        present = set(record.students_present)
        absentees = [entry for entry in roster if entry.student_id.strip() not in present]
        day = record.date.strftime("%d/%m/%Y")

        def message_for(entry: RosterEntry) -> str:
            return custom_message or self.whatsapp_client.absence_message(entry.name, day=day, subject=record.subject)

        details = await self._dispatch(absentees, message_for)
        successful = sum(1 for d in details if d.success)
        log = NotificationLog(
            record_id=record.record_id, stream=record.stream, semester=record.semester, subject=record.subject,
            sent_by=sent_by, total=len(details), successful=successful, failed=len(details) - successful,
            details=details,
        )
        if details:
            await self._save_log(log)
        logger.info(f"Absence notifications for {record_id}: {successful}/{len(details)} delivered.")
        return log

    async def send_custom(self, recipients: List[RosterEntry], message: str, sent_by: str) -> NotificationLog:
        if not recipients:
            raise ValidationError("At least one recipient is required.")
        if not message or not message.strip():
            raise ValidationError("Message is required.")

        details = await self._dispatch(recipients, lambda _: message)
        successful = sum(1 for d in details if d.success)
        log = NotificationLog(
            sent_by=sent_by, total=len(details), successful=successful,
            failed=len(details) - successful, details=details,
        )
        await self._save_log(log)
        logger.info(f"Custom message by {sent_by}: {successful}/{len(details)} delivered.")
        return log

    async def send_test(self, phone: str) -> SendResult:
        return await self.whatsapp_client.send_test_message(phone)

    async def list_logs(
        self,
        stream: Optional[str] = None,
        semester: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: int = 50,
        page: int = 1,
    ) -> NotificationLogPage:
        """Past notification runs, newest first. The date range applies only when both bounds are given."""
        offset = page_offset(limit, page)
        try:
            stream = normalize_code(stream) if stream else None
        except ValueError as e:
            raise ValidationError(f"Invalid stream: {e}") from e
        if start_date and end_date and start_date > end_date:
            raise ValidationError("start_date must not be after end_date.")
        if not (start_date and end_date):
            start_date = end_date = None

        try:
            logs, total = await self.db_client.list_notification_logs(
                stream=stream, semester=semester, start_date=start_date, end_date=end_date, limit=limit, offset=offset,
            )
        except DATABASE_ERRORS as e:
            logger.error("Database error while listing notification logs.", exc_info=True)
            raise PersistenceError("A database error occurred while listing notification logs.") from e

        return NotificationLogPage(logs=logs, count=len(logs), total=total, page=page, total_pages=page_count(total, limit))
