import logging
from datetime import date, datetime
from itertools import groupby
from typing import List, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..db.db_client import AsyncPostgresClient, DATABASE_ERRORS
from ..models.db_models import (
    AttendanceRecord,
    AttendanceStatus,
    LanguageSubjectInfo,
    LanguageType,
    calculate_attendance_percentage,
    class_key,
    classify_attendance,
    normalize_code,
    page_count,
    page_offset,
    round_percentage,
    utc_now,
)
from .errors import PersistenceError, RecordNotFound, ValidationError

logger = logging.getLogger(__name__)

_UNSET = object()


class SubjectSummary(BaseModel):
    """
    Aggregate over all records of one subject.

    `avg_attendance_percentage` weighs every session equally, while
    `overall_percentage` weighs every expected student equally.
    """
    subject: str
    total_records: int
    avg_attendance_percentage: float
    total_students_present: int
    total_possible_attendance: int
    overall_percentage: float
    status: AttendanceStatus
    last_updated: Optional[datetime] = None


class RecordPage(BaseModel):
    records: List[AttendanceRecord]
    count: int
    total: int
    page: int
    total_pages: int


def summarize_records(records: List[AttendanceRecord]) -> List[SubjectSummary]:
    """Groups records by subject and aggregates each group, sorted by subject."""
    summaries = []
    ordered = sorted(records, key=lambda r: r.subject)
    for subject, group in groupby(ordered, key=lambda r: r.subject):
        group = list(group)
        total_present = sum(len(r.students_present) for r in group)
        total_expected = sum(r.students_total for r in group)
        overall = calculate_attendance_percentage(total_present, total_expected)
        summaries.append(SubjectSummary(
            subject=subject,
            total_records=len(group),
            avg_attendance_percentage=round_percentage(sum(r.attendance_percentage for r in group) / len(group)),
            total_students_present=total_present,
            total_possible_attendance=total_expected,
            overall_percentage=overall,
            status=classify_attendance(overall),
            last_updated=max(r.last_updated for r in group),
        ))
    return summaries


class AttendanceService:
    """
    Service layer for attendance records: direct creation, corrections, lookups and reports.
    """
    def __init__(self, db_client: AsyncPostgresClient):
        self.db_client = db_client

    async def record_attendance(
        self,
        record_date: date,
        stream: str,
        semester: int,
        subject: str,
        students_present: List[str],
        students_total: int,
        total_possible_students: int,
        language: Optional[LanguageSubjectInfo] = None,
        recorded_by: Optional[str] = None,
    ) -> AttendanceRecord:
        """Creates a record outside the queue workflow. Any supplied percentage is ignored."""
        stream, semester, subject = class_key(stream, semester, subject)
        try:
            record = AttendanceRecord(
                date=record_date, stream=stream, semester=semester, subject=subject,
                students_present=students_present, students_total=students_total,
                total_possible_students=total_possible_students,
                language=language, recorded_by=recorded_by,
            )
        except PydanticValidationError as e:
            raise ValidationError(str(e)) from e

        try:
            stored = await self.db_client.add_attendance_record(record)
        except DATABASE_ERRORS as e:
            logger.error("Database error while creating attendance record.", exc_info=True)
            raise PersistenceError("A database error occurred while saving the attendance.") from e

        logger.info(f"Attendance {stored.record_id} recorded for {subject} ({stream} sem {semester}).")
        return stored

    async def get_record(self, record_id: str) -> AttendanceRecord:
        try:
            record = await self.db_client.get_attendance_record(record_id)
        except DATABASE_ERRORS as e:
            logger.error(f"Database error while loading record {record_id}.", exc_info=True)
            raise PersistenceError("A database error occurred while loading the attendance record.") from e
        if record is None:
            raise RecordNotFound(f"Attendance record ({record_id}) not found.")
        return record

    async def update_attendance(
        self,
        record_id: str,
        students_present: Optional[List[str]] = None,
        students_total: Optional[int] = None,
        total_possible_students: Optional[int] = None,
        language=_UNSET,
    ) -> AttendanceRecord:
        """
        Merges the given fields into the stored record and re-validates the result.
        Nothing is written when the merged record breaks the count invariant.
        """
        record = await self.get_record(record_id)

        changes = {}
        if students_present is not None:
            changes["students_present"] = students_present
        if students_total is not None:
            changes["students_total"] = students_total
        if total_possible_students is not None:
            changes["total_possible_students"] = total_possible_students
        if language is not _UNSET:
            changes["language"] = language.model_dump() if language else None

        data = record.model_dump(exclude={"is_language_subject", "status", "absent_count"})
        data.update(changes)
        data["last_updated"] = utc_now()
        try:
            updated = AttendanceRecord.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(str(e)) from e

        try:
            saved = await self.db_client.update_attendance_record(updated)
        except DATABASE_ERRORS as e:
            logger.error(f"Database error while updating record {record_id}.", exc_info=True)
            raise PersistenceError("A database error occurred while updating the attendance record.") from e
        if not saved:
            raise RecordNotFound(f"Attendance record ({record_id}) not found.")

        logger.info(f"Attendance {record_id} corrected: {len(updated.students_present)}/{updated.students_total}.")
        return updated

    async def find_by_dimensions(self, record_date: date, subject: str, stream: str, semester: int) -> List[AttendanceRecord]:
        """All records for the class on that date, newest first."""
        stream, semester, subject = class_key(stream, semester, subject)
        try:
            return await self.db_client.find_attendance_records(record_date, stream, semester, subject)
        except DATABASE_ERRORS as e:
            logger.error("Database error while searching attendance records.", exc_info=True)
            raise PersistenceError("A database error occurred while searching attendance records.") from e

    async def list_records(
        self,
        stream: Optional[str] = None,
        semester: Optional[int] = None,
        subject: Optional[str] = None,
        record_date: Optional[date] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        recorded_by: Optional[str] = None,
        language: Optional[str] = None,
        limit: int = 50,
        page: int = 1,
    ) -> RecordPage:
        """
        Filtered listing, newest first. A complete date range takes precedence over
        `record_date`; a single bound is ignored. `language` may be "ALL" for no filter.
        """
        offset = page_offset(limit, page)
        try:
            stream = normalize_code(stream) if stream else None
            subject = normalize_code(subject) if subject else None
        except ValueError as e:
            raise ValidationError(f"Invalid filter: {e}") from e

        language_type = None
        if language and language.strip().upper() != "ALL":
            try:
                language_type = LanguageType(language.strip().upper()).value
            except ValueError as e:
                raise ValidationError(f"Unknown language {language!r}.") from e

        if start_date and end_date:
            if start_date > end_date:
                raise ValidationError("start_date must not be after end_date.")
            record_date = None
        else:
            start_date = end_date = None

        try:
            records, total = await self.db_client.list_attendance_records(
                stream=stream, semester=semester, subject=subject, record_date=record_date,
                start_date=start_date, end_date=end_date,
                recorded_by=recorded_by.strip() if recorded_by else None,
                language_type=language_type, limit=limit, offset=offset,
            )
        except DATABASE_ERRORS as e:
            logger.error("Database error while listing attendance records.", exc_info=True)
            raise PersistenceError("A database error occurred while listing attendance records.") from e

        return RecordPage(records=records, count=len(records), total=total, page=page, total_pages=page_count(total, limit))

    async def summarize(
        self, stream: str, semester: int, start_date: Optional[date] = None, end_date: Optional[date] = None
    ) -> List[SubjectSummary]:
        """
        Per-subject summary for a stream and semester. The date range applies only
        when both bounds are given, and is inclusive.
        """
        try:
            stream = normalize_code(stream)
        except ValueError as e:
            raise ValidationError(f"Invalid stream {stream!r}: {e}") from e
        if start_date and end_date and start_date > end_date:
            raise ValidationError("start_date must not be after end_date.")
        if not (start_date and end_date):
            start_date = end_date = None

        try:
            records = await self.db_client.get_attendance_records_for_summary(stream, int(semester), start_date, end_date)
        except DATABASE_ERRORS as e:
            logger.error(f"Database error while summarizing {stream} sem {semester}.", exc_info=True)
            raise PersistenceError("A database error occurred while building the summary.") from e

        return summarize_records(records)
