import json
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple
import asyncpg

from ..models.db_models import (
    AttendanceRecord,
    LanguageSubjectInfo,
    NotificationLog,
    TeacherProfile,
)

logger = logging.getLogger(__name__)

# Errors that mean "the store is unreachable or refused the statement".
DATABASE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


SCHEMA = """
CREATE TABLE IF NOT EXISTS attendance_records (
    record_id TEXT PRIMARY KEY,
    date DATE NOT NULL,
    stream TEXT NOT NULL,
    semester SMALLINT NOT NULL CHECK (semester BETWEEN 1 AND 8),
    subject TEXT NOT NULL,
    record_number INTEGER NOT NULL DEFAULT 1 CHECK (record_number >= 1),
    students_present TEXT[] NOT NULL DEFAULT '{}',
    students_total INTEGER NOT NULL CHECK (students_total >= 0),
    total_possible_students INTEGER NOT NULL CHECK (total_possible_students >= students_total),
    attendance_percentage DOUBLE PRECISION NOT NULL DEFAULT 0
        CHECK (attendance_percentage BETWEEN 0 AND 100),
    language_type TEXT CHECK (language_type IN ('HINDI', 'KANNADA', 'SANSKRIT')),
    language_group TEXT,
    recorded_by TEXT,
    created_at TIMESTAMPTZ NOT NULL,
    last_updated TIMESTAMPTZ NOT NULL
);

-- Deliberately non-unique: retakes share the same dimensions.
CREATE INDEX IF NOT EXISTS idx_attendance_records_dimensions
    ON attendance_records (date, stream, semester, subject);
CREATE INDEX IF NOT EXISTS idx_attendance_records_stream_semester
    ON attendance_records (stream, semester);
CREATE INDEX IF NOT EXISTS idx_attendance_records_created_at
    ON attendance_records (created_at DESC);

CREATE TABLE IF NOT EXISTS teacher_profiles (
    firebase_uid TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL DEFAULT '',
    profile_image_url TEXT NOT NULL DEFAULT '',
    created_subjects JSONB NOT NULL DEFAULT '[]',
    attendance_queue JSONB NOT NULL DEFAULT '[]',
    completed_classes JSONB NOT NULL DEFAULT '[]',
    last_queue_update TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL,
    version INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS notification_logs (
    log_id UUID PRIMARY KEY,
    record_id TEXT,
    stream TEXT,
    semester SMALLINT,
    subject TEXT,
    sent_by TEXT NOT NULL,
    total INTEGER NOT NULL,
    successful INTEGER NOT NULL,
    failed INTEGER NOT NULL,
    details JSONB NOT NULL DEFAULT '[]',
    sent_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_notification_logs_sent_at
    ON notification_logs (sent_at DESC);
"""

_INSERT_RECORD = """
    INSERT INTO attendance_records (
        record_id, date, stream, semester, subject, record_number, students_present,
        students_total, total_possible_students, attendance_percentage,
        language_type, language_group, recorded_by, created_at, last_updated
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15);
"""

_UPDATE_PROFILE = """
    UPDATE teacher_profiles
    SET email = $3,
        name = $4,
        profile_image_url = $5,
        created_subjects = $6,
        attendance_queue = $7,
        completed_classes = $8,
        last_queue_update = $9,
        updated_at = $10,
        version = version + 1
    WHERE firebase_uid = $1 AND version = $2;
"""


class StaleProfileError(Exception):
    """The profile's version moved on between our read and our write."""
    pass


async def init_connection(connection: asyncpg.Connection):
    """Pool connection hook: JSONB columns travel as plain Python lists/dicts."""
    await connection.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )


def _affected_rows(status: str) -> int:
    # asyncpg returns command tags such as "UPDATE 1".
    try:
        return int(str(status).split()[-1])
    except (ValueError, IndexError):
        return 0


def _record_from_row(row: asyncpg.Record) -> AttendanceRecord:
    data = dict(row)
    language_type = data.pop("language_type", None)
    language_group = data.pop("language_group", None)
    data["language"] = LanguageSubjectInfo(type=language_type, group=language_group) if language_type else None
    return AttendanceRecord(**data)


def _record_values(record: AttendanceRecord) -> tuple:
    return (
        record.record_id, record.date, record.stream, record.semester, record.subject,
        record.record_number, record.students_present, record.students_total,
        record.total_possible_students, record.attendance_percentage,
        record.language.type.value if record.language else None,
        record.language.group if record.language else None,
        record.recorded_by, record.created_at, record.last_updated,
    )


def _profile_documents(profile: TeacherProfile) -> tuple:
    """The JSONB columns: subject catalog, queue and completed history."""
    return (
        [s.model_dump(mode="json") for s in profile.created_subjects],
        [i.model_dump(mode="json") for i in profile.attendance_queue],
        [c.model_dump(mode="json") for c in profile.completed_classes],
    )


def _profile_values(profile: TeacherProfile, expected_version: int) -> tuple:
    return (
        profile.firebase_uid, expected_version, profile.email, profile.name, profile.profile_image_url,
        *_profile_documents(profile), profile.last_queue_update, profile.updated_at,
    )


class _Filter:
    """AND-ed WHERE conditions with positional parameters numbered as they are added."""
    def __init__(self):
        self.clauses = []
        self.args = []

    def add(self, condition: str, *values):
        first = len(self.args) + 1
        self.args.extend(values)
        self.clauses.append(condition.format(*(f"${first + i}" for i in range(len(values)))))

    @property
    def sql(self) -> str:
        return " WHERE " + " AND ".join(self.clauses) if self.clauses else ""


def _log_from_row(row: asyncpg.Record) -> NotificationLog:
    data = dict(row)
    data["log_id"] = str(data["log_id"])
    return NotificationLog(**data)


class AsyncPostgresClient:
    """
    PostgreSQL client for every store operation. Teacher profiles are one row each,
    with their subject catalog, queue and completed history in JSONB columns.
    """
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def create_schema(self):
        """Creates tables and indexes if they do not exist yet."""
        async with self._pool.acquire() as connection:
            await connection.execute(SCHEMA)

    # ===== Teacher Profiles =====

    async def get_teacher_profile(self, firebase_uid: str) -> Optional[TeacherProfile]:
        query = "SELECT * FROM teacher_profiles WHERE firebase_uid = $1;"
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(query, firebase_uid)
            return TeacherProfile(**dict(row)) if row else None

    async def get_teacher_profile_by_email(self, email: str) -> Optional[TeacherProfile]:
        query = "SELECT * FROM teacher_profiles WHERE email = $1;"
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(query, email.strip().lower())
            return TeacherProfile(**dict(row)) if row else None

    async def add_teacher_profile(self, profile: TeacherProfile) -> bool:
        """Inserts a new profile. Returns False if one already exists for the uid or email."""
        query = """
            INSERT INTO teacher_profiles (
                firebase_uid, email, name, profile_image_url, created_subjects, attendance_queue,
                completed_classes, last_queue_update, created_at, updated_at, version
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, 0)
            ON CONFLICT DO NOTHING;
        """
        async with self._pool.acquire() as connection:
            result = await connection.execute(
                query, profile.firebase_uid, profile.email, profile.name, profile.profile_image_url,
                *_profile_documents(profile), profile.last_queue_update, profile.created_at, profile.updated_at,
            )
            return _affected_rows(result) == 1

    async def save_teacher_profile(self, profile: TeacherProfile, expected_version: int) -> bool:
        """Compare-and-swap write. Returns False if someone else saved the profile first."""
        async with self._pool.acquire() as connection:
            result = await connection.execute(_UPDATE_PROFILE, *_profile_values(profile, expected_version))
            return _affected_rows(result) == 1

    async def relink_teacher_profile(self, email: str, firebase_uid: str, expected_version: int) -> bool:
        """Moves an email-matched profile onto a new Firebase uid."""
        query = """
            UPDATE teacher_profiles
            SET firebase_uid = $2, updated_at = NOW(), version = version + 1
            WHERE email = $1 AND version = $3;
        """
        async with self._pool.acquire() as connection:
            result = await connection.execute(query, email.strip().lower(), firebase_uid, expected_version)
            return _affected_rows(result) == 1

    # ===== Attendance Records =====

    async def _insert_numbered_record(self, connection: asyncpg.Connection, record: AttendanceRecord) -> AttendanceRecord:
        """
        Numbers the record after the existing ones for its dimensions and inserts it.
        Must run inside a transaction: the advisory lock is held until it ends.
        """
        dimension_key = f"{record.date.isoformat()}:{record.stream}:{record.semester}:{record.subject}"
        await connection.execute("SELECT pg_advisory_xact_lock(hashtext($1));", dimension_key)
        existing = await connection.fetchval(
            """
            SELECT COUNT(*) FROM attendance_records
            WHERE date = $1 AND stream = $2 AND semester = $3 AND subject = $4;
            """,
            record.date, record.stream, record.semester, record.subject,
        )
        numbered = record.model_copy(update={"record_number": existing + 1})
        await connection.execute(_INSERT_RECORD, *_record_values(numbered))
        return numbered

    async def add_attendance_record(self, record: AttendanceRecord) -> AttendanceRecord:
        """Inserts a record outside the queue workflow. Returns it with its record_number."""
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                return await self._insert_numbered_record(connection, record)

    async def complete_queue_item(self, profile: TeacherProfile, expected_version: int, record: AttendanceRecord) -> AttendanceRecord:
        """
        Inserts the record and saves the profile (item already moved from queue to completed)
        in one transaction. Raises StaleProfileError and rolls everything back if the
        profile changed since it was read.
        """
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                stored = await self._insert_numbered_record(connection, record)
                result = await connection.execute(_UPDATE_PROFILE, *_profile_values(profile, expected_version))
                if _affected_rows(result) != 1:
                    raise StaleProfileError(profile.firebase_uid)
        return stored

    async def get_attendance_record(self, record_id: str) -> Optional[AttendanceRecord]:
        query = "SELECT * FROM attendance_records WHERE record_id = $1;"
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(query, record_id)
            return _record_from_row(row) if row else None

    async def find_attendance_records(self, record_date: date, stream: str, semester: int, subject: str) -> List[AttendanceRecord]:
        """All records for the dimensions, newest first."""
        query = """
            SELECT * FROM attendance_records
            WHERE date = $1 AND stream = $2 AND semester = $3 AND subject = $4
            ORDER BY created_at DESC;
        """
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(query, record_date, stream, semester, subject)
            return [_record_from_row(row) for row in rows]

    async def update_attendance_record(self, record: AttendanceRecord) -> bool:
        """Writes the payload fields of a corrected record."""
        query = """
            UPDATE attendance_records
            SET students_present = $2,
                students_total = $3,
                total_possible_students = $4,
                attendance_percentage = $5,
                language_type = $6,
                language_group = $7,
                last_updated = $8
            WHERE record_id = $1;
        """
        async with self._pool.acquire() as connection:
            result = await connection.execute(
                query, record.record_id, record.students_present, record.students_total,
                record.total_possible_students, record.attendance_percentage,
                record.language.type.value if record.language else None,
                record.language.group if record.language else None,
                record.last_updated,
            )
            return _affected_rows(result) == 1

    async def list_attendance_records(
        self,
        stream: Optional[str] = None,
        semester: Optional[int] = None,
        subject: Optional[str] = None,
        record_date: Optional[date] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        recorded_by: Optional[str] = None,
        language_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[AttendanceRecord], int]:
        """
        One page of the records matching every given filter, newest first, and the
        total number of matches. The date range applies only when both bounds are given.
        """
        where = _Filter()
        if stream:
            where.add("stream = {}", stream)
        if semester is not None:
            where.add("semester = {}", semester)
        if subject:
            where.add("subject = {}", subject)
        if record_date:
            where.add("date = {}", record_date)
        if start_date and end_date:
            where.add("date BETWEEN {} AND {}", start_date, end_date)
        if recorded_by:
            where.add("recorded_by = {}", recorded_by)
        if language_type:
            where.add("language_type = {}", language_type)

        paging = len(where.args)
        async with self._pool.acquire() as connection:
            total = await connection.fetchval(f"SELECT COUNT(*) FROM attendance_records{where.sql};", *where.args)
            rows = await connection.fetch(
                f"SELECT * FROM attendance_records{where.sql} "
                f"ORDER BY created_at DESC LIMIT ${paging + 1} OFFSET ${paging + 2};",
                *where.args, limit, offset,
            )
            return [_record_from_row(row) for row in rows], total

    async def get_attendance_records_for_summary(
        self, stream: str, semester: int, start_date: Optional[date] = None, end_date: Optional[date] = None
    ) -> List[AttendanceRecord]:
        query = "SELECT * FROM attendance_records WHERE stream = $1 AND semester = $2"
        args = [stream, semester]
        if start_date and end_date:
            query += " AND date BETWEEN $3 AND $4"
            args += [start_date, end_date]
        query += " ORDER BY subject, created_at;"
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(query, *args)
            return [_record_from_row(row) for row in rows]

    # ===== Notification Logs =====

    async def add_notification_log(self, log: NotificationLog):
        query = """
            INSERT INTO notification_logs (
                log_id, record_id, stream, semester, subject, sent_by, total, successful, failed, details, sent_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11);
        """
        async with self._pool.acquire() as connection:
            await connection.execute(
                query, log.log_id, log.record_id, log.stream, log.semester, log.subject, log.sent_by,
                log.total, log.successful, log.failed,
                [d.model_dump(mode="json") for d in log.details], log.sent_at,
            )

    async def list_notification_logs(
        self,
        stream: Optional[str] = None,
        semester: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[NotificationLog], int]:
        """One page of logs, newest first, and the total count. Dates are inclusive UTC days."""
        where = _Filter()
        if stream:
            where.add("stream = {}", stream)
        if semester is not None:
            where.add("semester = {}", semester)
        if start_date and end_date:
            where.add(
                "sent_at >= {} AND sent_at < {}",
                datetime.combine(start_date, time.min, tzinfo=timezone.utc),
                datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc),
            )

        paging = len(where.args)
        async with self._pool.acquire() as connection:
            total = await connection.fetchval(f"SELECT COUNT(*) FROM notification_logs{where.sql};", *where.args)
            rows = await connection.fetch(
                f"SELECT * FROM notification_logs{where.sql} "
                f"ORDER BY sent_at DESC LIMIT ${paging + 1} OFFSET ${paging + 2};",
                *where.args, limit, offset,
            )
            return [_log_from_row(row) for row in rows], total
