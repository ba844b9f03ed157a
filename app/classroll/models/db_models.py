# app/classroll/models/db_models.py

import math
import secrets
import string
import time
from datetime import date as date_type, datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

from ..services.errors import (
    DuplicateQueueItem,
    DuplicateSubject,
    InvalidAttendanceCounts,
    QueueItemNotFound,
    SubjectNotFound,
    ValidationError,
)

_BASE36 = string.digits + string.ascii_lowercase


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_record_id() -> str:
    """Millisecond timestamp plus nine random base36 characters, e.g. '1734567890123_k3j9x0a1b'."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"{int(time.time() * 1000)}_{suffix}"


def normalize_code(value: str) -> str:
    """Stream and subject codes are stored trimmed and uppercased."""
    value = str(value).strip().upper()
    if not value:
        raise ValueError("must not be empty")
    return value


# ===== Percentage math =====

def round_percentage(value: float) -> float:
    """Rounds half-up to two decimal places."""
    return math.floor(value * 100 + 0.5) / 100


def calculate_attendance_percentage(present_count: int, students_total: int) -> float:
    """
    The one place attendance percentages are computed. Both the create and the
    correction path go through AttendanceRecord validation, which calls this.
    """
    if students_total <= 0:
        return 0.0
    return round_percentage(present_count / students_total * 100)


def validate_attendance_counts(present_count: int, students_total: int, total_possible_students: int) -> None:
    if present_count < 0 or students_total < 0 or total_possible_students < 0:
        raise InvalidAttendanceCounts("Attendance counts must not be negative.")
    if present_count > students_total:
        raise InvalidAttendanceCounts(
            f"{present_count} students marked present but only {students_total} were expected."
        )
    if students_total > total_possible_students:
        raise InvalidAttendanceCounts(
            f"Expected students ({students_total}) exceed the stream roster ({total_possible_students})."
        )


# ===== Pagination =====

MAX_PAGE_SIZE = 200


def page_offset(limit: int, page: int) -> int:
    """Rows to skip for a 1-based page of `limit` rows."""
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}.")
    if page < 1:
        raise ValidationError("page must be 1 or greater.")
    return (page - 1) * limit


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total else 0


class AttendanceStatus(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    AVERAGE = "AVERAGE"
    LOW = "LOW"
    VERY_LOW = "VERY_LOW"


def classify_attendance(percentage: float) -> AttendanceStatus:
    if percentage >= 90:
        return AttendanceStatus.EXCELLENT
    if percentage >= 75:
        return AttendanceStatus.GOOD
    if percentage >= 60:
        return AttendanceStatus.AVERAGE
    if percentage >= 40:
        return AttendanceStatus.LOW
    return AttendanceStatus.VERY_LOW


# ===== Attendance records =====

class LanguageType(str, Enum):
    HINDI = "HINDI"
    KANNADA = "KANNADA"
    SANSKRIT = "SANSKRIT"


class LanguageSubjectInfo(BaseModel):
    """Present only on language-subject sessions; a record without it is a regular subject."""
    type: LanguageType
    group: Optional[str] = None


class AttendanceRecord(BaseModel):
    """
    Represents one attendance session, mapping to the 'attendance_records' table.
    Several records may share (date, stream, semester, subject); record_number tells them apart.
    """
    record_id: str = Field(default_factory=generate_record_id)
    date: date_type
    stream: str
    semester: int = Field(..., ge=1, le=8)
    subject: str
    record_number: int = Field(1, ge=1)
    students_present: List[str] = Field(default_factory=list)
    students_total: int = Field(..., ge=0, description="Students expected in this session")
    total_possible_students: int = Field(..., ge=0, description="Full roster size of the stream")
    attendance_percentage: float = Field(0.0, description="Recomputed on every validation; supplied values are overwritten")
    language: Optional[LanguageSubjectInfo] = None
    recorded_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    last_updated: datetime = Field(default_factory=utc_now)

    @field_validator("stream", "subject")
    @classmethod
    def _uppercase_codes(cls, v: str) -> str:
        return normalize_code(v)

    @field_validator("students_present")
    @classmethod
    def _dedupe_students(cls, v: List[str]) -> List[str]:
        cleaned = (s.strip() for s in v)
        return list(dict.fromkeys(s for s in cleaned if s))

    @model_validator(mode="after")
    def _apply_counts(self):
        present_count = len(self.students_present)
        validate_attendance_counts(present_count, self.students_total, self.total_possible_students)
        self.attendance_percentage = calculate_attendance_percentage(present_count, self.students_total)
        return self

    @computed_field
    @property
    def is_language_subject(self) -> bool:
        return self.language is not None

    @computed_field
    @property
    def status(self) -> AttendanceStatus:
        return classify_attendance(self.attendance_percentage)

    @computed_field
    @property
    def absent_count(self) -> int:
        return self.students_total - len(self.students_present)


# ===== Teacher profile and its embedded sequences =====

ClassKey = Tuple[str, int, str]


def class_key(stream: str, semester: int, subject: str) -> ClassKey:
    try:
        return normalize_code(stream), int(semester), normalize_code(subject)
    except ValueError as e:
        raise ValidationError(f"Invalid class identity ({stream!r}, {semester!r}, {subject!r}): {e}") from e


class ClassEntry(BaseModel):
    """Fields shared by catalog subjects, queue items and completed classes."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    stream: str
    semester: int = Field(..., ge=1, le=8)
    subject: str
    teacher_email: Optional[str] = None

    @field_validator("stream", "subject")
    @classmethod
    def _uppercase_codes(cls, v: str) -> str:
        return normalize_code(v)

    @property
    def key(self) -> ClassKey:
        return self.stream, self.semester, self.subject


class SubjectEntry(ClassEntry):
    semester: int = Field(..., ge=1, le=6)
    created_at: datetime = Field(default_factory=utc_now)


class QueueItem(ClassEntry):
    added_at: datetime = Field(default_factory=utc_now)


class CompletedClass(ClassEntry):
    completed_at: datetime = Field(default_factory=utc_now)
    record_id: Optional[str] = Field(None, description="The attendance record produced when this class was completed")


class ClassState(str, Enum):
    QUEUED = "QUEUED"
    COMPLETED = "COMPLETED"


class TeacherProfile(BaseModel):
    """
    Represents a teacher, mapping to the 'teacher_profiles' table.

    The profile owns its subject catalog, today's queue and the completed-class
    history. Queue items only ever move forward: QUEUED -> COMPLETED. A retake
    is a new queue item with a new id. `version` is bumped by every save and
    guards against lost updates.
    """
    firebase_uid: str
    email: str
    name: str = ""
    profile_image_url: str = ""
    created_subjects: List[SubjectEntry] = Field(default_factory=list)
    attendance_queue: List[QueueItem] = Field(default_factory=list)
    completed_classes: List[CompletedClass] = Field(default_factory=list)
    last_queue_update: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = 0

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, v: str) -> str:
        return v.strip().lower()

    @model_validator(mode="after")
    def _queue_and_completed_are_disjoint(self):
        overlap = {item.id for item in self.attendance_queue} & {c.id for c in self.completed_classes}
        if overlap:
            raise ValueError(f"Items both queued and completed: {sorted(overlap)}")
        return self

    # --- Subject catalog ---

    def find_subject(self, stream: str, semester: int, subject: str) -> Optional[SubjectEntry]:
        key = class_key(stream, semester, subject)
        return next((s for s in self.created_subjects if s.key == key), None)

    def add_subject(self, stream: str, semester: int, subject: str, now: Optional[datetime] = None) -> SubjectEntry:
        if not 1 <= int(semester) <= 6:
            raise ValidationError("Semester must be between 1 and 6.")
        if self.find_subject(stream, semester, subject):
            raise DuplicateSubject("Subject already exists.")
        stream, semester, subject = class_key(stream, semester, subject)
        entry = SubjectEntry(
            stream=stream, semester=semester, subject=subject,
            created_at=now or utc_now(), teacher_email=self.email
        )
        self.created_subjects.append(entry)
        return entry

    def remove_subject(self, subject_id: str) -> SubjectEntry:
        entry = next((s for s in self.created_subjects if s.id == subject_id), None)
        if entry is None:
            raise SubjectNotFound(f"Subject ({subject_id}) not found.")
        self.created_subjects = [s for s in self.created_subjects if s.id != subject_id]
        return entry

    # --- Queue state machine ---

    def item_state(self, item_id: str) -> Optional[ClassState]:
        if any(item.id == item_id for item in self.attendance_queue):
            return ClassState.QUEUED
        if any(c.id == item_id for c in self.completed_classes):
            return ClassState.COMPLETED
        return None

    def get_queue_item(self, item_id: str) -> QueueItem:
        item = next((i for i in self.attendance_queue if i.id == item_id), None)
        if item is None:
            raise QueueItemNotFound(f"Queue item ({item_id}) not found.")
        return item

    def enqueue(self, stream: str, semester: int, subject: str, now: Optional[datetime] = None) -> QueueItem:
        key = class_key(stream, semester, subject)
        if self.find_subject(*key) is None:
            raise SubjectNotFound(f"Subject {key[2]} for {key[0]} semester {key[1]} has not been created.")
        if any(item.key == key for item in self.attendance_queue):
            raise DuplicateQueueItem(f"{key[2]} for {key[0]} semester {key[1]} is already in the queue.")

        now = now or utc_now()
        item = QueueItem(stream=key[0], semester=key[1], subject=key[2], added_at=now, teacher_email=self.email)
        self.attendance_queue.append(item)
        self.last_queue_update = now
        return item

    def dequeue(self, item_id: str, now: Optional[datetime] = None) -> QueueItem:
        item = self.get_queue_item(item_id)
        self.attendance_queue = [i for i in self.attendance_queue if i.id != item_id]
        self.last_queue_update = now or utc_now()
        return item

    def complete(self, item_id: str, record_id: Optional[str] = None, now: Optional[datetime] = None) -> CompletedClass:
        item = self.dequeue(item_id, now=now)
        completed = CompletedClass(
            id=item.id, stream=item.stream, semester=item.semester, subject=item.subject,
            teacher_email=item.teacher_email, completed_at=self.last_queue_update, record_id=record_id
        )
        self.completed_classes.append(completed)
        return completed

    def recent_completed(self, limit: Optional[int] = None) -> List[CompletedClass]:
        ordered = sorted(self.completed_classes, key=lambda c: c.completed_at, reverse=True)
        return ordered[:limit] if limit else ordered


# ===== Notification log =====

class NotificationDetail(BaseModel):
    student_id: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class NotificationLog(BaseModel):
    """One bulk notification run, mapping to the 'notification_logs' table."""
    log_id: UUID = Field(default_factory=uuid4)
    record_id: Optional[str] = None
    stream: Optional[str] = None
    semester: Optional[int] = None
    subject: Optional[str] = None
    sent_by: str
    total: int = 0
    successful: int = 0
    failed: int = 0
    details: List[NotificationDetail] = Field(default_factory=list)
    sent_at: datetime = Field(default_factory=utc_now)
