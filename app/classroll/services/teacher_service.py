import logging
from datetime import date, datetime
from typing import Callable, List, Optional, Tuple, TypeVar

from pydantic import BaseModel

# --- Required clients and models ---
from ..db.db_client import AsyncPostgresClient, DATABASE_ERRORS, StaleProfileError
from ..models.db_models import (
    AttendanceRecord,
    CompletedClass,
    LanguageSubjectInfo,
    QueueItem,
    SubjectEntry,
    TeacherProfile,
    utc_now,
    validate_attendance_counts,
)
from ..models.redis_models import VerifiedPrincipal
from .errors import (
    ConcurrentModificationError,
    PersistenceError,
    ProfileNotFound,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# --- Result models for API responses ---
class AttendanceSubmission(BaseModel):
    """The record a submission produced and the completed-class entry pointing at it."""
    record: AttendanceRecord
    completed_class: CompletedClass


class TeacherStats(BaseModel):
    total_subjects: int
    queue_length: int
    completed_classes: int
    last_active: Optional[datetime] = None
    has_profile_image: bool


class TeacherService:
    """
    Service layer for the teacher's profile, subject catalog and class queue.

    Every profile change is load -> mutate -> compare-and-swap on `version`.
    A lost race reloads and tries again, up to `max_retries` times.
    """
    def __init__(self, db_client: AsyncPostgresClient, max_retries: int = 3):
        self.db_client = db_client
        self.max_retries = max_retries

    async def _load_profile(self, firebase_uid: str) -> TeacherProfile:
        try:
            profile = await self.db_client.get_teacher_profile(firebase_uid)
        except DATABASE_ERRORS as e:
            logger.error(f"Database error while loading profile of {firebase_uid}.", exc_info=True)
            raise PersistenceError("A database error occurred while loading the teacher profile.") from e
        if profile is None:
            raise ProfileNotFound("Teacher profile not found. Please sync your account first.")
        return profile

    async def _mutate_profile(self, firebase_uid: str, mutate: Callable[[TeacherProfile], T]) -> Tuple[TeacherProfile, T]:
        for attempt in range(1, self.max_retries + 1):
            profile = await self._load_profile(firebase_uid)
            expected_version = profile.version
            # Domain errors raised here leave the stored profile untouched.
            result = mutate(profile)
            profile.updated_at = utc_now()

            try:
                saved = await self.db_client.save_teacher_profile(profile, expected_version)
            except DATABASE_ERRORS as e:
                logger.error(f"Database error while saving profile of {firebase_uid}.", exc_info=True)
                raise PersistenceError("A database error occurred while saving the teacher profile.") from e

            if saved:
                profile.version = expected_version + 1
                return profile, result
            logger.warning(f"Profile of {firebase_uid} changed during update (attempt {attempt}/{self.max_retries}).")

        raise ConcurrentModificationError("The profile is being modified elsewhere. Please refresh and try again.")

    # ===== Profile =====

    async def get_or_create_profile(self, principal: VerifiedPrincipal) -> TeacherProfile:
        """
        Finds the teacher's profile by uid, then by email (re-linking it to the new uid),
        creating it on first sight. An existing profile gets an empty name filled in
        and its email synced with the identity provider.
        """
        try:
            profile = await self.db_client.get_teacher_profile(principal.uid)

            if profile is None and principal.email:
                by_email = await self.db_client.get_teacher_profile_by_email(principal.email)
                if by_email:
                    await self.db_client.relink_teacher_profile(by_email.email, principal.uid, by_email.version)
                    logger.info(f"Profile {by_email.email} re-linked from {by_email.firebase_uid} to {principal.uid}.")
                    profile = await self.db_client.get_teacher_profile(principal.uid)

            if profile is None:
                if not principal.email:
                    raise ValidationError("The identity token carries no email address.")
                new_profile = TeacherProfile(
                    firebase_uid=principal.uid,
                    email=principal.email,
                    name=principal.name or principal.email.split("@")[0],
                )
                if await self.db_client.add_teacher_profile(new_profile):
                    logger.info(f"Teacher profile created for {new_profile.email}.")
                    return new_profile
                # Someone created it between our read and our insert.
                profile = await self.db_client.get_teacher_profile(principal.uid)
                if profile is None:
                    raise ConcurrentModificationError("The profile is being created elsewhere. Please try again.")
        except DATABASE_ERRORS as e:
            logger.error(f"Database error while syncing profile of {principal.uid}.", exc_info=True)
            raise PersistenceError("A database error occurred while syncing the teacher profile.") from e

        email = principal.email.strip().lower() if principal.email else profile.email
        if profile.name and profile.email == email:
            return profile

        def refresh(p: TeacherProfile) -> None:
            if not p.name:
                p.name = principal.name or email.split("@")[0]
            p.email = email

        profile, _ = await self._mutate_profile(principal.uid, refresh)
        return profile

    async def get_profile(self, firebase_uid: str) -> TeacherProfile:
        return await self._load_profile(firebase_uid)

    async def update_profile(self, firebase_uid: str, name: Optional[str] = None, profile_image_url: Optional[str] = None) -> TeacherProfile:
        if name is not None and not name.strip():
            raise ValidationError("Name must not be empty.")

        def apply(p: TeacherProfile) -> None:
            if name is not None:
                p.name = name.strip()
            if profile_image_url is not None:
                p.profile_image_url = profile_image_url.strip()

        profile, _ = await self._mutate_profile(firebase_uid, apply)
        logger.info(f"Profile of {profile.email} updated.")
        return profile

    async def get_stats(self, firebase_uid: str) -> TeacherStats:
        profile = await self._load_profile(firebase_uid)
        return TeacherStats(
            total_subjects=len(profile.created_subjects),
            queue_length=len(profile.attendance_queue),
            completed_classes=len(profile.completed_classes),
            last_active=profile.updated_at,
            has_profile_image=bool(profile.profile_image_url),
        )

    # ===== Subject catalog =====

    async def list_subjects(self, firebase_uid: str) -> List[SubjectEntry]:
        profile = await self._load_profile(firebase_uid)
        return profile.created_subjects

    async def create_subject(self, firebase_uid: str, stream: str, semester: int, subject: str) -> SubjectEntry:
        now = utc_now()
        _, entry = await self._mutate_profile(firebase_uid, lambda p: p.add_subject(stream, semester, subject, now=now))
        logger.info(f"Subject {entry.subject} ({entry.stream} sem {entry.semester}) created by {firebase_uid}.")
        return entry

    async def delete_subject(self, firebase_uid: str, subject_id: str) -> SubjectEntry:
        _, entry = await self._mutate_profile(firebase_uid, lambda p: p.remove_subject(subject_id))
        logger.info(f"Subject {entry.subject} ({entry.stream} sem {entry.semester}) deleted by {firebase_uid}.")
        return entry

    # ===== Class queue =====

    async def get_queue(self, firebase_uid: str) -> List[QueueItem]:
        profile = await self._load_profile(firebase_uid)
        return profile.attendance_queue

    async def get_completed(self, firebase_uid: str, limit: Optional[int] = None) -> List[CompletedClass]:
        profile = await self._load_profile(firebase_uid)
        return profile.recent_completed(limit)

    async def enqueue(self, firebase_uid: str, stream: str, semester: int, subject: str) -> QueueItem:
        now = utc_now()
        _, item = await self._mutate_profile(firebase_uid, lambda p: p.enqueue(stream, semester, subject, now=now))
        logger.info(f"Queue item {item.id} ({item.subject}) added for {firebase_uid}.")
        return item

    async def dequeue(self, firebase_uid: str, queue_item_id: str) -> QueueItem:
        _, item = await self._mutate_profile(firebase_uid, lambda p: p.dequeue(queue_item_id))
        logger.info(f"Queue item {queue_item_id} removed without attendance by {firebase_uid}.")
        return item

    async def submit_attendance(
        self,
        firebase_uid: str,
        queue_item_id: str,
        students_present: List[str],
        students_total: int,
        total_possible_students: int,
        record_date: Optional[date] = None,
        language: Optional[LanguageSubjectInfo] = None,
    ) -> AttendanceSubmission:
        """
        Records attendance for a queued class and moves it to the completed history.
        The record insert and the profile write share one transaction.
        """
        present = list(dict.fromkeys(s.strip() for s in students_present if s.strip()))
        validate_attendance_counts(len(present), students_total, total_possible_students)

        for attempt in range(1, self.max_retries + 1):
            profile = await self._load_profile(firebase_uid)
            expected_version = profile.version
            item = profile.get_queue_item(queue_item_id)

            record = AttendanceRecord(
                date=record_date or utc_now().date(),
                stream=item.stream,
                semester=item.semester,
                subject=item.subject,
                students_present=present,
                students_total=students_total,
                total_possible_students=total_possible_students,
                language=language,
                recorded_by=profile.email,
            )
            completed = profile.complete(item.id, record_id=record.record_id)
            profile.updated_at = utc_now()

            try:
                stored = await self.db_client.complete_queue_item(profile, expected_version, record)
            except StaleProfileError:
                logger.warning(f"Profile of {firebase_uid} changed during submission (attempt {attempt}/{self.max_retries}).")
                continue
            except DATABASE_ERRORS as e:
                logger.error(f"Database error while submitting attendance for item {queue_item_id}.", exc_info=True)
                raise PersistenceError("A database error occurred while saving the attendance.") from e

            logger.info(
                f"Attendance {stored.record_id} recorded for {stored.subject} ({stored.stream} sem {stored.semester}), "
                f"record #{stored.record_number}: {len(stored.students_present)}/{stored.students_total}."
            )
            return AttendanceSubmission(record=stored, completed_class=completed)

        raise ConcurrentModificationError("The profile is being modified elsewhere. Please refresh and try again.")
