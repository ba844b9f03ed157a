import pytest
import pytest_asyncio
from datetime import date
from unittest.mock import AsyncMock

from app.classroll.db.db_client import StaleProfileError
from app.classroll.models.db_models import AttendanceRecord, LanguageSubjectInfo, LanguageType, TeacherProfile
from app.classroll.models.redis_models import VerifiedPrincipal
from app.classroll.services.errors import (
    ConcurrentModificationError,
    DuplicateQueueItem,
    DuplicateSubject,
    InvalidAttendanceCounts,
    PersistenceError,
    ProfileNotFound,
    QueueItemNotFound,
    SubjectNotFound,
    ValidationError,
)
from app.classroll.services.teacher_service import TeacherService

# --- Test Fixtures ---

@pytest_asyncio.fixture
async def service_instance():
    """Creates a TeacherService with a mocked database client for each test."""
    mock_db_client = AsyncMock()
    service = TeacherService(db_client=mock_db_client)
    return service, mock_db_client


def serve(mock_db_client, profile: TeacherProfile):
    """Every load returns a fresh copy of `profile`, like a real read would."""
    mock_db_client.get_teacher_profile.side_effect = lambda uid: profile.model_copy(deep=True)


async def store_numbered(profile, expected_version, record: AttendanceRecord):
    return record.model_copy(update={"record_number": 2})

# --- Test Scenarios ---

@pytest.mark.asyncio
class TestProfileSync:

    async def test_first_sight_creates_profile(self, service_instance, principal):
        service, db = service_instance
        db.get_teacher_profile.return_value = None
        db.get_teacher_profile_by_email.return_value = None
        db.add_teacher_profile.return_value = True

        profile = await service.get_or_create_profile(principal)

        assert profile.firebase_uid == principal.uid
        assert profile.email == "ada@college.edu"
        assert profile.name == "Ada Lovelace"
        db.add_teacher_profile.assert_awaited_once()
        db.save_teacher_profile.assert_not_called()

    async def test_known_profile_is_returned_untouched(self, service_instance, principal, profile):
        service, db = service_instance
        serve(db, profile)

        result = await service.get_or_create_profile(principal)

        assert result.firebase_uid == profile.firebase_uid
        db.add_teacher_profile.assert_not_called()
        db.save_teacher_profile.assert_not_called()

    async def test_empty_name_is_filled_on_sync(self, service_instance, principal, profile):
        service, db = service_instance
        profile.name = ""
        serve(db, profile)
        db.save_teacher_profile.return_value = True

        result = await service.get_or_create_profile(principal)

        assert result.name == "Ada Lovelace"
        saved_profile, expected_version = db.save_teacher_profile.call_args[0]
        assert saved_profile.name == "Ada Lovelace" and expected_version == 0

    async def test_profile_found_by_email_is_relinked(self, service_instance, profile):
        service, db = service_instance
        new_principal = VerifiedPrincipal(uid="uid-new", email="ada@college.edu", name="Ada Lovelace")
        relinked = profile.model_copy(update={"firebase_uid": "uid-new", "version": 1})
        db.get_teacher_profile.side_effect = [None, relinked]
        db.get_teacher_profile_by_email.return_value = profile

        result = await service.get_or_create_profile(new_principal)

        db.relink_teacher_profile.assert_awaited_once_with("ada@college.edu", "uid-new", 0)
        assert result.firebase_uid == "uid-new"
        db.add_teacher_profile.assert_not_called()

    async def test_token_without_email_cannot_create_profile(self, service_instance):
        service, db = service_instance
        db.get_teacher_profile.return_value = None

        with pytest.raises(ValidationError):
            await service.get_or_create_profile(VerifiedPrincipal(uid="uid-anon"))

    async def test_database_failure_is_wrapped(self, service_instance, principal):
        service, db = service_instance
        db.get_teacher_profile.side_effect = OSError("connection refused")

        with pytest.raises(PersistenceError):
            await service.get_or_create_profile(principal)


@pytest.mark.asyncio
class TestProfileMutations:

    async def test_missing_profile(self, service_instance):
        service, db = service_instance
        db.get_teacher_profile.return_value = None

        with pytest.raises(ProfileNotFound):
            await service.get_profile("uid-ghost")

    async def test_create_subject(self, service_instance, profile):
        service, db = service_instance
        serve(db, profile)
        db.save_teacher_profile.return_value = True

        entry = await service.create_subject(profile.firebase_uid, "bca", 3, " dbms ")

        assert (entry.stream, entry.semester, entry.subject) == ("BCA", 3, "DBMS")
        saved_profile, expected_version = db.save_teacher_profile.call_args[0]
        assert [s.subject for s in saved_profile.created_subjects] == ["DBMS"]
        assert expected_version == 0

    async def test_duplicate_subject_writes_nothing(self, service_instance, stocked_profile):
        service, db = service_instance
        serve(db, stocked_profile)

        with pytest.raises(DuplicateSubject):
            await service.create_subject(stocked_profile.firebase_uid, "BCA", 3, "DBMS")
        db.save_teacher_profile.assert_not_called()

    async def test_lost_race_is_retried(self, service_instance, profile):
        service, db = service_instance
        serve(db, profile)
        db.save_teacher_profile.side_effect = [False, True]

        await service.create_subject(profile.firebase_uid, "BCA", 3, "DBMS")

        assert db.get_teacher_profile.await_count == 2
        assert db.save_teacher_profile.await_count == 2

    async def test_retries_are_bounded(self, service_instance, profile):
        service, db = service_instance
        serve(db, profile)
        db.save_teacher_profile.return_value = False

        with pytest.raises(ConcurrentModificationError):
            await service.create_subject(profile.firebase_uid, "BCA", 3, "DBMS")
        assert db.save_teacher_profile.await_count == 3

    async def test_save_failure_is_wrapped(self, service_instance, profile):
        service, db = service_instance
        serve(db, profile)
        db.save_teacher_profile.side_effect = OSError("connection reset")

        with pytest.raises(PersistenceError):
            await service.update_profile(profile.firebase_uid, name="Ada King")

    async def test_update_profile_rejects_blank_name(self, service_instance, profile):
        service, db = service_instance
        serve(db, profile)

        with pytest.raises(ValidationError):
            await service.update_profile(profile.firebase_uid, name="   ")
        db.get_teacher_profile.assert_not_called()

    async def test_update_profile(self, service_instance, profile):
        service, db = service_instance
        serve(db, profile)
        db.save_teacher_profile.return_value = True

        result = await service.update_profile(profile.firebase_uid, profile_image_url=" https://img/ada.png ")

        assert result.profile_image_url == "https://img/ada.png"
        assert result.name == profile.name
        assert result.version == 1

    async def test_enqueue_unknown_subject(self, service_instance, profile):
        service, db = service_instance
        serve(db, profile)

        with pytest.raises(SubjectNotFound):
            await service.enqueue(profile.firebase_uid, "BCA", 3, "DBMS")
        db.save_teacher_profile.assert_not_called()

    async def test_enqueue_duplicate(self, service_instance, stocked_profile):
        service, db = service_instance
        serve(db, stocked_profile)

        with pytest.raises(DuplicateQueueItem):
            await service.enqueue(stocked_profile.firebase_uid, "BCA", 3, "DBMS")

    async def test_dequeue(self, service_instance, stocked_profile):
        service, db = service_instance
        serve(db, stocked_profile)
        db.save_teacher_profile.return_value = True
        item_id = stocked_profile.attendance_queue[0].id

        removed = await service.dequeue(stocked_profile.firebase_uid, item_id)

        assert removed.id == item_id
        saved_profile = db.save_teacher_profile.call_args[0][0]
        assert saved_profile.attendance_queue == [] and saved_profile.completed_classes == []

    async def test_get_stats(self, service_instance, stocked_profile):
        service, db = service_instance
        serve(db, stocked_profile)

        stats = await service.get_stats(stocked_profile.firebase_uid)

        assert stats.total_subjects == 1
        assert stats.queue_length == 1
        assert stats.completed_classes == 0
        assert stats.has_profile_image is False


@pytest.mark.asyncio
class TestSubmitAttendance:

    async def test_submit_records_and_completes(self, service_instance, stocked_profile):
        service, db = service_instance
        serve(db, stocked_profile)
        db.complete_queue_item.side_effect = store_numbered
        item_id = stocked_profile.attendance_queue[0].id

        result = await service.submit_attendance(
            stocked_profile.firebase_uid, item_id,
            students_present=[f"S{i}" for i in range(30)], students_total=40, total_possible_students=60,
            record_date=date(2025, 1, 10),
            language=LanguageSubjectInfo(type=LanguageType.HINDI),
        )

        assert result.record.record_number == 2
        assert result.record.attendance_percentage == 75.0
        assert result.record.recorded_by == "ada@college.edu"
        assert result.record.is_language_subject is True
        assert result.completed_class.id == item_id
        assert result.completed_class.record_id == result.record.record_id

        saved_profile, expected_version, record = db.complete_queue_item.call_args[0]
        assert expected_version == 0
        assert saved_profile.attendance_queue == []
        assert [c.id for c in saved_profile.completed_classes] == [item_id]
        assert (record.stream, record.semester, record.subject) == ("BCA", 3, "DBMS")

    async def test_invalid_counts_touch_nothing(self, service_instance, stocked_profile):
        service, db = service_instance
        serve(db, stocked_profile)

        with pytest.raises(InvalidAttendanceCounts):
            await service.submit_attendance(
                stocked_profile.firebase_uid, stocked_profile.attendance_queue[0].id,
                students_present=["S1", "S2", "S3"], students_total=2, total_possible_students=60,
            )
        db.get_teacher_profile.assert_not_called()
        db.complete_queue_item.assert_not_called()

    async def test_duplicate_present_ids_count_once(self, service_instance, stocked_profile):
        service, db = service_instance
        serve(db, stocked_profile)
        db.complete_queue_item.side_effect = store_numbered

        result = await service.submit_attendance(
            stocked_profile.firebase_uid, stocked_profile.attendance_queue[0].id,
            students_present=["S1", "S1", "S2"], students_total=2, total_possible_students=60,
        )
        assert result.record.students_present == ["S1", "S2"]
        assert result.record.attendance_percentage == 100.0

    async def test_unknown_queue_item(self, service_instance, stocked_profile):
        service, db = service_instance
        serve(db, stocked_profile)

        with pytest.raises(QueueItemNotFound):
            await service.submit_attendance(
                stocked_profile.firebase_uid, "missing-item",
                students_present=[], students_total=10, total_possible_students=60,
            )
        db.complete_queue_item.assert_not_called()

    async def test_stale_profile_is_retried(self, service_instance, stocked_profile):
        service, db = service_instance
        serve(db, stocked_profile)
        stale = StaleProfileError(stocked_profile.firebase_uid)

        async def first_stale_then_store(profile, expected_version, record):
            if db.complete_queue_item.await_count == 1:
                raise stale
            return await store_numbered(profile, expected_version, record)

        db.complete_queue_item.side_effect = first_stale_then_store

        result = await service.submit_attendance(
            stocked_profile.firebase_uid, stocked_profile.attendance_queue[0].id,
            students_present=["S1"], students_total=2, total_possible_students=60,
        )
        assert result.record.record_number == 2
        assert db.get_teacher_profile.await_count == 2

    async def test_retake_of_a_completed_class_is_numbered_next(self, service_instance, stocked_profile):
        service, db = service_instance
        state = {"profile": stocked_profile, "records": []}
        db.get_teacher_profile.side_effect = lambda uid: state["profile"].model_copy(deep=True)

        async def save(profile, expected_version):
            state["profile"] = profile.model_copy(update={"version": expected_version + 1})
            return True

        async def complete(profile, expected_version, record):
            number = 1 + sum(
                (r.date, r.stream, r.semester, r.subject) == (record.date, record.stream, record.semester, record.subject)
                for r in state["records"]
            )
            stored = record.model_copy(update={"record_number": number})
            state["records"].append(stored)
            state["profile"] = profile.model_copy(update={"version": expected_version + 1})
            return stored

        db.save_teacher_profile.side_effect = save
        db.complete_queue_item.side_effect = complete
        uid = stocked_profile.firebase_uid

        first = await service.submit_attendance(
            uid, stocked_profile.attendance_queue[0].id,
            students_present=["S1", "S2"], students_total=4, total_possible_students=60, record_date=date(2025, 1, 10),
        )
        retake = await service.enqueue(uid, "BCA", 3, "DBMS")
        second = await service.submit_attendance(
            uid, retake.id,
            students_present=["S1", "S2", "S3"], students_total=4, total_possible_students=60, record_date=date(2025, 1, 10),
        )

        assert (first.record.record_number, second.record.record_number) == (1, 2)
        assert first.record.record_id != second.record.record_id
        assert (state["records"][0].students_present, state["records"][0].attendance_percentage) == (["S1", "S2"], 50.0)
        assert [c.id for c in state["profile"].completed_classes] == [first.completed_class.id, retake.id]

    async def test_stale_profile_retries_are_bounded(self, service_instance, stocked_profile):
        service, db = service_instance
        serve(db, stocked_profile)
        db.complete_queue_item.side_effect = StaleProfileError(stocked_profile.firebase_uid)

        with pytest.raises(ConcurrentModificationError):
            await service.submit_attendance(
                stocked_profile.firebase_uid, stocked_profile.attendance_queue[0].id,
                students_present=["S1"], students_total=2, total_possible_students=60,
            )
        assert db.complete_queue_item.await_count == 3

    async def test_database_failure_is_wrapped(self, service_instance, stocked_profile):
        service, db = service_instance
        serve(db, stocked_profile)
        db.complete_queue_item.side_effect = OSError("connection reset")

        with pytest.raises(PersistenceError):
            await service.submit_attendance(
                stocked_profile.firebase_uid, stocked_profile.attendance_queue[0].id,
                students_present=["S1"], students_total=2, total_possible_students=60,
            )
