from fastapi import APIRouter, Depends, Query, Request, status
from typing import List, Optional

from ..models.db_models import CompletedClass, QueueItem, SubjectEntry
from ..models.redis_models import VerifiedPrincipal
from ..services.errors import ServiceError
from ..services.teacher_service import AttendanceSubmission, TeacherService, TeacherStats
from .schemas.teacher import (
    AttendanceSubmitRequest,
    ClassRequest,
    ProfileResponse,
    ProfileUpdateRequest,
    SubjectCreateRequest,
)
from .auth import get_current_teacher
from .dependencies import get_teacher_service
from .utilities.errors import to_http_exception
from .utilities.limiter import limiter

router = APIRouter(prefix="/teacher", tags=["Teacher Endpoints"])


def _profile_response(profile) -> ProfileResponse:
    return ProfileResponse.model_validate(profile.model_dump())

# === SECTION 1: PROFILE ===

@router.get("/profile", response_model=ProfileResponse, summary="Get the teacher's profile")
@limiter.limit("60/minute")
async def get_profile(request: Request, teacher: VerifiedPrincipal = Depends(get_current_teacher), service: TeacherService = Depends(get_teacher_service)):
    try:
        return _profile_response(await service.get_profile(teacher.uid))
    except ServiceError as e:
        raise to_http_exception(e)

@router.patch("/profile", response_model=ProfileResponse, summary="Update the teacher's name or profile image URL")
@limiter.limit("10/minute")
async def update_profile(request: Request, update_request: ProfileUpdateRequest, teacher: VerifiedPrincipal = Depends(get_current_teacher), service: TeacherService = Depends(get_teacher_service)):
    try:
        profile = await service.update_profile(teacher.uid, name=update_request.name, profile_image_url=update_request.profile_image_url)
        return _profile_response(profile)
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/stats", response_model=TeacherStats, summary="Get subject, queue and completion counts")
@limiter.limit("60/minute")
async def get_stats(request: Request, teacher: VerifiedPrincipal = Depends(get_current_teacher), service: TeacherService = Depends(get_teacher_service)):
    try:
        return await service.get_stats(teacher.uid)
    except ServiceError as e:
        raise to_http_exception(e)

# === SECTION 2: SUBJECT CATALOG ===

@router.get("/subjects", response_model=List[SubjectEntry], summary="List the subjects the teacher created")
@limiter.limit("60/minute")
async def list_subjects(request: Request, teacher: VerifiedPrincipal = Depends(get_current_teacher), service: TeacherService = Depends(get_teacher_service)):
    try:
        return await service.list_subjects(teacher.uid)
    except ServiceError as e:
        raise to_http_exception(e)

@router.post("/subjects", response_model=SubjectEntry, status_code=status.HTTP_201_CREATED, summary="Create a subject")
@limiter.limit("20/minute")
async def create_subject(request: Request, subject_request: SubjectCreateRequest, teacher: VerifiedPrincipal = Depends(get_current_teacher), service: TeacherService = Depends(get_teacher_service)):
    try:
        return await service.create_subject(teacher.uid, subject_request.stream, subject_request.semester, subject_request.subject)
    except ServiceError as e:
        raise to_http_exception(e)

@router.delete("/subjects/{subject_id}", response_model=SubjectEntry, summary="Delete a subject; queued classes are kept")
@limiter.limit("20/minute")
async def delete_subject(request: Request, subject_id: str, teacher: VerifiedPrincipal = Depends(get_current_teacher), service: TeacherService = Depends(get_teacher_service)):
    try:
        return await service.delete_subject(teacher.uid, subject_id)
    except ServiceError as e:
        raise to_http_exception(e)

# === SECTION 3: CLASS QUEUE ===

@router.get("/queue", response_model=List[QueueItem], summary="List today's queued classes")
@limiter.limit("60/minute")
async def get_queue(request: Request, teacher: VerifiedPrincipal = Depends(get_current_teacher), service: TeacherService = Depends(get_teacher_service)):
    try:
        return await service.get_queue(teacher.uid)
    except ServiceError as e:
        raise to_http_exception(e)

@router.post("/queue", response_model=QueueItem, status_code=status.HTTP_201_CREATED, summary="Queue a class")
@limiter.limit("30/minute")
async def enqueue(request: Request, class_request: ClassRequest, teacher: VerifiedPrincipal = Depends(get_current_teacher), service: TeacherService = Depends(get_teacher_service)):
    try:
        return await service.enqueue(teacher.uid, class_request.stream, class_request.semester, class_request.subject)
    except ServiceError as e:
        raise to_http_exception(e)

@router.delete("/queue/{item_id}", response_model=QueueItem, summary="Remove a queued class without recording attendance")
@limiter.limit("30/minute")
async def dequeue(request: Request, item_id: str, teacher: VerifiedPrincipal = Depends(get_current_teacher), service: TeacherService = Depends(get_teacher_service)):
    try:
        return await service.dequeue(teacher.uid, item_id)
    except ServiceError as e:
        raise to_http_exception(e)

@router.post("/queue/{item_id}/attendance", response_model=AttendanceSubmission, status_code=status.HTTP_201_CREATED, summary="Record attendance for a queued class and complete it")
@limiter.limit("30/minute")
async def submit_attendance(request: Request, item_id: str, submit_request: AttendanceSubmitRequest, teacher: VerifiedPrincipal = Depends(get_current_teacher), service: TeacherService = Depends(get_teacher_service)):
    try:
        return await service.submit_attendance(
            teacher.uid,
            item_id,
            students_present=submit_request.students_present,
            students_total=submit_request.students_total,
            total_possible_students=submit_request.total_possible_students,
            record_date=submit_request.date,
            language=submit_request.language,
        )
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/completed", response_model=List[CompletedClass], summary="List completed classes, newest first")
@limiter.limit("60/minute")
async def get_completed(request: Request, limit: Optional[int] = Query(None, ge=1, le=500), teacher: VerifiedPrincipal = Depends(get_current_teacher), service: TeacherService = Depends(get_teacher_service)):
    try:
        return await service.get_completed(teacher.uid, limit=limit)
    except ServiceError as e:
        raise to_http_exception(e)
