from fastapi import APIRouter, Depends, Query, Request, status
from datetime import date
from typing import List, Optional

from ..models.db_models import MAX_PAGE_SIZE, AttendanceRecord
from ..models.redis_models import VerifiedPrincipal
from ..services.attendance_service import AttendanceService, RecordPage, SubjectSummary
from ..services.errors import ServiceError
from .schemas.attendance import AttendanceCreateRequest, AttendanceUpdateRequest
from .auth import get_current_teacher
from .dependencies import get_attendance_service
from .utilities.errors import to_http_exception
from .utilities.limiter import limiter

router = APIRouter(prefix="/attendance", tags=["Attendance Records"])


@router.get("", response_model=RecordPage, summary="List records with optional filters, newest first")
@limiter.limit("60/minute")
async def list_records(
    request: Request,
    stream: Optional[str] = Query(None),
    semester: Optional[int] = Query(None, ge=1, le=8),
    subject: Optional[str] = Query(None),
    record_date: Optional[date] = Query(None, alias="date"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    teacher_email: Optional[str] = Query(None, description="Only records submitted by this teacher"),
    language: Optional[str] = Query(None, description="HINDI, KANNADA, SANSKRIT or ALL"),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    page: int = Query(1, ge=1),
    teacher: VerifiedPrincipal = Depends(get_current_teacher),
    service: AttendanceService = Depends(get_attendance_service)
):
    try:
        return await service.list_records(
            stream=stream, semester=semester, subject=subject, record_date=record_date,
            start_date=start_date, end_date=end_date, recorded_by=teacher_email,
            language=language, limit=limit, page=page,
        )
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/records", response_model=List[AttendanceRecord], summary="Find records by date, stream, semester and subject")
@limiter.limit("60/minute")
async def find_records(
    request: Request,
    record_date: date = Query(..., alias="date"),
    stream: str = Query(..., min_length=1),
    semester: int = Query(..., ge=1, le=8),
    subject: str = Query(..., min_length=1),
    teacher: VerifiedPrincipal = Depends(get_current_teacher),
    service: AttendanceService = Depends(get_attendance_service)
):
    try:
        return await service.find_by_dimensions(record_date, subject, stream, semester)
    except ServiceError as e:
        raise to_http_exception(e)

@router.post("/records", response_model=AttendanceRecord, status_code=status.HTTP_201_CREATED, summary="Create a record outside the class queue")
@limiter.limit("30/minute")
async def create_record(request: Request, create_request: AttendanceCreateRequest, teacher: VerifiedPrincipal = Depends(get_current_teacher), service: AttendanceService = Depends(get_attendance_service)):
    try:
        return await service.record_attendance(
            record_date=create_request.date,
            stream=create_request.stream,
            semester=create_request.semester,
            subject=create_request.subject,
            students_present=create_request.students_present,
            students_total=create_request.students_total,
            total_possible_students=create_request.total_possible_students,
            language=create_request.language,
            recorded_by=teacher.email,
        )
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/records/{record_id}", response_model=AttendanceRecord, summary="Get a single record")
@limiter.limit("60/minute")
async def get_record(request: Request, record_id: str, teacher: VerifiedPrincipal = Depends(get_current_teacher), service: AttendanceService = Depends(get_attendance_service)):
    try:
        return await service.get_record(record_id)
    except ServiceError as e:
        raise to_http_exception(e)

@router.patch("/records/{record_id}", response_model=AttendanceRecord, summary="Correct a record; the percentage is recomputed")
@limiter.limit("30/minute")
async def update_record(request: Request, record_id: str, update_request: AttendanceUpdateRequest, teacher: VerifiedPrincipal = Depends(get_current_teacher), service: AttendanceService = Depends(get_attendance_service)):
    changes = update_request.model_dump(include={"students_present", "students_total", "total_possible_students"})
    # An explicit null clears the language tag; leaving it out keeps it.
    if "language" in update_request.model_fields_set:
        changes["language"] = update_request.language
    try:
        return await service.update_attendance(record_id, **changes)
    except ServiceError as e:
        raise to_http_exception(e)

@router.get("/summary/{stream}/{semester}", response_model=List[SubjectSummary], summary="Per-subject attendance summary")
@limiter.limit("30/minute")
async def get_summary(
    request: Request,
    stream: str,
    semester: int,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    teacher: VerifiedPrincipal = Depends(get_current_teacher),
    service: AttendanceService = Depends(get_attendance_service)
):
    try:
        return await service.summarize(stream, semester, start_date=start_date, end_date=end_date)
    except ServiceError as e:
        raise to_http_exception(e)
