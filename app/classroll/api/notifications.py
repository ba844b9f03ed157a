from fastapi import APIRouter, Depends, Query, Request
from datetime import date
from typing import Optional

from ..models.db_models import MAX_PAGE_SIZE, NotificationLog
from ..models.redis_models import VerifiedPrincipal
from ..modules.whatsapp import SendResult
from ..services.errors import ServiceError
from ..services.notification_service import NotificationLogPage, NotificationService
from .schemas.notification import AbsenteeNotificationRequest, CustomMessageRequest, TestMessageRequest
from .auth import get_current_teacher
from .dependencies import get_notification_service
from .utilities.errors import to_http_exception
from .utilities.limiter import limiter

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def _sender(teacher: VerifiedPrincipal) -> str:
    return teacher.email or teacher.uid


@router.post("/records/{record_id}/absentees", response_model=NotificationLog, summary="Message the absentees of a record over WhatsApp")
@limiter.limit("5/minute")
async def notify_absentees(request: Request, record_id: str, notify_request: AbsenteeNotificationRequest, teacher: VerifiedPrincipal = Depends(get_current_teacher), service: NotificationService = Depends(get_notification_service)):
    try:
        return await service.notify_absentees(record_id, notify_request.roster, sent_by=_sender(teacher), custom_message=notify_request.custom_message)
    except ServiceError as e:
        raise to_http_exception(e)

@router.post("/custom", response_model=NotificationLog, summary="Send a custom WhatsApp message to a list of students")
@limiter.limit("5/minute")
async def send_custom(request: Request, custom_request: CustomMessageRequest, teacher: VerifiedPrincipal = Depends(get_current_teacher), service: NotificationService = Depends(get_notification_service)):
    try:
        return await service.send_custom(custom_request.recipients, custom_request.message, sent_by=_sender(teacher))
    except ServiceError as e:
        raise to_http_exception(e)

@router.post("/test", response_model=SendResult, summary="Send a WhatsApp integration test message")
@limiter.limit("3/minute")
async def send_test(request: Request, test_request: TestMessageRequest, teacher: VerifiedPrincipal = Depends(get_current_teacher), service: NotificationService = Depends(get_notification_service)):
    return await service.send_test(test_request.phone)

@router.get("/logs", response_model=NotificationLogPage, summary="Past notification runs, newest first")
@limiter.limit("30/minute")
async def list_logs(
    request: Request,
    stream: Optional[str] = Query(None),
    semester: Optional[int] = Query(None, ge=1, le=8),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    page: int = Query(1, ge=1),
    teacher: VerifiedPrincipal = Depends(get_current_teacher),
    service: NotificationService = Depends(get_notification_service)
):
    try:
        return await service.list_logs(stream=stream, semester=semester, start_date=start_date, end_date=end_date, limit=limit, page=page)
    except ServiceError as e:
        raise to_http_exception(e)
