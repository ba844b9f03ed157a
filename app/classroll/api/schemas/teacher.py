from pydantic import BaseModel, Field
from datetime import date as date_type, datetime
from typing import List, Optional

from ...models.db_models import CompletedClass, LanguageSubjectInfo, QueueItem, SubjectEntry


class ProfileResponse(BaseModel):
    """The teacher's profile as returned to the client."""
    firebase_uid: str
    email: str
    name: str
    profile_image_url: str
    created_subjects: List[SubjectEntry]
    attendance_queue: List[QueueItem]
    completed_classes: List[CompletedClass]
    last_queue_update: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=120)
    profile_image_url: Optional[str] = Field(None, max_length=2048)

class ClassRequest(BaseModel):
    """Identifies a class by stream, semester and subject; codes are uppercased server-side."""
    stream: str = Field(..., min_length=1, description="Stream code, e.g. 'BCA'.")
    semester: int = Field(..., ge=1, le=8)
    subject: str = Field(..., min_length=1, description="Subject code or name.")

class SubjectCreateRequest(ClassRequest):
    semester: int = Field(..., ge=1, le=6)

class AttendanceSubmitRequest(BaseModel):
    students_present: List[str] = Field(default_factory=list, description="IDs of the students marked present.")
    students_total: int = Field(..., ge=0, description="Students expected in this class.")
    total_possible_students: int = Field(..., ge=0, description="Full roster size of the stream.")
    date: Optional[date_type] = Field(None, description="Defaults to today (UTC).")
    language: Optional[LanguageSubjectInfo] = None
