from pydantic import BaseModel, Field
from datetime import date as date_type
from typing import List, Optional

from ...models.db_models import LanguageSubjectInfo


class AttendanceCreateRequest(BaseModel):
    """Creates a record directly, outside the class queue. Percentage is always computed server-side."""
    date: date_type
    stream: str = Field(..., min_length=1)
    semester: int = Field(..., ge=1, le=8)
    subject: str = Field(..., min_length=1)
    students_present: List[str] = Field(default_factory=list)
    students_total: int = Field(..., ge=0)
    total_possible_students: int = Field(..., ge=0)
    language: Optional[LanguageSubjectInfo] = None

class AttendanceUpdateRequest(BaseModel):
    """Partial correction; omitted fields keep their stored values."""
    students_present: Optional[List[str]] = None
    students_total: Optional[int] = Field(None, ge=0)
    total_possible_students: Optional[int] = Field(None, ge=0)
    language: Optional[LanguageSubjectInfo] = None
