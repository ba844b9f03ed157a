from pydantic import BaseModel, Field
from typing import List, Optional

from ...services.notification_service import RosterEntry


class AbsenteeNotificationRequest(BaseModel):
    roster: List[RosterEntry] = Field(..., min_length=1, description="Students of the class; those not marked present are notified.")
    custom_message: Optional[str] = Field(None, description="Replaces the standard absence message.")

class CustomMessageRequest(BaseModel):
    recipients: List[RosterEntry] = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=4096)

class TestMessageRequest(BaseModel):
    phone: str = Field(..., min_length=5)
