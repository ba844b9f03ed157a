from pydantic import BaseModel
from datetime import datetime

from .teacher import ProfileResponse


class SyncResponse(BaseModel):
    profile: ProfileResponse
    session_expires_at: datetime
