from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from uuid import UUID


class VerifiedPrincipal(BaseModel):
    """
    Identity established from a verified Firebase ID token.
    """
    uid: str = Field(..., description="Firebase uid, the primary identity of a teacher.")
    email: Optional[str] = None
    name: Optional[str] = None


class TeacherSessionRedis(BaseModel):
    """
    A teacher's session stored in Redis. Created by /auth/sync and removed by /auth/logout;
    protected routes require one even when the bearer token is still valid.
    """
    principal: VerifiedPrincipal
    session_id: UUID = Field(..., description="Unique ID for this specific session.")
    session_start_time: datetime
    session_end_time: datetime
