"""
Pydantic schemas for checkmark verification sessions
"""
from pydantic import AliasChoices, BaseModel, Field
from typing import List, Optional

from app.services.sessions import Status


class CreateSessionRequest(BaseModel):
    """Request to attach a paid verification session to the authenticated wallet"""
    session_id: str = Field(
        validation_alias=AliasChoices("session_id", "sessionId"),
        description="Session ID issued by the verification provider",
    )


class CreateSessionResponse(BaseModel):
    success: bool = True


class StatusResponse(BaseModel):
    """Where the wallet stands in the checkmark flow"""
    status: Status = Field(
        description="Status: none, pending, processing, checkmarked, failed"
    )
    errors: Optional[List[str]] = Field(
        default=None,
        description="Reasons the verification failed, when status is failed",
    )


class WebhookResponse(BaseModel):
    status: Status = Status.CHECKMARKED
