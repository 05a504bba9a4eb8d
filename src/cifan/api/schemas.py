from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from cifan.types import ApplicationRecord, Identity, ReviewStatus


class SignUpRequest(BaseModel):
    email: str
    password: str
    display_name: str = ""


class SignInRequest(BaseModel):
    email: str
    password: str


class VerifyEmailRequest(BaseModel):
    token: str


class SessionResponse(BaseModel):
    token: str
    expires_at: datetime
    identity: Identity


class MessageResponse(BaseModel):
    message: str


class SubmitApplicationResponse(BaseModel):
    application: ApplicationRecord
    warnings: list[str] = Field(default_factory=list)


class ReviewUpdateRequest(BaseModel):
    review_status: ReviewStatus | None = None
    admin_notes: str | None = None
    flagged: bool | None = None
    flag_reason: str | None = None
    assigned_reviewers: list[str] | None = None


class FieldErrorsResponse(BaseModel):
    message: str
    errors: dict[str, str]
