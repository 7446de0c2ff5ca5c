from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from app.schemas.call import CallResult
from app.schemas.complaint import (
    CompanyInfo,
    ComplaintContext,
    ContactDetails,
    CustomerDetails,
)


class PendingQuestion(BaseModel):
    turn_id: str
    question: str


class DialogueStep(BaseModel):
    complaint_id: str
    ready: bool
    next_question: PendingQuestion | None = None
    final_confidence: float
    questions_answered: int


class StartDialogueRequest(BaseModel):
    complaint_id: str | None = None
    complaint: ComplaintContext
    company: CompanyInfo
    customer: CustomerDetails | None = None
    contact: ContactDetails | None = None


class SubmitAnswerRequest(BaseModel):
    turn_id: str
    answer: str = Field(min_length=1)


class CallRequest(BaseModel):
    contact: ContactDetails | None = None


class ResolveRequest(BaseModel):
    send_email: bool = True
    place_call: bool = True
    contact: ContactDetails | None = None


class EmailResult(BaseModel):
    success: bool
    sent_to: list[str] = []
    message_id: str | None = None
    error: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ResolutionResponse(BaseModel):
    complaint_id: str
    email_result: EmailResult | None = None
    call_result: CallResult | None = None


class JobSubmittedResponse(BaseModel):
    job_id: str
    status: str
    message: str


class JobStatusResponse(BaseModel):
    job_id: str
    status: str
    task_type: str
    created_at: datetime
    finished_at: datetime | None = None
    complaint_id: str | None = None
    result: CallResult | ResolutionResponse | None = None
    error: str | None = None
