from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field


class CallStatus(StrEnum):
    pending = "pending"
    resolved = "resolved"
    failed = "failed"
    escalated = "escalated"
    call_failed = "call_failed"


class CallState(StrEnum):
    idle = "idle"
    dialing = "dialing"
    ivr_detected = "ivr_detected"
    navigating = "navigating"
    human_reached = "human_reached"
    fallback_needed = "fallback_needed"
    on_hold = "on_hold"
    user_callback = "user_callback"
    resumed = "resumed"
    completed = "completed"
    failed = "failed"


class FallbackResult(BaseModel):
    user_responses: dict[str, str] = {}
    call_resumed: bool = False
    resume_timestamp: float | None = None


class FallbackEpisode(BaseModel):
    call_id: str
    phone_number: str | None = None
    phone_source: str | None = None  # "customer_details" | "contact_details" | "default"
    fields: list[str] = []
    responses: dict[str, str] = {}
    relayed: bool = False  # answers spoken into the resumed call
    error: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CallResult(BaseModel):
    status: CallStatus
    resolution: str = ""
    next_steps: list[str] = []
    call_id: str | None = None
    duration: float = 0
    transcript: str | None = None
    reference_number: str | None = None
    cost: float = 0
    ivr_interactions: list[dict] = []
    fallbacks: list[FallbackResult] = []
    error: str | None = None


class IVRNavigationStep(BaseModel):
    action: Literal["wait", "press", "say"]
    value: str
    delay_ms: int = 0
    description: str = ""


class IVRNavigationPlan(BaseModel):
    steps: list[IVRNavigationStep] = []
    estimated_duration_ms: int = 0
