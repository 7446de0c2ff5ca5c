from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, PrivateAttr


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ComplaintContext(BaseModel):
    """Seed produced at intake. Superseded by EnhancedComplaintContext, never mutated."""

    model_config = {"frozen": True}

    raw_text: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    complaint_type: str | None = None
    extracted_features: dict[str, Any] = {}


class CompanyInfo(BaseModel):
    name: str
    confidence: float = 1.0
    industry: str | None = None
    products: list[str] = []


class CustomerDetails(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None


class IVROption(BaseModel):
    key: str  # DTMF key to press
    description: str
    next_node: IVRNode | None = None


class IVRNode(BaseModel):
    prompt: str = ""
    options: list[IVROption] = []


IVROption.model_rebuild()


class ContactDetails(BaseModel):
    phone_numbers: list[str] = []  # E.164
    emails: list[str] = []
    website: str | None = None
    support_hours: str | None = None
    ivr_structure: list[IVRNode] | None = None
    source: str = "unknown"
    last_updated: datetime = Field(default_factory=_now)


class ConversationTurn(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    question: str
    answer: str = ""
    timestamp: datetime = Field(default_factory=_now)
    extracted_info: dict[str, Any] = {}
    confidence_delta: float = Field(default=0.0, ge=0.0, le=0.3)

    @property
    def is_answered(self) -> bool:
        return bool(self.answer and self.answer.strip())


class EnhancedComplaintContext(BaseModel):
    complaint_id: str
    original_complaint: str
    initial_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    company: str | None = None
    company_info: CompanyInfo | None = None
    product: str | None = None
    issue: str | None = None
    priority: str = "medium"  # low | medium | high
    complaint_type: str | None = None
    customer_details: CustomerDetails | None = None
    contact_details: ContactDetails | None = None
    conversation_history: list[ConversationTurn] = []
    extracted_fields: dict[str, Any] = {}
    final_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    ready: bool = False

    _turn_index: dict[str, int] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self._reindex()

    def _reindex(self) -> None:
        self._turn_index = {t.id: i for i, t in enumerate(self.conversation_history)}

    def find_turn(self, turn_id: str) -> int | None:
        idx = self._turn_index.get(turn_id)
        if idx is not None and idx < len(self.conversation_history) and (
            self.conversation_history[idx].id == turn_id
        ):
            return idx
        # History was edited outside add_turn
        self._reindex()
        return self._turn_index.get(turn_id)

    def add_turn(self, turn: ConversationTurn) -> None:
        self.conversation_history.append(turn)
        self._turn_index[turn.id] = len(self.conversation_history) - 1

    @property
    def pending_turn(self) -> ConversationTurn | None:
        for turn in reversed(self.conversation_history):
            if not turn.is_answered:
                return turn
        return None

    @property
    def answered_turns(self) -> list[ConversationTurn]:
        return [t for t in self.conversation_history if t.is_answered]

    @property
    def issue_text(self) -> str:
        issue = self.issue or self.extracted_fields.get("issue")
        if issue:
            return str(issue)
        return self.original_complaint
