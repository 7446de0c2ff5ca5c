import hashlib
import json
import logging
from datetime import datetime, timezone

from app.exceptions.custom import DialogueStateError, TurnNotFoundError
from app.mappers.confidence import calculate_overall_confidence
from app.mappers.question_policy import fallback_question, question_rejection_reason
from app.schemas.complaint import (
    CompanyInfo,
    ComplaintContext,
    ContactDetails,
    ConversationTurn,
    CustomerDetails,
    EnhancedComplaintContext,
)
from app.services.information_extractor import InformationExtractor
from app.store import ComplaintStore

logger = logging.getLogger(__name__)

QUESTION_ATTEMPTS = 2
ANSWERED_WITH_FACTS_DELTA = 0.2
ANSWERED_DELTA = 0.1


def context_fingerprint(context: EnhancedComplaintContext) -> str:
    """Stable hash of everything the continuation decision looks at."""
    payload = {
        "complaint": context.original_complaint,
        "turns": [[t.question, t.answer] for t in context.conversation_history],
        "fields": context.extracted_fields,
    }
    raw = json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class DialogueEngine:
    """Adaptive follow-up question loop for one complaint.

    At most one turn is pending at a time; ``advance`` never asks a new question
    while a turn waits for its answer. Every mutation is persisted.
    """

    def __init__(
        self,
        extractor: InformationExtractor,
        store: ComplaintStore,
        max_questions: int = 4,
        question_min_length: int = 10,
        question_max_length: int = 150,
    ):
        self._extractor = extractor
        self._store = store
        self._max_questions = max_questions
        self._min_length = question_min_length
        self._max_length = question_max_length
        self._decisions: dict[str, bool] = {}

    @property
    def max_questions(self) -> int:
        return self._max_questions

    async def start(
        self,
        complaint_id: str,
        complaint: ComplaintContext,
        company_info: CompanyInfo,
        customer: CustomerDetails | None = None,
        contact: ContactDetails | None = None,
    ) -> EnhancedComplaintContext:
        # Caller-supplied values win over the model's guesses
        pre = await self._extractor.pre_analyze(complaint.raw_text)
        fields: dict = dict(pre.fields)
        fields.update(complaint.extracted_features)
        if customer is not None:
            for key in ("name", "email", "phone"):
                value = getattr(customer, key)
                if value:
                    fields[key] = value

        logger.info(
            "Complaint %s pre-analysis found: %s",
            complaint_id,
            ", ".join(pre.fields) or "nothing",
        )

        context = EnhancedComplaintContext(
            complaint_id=complaint_id,
            original_complaint=complaint.raw_text,
            initial_confidence=complaint.confidence,
            final_confidence=complaint.confidence,
            company=company_info.name or None,
            company_info=company_info,
            complaint_type=complaint.complaint_type,
            customer_details=customer,
            contact_details=contact,
            extracted_fields=fields,
        )
        self._sync_summary_fields(context)
        self._store.save_context(context)
        return context

    async def advance(
        self,
        context: EnhancedComplaintContext,
        company_info: CompanyInfo | None = None,
    ) -> EnhancedComplaintContext:
        if company_info is not None and context.company_info is None:
            context.company_info = company_info

        pending = context.pending_turn
        if pending is not None:
            logger.debug("Complaint %s has pending turn %s", context.complaint_id, pending.id)
            context.ready = False
            return context

        answered = len(context.answered_turns)
        context.final_confidence = calculate_overall_confidence(
            context.initial_confidence, context.conversation_history
        )

        if answered >= self._max_questions:
            logger.info(
                "Complaint %s reached the %d question limit",
                context.complaint_id,
                self._max_questions,
            )
            return self._finish(context)

        if not await self.should_continue(context):
            logger.info("Complaint %s: no more questions needed", context.complaint_id)
            return self._finish(context)

        question = await self._next_question(context, answered)
        turn = ConversationTurn(question=question)
        context.add_turn(turn)
        context.ready = False
        self._store.save_context(context)
        logger.info(
            "Complaint %s question %d: %s", context.complaint_id, answered + 1, question
        )
        return context

    async def should_continue(self, context: EnhancedComplaintContext) -> bool:
        """Whether another question is worth asking. Failures count as "stop"."""
        if len(context.answered_turns) >= self._max_questions:
            return False

        key = context_fingerprint(context)
        if key in self._decisions:
            return self._decisions[key]

        decision = await self._extractor.decide_continue(context)
        should = decision.should_continue if decision is not None else False
        self._decisions[key] = should
        return should

    async def submit_answer(
        self, context: EnhancedComplaintContext, turn_id: str, answer: str
    ) -> EnhancedComplaintContext:
        idx = context.find_turn(turn_id)
        if idx is None:
            raise TurnNotFoundError(turn_id)

        turn = context.conversation_history[idx]
        if turn.is_answered:
            raise DialogueStateError(f"Turn {turn_id} has already been answered")
        if not answer or not answer.strip():
            raise DialogueStateError("Answer must not be blank")

        # Only turns before this one; later turns must not leak into the extraction
        prior_turns = context.conversation_history[:idx]
        extraction = await self._extractor.extract_fields(
            context, prior_turns, turn.question, answer
        )

        turn.answer = answer
        turn.timestamp = datetime.now(timezone.utc)
        turn.extracted_info = dict(extraction.fields)
        turn.confidence_delta = (
            ANSWERED_WITH_FACTS_DELTA if extraction.fields else ANSWERED_DELTA
        )

        context.extracted_fields.update(extraction.fields)
        self._sync_summary_fields(context)
        context.final_confidence = calculate_overall_confidence(
            context.initial_confidence, context.conversation_history
        )
        self._store.save_context(context)
        logger.info(
            "Complaint %s turn %s answered, extracted %d fields, confidence %.2f",
            context.complaint_id,
            turn_id,
            len(extraction.fields),
            context.final_confidence,
        )
        return context

    def _finish(self, context: EnhancedComplaintContext) -> EnhancedComplaintContext:
        context.ready = True
        self._store.save_context(context)
        return context

    async def _next_question(self, context: EnhancedComplaintContext, answered: int) -> str:
        is_last = answered + 1 >= self._max_questions
        asked = {t.question.strip().lower() for t in context.conversation_history}

        for attempt in range(1, QUESTION_ATTEMPTS + 1):
            generated = await self._extractor.generate_question(context, is_last)
            if generated is None:
                logger.warning("Question generation attempt %d returned nothing", attempt)
                continue
            reason = question_rejection_reason(
                generated.question, self._min_length, self._max_length
            )
            if reason is None and generated.question.strip().lower() in asked:
                reason = "repeated"
            if reason is None:
                return generated.question
            logger.info(
                "Rejected generated question (%s) on attempt %d: %r",
                reason,
                attempt,
                generated.question,
            )

        return fallback_question(answered, is_last)

    @staticmethod
    def _sync_summary_fields(context: EnhancedComplaintContext) -> None:
        fields = context.extracted_fields
        if not context.issue and fields.get("issue"):
            context.issue = str(fields["issue"])
        if not context.product and fields.get("product"):
            context.product = str(fields["product"])
        if not context.company and fields.get("company"):
            context.company = str(fields["company"])
        priority = str(fields.get("priority", "")).lower()
        if priority in ("low", "medium", "high"):
            context.priority = priority
