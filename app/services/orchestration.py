import asyncio
import logging
import uuid

from app.config import Settings
from app.exceptions.custom import ComplaintNotFoundError, DialogueStateError
from app.mappers.email_builder import build_complaint_email
from app.schemas.call import CallResult, CallStatus
from app.schemas.complaint import (
    CompanyInfo,
    ComplaintContext,
    ContactDetails,
    CustomerDetails,
    EnhancedComplaintContext,
)
from app.schemas.responses import DialogueStep, EmailResult, PendingQuestion, ResolutionResponse
from app.services.bland import BlandService
from app.services.call_state_machine import CallStateMachine, SleepFunc
from app.services.dialogue import DialogueEngine
from app.services.fallback import FallbackCoordinator
from app.services.information_extractor import InformationExtractor
from app.services.ivr_navigator import IVRNavigator
from app.services.sendgrid import SendGridService
from app.services.twilio_control import TwilioCallControlService
from app.store import ComplaintStore

logger = logging.getLogger(__name__)


def new_complaint_id() -> str:
    return uuid.uuid4().hex


def build_step(context: EnhancedComplaintContext) -> DialogueStep:
    pending = context.pending_turn
    return DialogueStep(
        complaint_id=context.complaint_id,
        ready=context.ready and pending is None,
        next_question=(
            PendingQuestion(turn_id=pending.id, question=pending.question) if pending else None
        ),
        final_confidence=context.final_confidence,
        questions_answered=len(context.answered_turns),
    )


class OrchestrationFacade:
    """Dialogue first, then the call (and optionally an email) for one complaint."""

    def __init__(
        self,
        complaint_id: str,
        dialogue: DialogueEngine,
        store: ComplaintStore,
        call_machine: CallStateMachine | None = None,
        email: SendGridService | None = None,
    ):
        self.complaint_id = complaint_id
        self._dialogue = dialogue
        self._store = store
        self._call_machine = call_machine
        self._email = email
        # Held for every load-modify-save of the dialogue
        self._lock = asyncio.Lock()
        self._calls_running = 0

    @property
    def busy(self) -> bool:
        return self._lock.locked() or self._calls_running > 0

    def _load(self) -> EnhancedComplaintContext:
        context = self._store.load_context(self.complaint_id)
        if context is None:
            raise ComplaintNotFoundError(self.complaint_id)
        return context

    def _require_ready(self, context: EnhancedComplaintContext) -> None:
        if context.pending_turn is not None:
            raise DialogueStateError(
                f"Complaint {self.complaint_id} still has an unanswered question"
            )
        if not context.ready:
            raise DialogueStateError(f"Complaint {self.complaint_id} dialogue is not finished")

    def current_step(self) -> DialogueStep:
        return build_step(self._load())

    async def start_dialogue(
        self,
        complaint: ComplaintContext,
        company_info: CompanyInfo,
        customer: CustomerDetails | None = None,
        contact: ContactDetails | None = None,
    ) -> DialogueStep:
        async with self._lock:
            context = self._store.load_context(self.complaint_id)
            if context is None:
                context = await self._dialogue.start(
                    self.complaint_id, complaint, company_info, customer, contact
                )
            else:
                logger.info(
                    "Resuming complaint %s from %d saved turns",
                    self.complaint_id,
                    len(context.conversation_history),
                )
            context = await self._dialogue.advance(context, company_info)
            return build_step(context)

    async def submit_answer(self, turn_id: str, answer: str) -> DialogueStep:
        async with self._lock:
            context = self._load()
            context = await self._dialogue.submit_answer(context, turn_id, answer)
            context = await self._dialogue.advance(context)
            return build_step(context)

    async def place_complaint_call(self, contact: ContactDetails | None = None) -> CallResult:
        context = self._load()
        self._require_ready(context)
        result = await self._call(context, contact)
        self._store.update(
            self.complaint_id,
            {"call_result": result.model_dump(mode="json"), "call_status": result.status},
        )
        return result

    async def send_complaint_email(self, contact: ContactDetails | None = None) -> EmailResult:
        context = self._load()
        result = await self._send_email(context, contact)
        self._store.update(self.complaint_id, {"email_result": result.model_dump(mode="json")})
        return result

    async def resolve(
        self,
        send_email: bool = True,
        place_call: bool = True,
        contact: ContactDetails | None = None,
    ) -> ResolutionResponse:
        """Email and call in parallel; one failing never cancels the other."""
        context = self._load()
        if place_call:
            self._require_ready(context)

        branches: dict = {}
        if send_email:
            branches["email"] = self._send_email(context, contact)
        if place_call:
            branches["call"] = self._call(context, contact)

        results = await asyncio.gather(*branches.values(), return_exceptions=True)
        outcome = dict(zip(branches, results))

        email_result: EmailResult | None = None
        if "email" in outcome:
            res = outcome["email"]
            if isinstance(res, BaseException):
                logger.error("Email branch failed for complaint %s: %s", self.complaint_id, res)
                email_result = EmailResult(success=False, error=str(res))
            else:
                email_result = res

        call_result: CallResult | None = None
        if "call" in outcome:
            res = outcome["call"]
            if isinstance(res, BaseException):
                logger.error("Call branch failed for complaint %s: %s", self.complaint_id, res)
                call_result = CallResult(
                    status=CallStatus.failed,
                    error=str(res),
                    next_steps=["Try calling the company again later"],
                )
            else:
                call_result = res

        record: dict = {}
        if email_result is not None:
            record["email_result"] = email_result.model_dump(mode="json")
        if call_result is not None:
            record["call_result"] = call_result.model_dump(mode="json")
            record["call_status"] = call_result.status
        if record:
            self._store.update(self.complaint_id, record)

        return ResolutionResponse(
            complaint_id=self.complaint_id,
            email_result=email_result,
            call_result=call_result,
        )

    async def _call(
        self, context: EnhancedComplaintContext, contact: ContactDetails | None
    ) -> CallResult:
        if self._call_machine is None:
            return CallResult(
                status=CallStatus.failed,
                error="Telephony is not configured",
                next_steps=["Contact the company directly"],
            )
        self._calls_running += 1
        try:
            return await self._call_machine.place_call(context, contact)
        finally:
            self._calls_running -= 1

    async def _send_email(
        self, context: EnhancedComplaintContext, contact: ContactDetails | None
    ) -> EmailResult:
        contact = contact or context.contact_details
        recipients = list(contact.emails) if contact else []
        if not recipients:
            return EmailResult(success=False, error="No company email address available")
        if self._email is None:
            return EmailResult(success=False, sent_to=recipients, error="Email is not configured")

        subject, body = build_complaint_email(context)
        message_id = await self._email.send(recipients, subject, body)
        logger.info("Complaint %s emailed to %s", self.complaint_id, ", ".join(recipients))
        return EmailResult(success=True, sent_to=recipients, message_id=message_id)


class OrchestrationFactory:
    """Builds the per-complaint facades from shared, injected clients."""

    def __init__(
        self,
        settings: Settings,
        store: ComplaintStore,
        extractor: InformationExtractor,
        telephony: BlandService | None = None,
        call_control: TwilioCallControlService | None = None,
        email: SendGridService | None = None,
        sleep: SleepFunc = asyncio.sleep,
        max_facades: int = 1000,
    ):
        self._settings = settings
        self.store = store
        self._extractor = extractor
        self.telephony = telephony
        self._call_control = call_control
        self._email = email
        self._sleep = sleep
        self._facades: dict[str, OrchestrationFacade] = {}
        self._max_facades = max_facades

    def create(self, complaint_id: str) -> OrchestrationFacade:
        s = self._settings
        dialogue = DialogueEngine(
            self._extractor,
            self.store,
            max_questions=s.max_questions,
            question_min_length=s.question_min_length,
            question_max_length=s.question_max_length,
        )

        call_machine: CallStateMachine | None = None
        if self.telephony is not None:
            navigator: IVRNavigator | None = None
            fallback: FallbackCoordinator | None = None
            if self._call_control is not None:
                navigator = IVRNavigator(self._call_control, sleep=self._sleep)
                fallback = FallbackCoordinator(
                    self.telephony,
                    self._call_control,
                    self._extractor,
                    self.store,
                    default_callback_number=s.fallback_callback_number,
                    triggers=s.fallback_trigger_list,
                    poll_interval=s.poll_interval_seconds,
                    sleep=self._sleep,
                )
            call_machine = CallStateMachine(
                self.telephony,
                self.store,
                navigator=navigator,
                fallback=fallback,
                max_retries=s.max_retries,
                poll_interval=s.poll_interval_seconds,
                max_polls=s.max_polls,
                max_fallback_episodes=s.max_fallback_episodes,
                sleep=self._sleep,
            )

        return OrchestrationFacade(
            complaint_id, dialogue, self.store, call_machine=call_machine, email=self._email
        )

    def get(self, complaint_id: str) -> OrchestrationFacade:
        """The complaint's facade, created on first use and reused while it is cached."""
        facade = self._facades.pop(complaint_id, None)
        if facade is None:
            facade = self.create(complaint_id)
        # Most recently used last
        self._facades[complaint_id] = facade
        self._evict()
        return facade

    def release(self, complaint_id: str) -> None:
        """Forget an idle facade. Its state lives in the store and is reloaded on demand."""
        facade = self._facades.get(complaint_id)
        if facade is not None and not facade.busy:
            del self._facades[complaint_id]

    def _evict(self) -> None:
        if len(self._facades) <= self._max_facades:
            return
        idle = [cid for cid, f in self._facades.items() if not f.busy]
        while len(self._facades) > self._max_facades and idle:
            self._facades.pop(idle.pop(0), None)
