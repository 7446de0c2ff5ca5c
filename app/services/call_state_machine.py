import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import httpx

from app.exceptions.custom import (
    BlandError,
    CallFailedError,
    CallMonitoringTimeout,
    CallStateError,
    FallbackError,
    InvalidPhoneNumberError,
    IVRNavigationError,
    RateLimitError,
)
from app.mappers.task_script import build_task_script
from app.mappers.transcript_outcome import (
    extract_next_steps,
    extract_reference_number,
    extract_resolution,
    format_transcript,
    is_escalation,
)
from app.schemas.bland import CallDetailsResponse
from app.schemas.call import CallResult, CallState, CallStatus, FallbackResult
from app.schemas.complaint import ContactDetails, EnhancedComplaintContext
from app.services.bland import BlandService, is_e164
from app.services.fallback import FallbackCoordinator
from app.services.ivr_navigator import IVRNavigator
from app.store import ComplaintStore

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]

FAILED_STATUSES = {"failed", "cancelled", "no-answer"}

TERMINAL_STATES = {CallState.completed, CallState.failed}

ALLOWED_TRANSITIONS: dict[CallState, set[CallState]] = {
    CallState.idle: {CallState.dialing},
    CallState.dialing: {CallState.ivr_detected, CallState.human_reached, CallState.completed},
    CallState.ivr_detected: {CallState.navigating, CallState.completed},
    CallState.navigating: {CallState.human_reached, CallState.completed},
    CallState.human_reached: {
        CallState.ivr_detected,
        CallState.fallback_needed,
        CallState.completed,
    },
    CallState.fallback_needed: {CallState.on_hold},
    CallState.on_hold: {CallState.user_callback, CallState.resumed},
    CallState.user_callback: {CallState.resumed},
    CallState.resumed: {
        CallState.ivr_detected,
        CallState.fallback_needed,
        CallState.completed,
    },
    CallState.completed: set(),
    CallState.failed: set(),
}

# Errors from the telephony provider that make a dial attempt retryable
DIAL_ERRORS = (BlandError, RateLimitError, httpx.HTTPError)
# Errors that end monitoring of a call that was placed
MONITOR_ERRORS = (CallFailedError, CallMonitoringTimeout, IVRNavigationError, FallbackError)

INVALID_PHONE_NEXT_STEP = "Verify the company's customer service phone number and try again"
DIAL_FAILED_NEXT_STEP = "Try calling again later or contact the company by email"
CALL_FAILED_NEXT_STEP = "Review the call transcript and try calling the company again later"
NO_RESOLUTION = "No clear resolution was captured during the call"


def _can_transition(current: CallState, target: CallState) -> bool:
    if target == CallState.failed:
        return current not in TERMINAL_STATES
    return target in ALLOWED_TRANSITIONS[current]


class CallStateMachine:
    """Places the complaint call and follows it to an outcome.

    ``place_call`` never raises for call failures: every path ends in a
    CallResult. Retries of failed dial attempts are counted in the store so
    they survive restarts.
    """

    def __init__(
        self,
        telephony: BlandService,
        store: ComplaintStore,
        navigator: IVRNavigator | None = None,
        fallback: FallbackCoordinator | None = None,
        max_retries: int = 2,
        poll_interval: float = 3.0,
        max_polls: int = 400,
        max_fallback_episodes: int = 2,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self._telephony = telephony
        self._store = store
        self._navigator = navigator
        self._fallback = fallback
        self._max_retries = max_retries
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._max_fallback_episodes = max_fallback_episodes
        self._sleep = sleep

        self.state = CallState.idle
        self.history: list[tuple[CallState, CallState, float]] = []
        self._ivr_log: list[dict] = []
        self._fallbacks: list[FallbackResult] = []

    def transition(self, target: CallState) -> None:
        if target == self.state:
            return
        if not _can_transition(self.state, target):
            raise CallStateError(self.state, target)
        logger.info("Call state %s -> %s", self.state, target)
        self.history.append((self.state, target, time.time()))
        self.state = target

    def _reset(self) -> None:
        if self.state != CallState.idle:
            logger.debug("Resetting call state from %s", self.state)
        self.state = CallState.idle
        self._ivr_log = []
        self._fallbacks = []

    def _fail(self) -> None:
        if self.state not in TERMINAL_STATES:
            self.transition(CallState.failed)

    async def place_call(
        self,
        context: EnhancedComplaintContext,
        contact: ContactDetails | None = None,
    ) -> CallResult:
        contact = contact or context.contact_details
        phone = contact.phone_numbers[0] if contact and contact.phone_numbers else None

        self._reset()
        if not is_e164(phone):
            error = InvalidPhoneNumberError(phone)
            logger.warning("Complaint %s: %s", context.complaint_id, error.message)
            self._fail()
            return CallResult(
                status=CallStatus.failed,
                error=error.message,
                next_steps=[INVALID_PHONE_NEXT_STEP],
            )

        task = build_task_script(context, contact)
        request_data = {"complaint_id": context.complaint_id, "company": context.company}

        while True:
            self._reset()
            self.transition(CallState.dialing)
            try:
                started = await self._telephony.place_call(phone, task, request_data=request_data)
            except DIAL_ERRORS as exc:
                record = self._store.get(context.complaint_id) or {}
                retries = int(record.get("retry_count", 0))
                if retries < self._max_retries:
                    self._count_retry(context.complaint_id)
                    logger.warning(
                        "Dial failed for complaint %s (%s), retry %d of %d",
                        context.complaint_id,
                        exc,
                        retries + 1,
                        self._max_retries,
                    )
                    continue
                logger.error(
                    "Dial failed for complaint %s after %d retries: %s",
                    context.complaint_id,
                    retries,
                    exc,
                )
                self._fail()
                return CallResult(
                    status=CallStatus.failed,
                    error=str(exc),
                    next_steps=[DIAL_FAILED_NEXT_STEP],
                )

            call_id = started.call_id
            self._store.update(
                context.complaint_id, {"call_id": call_id, "call_status": "in_progress"}
            )
            return await self._follow(call_id, context, contact)

    def _count_retry(self, complaint_id: str) -> None:
        def _bump(record: dict) -> None:
            record["retry_count"] = int(record.get("retry_count", 0)) + 1
            record["last_retry_at"] = datetime.now(timezone.utc).isoformat()

        self._store.modify(complaint_id, _bump)

    async def _follow(
        self,
        call_id: str,
        context: EnhancedComplaintContext,
        contact: ContactDetails | None,
    ) -> CallResult:
        try:
            details = await self.monitor(call_id, context, contact)
        except MONITOR_ERRORS as exc:
            logger.error("Call %s for complaint %s failed: %s", call_id, context.complaint_id, exc)
            self._fail()
            if not isinstance(exc, CallFailedError):
                await self._stop_quietly(call_id)
            return CallResult(
                status=CallStatus.call_failed,
                call_id=call_id,
                error=str(exc),
                next_steps=[CALL_FAILED_NEXT_STEP],
                ivr_interactions=self._ivr_log,
                fallbacks=self._fallbacks,
            )

        self.transition(CallState.completed)
        return self._build_result(call_id, details)

    async def monitor(
        self,
        call_id: str,
        context: EnhancedComplaintContext,
        contact: ContactDetails | None = None,
    ) -> CallDetailsResponse:
        """Poll the call until it ends. Raises on remote failure or when polls run out."""
        seen_ivr = 0
        navigated = False
        sid_warned = False
        handled_fields: set[str] = set()
        episodes = 0
        # Twilio SID for hold, resume and DTMF; the Bland call id is not one
        control_sid: str | None = None

        for poll in range(1, self._max_polls + 1):
            await self._sleep(self._poll_interval)
            try:
                details = await self._telephony.get_call(call_id)
            except DIAL_ERRORS as exc:
                logger.warning("Poll %d for call %s failed: %s", poll, call_id, exc)
                continue
            control_sid = control_sid or details.control_sid

            if details.status == "completed":
                logger.info("Call %s completed after %d polls", call_id, poll)
                return details
            if details.status in FAILED_STATUSES:
                raise CallFailedError(details.status, details.error_message)

            if len(details.ivr_interactions) > seen_ivr:
                for interaction in details.ivr_interactions[seen_ivr:]:
                    self._ivr_log.append(interaction.model_dump())
                seen_ivr = len(details.ivr_interactions)
            if seen_ivr and not navigated and self._navigator is not None:
                if control_sid is not None:
                    navigated = True
                    await self._navigate(control_sid, context, contact)
                elif not sid_warned:
                    sid_warned = True
                    logger.warning(
                        "No call-control SID for call %s yet, leaving the phone menu to the agent",
                        call_id,
                    )

            if self.state in (CallState.dialing, CallState.navigating) and details.human_lines():
                self.transition(CallState.human_reached)

            if (
                self._fallback is not None
                and control_sid is not None
                and episodes < self._max_fallback_episodes
                and self.state in (CallState.human_reached, CallState.resumed)
            ):
                missing = [
                    f for f in self._fallback.detect(details.transcript) if f not in handled_fields
                ]
                if missing:
                    handled_fields.update(missing)
                    episodes += 1
                    self.transition(CallState.fallback_needed)
                    result = await self._fallback.handle_fallback(
                        control_sid, context, missing, on_state=self.transition
                    )
                    self._fallbacks.append(result)

        raise CallMonitoringTimeout(call_id, self._max_polls)

    async def _navigate(
        self,
        control_sid: str,
        context: EnhancedComplaintContext,
        contact: ContactDetails | None,
    ) -> None:
        self.transition(CallState.ivr_detected)
        self.transition(CallState.navigating)
        if await self._navigator.navigate(control_sid, context, contact):
            return
        logger.warning("IVR navigation failed on call %s, trying operator", control_sid)
        if await self._navigator.reach_operator(control_sid):
            return
        raise IVRNavigationError(f"Could not navigate the phone menu on call {control_sid}")

    async def _stop_quietly(self, call_id: str) -> None:
        try:
            await self._telephony.stop_call(call_id)
        except DIAL_ERRORS as exc:
            logger.warning("Could not stop call %s: %s", call_id, exc)

    def _build_result(self, call_id: str, details: CallDetailsResponse) -> CallResult:
        transcript = details.transcript
        resolution = extract_resolution(transcript)
        status = CallStatus.escalated if is_escalation(resolution) else CallStatus.resolved
        return CallResult(
            status=status,
            resolution=resolution or NO_RESOLUTION,
            next_steps=[extract_next_steps(transcript)],
            call_id=call_id,
            duration=details.call_length or 0,
            transcript=format_transcript(transcript),
            reference_number=extract_reference_number(transcript),
            cost=details.cost or 0,
            ivr_interactions=self._ivr_log,
            fallbacks=self._fallbacks,
        )
