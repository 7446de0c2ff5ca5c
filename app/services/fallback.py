import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

import httpx

from app.exceptions.custom import (
    CallFailedError,
    CallMonitoringTimeout,
    FallbackError,
    RateLimitError,
    TwilioError,
)
from app.mappers.fallback_triggers import DEFAULT_TRIGGERS, detect_missing_fields
from app.mappers.task_script import build_callback_script, build_relay_message
from app.mappers.transcript_outcome import format_transcript
from app.schemas.bland import CallDetailsResponse, TranscriptEntry
from app.schemas.call import CallState, FallbackEpisode, FallbackResult
from app.schemas.complaint import EnhancedComplaintContext
from app.services.bland import BlandService
from app.services.information_extractor import InformationExtractor
from app.services.twilio_control import TwilioCallControlService
from app.store import ComplaintStore

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]
StateCallback = Callable[[CallState], None]

CALLBACK_MAX_POLLS = 100
FAILED_STATUSES = {"failed", "cancelled", "no-answer"}


class FallbackCoordinator:
    """Hold the company call, ask the customer for missing details, resume.

    Episodes on the same call are serialised; the company call is always
    taken off hold once the hold succeeded, or a FallbackError is raised.
    """

    def __init__(
        self,
        telephony: BlandService,
        call_control: TwilioCallControlService | None,
        extractor: InformationExtractor,
        store: ComplaintStore,
        default_callback_number: str = "",
        triggers: list[str] | tuple[str, ...] = DEFAULT_TRIGGERS,
        poll_interval: float = 3.0,
        max_polls: int = CALLBACK_MAX_POLLS,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self._telephony = telephony
        self._control = call_control
        self._extractor = extractor
        self._store = store
        self._default_number = default_callback_number
        self._triggers = triggers
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._sleep = sleep
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def detect(self, transcript: list[TranscriptEntry]) -> list[str]:
        return detect_missing_fields(transcript, self._triggers)

    def resolve_callback_number(
        self, context: EnhancedComplaintContext
    ) -> tuple[str | None, str | None]:
        """Return ``(phone_number, source)``; both None when nothing is known."""
        customer = context.customer_details
        if customer and customer.phone:
            logger.info("Using customer phone for callback on complaint %s", context.complaint_id)
            return customer.phone, "customer_details"

        contact = context.contact_details
        if contact and contact.phone_numbers:
            logger.info("Using contact phone for callback on complaint %s", context.complaint_id)
            return contact.phone_numbers[0], "contact_details"

        if self._default_number:
            logger.warning(
                "No customer phone on complaint %s, using configured fallback number",
                context.complaint_id,
            )
            return self._default_number, "default"

        logger.warning("No callback number available for complaint %s", context.complaint_id)
        return None, None

    async def handle_fallback(
        self,
        call_id: str,
        context: EnhancedComplaintContext,
        missing_fields: list[str],
        on_state: StateCallback | None = None,
    ) -> FallbackResult:
        lock = self._locks.setdefault(call_id, asyncio.Lock())
        self._lock_users[call_id] = self._lock_users.get(call_id, 0) + 1
        try:
            async with lock:
                return await self._run_episode(call_id, context, missing_fields, on_state)
        finally:
            self._lock_users[call_id] -= 1
            if not self._lock_users[call_id]:
                del self._lock_users[call_id]
                del self._locks[call_id]

    async def _run_episode(
        self,
        call_id: str,
        context: EnhancedComplaintContext,
        missing_fields: list[str],
        on_state: StateCallback | None,
    ) -> FallbackResult:
        notify = on_state or (lambda state: None)
        logger.info(
            "Fallback on call %s for complaint %s, missing: %s",
            call_id,
            context.complaint_id,
            ", ".join(missing_fields),
        )

        if self._control is None:
            raise FallbackError("Call control is not configured, cannot hold the call")
        try:
            await self._control.hold(call_id)
        except Exception as exc:
            raise FallbackError(f"Could not put call {call_id} on hold: {exc}") from exc
        notify(CallState.on_hold)

        episode = FallbackEpisode(call_id=call_id, fields=list(missing_fields))
        responses: dict[str, str] = {}
        try:
            phone, source = self.resolve_callback_number(context)
            episode.phone_number = phone
            episode.phone_source = source
            if phone is None:
                episode.error = "No callback number available"
            else:
                notify(CallState.user_callback)
                responses = await self._collect_from_customer(phone, context, missing_fields)
        except Exception as exc:
            logger.exception("Customer callback failed for call %s", call_id)
            episode.error = str(exc)
        episode.responses = responses

        try:
            await self._control.resume(call_id)
        except Exception as exc:
            episode.error = f"Resume failed: {exc}"
            self._record(context, episode)
            raise FallbackError(f"Could not resume call {call_id}: {exc}") from exc
        notify(CallState.resumed)

        if responses:
            context.extracted_fields.update(responses)
            self._store.save_context(context)
            await self._relay(call_id, responses, episode)
        self._record(context, episode)
        logger.info(
            "Fallback on call %s done, got %d of %d fields",
            call_id,
            len(responses),
            len(missing_fields),
        )
        return FallbackResult(
            user_responses=responses, call_resumed=True, resume_timestamp=time.time()
        )

    async def _collect_from_customer(
        self,
        phone: str,
        context: EnhancedComplaintContext,
        fields: list[str],
    ) -> dict[str, str]:
        script = build_callback_script(context, fields)
        started = await self._telephony.place_call(
            phone,
            script,
            request_data={"complaint_id": context.complaint_id, "fields": fields},
        )
        details = await self._wait_for_completion(started.call_id)
        transcript = format_transcript(details.transcript, human_label="Customer")
        extraction = await self._extractor.extract_requested_fields(transcript, fields)
        return extraction.fields

    async def _wait_for_completion(self, call_id: str) -> CallDetailsResponse:
        for _ in range(self._max_polls):
            await self._sleep(self._poll_interval)
            details = await self._telephony.get_call(call_id)
            if details.status == "completed":
                return details
            if details.status in FAILED_STATUSES:
                raise CallFailedError(details.status, details.error_message)
        raise CallMonitoringTimeout(call_id, self._max_polls)

    async def _relay(
        self, call_id: str, responses: dict[str, str], episode: FallbackEpisode
    ) -> None:
        """Tell the representative what the customer answered, now that the call is back."""
        try:
            await self._control.say(call_id, build_relay_message(responses))
        except (TwilioError, RateLimitError, httpx.HTTPError) as exc:
            logger.warning("Could not relay customer answers on call %s: %s", call_id, exc)
            episode.error = f"Relay failed: {exc}"
            return
        episode.relayed = True

    def _record(self, context: EnhancedComplaintContext, episode: FallbackEpisode) -> None:
        self._store.append(context.complaint_id, "fallbacks", episode.model_dump(mode="json"))
