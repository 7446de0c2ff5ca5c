import logging
import sys
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from app.config import Settings
from app.exceptions.custom import (
    BlandError,
    ComplaintNotFoundError,
    DialogueStateError,
    InvalidPhoneNumberError,
    RateLimitError,
    SendGridError,
    TurnNotFoundError,
    TwilioError,
)
from app.exceptions.handlers import (
    bland_error_handler,
    complaint_not_found_handler,
    dialogue_state_error_handler,
    invalid_phone_error_handler,
    rate_limit_error_handler,
    sendgrid_error_handler,
    turn_not_found_handler,
    twilio_error_handler,
)
from app.jobs import JobStore
from app.routers.calls import router as calls_router
from app.routers.complaints import router as complaints_router
from app.services.bland import BlandService
from app.services.claude import ClaudeService
from app.services.information_extractor import InformationExtractor
from app.services.orchestration import OrchestrationFactory
from app.services.sendgrid import SendGridService
from app.services.twilio_control import TwilioCallControlService
from app.store import ComplaintStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)

    async with httpx.AsyncClient(timeout=30.0) as client:
        claude = ClaudeService(settings.anthropic_api_key, model=settings.anthropic_model)
        store = ComplaintStore(settings.store_dir or None)

        # Telephony, call control and email are optional, like any keyed vendor
        telephony: BlandService | None = None
        if settings.bland_api_key:
            telephony = BlandService(
                client,
                settings.bland_api_key,
                max_duration_minutes=settings.max_call_duration_minutes,
            )

        call_control: TwilioCallControlService | None = None
        if settings.twilio_account_sid and settings.twilio_auth_token:
            call_control = TwilioCallControlService(
                client,
                settings.twilio_account_sid,
                settings.twilio_auth_token,
                settings.twilio_hold_music_url,
                resume_url=settings.twilio_resume_url,
            )

        email: SendGridService | None = None
        if settings.sendgrid_api_key and settings.email_from:
            email = SendGridService(client, settings.sendgrid_api_key, settings.email_from)

        logger.info(
            "Starting with telephony=%s call_control=%s email=%s",
            telephony is not None,
            call_control is not None,
            email is not None,
        )

        app.state.orchestration_factory = OrchestrationFactory(
            settings,
            store,
            InformationExtractor(claude),
            telephony=telephony,
            call_control=call_control,
            email=email,
            max_facades=settings.max_cached_complaints,
        )
        app.state.job_store = JobStore()

        yield


app = FastAPI(title="Complaint Orchestrator", lifespan=lifespan)

app.add_exception_handler(BlandError, bland_error_handler)
app.add_exception_handler(TwilioError, twilio_error_handler)
app.add_exception_handler(SendGridError, sendgrid_error_handler)
app.add_exception_handler(RateLimitError, rate_limit_error_handler)
app.add_exception_handler(InvalidPhoneNumberError, invalid_phone_error_handler)
app.add_exception_handler(ComplaintNotFoundError, complaint_not_found_handler)
app.add_exception_handler(TurnNotFoundError, turn_not_found_handler)
app.add_exception_handler(DialogueStateError, dialogue_state_error_handler)

app.include_router(complaints_router)
app.include_router(calls_router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
