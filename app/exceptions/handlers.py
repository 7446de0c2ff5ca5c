import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from .custom import (
    BlandError,
    ComplaintNotFoundError,
    DialogueStateError,
    InvalidPhoneNumberError,
    RateLimitError,
    SendGridError,
    TurnNotFoundError,
    TwilioError,
)

logger = logging.getLogger(__name__)


async def bland_error_handler(_request: Request, exc: BlandError) -> JSONResponse:
    logger.error("Bland error: %s (status=%s)", exc.message, exc.status_code)
    return JSONResponse(
        status_code=502,
        content={"detail": f"Bland error: {exc.message}"},
    )


async def twilio_error_handler(_request: Request, exc: TwilioError) -> JSONResponse:
    logger.error("Twilio error: %s (status=%s)", exc.message, exc.status_code)
    return JSONResponse(
        status_code=502,
        content={"detail": f"Twilio error: {exc.message}"},
    )


async def sendgrid_error_handler(_request: Request, exc: SendGridError) -> JSONResponse:
    logger.error("SendGrid error: %s (status=%s)", exc.message, exc.status_code)
    return JSONResponse(
        status_code=502,
        content={"detail": f"SendGrid error: {exc.message}"},
    )


async def rate_limit_error_handler(_request: Request, exc: RateLimitError) -> JSONResponse:
    logger.warning("Rate limit hit for %s", exc.service)
    return JSONResponse(
        status_code=429,
        content={"detail": f"Rate limit exceeded for {exc.service}"},
    )


async def invalid_phone_error_handler(
    _request: Request, exc: InvalidPhoneNumberError
) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": exc.message})


async def complaint_not_found_handler(
    _request: Request, exc: ComplaintNotFoundError
) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": exc.message})


async def turn_not_found_handler(_request: Request, exc: TurnNotFoundError) -> JSONResponse:
    logger.error("Answer submitted for unknown turn %s", exc.turn_id)
    return JSONResponse(status_code=404, content={"detail": exc.message})


async def dialogue_state_error_handler(
    _request: Request, exc: DialogueStateError
) -> JSONResponse:
    logger.warning("Dialogue state error: %s", exc.message)
    return JSONResponse(status_code=409, content={"detail": exc.message})
