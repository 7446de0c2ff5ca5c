from urllib.parse import parse_qs

import httpx
import pytest
import respx
from httpx import Response

from app.exceptions.custom import RateLimitError, TwilioError
from app.services.twilio_control import TwilioCallControlService

CALL_URL = "https://api.twilio.com/2010-04-01/Accounts/AC123/Calls/CA1.json"
HOLD_MUSIC = "https://example.com/hold.mp3"
RESUME_URL = "https://example.com/twiml/resume"


def _service(client, resume_url=RESUME_URL):
    return TwilioCallControlService(client, "AC123", "token", HOLD_MUSIC, resume_url=resume_url)


def _form(route) -> dict:
    return {k: v[0] for k, v in parse_qs(route.calls[0].request.content.decode()).items()}


@respx.mock
async def test_hold_plays_music():
    route = respx.post(CALL_URL).mock(return_value=Response(200, json={"sid": "CA1"}))

    async with httpx.AsyncClient() as client:
        await _service(client).hold("CA1")

    form = _form(route)
    assert HOLD_MUSIC in form["Twiml"]
    assert 'loop="0"' in form["Twiml"]
    assert route.calls[0].request.headers["authorization"].startswith("Basic ")


@respx.mock
async def test_resume_redirects_to_url():
    route = respx.post(CALL_URL).mock(return_value=Response(200, json={"sid": "CA1"}))

    async with httpx.AsyncClient() as client:
        await _service(client).resume("CA1")

    assert _form(route) == {"Url": RESUME_URL, "Method": "POST"}


async def test_resume_without_url_raises():
    async with httpx.AsyncClient() as client:
        with pytest.raises(TwilioError):
            await _service(client, resume_url="").resume("CA1")


@respx.mock
async def test_send_digits():
    route = respx.post(CALL_URL).mock(return_value=Response(200, json={"sid": "CA1"}))

    async with httpx.AsyncClient() as client:
        await _service(client).send_digits("CA1", "2")

    twiml = _form(route)["Twiml"]
    assert '<Play digits="2"/>' in twiml
    assert RESUME_URL in twiml


@respx.mock
async def test_say_escapes_text():
    route = respx.post(CALL_URL).mock(return_value=Response(200, json={"sid": "CA1"}))

    async with httpx.AsyncClient() as client:
        await _service(client).say("CA1", "Billing & payments")

    assert "<Say>Billing &amp; payments</Say>" in _form(route)["Twiml"]


@respx.mock
async def test_error_status():
    respx.post(CALL_URL).mock(return_value=Response(404, text="Call not found"))

    async with httpx.AsyncClient() as client:
        with pytest.raises(TwilioError) as exc_info:
            await _service(client).hold("CA1")

    assert exc_info.value.status_code == 404


@respx.mock
async def test_rate_limit():
    respx.post(CALL_URL).mock(return_value=Response(429))

    async with httpx.AsyncClient() as client:
        with pytest.raises(RateLimitError):
            await _service(client).hold("CA1")
