import logging
from html import escape

import httpx

from app.exceptions.custom import RateLimitError, TwilioError

logger = logging.getLogger(__name__)

API_BASE = "https://api.twilio.com/2010-04-01"


class TwilioCallControlService:
    """Live-call control (hold, resume, DTMF, speech) through Twilio's Calls resource."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        account_sid: str,
        auth_token: str,
        hold_music_url: str,
        resume_url: str = "",
    ):
        self._client = client
        self._auth = (account_sid, auth_token)
        self._calls_url = f"{API_BASE}/Accounts/{account_sid}/Calls"
        self._hold_music_url = hold_music_url
        self._resume_url = resume_url

    async def _update_call(self, call_sid: str, data: dict) -> dict:
        resp = await self._client.post(
            f"{self._calls_url}/{call_sid}.json", data=data, auth=self._auth
        )
        if resp.status_code == 429:
            raise RateLimitError("Twilio")
        if resp.status_code >= 400:
            raise TwilioError(resp.text, status_code=resp.status_code)
        return resp.json()

    def _redirect(self) -> str:
        if not self._resume_url:
            return ""
        return f'<Redirect method="POST">{escape(self._resume_url)}</Redirect>'

    async def hold(self, call_sid: str) -> None:
        twiml = (
            "<Response>"
            f'<Play loop="0">{escape(self._hold_music_url)}</Play>'
            "</Response>"
        )
        logger.info("Putting call %s on hold", call_sid)
        await self._update_call(call_sid, {"Twiml": twiml})

    async def resume(self, call_sid: str) -> None:
        if not self._resume_url:
            raise TwilioError("No resume URL configured, cannot take call off hold")
        logger.info("Resuming call %s", call_sid)
        await self._update_call(call_sid, {"Url": self._resume_url, "Method": "POST"})

    async def send_digits(self, call_sid: str, digits: str) -> None:
        twiml = f'<Response><Play digits="{escape(digits)}"/>{self._redirect()}</Response>'
        logger.info("Sending DTMF %s on call %s", digits, call_sid)
        await self._update_call(call_sid, {"Twiml": twiml})

    async def say(self, call_sid: str, text: str) -> None:
        twiml = f"<Response><Say>{escape(text)}</Say>{self._redirect()}</Response>"
        await self._update_call(call_sid, {"Twiml": twiml})
