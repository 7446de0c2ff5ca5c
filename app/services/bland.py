import logging
import re

import httpx

from app.exceptions.custom import BlandError, InvalidPhoneNumberError, RateLimitError
from app.schemas.bland import CallDetailsResponse, OutboundCallResponse

logger = logging.getLogger(__name__)

CALLS_URL = "https://api.bland.ai/v1/calls"

E164_RE = re.compile(r"^\+[1-9]\d{6,14}$")


def is_e164(phone_number: str | None) -> bool:
    return bool(phone_number) and E164_RE.match(phone_number) is not None


class BlandService:
    """Voice-agent telephony over the Bland AI REST API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        max_duration_minutes: int = 15,
    ):
        self._client = client
        self._headers = {"authorization": api_key}
        self._max_duration = max_duration_minutes

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.status_code == 429:
            raise RateLimitError("Bland")
        if resp.status_code >= 400:
            raise BlandError(resp.text, status_code=resp.status_code)

    async def place_call(
        self,
        phone_number: str,
        task: str,
        request_data: dict | None = None,
        max_duration: int | None = None,
    ) -> OutboundCallResponse:
        if not is_e164(phone_number):
            raise InvalidPhoneNumberError(phone_number)

        payload: dict = {
            "phone_number": phone_number,
            "task": task,
            "wait_for_greeting": True,
            "record": True,
            "max_duration": max_duration or self._max_duration,
        }
        if request_data:
            payload["request_data"] = request_data

        logger.info("Starting Bland call to %s", phone_number)
        resp = await self._client.post(CALLS_URL, json=payload, headers=self._headers)
        self._raise_for_status(resp)

        result = OutboundCallResponse(**resp.json())
        if result.status == "error" or not result.call_id:
            raise BlandError(result.message or "Bland did not return a call id")
        logger.info("Bland call started: call_id=%s", result.call_id)
        return result

    async def get_call(self, call_id: str) -> CallDetailsResponse:
        resp = await self._client.get(f"{CALLS_URL}/{call_id}", headers=self._headers)
        self._raise_for_status(resp)
        return CallDetailsResponse.model_validate(resp.json())

    async def stop_call(self, call_id: str) -> None:
        logger.info("Stopping Bland call %s", call_id)
        resp = await self._client.post(f"{CALLS_URL}/{call_id}/stop", headers=self._headers)
        self._raise_for_status(resp)
