import logging

import httpx

from app.exceptions.custom import RateLimitError, SendGridError

logger = logging.getLogger(__name__)

MAIL_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


class SendGridService:
    def __init__(self, client: httpx.AsyncClient, api_key: str, from_email: str):
        self._client = client
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._from_email = from_email

    async def send(self, to: list[str], subject: str, body: str) -> str | None:
        """Send a plain-text email. Returns SendGrid's message id when present."""
        if not to:
            raise SendGridError("No recipients given")

        payload = {
            "personalizations": [{"to": [{"email": addr} for addr in to]}],
            "from": {"email": self._from_email},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }
        logger.info("Sending email '%s' to %s", subject, ", ".join(to))
        resp = await self._client.post(MAIL_SEND_URL, json=payload, headers=self._headers)

        if resp.status_code == 429:
            raise RateLimitError("SendGrid")
        if resp.status_code >= 400:
            raise SendGridError(resp.text, status_code=resp.status_code)

        return resp.headers.get("X-Message-Id")
