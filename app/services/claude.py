import json
import logging
import re

from anthropic import AsyncAnthropic

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"

_JSON_RE = re.compile(r"\{[\s\S]*\}")


class ClaudeService:
    def __init__(self, api_key: str, model: str = DEFAULT_MODEL):
        self._client = AsyncAnthropic(api_key=api_key)
        self._model = model

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> str | None:
        """Raw text reply, or None when the API call fails or returns nothing."""
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            )
            if not response.content:
                return None
            text = response.content[0].text
            return text.strip() or None
        except Exception:
            logger.exception("Claude API call failed")
            return None

    async def analyze(
        self, system_prompt: str, user_prompt: str, temperature: float = 0.3
    ) -> dict | None:
        text = await self.complete(system_prompt, user_prompt, temperature=temperature)
        if text is None:
            return None
        result = self._try_parse_json(text)
        if result is None:
            logger.warning("Could not parse JSON from Claude reply: %.200s", text)
        return result

    @staticmethod
    def _try_parse_json(text: str) -> dict | None:
        # Strip markdown fences
        stripped = re.sub(r"```(?:json)?\s*", "", text).strip().rstrip("`")

        try:
            obj = json.loads(stripped)
            if isinstance(obj, dict):
                return obj
        except (json.JSONDecodeError, ValueError):
            pass

        # Fallback: outermost braces in the text
        match = _JSON_RE.search(text)
        if match:
            try:
                obj = json.loads(match.group(0))
                if isinstance(obj, dict):
                    return obj
            except (json.JSONDecodeError, ValueError):
                pass

        return None
