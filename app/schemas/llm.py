"""Typed results for each LLM call site.

Raw model output never leaves the extractor layer; it is parsed into one of
these models or replaced by a safe default.
"""

import json
import re
from typing import Any

from pydantic import BaseModel

_QUESTION_PREFIX_RE = re.compile(r"^(Question:|Q:|Answer:|\d+\.|-|\*)\s*", re.IGNORECASE)
_DECISION_RE = re.compile(r"\b(CONTINUE|STOP)\b", re.IGNORECASE)
_JSON_RE = re.compile(r"\{[\s\S]*\}")


class GeneratedQuestion(BaseModel):
    question: str

    @classmethod
    def from_text(cls, text: str | None) -> "GeneratedQuestion | None":
        if not text or not text.strip():
            return None
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        candidate = next((line for line in lines if "?" in line), lines[0])
        candidate = _QUESTION_PREFIX_RE.sub("", candidate).strip().strip('"').strip()
        if not candidate:
            return None
        return cls(question=candidate)


class FieldExtraction(BaseModel):
    fields: dict[str, str] = {}

    @classmethod
    def from_raw(cls, raw: dict[str, Any] | None) -> "FieldExtraction":
        if not raw:
            return cls()
        fields: dict[str, str] = {}
        for key, value in raw.items():
            if value is None or (isinstance(value, (dict, list)) and not value):
                continue
            if isinstance(value, (dict, list)):
                value = json.dumps(value, ensure_ascii=False)
            text = str(value).strip()
            if text:
                fields[str(key)] = text
        return cls(fields=fields)


class ContinueDecision(BaseModel):
    should_continue: bool

    @classmethod
    def from_text(cls, text: str | None) -> "ContinueDecision | None":
        if not text:
            return None
        match = _JSON_RE.search(text)
        if match:
            try:
                obj = json.loads(match.group(0))
            except (json.JSONDecodeError, ValueError):
                obj = None
            if isinstance(obj, dict):
                for key in ("continue", "should_continue"):
                    if isinstance(obj.get(key), bool):
                        return cls(should_continue=obj[key])
                decision = obj.get("decision")
                if isinstance(decision, str) and decision.upper() in ("CONTINUE", "STOP"):
                    return cls(should_continue=decision.upper() == "CONTINUE")

        found = {m.upper() for m in _DECISION_RE.findall(text)}
        if len(found) != 1:
            return None
        return cls(should_continue=found.pop() == "CONTINUE")
