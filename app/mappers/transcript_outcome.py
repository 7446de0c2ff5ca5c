"""Deterministic outcome heuristics over a finished call transcript.

Only the company representative's lines are considered; the voice agent's own
lines are skipped. Lines are scanned newest first.
"""

import re

from app.schemas.bland import TranscriptEntry

RESOLUTION_KEYWORDS = (
    "reference number",
    "confirmation number",
    "case number",
    "ticket number",
    "refund processed",
    "replacement shipped",
    "issue resolved",
    "problem solved",
    "ticket created",
    "escalated to",
    "will be resolved",
    "resolution",
    "refund",
    "replacement",
    "resolved",
    "we will",
    "i will",
    "expect",
    "within",
    "timeline",
    "follow up",
)

NEXT_STEP_KEYWORDS = (
    "next steps",
    "what happens next",
    "follow up",
    "within",
    "will contact",
    "expect",
    "timeline",
    "will receive",
    "please",
    "you should",
    "make sure to",
    "need to",
)

DEFAULT_NEXT_STEPS = "Please follow up if you don't hear back within 24-48 hours"

REFERENCE_PATTERNS = (
    re.compile(
        r"(?i:reference|confirmation|case|ticket|order|claim)\s*"
        r"(?i:number|#|id)?\s*(?i:is)?\s*:?\s*"
        r"\b((?=[A-Z0-9]*\d)[A-Z0-9]{4,})\b"
    ),
    re.compile(r"\b([A-Z]{2,}\d{4,}|\d{6,}[A-Z]{2,})\b"),
    re.compile(r"\b((?=[A-Z]*\d)[A-Z0-9]{8,})\b"),
)


def _human_lines_newest_first(transcript: list[TranscriptEntry]) -> list[str]:
    return [e.text for e in reversed(transcript) if e.is_human and e.text]


def extract_resolution(transcript: list[TranscriptEntry]) -> str | None:
    lines = _human_lines_newest_first(transcript)
    for text in lines:
        lowered = text.lower()
        if any(keyword in lowered for keyword in RESOLUTION_KEYWORDS):
            return text
    for text in lines:
        if len(text) > 20:
            return text
    return None


def extract_reference_number(transcript: list[TranscriptEntry]) -> str | None:
    for text in _human_lines_newest_first(transcript):
        for pattern in REFERENCE_PATTERNS:
            match = pattern.search(text)
            if match:
                return match.group(1)
    return None


def extract_next_steps(transcript: list[TranscriptEntry]) -> str:
    for text in _human_lines_newest_first(transcript):
        lowered = text.lower()
        if len(text) > 30 and any(keyword in lowered for keyword in NEXT_STEP_KEYWORDS):
            return text
    return DEFAULT_NEXT_STEPS


def is_escalation(resolution: str | None) -> bool:
    return bool(resolution) and "escalat" in resolution.lower()


def format_transcript(
    transcript: list[TranscriptEntry], human_label: str = "Representative"
) -> str:
    lines: list[str] = []
    for entry in transcript:
        role = human_label if entry.is_human else "Agent"
        lines.append(f"{role}: {entry.text or ''}")
    return "\n".join(lines)
