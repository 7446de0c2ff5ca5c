from app.schemas.bland import TranscriptEntry

DEFAULT_TRIGGERS = ("need more information", "cannot proceed", "missing details")

# Checked in order; first keyword found in the message wins
MISSING_FIELD_KEYWORDS = (
    ("account", "account_number"),
    ("order", "order_number"),
    ("date", "purchase_date"),
    ("address", "shipping_address"),
)
GENERIC_FIELD = "additional_details"

RECENT_MESSAGES = 3


def classify_missing_field(message: str) -> str:
    lowered = message.lower()
    for keyword, field in MISSING_FIELD_KEYWORDS:
        if keyword in lowered:
            return field
    return GENERIC_FIELD


def detect_missing_fields(
    transcript: list[TranscriptEntry],
    triggers: list[str] | tuple[str, ...] = DEFAULT_TRIGGERS,
) -> list[str]:
    """Fields the representative asked for that only the customer can supply.

    Looks at the last three representative lines for a trigger phrase and
    classifies each matching line into a field name. Order preserved, no duplicates.
    """
    recent = [e.text for e in transcript if e.is_human and e.text][-RECENT_MESSAGES:]
    missing: list[str] = []
    for message in recent:
        lowered = message.lower()
        if any(trigger.lower() in lowered for trigger in triggers):
            field = classify_missing_field(message)
            if field not in missing:
                missing.append(field)
    return missing
