VAGUE_PHRASES = (
    "more details",
    "clarify",
    "can you tell me",
    "additional information",
)

FIRST_QUESTION = (
    "To help resolve your issue quickly, could you tell me when this problem first occurred?"
)
SECOND_QUESTION = "What specific outcome or resolution are you hoping for with this issue?"
LAST_QUESTION = (
    "Is there any other important information you think would help us resolve this issue?"
)
REFERENCE_QUESTION = (
    "Could you provide any reference numbers, account details, or other specific "
    "information related to this problem?"
)


def question_rejection_reason(
    question: str, min_length: int = 10, max_length: int = 150
) -> str | None:
    """Return why a generated question is unusable, or None when it is fine."""
    if len(question) < min_length:
        return "too_short"
    if len(question) > max_length:
        return "too_long"
    lowered = question.lower()
    if any(phrase in lowered for phrase in VAGUE_PHRASES):
        return "vague"
    return None


def fallback_question(turn_count: int, is_last_question: bool) -> str:
    if turn_count == 0:
        return FIRST_QUESTION
    if turn_count == 1:
        return SECOND_QUESTION
    if is_last_question:
        return LAST_QUESTION
    return REFERENCE_QUESTION
