from collections.abc import Iterable

from app.schemas.complaint import ConversationTurn


def calculate_overall_confidence(
    initial_confidence: float, turns: Iterable[ConversationTurn]
) -> float:
    """Initial confidence plus the deltas of answered turns, clamped to [0, 1]."""
    total = initial_confidence + sum(t.confidence_delta for t in turns if t.is_answered)
    return max(0.0, min(1.0, total))
