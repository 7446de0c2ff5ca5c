import json
import logging

from app.schemas.complaint import ConversationTurn, EnhancedComplaintContext
from app.schemas.llm import ContinueDecision, FieldExtraction, GeneratedQuestion
from app.services.claude import ClaudeService

logger = logging.getLogger(__name__)

_QUESTION_SYSTEM_PROMPT = (
    "You are a customer service specialist helping a customer with a complaint. "
    "Ask ONE specific, direct question that gathers information still missing to "
    "resolve the complaint. Do not repeat earlier questions and do not ask for facts "
    "already given. Focus on actionable details: dates, amounts, account or reference "
    "numbers, what exactly happened, what outcome the customer wants. Avoid vague "
    'questions such as "Can you provide more details?" or "Can you clarify?". '
    "Reply with the question only."
)

_DECISION_SYSTEM_PROMPT = (
    "You are a customer service analyst. Decide whether enough is known to act on "
    "the complaint: the exact problem, the resolution the customer wants, and the key "
    "details (account, dates, amounts). A detailed complaint needs few questions; "
    "prefer one good question over several vague ones. "
    'Reply with ONLY one word: "CONTINUE" or "STOP".'
)

_EXTRACTION_SYSTEM_PROMPT = (
    "Extract factual information from a customer's answer to a follow-up question "
    "about their complaint: dates and times, amounts, account or reference numbers, "
    "products or services, desired outcome, names, departments, locations. "
    "Return ONLY a JSON object with descriptive snake_case keys and string values. "
    "If nothing new is found return {}. "
    'Example: {"transaction_date": "2024-01-15", "amount": "250", "desired_outcome": "refund"}'
)

_PRE_ANALYSIS_SYSTEM_PROMPT = (
    "Extract the key facts from a customer complaint. Look for: company, issue "
    "(short description of the problem), product, amount, date, resolution (what the "
    "customer wants), account_type, reference_number. Return ONLY a JSON object, "
    "omitting fields that are not present. "
    'Example: {"company": "Acme Bank", "issue": "double charge", "product": "debit card", '
    '"resolution": "refund"}'
)

_CALLBACK_SYSTEM_PROMPT = (
    "You read the transcript of a short phone call in which a customer was asked for "
    "specific details. Return ONLY a JSON object containing the requested keys whose "
    "values the customer actually stated. Omit keys the customer did not answer."
)


def format_conversation(turns: list[ConversationTurn]) -> str:
    if not turns:
        return "No previous questions asked."
    blocks: list[str] = []
    for i, turn in enumerate(turns, start=1):
        answer = turn.answer if turn.is_answered else "[No answer yet]"
        blocks.append(f"Q{i}: {turn.question}\nA{i}: {answer}")
    return "\n\n".join(blocks)


class InformationExtractor:
    """Typed LLM calls used by the dialogue and the fallback side call.

    Every method degrades to a safe default (None or an empty extraction) when
    the model fails or replies with something unparseable.
    """

    def __init__(self, claude: ClaudeService):
        self._claude = claude

    async def generate_question(
        self, context: EnhancedComplaintContext, is_last_question: bool = False
    ) -> GeneratedQuestion | None:
        user_prompt = (
            f'ORIGINAL COMPLAINT:\n"{context.original_complaint}"\n\n'
            f"CONVERSATION HISTORY:\n{format_conversation(context.conversation_history)}\n\n"
            f"INFORMATION GATHERED SO FAR:\n"
            f"{json.dumps(context.extracted_fields, indent=2, ensure_ascii=False)}"
        )
        if is_last_question:
            user_prompt += "\n\nThis is the last question you can ask. Make it count."

        text = await self._claude.complete(
            _QUESTION_SYSTEM_PROMPT, user_prompt, max_tokens=200, temperature=0.7
        )
        return GeneratedQuestion.from_text(text)

    async def decide_continue(
        self, context: EnhancedComplaintContext
    ) -> ContinueDecision | None:
        user_prompt = (
            f'ORIGINAL COMPLAINT: "{context.original_complaint}"\n\n'
            f"CONVERSATION SO FAR:\n{format_conversation(context.conversation_history)}\n\n"
            f"EXTRACTED INFORMATION:\n"
            f"{json.dumps(context.extracted_fields, indent=2, ensure_ascii=False)}"
        )
        text = await self._claude.complete(
            _DECISION_SYSTEM_PROMPT, user_prompt, max_tokens=10, temperature=0.0
        )
        decision = ContinueDecision.from_text(text)
        if decision is None:
            logger.warning("Unusable continuation decision from model: %r", text)
        return decision

    async def extract_fields(
        self,
        context: EnhancedComplaintContext,
        prior_turns: list[ConversationTurn],
        question: str,
        answer: str,
    ) -> FieldExtraction:
        user_prompt = (
            f'ORIGINAL COMPLAINT: "{context.original_complaint}"\n\n'
            f"EARLIER CONVERSATION:\n{format_conversation(prior_turns)}\n\n"
            f'QUESTION ASKED: "{question}"\n'
            f'USER\'S ANSWER: "{answer}"\n\n'
            f"CURRENT INFORMATION:\n"
            f"{json.dumps(context.extracted_fields, indent=2, ensure_ascii=False)}"
        )
        raw = await self._claude.analyze(_EXTRACTION_SYSTEM_PROMPT, user_prompt)
        return FieldExtraction.from_raw(raw)

    async def pre_analyze(self, complaint_text: str) -> FieldExtraction:
        if not complaint_text.strip():
            return FieldExtraction()
        raw = await self._claude.analyze(
            _PRE_ANALYSIS_SYSTEM_PROMPT, f'Complaint:\n"{complaint_text}"'
        )
        return FieldExtraction.from_raw(raw)

    async def extract_requested_fields(
        self, transcript: str, fields: list[str]
    ) -> FieldExtraction:
        """Answers for ``fields`` from a callback transcript; other keys are dropped."""
        if not transcript.strip() or not fields:
            return FieldExtraction()
        user_prompt = (
            f"Requested keys: {', '.join(fields)}\n\n"
            f"Transcript:\n{transcript}"
        )
        raw = await self._claude.analyze(_CALLBACK_SYSTEM_PROMPT, user_prompt)
        extraction = FieldExtraction.from_raw(raw)
        return FieldExtraction(
            fields={k: v for k, v in extraction.fields.items() if k in fields}
        )
