from app.schemas.complaint import ContactDetails, EnhancedComplaintContext

FIELD_QUESTIONS = {
    "account_number": "What is the account number the company has on file for you?",
    "order_number": "What is the order number for the purchase?",
    "purchase_date": "On what date did you make the purchase?",
    "shipping_address": "What shipping address was used for the order?",
    "additional_details": (
        "The representative asked for more details. Is there anything else they should know?"
    ),
}


def field_question(field: str) -> str:
    return FIELD_QUESTIONS.get(field, f"Could you provide your {field.replace('_', ' ')}?")


def _conversation_lines(context: EnhancedComplaintContext) -> list[str]:
    return [
        f"- Q: {turn.question} A: {turn.answer}"
        for turn in context.conversation_history
        if turn.is_answered
    ]


def build_task_script(
    context: EnhancedComplaintContext, contact: ContactDetails | None = None
) -> str:
    """Instructions handed to the voice agent for the company call."""
    company = context.company or (context.company_info.name if context.company_info else None)
    company = company or "the company"
    product = context.product or "product or service"
    customer = context.customer_details.name if context.customer_details else None
    customer = customer or "the customer"

    parts = [
        f"You are calling {company}'s customer service on behalf of {customer}.",
        "",
        f"The customer has the following complaint about their {product}:",
        f'"{context.original_complaint}"',
    ]

    history = _conversation_lines(context)
    if history:
        parts += ["", "Details gathered from the customer:", *history]

    known = {k: v for k, v in context.extracted_fields.items() if v}
    if known:
        parts += ["", "Known facts:"]
        parts += [f"- {key.replace('_', ' ')}: {value}" for key, value in known.items()]

    if contact and contact.support_hours:
        parts += ["", f"Support hours: {contact.support_hours}"]

    parts += [
        "",
        "Your goals:",
        f"1. Explain the {context.issue_text} clearly and politely",
        "2. Get a resolution or clear next steps for the customer",
        "3. Accept a refund or credit on the customer's behalf if offered",
        "4. Ask for a reference, case or confirmation number",
        "5. Thank the representative",
        "",
        "If you reach an automated menu, choose the option for customer service "
        "or the department matching the issue.",
        "If they ask for information you do not have, say you need more information "
        "from the customer and ask them to hold briefly.",
    ]
    return "\n".join(parts)


def build_callback_script(context: EnhancedComplaintContext, fields: list[str]) -> str:
    """Instructions for the side call that collects missing details from the customer."""
    company = context.company or "the company"
    customer = context.customer_details.name if context.customer_details else None
    greeting = f"Hello {customer}" if customer else "Hello"

    parts = [
        f"You are calling the customer about their complaint with {company}.",
        f'Start with: "{greeting}, we are on the line with {company} about your complaint '
        'and they need a few details to continue."',
        "",
        "Ask each of these questions and wait for the answer:",
    ]
    parts += [f"{i}. {field_question(f)}" for i, f in enumerate(fields, start=1)]
    parts += [
        "",
        "Repeat each answer back to confirm it, then thank the customer and end the call.",
        "Do not ask for passwords or full card numbers.",
    ]
    return "\n".join(parts)


def build_relay_message(responses: dict[str, str]) -> str:
    """Spoken to the representative when the call comes off hold."""
    details = " ".join(
        f"The {field.replace('_', ' ')} is {value}." for field, value in responses.items()
    )
    return f"Thank you for holding. The customer has provided the requested details. {details}"
