from datetime import datetime, timezone

from app.schemas.complaint import EnhancedComplaintContext

NOT_PROVIDED = "Not provided"


def build_subject(context: EnhancedComplaintContext) -> str:
    issue = context.issue or context.extracted_fields.get("issue") or "Customer Service Issue"
    subject = f"Customer Complaint - {issue}"
    product = context.product or context.extracted_fields.get("product")
    if product:
        subject += f" - {product}"
    subject += f" (Ref: {context.complaint_id})"
    if context.priority == "high":
        subject = f"[URGENT] {subject}"
    return subject


def build_complaint_email(context: EnhancedComplaintContext) -> tuple[str, str]:
    """Plain-text complaint email sent to the company's support address.

    Returns ``(subject, body)``.
    """
    customer = context.customer_details
    name = (customer.name if customer else None) or "the customer"
    email = (customer.email if customer else None) or NOT_PROVIDED
    phone = (customer.phone if customer else None) or NOT_PROVIDED
    fields = context.extracted_fields
    now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")

    lines = [
        f"Customer Service Complaint - {context.company or 'Unknown Company'}",
        f"Complaint ID: {context.complaint_id}",
        f"Priority: {context.priority.upper()}",
        f"Submitted: {now}",
        "",
        "Customer",
        f"  Name: {name}",
        f"  Email: {email}",
        f"  Phone: {phone}",
        "",
        "Complaint",
        f"  Issue: {context.issue_text}",
        f"  Product/Service: {context.product or fields.get('product') or NOT_PROVIDED}",
        f"  Date of issue: {fields.get('date') or fields.get('purchase_date') or NOT_PROVIDED}",
        f"  Desired resolution: {fields.get('resolution') or NOT_PROVIDED}",
        "",
        "Original complaint:",
        context.original_complaint,
    ]

    answered = context.answered_turns
    if answered:
        lines += ["", "Additional information gathered:"]
        for turn in answered:
            lines += [f"  Q: {turn.question}", f"  A: {turn.answer}"]

    lines += [
        "",
        f"We are writing on behalf of {name} to request your help resolving this matter.",
        "Please:",
        "  - Review the complaint details above",
        f"  - Contact the customer at {email} or {phone}",
        "  - Provide a reference or case number for tracking",
        "  - Respond with the resolution steps and a timeline",
        "",
        f"Complaint reference: {context.complaint_id}",
    ]
    return build_subject(context), "\n".join(lines)
