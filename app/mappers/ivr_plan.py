from app.schemas.call import IVRNavigationPlan, IVRNavigationStep
from app.schemas.complaint import IVRNode

GENERAL_DEPARTMENT = "general_customer_service"

# Issue keyword -> department, first match wins
DEPARTMENT_KEYWORDS = (
    (("bill", "charge", "payment"), "billing"),
    (("technical", "error", "not working"), "technical_support"),
    (("cancel", "subscription"), "account_management"),
    (("refund", "return"), "returns"),
)

# Department -> words that identify its option in a spoken IVR menu
MENU_KEYWORDS = {
    "billing": ("billing", "bill", "payment", "charges"),
    "technical_support": ("technical", "tech support", "support", "troubleshoot"),
    "account_management": ("account", "cancel", "subscription", "membership"),
    "returns": ("return", "refund", "exchange"),
    GENERAL_DEPARTMENT: ("customer service", "representative", "agent", "operator", "other"),
}

GREETING_DELAY_MS = 5000
PRESS_DELAY_MS = 1000
OPERATOR_WAIT_MS = 10000
OPERATOR_KEY = "0"


def determine_target_department(issue_text: str | None) -> str:
    lowered = (issue_text or "").lower()
    for keywords, department in DEPARTMENT_KEYWORDS:
        if any(k in lowered for k in keywords):
            return department
    return GENERAL_DEPARTMENT


def _find_option_key(ivr_structure: list[IVRNode], department: str) -> tuple[str, str] | None:
    keywords = MENU_KEYWORDS.get(department, MENU_KEYWORDS[GENERAL_DEPARTMENT])
    for node in ivr_structure:
        for option in node.options:
            description = option.description.lower()
            if any(k in description for k in keywords):
                return option.key, option.description
    return None


def operator_plan() -> IVRNavigationPlan:
    steps = [
        IVRNavigationStep(
            action="wait",
            value="greeting",
            delay_ms=GREETING_DELAY_MS,
            description="Wait for initial greeting",
        ),
        IVRNavigationStep(
            action="press",
            value=OPERATOR_KEY,
            delay_ms=PRESS_DELAY_MS,
            description="Press 0 to reach an operator",
        ),
        IVRNavigationStep(
            action="wait",
            value="operator",
            delay_ms=OPERATOR_WAIT_MS,
            description="Wait for operator",
        ),
    ]
    return IVRNavigationPlan(
        steps=steps, estimated_duration_ms=sum(s.delay_ms for s in steps)
    )


def build_navigation_plan(
    ivr_structure: list[IVRNode] | None, target_department: str
) -> IVRNavigationPlan:
    """Key-press plan for reaching ``target_department``.

    A known menu with an option for the department yields greeting + that key;
    anything else falls back to the operator plan.
    """
    if not ivr_structure:
        return operator_plan()

    found = _find_option_key(ivr_structure, target_department)
    if found is None:
        return operator_plan()

    key, description = found
    steps = [
        IVRNavigationStep(
            action="wait",
            value="greeting",
            delay_ms=GREETING_DELAY_MS,
            description="Wait for initial greeting",
        ),
        IVRNavigationStep(
            action="press",
            value=key,
            delay_ms=PRESS_DELAY_MS,
            description=f"Press {key} for {description}",
        ),
    ]
    return IVRNavigationPlan(
        steps=steps, estimated_duration_ms=sum(s.delay_ms for s in steps)
    )
