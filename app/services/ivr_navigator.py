import asyncio
import logging
from collections.abc import Awaitable, Callable

from app.exceptions.custom import IVRNavigationError
from app.mappers.ivr_plan import build_navigation_plan, determine_target_department, operator_plan
from app.schemas.call import IVRNavigationPlan
from app.schemas.complaint import ContactDetails, EnhancedComplaintContext, IVRNode
from app.services.twilio_control import TwilioCallControlService

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


class IVRNavigator:
    def __init__(
        self,
        call_control: TwilioCallControlService | None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self._control = call_control
        self._sleep = sleep

    def plan(
        self, ivr_structure: list[IVRNode] | None, target_department: str
    ) -> IVRNavigationPlan:
        return build_navigation_plan(ivr_structure, target_department)

    async def navigate(
        self,
        call_id: str,
        context: EnhancedComplaintContext,
        contact: ContactDetails | None = None,
    ) -> bool:
        department = determine_target_department(context.issue_text)
        ivr_structure = contact.ivr_structure if contact else None
        plan = self.plan(ivr_structure, department)
        logger.info(
            "Navigating IVR on call %s towards %s (%d steps, known menu: %s)",
            call_id,
            department,
            len(plan.steps),
            bool(ivr_structure),
        )
        return await self.execute(call_id, plan)

    async def reach_operator(self, call_id: str) -> bool:
        logger.info("Trying to reach an operator on call %s", call_id)
        return await self.execute(call_id, operator_plan())

    async def execute(self, call_id: str, plan: IVRNavigationPlan) -> bool:
        """Replay ``plan`` step by step. Returns False on the first failing step."""
        for i, step in enumerate(plan.steps, start=1):
            try:
                await self._sleep(step.delay_ms / 1000)
                if step.action == "press":
                    await self._require_control().send_digits(call_id, step.value)
                elif step.action == "say":
                    await self._require_control().say(call_id, step.value)
                logger.debug(
                    "IVR step %d/%d on call %s: %s", i, len(plan.steps), call_id, step.description
                )
            except Exception:
                logger.exception(
                    "IVR step %d (%s %s) failed on call %s",
                    i,
                    step.action,
                    step.value,
                    call_id,
                )
                return False
        return True

    def _require_control(self) -> TwilioCallControlService:
        if self._control is None:
            raise IVRNavigationError("Call control is not configured")
        return self._control
