import logging

from fastapi import APIRouter

from app.dependencies import OrchestrationDep
from app.schemas.responses import DialogueStep, StartDialogueRequest, SubmitAnswerRequest
from app.services.orchestration import new_complaint_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/complaints", tags=["complaints"])


@router.post("", response_model=DialogueStep)
async def start_dialogue(request: StartDialogueRequest, factory: OrchestrationDep) -> DialogueStep:
    complaint_id = request.complaint_id or new_complaint_id()
    facade = factory.get(complaint_id)
    return await facade.start_dialogue(
        request.complaint,
        request.company,
        customer=request.customer,
        contact=request.contact,
    )


@router.post("/{complaint_id}/answers", response_model=DialogueStep)
async def submit_answer(
    complaint_id: str, request: SubmitAnswerRequest, factory: OrchestrationDep
) -> DialogueStep:
    return await factory.get(complaint_id).submit_answer(request.turn_id, request.answer)


@router.get("/{complaint_id}", response_model=DialogueStep)
async def get_dialogue(complaint_id: str, factory: OrchestrationDep) -> DialogueStep:
    return factory.get(complaint_id).current_step()
