import asyncio
import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from app.dependencies import JobStoreDep, OrchestrationDep
from app.exceptions.custom import DialogueStateError
from app.jobs import JobStore
from app.schemas.complaint import ContactDetails
from app.schemas.responses import (
    CallRequest,
    DialogueStep,
    JobStatusResponse,
    JobSubmittedResponse,
    ResolveRequest,
)
from app.services.orchestration import OrchestrationFacade, OrchestrationFactory

logger = logging.getLogger(__name__)

router = APIRouter()


async def _run_call(
    job_id: str,
    factory: OrchestrationFactory,
    facade: OrchestrationFacade,
    store: JobStore,
    contact: ContactDetails | None,
) -> None:
    store.mark_running(job_id)
    try:
        result = await facade.place_complaint_call(contact)
        store.mark_completed(job_id, result)
    except Exception as exc:
        logger.exception("Call job %s failed", job_id)
        store.mark_failed(job_id, str(exc))
    finally:
        factory.release(facade.complaint_id)


async def _run_resolve(
    job_id: str,
    factory: OrchestrationFactory,
    facade: OrchestrationFacade,
    store: JobStore,
    request: ResolveRequest,
) -> None:
    store.mark_running(job_id)
    try:
        result = await facade.resolve(
            send_email=request.send_email,
            place_call=request.place_call,
            contact=request.contact,
        )
        store.mark_completed(job_id, result)
    except Exception as exc:
        logger.exception("Resolve job %s failed", job_id)
        store.mark_failed(job_id, str(exc))
    finally:
        factory.release(facade.complaint_id)


def _already_running(store: JobStore, complaint_id: str) -> JSONResponse | None:
    existing = store.has_active_job(complaint_id)
    if existing is None:
        return None
    return JSONResponse(content={
        "job_id": existing.job_id,
        "status": "already_running",
        "message": "A call is already in progress for this complaint",
    })


def _check_ready(step: DialogueStep) -> None:
    if step.next_question is not None:
        raise DialogueStateError(f"Complaint {step.complaint_id} still has an unanswered question")
    if not step.ready:
        raise DialogueStateError(f"Complaint {step.complaint_id} dialogue is not finished")


@router.post(
    "/complaints/{complaint_id}/call", response_model=JobSubmittedResponse, status_code=202
)
async def place_call(
    complaint_id: str,
    factory: OrchestrationDep,
    store: JobStoreDep,
    request: CallRequest | None = None,
) -> JobSubmittedResponse:
    if factory.telephony is None:
        raise HTTPException(status_code=503, detail="Bland not configured")

    facade = factory.get(complaint_id)
    _check_ready(facade.current_step())

    if running := _already_running(store, complaint_id):
        return running

    job = store.create_job(complaint_id=complaint_id, task_type="call")
    contact = request.contact if request else None
    asyncio.create_task(_run_call(job.job_id, factory, facade, store, contact))
    return JobSubmittedResponse(
        job_id=job.job_id,
        status=job.status,
        message="Call job submitted",
    )


@router.post(
    "/complaints/{complaint_id}/resolve", response_model=JobSubmittedResponse, status_code=202
)
async def resolve(
    complaint_id: str,
    factory: OrchestrationDep,
    store: JobStoreDep,
    request: ResolveRequest | None = None,
) -> JobSubmittedResponse:
    request = request or ResolveRequest()
    if not request.send_email and not request.place_call:
        raise HTTPException(status_code=422, detail="Nothing to do: enable email or call")

    facade = factory.get(complaint_id)
    step = facade.current_step()
    if request.place_call:
        _check_ready(step)

    if running := _already_running(store, complaint_id):
        return running

    job = store.create_job(complaint_id=complaint_id, task_type="resolve")
    asyncio.create_task(_run_resolve(job.job_id, factory, facade, store, request))
    return JobSubmittedResponse(
        job_id=job.job_id,
        status=job.status,
        message="Resolve job submitted",
    )


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job_status(job_id: str, store: JobStoreDep) -> JobStatusResponse:
    job = store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobStatusResponse(**job.model_dump())
