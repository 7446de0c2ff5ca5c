from typing import Annotated

from fastapi import Depends, Request

from app.jobs import JobStore
from app.services.orchestration import OrchestrationFactory


def get_orchestration_factory(request: Request) -> OrchestrationFactory:
    return request.app.state.orchestration_factory


def get_job_store(request: Request) -> JobStore:
    return request.app.state.job_store


OrchestrationDep = Annotated[OrchestrationFactory, Depends(get_orchestration_factory)]
JobStoreDep = Annotated[JobStore, Depends(get_job_store)]
