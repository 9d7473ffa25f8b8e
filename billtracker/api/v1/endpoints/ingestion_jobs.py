"""Ingestion job routes: status lookup and cancellation."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status

from billtracker.api.errors import problem
from billtracker.core.dependencies import get_ingestion_job_repository
from billtracker.core.exceptions import NotFoundError
from billtracker.repositories.ingestion_job_repository import IngestionJobRepository
from billtracker.schemas.records import IngestionJobResponse
from billtracker.services.ingestion_service import TERMINAL_STATES
from billtracker.utils.logging import get_logger
from billtracker.utils.responses import create_api_response

LOGGER = get_logger(__name__)

router = APIRouter()

JobRepositoryDep = Annotated[IngestionJobRepository, Depends(get_ingestion_job_repository)]


@router.get("/{job_id}", summary="Get an ingestion job", operation_id="get_ingestion_job")
async def get_ingestion_job(job_id: UUID, request: Request, jobs: JobRepositoryDep):
    job = await jobs.get_job(job_id)
    if job is None:
        raise problem(NotFoundError.kind, f"Ingestion job with ID {job_id} not found", request)
    return create_api_response(IngestionJobResponse.model_validate(job), request=request)


@router.post(
    "/{job_id}/cancel",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Request cancellation of a running ingestion job",
    operation_id="cancel_ingestion_job",
)
async def cancel_ingestion_job(job_id: UUID, request: Request, jobs: JobRepositoryDep):
    """Flag the job; the running pipeline stops at its next check."""
    job = await jobs.get_job(job_id)
    if job is None:
        raise problem(NotFoundError.kind, f"Ingestion job with ID {job_id} not found", request)
    if job.state in {state.value for state in TERMINAL_STATES}:
        raise problem("conflict", f"Ingestion job is already {job.state}", request)

    await jobs.request_cancel(job_id)
    LOGGER.info("Cancellation requested for ingestion job", extra={"job_id": str(job_id)})
    job = await jobs.get_job(job_id)
    return create_api_response(
        IngestionJobResponse.model_validate(job), message="Cancellation requested", request=request
    )
