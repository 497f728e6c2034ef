"""
Delivery router.

Endpoints under /me/attempts/{attempt_id}/deliver-notion:
- POST: start delivery (202 queued / already active). When the job store is
  unavailable delivery runs inline: 502 if every item failed, else 200
- GET: poll the most recent job (idle when none ever ran)

Handlers are plain functions: delivery touches SQLite and, in degraded
mode, the Notion API, so FastAPI runs them in its thread pool.
"""

import logging

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse

from quiz_delivery.delivery.entities import (
    DeliveryJob,
    DeliveryJobStatus,
    PublicDeliveryStatus,
)
from quiz_delivery.delivery.errors import AttemptSourceError
from quiz_delivery.delivery.service import EnqueueMode, build_status_message

from .._delivery_state import get_delivery_service
from ..dependencies.auth import get_current_owner
from ..schemas.delivery import (
    DeliveryJobSnapshot,
    DeliveryStatusResponse,
    ErrorResponse,
)


logger = logging.getLogger(__name__)

router = APIRouter()

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Attempt not completed or unreadable"},
    403: {"model": ErrorResponse, "description": "Attempt belongs to another user"},
    404: {"model": ErrorResponse, "description": "Attempt not found"},
}


def _attempt_error_response(error: AttemptSourceError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content={"message": error.message})


def _job_response(job: DeliveryJob) -> DeliveryStatusResponse:
    """Public projection of a job, with a message when it failed."""
    response = DeliveryStatusResponse(
        status=job.public_status.value,
        job=DeliveryJobSnapshot.from_job(job),
    )
    message = build_status_message(job)
    if message is not None:
        response.message = message
    return response


@router.post(
    "/{attempt_id}/deliver-notion",
    response_model=DeliveryStatusResponse,
    response_model_exclude_unset=True,
    status_code=status.HTTP_202_ACCEPTED,
    responses=_ERROR_RESPONSES,
)
def deliver_notion(
    attempt_id: str,
    response: Response,
    owner_id: str = Depends(get_current_owner),
):
    """
    Start Notion delivery for a completed attempt.

    Never creates a second job while one is QUEUED or IN_PROGRESS for the
    same attempt; the active job is returned instead.
    """
    service = get_delivery_service()

    try:
        result = service.enqueue(attempt_id, owner_id)
    except AttemptSourceError as e:
        return _attempt_error_response(e)

    if result.mode == EnqueueMode.SYNCHRONOUS:
        if result.job.status == DeliveryJobStatus.FAILED:
            response.status_code = status.HTTP_502_BAD_GATEWAY
        else:
            response.status_code = status.HTTP_200_OK

    return _job_response(result.job)


@router.get(
    "/{attempt_id}/deliver-notion",
    response_model=DeliveryStatusResponse,
    response_model_exclude_unset=True,
    responses=_ERROR_RESPONSES,
)
def get_delivery_status(
    attempt_id: str,
    owner_id: str = Depends(get_current_owner),
):
    """Poll the most recent delivery job for an attempt."""
    service = get_delivery_service()

    try:
        job = service.poll(attempt_id, owner_id)
    except AttemptSourceError as e:
        return _attempt_error_response(e)

    if job is None:
        return DeliveryStatusResponse(status=PublicDeliveryStatus.IDLE.value)

    return _job_response(job)
