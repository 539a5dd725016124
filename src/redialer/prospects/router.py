"""
API router for operator control of prospect retry records.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from redialer.calls.dependencies import get_redial_scheduler
from redialer.calls.scheduler import RedialScheduler
from redialer.prospects.schemas import EnqueueRequest, RetryRecordResponse

router = APIRouter(prefix="/api/prospects", tags=["prospects"])


@router.post(
    "",
    response_model=RetryRecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enqueue a prospect for redialing",
)
async def enqueue_prospect(
    request: EnqueueRequest,
    scheduler: Annotated[RedialScheduler, Depends(get_redial_scheduler)],
) -> RetryRecordResponse:
    """Create the retry record. Repeating the call returns the existing record."""
    record = await scheduler.enqueue(
        prospect_id=request.prospect_id,
        phone_number=request.phone_number,
        list_id=request.list_id,
        first_name=request.first_name,
        last_name=request.last_name,
    )
    return RetryRecordResponse.from_record(record)


@router.post("/{prospect_id}/{phone_number}/pause", response_model=RetryRecordResponse)
async def pause_prospect(
    prospect_id: str,
    phone_number: str,
    scheduler: Annotated[RedialScheduler, Depends(get_redial_scheduler)],
) -> RetryRecordResponse:
    return RetryRecordResponse.from_record(await scheduler.pause(prospect_id, phone_number))


@router.post("/{prospect_id}/{phone_number}/resume", response_model=RetryRecordResponse)
async def resume_prospect(
    prospect_id: str,
    phone_number: str,
    scheduler: Annotated[RedialScheduler, Depends(get_redial_scheduler)],
) -> RetryRecordResponse:
    return RetryRecordResponse.from_record(await scheduler.resume(prospect_id, phone_number))


@router.delete("/{prospect_id}/{phone_number}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_prospect(
    prospect_id: str,
    phone_number: str,
    scheduler: Annotated[RedialScheduler, Depends(get_redial_scheduler)],
) -> Response:
    await scheduler.remove(prospect_id, phone_number)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
