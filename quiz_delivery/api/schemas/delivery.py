"""
Delivery API schemas.

The top-level status is always the public projection
(idle/queued/in_progress/completed/failed). The job snapshot carries the
internal status for diagnostics.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from quiz_delivery.delivery.entities import DeliveryJob


class FailedItemDetail(BaseModel):
    """An item that exhausted its retries."""

    category: str
    level: int
    question_text: str
    error_message: str


class DeliveryJobSnapshot(BaseModel):
    """Point-in-time view of a delivery job."""

    id: str = Field(..., description="Job identifier")
    status: str = Field(..., description="Internal job status")
    total_items: int = Field(..., description="Items to deliver")
    processed_items: int = Field(default=0)
    succeeded_items: int = Field(default=0)
    failed_items: int = Field(default=0)
    duplicate_detected: bool = Field(
        default=False,
        description="True when every item was already present in Notion",
    )
    last_error: Optional[str] = Field(default=None, description="Most recent failure message")
    failed_item_details: List[FailedItemDetail] = Field(default_factory=list)
    created_at: Optional[str] = Field(default=None, description="Creation timestamp (ISO format)")
    started_at: Optional[str] = Field(default=None, description="Execution start timestamp")
    finished_at: Optional[str] = Field(default=None, description="Completion timestamp")

    @classmethod
    def from_job(cls, job: DeliveryJob) -> "DeliveryJobSnapshot":
        return cls(
            id=job.job_id,
            status=job.status.value,
            total_items=job.total_items,
            processed_items=job.processed_items,
            succeeded_items=job.succeeded_items,
            failed_items=job.failed_items,
            duplicate_detected=job.duplicate_detected,
            last_error=job.last_error,
            failed_item_details=[
                FailedItemDetail(**failure.to_dict()) for failure in job.failed_item_details
            ],
            created_at=job.created_at,
            started_at=job.started_at,
            finished_at=job.finished_at,
        )


class DeliveryStatusResponse(BaseModel):
    """Response for both enqueue and poll."""

    status: str = Field(..., description="Public delivery status")
    message: Optional[str] = Field(default=None, description="User-facing failure message")
    job: Optional[DeliveryJobSnapshot] = None


class ErrorResponse(BaseModel):
    message: str
