"""
Deal lifecycle event intake.

The CRM posts here whenever a deal changes stage, is archived or is
unarchived. Events are queued for the worker when ENQUEUE_EVENTS is set and
Redis is reachable; otherwise they are processed inline.
"""
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from dripline.config import settings
from dripline.dependencies.services import get_cancellation_controller
from dripline.dependencies.tenant import get_tenant_id
from dripline.models.base import as_utc, utcnow
from dripline.routes.jobs import JobResponse, job_to_response
from dripline.services.cancellation import CancellationController
from dripline.worker import enqueue_event


router = APIRouter(prefix="/api/v1/drips/events", tags=["drip-events"])


class StageChangeEventRequest(BaseModel):
    """A deal lifecycle event."""
    deal_id: str
    pipeline_id: str
    from_stage: str | None = None
    to_stage: str | None = None
    occurred_at: datetime | None = None
    kind: Literal["stage_changed", "archived", "unarchived"] = "stage_changed"


class StageChangeEventResponse(BaseModel):
    status: str
    cancelled_count: int = 0
    scheduled: list[JobResponse] = []


@router.post("/stage-change", response_model=StageChangeEventResponse)
async def stage_change(
    request: StageChangeEventRequest,
    response: Response,
    tenant_id: str = Depends(get_tenant_id),
    controller: CancellationController = Depends(get_cancellation_controller)
):
    """
    Apply a deal lifecycle event.

    stage_changed cancels the deal's pending jobs and schedules the new
    stage's sequence; archived cancels; unarchived changes nothing.
    """
    # Pin the entry time now so a queued or redelivered event keeps the same stage entry
    occurred_at = as_utc(request.occurred_at or utcnow())

    if settings.ENQUEUE_EVENTS:
        event = {
            "tenant_id": tenant_id,
            "deal_id": request.deal_id,
            "pipeline_id": request.pipeline_id,
            "from_stage": request.from_stage,
            "to_stage": request.to_stage,
            "occurred_at": occurred_at.isoformat(),
            "kind": request.kind,
        }
        if await enqueue_event("handle_stage_change_event", event):
            response.status_code = status.HTTP_202_ACCEPTED
            return StageChangeEventResponse(status="queued")

    result = await controller.handle_event(
        kind=request.kind,
        tenant_id=tenant_id,
        deal_id=request.deal_id,
        pipeline_id=request.pipeline_id,
        from_stage=request.from_stage,
        to_stage=request.to_stage,
        occurred_at=occurred_at,
    )
    return StageChangeEventResponse(
        status="processed",
        cancelled_count=result.cancelled_count,
        scheduled=[job_to_response(job) for job in result.scheduled],
    )
