"""
Operator routes for drip jobs.

Provides endpoints for inspecting a deal's jobs, listing failures,
cancelling pending jobs and re-triggering a stage's sequence.
"""
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from dripline.dependencies.services import get_cancellation_controller, get_job_store
from dripline.dependencies.tenant import get_tenant_id
from dripline.errors import CatalogValidationError
from dripline.models.job import DripJob, JobStatus
from dripline.services.cancellation import REASON_MANUAL, CancellationController
from dripline.services.job_store import JobStore


router = APIRouter(prefix="/api/v1/drips", tags=["drip-jobs"])


class JobResponse(BaseModel):
    """Response model for a drip job."""
    id: str
    tenant_id: str
    deal_id: str
    sequence_id: str | None = None
    step_id: str | None = None
    stage_id: str
    position: int
    channel: str
    status: str
    due_at: str
    email_subject: str | None = None
    sms_body: str | None = None
    recipient_email: str | None = None
    recipient_phone: str | None = None
    sent_at: str | None = None
    last_error: str | None = None
    created_at: str | None = None


class CancelRequest(BaseModel):
    reason: str = REASON_MANUAL


class CancelResponse(BaseModel):
    deal_id: str
    cancelled_count: int


class RetriggerRequest(BaseModel):
    pipeline_id: str
    stage_id: str


class RetriggerResponse(BaseModel):
    deal_id: str
    cancelled_count: int
    scheduled: list[JobResponse]


def job_to_response(job: DripJob) -> JobResponse:
    """Convert DripJob model to JobResponse."""
    return JobResponse(
        id=job.id,
        tenant_id=job.tenant_id,
        deal_id=job.deal_id,
        sequence_id=job.sequence_id,
        step_id=job.step_id,
        stage_id=job.stage_id,
        position=job.position,
        channel=job.channel.value,
        status=job.status.value,
        due_at=job.due_at.isoformat(),
        email_subject=job.email_subject,
        sms_body=job.sms_body,
        recipient_email=job.recipient_email,
        recipient_phone=job.recipient_phone,
        sent_at=job.sent_at.isoformat() if job.sent_at else None,
        last_error=job.last_error,
        created_at=job.created_at.isoformat() if job.created_at else None,
    )


@router.get("/deals/{deal_id}/jobs", response_model=list[JobResponse])
async def list_deal_jobs(
    deal_id: str,
    status: str | None = None,
    tenant_id: str = Depends(get_tenant_id),
    job_store: JobStore = Depends(get_job_store)
):
    """List a deal's jobs in send order, optionally filtered by status."""
    status_filter = None
    if status:
        try:
            status_filter = JobStatus(status)
        except ValueError:
            raise CatalogValidationError(f"Unknown job status: {status}")
    jobs = await job_store.list_jobs_for_deal(tenant_id, deal_id, status_filter)
    return [job_to_response(job) for job in jobs]


@router.get("/jobs/failed", response_model=list[JobResponse])
async def list_failed_jobs(
    limit: int = Query(default=50, ge=1, le=500),
    tenant_id: str = Depends(get_tenant_id),
    job_store: JobStore = Depends(get_job_store)
):
    """Recent failed jobs with their recorded reasons."""
    jobs = await job_store.list_failed_jobs(tenant_id, limit)
    return [job_to_response(job) for job in jobs]


@router.post("/deals/{deal_id}/cancel", response_model=CancelResponse)
async def cancel_deal_jobs(
    deal_id: str,
    request: CancelRequest | None = None,
    tenant_id: str = Depends(get_tenant_id),
    controller: CancellationController = Depends(get_cancellation_controller)
):
    """Cancel every pending job of a deal. Jobs already being sent are not interrupted."""
    reason = request.reason if request else REASON_MANUAL
    cancelled = await controller.cancel_all_for_deal(tenant_id, deal_id, reason)
    return CancelResponse(deal_id=deal_id, cancelled_count=cancelled)


@router.post("/deals/{deal_id}/retrigger", response_model=RetriggerResponse)
async def retrigger_deal_sequence(
    deal_id: str,
    request: RetriggerRequest,
    tenant_id: str = Depends(get_tenant_id),
    controller: CancellationController = Depends(get_cancellation_controller)
):
    """
    Restart a stage's sequence for a deal.

    This is the manual retry path for failed deliveries: pending jobs are
    cancelled and the sequence is scheduled again from now.
    """
    result = await controller.retrigger(tenant_id, deal_id, request.pipeline_id, request.stage_id)
    return RetriggerResponse(
        deal_id=deal_id,
        cancelled_count=result.cancelled_count,
        scheduled=[job_to_response(job) for job in result.scheduled],
    )
