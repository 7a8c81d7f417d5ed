"""
Cancellation controller: reacts to deal lifecycle events.

Cancellation is best-effort up to the send boundary. Jobs already claimed
by a dispatcher finish; only pending jobs are cancelled.
"""
from dataclasses import dataclass, field
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from dripline.errors import CatalogValidationError
from dripline.models.base import as_utc, utcnow
from dripline.models.job import DripJob
from dripline.routes.metrics import track_jobs_cancelled
from dripline.services.job_store import JobStore
from dripline.services.materializer import JobMaterializer, stage_entry_key

logger = structlog.get_logger()

REASON_STAGE_CHANGED = "stage changed"
REASON_DEAL_ARCHIVED = "deal archived"
REASON_MANUAL = "manual cancel"
REASON_RETRIGGER = "retriggered"

# Metric labels; operator-supplied reasons all count as "manual"
REASON_LABELS = {
    REASON_STAGE_CHANGED: "stage_changed",
    REASON_DEAL_ARCHIVED: "deal_archived",
    REASON_RETRIGGER: "retriggered",
}
REASON_LABEL_MANUAL = "manual"

EVENT_STAGE_CHANGED = "stage_changed"
EVENT_ARCHIVED = "archived"
EVENT_UNARCHIVED = "unarchived"


@dataclass
class StageChangeResult:
    cancelled_count: int = 0
    scheduled: list[DripJob] = field(default_factory=list)


class CancellationController:
    """Cancels and re-materializes a deal's jobs as it moves through stages."""

    def __init__(self, db: AsyncSession, materializer: JobMaterializer, job_store: JobStore | None = None):
        self.db = db
        self.materializer = materializer
        self.job_store = job_store or materializer.job_store

    async def _cancel(self, tenant_id: str, deal_id: str, reason: str, keep_entry_key: str | None = None) -> int:
        cancelled = await self.job_store.cancel_pending_for_deal(
            tenant_id, deal_id, reason, keep_entry_key=keep_entry_key
        )
        track_jobs_cancelled(REASON_LABELS.get(reason, REASON_LABEL_MANUAL), cancelled)
        logger.info("jobs_cancelled", tenant_id=tenant_id, deal_id=deal_id, reason=reason, count=cancelled)
        return cancelled

    async def on_deal_stage_changed(
        self,
        tenant_id: str,
        deal_id: str,
        pipeline_id: str,
        old_stage: str | None,
        new_stage: str,
        occurred_at: datetime | None = None
    ) -> StageChangeResult:
        """
        Cancel the deal's pending jobs, then schedule the new stage's sequence.

        A stage change that lands on the same stage is ignored.

        Args:
            tenant_id: Tenant owning the deal
            deal_id: Deal that moved
            pipeline_id: Pipeline of the new stage
            old_stage: Stage the deal left (None for a new deal)
            new_stage: Stage the deal entered
            occurred_at: When the deal entered the new stage

        Returns:
            StageChangeResult with the cancelled count and newly scheduled jobs
        """
        if old_stage == new_stage:
            logger.info("stage_change_ignored", deal_id=deal_id, stage_id=new_stage, reason="same stage")
            return StageChangeResult()

        entered_at = as_utc(occurred_at or utcnow())
        cancelled = await self._cancel(
            tenant_id, deal_id, REASON_STAGE_CHANGED, keep_entry_key=stage_entry_key(new_stage, entered_at)
        )
        scheduled = await self.materializer.materialize(tenant_id, deal_id, pipeline_id, new_stage, entered_at)
        return StageChangeResult(cancelled_count=cancelled, scheduled=scheduled)

    async def on_deal_archived(self, tenant_id: str, deal_id: str) -> StageChangeResult:
        """Cancel every pending job of an archived deal."""
        return StageChangeResult(cancelled_count=await self._cancel(tenant_id, deal_id, REASON_DEAL_ARCHIVED))

    async def on_deal_unarchived(self, tenant_id: str, deal_id: str) -> StageChangeResult:
        # Cancelled jobs stay cancelled; the next stage change schedules afresh.
        logger.info("deal_unarchived", tenant_id=tenant_id, deal_id=deal_id)
        return StageChangeResult()

    async def cancel_all_for_deal(self, tenant_id: str, deal_id: str, reason: str = REASON_MANUAL) -> int:
        """Operator cleanup, e.g. for a deleted deal."""
        return await self._cancel(tenant_id, deal_id, reason)

    async def handle_event(
        self,
        kind: str,
        tenant_id: str,
        deal_id: str,
        pipeline_id: str,
        from_stage: str | None,
        to_stage: str | None,
        occurred_at: datetime | None = None
    ) -> StageChangeResult:
        """Route a deal lifecycle event (stage_changed, archived, unarchived)."""
        if kind == EVENT_ARCHIVED:
            return await self.on_deal_archived(tenant_id, deal_id)
        if kind == EVENT_UNARCHIVED:
            return await self.on_deal_unarchived(tenant_id, deal_id)
        if kind == EVENT_STAGE_CHANGED:
            if not to_stage:
                raise CatalogValidationError("stage_changed events require to_stage")
            return await self.on_deal_stage_changed(
                tenant_id, deal_id, pipeline_id, from_stage, to_stage, occurred_at
            )
        raise CatalogValidationError(f"Unknown event kind: {kind}")

    async def retrigger(
        self,
        tenant_id: str,
        deal_id: str,
        pipeline_id: str,
        stage_id: str,
        now: datetime | None = None
    ) -> StageChangeResult:
        """
        Restart the stage's sequence for a deal as if it had just entered the stage.

        Pending jobs are cancelled first; the new entry gets its own key so
        steps sent for the previous entry are scheduled again.
        """
        cancelled = await self._cancel(tenant_id, deal_id, REASON_RETRIGGER)
        scheduled = await self.materializer.materialize(tenant_id, deal_id, pipeline_id, stage_id, now or utcnow())
        return StageChangeResult(cancelled_count=cancelled, scheduled=scheduled)
