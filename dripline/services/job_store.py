"""
Job store: the single source of truth for drip job state.

Every transition is a status-guarded write ("only if still pending/claimed"),
so duplicate dispatches and cancellation races can never move a job out of
a terminal state.

SECURITY: All deal-scoped queries MUST include tenant_id filter.
"""
import uuid
from datetime import datetime

import structlog
from sqlalchemy import select, update, or_, and_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from dripline.models.base import utcnow
from dripline.models.job import DripJob, JobStatus, LIVE_STATUSES
from dripline.services.channels import DeliveryOutcome

logger = structlog.get_logger()

CLAIM_LEASE_EXPIRED = "claim lease expired"


class JobStore:
    """Service for reading and transitioning drip jobs."""

    def __init__(self, db: AsyncSession, atomic_claims: bool = True):
        self.db = db
        self.atomic_claims = atomic_claims

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(DripJob)
        if dialect == "sqlite":
            return sqlite_insert(DripJob)
        raise NotImplementedError(f"Idempotent insert not supported for dialect {dialect}")

    async def insert_pending(self, job: DripJob) -> DripJob | None:
        """
        Insert a pending job unless an equivalent one already exists.

        Conflicts on (deal, step, stage entry) or on the live-job-per-step
        index are swallowed by ON CONFLICT DO NOTHING.

        Args:
            job: Transient DripJob carrying the snapshot

        Returns:
            The stored job, or None if the insert was a duplicate
        """
        job.id = job.id or str(uuid.uuid4())
        now = utcnow()
        values = {
            column.key: getattr(job, column.key)
            for column in DripJob.__table__.columns
            if getattr(job, column.key) is not None
        }
        values["status"] = JobStatus.PENDING
        values.setdefault("created_at", now)
        values.setdefault("updated_at", now)

        stmt = self._insert().values(**values).on_conflict_do_nothing()
        await self.db.execute(stmt)
        await self.db.commit()
        return await self.get_job(job.id)

    async def claim_due_batch(self, limit: int, now: datetime | None = None) -> list[DripJob]:
        """
        Atomically claim up to `limit` pending jobs that are due.

        Concurrent callers never receive the same job. A caller that loses a
        race simply gets fewer (or zero) rows.

        Args:
            limit: Maximum number of jobs to claim
            now: Reference time (defaults to current UTC time)

        Returns:
            Claimed jobs ordered by deal and due time
        """
        now = now or utcnow()
        token = str(uuid.uuid4())

        candidates = (
            select(DripJob.id)
            .where(DripJob.status == JobStatus.PENDING, DripJob.due_at <= now)
            .order_by(DripJob.due_at)
            .limit(limit)
        )

        if self.atomic_claims:
            stmt = (
                update(DripJob)
                .where(
                    DripJob.id.in_(candidates.with_for_update(skip_locked=True)),
                    DripJob.status == JobStatus.PENDING,
                )
                .values(status=JobStatus.CLAIMED, claim_token=token, claimed_at=now)
                .execution_options(synchronize_session=False)
            )
            await self.db.execute(stmt)
        else:
            # Degraded path: compare-and-swap each candidate row individually
            logger.info("claim_fallback_cas", limit=limit)
            result = await self.db.execute(candidates)
            for job_id in result.scalars().all():
                await self.db.execute(
                    update(DripJob)
                    .where(DripJob.id == job_id, DripJob.status == JobStatus.PENDING)
                    .values(status=JobStatus.CLAIMED, claim_token=token, claimed_at=now)
                    .execution_options(synchronize_session=False)
                )

        await self.db.commit()

        stmt = (
            select(DripJob)
            .where(DripJob.claim_token == token, DripJob.status == JobStatus.CLAIMED)
            .order_by(DripJob.deal_id, DripJob.due_at, DripJob.position)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _transition(self, job_id: str, status: JobStatus, **values) -> bool:
        stmt = (
            update(DripJob)
            .where(DripJob.id == job_id, DripJob.status.in_(LIVE_STATUSES))
            .values(status=status, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount == 1

    async def mark_sent(self, job_id: str, outcome: DeliveryOutcome | None = None) -> bool:
        """
        Mark a job as SENT.

        Returns:
            True if transitioned, False if the job was already terminal
        """
        return await self._transition(
            job_id,
            JobStatus.SENT,
            sent_at=utcnow(),
            last_error=outcome.error_summary() if outcome else None,
            delivery_detail=outcome.to_json() if outcome else None,
        )

    async def mark_failed(self, job_id: str, error: str, outcome: DeliveryOutcome | None = None) -> bool:
        """
        Mark a job as FAILED with a reason. Failed jobs are never retried automatically.

        Returns:
            True if transitioned, False if the job was already terminal
        """
        return await self._transition(
            job_id,
            JobStatus.FAILED,
            last_error=error,
            delivery_detail=outcome.to_json() if outcome else None,
        )

    async def cancel_pending_for_deal(
        self,
        tenant_id: str,
        deal_id: str,
        reason: str,
        keep_entry_key: str | None = None
    ) -> int:
        """
        Cancel every pending job of a deal within a tenant.

        Claimed jobs are mid-dispatch and are left to finish.

        Args:
            tenant_id: Tenant owning the deal
            deal_id: Deal whose jobs are cancelled
            reason: Recorded on each cancelled job
            keep_entry_key: Jobs of this stage entry are left pending, so a
                redelivered stage-change event does not cancel its own jobs

        Returns:
            Number of jobs cancelled
        """
        stmt = (
            update(DripJob)
            .where(
                DripJob.tenant_id == tenant_id,
                DripJob.deal_id == deal_id,
                DripJob.status == JobStatus.PENDING,
            )
            .values(status=JobStatus.CANCELLED, last_error=reason)
            .execution_options(synchronize_session=False)
        )
        if keep_entry_key is not None:
            stmt = stmt.where(DripJob.stage_entry_key != keep_entry_key)
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount

    async def expire_stale_claims(self, older_than: datetime) -> int:
        """Fail claims whose lease ran out (crashed dispatcher). They are not resent."""
        stmt = (
            update(DripJob)
            .where(DripJob.status == JobStatus.CLAIMED, DripJob.claimed_at < older_than)
            .values(status=JobStatus.FAILED, last_error=CLAIM_LEASE_EXPIRED)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount

    async def blocking_step_ids(self, tenant_id: str, deal_id: str, stage_entry_key: str) -> set[str]:
        """
        Step ids that must not be materialized again for this deal.

        A step is blocked while it has a live job for the deal, or once it
        was sent for the same stage entry.
        """
        stmt = select(DripJob.step_id).where(
            DripJob.tenant_id == tenant_id,
            DripJob.deal_id == deal_id,
            DripJob.step_id.is_not(None),
            or_(
                DripJob.status.in_(LIVE_STATUSES),
                and_(
                    DripJob.status == JobStatus.SENT,
                    DripJob.stage_entry_key == stage_entry_key,
                ),
            ),
        )
        result = await self.db.execute(stmt)
        return set(result.scalars().all())

    async def get_job(self, job_id: str) -> DripJob | None:
        """Get job by ID."""
        stmt = (
            select(DripJob)
            .where(DripJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_jobs_for_deal(
        self,
        tenant_id: str,
        deal_id: str,
        status: JobStatus | None = None
    ) -> list[DripJob]:
        """Get a deal's jobs within a tenant, in send order."""
        stmt = select(DripJob).where(DripJob.tenant_id == tenant_id, DripJob.deal_id == deal_id)
        if status is not None:
            stmt = stmt.where(DripJob.status == status)
        stmt = stmt.order_by(DripJob.due_at, DripJob.position).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_failed_jobs(self, tenant_id: str, limit: int = 50) -> list[DripJob]:
        """Get the most recent failed jobs for a tenant with their recorded reasons."""
        stmt = (
            select(DripJob)
            .where(DripJob.tenant_id == tenant_id, DripJob.status == JobStatus.FAILED)
            .order_by(DripJob.updated_at.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
