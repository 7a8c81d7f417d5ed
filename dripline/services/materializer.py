"""
Job materializer: expands a stage's drip sequence into scheduled jobs.
"""
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dripline.errors import StepValidationError
from dripline.logging_config import get_logger
from dripline.models.base import as_utc
from dripline.models.job import DripJob
from dripline.models.sequence import DripSequence, DripStep
from dripline.routes.metrics import track_jobs_scheduled
from dripline.services.catalog_service import validate_step_content
from dripline.services.channels import DealContextProvider
from dripline.services.delays import compute_due_at
from dripline.services.job_store import JobStore
from dripline.services.rendering import DealContext, TemplateRenderer, normalize_phone

logger = structlog.get_logger()


def stage_entry_key(stage_id: str, entered_at: datetime) -> str:
    """Marker for one entry of a deal into a stage; identical for retried requests."""
    return f"{stage_id}@{entered_at.isoformat()}"


class JobMaterializer:
    """Turns a stage entry into pending drip jobs."""

    def __init__(
        self,
        db: AsyncSession,
        deal_contexts: DealContextProvider,
        renderer: TemplateRenderer | None = None,
        job_store: JobStore | None = None,
    ):
        self.db = db
        self.deal_contexts = deal_contexts
        self.renderer = renderer or TemplateRenderer()
        self.job_store = job_store or JobStore(db)

    async def find_sequence(self, tenant_id: str, pipeline_id: str, stage_id: str) -> DripSequence | None:
        stmt = select(DripSequence).where(
            DripSequence.tenant_id == tenant_id,
            DripSequence.pipeline_id == pipeline_id,
            DripSequence.stage_id == stage_id,
        ).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def materialize(
        self,
        tenant_id: str,
        deal_id: str,
        pipeline_id: str,
        stage_id: str,
        entered_at: datetime
    ) -> list[DripJob]:
        """
        Schedule one pending job per step of the stage's enabled sequence.

        A missing or disabled sequence is a soft no-op. Malformed steps are
        skipped individually. Calling this again for the same stage entry
        returns the jobs already scheduled instead of duplicating them.

        Args:
            tenant_id: Tenant owning the deal
            deal_id: Deal entering the stage
            pipeline_id: Pipeline of the stage
            stage_id: Stage being entered
            entered_at: Stage-entry timestamp

        Returns:
            Jobs scheduled for this stage entry
        """
        log = get_logger(tenant_id=tenant_id, deal_id=deal_id, pipeline_id=pipeline_id, stage_id=stage_id)

        sequence = await self.find_sequence(tenant_id, pipeline_id, stage_id)
        if sequence is None:
            log.info("materialize_skipped", reason="no sequence")
            return []
        if not sequence.is_enabled:
            log.info("materialize_skipped", reason="sequence disabled", sequence_id=sequence.id)
            return []

        context = await self.deal_contexts.get_deal_context(tenant_id, deal_id)
        if context is None:
            context = DealContext(tenant_id=tenant_id, deal_id=deal_id)
        if context.drips_disabled:
            log.info("materialize_skipped", reason="drips disabled for deal")
            return []

        entered_at = as_utc(entered_at)
        entry_key = stage_entry_key(stage_id, entered_at)
        blocked = await self.job_store.blocking_step_ids(tenant_id, deal_id, entry_key)
        variables = {**context.variables, "deal_stage": stage_id}

        jobs = []
        created = 0
        for step in sorted(sequence.steps, key=lambda s: s.position):
            try:
                due_at = compute_due_at(entered_at, step.delay_type, step.delay_value, step.delay_unit)
                validate_step_content(step.channel, step.email_subject, step.email_body, step.sms_body)
            except StepValidationError as e:
                log.warning("step_skipped_invalid", step_id=step.id, position=step.position, error=e.message)
                continue

            if step.id in blocked:
                existing = await self._existing_job(tenant_id, deal_id, step.id, entry_key)
                if existing is not None:
                    jobs.append(existing)
                continue

            job = await self.job_store.insert_pending(
                self._build_job(tenant_id, deal_id, stage_id, entry_key, sequence, step, due_at, context, variables)
            )
            if job is None:
                existing = await self._existing_job(tenant_id, deal_id, step.id, entry_key)
                if existing is not None:
                    jobs.append(existing)
                continue
            jobs.append(job)
            created += 1

        track_jobs_scheduled(tenant_id, created)
        log.info("jobs_materialized", sequence_id=sequence.id, entry=entry_key, created=created, total=len(jobs))
        return jobs

    def _build_job(
        self,
        tenant_id: str,
        deal_id: str,
        stage_id: str,
        entry_key: str,
        sequence: DripSequence,
        step: DripStep,
        due_at: datetime,
        context: DealContext,
        variables: dict[str, str]
    ) -> DripJob:
        email = None
        if step.channel.wants_email:
            email = self.renderer.render({"subject": step.email_subject, "body": step.email_body}, variables)
        sms = None
        if step.channel.wants_sms:
            sms = self.renderer.render({"body": step.sms_body}, variables)

        return DripJob(
            tenant_id=tenant_id,
            deal_id=deal_id,
            sequence_id=sequence.id,
            step_id=step.id,
            stage_id=stage_id,
            stage_entry_key=entry_key,
            position=step.position,
            channel=step.channel,
            email_subject=email.subject if email else None,
            email_body=email.body if email else None,
            sms_body=sms.body if sms else None,
            recipient_email=(context.email or "").strip() or None,
            recipient_phone=normalize_phone(context.phone) or None,
            due_at=due_at,
        )

    async def _existing_job(self, tenant_id: str, deal_id: str, step_id: str, entry_key: str) -> DripJob | None:
        stmt = (
            select(DripJob)
            .where(
                DripJob.tenant_id == tenant_id,
                DripJob.deal_id == deal_id,
                DripJob.step_id == step_id,
                DripJob.stage_entry_key == entry_key,
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()
