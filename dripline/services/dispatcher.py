"""
Dispatcher: claims due drip jobs and delivers them.

One cycle = expire stale claims, claim a batch, send, record outcomes.
Deals are sent concurrently; jobs of the same deal go out one after the
other in due order. A failing job never affects its siblings.
"""
import asyncio
import itertools
import time
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from dripline.config import settings
from dripline.errors import ConfigurationError, DeliveryError
from dripline.logging_config import get_logger
from dripline.models.base import utcnow
from dripline.models.job import DripJob
from dripline.routes.metrics import track_dispatch_cycle, track_job_failed, track_job_sent
from dripline.sentry_config import capture_exception
from dripline.services.channels import (
    ChannelConfig,
    ChannelConfigProvider,
    DeliveryOutcome,
    EmailSender,
    SmsSender,
)
from dripline.services.job_store import JobStore

logger = structlog.get_logger()

EMAIL_NOT_CONFIGURED = "email not configured"
SMS_NOT_CONFIGURED = "sms not configured"
RECIPIENT_EMAIL_MISSING = "recipient email missing"
RECIPIENT_PHONE_MISSING = "recipient phone missing"


@dataclass
class DispatchCycleResult:
    """
    Per-cycle counts.

    A cycle never cancels jobs. Cancellations are counted per operation in
    StageChangeResult.cancelled_count and in drip_jobs_cancelled_total.
    """
    claimed: int = 0
    sent_count: int = 0
    failed_count: int = 0
    partial_count: int = 0
    expired_claims: int = 0


def failure_reason(outcome: DeliveryOutcome) -> str:
    """Single-channel failures keep the bare reason; multi-channel ones are prefixed per channel."""
    if len(outcome.errors) == 1:
        return next(iter(outcome.errors.values()))
    return outcome.error_summary() or "delivery failed"


class Dispatcher:
    """Runs dispatch cycles against the job store."""

    def __init__(
        self,
        db: AsyncSession,
        channel_configs: ChannelConfigProvider,
        email_sender: EmailSender,
        sms_sender: SmsSender,
        job_store: JobStore | None = None,
        batch_size: int | None = None,
        concurrency: int | None = None,
        send_timeout: float | None = None,
        claim_lease_seconds: int | None = None,
    ):
        self.db = db
        self.channel_configs = channel_configs
        self.email_sender = email_sender
        self.sms_sender = sms_sender
        self.job_store = job_store or JobStore(db, atomic_claims=settings.ATOMIC_CLAIMS)
        self.batch_size = batch_size or settings.DISPATCH_BATCH_SIZE
        self.concurrency = concurrency or settings.DISPATCH_CONCURRENCY
        self.send_timeout = send_timeout or settings.SEND_TIMEOUT_SECONDS
        self.claim_lease_seconds = claim_lease_seconds or settings.CLAIM_LEASE_SECONDS

    async def run_cycle(self, now: datetime | None = None) -> DispatchCycleResult:
        """
        Run one dispatch cycle.

        Args:
            now: Reference time (defaults to current UTC time)

        Returns:
            Counts of claimed, sent, failed and partially delivered jobs
        """
        started = time.perf_counter()
        now = now or utcnow()
        result = DispatchCycleResult()

        result.expired_claims = await self.job_store.expire_stale_claims(
            now - timedelta(seconds=self.claim_lease_seconds)
        )
        if result.expired_claims:
            logger.warning("stale_claims_expired", count=result.expired_claims)

        jobs = await self.job_store.claim_due_batch(self.batch_size, now)
        result.claimed = len(jobs)
        if not jobs:
            track_dispatch_cycle(time.perf_counter() - started)
            return result

        semaphore = asyncio.Semaphore(self.concurrency)
        by_deal = [list(group) for _, group in itertools.groupby(jobs, key=lambda job: job.deal_id)]
        grouped = await asyncio.gather(*(self._deliver_deal(deal_jobs, semaphore) for deal_jobs in by_deal))

        # Outcome writes share one session, so they run after all sends finish
        for job, outcome in itertools.chain.from_iterable(grouped):
            await self._record(job, outcome, result)

        duration = time.perf_counter() - started
        track_dispatch_cycle(duration)
        logger.info(
            "dispatch_cycle_complete",
            claimed=result.claimed,
            sent=result.sent_count,
            failed=result.failed_count,
            partial=result.partial_count,
            duration_ms=round(duration * 1000, 2),
        )
        return result

    async def _deliver_deal(self, jobs: list[DripJob], semaphore: asyncio.Semaphore) -> list[tuple[DripJob, DeliveryOutcome]]:
        results = []
        for job in jobs:
            async with semaphore:
                results.append((job, await self._deliver_safely(job)))
        return results

    async def _deliver_safely(self, job: DripJob) -> DeliveryOutcome:
        try:
            return await self.deliver(job)
        except Exception as e:
            logger.error("dispatch_job_error", job_id=job.id, deal_id=job.deal_id, error=str(e), exc_info=True)
            try:
                capture_exception()
            except Exception as capture_error:
                logger.warning("sentry_capture_failed", job_id=job.id, error=str(capture_error))
            outcome = DeliveryOutcome()
            outcome.record_failure(job.channel.value, f"unexpected error: {e}")
            return outcome

    async def deliver(self, job: DripJob) -> DeliveryOutcome:
        """Attempt every channel of a claimed job. Never raises for delivery problems."""
        outcome = DeliveryOutcome()
        try:
            config = await self.channel_configs.get_channel_config(job.tenant_id)
        except ConfigurationError as e:
            for channel in self._channels(job):
                outcome.record_failure(channel, e.message)
            return outcome

        if job.channel.wants_email:
            await self._send_email(job, config, outcome)
        if job.channel.wants_sms:
            await self._send_sms(job, config, outcome)
        return outcome

    @staticmethod
    def _channels(job: DripJob) -> list[str]:
        channels = []
        if job.channel.wants_email:
            channels.append("email")
        if job.channel.wants_sms:
            channels.append("sms")
        return channels

    async def _send_email(self, job: DripJob, config: ChannelConfig, outcome: DeliveryOutcome):
        if config.email_identity is None:
            outcome.record_failure("email", EMAIL_NOT_CONFIGURED)
            return
        if not job.recipient_email:
            outcome.record_failure("email", RECIPIENT_EMAIL_MISSING)
            return
        await self._attempt(
            "email",
            outcome,
            self.email_sender.send_email(config.email_identity, job.recipient_email, job.email_subject, job.email_body),
        )

    async def _send_sms(self, job: DripJob, config: ChannelConfig, outcome: DeliveryOutcome):
        if config.sms_identity is None:
            outcome.record_failure("sms", SMS_NOT_CONFIGURED)
            return
        if not job.recipient_phone:
            outcome.record_failure("sms", RECIPIENT_PHONE_MISSING)
            return
        await self._attempt(
            "sms",
            outcome,
            self.sms_sender.send_sms(config.sms_identity, job.recipient_phone, job.sms_body),
        )

    async def _attempt(self, channel: str, outcome: DeliveryOutcome, send):
        try:
            provider_id = await asyncio.wait_for(send, timeout=self.send_timeout)
        except asyncio.TimeoutError:
            outcome.record_failure(channel, f"{channel} send timed out", transient=True)
        except DeliveryError as e:
            outcome.record_failure(channel, e.message, transient=e.transient)
        else:
            outcome.record_success(channel, provider_id)

    async def _record(self, job: DripJob, outcome: DeliveryOutcome, result: DispatchCycleResult):
        log = get_logger(job_id=job.id, tenant_id=job.tenant_id, deal_id=job.deal_id, channel=job.channel.value)

        if outcome.fulfilled:
            if await self.job_store.mark_sent(job.id, outcome):
                result.sent_count += 1
                track_job_sent(job.tenant_id, job.channel.value)
                if outcome.partial:
                    result.partial_count += 1
                    log.warning("job_sent_partially", errors=outcome.errors)
                else:
                    log.info("job_sent", provider_ids=outcome.provider_ids)
            else:
                log.warning("job_outcome_dropped", reason="already terminal")
            return

        reason = failure_reason(outcome)
        if await self.job_store.mark_failed(job.id, reason, outcome):
            result.failed_count += 1
            track_job_failed(job.tenant_id, job.channel.value)
            log.warning("job_failed", reason=reason, transient=outcome.transient)
        else:
            log.warning("job_outcome_dropped", reason="already terminal")
