"""
ARQ Background Worker for Dripline.

Runs the dispatch cycle on a cron schedule and processes stage-change
events enqueued by the API.
"""
import asyncio
from dataclasses import asdict
from datetime import datetime

import httpx
import structlog
from arq import cron, create_pool
from arq.connections import RedisSettings

from dripline.config import settings
from dripline.database import AsyncSessionLocal
from dripline.logging_config import configure_logging
from dripline.sentry_config import configure_sentry
from dripline.services.cancellation import CancellationController
from dripline.services.channels import CachedChannelConfigProvider, ChannelConfigCache
from dripline.services.collaborators import CrmChannelConfigProvider, CrmDealContextProvider
from dripline.services.dispatcher import Dispatcher
from dripline.services.job_store import JobStore
from dripline.services.materializer import JobMaterializer
from dripline.services.providers import PostmarkEmailSender, TwilioSmsSender

logger = structlog.get_logger()


async def startup(ctx: dict):
    """Build long-lived collaborators shared by every task in this worker."""
    configure_logging()
    configure_sentry()

    client = httpx.AsyncClient(timeout=settings.SEND_TIMEOUT_SECONDS)
    ctx["http_client"] = client
    ctx["channel_config_cache"] = ChannelConfigCache(settings.CHANNEL_CONFIG_TTL_SECONDS)
    ctx["channel_configs"] = CachedChannelConfigProvider(
        CrmChannelConfigProvider(client=client),
        ctx["channel_config_cache"],
    )
    ctx["deal_contexts"] = CrmDealContextProvider(client=client)
    ctx["email_sender"] = PostmarkEmailSender(client=client)
    ctx["sms_sender"] = TwilioSmsSender(client=client)
    logger.info("worker_started", redis=settings.REDIS_URL)


async def shutdown(ctx: dict):
    client = ctx.get("http_client")
    if client is not None:
        await client.aclose()
    logger.info("worker_stopped")


def _controller(db, ctx: dict) -> CancellationController:
    job_store = JobStore(db, atomic_claims=settings.ATOMIC_CLAIMS)
    materializer = JobMaterializer(db, ctx["deal_contexts"], job_store=job_store)
    return CancellationController(db, materializer, job_store=job_store)


async def dispatch_due_jobs(ctx: dict) -> dict:
    """Cron task: run one dispatch cycle."""
    async with AsyncSessionLocal() as db:
        dispatcher = Dispatcher(
            db,
            channel_configs=ctx["channel_configs"],
            email_sender=ctx["email_sender"],
            sms_sender=ctx["sms_sender"],
        )
        result = await dispatcher.run_cycle()
    return asdict(result)


async def handle_stage_change_event(ctx: dict, event: dict) -> dict:
    """
    Process a deal lifecycle event enqueued by the API.

    Args:
        event: tenant_id, deal_id, pipeline_id, from_stage, to_stage,
            occurred_at (ISO 8601 or None) and kind
    """
    occurred_at = event.get("occurred_at")
    if isinstance(occurred_at, str):
        occurred_at = datetime.fromisoformat(occurred_at)

    async with AsyncSessionLocal() as db:
        result = await _controller(db, ctx).handle_event(
            kind=event.get("kind", "stage_changed"),
            tenant_id=event["tenant_id"],
            deal_id=event["deal_id"],
            pipeline_id=event["pipeline_id"],
            from_stage=event.get("from_stage"),
            to_stage=event.get("to_stage"),
            occurred_at=occurred_at,
        )
    return {"cancelled_count": result.cancelled_count, "scheduled_count": len(result.scheduled)}


async def retrigger_sequence(ctx: dict, tenant_id: str, deal_id: str, pipeline_id: str, stage_id: str) -> dict:
    """Operator re-trigger of a stage's sequence for one deal."""
    async with AsyncSessionLocal() as db:
        result = await _controller(db, ctx).retrigger(tenant_id, deal_id, pipeline_id, stage_id)
    return {"cancelled_count": result.cancelled_count, "scheduled_count": len(result.scheduled)}


# Register functions for ARQ
ARQ_FUNCTIONS = [
    handle_stage_change_event,
    retrigger_sequence,
]


async def enqueue_event(function_name: str, *args) -> bool:
    """
    Enqueue a task for background processing using ARQ.

    Returns False when Redis is unavailable so the caller can process inline.
    """
    try:
        redis = await create_pool(RedisSettings.from_dsn(settings.REDIS_URL))
        await redis.enqueue_job(function_name, *args)
        await redis.close()
    except Exception as e:
        logger.error("enqueue_failed", function=function_name, error=str(e))
        return False

    logger.info("task_enqueued", function=function_name)
    return True


def _dispatch_seconds() -> set[int]:
    poll = max(1, min(settings.DISPATCH_POLL_SECONDS, 60))
    return set(range(0, 60, poll))


class WorkerSettings:
    """Settings for ARQ worker - use with 'arq dripline.worker.WorkerSettings'"""
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    job_timeout = 300
    max_tries = 3
    functions = ARQ_FUNCTIONS
    cron_jobs = [
        cron(dispatch_due_jobs, second=_dispatch_seconds(), unique=True, run_at_startup=True),
    ]
    on_startup = startup
    on_shutdown = shutdown


async def main():
    """Run the worker using arq cli."""
    print("Use: arq dripline.worker.WorkerSettings")
    print(f"Redis: {settings.REDIS_URL}")


if __name__ == "__main__":
    asyncio.run(main())
