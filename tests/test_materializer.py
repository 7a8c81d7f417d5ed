"""
Materializing stage entries into scheduled jobs.
"""
from datetime import timedelta

import pytest

from conftest import DEAL_ID, PIPELINE_ID, T0, TENANT_ID
from dripline.models.job import DripJob, JobStatus
from dripline.models.sequence import Channel, DripStep
from dripline.services.catalog_service import CatalogService
from dripline.services.materializer import stage_entry_key


@pytest.mark.asyncio
async def test_cold_leads_schedules_one_job_per_step(materializer, cold_leads):
    jobs = await materializer.materialize(TENANT_ID, DEAL_ID, PIPELINE_ID, "cold_leads", T0)

    assert [(job.position, job.channel, job.due_at, job.status) for job in jobs] == [
        (1, Channel.EMAIL, T0, JobStatus.PENDING),
        (2, Channel.SMS, T0 + timedelta(days=2), JobStatus.PENDING),
    ]
    email, sms = jobs
    assert email.email_subject == "Hi Jane"
    assert email.email_body == "Thanks for contacting Paint Pros."
    assert email.recipient_email == "jane@example.com"
    assert sms.sms_body == "Jane, still keen on an estimate?"
    assert sms.recipient_phone == "+15551234567"
    assert {job.stage_entry_key for job in jobs} == {stage_entry_key("cold_leads", T0)}


@pytest.mark.asyncio
async def test_materialize_is_idempotent_per_stage_entry(materializer, job_store, cold_leads):
    first = await materializer.materialize(TENANT_ID, DEAL_ID, PIPELINE_ID, "cold_leads", T0)
    second = await materializer.materialize(TENANT_ID, DEAL_ID, PIPELINE_ID, "cold_leads", T0)

    assert [job.id for job in second] == [job.id for job in first]
    assert len(await job_store.list_jobs_for_deal(TENANT_ID, DEAL_ID)) == 2


@pytest.mark.asyncio
async def test_live_jobs_block_a_second_entry(materializer, job_store, cold_leads):
    await materializer.materialize(TENANT_ID, DEAL_ID, PIPELINE_ID, "cold_leads", T0)

    later = await materializer.materialize(TENANT_ID, DEAL_ID, PIPELINE_ID, "cold_leads", T0 + timedelta(hours=1))

    assert later == []
    assert len(await job_store.list_jobs_for_deal(TENANT_ID, DEAL_ID)) == 2


@pytest.mark.asyncio
async def test_missing_or_disabled_sequence_is_a_no_op(db, materializer, cold_leads):
    assert await materializer.materialize(TENANT_ID, DEAL_ID, PIPELINE_ID, "estimate_scheduled", T0) == []

    await CatalogService(db).update_sequence(cold_leads.id, is_enabled=False)
    assert await materializer.materialize(TENANT_ID, DEAL_ID, PIPELINE_ID, "cold_leads", T0) == []


@pytest.mark.asyncio
async def test_deal_with_drips_disabled_gets_nothing(materializer, deal_contexts, cold_leads):
    deal_contexts.add("deal-quiet", drips_disabled=True)
    assert await materializer.materialize(TENANT_ID, "deal-quiet", PIPELINE_ID, "cold_leads", T0) == []


@pytest.mark.asyncio
async def test_malformed_step_is_skipped(db, materializer, cold_leads):
    # Corrupt the stored SMS step behind the catalog's back
    step = await db.get(DripStep, cold_leads.steps[1].id)
    step.sms_body = ""
    await db.commit()

    jobs = await materializer.materialize(TENANT_ID, DEAL_ID, PIPELINE_ID, "cold_leads", T0)

    assert [job.position for job in jobs] == [1]


@pytest.mark.asyncio
async def test_catalog_edits_do_not_touch_queued_jobs(db, materializer, cold_leads):
    jobs = await materializer.materialize(TENANT_ID, DEAL_ID, PIPELINE_ID, "cold_leads", T0)

    await CatalogService(db).update_step(cold_leads.steps[0].id, email_subject="Changed")

    stored = await db.get(DripJob, jobs[0].id, populate_existing=True)
    assert stored.email_subject == "Hi Jane"
