"""
Sequence catalog: authoring validation, reorder atomicity, defaults.
"""
import pytest

from conftest import PIPELINE_ID, TENANT_ID
from dripline.errors import CatalogValidationError, NotFoundError, StepValidationError
from dripline.services.catalog_service import CatalogService, validate_step_content
from dripline.services.defaults import DEFAULT_DRIP_SEQUENCES


EMAIL_STEP = {
    "delay_type": "after",
    "delay_value": 1,
    "delay_unit": "days",
    "channel": "email",
    "email_subject": "Checking in",
    "email_body": "Any questions?",
}


def test_validate_step_content_requires_channel_fields():
    with pytest.raises(StepValidationError):
        validate_step_content("email", "Subject", "", None)
    with pytest.raises(StepValidationError):
        validate_step_content("sms", None, None, "   ")
    with pytest.raises(StepValidationError):
        validate_step_content("both", "Subject", "Body", None)
    with pytest.raises(StepValidationError):
        validate_step_content("fax", None, None, None)

    assert validate_step_content("both", "Subject", "Body", "Text").value == "both"


@pytest.mark.asyncio
async def test_one_sequence_per_stage(db):
    catalog = CatalogService(db)
    await catalog.create_sequence(TENANT_ID, PIPELINE_ID, "cold_leads", "Cold leads")

    with pytest.raises(CatalogValidationError):
        await catalog.create_sequence(TENANT_ID, PIPELINE_ID, "cold_leads", "Again")

    # Same stage for another tenant is fine
    other = await catalog.create_sequence("tenant-2", PIPELINE_ID, "cold_leads", "Theirs")
    assert other.is_enabled is False


@pytest.mark.asyncio
async def test_add_step_appends_and_rejects_invalid(db, cold_leads):
    catalog = CatalogService(db)

    sequence = await catalog.add_step(cold_leads.id, **EMAIL_STEP)
    assert [step.position for step in sequence.steps] == [1, 2, 3]

    with pytest.raises(StepValidationError):
        await catalog.add_step(cold_leads.id, **{**EMAIL_STEP, "delay_value": 0})
    with pytest.raises(CatalogValidationError):
        await catalog.add_step(cold_leads.id, position=2, **EMAIL_STEP)

    sequence = await catalog.get_sequence(cold_leads.id)
    assert len(sequence.steps) == 3


@pytest.mark.asyncio
async def test_update_step_validates_merged_fields(db, cold_leads):
    catalog = CatalogService(db)
    sms_step = cold_leads.steps[1]

    # Switching to email without a subject/body is rejected
    with pytest.raises(StepValidationError):
        await catalog.update_step(sms_step.id, channel="email")

    sequence = await catalog.update_step(sms_step.id, delay_value=5, delay_unit="hours")
    updated = sequence.steps[1]
    assert updated.delay_value == 5
    assert updated.delay_unit.value == "hours"
    assert updated.sms_body == "{{ first_name }}, still keen on an estimate?"


@pytest.mark.asyncio
async def test_reorder_rewrites_positions(db, cold_leads):
    catalog = CatalogService(db)
    sequence = await catalog.add_step(cold_leads.id, **EMAIL_STEP)
    first, second, third = [step.id for step in sequence.steps]

    sequence = await catalog.set_step_positions(cold_leads.id, [third, first, second])

    assert [(step.id, step.position) for step in sequence.steps] == [(third, 1), (first, 2), (second, 3)]


@pytest.mark.asyncio
async def test_reorder_with_bad_ids_leaves_positions_unchanged(db, cold_leads):
    catalog = CatalogService(db)
    first, second = [step.id for step in cold_leads.steps]

    with pytest.raises(StepValidationError):
        await catalog.set_step_positions(cold_leads.id, [second])
    with pytest.raises(StepValidationError):
        await catalog.set_step_positions(cold_leads.id, [second, first, "not-a-step"])
    with pytest.raises(StepValidationError):
        await catalog.set_step_positions(cold_leads.id, [second, second])

    sequence = await catalog.get_sequence(cold_leads.id)
    assert [(step.id, step.position) for step in sequence.steps] == [(first, 1), (second, 2)]


@pytest.mark.asyncio
async def test_delete_step_renumbers(db, cold_leads):
    catalog = CatalogService(db)
    sequence = await catalog.add_step(cold_leads.id, **EMAIL_STEP)
    first, second, third = [step.id for step in sequence.steps]

    sequence = await catalog.delete_step(first)

    assert [(step.id, step.position) for step in sequence.steps] == [(second, 1), (third, 2)]


@pytest.mark.asyncio
async def test_tenant_scoped_lookup(db, cold_leads):
    catalog = CatalogService(db)
    with pytest.raises(NotFoundError):
        await catalog.get_sequence(cold_leads.id, tenant_id="tenant-2")


@pytest.mark.asyncio
async def test_seed_defaults_skips_existing_stages(db, cold_leads):
    catalog = CatalogService(db)

    created = await catalog.seed_default_sequences(TENANT_ID)

    assert len(created) == len(DEFAULT_DRIP_SEQUENCES) - 1
    assert "cold_leads" not in {sequence.stage_id for sequence in created}
    for sequence in created:
        assert [step.position for step in sequence.steps] == list(range(1, len(sequence.steps) + 1))

    # Running again adds nothing
    assert await catalog.seed_default_sequences(TENANT_ID) == []
