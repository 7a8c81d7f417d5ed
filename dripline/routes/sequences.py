"""
Drip sequence authoring routes.

Provides endpoints for creating sequences, editing their steps and
reordering steps atomically.
"""
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from dripline.dependencies.services import get_catalog_service
from dripline.dependencies.tenant import get_tenant_id
from dripline.errors import NotFoundError
from dripline.models.sequence import DripSequence, DripStep
from dripline.services.catalog_service import CatalogService


router = APIRouter(prefix="/api/v1/drips/sequences", tags=["drip-sequences"])


# Pydantic models for request/response
class CreateSequenceRequest(BaseModel):
    pipeline_id: str
    stage_id: str
    name: str
    is_enabled: bool = False


class UpdateSequenceRequest(BaseModel):
    pipeline_id: str | None = None
    stage_id: str | None = None
    name: str | None = None
    is_enabled: bool | None = None


class StepRequest(BaseModel):
    """Step fields. Validation happens in the catalog service so every rule reports the same way."""
    position: int | None = None
    delay_type: str | None = None
    delay_value: int | None = None
    delay_unit: str | None = None
    channel: str | None = None
    email_subject: str | None = None
    email_body: str | None = None
    sms_body: str | None = None


class ReorderStepsRequest(BaseModel):
    step_ids: list[str]


class StepResponse(BaseModel):
    id: str
    position: int
    delay_type: str
    delay_value: int
    delay_unit: str
    channel: str
    email_subject: str | None = None
    email_body: str | None = None
    sms_body: str | None = None


class SequenceResponse(BaseModel):
    id: str
    tenant_id: str
    pipeline_id: str
    stage_id: str
    name: str
    is_enabled: bool
    steps: list[StepResponse]
    created_at: str | None = None
    updated_at: str | None = None


def step_to_response(step: DripStep) -> StepResponse:
    return StepResponse(
        id=step.id,
        position=step.position,
        delay_type=step.delay_type.value,
        delay_value=step.delay_value,
        delay_unit=step.delay_unit.value,
        channel=step.channel.value,
        email_subject=step.email_subject,
        email_body=step.email_body,
        sms_body=step.sms_body,
    )


def sequence_to_response(sequence: DripSequence) -> SequenceResponse:
    """Convert DripSequence model to SequenceResponse."""
    return SequenceResponse(
        id=sequence.id,
        tenant_id=sequence.tenant_id,
        pipeline_id=sequence.pipeline_id,
        stage_id=sequence.stage_id,
        name=sequence.name,
        is_enabled=sequence.is_enabled,
        steps=[step_to_response(step) for step in sorted(sequence.steps, key=lambda s: s.position)],
        created_at=sequence.created_at.isoformat() if sequence.created_at else None,
        updated_at=sequence.updated_at.isoformat() if sequence.updated_at else None,
    )


async def _require_step(catalog: CatalogService, tenant_id: str, sequence_id: str, step_id: str):
    sequence = await catalog.get_sequence(sequence_id, tenant_id)
    if step_id not in {step.id for step in sequence.steps}:
        raise NotFoundError("Drip step not found")


@router.get("", response_model=list[SequenceResponse])
async def list_sequences(
    pipeline_id: str | None = None,
    tenant_id: str = Depends(get_tenant_id),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """List the tenant's drip sequences."""
    sequences = await catalog.list_sequences(tenant_id, pipeline_id)
    return [sequence_to_response(sequence) for sequence in sequences]


@router.post("", response_model=SequenceResponse, status_code=status.HTTP_201_CREATED)
async def create_sequence(
    request: CreateSequenceRequest,
    tenant_id: str = Depends(get_tenant_id),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Create a sequence for a pipeline stage. Sequences start disabled unless requested."""
    sequence = await catalog.create_sequence(
        tenant_id=tenant_id,
        pipeline_id=request.pipeline_id,
        stage_id=request.stage_id,
        name=request.name,
        is_enabled=request.is_enabled,
    )
    return sequence_to_response(sequence)


@router.post("/seed-defaults", response_model=list[SequenceResponse], status_code=status.HTTP_201_CREATED)
async def seed_default_sequences(
    tenant_id: str = Depends(get_tenant_id),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """
    Install the built-in campaigns.

    Stages that already have a sequence are skipped; returns only the new ones.
    """
    sequences = await catalog.seed_default_sequences(tenant_id)
    return [sequence_to_response(sequence) for sequence in sequences]


@router.get("/{sequence_id}", response_model=SequenceResponse)
async def get_sequence(
    sequence_id: str,
    tenant_id: str = Depends(get_tenant_id),
    catalog: CatalogService = Depends(get_catalog_service)
):
    return sequence_to_response(await catalog.get_sequence(sequence_id, tenant_id))


@router.patch("/{sequence_id}", response_model=SequenceResponse)
async def update_sequence(
    sequence_id: str,
    request: UpdateSequenceRequest,
    tenant_id: str = Depends(get_tenant_id),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Rename, move or enable/disable a sequence."""
    updates = request.model_dump(exclude_unset=True, exclude_none=True)
    sequence = await catalog.update_sequence(sequence_id, tenant_id, **updates)
    return sequence_to_response(sequence)


@router.delete("/{sequence_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_sequence(
    sequence_id: str,
    tenant_id: str = Depends(get_tenant_id),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Delete a sequence. Jobs already scheduled from it are unaffected."""
    await catalog.delete_sequence(sequence_id, tenant_id)


@router.post("/{sequence_id}/steps", response_model=SequenceResponse, status_code=status.HTTP_201_CREATED)
async def add_step(
    sequence_id: str,
    request: StepRequest,
    tenant_id: str = Depends(get_tenant_id),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Add a step; appended to the end when no position is given."""
    fields = request.model_dump(exclude={"position"})
    sequence = await catalog.add_step(sequence_id, position=request.position, tenant_id=tenant_id, **fields)
    return sequence_to_response(sequence)


@router.patch("/{sequence_id}/steps/{step_id}", response_model=SequenceResponse)
async def update_step(
    sequence_id: str,
    step_id: str,
    request: StepRequest,
    tenant_id: str = Depends(get_tenant_id),
    catalog: CatalogService = Depends(get_catalog_service)
):
    await _require_step(catalog, tenant_id, sequence_id, step_id)
    updates = request.model_dump(exclude={"position"}, exclude_unset=True)
    sequence = await catalog.update_step(step_id, **updates)
    return sequence_to_response(sequence)


@router.delete("/{sequence_id}/steps/{step_id}", response_model=SequenceResponse)
async def delete_step(
    sequence_id: str,
    step_id: str,
    tenant_id: str = Depends(get_tenant_id),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Delete a step; the remaining steps are renumbered 1..n."""
    await _require_step(catalog, tenant_id, sequence_id, step_id)
    sequence = await catalog.delete_step(step_id)
    return sequence_to_response(sequence)


@router.put("/{sequence_id}/steps/order", response_model=SequenceResponse)
async def reorder_steps(
    sequence_id: str,
    request: ReorderStepsRequest,
    tenant_id: str = Depends(get_tenant_id),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """
    Reorder all steps of a sequence.

    step_ids must list every step of the sequence exactly once. The whole
    reorder is applied or nothing is.
    """
    sequence = await catalog.set_step_positions(sequence_id, request.step_ids, tenant_id)
    return sequence_to_response(sequence)
