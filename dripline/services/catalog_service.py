"""
Sequence catalog: authoring, validation and atomic step reordering.

Edits here never touch materialized jobs; those carry their own snapshot.

SECURITY: All queries MUST include tenant_id filter.
"""
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dripline.errors import CatalogValidationError, NotFoundError, StepValidationError
from dripline.models.sequence import Channel, DripSequence, DripStep
from dripline.services.defaults import DEFAULT_DRIP_SEQUENCES
from dripline.services.delays import validate_delay

logger = structlog.get_logger()

STEP_FIELDS = ("delay_type", "delay_value", "delay_unit", "channel", "email_subject", "email_body", "sms_body")
SEQUENCE_FIELDS = ("pipeline_id", "stage_id", "name", "is_enabled")


def _present(value) -> bool:
    return bool(value and str(value).strip())


def validate_step_content(channel, email_subject, email_body, sms_body) -> Channel:
    """
    Check that the content required by the channel is present.

    Raises:
        StepValidationError: unknown channel or missing subject/body
    """
    try:
        channel = Channel(channel)
    except ValueError:
        raise StepValidationError(f"Unknown channel: {channel}")

    if channel.wants_email and not (_present(email_subject) and _present(email_body)):
        raise StepValidationError("Email steps require a subject and a body")
    if channel.wants_sms and not _present(sms_body):
        raise StepValidationError("SMS steps require an SMS body")
    return channel


def validate_step(values: dict) -> dict:
    """Validate a full set of step fields and return them normalised."""
    delay_type, delay_value, delay_unit = validate_delay(
        values.get("delay_type"), values.get("delay_value"), values.get("delay_unit")
    )
    channel = validate_step_content(
        values.get("channel"), values.get("email_subject"), values.get("email_body"), values.get("sms_body")
    )
    return {
        "delay_type": delay_type,
        "delay_value": delay_value,
        "delay_unit": delay_unit,
        "channel": channel,
        "email_subject": values.get("email_subject") if channel.wants_email else None,
        "email_body": values.get("email_body") if channel.wants_email else None,
        "sms_body": values.get("sms_body") if channel.wants_sms else None,
    }


class CatalogService:
    """Service for managing drip sequences and their steps."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_sequences(self, tenant_id: str, pipeline_id: str | None = None) -> list[DripSequence]:
        """Get all sequences for a tenant, optionally narrowed to one pipeline."""
        stmt = select(DripSequence).where(DripSequence.tenant_id == tenant_id)
        if pipeline_id:
            stmt = stmt.where(DripSequence.pipeline_id == pipeline_id)
        stmt = stmt.order_by(DripSequence.pipeline_id, DripSequence.created_at)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_sequence(self, sequence_id: str, tenant_id: str | None = None) -> DripSequence:
        """
        Get a sequence with its steps.

        Raises:
            NotFoundError: if the sequence does not exist (for this tenant)
        """
        stmt = select(DripSequence).where(DripSequence.id == sequence_id)
        if tenant_id is not None:
            stmt = stmt.where(DripSequence.tenant_id == tenant_id)
        stmt = stmt.execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        sequence = result.scalar_one_or_none()
        if sequence is None:
            raise NotFoundError("Drip sequence not found")
        return sequence

    async def _get_step(self, step_id: str) -> DripStep:
        stmt = select(DripStep).where(DripStep.id == step_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        step = result.scalar_one_or_none()
        if step is None:
            raise NotFoundError("Drip step not found")
        return step

    async def _stage_taken(self, tenant_id: str, pipeline_id: str, stage_id: str, exclude_id: str | None = None) -> bool:
        stmt = select(DripSequence.id).where(
            DripSequence.tenant_id == tenant_id,
            DripSequence.pipeline_id == pipeline_id,
            DripSequence.stage_id == stage_id,
        )
        if exclude_id:
            stmt = stmt.where(DripSequence.id != exclude_id)
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def create_sequence(
        self,
        tenant_id: str,
        pipeline_id: str,
        stage_id: str,
        name: str,
        is_enabled: bool = False
    ) -> DripSequence:
        """
        Create a sequence for a stage.

        Raises:
            CatalogValidationError: missing fields or the stage already has a sequence
        """
        if not (_present(tenant_id) and _present(pipeline_id) and _present(stage_id) and _present(name)):
            raise CatalogValidationError("Missing required fields")
        if await self._stage_taken(tenant_id, pipeline_id, stage_id):
            raise CatalogValidationError(f"Stage {pipeline_id}/{stage_id} already has a drip sequence")

        sequence = DripSequence(
            tenant_id=tenant_id,
            pipeline_id=pipeline_id,
            stage_id=stage_id,
            name=name.strip(),
            is_enabled=is_enabled,
            steps=[],
        )
        self.db.add(sequence)
        await self.db.commit()
        logger.info("sequence_created", tenant_id=tenant_id, sequence_id=sequence.id, stage_id=stage_id)
        return await self.get_sequence(sequence.id)

    async def update_sequence(self, sequence_id: str, tenant_id: str | None = None, **updates) -> DripSequence:
        """Update name, stage or enabled flag of a sequence."""
        sequence = await self.get_sequence(sequence_id, tenant_id)

        unknown = set(updates) - set(SEQUENCE_FIELDS)
        if unknown:
            raise CatalogValidationError(f"Unknown sequence fields: {', '.join(sorted(unknown))}")
        if "name" in updates and not _present(updates["name"]):
            raise CatalogValidationError("Sequence name cannot be empty")

        pipeline_id = updates.get("pipeline_id", sequence.pipeline_id)
        stage_id = updates.get("stage_id", sequence.stage_id)
        if (pipeline_id, stage_id) != (sequence.pipeline_id, sequence.stage_id):
            if await self._stage_taken(sequence.tenant_id, pipeline_id, stage_id, exclude_id=sequence.id):
                raise CatalogValidationError(f"Stage {pipeline_id}/{stage_id} already has a drip sequence")

        for key, value in updates.items():
            setattr(sequence, key, value)
        await self.db.commit()
        return await self.get_sequence(sequence_id)

    async def delete_sequence(self, sequence_id: str, tenant_id: str | None = None):
        """Delete a sequence and its steps. Queued jobs keep their snapshot."""
        sequence = await self.get_sequence(sequence_id, tenant_id)
        await self.db.delete(sequence)
        await self.db.commit()
        logger.info("sequence_deleted", sequence_id=sequence_id)

    async def add_step(self, sequence_id: str, position: int | None = None, tenant_id: str | None = None, **fields) -> DripSequence:
        """
        Add a step to a sequence.

        Without a position the step is appended.

        Raises:
            StepValidationError: invalid delay/channel/content
            CatalogValidationError: position out of range or already taken
        """
        sequence = await self.get_sequence(sequence_id, tenant_id)
        values = validate_step(fields)

        taken = {step.position for step in sequence.steps}
        if position is None:
            position = max(taken, default=0) + 1
        if isinstance(position, bool) or not isinstance(position, int) or position < 1:
            raise CatalogValidationError("Position must be a positive integer")
        if position in taken:
            raise CatalogValidationError(f"Position {position} is already used in this sequence")

        sequence.steps.append(DripStep(position=position, **values))
        await self.db.commit()
        return await self.get_sequence(sequence_id)

    async def update_step(self, step_id: str, **updates) -> DripSequence:
        """Edit a step's delay, channel or content. Position changes go through set_step_positions."""
        step = await self._get_step(step_id)

        unknown = set(updates) - set(STEP_FIELDS)
        if unknown:
            raise CatalogValidationError(f"Unknown step fields: {', '.join(sorted(unknown))}")

        merged = {field: getattr(step, field) for field in STEP_FIELDS}
        merged.update(updates)
        values = validate_step(merged)

        for key, value in values.items():
            setattr(step, key, value)
        await self.db.commit()
        return await self.get_sequence(step.sequence_id)

    async def delete_step(self, step_id: str) -> DripSequence:
        """Delete a step and close the gap in the remaining positions."""
        step = await self._get_step(step_id)
        sequence = await self.get_sequence(step.sequence_id)

        remaining = [s for s in sequence.steps if s.id != step_id]
        sequence.steps = remaining
        try:
            await self.db.flush()
            await self._write_positions(remaining)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return await self.get_sequence(sequence.id)

    async def set_step_positions(self, sequence_id: str, ordered_step_ids: list[str], tenant_id: str | None = None) -> DripSequence:
        """
        Reorder every step of a sequence in one atomic batch.

        Args:
            sequence_id: Sequence to reorder
            ordered_step_ids: All of the sequence's step ids, in their new order

        Raises:
            StepValidationError: ids missing, duplicated or foreign to the sequence;
                positions are left unchanged
        """
        sequence = await self.get_sequence(sequence_id, tenant_id)
        by_id = {step.id: step for step in sequence.steps}

        if len(set(ordered_step_ids)) != len(ordered_step_ids):
            raise StepValidationError("Reorder contains duplicate step ids")
        if set(ordered_step_ids) != set(by_id):
            raise StepValidationError("Reorder must list exactly the steps of the sequence")

        try:
            await self._write_positions([by_id[step_id] for step_id in ordered_step_ids])
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.error("step_reorder_failed", sequence_id=sequence_id, exc_info=True)
            raise

        logger.info("steps_reordered", sequence_id=sequence_id, count=len(ordered_step_ids))
        return await self.get_sequence(sequence_id)

    async def _write_positions(self, ordered_steps: list[DripStep]):
        # Park every step on a negative slot first so the unique
        # (sequence_id, position) constraint never sees a collision.
        for index, step in enumerate(ordered_steps, start=1):
            step.position = -index
        await self.db.flush()
        for index, step in enumerate(ordered_steps, start=1):
            step.position = index
        await self.db.flush()

    async def seed_default_sequences(self, tenant_id: str) -> list[DripSequence]:
        """
        Install the built-in campaigns for a tenant in one transaction.

        Stages that already have a sequence are left alone.
        """
        existing = {(s.pipeline_id, s.stage_id) for s in await self.list_sequences(tenant_id)}
        created = []
        try:
            for template in DEFAULT_DRIP_SEQUENCES:
                if (template["pipeline_id"], template["stage_id"]) in existing:
                    continue
                steps = [
                    DripStep(position=index, **validate_step(step))
                    for index, step in enumerate(template["steps"], start=1)
                ]
                sequence = DripSequence(
                    tenant_id=tenant_id,
                    pipeline_id=template["pipeline_id"],
                    stage_id=template["stage_id"],
                    name=template["name"],
                    is_enabled=template["is_enabled"],
                    steps=steps,
                )
                self.db.add(sequence)
                created.append(sequence)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("default_sequences_seeded", tenant_id=tenant_id, count=len(created))
        return [await self.get_sequence(sequence.id) for sequence in created]
