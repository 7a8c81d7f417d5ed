"""
Sequence catalog models.

A DripSequence is the ordered campaign attached to one pipeline stage of one
tenant. Each DripStep is a templated message with a delay and a channel.

SECURITY: All queries MUST include tenant_id filter.
Tenant access is validated upstream; this layer only scopes by it.
"""
import uuid
import enum
from sqlalchemy import String, Text, Integer, Boolean, ForeignKey, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from dripline.models.base import Base, TimestampMixin


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class DelayType(str, enum.Enum):
    """When a step fires relative to stage entry."""
    IMMEDIATE = "immediate"
    AFTER = "after"


class DelayUnit(str, enum.Enum):
    """Unit of a step delay."""
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"


class Channel(str, enum.Enum):
    """Delivery medium of a step."""
    EMAIL = "email"
    SMS = "sms"
    BOTH = "both"

    @property
    def wants_email(self) -> bool:
        return self in (Channel.EMAIL, Channel.BOTH)

    @property
    def wants_sms(self) -> bool:
        return self in (Channel.SMS, Channel.BOTH)


class DripSequence(Base, TimestampMixin):
    """
    Drip campaign for one (tenant, pipeline, stage) triple.

    Disabling a sequence stops new materialization only; jobs already
    queued keep their own snapshot and are not touched.
    """
    __tablename__ = "drip_sequences"
    __table_args__ = (
        UniqueConstraint("tenant_id", "pipeline_id", "stage_id", name="uq_drip_sequences_stage"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    pipeline_id: Mapped[str] = mapped_column(String(64), nullable=False)
    stage_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Relationships
    steps: Mapped[list["DripStep"]] = relationship(
        back_populates="sequence",
        cascade="all, delete-orphan",
        order_by="DripStep.position",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<DripSequence(id={self.id}, stage={self.pipeline_id}/{self.stage_id}, enabled={self.is_enabled})>"


class DripStep(Base, TimestampMixin):
    """
    One message in a sequence.

    position is 1-based and unique within the sequence; it defines send order.
    """
    __tablename__ = "drip_steps"
    __table_args__ = (
        UniqueConstraint("sequence_id", "position", name="uq_drip_steps_position"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    sequence_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("drip_sequences.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    delay_type: Mapped[DelayType] = mapped_column(
        SQLEnum(DelayType, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False
    )
    delay_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    delay_unit: Mapped[DelayUnit] = mapped_column(
        SQLEnum(DelayUnit, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
        default=DelayUnit.MINUTES
    )
    channel: Mapped[Channel] = mapped_column(
        SQLEnum(Channel, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False
    )
    email_subject: Mapped[str | None] = mapped_column(Text, nullable=True)
    email_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    sms_body: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    sequence: Mapped[DripSequence] = relationship(back_populates="steps")

    def __repr__(self):
        return f"<DripStep(id={self.id}, position={self.position}, channel={self.channel})>"
