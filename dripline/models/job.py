"""
Drip job model: one materialized, schedulable message for one deal.

SECURITY: All queries MUST include tenant_id filter.
Tenant access is validated upstream; this layer only scopes by it.
"""
import uuid
import enum
from datetime import datetime
from sqlalchemy import String, Text, Integer, ForeignKey, Index, UniqueConstraint, text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from dripline.models.base import Base, TimestampMixin, UTCDateTime
from dripline.models.sequence import Channel


class JobStatus(str, enum.Enum):
    """Job status enum. CLAIMED is the dispatcher's transient lease."""
    PENDING = "pending"
    CLAIMED = "claimed"
    SENT = "sent"
    CANCELLED = "cancelled"
    FAILED = "failed"


LIVE_STATUSES = (JobStatus.PENDING, JobStatus.CLAIMED)
TERMINAL_STATUSES = (JobStatus.SENT, JobStatus.CANCELLED, JobStatus.FAILED)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class DripJob(Base, TimestampMixin):
    """
    A step snapshot scheduled for a deal.

    Content and recipient are captured at materialization time, so later
    edits to the step never change what an already-queued job sends.
    """
    __tablename__ = "drip_jobs"
    __table_args__ = (
        UniqueConstraint("deal_id", "step_id", "stage_entry_key", name="uq_drip_jobs_stage_entry"),
        # At most one live job per (deal, step)
        Index(
            "uq_drip_jobs_live_step",
            "deal_id",
            "step_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'claimed')"),
            sqlite_where=text("status IN ('pending', 'claimed')"),
        ),
        Index("ix_drip_jobs_status_due_at", "status", "due_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    deal_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    sequence_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("drip_sequences.id", ondelete="SET NULL"),
        nullable=True
    )
    step_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("drip_steps.id", ondelete="SET NULL"),
        nullable=True
    )
    stage_id: Mapped[str] = mapped_column(String(64), nullable=False)
    stage_entry_key: Mapped[str] = mapped_column(String(128), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    channel: Mapped[Channel] = mapped_column(
        SQLEnum(Channel, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False
    )

    # Content snapshot
    email_subject: Mapped[str | None] = mapped_column(Text, nullable=True)
    email_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    sms_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    recipient_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recipient_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)

    due_at: Mapped[datetime] = mapped_column(UTCDateTime(timezone=True), nullable=False)
    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(JobStatus, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
        default=JobStatus.PENDING
    )
    claim_token: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(timezone=True), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivery_detail: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self):
        return f"<DripJob(id={self.id}, deal={self.deal_id}, position={self.position}, status={self.status})>"
