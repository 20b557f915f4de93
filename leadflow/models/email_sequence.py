"""Email follow-up sequence model module."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from leadflow.models.base import Base, TimestampMixin
from leadflow.models.enums import SequenceState


class EmailSequence(Base, TimestampMixin):
    __tablename__ = "email_sequences"
    __table_args__ = (
        # One active sequence per lead; paused/completed rows are unconstrained.
        Index(
            "uq_email_sequences_active_lead",
            "lead_id",
            unique=True,
            sqlite_where=text("state = 'active'"),
            postgresql_where=text("state = 'active'"),
        ),
        Index("idx_email_sequences_state_next_run", "state", "next_run_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lead_id: Mapped[int] = mapped_column(ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence_type: Mapped[str] = mapped_column(String(50), nullable=False)
    current_step: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    total_steps: Mapped[int] = mapped_column(Integer, nullable=False)
    state: Mapped[str] = mapped_column(String(20), default=SequenceState.ACTIVE.value, nullable=False)
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime())
    paused_reason: Mapped[str | None] = mapped_column(String(100))
    emails_sent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    emails_opened: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    responses_received: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime())

    @property
    def is_active(self) -> bool:
        return self.state == SequenceState.ACTIVE.value
