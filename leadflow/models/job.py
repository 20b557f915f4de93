"""Persistent job model backing the priority dispatcher."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from leadflow.models.base import Base, utcnow
from leadflow.models.enums import JobState


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        Index("idx_jobs_claim_order", "domain", "state", "priority", "scheduled_at", "id"),
        Index("idx_jobs_dedupe_key", "dedupe_key"),
        Index("idx_jobs_state_finished", "state", "finished_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    domain: Mapped[str] = mapped_column(String(20), nullable=False)
    job_type: Mapped[str] = mapped_column(String(100), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    state: Mapped[str] = mapped_column(String(20), default=JobState.WAITING.value, nullable=False)
    attempts_made: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    base_delay_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, nullable=False)
    dedupe_key: Mapped[str | None] = mapped_column(String(200))
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    last_error: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    started_at: Mapped[datetime | None] = mapped_column(DateTime())
    finished_at: Mapped[datetime | None] = mapped_column(DateTime())
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, nullable=False)

    def backoff_delay(self, attempt: int) -> int:
        """Delay before retrying after failed attempt number `attempt`."""
        return self.base_delay_seconds * (2 ** max(0, attempt - 1))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "domain": self.domain,
            "job_type": self.job_type,
            "priority": self.priority,
            "payload": self.payload,
            "state": self.state,
            "attempts_made": self.attempts_made,
            "max_attempts": self.max_attempts,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "result": self.result,
            "last_error": self.last_error,
        }
