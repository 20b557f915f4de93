"""Lead interaction model module."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from leadflow.models.base import Base, utcnow


class LeadInteraction(Base):
    """A customer touchpoint; the first automated email_sent is the SLA response."""

    __tablename__ = "lead_interactions"
    __table_args__ = (
        Index("idx_interactions_lead_type_created", "lead_id", "interaction_type", "created_at"),
        Index("idx_interactions_message_id", "message_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lead_id: Mapped[int] = mapped_column(ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    interaction_type: Mapped[str] = mapped_column(String(40), nullable=False)
    subject: Mapped[str | None] = mapped_column(String(255))
    content: Mapped[str | None] = mapped_column(Text)
    automated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    template_used: Mapped[str | None] = mapped_column(String(100))
    message_id: Mapped[str | None] = mapped_column(String(255))
    opened_at: Mapped[datetime | None] = mapped_column(DateTime())
    clicked_at: Mapped[datetime | None] = mapped_column(DateTime())
    click_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    response_received: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    response_content: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, nullable=False)
