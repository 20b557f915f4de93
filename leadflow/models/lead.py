"""Lead model module."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from leadflow.models.base import Base, TimestampMixin
from leadflow.models.enums import LeadStatus

HIGH_VALUE_ESTIMATE = 1000
HIGH_VALUE_SCORE = 70


class Lead(Base, TimestampMixin):
    __tablename__ = "leads"
    __table_args__ = (
        Index("idx_leads_status_created", "status", "created_at"),
        Index("idx_leads_email_created", "email", "created_at"),
        Index("idx_leads_priority_created", "priority_level", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_name: Mapped[str | None] = mapped_column(String(255))
    contact_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50))
    website: Mapped[str | None] = mapped_column(String(255))

    service_type: Mapped[str] = mapped_column(String(40), nullable=False)
    service_date: Mapped[datetime | None] = mapped_column(DateTime())
    pickup_location: Mapped[str | None] = mapped_column(String(500))
    destination: Mapped[str | None] = mapped_column(String(500))
    passenger_count: Mapped[int | None] = mapped_column(Integer)
    vehicle_preference: Mapped[str | None] = mapped_column(String(100))

    estimated_value: Mapped[float | None] = mapped_column(Float)
    budget_tier: Mapped[str | None] = mapped_column(String(50))
    company_size_estimate: Mapped[int | None] = mapped_column(Integer)
    industry: Mapped[str | None] = mapped_column(String(100))
    distance_from_base: Mapped[float | None] = mapped_column(Float)

    score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    priority_level: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    score_breakdown: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON)
    status: Mapped[str] = mapped_column(String(20), default=LeadStatus.NEW.value, nullable=False)

    source: Mapped[str] = mapped_column(String(100), default="website", nullable=False)
    utm_source: Mapped[str | None] = mapped_column(String(100))
    utm_medium: Mapped[str | None] = mapped_column(String(100))
    utm_campaign: Mapped[str | None] = mapped_column(String(100))
    referrer_url: Mapped[str | None] = mapped_column(Text)
    custom_fields: Mapped[dict[str, Any] | None] = mapped_column(JSON, default=dict)

    crm_lead_id: Mapped[str | None] = mapped_column(String(100), unique=True)
    last_contact_at: Mapped[datetime | None] = mapped_column(DateTime())
    converted_at: Mapped[datetime | None] = mapped_column(DateTime())

    @property
    def lead_status(self) -> LeadStatus:
        return LeadStatus(self.status)

    @property
    def is_closed(self) -> bool:
        return self.lead_status.is_closed

    @property
    def is_high_value(self) -> bool:
        return (self.estimated_value or 0) >= HIGH_VALUE_ESTIMATE or self.score >= HIGH_VALUE_SCORE

    def minutes_since_created(self, now: datetime) -> int:
        return int((now - self.created_at).total_seconds() // 60)
