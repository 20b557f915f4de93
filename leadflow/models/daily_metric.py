"""Daily analytics rollup model."""

from __future__ import annotations

from datetime import date

from sqlalchemy import Date, Float, Integer
from sqlalchemy.orm import Mapped, mapped_column

from leadflow.models.base import Base, TimestampMixin


class DailyMetric(Base, TimestampMixin):
    __tablename__ = "daily_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    metric_date: Mapped[date] = mapped_column(Date, unique=True, nullable=False)
    leads_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    leads_converted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    conversion_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    responded_leads: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_response_minutes: Mapped[float | None] = mapped_column(Float)
    responses_within_sla: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_estimated_value: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
