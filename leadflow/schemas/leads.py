"""Lead request/response schemas for API contracts."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from leadflow.models.enums import InteractionType, LeadStatus, ServiceType


class LeadFields(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    contact_name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    service_type: ServiceType
    company_name: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    website: str | None = Field(default=None, max_length=255)
    service_date: datetime | None = None
    pickup_location: str | None = Field(default=None, max_length=500)
    destination: str | None = Field(default=None, max_length=500)
    passenger_count: int | None = Field(default=None, ge=1, le=500)
    vehicle_preference: str | None = Field(default=None, max_length=100)
    estimated_value: float | None = Field(default=None, ge=0)
    budget_tier: str | None = Field(default=None, max_length=50)
    company_size_estimate: int | None = Field(default=None, ge=0)
    industry: str | None = Field(default=None, max_length=100)
    distance_from_base: float | None = Field(default=None, ge=0)
    utm_source: str | None = Field(default=None, max_length=100)
    utm_medium: str | None = Field(default=None, max_length=100)
    utm_campaign: str | None = Field(default=None, max_length=100)

    @field_validator("service_date")
    @classmethod
    def _naive_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class LeadCreateRequest(LeadFields):
    source: str = Field(default="api", max_length=100)
    custom_fields: dict[str, Any] | None = None


class LeadStatusUpdateRequest(BaseModel):
    status: LeadStatus


class InteractionCreateRequest(BaseModel):
    interaction_type: InteractionType
    subject: str | None = Field(default=None, max_length=255)
    content: str | None = Field(default=None, max_length=10000)


class LeadResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    contact_name: str
    company_name: str | None = None
    email: str
    phone: str | None = None
    service_type: str
    service_date: datetime | None = None
    estimated_value: float | None = None
    status: str
    score: int
    priority_level: int
    score_breakdown: list[dict[str, Any]] | None = None
    crm_lead_id: str | None = None
    last_contact_at: datetime | None = None
    converted_at: datetime | None = None
    created_at: datetime | None = None


class InteractionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    lead_id: int
    interaction_type: str
    subject: str | None = None
    automated: bool
    template_used: str | None = None
    created_at: datetime
