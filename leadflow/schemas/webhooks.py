"""Inbound webhook payload schemas."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from leadflow.schemas.leads import LeadFields


class FormSubmission(LeadFields):
    form_id: str | None = Field(default=None, max_length=100)
    page_url: str | None = Field(default=None, max_length=2000)
    custom_fields: dict[str, Any] | None = None


class EmailEngagementEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    event_type: Literal["opened", "clicked", "bounced", "complained", "unsubscribed", "replied"]
    message_id: str | None = Field(default=None, max_length=255)
    email: str | None = Field(default=None, max_length=320)
    url: str | None = None
    reason: str | None = None
    bounce_type: str | None = None
    content: str | None = None
    timestamp: str | int | None = None


class CrmUpdateEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    event_type: Literal["lead_created", "lead_updated", "deal_closed"]
    record_id: str | None = Field(default=None, max_length=100)
    external_id: int | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: str | int | None = None

