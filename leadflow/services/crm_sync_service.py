"""Push leads to the external CRM."""

from __future__ import annotations

import logging
from typing import Any

import requests

from leadflow.core.config import Config, get_config
from leadflow.core.exceptions import ExternalServiceFailure
from leadflow.models.lead import Lead
from leadflow.services.base_service import BaseService
from leadflow.services.lead_service import LeadService

logger = logging.getLogger(__name__)

CRM_TIMEOUT_SECONDS = 30

PRIORITY_LABELS = {5: "Critical", 4: "High", 3: "Medium", 2: "Low", 1: "Low"}


def crm_payload(lead: Lead) -> dict[str, Any]:
    first_name, _, last_name = (lead.contact_name or "").partition(" ")
    return {
        "external_id": str(lead.id),
        "first_name": first_name,
        "last_name": last_name or first_name,
        "email": lead.email,
        "phone": lead.phone,
        "company": lead.company_name,
        "lead_source": lead.source,
        "lead_status": lead.status,
        "service_type": lead.service_type,
        "service_date": lead.service_date.isoformat() if lead.service_date else None,
        "estimated_value": lead.estimated_value,
        "lead_score": lead.score,
        "priority": PRIORITY_LABELS.get(lead.priority_level, "Low"),
        "pickup_location": lead.pickup_location,
        "destination": lead.destination,
        "passenger_count": lead.passenger_count,
    }


class CrmClient:
    def __init__(self, base_url: str, access_token: str, timeout: int = CRM_TIMEOUT_SECONDS) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout

    def _request(self, method: str, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = requests.request(
                method,
                f"{self.base_url}{path}",
                json=payload,
                headers={"Authorization": f"Bearer {self.access_token}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json() if response.content else {}
        except (requests.exceptions.RequestException, ValueError) as exc:
            raise ExternalServiceFailure(f"CRM {method} {path} failed: {exc}", service="crm", original=exc) from exc

    def upsert_lead(self, crm_lead_id: str | None, payload: dict[str, Any]) -> str:
        if crm_lead_id:
            self._request("PUT", f"/leads/{crm_lead_id}", payload)
            return crm_lead_id
        body = self._request("POST", "/leads", payload)
        record_id = body.get("id")
        if not record_id:
            raise ExternalServiceFailure("CRM create response did not include an id", service="crm")
        return str(record_id)


class CrmSyncService(BaseService):
    def __init__(self, db=None, config: Config | None = None, client: CrmClient | None = None) -> None:
        super().__init__(db)
        self.config = config or get_config()
        self.client = client
        if self.client is None and self.config.CRM_API_URL and self.config.CRM_ACCESS_TOKEN:
            self.client = CrmClient(self.config.CRM_API_URL, self.config.CRM_ACCESS_TOKEN)

    def sync_lead(self, lead_id: int) -> dict[str, Any]:
        lead = LeadService(db=self.db).require_lead(lead_id)
        if self.client is None:
            logger.info("crm.sync_skipped", extra={"event": "crm.sync_skipped", "lead_id": lead.id, "reason": "no_credentials"})
            return {"status": "skipped", "reason": "no_credentials"}

        created = lead.crm_lead_id is None
        lead.crm_lead_id = self.client.upsert_lead(lead.crm_lead_id, crm_payload(lead))
        self.commit()
        logger.info(
            "crm.synced",
            extra={"event": "crm.synced", "lead_id": lead.id, "crm_lead_id": lead.crm_lead_id, "created": created},
        )
        return {"status": "synced", "crm_lead_id": lead.crm_lead_id, "created": created}
