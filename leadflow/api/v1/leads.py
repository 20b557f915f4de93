"""Lead endpoints: direct intake, lookup and manual lifecycle changes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadflow.api.dependencies import get_db_session, get_dispatcher, get_settings
from leadflow.core.config import Config
from leadflow.core.exceptions import DuplicateEntry
from leadflow.models.interaction import LeadInteraction
from leadflow.schemas.leads import (
    InteractionCreateRequest,
    InteractionResponse,
    LeadCreateRequest,
    LeadResponse,
    LeadStatusUpdateRequest,
)
from leadflow.services.intake_service import IntakeService
from leadflow.services.lead_service import LeadService
from leadflow.services.sequence_service import SequenceService
from leadflow.tasks.dispatcher import JobDispatcher

router = APIRouter(prefix="/leads", tags=["leads"])

RECENT_INTERACTIONS = 20


def _lead_body(lead) -> dict:
    return LeadResponse.model_validate(lead).model_dump(mode="json")


@router.post("")
def create_lead(
    request: LeadCreateRequest,
    db: Session = Depends(get_db_session),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
    settings: Config = Depends(get_settings),
) -> JSONResponse:
    intake = IntakeService(db=db, dispatcher=dispatcher, config=settings)
    try:
        result = intake.intake(request.model_dump(exclude_none=True))
    except DuplicateEntry as duplicate:
        existing = LeadService(db=db).require_lead(duplicate.existing_id)
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"lead_created": False, "duplicate": True, "lead": _lead_body(existing)},
        )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={"lead_created": True, "duplicate": False, "lead": _lead_body(result.lead), "actions": result.actions},
    )


@router.get("/{lead_id}")
def get_lead(lead_id: int, db: Session = Depends(get_db_session)) -> dict:
    lead = LeadService(db=db).require_lead(lead_id)
    sequence = SequenceService(db=db).get_active_for_lead(lead_id)
    interactions = (
        db.query(LeadInteraction)
        .filter(LeadInteraction.lead_id == lead_id)
        .order_by(LeadInteraction.created_at.desc(), LeadInteraction.id.desc())
        .limit(RECENT_INTERACTIONS)
        .all()
    )
    return {
        "lead": _lead_body(lead),
        "is_high_value": lead.is_high_value,
        "active_sequence": (
            {
                "id": sequence.id,
                "sequence_type": sequence.sequence_type,
                "current_step": sequence.current_step,
                "total_steps": sequence.total_steps,
                "next_run_at": sequence.next_run_at.isoformat() if sequence.next_run_at else None,
            }
            if sequence is not None
            else None
        ),
        "interactions": [InteractionResponse.model_validate(row).model_dump(mode="json") for row in interactions],
    }


@router.post("/{lead_id}/status")
def update_status(lead_id: int, request: LeadStatusUpdateRequest, db: Session = Depends(get_db_session)) -> dict:
    lead = LeadService(db=db).update_status(lead_id, request.status.value)
    return {"lead": _lead_body(lead)}


@router.post("/{lead_id}/reopen")
def reopen_lead(lead_id: int, db: Session = Depends(get_db_session)) -> dict:
    lead = LeadService(db=db).reopen(lead_id)
    return {"lead": _lead_body(lead)}


@router.post("/{lead_id}/interactions", status_code=status.HTTP_201_CREATED)
def record_interaction(lead_id: int, request: InteractionCreateRequest, db: Session = Depends(get_db_session)) -> dict:
    leads = LeadService(db=db)
    interaction = leads.record_interaction(
        lead_id,
        request.interaction_type.value,
        subject=request.subject,
        content=request.content,
    )
    return {
        "interaction": InteractionResponse.model_validate(interaction).model_dump(mode="json"),
        "lead": _lead_body(leads.require_lead(lead_id)),
    }
