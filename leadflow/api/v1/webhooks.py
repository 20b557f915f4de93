"""Inbound webhook endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from leadflow.api.dependencies import get_db_session, get_dispatcher, get_settings
from leadflow.core.config import Config
from leadflow.models.enums import WebhookSource
from leadflow.schemas.webhooks import CrmUpdateEvent, EmailEngagementEvent, FormSubmission
from leadflow.services.webhook_service import WebhookService
from leadflow.tasks.dispatcher import JobDispatcher

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _respond(outcome: dict[str, Any]) -> JSONResponse:
    code = status.HTTP_200_OK if outcome["status"] == "processed" else status.HTTP_202_ACCEPTED
    return JSONResponse(status_code=code, content=outcome)


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _ingest(
    service: WebhookService,
    source: str,
    event_type: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    ip_address: str | None,
    raw_body: bytes | None = None,
) -> dict[str, Any]:
    event = service.record(source, event_type, payload, headers, ip_address)
    if raw_body is not None:
        service.authenticate(event, raw_body)
    return service.process(event.id)


@router.post("/form-submission")
def form_submission(
    submission: FormSubmission,
    request: Request,
    db: Session = Depends(get_db_session),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
    settings: Config = Depends(get_settings),
) -> JSONResponse:
    service = WebhookService(db=db, dispatcher=dispatcher, config=settings)
    payload = submission.model_dump(mode="json", exclude_none=True)
    outcome = _ingest(
        service,
        WebhookSource.WEBSITE_FORM.value,
        "form_submission",
        payload,
        dict(request.headers),
        _client_ip(request),
    )
    return _respond(outcome)


@router.post("/email-engagement")
async def email_engagement(
    engagement: EmailEngagementEvent,
    request: Request,
    db: Session = Depends(get_db_session),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
    settings: Config = Depends(get_settings),
) -> JSONResponse:
    raw_body = await request.body()
    service = WebhookService(db=db, dispatcher=dispatcher, config=settings)
    outcome = await run_in_threadpool(
        _ingest,
        service,
        WebhookSource.EMAIL_PROVIDER.value,
        f"email_{engagement.event_type}",
        engagement.model_dump(mode="json", exclude_none=True),
        dict(request.headers),
        _client_ip(request),
        raw_body,
    )
    return _respond(outcome)


@router.post("/crm-updates")
async def crm_updates(
    update: CrmUpdateEvent,
    request: Request,
    db: Session = Depends(get_db_session),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
    settings: Config = Depends(get_settings),
) -> JSONResponse:
    raw_body = await request.body()
    service = WebhookService(db=db, dispatcher=dispatcher, config=settings)
    outcome = await run_in_threadpool(
        _ingest,
        service,
        WebhookSource.CRM.value,
        update.event_type,
        update.model_dump(mode="json", exclude_none=True),
        dict(request.headers),
        _client_ip(request),
        raw_body,
    )
    return _respond(outcome)


@router.get("/health")
def webhook_health(db: Session = Depends(get_db_session), settings: Config = Depends(get_settings)) -> dict:
    stats = WebhookService(db=db, config=settings).processing_stats(days=7)
    total = sum(row["total"] for row in stats)
    processed = sum(row["processed"] for row in stats)
    return {
        "status": "healthy",
        "webhook_stats": stats,
        "processing_summary": {
            "total_webhooks": total,
            "success_rate": round(processed / total * 100, 2) if total else 100.0,
        },
    }
