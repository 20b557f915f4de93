"""Queue and SLA introspection."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from leadflow.api.dependencies import get_db_session, get_dispatcher, get_settings
from leadflow.core.config import Config
from leadflow.scoring.engine import load_active_factors, weight_budget_report
from leadflow.services.analytics_service import AnalyticsService
from leadflow.services.sequence_service import SequenceService
from leadflow.services.sla_monitor import SlaMonitor
from leadflow.tasks.dispatcher import JobDispatcher

router = APIRouter(tags=["status"])


@router.get("/status")
def system_status(
    db: Session = Depends(get_db_session),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
    settings: Config = Depends(get_settings),
) -> dict:
    return SlaMonitor(db=db, dispatcher=dispatcher, config=settings).status_snapshot()


@router.get("/status/sequences")
def sequence_performance(days: int = Query(default=30, ge=1, le=365), db: Session = Depends(get_db_session)) -> dict:
    return SequenceService(db=db).performance_report(days)


@router.get("/status/scoring")
def scoring_effectiveness(
    days: int = Query(default=30, ge=1, le=365),
    db: Session = Depends(get_db_session),
    settings: Config = Depends(get_settings),
) -> dict:
    report = AnalyticsService(db=db, config=settings).scoring_effectiveness(days)
    report["weight_budget"] = weight_budget_report(load_active_factors(db))
    return report
