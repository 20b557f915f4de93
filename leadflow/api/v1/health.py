"""Health endpoints for API v1."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadflow.api.dependencies import get_db_session, get_settings
from leadflow.core.config import Config

router = APIRouter(tags=["health"])


@router.get("/health")
def health(db: Session = Depends(get_db_session), settings: Config = Depends(get_settings)) -> dict:
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        database = "unavailable"
    return {
        "status": "ok" if database == "ok" else "degraded",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "database": database,
        "sandbox_mode": settings.TRANSPORT_SANDBOX_MODE,
    }
