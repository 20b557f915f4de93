"""Manager notification inbox."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from leadflow.api.dependencies import get_db_session, get_settings
from leadflow.core.config import Config
from leadflow.models.notification import Notification
from leadflow.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _notification_body(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "lead_id": notification.lead_id,
        "notification_type": notification.notification_type,
        "escalation_level": notification.escalation_level,
        "title": notification.title,
        "message": notification.message,
        "priority": notification.priority,
        "sent": notification.sent,
        "read": notification.read,
        "created_at": notification.created_at.isoformat(),
        "read_at": notification.read_at.isoformat() if notification.read_at else None,
    }


@router.get("")
def unread_notifications(
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db_session),
    settings: Config = Depends(get_settings),
) -> dict:
    rows = NotificationService(db=db, config=settings).find_unread(limit)
    return {"notifications": [_notification_body(row) for row in rows]}


@router.post("/{notification_id}/read")
def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db_session),
    settings: Config = Depends(get_settings),
) -> dict:
    notification = NotificationService(db=db, config=settings).mark_read(notification_id)
    return {"notification": _notification_body(notification)}
