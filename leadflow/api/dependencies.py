"""Dependency providers for API handlers."""

from __future__ import annotations

from collections.abc import Generator
from functools import lru_cache

from sqlalchemy.orm import Session

from leadflow.core.config import Config, get_config
from leadflow.database.db import get_db
from leadflow.tasks.dispatcher import JobDispatcher


def get_settings() -> Config:
    """Return validated application configuration."""
    return get_config()


def get_db_session() -> Generator[Session, None, None]:
    """Yield SQLAlchemy session for dependency injection."""
    yield from get_db()


@lru_cache(maxsize=1)
def get_dispatcher() -> JobDispatcher:
    """Enqueue-only dispatcher; jobs run in the Celery workers."""
    from leadflow.tasks.worker import build_dispatcher

    return build_dispatcher()
