"""Session-owning base for leadflow services.

Services either borrow the caller's session (API requests, dispatcher handlers)
or open one from the active session factory. Every write goes through
``commit`` so a failed flush never leaves the session unusable for the
failure bookkeeping that follows.
"""

from __future__ import annotations

from typing import TypeVar

from sqlalchemy.orm import Session

from leadflow.database.db import get_session_factory

ModelT = TypeVar("ModelT")


class BaseService:
    def __init__(self, db: Session | None = None) -> None:
        self.db = db or get_session_factory()()

    def commit(self) -> None:
        """Commit current transaction and rollback on failure."""
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def save(self, instance: ModelT) -> ModelT:
        """Persist a new row and reload server-side defaults."""
        self.db.add(instance)
        self.commit()
        self.db.refresh(instance)
        return instance

    def rollback(self) -> None:
        self.db.rollback()

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> "BaseService":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()
        self.close()
