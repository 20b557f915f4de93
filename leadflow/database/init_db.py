"""Schema bootstrap: Alembic upgrade with a create_all fallback for SQLite."""

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config as AlembicConfig

import leadflow.database.db as db_module
from leadflow.core.startup import bootstrap
from leadflow.models import Base
from leadflow.scoring.defaults import seed_default_factors

logger = logging.getLogger(__name__)
PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _build_alembic_config(database_url: str) -> AlembicConfig:
    cfg = AlembicConfig(str(PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", database_url)
    return cfg


def init_db() -> None:
    bootstrap()
    active_url = db_module.get_active_database_url()
    try:
        command.upgrade(_build_alembic_config(active_url), "head")
    except Exception as exc:
        if not active_url.startswith("sqlite"):
            raise
        logger.warning(
            "database.migrations.skipped",
            extra={"event": "database.migrations.skipped", "database_url": active_url, "reason": str(exc)},
        )

    Base.metadata.create_all(bind=db_module.get_engine())
    logger.info(
        "database.tables.created",
        extra={"event": "database.tables.created", "database_url": active_url},
    )

    with db_module.get_session_factory()() as session:
        seed_default_factors(session)


if __name__ == "__main__":
    init_db()
