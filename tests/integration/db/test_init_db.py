from __future__ import annotations

import leadflow.database.db as db_module
import leadflow.database.init_db as init_db_module
from leadflow.models.scoring_factor import ScoringFactor
from leadflow.scoring.defaults import default_factor_definitions


def _skip_migrations(*_args, **_kwargs):
    raise RuntimeError("no alembic in this test")


def test_init_db_seeds_default_scoring_factors(monkeypatch, session_factory, session):
    monkeypatch.setattr(init_db_module, "bootstrap", lambda: None)
    monkeypatch.setattr(init_db_module.command, "upgrade", _skip_migrations)
    monkeypatch.setattr(db_module, "get_active_database_url", lambda: "sqlite://")
    monkeypatch.setattr(db_module, "get_engine", lambda: session_factory.kw["bind"])
    monkeypatch.setattr(db_module, "get_session_factory", lambda: session_factory)

    init_db_module.init_db()
    init_db_module.init_db()

    rows = {row.name: row.active for row in session.query(ScoringFactor).all()}
    assert set(rows) == {definition["name"] for definition in default_factor_definitions()}
    assert rows["estimated_value_tier"] is True
    assert rows["timing_urgency"] is False
