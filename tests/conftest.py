from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from leadflow.core.config import get_config
from leadflow.messaging.transports import TransportSettings, build_transports
from leadflow.models import Base
from leadflow.tasks.dispatcher import JobDispatcher
from leadflow.tasks.registry import build_default_registry

# Wednesday 11:00 in America/New_York.
NOW = datetime(2026, 10, 21, 15, 0, 0)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta) -> datetime:
        self.current += timedelta(**delta)
        return self.current


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    yield TestingSessionLocal
    engine.dispose()


@pytest.fixture
def session(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def config():
    return replace(
        get_config(),
        ENV="test",
        TRANSPORT_SANDBOX_MODE=True,
        SCHEDULER_TIMEZONE="America/New_York",
        SLA_RESPONSE_MINUTES=5,
        SLA_CRITICAL_MINUTES=10,
        DEDUP_WINDOW_HOURS=24,
        WEBHOOK_MAX_RETRIES=3,
        WEBHOOK_SECRET_EMAIL_PROVIDER=None,
        WEBHOOK_SECRET_CRM=None,
        JOB_STALL_TIMEOUT_SECONDS=300,
        ESCALATION_EMAILS=("ops@example.com",),
        ESCALATION_PHONES=("+15550001111",),
        CRM_API_URL=None,
        CRM_ACCESS_TOKEN=None,
    )


@pytest.fixture
def transports():
    started = build_transports(TransportSettings(sandbox_mode=True))
    started.start()
    yield started
    started.shutdown()


@pytest.fixture
def dispatcher(session_factory, transports, config, clock):
    return JobDispatcher(
        session_factory=session_factory,
        registry=build_default_registry(),
        transports=transports,
        config=config,
        clock=clock,
        waker=None,
    )


def lead_data(**overrides) -> dict:
    data = {
        "contact_name": "Dana Reyes",
        "email": "dana@example.com",
        "service_type": "hourly",
    }
    data.update(overrides)
    return data
