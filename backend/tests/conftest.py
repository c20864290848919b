"""
Shared pytest fixtures.

Settings are read at import time, so the environment is prepared before any
``app`` module is imported. Every test gets a fresh in-memory SQLite
database; provider, budget, event sink and dispatcher dependencies are
replaced with in-process fakes.
"""
import os

os.environ["ENV"] = "dev"
os.environ["API_AUTH_KEY"] = ""
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ["FULLENRICH_WEBHOOK_SECRET"] = "test-webhook-secret"

import threading

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.db import Base, get_db
from app.models import (  # noqa: F401  (register tables on Base.metadata)
    custom_field,
    enrichment_job,
    organization,
    person,
    research_job,
    research_settings,
    rfp,
    usage,
)
from app.api import deps
from app.main import app
from app.services.budget import ENRICHMENT_PROVIDER, LLM_PROVIDER, BudgetGuard
from tests.fixtures.fakes import (
    FakeEnrichmentProvider,
    FakeResearchProvider,
    RecordingDispatcher,
    RecordingEventSink,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def research_provider():
    return FakeResearchProvider()


@pytest.fixture
def enrichment_provider():
    return FakeEnrichmentProvider()


@pytest.fixture
def llm_budget(db_session):
    return BudgetGuard(db_session, LLM_PROVIDER, limit=None, lock=threading.Lock())


@pytest.fixture
def enrichment_budget(db_session):
    return BudgetGuard(db_session, ENRICHMENT_PROVIDER, limit=None, lock=threading.Lock())


@pytest.fixture
def event_sink():
    return RecordingEventSink()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def client(
    db_session,
    research_provider,
    enrichment_provider,
    llm_budget,
    enrichment_budget,
    event_sink,
    dispatcher,
):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_research_provider] = lambda: research_provider
    app.dependency_overrides[deps.get_enrichment_provider] = lambda: enrichment_provider
    app.dependency_overrides[deps.get_llm_budget] = lambda: llm_budget
    app.dependency_overrides[deps.get_enrichment_budget] = lambda: enrichment_budget
    app.dependency_overrides[deps.event_sink] = lambda: event_sink
    app.dependency_overrides[deps.get_task_dispatcher] = lambda: dispatcher
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
