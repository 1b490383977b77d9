from __future__ import annotations

import os
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("OTEL_ENABLED", "true")

from salesdesk.core.auth import AuthUser, get_current_user
from salesdesk.core.config import get_settings
from salesdesk.core.database import Base, get_db
from salesdesk.main import app
from salesdesk.middleware.rate_limit import reset_rate_limiter
from salesdesk.otel import setup_inmemory_otel
from salesdesk.users.models import UserProfile


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    monkeypatch.setenv("AUTO_CREATE_SCHEMA", "false")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("api")
    exporter.clear()
    return exporter


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    db_session.add(UserProfile(id="sales-1", email="sales-1@example.com", role="sales"))
    db_session.commit()

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub="sales-1")

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_opportunity(client: TestClient) -> dict:
    account = client.post("/api/accounts", json={"name": "OTel Account"})
    assert account.status_code == 201
    response = client.post(
        "/api/opportunities",
        json={"account_id": account.json()["id"], "name": "OTel Opportunity", "deal_value": "300"},
    )
    assert response.status_code == 201
    return response.json()


def test_request_span_contains_correlation_id(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.post("/api/accounts", json={"name": "Traced"}, headers={"X-Correlation-Id": "otel-corr-1"})
    assert response.status_code == 201

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_transition_span_carries_states(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    opportunity = _create_opportunity(client)

    response = client.post(
        f"/api/opportunities/{opportunity['id']}/transition",
        json={"target_state": "qualified"},
    )
    assert response.status_code == 200

    transition_spans = [span for span in span_exporter.get_finished_spans() if span.name == "sales.opportunity.transition"]
    assert transition_spans
    assert any(
        span.attributes.get("sales.entity_id") == opportunity["id"]
        and span.attributes.get("sales.from_state") == "lead"
        and span.attributes.get("sales.to_state") == "qualified"
        for span in transition_spans
    )
