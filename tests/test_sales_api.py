from __future__ import annotations

from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from salesdesk import audit, events
from salesdesk.core.auth import AuthUser, get_current_user
from salesdesk.core.config import get_settings
from salesdesk.core.database import Base, get_db
from salesdesk.main import app
from salesdesk.middleware.rate_limit import reset_rate_limiter
from salesdesk.platform.security.policies import InMemoryPolicyBackend, set_policy_backend
from salesdesk.users.models import UserProfile


PROFILES = {
    "exec-1": "executive",
    "sales-1": "sales",
    "finance-1": "finance",
    "ops-1": "operations",
}
HIDDEN_QUOTE_FIELDS = {"cost", "margin", "margin_percentage", "discount_percentage"}


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
    set_policy_backend(InMemoryPolicyBackend())
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()
    set_policy_backend(InMemoryPolicyBackend())
    audit.audit_entries.clear()
    events.published_events.clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[tuple[TestClient, Callable[[str | None], None]], None, None]:
    for user_id, role in PROFILES.items():
        db_session.add(UserProfile(id=user_id, email=f"{user_id}@example.com", role=role))
    db_session.commit()

    current = {"sub": "sales-1"}

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser | None:
        return AuthUser(sub=current["sub"]) if current["sub"] else None

    def act_as(user_id: str | None) -> None:
        current["sub"] = user_id

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client, act_as
    app.dependency_overrides.clear()


def _won_opportunity(test_client: TestClient, *, stop_at: str = "closed_won") -> str:
    account = test_client.post("/api/accounts", json={"name": "Umbrella"})
    assert account.status_code == 201
    opportunity = test_client.post(
        "/api/opportunities",
        json={"account_id": account.json()["id"], "name": "Umbrella renewal", "deal_value": "120000"},
    )
    assert opportunity.status_code == 201
    opportunity_id = opportunity.json()["id"]
    for target in ("qualified", "proposal", "closed_won"):
        moved = test_client.post(f"/api/opportunities/{opportunity_id}/transition", json={"target_state": target})
        assert moved.status_code == 200
        if target == stop_at:
            break
    return opportunity_id


def _create_quote(test_client: TestClient, opportunity_id: str, number: str = "Q-2001") -> dict:
    response = test_client.post(
        "/api/quotes",
        json={
            "opportunity_id": opportunity_id,
            "quote_number": number,
            "deal_value": "100000.00",
            "cost": "1000",
            "margin": "99000",
            "margin_percentage": "20",
            "discount_percentage": "2.5",
        },
    )
    assert response.status_code == 201
    return response.json()


def test_requests_without_principal_get_401_envelope(client: tuple[TestClient, Callable[[str | None], None]]) -> None:
    test_client, act_as = client
    act_as(None)

    response = test_client.get("/api/accounts", headers={"x-correlation-id": "corr-401"})

    assert response.status_code == 401
    assert response.json() == {
        "code": "unauthorized",
        "message": "Unauthorized",
        "details": None,
        "correlation_id": "corr-401",
    }


def test_quote_decimals_serialize_as_strings(client: tuple[TestClient, Callable[[str | None], None]]) -> None:
    test_client, _ = client
    quote = _create_quote(test_client, _won_opportunity(test_client, stop_at="proposal"))

    assert quote["state"] == "draft"
    assert quote["deal_value"] == "100000.00"
    assert quote["cost"] == "1000.00"
    assert quote["margin_percentage"] == "20.00"


def test_operations_quote_payloads_have_no_financial_keys(
    client: tuple[TestClient, Callable[[str | None], None]],
) -> None:
    test_client, act_as = client
    opportunity_id = _won_opportunity(test_client, stop_at="proposal")
    quote = _create_quote(test_client, opportunity_id)
    assert HIDDEN_QUOTE_FIELDS <= quote.keys()

    act_as("ops-1")
    single = test_client.get(f"/api/quotes/{quote['id']}")
    listed = test_client.get("/api/quotes", params={"opportunity_id": opportunity_id})

    assert single.status_code == 200
    assert HIDDEN_QUOTE_FIELDS.isdisjoint(single.json().keys())
    assert "row_version" not in single.json()
    assert single.json()["quote_number"] == "Q-2001"
    assert listed.status_code == 200
    assert len(listed.json()) == 1
    assert HIDDEN_QUOTE_FIELDS.isdisjoint(listed.json()[0].keys())

    act_as("finance-1")
    finance_view = test_client.get(f"/api/quotes/{quote['id']}")
    assert HIDDEN_QUOTE_FIELDS <= finance_view.json().keys()


def test_quote_approval_flow_over_http(client: tuple[TestClient, Callable[[str | None], None]]) -> None:
    test_client, act_as = client
    quote = _create_quote(test_client, _won_opportunity(test_client, stop_at="proposal"))

    submitted = test_client.post(f"/api/quotes/{quote['id']}/transition", json={"target_state": "pending_approval"})
    assert submitted.status_code == 200

    denied = test_client.post(f"/api/quotes/{quote['id']}/transition", json={"target_state": "approved"})
    assert denied.status_code == 403
    assert denied.json()["code"] == "insufficient_permissions"
    assert denied.json()["message"] == "Insufficient permissions to approve/reject quotes"

    act_as("finance-1")
    approved = test_client.post(
        f"/api/quotes/{quote['id']}/transition",
        json={"target_state": "approved", "comments": "looks good"},
    )
    assert approved.status_code == 200
    assert approved.json()["state"] == "approved"

    history = test_client.get(f"/api/quotes/{quote['id']}/approvals")
    assert history.status_code == 200
    assert [(item["status"], item["approver_id"], item["comments"]) for item in history.json()] == [
        ("approved", "finance-1", "looks good")
    ]

    again = test_client.post(f"/api/quotes/{quote['id']}/transition", json={"target_state": "rejected"})
    assert again.status_code == 409
    assert again.json()["code"] == "invalid_transition"
    assert again.json()["details"]["valid_next_states"] == []


def test_invalid_opportunity_transition_envelope(client: tuple[TestClient, Callable[[str | None], None]]) -> None:
    test_client, _ = client
    account = test_client.post("/api/accounts", json={"name": "Hooli"}).json()
    opportunity = test_client.post("/api/opportunities", json={"account_id": account["id"], "name": "Hooli"}).json()

    response = test_client.post(
        f"/api/opportunities/{opportunity['id']}/transition",
        json={"target_state": "closed_won"},
        headers={"x-correlation-id": "corr-skip"},
    )

    assert response.status_code == 409
    body = response.json()
    assert body["message"] == "Invalid transition from lead to closed_won. Valid transitions: qualified, closed_lost"
    assert body["details"]["valid_next_states"] == ["qualified", "closed_lost"]
    assert body["correlation_id"] == "corr-skip"


def test_unknown_target_state_is_a_validation_error(client: tuple[TestClient, Callable[[str | None], None]]) -> None:
    test_client, _ = client
    account = test_client.post("/api/accounts", json={"name": "Pied Piper"}).json()
    opportunity = test_client.post("/api/opportunities", json={"account_id": account["id"], "name": "PP"}).json()

    response = test_client.post(f"/api/opportunities/{opportunity['id']}/transition", json={"target_state": "won"})

    assert response.status_code == 422


def test_duplicate_quote_number_returns_conflict(client: tuple[TestClient, Callable[[str | None], None]]) -> None:
    test_client, _ = client
    opportunity_id = _won_opportunity(test_client, stop_at="proposal")
    _create_quote(test_client, opportunity_id, number="Q-DUP")

    response = test_client.post(
        "/api/quotes",
        json={"opportunity_id": opportunity_id, "quote_number": "Q-DUP", "deal_value": "1"},
    )

    assert response.status_code == 409
    assert response.json()["code"] == "duplicate_quote_number"
    assert response.json()["message"] == 'Quote number "Q-DUP" already exists'


def test_handover_lifecycle_over_http(client: tuple[TestClient, Callable[[str | None], None]]) -> None:
    test_client, act_as = client
    opportunity_id = _won_opportunity(test_client)
    quote = _create_quote(test_client, opportunity_id, number="Q-HANDOVER")

    created = test_client.post(
        "/api/handovers",
        json={
            "opportunity_id": opportunity_id,
            "quote_id": quote["id"],
            "deal_value": "100000",
            "scope": "Rollout",
            "expected_start_date": "2026-11-01",
            "expected_end_date": "2027-01-31",
        },
    )
    assert created.status_code == 201
    handover_id = created.json()["id"]

    act_as("exec-1")
    executive_attempt = test_client.post(f"/api/handovers/{handover_id}/transition", json={"target_state": "accepted"})
    assert executive_attempt.status_code == 403

    act_as("ops-1")
    missing_reason = test_client.post(f"/api/handovers/{handover_id}/transition", json={"target_state": "flagged"})
    assert missing_reason.status_code == 422
    assert missing_reason.json()["code"] == "invalid_transition_arguments"

    accepted = test_client.post(f"/api/handovers/{handover_id}/transition", json={"target_state": "accepted"})
    assert accepted.status_code == 200
    assert accepted.json()["accepted_by"] == "ops-1"


def test_handover_dates_must_be_ordered(client: tuple[TestClient, Callable[[str | None], None]]) -> None:
    test_client, _ = client
    opportunity_id = _won_opportunity(test_client)

    response = test_client.post(
        "/api/handovers",
        json={
            "opportunity_id": opportunity_id,
            "deal_value": "10",
            "expected_start_date": "2026-12-01",
            "expected_end_date": "2026-11-01",
        },
    )

    assert response.status_code == 422


def test_handover_on_open_opportunity_is_conflict(client: tuple[TestClient, Callable[[str | None], None]]) -> None:
    test_client, _ = client
    opportunity_id = _won_opportunity(test_client, stop_at="proposal")

    response = test_client.post("/api/handovers", json={"opportunity_id": opportunity_id, "deal_value": "10"})

    assert response.status_code == 409
    assert response.json()["code"] == "invalid_parent_state"
    assert response.json()["details"] == {"required_states": ["closed_won"], "actual_state": "proposal"}


def test_role_is_read_from_profile_on_every_request(
    client: tuple[TestClient, Callable[[str | None], None]],
    db_session: Session,
) -> None:
    test_client, act_as = client
    act_as("finance-1")
    assert test_client.post("/api/accounts", json={"name": "Blocked"}).status_code == 403

    profile = db_session.get(UserProfile, "finance-1")
    profile.role = "sales"
    db_session.commit()

    assert test_client.post("/api/accounts", json={"name": "Allowed"}).status_code == 201


def test_missing_entities_return_404(client: tuple[TestClient, Callable[[str | None], None]]) -> None:
    test_client, _ = client

    response = test_client.get("/api/quotes/00000000-0000-4000-8000-000000000000")

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"
