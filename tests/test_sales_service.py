from __future__ import annotations

import logging
import uuid
from collections.abc import Generator
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select, update
from prometheus_client import REGISTRY
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from salesdesk import audit, events
from salesdesk.core.config import get_settings
from salesdesk.core.database import Base
from salesdesk.core.errors import (
    DuplicateQuoteNumber,
    InvalidDateRange,
    InvalidParentState,
    InvalidTransition,
    InvalidTransitionArguments,
    NotFound,
    RowVersionConflict,
    SideEffectFailure,
)
from salesdesk.platform.security.context import AuthContext
from salesdesk.platform.security.errors import InsufficientPermissions, Unauthorized
from salesdesk.platform.security.policies import InMemoryPolicyBackend, set_policy_backend
from salesdesk.sales.models import Approval, Opportunity, Quote
from salesdesk.sales.schemas import (
    AccountCreate,
    AccountUpdate,
    HandoverCreate,
    HandoverUpdate,
    OpportunityCreate,
    OpportunityUpdate,
    QuoteCreate,
    QuoteOperationsRead,
    QuoteRead,
    QuoteUpdate,
)
from salesdesk.sales.service import SalesService


EXECUTIVE = AuthContext(user_id="exec-1", role="executive")
SALES = AuthContext(user_id="sales-1", role="sales")
FINANCE = AuthContext(user_id="finance-1", role="finance")
OPERATIONS = AuthContext(user_id="ops-1", role="operations")

_PATHS = {
    "lead": [],
    "qualified": ["qualified"],
    "proposal": ["qualified", "proposal"],
    "closed_won": ["qualified", "proposal", "closed_won"],
    "closed_lost": ["closed_lost"],
}


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
def reset_state() -> Generator[None, None, None]:
    set_policy_backend(InMemoryPolicyBackend())
    get_settings.cache_clear()
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    set_policy_backend(InMemoryPolicyBackend())
    get_settings.cache_clear()
    audit.audit_entries.clear()
    events.published_events.clear()


@pytest.fixture()
def service() -> SalesService:
    return SalesService()


def _opportunity(service: SalesService, session: Session, state: str = "lead") -> uuid.UUID:
    account = service.create_account(session, SALES, AccountCreate(name="Acme Corp", industry="Logistics"))
    opportunity = service.create_opportunity(
        session,
        SALES,
        OpportunityCreate(account_id=account.id, name="Acme rollout", deal_value=Decimal("50000")),
    )
    for target in _PATHS[state]:
        service.transition_opportunity_state(session, SALES, opportunity.id, target)
    return opportunity.id


def _quote(
    service: SalesService,
    session: Session,
    opportunity_id: uuid.UUID,
    *,
    number: str = "Q-1001",
    state: str = "draft",
) -> uuid.UUID:
    quote = service.create_quote(
        session,
        SALES,
        QuoteCreate(
            opportunity_id=opportunity_id,
            quote_number=number,
            deal_value=Decimal("10000"),
            cost=Decimal("1000"),
            margin=Decimal("9000"),
            margin_percentage=Decimal("20"),
            discount_percentage=Decimal("5"),
            scope="Phase 1 rollout",
        ),
    )
    if state == "pending_approval":
        service.transition_quote_state(session, SALES, quote.id, "pending_approval")
    return quote.id


def _approval_count(session: Session, quote_id: uuid.UUID) -> int:
    return session.scalar(select(func.count(Approval.id)).where(Approval.quote_id == quote_id)) or 0


def test_opportunity_starts_at_lead_and_is_owned_by_creator(service: SalesService, db_session: Session) -> None:
    opportunity = service.get_opportunity(db_session, FINANCE, _opportunity(service, db_session))

    assert opportunity.state == "lead"
    assert opportunity.owner_id == SALES.user_id
    assert opportunity.deal_value == Decimal("50000")


def test_opportunity_skip_ahead_is_rejected_with_valid_next_states(service: SalesService, db_session: Session) -> None:
    opportunity_id = _opportunity(service, db_session)

    with pytest.raises(InvalidTransition) as exc_info:
        service.transition_opportunity_state(db_session, SALES, opportunity_id, "closed_won")

    assert exc_info.value.message == "Invalid transition from lead to closed_won. Valid transitions: qualified, closed_lost"
    assert exc_info.value.valid_next_states == ["qualified", "closed_lost"]
    assert service.get_opportunity(db_session, SALES, opportunity_id).state == "lead"


def test_rejected_transition_does_not_touch_the_row(service: SalesService, db_session: Session) -> None:
    opportunity_id = _opportunity(service, db_session, "closed_lost")
    before = service.get_opportunity(db_session, SALES, opportunity_id)
    events.published_events.clear()

    with pytest.raises(InvalidTransition):
        service.transition_opportunity_state(db_session, SALES, opportunity_id, "qualified")

    after = service.get_opportunity(db_session, SALES, opportunity_id)
    assert after.state == "closed_lost"
    assert after.row_version == before.row_version
    assert after.updated_at == before.updated_at
    assert events.published_events == []


def test_opportunity_update_never_changes_state(service: SalesService, db_session: Session) -> None:
    opportunity_id = _opportunity(service, db_session, "qualified")

    updated = service.update_opportunity(
        db_session,
        SALES,
        opportunity_id,
        OpportunityUpdate(name="Acme rollout v2", deal_value=Decimal("65000")),
    )

    assert updated.name == "Acme rollout v2"
    assert updated.deal_value == Decimal("65000")
    assert updated.state == "qualified"


def test_finance_cannot_create_opportunities(service: SalesService, db_session: Session) -> None:
    account = service.create_account(db_session, SALES, AccountCreate(name="Globex"))

    with pytest.raises(InsufficientPermissions):
        service.create_opportunity(db_session, FINANCE, OpportunityCreate(account_id=account.id, name="Globex deal"))

    assert db_session.scalar(select(func.count(Opportunity.id))) == 0


def test_missing_principal_is_unauthorized(service: SalesService, db_session: Session) -> None:
    with pytest.raises(Unauthorized):
        service.list_accounts(db_session, None)
    with pytest.raises(Unauthorized):
        service.list_accounts(db_session, AuthContext(user_id="", role="executive"))


def test_principal_without_profile_role_is_denied(service: SalesService, db_session: Session) -> None:
    with pytest.raises(InsufficientPermissions):
        service.list_accounts(db_session, AuthContext(user_id="ghost", role=None))


def test_opportunity_for_unknown_account_is_not_found(service: SalesService, db_session: Session) -> None:
    with pytest.raises(NotFound):
        service.create_opportunity(db_session, SALES, OpportunityCreate(account_id=uuid.uuid4(), name="Orphan"))


def test_account_update_honours_row_version(service: SalesService, db_session: Session) -> None:
    account = service.create_account(db_session, SALES, AccountCreate(name="Initech"))
    assert account.row_version == 1

    with pytest.raises(RowVersionConflict):
        service.update_account(db_session, SALES, account.id, AccountUpdate(phone="555-0100", row_version=7))

    updated = service.update_account(db_session, EXECUTIVE, account.id, AccountUpdate(phone="555-0100", row_version=1))
    assert updated.phone == "555-0100"
    assert updated.row_version == 2
    assert [entry["action"] for entry in audit.entries_for("sales.account", str(account.id))] == ["create", "update"]


def test_quote_requires_proposal_or_closed_won_opportunity(service: SalesService, db_session: Session) -> None:
    opportunity_id = _opportunity(service, db_session, "qualified")

    with pytest.raises(InvalidParentState) as exc_info:
        _quote(service, db_session, opportunity_id)

    assert exc_info.value.message == (
        "Cannot create quote. Opportunity must be 'proposal' or 'closed_won' but is currently 'qualified'"
    )
    assert exc_info.value.required == ["proposal", "closed_won"]
    assert db_session.scalar(select(func.count(Quote.id))) == 0


def test_quote_is_created_in_draft(service: SalesService, db_session: Session) -> None:
    opportunity_id = _opportunity(service, db_session, "proposal")
    quote = service.get_quote(db_session, SALES, _quote(service, db_session, opportunity_id))

    assert isinstance(quote, QuoteRead)
    assert quote.state == "draft"
    assert quote.created_by == SALES.user_id
    assert quote.cost == Decimal("1000")
    assert any(event["event_type"] == "sales.quote.created" for event in events.published_events)


def test_duplicate_quote_number_on_create_and_update(service: SalesService, db_session: Session) -> None:
    opportunity_id = _opportunity(service, db_session, "proposal")
    first_id = _quote(service, db_session, opportunity_id, number="Q-1")
    second_id = _quote(service, db_session, opportunity_id, number="Q-2")

    with pytest.raises(DuplicateQuoteNumber) as exc_info:
        _quote(service, db_session, opportunity_id, number="Q-1")
    assert exc_info.value.message == 'Quote number "Q-1" already exists'

    with pytest.raises(DuplicateQuoteNumber):
        service.update_quote(db_session, SALES, second_id, QuoteUpdate(quote_number="Q-1"))

    unchanged = service.update_quote(db_session, SALES, first_id, QuoteUpdate(quote_number="Q-1", scope="Phase 2"))
    assert unchanged.quote_number == "Q-1"
    assert unchanged.scope == "Phase 2"
    assert service.get_quote(db_session, SALES, second_id).quote_number == "Q-2"


def test_sales_cannot_approve_quotes(service: SalesService, db_session: Session) -> None:
    opportunity_id = _opportunity(service, db_session, "proposal")
    quote_id = _quote(service, db_session, opportunity_id, state="pending_approval")

    with pytest.raises(InsufficientPermissions) as exc_info:
        service.transition_quote_state(db_session, SALES, quote_id, "approved")

    assert exc_info.value.message == "Insufficient permissions to approve/reject quotes"
    assert service.get_quote(db_session, SALES, quote_id).state == "pending_approval"
    assert _approval_count(db_session, quote_id) == 0


def test_finance_approval_records_exactly_one_approval(service: SalesService, db_session: Session) -> None:
    opportunity_id = _opportunity(service, db_session, "proposal")
    quote_id = _quote(service, db_session, opportunity_id, state="pending_approval")

    result = service.transition_quote_state(db_session, FINANCE, quote_id, "approved", comments="looks good")

    assert result.state == "approved"
    approvals = service.list_approvals(db_session, OPERATIONS, quote_id)
    assert len(approvals) == 1
    assert approvals[0].status == "approved"
    assert approvals[0].comments == "looks good"
    assert approvals[0].approver_id == FINANCE.user_id

    event_types = [event["event_type"] for event in events.published_events]
    assert "sales.quote.state_changed" in event_types
    assert "sales.quote.approved" in event_types


def test_operations_cannot_submit_quotes(service: SalesService, db_session: Session) -> None:
    opportunity_id = _opportunity(service, db_session, "proposal")
    quote_id = _quote(service, db_session, opportunity_id)

    with pytest.raises(InsufficientPermissions):
        service.transition_quote_state(db_session, OPERATIONS, quote_id, "pending_approval")


def test_draft_quote_cannot_jump_to_approved(service: SalesService, db_session: Session) -> None:
    opportunity_id = _opportunity(service, db_session, "proposal")
    quote_id = _quote(service, db_session, opportunity_id)

    with pytest.raises(InvalidTransition) as exc_info:
        service.transition_quote_state(db_session, EXECUTIVE, quote_id, "approved")

    assert exc_info.value.valid_next_states == ["pending_approval"]
    assert _approval_count(db_session, quote_id) == 0


def test_stale_quote_state_is_rejected_without_approval(service: SalesService, db_session: Session) -> None:
    opportunity_id = _opportunity(service, db_session, "proposal")
    quote_id = _quote(service, db_session, opportunity_id, state="pending_approval")

    # Load the quote, then move it behind the session's back as a racing request would.
    loaded = db_session.get(Quote, quote_id)
    assert loaded.state == "pending_approval"
    db_session.execute(
        update(Quote)
        .where(Quote.id == quote_id)
        .values(state="rejected")
        .execution_options(synchronize_session=False)
    )

    with pytest.raises(InvalidTransition) as exc_info:
        service.transition_quote_state(db_session, FINANCE, quote_id, "approved")

    assert "no longer in state 'pending_approval'" in exc_info.value.message
    assert _approval_count(db_session, quote_id) == 0


def test_compare_and_set_lets_only_one_racer_win(service: SalesService, db_session: Session) -> None:
    opportunity_id = _opportunity(service, db_session, "proposal")
    quote_id = _quote(service, db_session, opportunity_id, state="pending_approval")
    repository = service.quote_repository

    first = repository.compare_and_set_state(
        db_session, quote_id, expected_state="pending_approval", target_state="approved"
    )
    second = repository.compare_and_set_state(
        db_session, quote_id, expected_state="pending_approval", target_state="approved"
    )
    db_session.commit()

    assert (first, second) == (True, False)
    assert service.get_quote(db_session, SALES, quote_id).state == "approved"


def test_failed_approval_record_is_logged_and_swallowed(
    service: SalesService,
    db_session: Session,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    opportunity_id = _opportunity(service, db_session, "proposal")
    quote_id = _quote(service, db_session, opportunity_id, state="pending_approval")

    def failing_insert(*args, **kwargs):  # type: ignore[no-untyped-def]
        raise SQLAlchemyError("approval table unavailable")

    monkeypatch.setattr(service.approval_repository, "insert", failing_insert)

    with caplog.at_level(logging.ERROR, logger="salesdesk.sales"):
        result = service.transition_quote_state(db_session, FINANCE, quote_id, "rejected", comments="too pricey")

    assert result.state == "rejected"
    assert service.get_quote(db_session, SALES, quote_id).state == "rejected"
    assert _approval_count(db_session, quote_id) == 0
    assert any(record.getMessage() == "approval_record_failed" for record in caplog.records)
    assert not any(event["event_type"] == "sales.quote.rejected" for event in events.published_events)


def test_strict_approval_audit_rolls_back_the_decision(
    service: SalesService,
    db_session: Session,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    opportunity_id = _opportunity(service, db_session, "proposal")
    quote_id = _quote(service, db_session, opportunity_id, state="pending_approval")

    monkeypatch.setenv("STRICT_APPROVAL_AUDIT", "true")
    get_settings.cache_clear()

    def failing_insert(*args, **kwargs):  # type: ignore[no-untyped-def]
        raise SQLAlchemyError("approval table unavailable")

    failures_before = REGISTRY.get_sample_value("approval_side_effect_failures_total") or 0.0
    monkeypatch.setattr(service.approval_repository, "insert", failing_insert)

    with pytest.raises(SideEffectFailure):
        service.transition_quote_state(db_session, FINANCE, quote_id, "approved")

    assert service.get_quote(db_session, SALES, quote_id).state == "pending_approval"
    assert REGISTRY.get_sample_value("approval_side_effect_failures_total") == failures_before + 1


def test_operations_quote_view_has_no_financial_fields(service: SalesService, db_session: Session) -> None:
    opportunity_id = _opportunity(service, db_session, "proposal")
    quote_id = _quote(service, db_session, opportunity_id)

    quote = service.get_quote(db_session, OPERATIONS, quote_id)
    listed = service.list_quotes(db_session, OPERATIONS, opportunity_id=opportunity_id)

    hidden = {"cost", "margin", "margin_percentage", "discount_percentage"}
    assert isinstance(quote, QuoteOperationsRead)
    assert hidden.isdisjoint(quote.model_dump().keys())
    assert hidden.isdisjoint(QuoteOperationsRead.model_fields)
    assert quote.deal_value == Decimal("10000")
    assert len(listed) == 1
    assert hidden.isdisjoint(listed[0].model_dump().keys())


def test_operations_quote_columns_are_never_selected(service: SalesService, db_session: Session) -> None:
    opportunity_id = _opportunity(service, db_session, "proposal")
    _quote(service, db_session, opportunity_id)

    columns = {column.name for column in service.quote_repository.projected_columns(OPERATIONS)}
    records = service.quote_repository.select_visible(db_session, OPERATIONS)

    assert "cost" not in columns
    assert "margin_percentage" not in columns
    assert set(records[0]) == columns


def test_handover_requires_closed_won_opportunity(service: SalesService, db_session: Session) -> None:
    opportunity_id = _opportunity(service, db_session, "proposal")

    with pytest.raises(InvalidParentState) as exc_info:
        service.create_handover(db_session, SALES, HandoverCreate(opportunity_id=opportunity_id, deal_value=Decimal("1")))

    assert exc_info.value.required == ["closed_won"]
    assert exc_info.value.actual == "proposal"
    assert exc_info.value.message == "Cannot create handover. Opportunity must be 'closed_won' but is currently 'proposal'"


def test_handover_quote_must_belong_to_opportunity(service: SalesService, db_session: Session) -> None:
    won_id = _opportunity(service, db_session, "closed_won")
    other_id = _opportunity(service, db_session, "proposal")
    foreign_quote = _quote(service, db_session, other_id, number="Q-OTHER")

    with pytest.raises(NotFound):
        service.create_handover(
            db_session,
            SALES,
            HandoverCreate(opportunity_id=won_id, quote_id=foreign_quote, deal_value=Decimal("10000")),
        )


def _handover(service: SalesService, session: Session) -> uuid.UUID:
    opportunity_id = _opportunity(service, session, "closed_won")
    quote_id = _quote(service, session, opportunity_id, number="Q-HO")
    handover = service.create_handover(
        session,
        SALES,
        HandoverCreate(opportunity_id=opportunity_id, quote_id=quote_id, deal_value=Decimal("10000"), scope="Go-live"),
    )
    assert handover.state == "pending"
    return handover.id


def test_operations_accepts_handover_as_acting_user(service: SalesService, db_session: Session) -> None:
    handover_id = _handover(service, db_session)

    accepted = service.transition_handover_state(db_session, OPERATIONS, handover_id, "accepted")

    assert accepted.state == "accepted"
    assert accepted.accepted_by == OPERATIONS.user_id
    with pytest.raises(InvalidTransition):
        service.transition_handover_state(db_session, OPERATIONS, handover_id, "flagged", "late")


def test_flagging_requires_a_reason(service: SalesService, db_session: Session) -> None:
    handover_id = _handover(service, db_session)

    with pytest.raises(InvalidTransitionArguments):
        service.transition_handover_state(db_session, OPERATIONS, handover_id, "flagged")
    with pytest.raises(InvalidTransitionArguments):
        service.transition_handover_state(db_session, OPERATIONS, handover_id, "flagged", "   ")
    with pytest.raises(InvalidTransitionArguments):
        service.transition_handover_state(db_session, OPERATIONS, handover_id, "accepted", "not a flag")

    flagged = service.transition_handover_state(db_session, OPERATIONS, handover_id, "flagged", "Missing SOW")
    assert flagged.state == "flagged"
    assert flagged.flagged_reason == "Missing SOW"
    assert flagged.accepted_by is None


def test_only_operations_transitions_handovers(service: SalesService, db_session: Session) -> None:
    handover_id = _handover(service, db_session)

    for ctx in (EXECUTIVE, SALES, FINANCE):
        with pytest.raises(InsufficientPermissions):
            service.transition_handover_state(db_session, ctx, handover_id, "accepted")


def test_operations_handover_edit_drops_core_fields(service: SalesService, db_session: Session) -> None:
    handover_id = _handover(service, db_session)

    updated = service.update_handover(
        db_session,
        OPERATIONS,
        handover_id,
        HandoverUpdate(state="flagged", flagged_reason="Dates unrealistic", scope="rewritten", accepted_by="someone"),
    )

    assert updated.state == "flagged"
    assert updated.flagged_reason == "Dates unrealistic"
    assert updated.scope == "Go-live"
    assert updated.accepted_by is None


def test_operations_handover_edit_without_state_is_rejected(service: SalesService, db_session: Session) -> None:
    handover_id = _handover(service, db_session)

    with pytest.raises(InvalidTransitionArguments):
        service.update_handover(db_session, OPERATIONS, handover_id, HandoverUpdate(flagged_reason="Missing SOW"))
    with pytest.raises(InvalidTransitionArguments):
        service.update_handover(db_session, OPERATIONS, handover_id, HandoverUpdate(scope="ops scope"))

    assert service.get_handover(db_session, OPERATIONS, handover_id).state == "pending"


def test_sales_handover_edit_keeps_state_untouched(service: SalesService, db_session: Session) -> None:
    handover_id = _handover(service, db_session)

    updated = service.update_handover(
        db_session,
        SALES,
        handover_id,
        HandoverUpdate(scope="Go-live plus training", state="accepted"),
    )

    assert updated.scope == "Go-live plus training"
    assert updated.state == "pending"
    assert updated.row_version == 2


def test_handover_update_keeps_end_date_after_start(service: SalesService, db_session: Session) -> None:
    handover_id = _handover(service, db_session)
    service.update_handover(
        db_session,
        SALES,
        handover_id,
        HandoverUpdate(expected_start_date=date(2026, 1, 10), expected_end_date=date(2026, 2, 10)),
    )

    with pytest.raises(InvalidDateRange) as exc_info:
        service.update_handover(db_session, SALES, handover_id, HandoverUpdate(expected_end_date=date(2025, 1, 1)))
    assert exc_info.value.status_code == 422
    with pytest.raises(InvalidDateRange):
        service.update_handover(db_session, SALES, handover_id, HandoverUpdate(expected_start_date=date(2026, 3, 1)))

    stored = service.get_handover(db_session, SALES, handover_id)
    assert stored.expected_start_date == date(2026, 1, 10)
    assert stored.expected_end_date == date(2026, 2, 10)

    moved = service.update_handover(db_session, SALES, handover_id, HandoverUpdate(expected_end_date=date(2026, 1, 10)))
    assert moved.expected_end_date == date(2026, 1, 10)


def test_quote_update_integrity_error_without_number_change_is_not_a_duplicate(
    service: SalesService,
    db_session: Session,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    opportunity_id = _opportunity(service, db_session, "proposal")
    quote_id = _quote(service, db_session, opportunity_id)

    def failing_update(*args, **kwargs):  # type: ignore[no-untyped-def]
        raise IntegrityError("UPDATE quote", {}, Exception("CHECK constraint failed"))

    monkeypatch.setattr(service.quote_repository, "update_fields", failing_update)

    with pytest.raises(IntegrityError):
        service.update_quote(db_session, SALES, quote_id, QuoteUpdate(scope="Phase 2"))

    with pytest.raises(DuplicateQuoteNumber) as exc_info:
        service.update_quote(db_session, SALES, quote_id, QuoteUpdate(quote_number="Q-2002"))
    assert exc_info.value.quote_number == "Q-2002"
