from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from opentelemetry import trace
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from salesdesk import audit, events
from salesdesk.core.config import get_settings
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
from salesdesk.core.rbac import authorize, has_permission
from salesdesk.metrics import observe_approval_side_effect_failure, observe_transition, observe_transition_rejected
from salesdesk.platform.security.context import AuthContext
from salesdesk.platform.security.policies import (
    ACCOUNT,
    APPROVAL,
    HANDOVER,
    HANDOVER_OPERATIONS_FIELDS,
    OPPORTUNITY,
    QUOTE,
    ResourceAction,
)
from salesdesk.sales.models import Account, Approval, Handover, Opportunity, Quote
from salesdesk.sales.repository import (
    AccountRepository,
    ApprovalRepository,
    HandoverRepository,
    OpportunityRepository,
    QuoteRepository,
)
from salesdesk.sales.schemas import (
    AccountCreate,
    AccountRead,
    AccountUpdate,
    ApprovalRead,
    HandoverCreate,
    HandoverRead,
    HandoverUpdate,
    OpportunityCreate,
    OpportunityRead,
    OpportunityUpdate,
    QuoteCreate,
    QuoteOperationsRead,
    QuoteRead,
    QuoteUpdate,
    QuoteView,
)
from salesdesk.workflows.transitions import (
    HANDOVER_CREATABLE_PARENT_STATES,
    HANDOVER_TRANSITIONS,
    OPPORTUNITY_TRANSITIONS,
    QUOTE_CREATABLE_PARENT_STATES,
    QUOTE_DECISION_STATES,
    QUOTE_TRANSITIONS,
    TransitionTable,
    validate_transition,
)


logger = logging.getLogger("salesdesk.sales")
tracer = trace.get_tracer("salesdesk.sales")

QUOTE_DECISION_DENIED_MESSAGE = "Insufficient permissions to approve/reject quotes"


@dataclass(slots=True)
class SalesService:
    account_repository: AccountRepository = AccountRepository()
    opportunity_repository: OpportunityRepository = OpportunityRepository()
    quote_repository: QuoteRepository = QuoteRepository()
    approval_repository: ApprovalRepository = ApprovalRepository()
    handover_repository: HandoverRepository = HandoverRepository()

    # Accounts

    def create_account(self, session: Session, ctx: AuthContext | None, payload: AccountCreate) -> AccountRead:
        ctx = authorize(ctx, ACCOUNT, ResourceAction.CREATE)
        data = payload.model_dump(mode="python")
        self.account_repository.validate_write_security(data, ctx)

        account = Account(**data, created_by=ctx.user_id)
        session.add(account)
        session.commit()
        session.refresh(account)

        read = self._to_account_read(account, ctx)
        self._record(ctx, "sales.account", account.id, "create", None, read)
        self._publish(ctx, "sales.account.created", {"account_id": str(account.id)})
        return read

    def update_account(
        self,
        session: Session,
        ctx: AuthContext | None,
        account_id: uuid.UUID,
        payload: AccountUpdate,
    ) -> AccountRead:
        ctx = authorize(ctx, ACCOUNT, ResourceAction.UPDATE)
        account = self._get_account(session, account_id)
        changes, expected_row_version = self._split_changes(Account, payload)
        if not changes:
            return self._to_account_read(account, ctx)

        self.account_repository.validate_write_security(changes, ctx)
        before = self._to_account_read(account, ctx)
        if not self.account_repository.update_fields(
            session,
            account.id,
            changes,
            expected_row_version=expected_row_version,
        ):
            session.rollback()
            raise RowVersionConflict("Account")
        session.commit()
        session.refresh(account)

        read = self._to_account_read(account, ctx)
        self._record(ctx, "sales.account", account.id, "update", before, read)
        self._publish(ctx, "sales.account.updated", {"account_id": str(account.id), "fields": sorted(changes)})
        return read

    def list_accounts(self, session: Session, ctx: AuthContext | None) -> list[AccountRead]:
        ctx = authorize(ctx, ACCOUNT, ResourceAction.READ)
        rows = session.scalars(select(Account).order_by(Account.created_at.desc())).all()
        return [self._to_account_read(row, ctx) for row in rows]

    def get_account(self, session: Session, ctx: AuthContext | None, account_id: uuid.UUID) -> AccountRead:
        ctx = authorize(ctx, ACCOUNT, ResourceAction.READ)
        return self._to_account_read(self._get_account(session, account_id), ctx)

    # Opportunities

    def create_opportunity(
        self,
        session: Session,
        ctx: AuthContext | None,
        payload: OpportunityCreate,
    ) -> OpportunityRead:
        ctx = authorize(ctx, OPPORTUNITY, ResourceAction.CREATE)
        self._get_account(session, payload.account_id)
        data = payload.model_dump(mode="python")
        self.opportunity_repository.validate_write_security(data, ctx)

        opportunity = Opportunity(**data, owner_id=ctx.user_id, state="lead")
        session.add(opportunity)
        session.commit()
        session.refresh(opportunity)

        read = self._to_opportunity_read(opportunity, ctx)
        self._record(ctx, "sales.opportunity", opportunity.id, "create", None, read)
        self._publish(
            ctx,
            "sales.opportunity.created",
            {"opportunity_id": str(opportunity.id), "account_id": str(opportunity.account_id)},
        )
        return read

    def update_opportunity(
        self,
        session: Session,
        ctx: AuthContext | None,
        opportunity_id: uuid.UUID,
        payload: OpportunityUpdate,
    ) -> OpportunityRead:
        ctx = authorize(ctx, OPPORTUNITY, ResourceAction.UPDATE)
        opportunity = self._get_opportunity(session, opportunity_id)
        changes, expected_row_version = self._split_changes(Opportunity, payload)
        if not changes:
            return self._to_opportunity_read(opportunity, ctx)
        if "account_id" in changes:
            self._get_account(session, changes["account_id"])

        self.opportunity_repository.validate_write_security(changes, ctx)
        before = self._to_opportunity_read(opportunity, ctx)
        if not self.opportunity_repository.update_fields(
            session,
            opportunity.id,
            changes,
            expected_row_version=expected_row_version,
        ):
            session.rollback()
            raise RowVersionConflict("Opportunity")
        session.commit()
        session.refresh(opportunity)

        read = self._to_opportunity_read(opportunity, ctx)
        self._record(ctx, "sales.opportunity", opportunity.id, "update", before, read)
        return read

    def transition_opportunity_state(
        self,
        session: Session,
        ctx: AuthContext | None,
        opportunity_id: uuid.UUID,
        target_state: str,
    ) -> OpportunityRead:
        ctx = authorize(ctx, OPPORTUNITY, ResourceAction.TRANSITION)
        with tracer.start_as_current_span("sales.opportunity.transition") as span:
            opportunity = self._get_opportunity(session, opportunity_id)
            current_state = opportunity.state
            span.set_attribute("sales.entity_id", str(opportunity.id))
            span.set_attribute("sales.from_state", current_state)
            span.set_attribute("sales.to_state", target_state)

            self._ensure_transition("opportunity", current_state, target_state, OPPORTUNITY_TRANSITIONS)
            before = self._to_opportunity_read(opportunity, ctx)
            self._write_state(
                session,
                self.opportunity_repository,
                entity="opportunity",
                entity_id=opportunity.id,
                current_state=current_state,
                target_state=target_state,
            )
            session.commit()
            session.refresh(opportunity)

        read = self._to_opportunity_read(opportunity, ctx)
        self._after_transition(ctx, "opportunity", opportunity.id, current_state, target_state, before, read)
        return read

    def list_opportunities(
        self,
        session: Session,
        ctx: AuthContext | None,
        *,
        account_id: uuid.UUID | None = None,
    ) -> list[OpportunityRead]:
        ctx = authorize(ctx, OPPORTUNITY, ResourceAction.READ)
        stmt = select(Opportunity)
        if account_id is not None:
            stmt = stmt.where(Opportunity.account_id == account_id)
        rows = session.scalars(stmt.order_by(Opportunity.created_at.desc())).all()
        return [self._to_opportunity_read(row, ctx) for row in rows]

    def get_opportunity(self, session: Session, ctx: AuthContext | None, opportunity_id: uuid.UUID) -> OpportunityRead:
        ctx = authorize(ctx, OPPORTUNITY, ResourceAction.READ)
        return self._to_opportunity_read(self._get_opportunity(session, opportunity_id), ctx)

    # Quotes

    def create_quote(self, session: Session, ctx: AuthContext | None, payload: QuoteCreate) -> QuoteView:
        ctx = authorize(ctx, QUOTE, ResourceAction.CREATE)
        opportunity = self._get_opportunity(session, payload.opportunity_id)
        if opportunity.state not in QUOTE_CREATABLE_PARENT_STATES:
            raise InvalidParentState(
                "Cannot create quote. Opportunity must be 'proposal' or 'closed_won' "
                f"but is currently '{opportunity.state}'",
                required=list(QUOTE_CREATABLE_PARENT_STATES),
                actual=opportunity.state,
            )
        if self.quote_repository.quote_number_exists(session, payload.quote_number):
            raise DuplicateQuoteNumber(payload.quote_number)

        data = payload.model_dump(mode="python")
        self.quote_repository.validate_write_security(data, ctx)

        quote = Quote(**data, created_by=ctx.user_id, state="draft")
        session.add(quote)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise DuplicateQuoteNumber(payload.quote_number)

        read = self._load_quote_view(session, ctx, quote.id)
        self._record(ctx, "sales.quote", quote.id, "create", None, read)
        self._publish(
            ctx,
            "sales.quote.created",
            {"quote_id": str(quote.id), "opportunity_id": str(payload.opportunity_id)},
        )
        return read

    def update_quote(
        self,
        session: Session,
        ctx: AuthContext | None,
        quote_id: uuid.UUID,
        payload: QuoteUpdate,
    ) -> QuoteView:
        ctx = authorize(ctx, QUOTE, ResourceAction.UPDATE)
        quote = self._get_quote(session, quote_id)
        changes, expected_row_version = self._split_changes(Quote, payload)
        if not changes:
            return self._load_quote_view(session, ctx, quote.id)

        new_number = changes.get("quote_number")
        if new_number is not None and self.quote_repository.quote_number_exists(session, new_number, exclude_id=quote.id):
            raise DuplicateQuoteNumber(new_number)

        self.quote_repository.validate_write_security(changes, ctx)
        before = self._load_quote_view(session, ctx, quote.id)
        try:
            updated = self.quote_repository.update_fields(
                session,
                quote.id,
                changes,
                expected_row_version=expected_row_version,
            )
            if not updated:
                session.rollback()
                raise RowVersionConflict("Quote")
            session.commit()
        except IntegrityError:
            session.rollback()
            if new_number is None:
                raise
            raise DuplicateQuoteNumber(new_number)

        read = self._load_quote_view(session, ctx, quote.id)
        self._record(ctx, "sales.quote", quote.id, "update", before, read)
        return read

    def transition_quote_state(
        self,
        session: Session,
        ctx: AuthContext | None,
        quote_id: uuid.UUID,
        target_state: str,
        comments: str | None = None,
    ) -> QuoteView:
        if target_state == "pending_approval":
            ctx = authorize(ctx, QUOTE, ResourceAction.SUBMIT)
        elif target_state in QUOTE_DECISION_STATES:
            ctx = authorize(ctx, QUOTE, ResourceAction.APPROVE, message=QUOTE_DECISION_DENIED_MESSAGE)
        else:
            ctx = authorize(ctx, QUOTE, ResourceAction.UPDATE)

        with tracer.start_as_current_span("sales.quote.transition") as span:
            quote = self._get_quote(session, quote_id)
            current_state = quote.state
            span.set_attribute("sales.entity_id", str(quote.id))
            span.set_attribute("sales.from_state", current_state)
            span.set_attribute("sales.to_state", target_state)

            self._ensure_transition("quote", current_state, target_state, QUOTE_TRANSITIONS)
            before = self._load_quote_view(session, ctx, quote.id)
            self._write_state(
                session,
                self.quote_repository,
                entity="quote",
                entity_id=quote.id,
                current_state=current_state,
                target_state=target_state,
            )
            approval: Approval | None = None
            if target_state in QUOTE_DECISION_STATES:
                approval = self._record_decision(session, ctx, quote.id, target_state, comments)
                span.set_attribute("sales.approval_recorded", approval is not None)
            else:
                session.commit()

        read = self._load_quote_view(session, ctx, quote.id)
        self._after_transition(ctx, "quote", quote.id, current_state, target_state, before, read)
        if approval is not None:
            self._publish(
                ctx,
                f"sales.quote.{target_state}",
                {"quote_id": str(quote.id), "approval_id": str(approval.id), "approver_id": ctx.user_id},
            )
        return read

    def list_quotes(
        self,
        session: Session,
        ctx: AuthContext | None,
        *,
        opportunity_id: uuid.UUID | None = None,
    ) -> list[QuoteView]:
        ctx = authorize(ctx, QUOTE, ResourceAction.READ)
        records = self.quote_repository.select_visible(session, ctx, opportunity_id=opportunity_id)
        return [self._to_quote_view(record) for record in self.quote_repository.apply_read_security_many(records, ctx)]

    def get_quote(self, session: Session, ctx: AuthContext | None, quote_id: uuid.UUID) -> QuoteView:
        ctx = authorize(ctx, QUOTE, ResourceAction.READ)
        return self._load_quote_view(session, ctx, quote_id)

    def list_approvals(self, session: Session, ctx: AuthContext | None, quote_id: uuid.UUID) -> list[ApprovalRead]:
        ctx = authorize(ctx, APPROVAL, ResourceAction.READ)
        self._get_quote(session, quote_id)
        rows = session.scalars(
            select(Approval).where(Approval.quote_id == quote_id).order_by(Approval.created_at.desc())
        ).all()
        records = self.approval_repository.apply_read_security_many(
            [self.approval_repository.to_record(row) for row in rows],
            ctx,
        )
        return [ApprovalRead.model_validate(record) for record in records]

    # Handovers

    def create_handover(self, session: Session, ctx: AuthContext | None, payload: HandoverCreate) -> HandoverRead:
        ctx = authorize(ctx, HANDOVER, ResourceAction.CREATE)
        opportunity = self._get_opportunity(session, payload.opportunity_id)
        if opportunity.state not in HANDOVER_CREATABLE_PARENT_STATES:
            raise InvalidParentState(
                f"Cannot create handover. Opportunity must be 'closed_won' but is currently '{opportunity.state}'",
                required=list(HANDOVER_CREATABLE_PARENT_STATES),
                actual=opportunity.state,
            )
        if payload.quote_id is not None:
            self._get_quote_for_opportunity(session, payload.quote_id, opportunity.id)

        handover = Handover(**payload.model_dump(mode="python"), state="pending")
        session.add(handover)
        session.commit()
        session.refresh(handover)

        read = self._to_handover_read(handover, ctx)
        self._record(ctx, "sales.handover", handover.id, "create", None, read)
        self._publish(
            ctx,
            "sales.handover.created",
            {"handover_id": str(handover.id), "opportunity_id": str(handover.opportunity_id)},
        )
        return read

    def update_handover(
        self,
        session: Session,
        ctx: AuthContext | None,
        handover_id: uuid.UUID,
        payload: HandoverUpdate,
    ) -> HandoverRead:
        """Apply the fields the caller's role may edit and drop the rest.

        Operations may only touch state, accepted_by and flagged_reason; a
        state change is held to the same rules as ``transition_handover_state``.
        """

        ctx = authorize(ctx, HANDOVER, ResourceAction.UPDATE)
        handover = self._get_handover(session, handover_id)
        changes, expected_row_version = self._split_changes(Handover, payload)
        allowed = self.handover_repository.filter_write_security(changes, ctx)
        state_fields = {key: allowed.pop(key) for key in HANDOVER_OPERATIONS_FIELDS if key in allowed}
        target_state = state_fields.get("state")
        if target_state is None and (state_fields or has_permission(ctx, HANDOVER, ResourceAction.TRANSITION)):
            raise InvalidTransitionArguments(
                "state is required to update a handover as operations",
                details={"fields": sorted(changes)},
            )
        if not allowed and target_state is None:
            return self._to_handover_read(handover, ctx)

        current_state = handover.state
        transition_values: dict[str, Any] = {}
        if target_state is not None:
            authorize(ctx, HANDOVER, ResourceAction.TRANSITION)
            self._ensure_transition("handover", current_state, target_state, HANDOVER_TRANSITIONS)
            transition_values = self._handover_transition_values(ctx, target_state, state_fields.get("flagged_reason"))
        if "quote_id" in allowed and allowed["quote_id"] is not None:
            self._get_quote_for_opportunity(session, allowed["quote_id"], handover.opportunity_id)
        start_date = allowed.get("expected_start_date", handover.expected_start_date)
        end_date = allowed.get("expected_end_date", handover.expected_end_date)
        if start_date and end_date and end_date < start_date:
            raise InvalidDateRange("expected_start_date", "expected_end_date")

        before = self._to_handover_read(handover, ctx)
        if allowed and not self.handover_repository.update_fields(
            session,
            handover.id,
            allowed,
            expected_row_version=expected_row_version,
        ):
            session.rollback()
            raise RowVersionConflict("Handover")
        if target_state is not None:
            self._write_state(
                session,
                self.handover_repository,
                entity="handover",
                entity_id=handover.id,
                current_state=current_state,
                target_state=target_state,
                values=transition_values,
            )
        session.commit()
        session.refresh(handover)

        read = self._to_handover_read(handover, ctx)
        if target_state is not None:
            self._after_transition(ctx, "handover", handover.id, current_state, target_state, before, read)
        else:
            self._record(ctx, "sales.handover", handover.id, "update", before, read)
        return read

    def transition_handover_state(
        self,
        session: Session,
        ctx: AuthContext | None,
        handover_id: uuid.UUID,
        target_state: str,
        flagged_reason: str | None = None,
    ) -> HandoverRead:
        ctx = authorize(ctx, HANDOVER, ResourceAction.TRANSITION)
        with tracer.start_as_current_span("sales.handover.transition") as span:
            handover = self._get_handover(session, handover_id)
            current_state = handover.state
            span.set_attribute("sales.entity_id", str(handover.id))
            span.set_attribute("sales.from_state", current_state)
            span.set_attribute("sales.to_state", target_state)

            self._ensure_transition("handover", current_state, target_state, HANDOVER_TRANSITIONS)
            values = self._handover_transition_values(ctx, target_state, flagged_reason)
            before = self._to_handover_read(handover, ctx)
            self._write_state(
                session,
                self.handover_repository,
                entity="handover",
                entity_id=handover.id,
                current_state=current_state,
                target_state=target_state,
                values=values,
            )
            session.commit()
            session.refresh(handover)

        read = self._to_handover_read(handover, ctx)
        self._after_transition(ctx, "handover", handover.id, current_state, target_state, before, read)
        return read

    def list_handovers(
        self,
        session: Session,
        ctx: AuthContext | None,
        *,
        opportunity_id: uuid.UUID | None = None,
    ) -> list[HandoverRead]:
        ctx = authorize(ctx, HANDOVER, ResourceAction.READ)
        stmt = select(Handover)
        if opportunity_id is not None:
            stmt = stmt.where(Handover.opportunity_id == opportunity_id)
        rows = session.scalars(stmt.order_by(Handover.created_at.desc())).all()
        return [self._to_handover_read(row, ctx) for row in rows]

    def get_handover(self, session: Session, ctx: AuthContext | None, handover_id: uuid.UUID) -> HandoverRead:
        ctx = authorize(ctx, HANDOVER, ResourceAction.READ)
        return self._to_handover_read(self._get_handover(session, handover_id), ctx)

    # Transition plumbing

    def _ensure_transition(self, entity: str, current_state: str, target_state: str, table: TransitionTable) -> None:
        check = validate_transition(current_state, target_state, table)
        if check.allowed:
            return
        observe_transition_rejected(entity=entity, reason="invalid")
        logger.info(
            "state_transition_rejected",
            extra={"entity_type": entity, "from_state": current_state, "to_state": target_state},
        )
        raise InvalidTransition(
            check.reason or "Invalid transition",
            current_state=current_state,
            target_state=target_state,
            valid_next_states=check.valid_next_states,
        )

    def _write_state(
        self,
        session: Session,
        repository: AccountRepository | OpportunityRepository | QuoteRepository | HandoverRepository,
        *,
        entity: str,
        entity_id: uuid.UUID,
        current_state: str,
        target_state: str,
        values: dict[str, Any] | None = None,
    ) -> None:
        if repository.compare_and_set_state(
            session,
            entity_id,
            expected_state=current_state,
            target_state=target_state,
            values=values,
        ):
            return
        session.rollback()
        observe_transition_rejected(entity=entity, reason="stale")
        logger.warning(
            "state_transition_stale",
            extra={"entity_type": entity, "entity_id": str(entity_id), "from_state": current_state, "to_state": target_state},
        )
        raise InvalidTransition(
            f"{entity.capitalize()} is no longer in state '{current_state}'; it was changed by another request",
            current_state=current_state,
            target_state=target_state,
        )

    def _record_decision(
        self,
        session: Session,
        ctx: AuthContext,
        quote_id: uuid.UUID,
        status: str,
        comments: str | None,
    ) -> Approval | None:
        """Persist the quote decision and its Approval record.

        By default the state change is committed first and a failed Approval
        insert is logged and swallowed. With ``strict_approval_audit`` both
        writes share one transaction and a failure undoes the decision.
        """

        if get_settings().strict_approval_audit:
            try:
                approval = self.approval_repository.insert(
                    session,
                    quote_id=quote_id,
                    approver_id=ctx.user_id,
                    status=status,
                    comments=comments,
                )
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                observe_approval_side_effect_failure()
                logger.exception(
                    "approval_record_failed",
                    extra={"entity_type": "quote", "entity_id": str(quote_id), "to_state": status, "error": str(exc)},
                )
                raise SideEffectFailure(
                    "Quote decision was not saved because its approval record could not be written",
                    details={"quote_id": str(quote_id)},
                ) from exc
            return approval

        session.commit()
        try:
            approval = self.approval_repository.insert(
                session,
                quote_id=quote_id,
                approver_id=ctx.user_id,
                status=status,
                comments=comments,
            )
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            observe_approval_side_effect_failure()
            logger.exception(
                "approval_record_failed",
                extra={"entity_type": "quote", "entity_id": str(quote_id), "to_state": status, "error": str(exc)},
            )
            return None
        return approval

    @staticmethod
    def _handover_transition_values(ctx: AuthContext, target_state: str, flagged_reason: str | None) -> dict[str, Any]:
        if target_state == "accepted":
            if flagged_reason:
                raise InvalidTransitionArguments("A flagged reason can only be given when flagging a handover")
            return {"accepted_by": ctx.user_id}
        if target_state == "flagged":
            reason = (flagged_reason or "").strip()
            if not reason:
                raise InvalidTransitionArguments("A non-empty flagged reason is required to flag a handover")
            return {"flagged_reason": reason}
        raise InvalidTransitionArguments(f"Unsupported handover target state '{target_state}'")

    def _after_transition(
        self,
        ctx: AuthContext,
        entity: str,
        entity_id: uuid.UUID,
        from_state: str,
        to_state: str,
        before: BaseModel,
        after: BaseModel,
    ) -> None:
        observe_transition(entity=entity, from_state=from_state, to_state=to_state)
        logger.info(
            "state_transition",
            extra={
                "entity_type": entity,
                "entity_id": str(entity_id),
                "from_state": from_state,
                "to_state": to_state,
                "user_id": ctx.user_id,
                "role": ctx.role,
            },
        )
        self._record(ctx, f"sales.{entity}", entity_id, "transition", before, after)
        self._publish(
            ctx,
            f"sales.{entity}.state_changed",
            {f"{entity}_id": str(entity_id), "from_state": from_state, "to_state": to_state},
        )

    # Loading and read models

    @staticmethod
    def _split_changes(model: type[Any], payload: BaseModel) -> tuple[dict[str, Any], int | None]:
        changes = payload.model_dump(mode="python", exclude_unset=True)
        expected_row_version = changes.pop("row_version", None)
        columns = model.__table__.columns
        # Explicit nulls are ignored for columns that cannot hold them.
        cleaned = {
            key: value
            for key, value in changes.items()
            if value is not None or key not in columns or columns[key].nullable
        }
        return cleaned, expected_row_version

    @staticmethod
    def _get_account(session: Session, account_id: uuid.UUID) -> Account:
        account = session.get(Account, account_id)
        if account is None:
            raise NotFound("Account", account_id)
        return account

    @staticmethod
    def _get_opportunity(session: Session, opportunity_id: uuid.UUID) -> Opportunity:
        opportunity = session.get(Opportunity, opportunity_id)
        if opportunity is None:
            raise NotFound("Opportunity", opportunity_id)
        return opportunity

    @staticmethod
    def _get_quote(session: Session, quote_id: uuid.UUID) -> Quote:
        quote = session.get(Quote, quote_id)
        if quote is None:
            raise NotFound("Quote", quote_id)
        return quote

    @staticmethod
    def _get_quote_for_opportunity(session: Session, quote_id: uuid.UUID, opportunity_id: uuid.UUID) -> Quote:
        quote = session.get(Quote, quote_id)
        if quote is None or quote.opportunity_id != opportunity_id:
            raise NotFound("Quote", quote_id, message="Quote not found for this opportunity")
        return quote

    @staticmethod
    def _get_handover(session: Session, handover_id: uuid.UUID) -> Handover:
        handover = session.get(Handover, handover_id)
        if handover is None:
            raise NotFound("Handover", handover_id)
        return handover

    def _load_quote_view(self, session: Session, ctx: AuthContext, quote_id: uuid.UUID) -> QuoteView:
        records = self.quote_repository.select_visible(session, ctx, quote_id=quote_id)
        if not records:
            raise NotFound("Quote", quote_id)
        return self._to_quote_view(self.quote_repository.apply_read_security(records[0], ctx))

    @staticmethod
    def _to_quote_view(record: dict[str, Any]) -> QuoteView:
        if set(QuoteRead.model_fields) <= record.keys():
            return QuoteRead.model_validate(record)
        return QuoteOperationsRead.model_validate(record)

    def _to_account_read(self, account: Account, ctx: AuthContext) -> AccountRead:
        secured = self.account_repository.apply_read_security(self.account_repository.to_record(account), ctx)
        return AccountRead.model_validate(secured)

    def _to_opportunity_read(self, opportunity: Opportunity, ctx: AuthContext) -> OpportunityRead:
        secured = self.opportunity_repository.apply_read_security(
            self.opportunity_repository.to_record(opportunity),
            ctx,
        )
        return OpportunityRead.model_validate(secured)

    def _to_handover_read(self, handover: Handover, ctx: AuthContext) -> HandoverRead:
        secured = self.handover_repository.apply_read_security(self.handover_repository.to_record(handover), ctx)
        return HandoverRead.model_validate(secured)

    # Audit and events

    @staticmethod
    def _record(
        ctx: AuthContext,
        entity_type: str,
        entity_id: uuid.UUID,
        action: str,
        before: BaseModel | None,
        after: BaseModel | None,
    ) -> None:
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            before=before.model_dump(mode="json") if before is not None else None,
            after=after.model_dump(mode="json") if after is not None else None,
            correlation_id=ctx.correlation_id,
        )

    @staticmethod
    def _publish(ctx: AuthContext, event_type: str, payload: dict[str, Any]) -> None:
        events.publish(
            events.build_envelope(
                event_type,
                actor_user_id=ctx.user_id,
                payload=payload,
                correlation_id=ctx.correlation_id,
            )
        )


sales_service = SalesService()
