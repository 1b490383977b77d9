from __future__ import annotations

import uuid
from collections.abc import Mapping
from typing import Any

from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session

from salesdesk.core.database import utcnow
from salesdesk.platform.security.context import AuthContext
from salesdesk.platform.security.policies import ACCOUNT, APPROVAL, HANDOVER, OPPORTUNITY, QUOTE
from salesdesk.platform.security.repository import BaseRepository
from salesdesk.sales.models import Account, Approval, Handover, Opportunity, Quote


class _VersionedRepository(BaseRepository):
    """Conditional writes keyed on id and, optionally, row_version."""

    def update_fields(
        self,
        session: Session,
        entity_id: uuid.UUID,
        values: Mapping[str, Any],
        *,
        expected_row_version: int | None = None,
    ) -> bool:
        model = self.model
        conditions = [model.id == entity_id]
        if expected_row_version is not None:
            conditions.append(model.row_version == expected_row_version)
        statement = (
            update(model)
            .where(and_(*conditions))
            .values(updated_at=utcnow(), row_version=model.row_version + 1, **dict(values))
            .execution_options(synchronize_session=False)
        )
        result = session.execute(statement)
        return result.rowcount == 1


class _StatefulRepository(_VersionedRepository):
    """Adds the compare-and-swap state write shared by the pipeline entities."""

    def compare_and_set_state(
        self,
        session: Session,
        entity_id: uuid.UUID,
        *,
        expected_state: str,
        target_state: str,
        values: Mapping[str, Any] | None = None,
    ) -> bool:
        """Write ``target_state`` only if the row is still in ``expected_state``.

        Returns False when no row matched, i.e. another request moved the
        entity first or it no longer exists. The caller owns the commit.
        """

        model = self.model
        statement = (
            update(model)
            .where(and_(model.id == entity_id, model.state == expected_state))
            .values(
                state=target_state,
                updated_at=utcnow(),
                row_version=model.row_version + 1,
                **dict(values or {}),
            )
            .execution_options(synchronize_session=False)
        )
        result = session.execute(statement)
        return result.rowcount == 1


class AccountRepository(_VersionedRepository):
    resource = ACCOUNT
    model = Account


class OpportunityRepository(_StatefulRepository):
    resource = OPPORTUNITY
    model = Opportunity


class QuoteRepository(_StatefulRepository):
    resource = QUOTE
    model = Quote

    def quote_number_exists(self, session: Session, quote_number: str, *, exclude_id: uuid.UUID | None = None) -> bool:
        stmt = select(Quote.id).where(Quote.quote_number == quote_number)
        if exclude_id is not None:
            stmt = stmt.where(Quote.id != exclude_id)
        return session.scalar(stmt.limit(1)) is not None

    def select_visible(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        quote_id: uuid.UUID | None = None,
        opportunity_id: uuid.UUID | None = None,
    ) -> list[dict[str, Any]]:
        """Load quotes through the caller's column projection.

        Columns the role may not read are left out of the SELECT itself, so
        they never reach the response payload.
        """

        columns = self.projected_columns(ctx)
        if not columns:
            return []
        stmt = select(*columns)
        if quote_id is not None:
            stmt = stmt.where(Quote.id == quote_id)
        if opportunity_id is not None:
            stmt = stmt.where(Quote.opportunity_id == opportunity_id)
        rows = session.execute(stmt.order_by(Quote.created_at.desc())).mappings().all()
        return [dict(row) for row in rows]


class ApprovalRepository(BaseRepository):
    resource = APPROVAL
    model = Approval

    def insert(
        self,
        session: Session,
        *,
        quote_id: uuid.UUID,
        approver_id: str,
        status: str,
        comments: str | None = None,
    ) -> Approval:
        approval = Approval(quote_id=quote_id, approver_id=approver_id, status=status, comments=comments)
        session.add(approval)
        session.flush()
        return approval


class HandoverRepository(_StatefulRepository):
    resource = HANDOVER
    model = Handover
