from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from salesdesk.core.rbac import authorize
from salesdesk.platform.security.context import AuthContext
from salesdesk.platform.security.policies import DASHBOARD, ResourceAction
from salesdesk.reporting.schemas import DashboardMetricsRead, RecentActivityItem, StateCounts
from salesdesk.sales.models import Handover, Opportunity, Quote
from salesdesk.workflows.transitions import HANDOVER_TRANSITIONS, OPPORTUNITY_TRANSITIONS, QUOTE_TRANSITIONS, TransitionTable


RECENT_PER_ENTITY = 5
RECENT_ACTIVITY_LIMIT = 10


@dataclass(slots=True)
class ReportingService:
    def get_dashboard_metrics(self, session: Session, ctx: AuthContext | None) -> DashboardMetricsRead:
        """Pipeline counts per state plus the newest opportunities and quotes.

        Every state in the pipeline appears in ``by_state``, zero when empty.
        """

        authorize(ctx, DASHBOARD, ResourceAction.READ)
        recent = [
            *self._recent(session, Opportunity, "opportunity", Opportunity.name),
            *self._recent(session, Quote, "quote", Quote.quote_number),
        ]
        recent.sort(key=lambda item: item.created_at, reverse=True)
        return DashboardMetricsRead(
            opportunities=self._state_counts(session, Opportunity, OPPORTUNITY_TRANSITIONS),
            quotes=self._state_counts(session, Quote, QUOTE_TRANSITIONS),
            handovers=self._state_counts(session, Handover, HANDOVER_TRANSITIONS),
            recent_activity=recent[:RECENT_ACTIVITY_LIMIT],
        )

    @staticmethod
    def _state_counts(session: Session, model: Any, table: TransitionTable) -> StateCounts:
        rows: Sequence[Any] = session.execute(select(model.state, func.count(model.id)).group_by(model.state)).all()
        by_state = {state: 0 for state in table}
        for state, count in rows:
            by_state[state] = int(count)
        return StateCounts(total=sum(by_state.values()), by_state=by_state)

    @staticmethod
    def _recent(session: Session, model: Any, entity_type: str, label_column: Any) -> list[RecentActivityItem]:
        stmt = (
            select(model.id, label_column, model.state, model.created_at)
            .order_by(model.created_at.desc())
            .limit(RECENT_PER_ENTITY)
        )
        return [
            RecentActivityItem(entity_type=entity_type, id=row[0], label=row[1], state=row[2], created_at=row[3])
            for row in session.execute(stmt).all()
        ]


reporting_service = ReportingService()
