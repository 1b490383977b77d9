from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from salesdesk.core.database import Base
from salesdesk.platform.security.policies import (
    APPROVAL_THRESHOLD,
    ICP_CATEGORY,
    OPPORTUNITY_STAGE,
    REVENUE_MODEL,
    REVENUE_STREAM,
)
from salesdesk.platform.security.repository import BaseRepository
from salesdesk.reference.models import (
    ApprovalThreshold,
    ICPCategory,
    OpportunityStageConfig,
    RevenueModel,
    RevenueStream,
)


class ReferenceRepository(BaseRepository):
    """One repository shape for all settings tables; the instances below bind the model."""

    def __init__(self, resource: str, model: type[Base], *, order_by: tuple[str, ...], unique_field: str | None) -> None:
        self.resource = resource
        self.model = model
        self.order_by = order_by
        self.unique_field = unique_field

    def get(self, session: Session, entity_id: uuid.UUID) -> Any:
        return session.get(self.model, entity_id)

    def list(self, session: Session, *, include_inactive: bool = False) -> list[Any]:
        model = self.model
        stmt = select(model)
        if not include_inactive:
            stmt = stmt.where(model.is_active.is_(True))
        stmt = stmt.order_by(*(getattr(model, column) for column in self.order_by))
        return list(session.scalars(stmt).all())

    def unique_value_taken(self, session: Session, value: str, *, exclude_id: uuid.UUID | None = None) -> bool:
        if self.unique_field is None:
            return False
        column = getattr(self.model, self.unique_field)
        stmt = select(self.model.id).where(column == value)
        if exclude_id is not None:
            stmt = stmt.where(self.model.id != exclude_id)
        return session.scalar(stmt.limit(1)) is not None


revenue_model_repository = ReferenceRepository(REVENUE_MODEL, RevenueModel, order_by=("name",), unique_field="code")
revenue_stream_repository = ReferenceRepository(REVENUE_STREAM, RevenueStream, order_by=("name",), unique_field="code")
icp_category_repository = ReferenceRepository(ICP_CATEGORY, ICPCategory, order_by=("name",), unique_field="code")
approval_threshold_repository = ReferenceRepository(
    APPROVAL_THRESHOLD,
    ApprovalThreshold,
    order_by=("min_deal_value",),
    unique_field=None,
)
opportunity_stage_repository = ReferenceRepository(
    OPPORTUNITY_STAGE,
    OpportunityStageConfig,
    order_by=("order_index",),
    unique_field="stage",
)
