from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from salesdesk.core.database import Base, utcnow


class _ReferenceColumns:
    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class RevenueModel(_ReferenceColumns, Base):
    __tablename__ = "ref_revenue_model"

    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class RevenueStream(_ReferenceColumns, Base):
    __tablename__ = "ref_revenue_stream"

    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    revenue_model_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("ref_revenue_model.id"), nullable=True
    )
    ticket_size: Mapped[str] = mapped_column(String(16), nullable=False, default="mid", server_default="mid")

    __table_args__ = (
        CheckConstraint("ticket_size in ('low', 'mid', 'high')", name="ck_ref_revenue_stream_ticket_size"),
    )


class ICPCategory(_ReferenceColumns, Base):
    __tablename__ = "ref_icp_category"

    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class ApprovalThreshold(_ReferenceColumns, Base):
    __tablename__ = "ref_approval_threshold"

    approval_role: Mapped[str] = mapped_column(String(32), nullable=False)
    min_deal_value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    max_deal_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)

    __table_args__ = (
        CheckConstraint("approval_role in ('finance', 'executive')", name="ck_ref_approval_threshold_role"),
        CheckConstraint("min_deal_value >= 0", name="ck_ref_approval_threshold_min"),
    )


class OpportunityStageConfig(_ReferenceColumns, Base):
    __tablename__ = "ref_opportunity_stage"

    stage: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
