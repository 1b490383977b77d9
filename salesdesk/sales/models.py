from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from salesdesk.core.database import Base, utcnow


class Account(Base):
    __tablename__ = "sales_account"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    industry: Mapped[str | None] = mapped_column(String(128), nullable=True)
    website: Mapped[str | None] = mapped_column(String(512), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    opportunities: Mapped[list[Opportunity]] = relationship(back_populates="account")

    __table_args__ = (Index("ix_sales_account_created_at", "created_at"),)


class Opportunity(Base):
    __tablename__ = "sales_opportunity"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("sales_account.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    deal_value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"), server_default="0")
    expected_close_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    state: Mapped[str] = mapped_column(String(32), nullable=False, default="lead", server_default="lead")
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    account: Mapped[Account] = relationship(back_populates="opportunities")

    __table_args__ = (
        CheckConstraint("deal_value >= 0", name="ck_sales_opportunity_deal_value_non_negative"),
        Index("ix_sales_opportunity_account_id", "account_id"),
        Index("ix_sales_opportunity_state", "state"),
    )


class Quote(Base):
    __tablename__ = "sales_quote"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    opportunity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sales_opportunity.id"),
        nullable=False,
    )
    quote_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    state: Mapped[str] = mapped_column(String(32), nullable=False, default="draft", server_default="draft")
    deal_value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"), server_default="0")
    cost: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    margin: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    margin_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    discount_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    valid_until: Mapped[date | None] = mapped_column(Date(), nullable=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    approvals: Mapped[list[Approval]] = relationship(back_populates="quote", order_by="Approval.created_at")

    __table_args__ = (
        CheckConstraint("deal_value >= 0", name="ck_sales_quote_deal_value_non_negative"),
        Index("ix_sales_quote_opportunity_id", "opportunity_id"),
    )


class Approval(Base):
    """Append-only record of a finance/executive decision on a quote."""

    __tablename__ = "sales_approval"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    quote_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("sales_quote.id"), nullable=False)
    approver_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    quote: Mapped[Quote] = relationship(back_populates="approvals")

    __table_args__ = (Index("ix_sales_approval_quote_id", "quote_id"),)


class Handover(Base):
    __tablename__ = "sales_handover"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    opportunity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sales_opportunity.id"),
        nullable=False,
    )
    quote_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("sales_quote.id"), nullable=True)
    deal_value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"), server_default="0")
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    expected_start_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    expected_end_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    accepted_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    flagged_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    state: Mapped[str] = mapped_column(String(32), nullable=False, default="pending", server_default="pending")
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_sales_handover_opportunity_id", "opportunity_id"),
        Index("ix_sales_handover_state", "state"),
    )
