from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from salesdesk.workflows.transitions import ApprovalStatus, HandoverState, OpportunityState, QuoteState


class AccountCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    industry: str | None = Field(default=None, max_length=128)
    website: str | None = Field(default=None, max_length=512)
    phone: str | None = Field(default=None, max_length=64)
    address: str | None = None


class AccountUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    industry: str | None = Field(default=None, max_length=128)
    website: str | None = Field(default=None, max_length=512)
    phone: str | None = Field(default=None, max_length=64)
    address: str | None = None
    row_version: int | None = Field(default=None, ge=1)


class AccountRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    industry: str | None
    website: str | None
    phone: str | None
    address: str | None
    created_by: str
    row_version: int
    created_at: datetime
    updated_at: datetime


class OpportunityCreate(BaseModel):
    account_id: UUID
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    deal_value: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    expected_close_date: date | None = None


class OpportunityUpdate(BaseModel):
    account_id: UUID | None = None
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    deal_value: Decimal | None = Field(default=None, ge=Decimal("0"))
    expected_close_date: date | None = None
    row_version: int | None = Field(default=None, ge=1)


class OpportunityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    account_id: UUID
    name: str
    description: str | None
    deal_value: Decimal
    expected_close_date: date | None
    owner_id: str
    state: OpportunityState | str
    row_version: int
    created_at: datetime
    updated_at: datetime


class OpportunityTransitionRequest(BaseModel):
    target_state: OpportunityState


class QuoteCreate(BaseModel):
    opportunity_id: UUID
    quote_number: str = Field(min_length=1, max_length=64)
    deal_value: Decimal = Field(ge=Decimal("0"))
    cost: Decimal | None = Field(default=None, ge=Decimal("0"))
    margin: Decimal | None = None
    margin_percentage: Decimal | None = Field(default=None, ge=Decimal("0"), le=Decimal("100"))
    discount_percentage: Decimal | None = Field(default=None, ge=Decimal("0"), le=Decimal("100"))
    scope: str | None = None
    valid_until: date | None = None


class QuoteUpdate(BaseModel):
    quote_number: str | None = Field(default=None, min_length=1, max_length=64)
    deal_value: Decimal | None = Field(default=None, ge=Decimal("0"))
    cost: Decimal | None = Field(default=None, ge=Decimal("0"))
    margin: Decimal | None = None
    margin_percentage: Decimal | None = Field(default=None, ge=Decimal("0"), le=Decimal("100"))
    discount_percentage: Decimal | None = Field(default=None, ge=Decimal("0"), le=Decimal("100"))
    scope: str | None = None
    valid_until: date | None = None
    row_version: int | None = Field(default=None, ge=1)


class QuoteRead(BaseModel):
    id: UUID
    opportunity_id: UUID
    quote_number: str
    state: QuoteState | str
    deal_value: Decimal | str
    cost: Decimal | str | None
    margin: Decimal | str | None
    margin_percentage: Decimal | str | None
    discount_percentage: Decimal | str | None
    scope: str | None
    valid_until: date | None
    created_by: str
    row_version: int
    created_at: datetime
    updated_at: datetime


class QuoteOperationsRead(BaseModel):
    """Quote projection for the operations role; financial fields do not exist on it."""

    model_config = ConfigDict(extra="forbid")

    id: UUID
    opportunity_id: UUID
    quote_number: str
    state: QuoteState | str
    deal_value: Decimal | str
    scope: str | None
    valid_until: date | None
    created_by: str
    created_at: datetime
    updated_at: datetime


QuoteView = QuoteRead | QuoteOperationsRead


class QuoteTransitionRequest(BaseModel):
    target_state: QuoteState
    comments: str | None = Field(default=None, max_length=4000)


class ApprovalRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    quote_id: UUID
    approver_id: str
    status: ApprovalStatus | str
    comments: str | None
    created_at: datetime


class HandoverCreate(BaseModel):
    opportunity_id: UUID
    quote_id: UUID | None = None
    deal_value: Decimal = Field(ge=Decimal("0"))
    scope: str | None = None
    expected_start_date: date | None = None
    expected_end_date: date | None = None

    @model_validator(mode="after")
    def validate_date_range(self) -> "HandoverCreate":
        if self.expected_start_date and self.expected_end_date and self.expected_end_date < self.expected_start_date:
            raise ValueError("expected_end_date must not be before expected_start_date")
        return self


class HandoverUpdate(BaseModel):
    quote_id: UUID | None = None
    deal_value: Decimal | None = Field(default=None, ge=Decimal("0"))
    scope: str | None = None
    expected_start_date: date | None = None
    expected_end_date: date | None = None
    state: HandoverState | None = None
    accepted_by: str | None = None
    flagged_reason: str | None = None
    row_version: int | None = Field(default=None, ge=1)


class HandoverRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    opportunity_id: UUID
    quote_id: UUID | None
    deal_value: Decimal
    scope: str | None
    expected_start_date: date | None
    expected_end_date: date | None
    accepted_by: str | None
    flagged_reason: str | None
    state: HandoverState | str
    row_version: int
    created_at: datetime
    updated_at: datetime


class HandoverTransitionRequest(BaseModel):
    target_state: HandoverState
    flagged_reason: str | None = Field(default=None, max_length=4000)
