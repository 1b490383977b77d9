from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from salesdesk.workflows.transitions import OpportunityState


TicketSize = Literal["low", "mid", "high"]
ApprovalRole = Literal["finance", "executive"]


class _ReferenceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    is_active: bool
    created_at: datetime
    updated_at: datetime


class RevenueModelCreate(BaseModel):
    code: str | None = Field(default=None, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    is_active: bool = True


class RevenueModelUpdate(BaseModel):
    code: str | None = Field(default=None, min_length=1, max_length=64)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    is_active: bool | None = None


class RevenueModelRead(_ReferenceRead):
    code: str
    name: str
    description: str | None


class RevenueStreamCreate(BaseModel):
    code: str | None = Field(default=None, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    revenue_model_id: UUID | None = None
    ticket_size: TicketSize = "mid"
    is_active: bool = True


class RevenueStreamUpdate(BaseModel):
    code: str | None = Field(default=None, min_length=1, max_length=64)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    revenue_model_id: UUID | None = None
    ticket_size: TicketSize | None = None
    is_active: bool | None = None


class RevenueStreamRead(_ReferenceRead):
    code: str
    name: str
    revenue_model_id: UUID | None
    ticket_size: TicketSize | str


class ICPCategoryCreate(BaseModel):
    code: str | None = Field(default=None, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    is_active: bool = True


class ICPCategoryUpdate(BaseModel):
    code: str | None = Field(default=None, min_length=1, max_length=64)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    is_active: bool | None = None


class ICPCategoryRead(_ReferenceRead):
    code: str
    name: str
    description: str | None


class ApprovalThresholdCreate(BaseModel):
    approval_role: ApprovalRole
    min_deal_value: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    max_deal_value: Decimal | None = None
    is_active: bool = True

    @model_validator(mode="after")
    def validate_range(self) -> "ApprovalThresholdCreate":
        if self.max_deal_value is not None and self.max_deal_value <= self.min_deal_value:
            raise ValueError("max_deal_value must be greater than min_deal_value")
        return self


class ApprovalThresholdUpdate(BaseModel):
    approval_role: ApprovalRole | None = None
    min_deal_value: Decimal | None = Field(default=None, ge=Decimal("0"))
    max_deal_value: Decimal | None = None
    is_active: bool | None = None


class ApprovalThresholdRead(_ReferenceRead):
    approval_role: ApprovalRole | str
    min_deal_value: Decimal
    max_deal_value: Decimal | None


class OpportunityStageCreate(BaseModel):
    stage: OpportunityState
    display_name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    order_index: int = Field(default=0, ge=0)
    is_active: bool = True


class OpportunityStageUpdate(BaseModel):
    """``stage`` is fixed once created and is not accepted here."""

    model_config = ConfigDict(extra="forbid")

    display_name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    order_index: int | None = Field(default=None, ge=0)
    is_active: bool | None = None


class OpportunityStageRead(_ReferenceRead):
    stage: OpportunityState | str
    display_name: str
    description: str | None
    order_index: int
