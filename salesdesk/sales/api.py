from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from salesdesk.api.errors import error_from_exception
from salesdesk.core.auth import get_auth_context
from salesdesk.core.database import get_db
from salesdesk.core.errors import SalesDeskError
from salesdesk.platform.security.context import AuthContext
from salesdesk.sales.schemas import (
    AccountCreate,
    AccountRead,
    AccountUpdate,
    ApprovalRead,
    HandoverCreate,
    HandoverRead,
    HandoverTransitionRequest,
    HandoverUpdate,
    OpportunityCreate,
    OpportunityRead,
    OpportunityTransitionRequest,
    OpportunityUpdate,
    QuoteCreate,
    QuoteTransitionRequest,
    QuoteUpdate,
    QuoteView,
)
from salesdesk.sales.service import sales_service


accounts_router = APIRouter(prefix="/accounts", tags=["accounts"])
opportunities_router = APIRouter(prefix="/opportunities", tags=["opportunities"])
quotes_router = APIRouter(prefix="/quotes", tags=["quotes"])
handovers_router = APIRouter(prefix="/handovers", tags=["handovers"])


@accounts_router.post("", response_model=AccountRead, status_code=status.HTTP_201_CREATED)
def create_account(
    request: Request,
    payload: AccountCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.create_account(db, ctx, payload)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@accounts_router.get("", response_model=list[AccountRead])
def list_accounts(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.list_accounts(db, ctx)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@accounts_router.get("/{account_id}", response_model=AccountRead)
def get_account(
    request: Request,
    account_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.get_account(db, ctx, account_id)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@accounts_router.patch("/{account_id}", response_model=AccountRead)
def update_account(
    request: Request,
    account_id: uuid.UUID,
    payload: AccountUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.update_account(db, ctx, account_id, payload)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@opportunities_router.post("", response_model=OpportunityRead, status_code=status.HTTP_201_CREATED)
def create_opportunity(
    request: Request,
    payload: OpportunityCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.create_opportunity(db, ctx, payload)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@opportunities_router.get("", response_model=list[OpportunityRead])
def list_opportunities(
    request: Request,
    account_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.list_opportunities(db, ctx, account_id=account_id)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@opportunities_router.get("/{opportunity_id}", response_model=OpportunityRead)
def get_opportunity(
    request: Request,
    opportunity_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.get_opportunity(db, ctx, opportunity_id)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@opportunities_router.patch("/{opportunity_id}", response_model=OpportunityRead)
def update_opportunity(
    request: Request,
    opportunity_id: uuid.UUID,
    payload: OpportunityUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.update_opportunity(db, ctx, opportunity_id, payload)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@opportunities_router.post("/{opportunity_id}/transition", response_model=OpportunityRead)
def transition_opportunity(
    request: Request,
    opportunity_id: uuid.UUID,
    payload: OpportunityTransitionRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.transition_opportunity_state(db, ctx, opportunity_id, payload.target_state)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@quotes_router.post("", response_model=QuoteView, status_code=status.HTTP_201_CREATED)
def create_quote(
    request: Request,
    payload: QuoteCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.create_quote(db, ctx, payload)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@quotes_router.get("", response_model=list[QuoteView])
def list_quotes(
    request: Request,
    opportunity_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.list_quotes(db, ctx, opportunity_id=opportunity_id)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@quotes_router.get("/{quote_id}", response_model=QuoteView)
def get_quote(
    request: Request,
    quote_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.get_quote(db, ctx, quote_id)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@quotes_router.patch("/{quote_id}", response_model=QuoteView)
def update_quote(
    request: Request,
    quote_id: uuid.UUID,
    payload: QuoteUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.update_quote(db, ctx, quote_id, payload)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@quotes_router.post("/{quote_id}/transition", response_model=QuoteView)
def transition_quote(
    request: Request,
    quote_id: uuid.UUID,
    payload: QuoteTransitionRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.transition_quote_state(db, ctx, quote_id, payload.target_state, payload.comments)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@quotes_router.get("/{quote_id}/approvals", response_model=list[ApprovalRead])
def list_quote_approvals(
    request: Request,
    quote_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.list_approvals(db, ctx, quote_id)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@handovers_router.post("", response_model=HandoverRead, status_code=status.HTTP_201_CREATED)
def create_handover(
    request: Request,
    payload: HandoverCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.create_handover(db, ctx, payload)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@handovers_router.get("", response_model=list[HandoverRead])
def list_handovers(
    request: Request,
    opportunity_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.list_handovers(db, ctx, opportunity_id=opportunity_id)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@handovers_router.get("/{handover_id}", response_model=HandoverRead)
def get_handover(
    request: Request,
    handover_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.get_handover(db, ctx, handover_id)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@handovers_router.patch("/{handover_id}", response_model=HandoverRead)
def update_handover(
    request: Request,
    handover_id: uuid.UUID,
    payload: HandoverUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.update_handover(db, ctx, handover_id, payload)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)


@handovers_router.post("/{handover_id}/transition", response_model=HandoverRead)
def transition_handover(
    request: Request,
    handover_id: uuid.UUID,
    payload: HandoverTransitionRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return sales_service.transition_handover_state(
            db,
            ctx,
            handover_id,
            payload.target_state,
            payload.flagged_reason,
        )
    except SalesDeskError as exc:
        return error_from_exception(request, exc)
