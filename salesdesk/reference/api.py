import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from salesdesk.api.errors import error_from_exception
from salesdesk.core.auth import get_auth_context
from salesdesk.core.database import get_db
from salesdesk.core.errors import SalesDeskError
from salesdesk.platform.security.context import AuthContext
from salesdesk.reference.schemas import (
    ApprovalThresholdCreate,
    ApprovalThresholdUpdate,
    ICPCategoryCreate,
    ICPCategoryUpdate,
    OpportunityStageCreate,
    OpportunityStageUpdate,
    RevenueModelCreate,
    RevenueModelUpdate,
    RevenueStreamCreate,
    RevenueStreamUpdate,
)
from salesdesk.reference.service import (
    APPROVAL_THRESHOLDS,
    ICP_CATEGORIES,
    OPPORTUNITY_STAGES,
    REVENUE_MODELS,
    REVENUE_STREAMS,
    ReferenceKind,
    reference_service,
)


router = APIRouter(prefix="/settings", tags=["settings"])


def _register(path: str, kind: ReferenceKind, create_schema: type[BaseModel], update_schema: type[BaseModel]) -> None:
    """Mount list/get/create/update/activate/deactivate routes for one settings table."""

    read_schema = kind.read_schema

    @router.get(f"/{path}", response_model=list[read_schema], name=f"list_{kind.key}")
    def list_items(
        request: Request,
        include_inactive: bool = Query(default=False),
        db: Session = Depends(get_db),
        ctx: AuthContext | None = Depends(get_auth_context),
    ):
        try:
            return reference_service.list(db, ctx, kind, include_inactive=include_inactive)
        except SalesDeskError as exc:
            return error_from_exception(request, exc)

    @router.get(f"/{path}/{{item_id}}", response_model=read_schema, name=f"get_{kind.key}")
    def get_item(
        request: Request,
        item_id: uuid.UUID,
        db: Session = Depends(get_db),
        ctx: AuthContext | None = Depends(get_auth_context),
    ):
        try:
            return reference_service.get(db, ctx, kind, item_id)
        except SalesDeskError as exc:
            return error_from_exception(request, exc)

    @router.post(f"/{path}", response_model=read_schema, status_code=status.HTTP_201_CREATED, name=f"create_{kind.key}")
    def create_item(
        request: Request,
        payload: create_schema,  # type: ignore[valid-type]
        db: Session = Depends(get_db),
        ctx: AuthContext | None = Depends(get_auth_context),
    ):
        try:
            return reference_service.create(db, ctx, kind, payload)
        except SalesDeskError as exc:
            return error_from_exception(request, exc)

    @router.patch(f"/{path}/{{item_id}}", response_model=read_schema, name=f"update_{kind.key}")
    def update_item(
        request: Request,
        item_id: uuid.UUID,
        payload: update_schema,  # type: ignore[valid-type]
        db: Session = Depends(get_db),
        ctx: AuthContext | None = Depends(get_auth_context),
    ):
        try:
            return reference_service.update(db, ctx, kind, item_id, payload)
        except SalesDeskError as exc:
            return error_from_exception(request, exc)

    @router.post(f"/{path}/{{item_id}}/activate", response_model=read_schema, name=f"activate_{kind.key}")
    def activate_item(
        request: Request,
        item_id: uuid.UUID,
        db: Session = Depends(get_db),
        ctx: AuthContext | None = Depends(get_auth_context),
    ):
        try:
            return reference_service.activate(db, ctx, kind, item_id)
        except SalesDeskError as exc:
            return error_from_exception(request, exc)

    @router.delete(f"/{path}/{{item_id}}", response_model=read_schema, name=f"deactivate_{kind.key}")
    def deactivate_item(
        request: Request,
        item_id: uuid.UUID,
        db: Session = Depends(get_db),
        ctx: AuthContext | None = Depends(get_auth_context),
    ):
        try:
            return reference_service.deactivate(db, ctx, kind, item_id)
        except SalesDeskError as exc:
            return error_from_exception(request, exc)


_register("revenue-models", REVENUE_MODELS, RevenueModelCreate, RevenueModelUpdate)
_register("revenue-streams", REVENUE_STREAMS, RevenueStreamCreate, RevenueStreamUpdate)
_register("icp-categories", ICP_CATEGORIES, ICPCategoryCreate, ICPCategoryUpdate)
_register("approval-thresholds", APPROVAL_THRESHOLDS, ApprovalThresholdCreate, ApprovalThresholdUpdate)
_register("opportunity-stages", OPPORTUNITY_STAGES, OpportunityStageCreate, OpportunityStageUpdate)
