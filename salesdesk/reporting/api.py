from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from salesdesk.api.errors import error_from_exception
from salesdesk.core.auth import get_auth_context
from salesdesk.core.database import get_db
from salesdesk.core.errors import SalesDeskError
from salesdesk.platform.security.context import AuthContext
from salesdesk.reporting.schemas import DashboardMetricsRead
from salesdesk.reporting.service import reporting_service


router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("", response_model=DashboardMetricsRead)
def get_dashboard(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext | None = Depends(get_auth_context),
):
    try:
        return reporting_service.get_dashboard_metrics(db, ctx)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)
