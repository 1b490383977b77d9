from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import Response

from salesdesk.api.errors import error_from_exception, error_response
from salesdesk.core.auth import get_auth_context
from salesdesk.core.config import get_settings
from salesdesk.core.errors import SalesDeskError
from salesdesk.core.rbac import authorize
from salesdesk.metrics import generate_metrics_payload, metrics_content_type
from salesdesk.platform.security.context import AuthContext
from salesdesk.platform.security.policies import SYSTEM_METRICS, ResourceAction
from salesdesk.reference.api import router as settings_router
from salesdesk.reporting.api import router as dashboard_router
from salesdesk.sales.api import accounts_router, handovers_router, opportunities_router, quotes_router
from salesdesk.users.api import me_router, users_router

api_router = APIRouter(prefix="/api")
api_router.include_router(accounts_router)
api_router.include_router(opportunities_router)
api_router.include_router(quotes_router)
api_router.include_router(handovers_router)
api_router.include_router(settings_router)
api_router.include_router(users_router)
api_router.include_router(me_router)
api_router.include_router(dashboard_router)

router = APIRouter()
router.include_router(api_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(request: Request, ctx: AuthContext | None = Depends(get_auth_context)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        return error_response(request, status_code=status.HTTP_404_NOT_FOUND, code="not_found", message="not found")
    try:
        authorize(ctx, SYSTEM_METRICS, ResourceAction.READ)
    except SalesDeskError as exc:
        return error_from_exception(request, exc)
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
