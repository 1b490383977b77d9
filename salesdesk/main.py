from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from salesdesk.api.routes import router as api_router
from salesdesk.core.config import get_settings
from salesdesk.core.context import RequestContextMiddleware
from salesdesk.core.database import create_schema
from salesdesk.core.events import InternalEvent, event_bus
from salesdesk.logging import configure_logging
from salesdesk.middleware.correlation_id import CorrelationIdMiddleware
from salesdesk.middleware.rate_limit import MutationRateLimitMiddleware
from salesdesk.middleware.request_logging import RequestLoggingMiddleware
from salesdesk.otel import SERVICE_NAME, get_fastapi_server_request_hook, setup_otel
from salesdesk.platform.security.policies import InMemoryPolicyBackend, set_policy_backend


configure_logging()
logger = logging.getLogger("salesdesk.lifecycle")
_subscriptions_registered = False


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


def _on_opportunity_state_changed(event: InternalEvent) -> None:
    payload = event.payload.get("payload") if isinstance(event.payload, dict) else None
    if not isinstance(payload, dict) or payload.get("to_state") != "closed_won":
        return
    logger.info(
        "opportunity_ready_for_handover",
        extra={
            "event_name": event.name,
            "entity_type": "opportunity",
            "entity_id": payload.get("opportunity_id"),
            "to_state": "closed_won",
        },
    )


def _on_quote_decided(event: InternalEvent) -> None:
    payload = event.payload.get("payload") if isinstance(event.payload, dict) else None
    if not isinstance(payload, dict):
        return
    logger.info(
        "quote_decided",
        extra={
            "event_name": event.name,
            "entity_type": "quote",
            "entity_id": payload.get("quote_id"),
            "user_id": payload.get("approver_id"),
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        event_bus.subscribe("sales.opportunity.state_changed", _on_opportunity_state_changed)
        event_bus.subscribe("sales.quote.approved", _on_quote_decided)
        event_bus.subscribe("sales.quote.rejected", _on_quote_decided)
        _subscriptions_registered = True
    if get_settings().auto_create_schema:
        create_schema()
    event_bus.publish("system.started", {"service": SERVICE_NAME})
    yield


settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_middleware(MutationRateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

set_policy_backend(InMemoryPolicyBackend(default_allow=settings.authz_default_allow))

if settings.otel_enabled:
    setup_otel(SERVICE_NAME, True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
