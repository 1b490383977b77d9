from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

state_transitions_total = Counter(
    "state_transitions_total",
    "Applied state transitions",
    ["entity", "from_state", "to_state"],
)

state_transition_rejections_total = Counter(
    "state_transition_rejections_total",
    "Rejected state transitions by reason",
    ["entity", "reason"],
)

authz_denied_total = Counter(
    "authz_denied_total",
    "Role gate denials",
    ["resource", "action"],
)

approval_side_effect_failures_total = Counter(
    "approval_side_effect_failures_total",
    "Approval records that failed to persist after a quote decision",
)

fls_denied_fields_count = Counter(
    "fls_denied_fields_count",
    "Total FLS-denied fields",
    ["resource", "operation"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def _with_mount_prefix(template: str, path: str) -> str:
    # Routes inside an included router may report their template without the mount prefix.
    template_parts = template.strip("/").split("/")
    path_parts = path.strip("/").split("/")
    missing = len(path_parts) - len(template_parts)
    if missing <= 0 or template == "/":
        return template
    return "/" + "/".join(path_parts[:missing] + template_parts)


def resolve_http_path_label(request: Request) -> str:
    path = request.url.path
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(path_format, str) and path_format:
            return _with_mount_prefix(_PATH_PARAM_RE.sub("{id}", path_format), path)
    return _sanitize_path(path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_transition(entity: str, from_state: str, to_state: str) -> None:
    state_transitions_total.labels(entity=entity, from_state=from_state, to_state=to_state).inc()


def observe_transition_rejected(entity: str, reason: str) -> None:
    state_transition_rejections_total.labels(entity=entity, reason=reason).inc()


def observe_authz_denied(resource: str, action: str) -> None:
    authz_denied_total.labels(resource=resource, action=action).inc()


def observe_approval_side_effect_failure() -> None:
    approval_side_effect_failures_total.inc()


def observe_fls_denied_fields(resource: str, operation: str, denied_count: int) -> None:
    if denied_count > 0:
        fls_denied_fields_count.labels(resource=resource, operation=operation).inc(denied_count)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
