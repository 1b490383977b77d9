from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from salesdesk import audit
from salesdesk.metrics import observe_fls_denied_fields
from salesdesk.platform.security.context import AuthContext
from salesdesk.platform.security.errors import ForbiddenFieldError
from salesdesk.platform.security.policies import get_policy_backend


def apply_fls_read(resource: str, record: dict[str, Any], ctx: AuthContext) -> dict[str, Any]:
    """Apply field-level read policy to a single record.

    Denied fields are dropped from the output rather than blanked.
    """

    policy = get_policy_backend()
    output: dict[str, Any] = {}
    denied_fields: list[str] = []

    for field_name, value in record.items():
        if policy.can_read_field(resource, field_name, ctx):
            output[field_name] = value
        else:
            denied_fields.append(field_name)

    _emit_fls_observability(
        resource=resource,
        operation="read",
        ctx=ctx,
        record=record,
        denied_fields=denied_fields,
    )
    return output


def apply_fls_read_many(resource: str, records: Iterable[dict[str, Any]], ctx: AuthContext) -> list[dict[str, Any]]:
    """Apply field-level read policy to a sequence of records."""

    return [apply_fls_read(resource, record, ctx) for record in records]


def readable_fields(resource: str, fields: Iterable[str], ctx: AuthContext) -> list[str]:
    """Return the subset of ``fields`` the caller may read."""

    policy = get_policy_backend()
    return [field_name for field_name in fields if policy.can_read_field(resource, field_name, ctx)]


def validate_fls_write(resource: str, payload: dict[str, Any], ctx: AuthContext) -> None:
    """Validate field-level write policy for a payload and raise on forbidden fields."""

    policy = get_policy_backend()
    denied_fields = [field_name for field_name in payload if not policy.can_edit_field(resource, field_name, ctx)]
    if not denied_fields:
        return

    _emit_fls_observability(
        resource=resource,
        operation="write",
        ctx=ctx,
        record=payload,
        denied_fields=denied_fields,
    )
    raise ForbiddenFieldError(resource=resource, fields=denied_fields)


def filter_fls_write(resource: str, payload: dict[str, Any], ctx: AuthContext) -> dict[str, Any]:
    """Drop payload fields the caller may not edit instead of rejecting the write."""

    policy = get_policy_backend()
    allowed: dict[str, Any] = {}
    dropped_fields: list[str] = []
    for field_name, value in payload.items():
        if policy.can_edit_field(resource, field_name, ctx):
            allowed[field_name] = value
        else:
            dropped_fields.append(field_name)

    _emit_fls_observability(
        resource=resource,
        operation="write_filtered",
        ctx=ctx,
        record=payload,
        denied_fields=dropped_fields,
    )
    return allowed


def _emit_fls_observability(
    *,
    resource: str,
    operation: str,
    ctx: AuthContext,
    record: dict[str, Any],
    denied_fields: list[str],
) -> None:
    denied_count = len(denied_fields)
    if denied_count == 0:
        return

    observe_fls_denied_fields(resource=resource, operation=operation, denied_count=denied_count)
    audit.record(
        actor_user_id=ctx.user_id,
        entity_type="security.fls",
        entity_id=str(record.get("id", "unknown")),
        action=f"fls.{operation}",
        before=None,
        after={
            "resource": resource,
            "role": ctx.role,
            "denied_fields": denied_fields,
            "denied_count": denied_count,
        },
        correlation_id=ctx.correlation_id,
    )
