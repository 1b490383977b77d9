from __future__ import annotations

import logging

from salesdesk import audit
from salesdesk.metrics import observe_authz_denied
from salesdesk.platform.security.context import AuthContext
from salesdesk.platform.security.errors import InsufficientPermissions, Unauthorized
from salesdesk.platform.security.policies import ResourceAction, get_policy_backend


logger = logging.getLogger("salesdesk.authz")


def authorize(
    ctx: AuthContext | None,
    resource: str,
    action: ResourceAction,
    *,
    message: str | None = None,
) -> AuthContext:
    """Single authorization gate for every action in the service.

    Raises ``Unauthorized`` when no principal was resolved and
    ``InsufficientPermissions`` when the principal's role holds no grant for
    ``resource.action`` in the active policy backend.
    """

    if ctx is None or not ctx.user_id:
        raise Unauthorized()

    if ctx.role is not None and get_policy_backend().is_resource_allowed(resource, action, ctx):
        return ctx

    observe_authz_denied(resource=resource, action=action.value)
    logger.info(
        "authz.denied",
        extra={"resource": resource, "action": action.value, "role": ctx.role, "user_id": ctx.user_id},
    )
    audit.record(
        actor_user_id=ctx.user_id,
        entity_type="security.authz",
        entity_id=resource,
        action="authz.denied",
        before=None,
        after={"resource": resource, "action": action.value, "role": ctx.role},
        correlation_id=ctx.correlation_id,
    )
    raise InsufficientPermissions(
        message or f"Insufficient permissions: role '{ctx.role or 'none'}' cannot {action.value} {resource}",
        resource=resource,
        action=action.value,
        role=ctx.role,
    )


def has_permission(ctx: AuthContext | None, resource: str, action: ResourceAction) -> bool:
    if ctx is None or ctx.role is None:
        return False
    return get_policy_backend().is_resource_allowed(resource, action, ctx)
