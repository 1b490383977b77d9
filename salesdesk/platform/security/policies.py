from __future__ import annotations

from enum import StrEnum
from threading import Lock
from typing import Protocol

from salesdesk.platform.security.context import AuthContext


class Role(StrEnum):
    EXECUTIVE = "executive"
    SALES = "sales"
    FINANCE = "finance"
    OPERATIONS = "operations"


class ResourceAction(StrEnum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    TRANSITION = "transition"
    SUBMIT = "submit"
    APPROVE = "approve"


class FieldAction(StrEnum):
    READ = "field.read"
    EDIT = "field.edit"


ACCOUNT = "sales.account"
OPPORTUNITY = "sales.opportunity"
QUOTE = "sales.quote"
APPROVAL = "sales.approval"
HANDOVER = "sales.handover"
REVENUE_MODEL = "reference.revenue_model"
REVENUE_STREAM = "reference.revenue_stream"
ICP_CATEGORY = "reference.icp_category"
APPROVAL_THRESHOLD = "reference.approval_threshold"
OPPORTUNITY_STAGE = "reference.opportunity_stage"
USER_PROFILE = "users.profile"
DASHBOARD = "reporting.dashboard"
SYSTEM_METRICS = "system.metrics"

REFERENCE_RESOURCES = (REVENUE_MODEL, REVENUE_STREAM, ICP_CATEGORY, APPROVAL_THRESHOLD, OPPORTUNITY_STAGE)

# Quote columns operations may read. Everything else (cost, margin, margin_percentage,
# discount_percentage) is never selected for that role.
QUOTE_OPERATIONS_FIELDS = (
    "id",
    "opportunity_id",
    "quote_number",
    "state",
    "deal_value",
    "scope",
    "valid_until",
    "created_by",
    "created_at",
    "updated_at",
)
HANDOVER_CORE_FIELDS = ("quote_id", "deal_value", "scope", "expected_start_date", "expected_end_date")
HANDOVER_OPERATIONS_FIELDS = ("state", "accepted_by", "flagged_reason")


def _grant(resource: str, action: ResourceAction) -> str:
    return f"{resource}.{action.value}"


def _field_grants(resource: str, action: FieldAction, fields: tuple[str, ...]) -> set[str]:
    return {f"{resource}.{action.value}:{field}" for field in fields}


def _readable(*resources: str) -> set[str]:
    grants: set[str] = set()
    for resource in resources:
        grants.add(_grant(resource, ResourceAction.READ))
        grants.add(f"{resource}.{FieldAction.READ.value}:*")
    return grants


def _managed(*resources: str) -> set[str]:
    """Every action on ``resources`` plus unrestricted field read and edit."""

    grants: set[str] = set()
    for resource in resources:
        grants.add(f"{resource}.*")
        grants.add(f"{resource}.{FieldAction.READ.value}:*")
        grants.add(f"{resource}.{FieldAction.EDIT.value}:*")
    return grants


ROLE_PERMISSIONS: dict[str, set[str]] = {
    Role.EXECUTIVE: {
        *_managed(ACCOUNT, OPPORTUNITY, QUOTE, *REFERENCE_RESOURCES, USER_PROFILE),
        _grant(HANDOVER, ResourceAction.CREATE),
        _grant(HANDOVER, ResourceAction.UPDATE),
        *_field_grants(HANDOVER, FieldAction.EDIT, HANDOVER_CORE_FIELDS),
        *_readable(HANDOVER, APPROVAL, DASHBOARD, SYSTEM_METRICS),
    },
    Role.SALES: {
        *_managed(ACCOUNT, OPPORTUNITY),
        _grant(QUOTE, ResourceAction.CREATE),
        _grant(QUOTE, ResourceAction.UPDATE),
        _grant(QUOTE, ResourceAction.SUBMIT),
        f"{QUOTE}.{FieldAction.EDIT.value}:*",
        _grant(HANDOVER, ResourceAction.CREATE),
        _grant(HANDOVER, ResourceAction.UPDATE),
        *_field_grants(HANDOVER, FieldAction.EDIT, HANDOVER_CORE_FIELDS),
        *_readable(QUOTE, HANDOVER, APPROVAL, *REFERENCE_RESOURCES, DASHBOARD),
    },
    Role.FINANCE: {
        _grant(QUOTE, ResourceAction.APPROVE),
        *_readable(ACCOUNT, OPPORTUNITY, QUOTE, HANDOVER, APPROVAL, *REFERENCE_RESOURCES, DASHBOARD),
    },
    Role.OPERATIONS: {
        _grant(QUOTE, ResourceAction.READ),
        *_field_grants(QUOTE, FieldAction.READ, QUOTE_OPERATIONS_FIELDS),
        _grant(HANDOVER, ResourceAction.UPDATE),
        _grant(HANDOVER, ResourceAction.TRANSITION),
        *_field_grants(HANDOVER, FieldAction.EDIT, HANDOVER_OPERATIONS_FIELDS),
        *_readable(ACCOUNT, OPPORTUNITY, HANDOVER, APPROVAL, *REFERENCE_RESOURCES, DASHBOARD),
    },
}


class PolicyBackend(Protocol):
    """Pluggable policy backend interface for role and field checks."""

    def is_resource_allowed(self, resource: str, action: ResourceAction, ctx: AuthContext) -> bool:
        ...

    def can_read_field(self, resource: str, field: str, ctx: AuthContext) -> bool:
        ...

    def can_edit_field(self, resource: str, field: str, ctx: AuthContext) -> bool:
        ...


class InMemoryPolicyBackend:
    """Role policy backend with wildcard support."""

    def __init__(self, role_permissions: dict[str, set[str]] | None = None, *, default_allow: bool = False) -> None:
        self._role_permissions = ROLE_PERMISSIONS if role_permissions is None else role_permissions
        self._default_allow = default_allow

    def is_resource_allowed(self, resource: str, action: ResourceAction, ctx: AuthContext) -> bool:
        if self._default_allow:
            return True
        required = f"{resource}.{action.value}"
        return self._has_permission(required, ctx)

    def can_read_field(self, resource: str, field: str, ctx: AuthContext) -> bool:
        if self._default_allow:
            return True

        read_permission = f"{resource}.{FieldAction.READ.value}:{field}"
        return self._has_permission(read_permission, ctx)

    def can_edit_field(self, resource: str, field: str, ctx: AuthContext) -> bool:
        if self._default_allow:
            return True

        edit_permission = f"{resource}.{FieldAction.EDIT.value}:{field}"
        return self._has_permission(edit_permission, ctx)

    def _has_permission(self, required: str, ctx: AuthContext) -> bool:
        grants: set[str] = set()
        for role in ctx.roles:
            grants.update(self._role_permissions.get(role, set()))

        return any(self._matches(grant, required) for grant in grants)

    @staticmethod
    def _matches(grant: str, required: str) -> bool:
        if grant in {"*", required}:
            return True

        # resource wildcards cover actions only; field permissions need a field grant
        if grant.endswith(".*"):
            return ":" not in required and required.startswith(grant[:-1])

        if ":" in grant and grant.endswith(":*"):
            return required.startswith(grant[:-1])

        return False


_POLICY_BACKEND: PolicyBackend = InMemoryPolicyBackend()
_POLICY_LOCK = Lock()


def get_policy_backend() -> PolicyBackend:
    """Get the active policy backend instance."""

    return _POLICY_BACKEND


def set_policy_backend(backend: PolicyBackend) -> None:
    """Set the active policy backend instance."""

    global _POLICY_BACKEND
    with _POLICY_LOCK:
        _POLICY_BACKEND = backend
