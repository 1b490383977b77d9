from __future__ import annotations

from salesdesk.core.errors import SalesDeskError


class AuthorizationError(SalesDeskError):
    """Base authorization error for role gate and FLS enforcement failures."""

    code = "authorization_error"
    status_code = 403


class Unauthorized(AuthorizationError):
    """Raised when no principal could be resolved for the call."""

    code = "unauthorized"
    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class InsufficientPermissions(AuthorizationError):
    code = "insufficient_permissions"

    def __init__(self, message: str, *, resource: str, action: str, role: str | None) -> None:
        self.resource = resource
        self.action = action
        self.role = role
        super().__init__(message, details={"resource": resource, "action": action, "role": role})


class ForbiddenFieldError(AuthorizationError):
    """Raised when a payload contains fields that are not editable by policy."""

    code = "forbidden_fields"

    def __init__(self, resource: str, fields: list[str]) -> None:
        self.resource = resource
        self.fields = sorted(set(fields))
        super().__init__(
            f"Forbidden fields for resource '{resource}': {', '.join(self.fields)}",
            details={"resource": resource, "fields": self.fields},
        )
