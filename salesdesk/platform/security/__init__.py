from salesdesk.platform.security.context import AuthContext
from salesdesk.platform.security.errors import (
    AuthorizationError,
    ForbiddenFieldError,
    InsufficientPermissions,
    Unauthorized,
)
from salesdesk.platform.security.fls import (
    apply_fls_read,
    apply_fls_read_many,
    filter_fls_write,
    readable_fields,
    validate_fls_write,
)
from salesdesk.platform.security.repository import BaseRepository
from salesdesk.platform.security.policies import (
    ROLE_PERMISSIONS,
    InMemoryPolicyBackend,
    PolicyBackend,
    ResourceAction,
    Role,
    set_policy_backend,
    get_policy_backend,
)

__all__ = [
    "AuthContext",
    "AuthorizationError",
    "ForbiddenFieldError",
    "InsufficientPermissions",
    "Unauthorized",
    "BaseRepository",
    "apply_fls_read",
    "apply_fls_read_many",
    "filter_fls_write",
    "readable_fields",
    "validate_fls_write",
    "ROLE_PERMISSIONS",
    "PolicyBackend",
    "InMemoryPolicyBackend",
    "ResourceAction",
    "Role",
    "set_policy_backend",
    "get_policy_backend",
]
