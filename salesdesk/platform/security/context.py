from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class AuthContext:
    """Authorization context used by the role gate and FLS checks.

    Built fresh for every request from the verified principal and the role
    currently stored on the user's profile.
    """

    user_id: str
    role: str | None = None
    correlation_id: str | None = None

    @property
    def roles(self) -> list[str]:
        return [self.role] if self.role else []
