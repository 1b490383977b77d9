from dataclasses import dataclass

from fastapi import Depends
from jose import JWTError, jwt
from sqlalchemy.orm import Session
from starlette.requests import Request

from salesdesk.context import get_correlation_id
from salesdesk.core.config import get_settings
from salesdesk.core.database import get_db
from salesdesk.platform.security.context import AuthContext
from salesdesk.users.repository import UserProfileRepository


_profiles = UserProfileRepository()


@dataclass
class AuthUser:
    sub: str


def bearer_subject(request: Request) -> str | None:
    """Subject of a valid bearer token on the request, or None."""

    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""
    if not token:
        return None

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None

    subject = payload.get("sub")
    return str(subject) if subject else None


async def get_current_user(request: Request) -> AuthUser | None:
    subject = bearer_subject(request)
    if subject is None:
        return None
    return AuthUser(sub=subject)


def get_auth_context(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser | None = Depends(get_current_user),
) -> AuthContext | None:
    """Build the per-request principal; the role is always read from the stored profile."""

    if user is None:
        return None

    role = _profiles.role_for(db, user.sub)
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)

    request_context = getattr(request.state, "context", None)
    if request_context is not None:
        request_context.user_id = user.sub
        request_context.role = role

    return AuthContext(user_id=user.sub, role=role, correlation_id=correlation_id)
