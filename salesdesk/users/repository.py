from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from salesdesk.platform.security.policies import USER_PROFILE
from salesdesk.platform.security.repository import BaseRepository
from salesdesk.users.models import UserProfile


class UserProfileRepository(BaseRepository):
    resource = USER_PROFILE
    model = UserProfile

    def get(self, session: Session, user_id: str) -> UserProfile | None:
        return session.get(UserProfile, user_id)

    def role_for(self, session: Session, user_id: str) -> str | None:
        """Current role on the profile, read straight from storage."""

        return session.scalar(select(UserProfile.role).where(UserProfile.id == user_id))

    def email_exists(self, session: Session, email: str) -> bool:
        stmt = select(UserProfile.id).where(func.lower(UserProfile.email) == email.lower()).limit(1)
        return session.scalar(stmt) is not None

    def list(self, session: Session) -> list[UserProfile]:
        return list(session.scalars(select(UserProfile).order_by(UserProfile.created_at.desc())).all())
