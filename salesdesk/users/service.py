from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from salesdesk import audit, events
from salesdesk.core.errors import DuplicateUserEmail, NotFound
from salesdesk.core.rbac import authorize
from salesdesk.platform.security.context import AuthContext
from salesdesk.platform.security.errors import Unauthorized
from salesdesk.platform.security.policies import USER_PROFILE, ResourceAction
from salesdesk.users.models import UserProfile
from salesdesk.users.repository import UserProfileRepository
from salesdesk.users.schemas import ProfileUpdate, UserCreate, UserRead


logger = logging.getLogger("salesdesk.users")


@dataclass(slots=True)
class UserService:
    repository: UserProfileRepository = UserProfileRepository()

    def create_user(self, session: Session, ctx: AuthContext | None, payload: UserCreate) -> UserRead:
        ctx = authorize(ctx, USER_PROFILE, ResourceAction.CREATE)
        email = str(payload.email)
        if self.repository.email_exists(session, email):
            raise DuplicateUserEmail(f'A user with email "{email}" already exists', details={"email": email})

        profile = UserProfile(
            id=payload.id or str(uuid.uuid4()),
            email=email,
            full_name=payload.full_name,
            role=payload.role,
        )
        session.add(profile)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise DuplicateUserEmail(
                f'A user with email "{email}" or id "{profile.id}" already exists',
                details={"email": email, "id": profile.id},
            )
        session.refresh(profile)

        read = UserRead.model_validate(profile)
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="users.profile",
            entity_id=read.id,
            action="create",
            before=None,
            after=read.model_dump(mode="json"),
            correlation_id=ctx.correlation_id,
        )
        events.publish(
            events.build_envelope(
                "users.profile.created",
                actor_user_id=ctx.user_id,
                payload={"user_id": read.id, "role": read.role},
                correlation_id=ctx.correlation_id,
            )
        )
        logger.info("user_created", extra={"entity_type": "users.profile", "entity_id": read.id, "role": read.role})
        return read

    def list_users(self, session: Session, ctx: AuthContext | None) -> list[UserRead]:
        ctx = authorize(ctx, USER_PROFILE, ResourceAction.READ)
        records = self.repository.apply_read_security_many(
            [self.repository.to_record(profile) for profile in self.repository.list(session)],
            ctx,
        )
        return [UserRead.model_validate(record) for record in records]

    def get_profile(self, session: Session, ctx: AuthContext | None) -> UserRead:
        profile = self._own_profile(session, ctx)
        return UserRead.model_validate(profile)

    def update_profile(self, session: Session, ctx: AuthContext | None, payload: ProfileUpdate) -> UserRead:
        profile = self._own_profile(session, ctx)
        changes = payload.model_dump(exclude_unset=True)
        if not changes:
            return UserRead.model_validate(profile)

        before = UserRead.model_validate(profile).model_dump(mode="json")
        profile.full_name = changes.get("full_name")
        session.commit()
        session.refresh(profile)

        read = UserRead.model_validate(profile)
        audit.record(
            actor_user_id=profile.id,
            entity_type="users.profile",
            entity_id=profile.id,
            action="update",
            before=before,
            after=read.model_dump(mode="json"),
            correlation_id=ctx.correlation_id if ctx else None,
        )
        return read

    def _own_profile(self, session: Session, ctx: AuthContext | None) -> UserProfile:
        if ctx is None or not ctx.user_id:
            raise Unauthorized()
        profile = self.repository.get(session, ctx.user_id)
        if profile is None:
            raise NotFound("UserProfile", ctx.user_id, message="No profile exists for the current user")
        return profile


user_service = UserService()
