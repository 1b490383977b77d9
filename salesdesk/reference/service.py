from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from salesdesk import audit, events
from salesdesk.core.errors import DuplicateReferenceCode, InvalidReferenceData, NotFound
from salesdesk.core.rbac import authorize
from salesdesk.platform.security.context import AuthContext
from salesdesk.platform.security.policies import ResourceAction
from salesdesk.reference.models import RevenueModel
from salesdesk.reference.repository import (
    ReferenceRepository,
    approval_threshold_repository,
    icp_category_repository,
    opportunity_stage_repository,
    revenue_model_repository,
    revenue_stream_repository,
)
from salesdesk.reference.schemas import (
    ApprovalThresholdRead,
    ICPCategoryRead,
    OpportunityStageRead,
    RevenueModelRead,
    RevenueStreamRead,
)


logger = logging.getLogger("salesdesk.reference")

_WHITESPACE = re.compile(r"\s+")
_NON_SLUG = re.compile(r"[^a-z0-9-]")


def slugify_code(name: str) -> str:
    """Lowercase, whitespace runs to ``-``, anything outside ``[a-z0-9-]`` removed."""

    return _NON_SLUG.sub("", _WHITESPACE.sub("-", name.strip().lower()))


@dataclass(frozen=True, slots=True)
class ReferenceKind:
    key: str
    label: str
    repository: ReferenceRepository
    read_schema: type[BaseModel]
    immutable_fields: frozenset[str] = field(default_factory=frozenset)

    @property
    def resource(self) -> str:
        return self.repository.resource


REVENUE_MODELS = ReferenceKind("revenue_model", "Revenue model", revenue_model_repository, RevenueModelRead)
REVENUE_STREAMS = ReferenceKind("revenue_stream", "Revenue stream", revenue_stream_repository, RevenueStreamRead)
ICP_CATEGORIES = ReferenceKind("icp_category", "ICP category", icp_category_repository, ICPCategoryRead)
APPROVAL_THRESHOLDS = ReferenceKind(
    "approval_threshold",
    "Approval threshold",
    approval_threshold_repository,
    ApprovalThresholdRead,
)
OPPORTUNITY_STAGES = ReferenceKind(
    "opportunity_stage",
    "Opportunity stage",
    opportunity_stage_repository,
    OpportunityStageRead,
    immutable_fields=frozenset({"stage"}),
)


@dataclass(slots=True)
class ReferenceService:
    def create(self, session: Session, ctx: AuthContext | None, kind: ReferenceKind, payload: BaseModel) -> Any:
        ctx = authorize(ctx, kind.resource, ResourceAction.CREATE)
        data = payload.model_dump(mode="python")
        if "code" in data and not data["code"]:
            data["code"] = slugify_code(data.get("name") or "")
            if not data["code"]:
                raise InvalidReferenceData("A code could not be derived from the name", details={"name": data.get("name")})
        self._validate(session, kind, data)
        self._ensure_unique(session, kind, data)

        entity = kind.repository.model(**data)
        session.add(entity)
        self._commit(session, kind, data)
        session.refresh(entity)

        read = self._to_read(kind, entity, ctx)
        self._record(ctx, kind, entity.id, "create", None, read)
        return read

    def update(
        self,
        session: Session,
        ctx: AuthContext | None,
        kind: ReferenceKind,
        entity_id: uuid.UUID,
        payload: BaseModel,
    ) -> Any:
        ctx = authorize(ctx, kind.resource, ResourceAction.UPDATE)
        entity = self._get(session, kind, entity_id)
        columns = kind.repository.model.__table__.columns
        changes = {
            key: value
            for key, value in payload.model_dump(mode="python", exclude_unset=True).items()
            if value is not None or columns[key].nullable
        }
        locked = sorted(kind.immutable_fields & changes.keys())
        if locked:
            raise InvalidReferenceData(
                f"{kind.label} fields cannot be changed after creation: {', '.join(locked)}",
                details={"fields": locked},
            )
        if not changes:
            return self._to_read(kind, entity, ctx)

        merged = {**kind.repository.to_record(entity), **changes}
        self._validate(session, kind, merged)
        self._ensure_unique(session, kind, changes, exclude_id=entity.id)

        before = self._to_read(kind, entity, ctx)
        for key, value in changes.items():
            setattr(entity, key, value)
        self._commit(session, kind, changes)
        session.refresh(entity)

        read = self._to_read(kind, entity, ctx)
        self._record(ctx, kind, entity.id, "update", before, read)
        return read

    def deactivate(self, session: Session, ctx: AuthContext | None, kind: ReferenceKind, entity_id: uuid.UUID) -> Any:
        return self._set_active(session, ctx, kind, entity_id, active=False)

    def activate(self, session: Session, ctx: AuthContext | None, kind: ReferenceKind, entity_id: uuid.UUID) -> Any:
        return self._set_active(session, ctx, kind, entity_id, active=True)

    def list(
        self,
        session: Session,
        ctx: AuthContext | None,
        kind: ReferenceKind,
        *,
        include_inactive: bool = False,
    ) -> list[Any]:
        ctx = authorize(ctx, kind.resource, ResourceAction.READ)
        rows = kind.repository.list(session, include_inactive=include_inactive)
        return [self._to_read(kind, row, ctx) for row in rows]

    def get(self, session: Session, ctx: AuthContext | None, kind: ReferenceKind, entity_id: uuid.UUID) -> Any:
        ctx = authorize(ctx, kind.resource, ResourceAction.READ)
        return self._to_read(kind, self._get(session, kind, entity_id), ctx)

    def _set_active(
        self,
        session: Session,
        ctx: AuthContext | None,
        kind: ReferenceKind,
        entity_id: uuid.UUID,
        *,
        active: bool,
    ) -> Any:
        ctx = authorize(ctx, kind.resource, ResourceAction.DELETE if not active else ResourceAction.UPDATE)
        entity = self._get(session, kind, entity_id)
        if entity.is_active == active:
            return self._to_read(kind, entity, ctx)

        before = self._to_read(kind, entity, ctx)
        entity.is_active = active
        session.commit()
        session.refresh(entity)

        read = self._to_read(kind, entity, ctx)
        self._record(ctx, kind, entity.id, "activate" if active else "deactivate", before, read)
        return read

    @staticmethod
    def _get(session: Session, kind: ReferenceKind, entity_id: uuid.UUID) -> Any:
        entity = kind.repository.get(session, entity_id)
        if entity is None:
            raise NotFound(kind.label, entity_id)
        return entity

    @staticmethod
    def _validate(session: Session, kind: ReferenceKind, data: dict[str, Any]) -> None:
        if kind is APPROVAL_THRESHOLDS:
            maximum = data.get("max_deal_value")
            minimum = data.get("min_deal_value")
            if maximum is not None and minimum is not None and maximum <= minimum:
                raise InvalidReferenceData(
                    "max_deal_value must be greater than min_deal_value",
                    details={"min_deal_value": str(minimum), "max_deal_value": str(maximum)},
                )
        if kind is REVENUE_STREAMS and data.get("revenue_model_id") is not None:
            if session.get(RevenueModel, data["revenue_model_id"]) is None:
                raise NotFound("Revenue model", data["revenue_model_id"])

    @staticmethod
    def _ensure_unique(
        session: Session,
        kind: ReferenceKind,
        data: dict[str, Any],
        *,
        exclude_id: uuid.UUID | None = None,
    ) -> None:
        unique_field = kind.repository.unique_field
        if unique_field is None or data.get(unique_field) is None:
            return
        value = data[unique_field]
        if kind.repository.unique_value_taken(session, value, exclude_id=exclude_id):
            raise DuplicateReferenceCode(
                f'{kind.label} {unique_field} "{value}" already exists',
                details={unique_field: value},
            )

    @staticmethod
    def _commit(session: Session, kind: ReferenceKind, data: dict[str, Any]) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            unique_field = kind.repository.unique_field
            logger.warning(
                "reference_write_conflict",
                extra={"entity_type": kind.key, "error": str(exc.orig)},
            )
            raise DuplicateReferenceCode(
                f"{kind.label} conflicts with an existing record",
                details={unique_field: data.get(unique_field)} if unique_field else None,
            ) from exc

    @staticmethod
    def _to_read(kind: ReferenceKind, entity: Any, ctx: AuthContext) -> Any:
        record = kind.repository.apply_read_security(kind.repository.to_record(entity), ctx)
        return kind.read_schema.model_validate(record)

    @staticmethod
    def _record(
        ctx: AuthContext,
        kind: ReferenceKind,
        entity_id: uuid.UUID,
        action: str,
        before: BaseModel | None,
        after: BaseModel,
    ) -> None:
        audit.record(
            actor_user_id=ctx.user_id,
            entity_type=kind.resource,
            entity_id=str(entity_id),
            action=action,
            before=before.model_dump(mode="json") if before is not None else None,
            after=after.model_dump(mode="json"),
            correlation_id=ctx.correlation_id,
        )
        events.publish(
            events.build_envelope(
                f"{kind.resource}.{action}d",
                actor_user_id=ctx.user_id,
                payload={"id": str(entity_id)},
                correlation_id=ctx.correlation_id,
            )
        )


reference_service = ReferenceService()
