from __future__ import annotations

from typing import Any

from sqlalchemy import ColumnElement

from salesdesk.core.database import Base
from salesdesk.platform.security.context import AuthContext
from salesdesk.platform.security.fls import (
    apply_fls_read,
    apply_fls_read_many,
    filter_fls_write,
    readable_fields,
    validate_fls_write,
)


class BaseRepository:
    resource = ""
    model: type[Base] | None = None

    def projected_columns(self, ctx: AuthContext) -> list[ColumnElement[Any]]:
        """Columns of ``model`` the caller may read, used to build a restricted SELECT."""

        if self.model is None:
            raise TypeError(f"{type(self).__name__} has no model bound")
        table = self.model.__table__
        names = readable_fields(self.resource, [column.name for column in table.columns], ctx)
        return [table.c[name] for name in names]

    def to_record(self, instance: Base) -> dict[str, Any]:
        return {column.key: getattr(instance, column.key) for column in instance.__table__.columns}

    def apply_read_security(self, record: dict[str, Any], ctx: AuthContext) -> dict[str, Any]:
        return apply_fls_read(self.resource, record, ctx)

    def apply_read_security_many(self, records: list[dict[str, Any]], ctx: AuthContext) -> list[dict[str, Any]]:
        return apply_fls_read_many(self.resource, records, ctx)

    def validate_write_security(self, payload: dict[str, Any], ctx: AuthContext) -> None:
        validate_fls_write(self.resource, payload, ctx)

    def filter_write_security(self, payload: dict[str, Any], ctx: AuthContext) -> dict[str, Any]:
        return filter_fls_write(self.resource, payload, ctx)
