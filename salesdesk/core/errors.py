from __future__ import annotations

from typing import Any


class SalesDeskError(Exception):
    """Base class for failures that are reported to callers as a tagged error envelope."""

    code = "error"
    status_code = 400

    def __init__(self, message: str, *, details: Any = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class NotFound(SalesDeskError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: object | None = None, *, message: str | None = None) -> None:
        self.entity = entity
        self.entity_id = str(entity_id) if entity_id is not None else None
        super().__init__(message or f"{entity} not found", details={"entity": entity, "id": self.entity_id})


class InvalidParentState(SalesDeskError):
    """A create operation's parent entity is not in one of the required states."""

    code = "invalid_parent_state"
    status_code = 409

    def __init__(self, message: str, *, required: list[str], actual: str) -> None:
        self.required = list(required)
        self.actual = actual
        super().__init__(message, details={"required_states": self.required, "actual_state": actual})


class InvalidTransition(SalesDeskError):
    code = "invalid_transition"
    status_code = 409

    def __init__(
        self,
        message: str,
        *,
        current_state: str | None = None,
        target_state: str | None = None,
        valid_next_states: list[str] | None = None,
    ) -> None:
        self.current_state = current_state
        self.target_state = target_state
        self.valid_next_states = list(valid_next_states or [])
        super().__init__(
            message,
            details={
                "current_state": current_state,
                "target_state": target_state,
                "valid_next_states": self.valid_next_states,
            },
        )


class InvalidTransitionArguments(SalesDeskError):
    code = "invalid_transition_arguments"
    status_code = 422


class DuplicateQuoteNumber(SalesDeskError):
    code = "duplicate_quote_number"
    status_code = 409

    def __init__(self, quote_number: str) -> None:
        self.quote_number = quote_number
        super().__init__(f'Quote number "{quote_number}" already exists', details={"quote_number": quote_number})


class DuplicateReferenceCode(SalesDeskError):
    code = "duplicate_reference_code"
    status_code = 409


class DuplicateUserEmail(SalesDeskError):
    code = "duplicate_user_email"
    status_code = 409


class RowVersionConflict(SalesDeskError):
    code = "row_version_conflict"
    status_code = 409

    def __init__(self, entity: str) -> None:
        super().__init__(f"{entity} was modified by another request", details={"entity": entity})


class SideEffectFailure(SalesDeskError):
    code = "side_effect_failure"
    status_code = 500


class InvalidReferenceData(SalesDeskError):
    code = "invalid_reference_data"
    status_code = 422


class InvalidDateRange(SalesDeskError):
    code = "invalid_date_range"
    status_code = 422

    def __init__(self, start_field: str, end_field: str) -> None:
        super().__init__(
            f"{end_field} must not be before {start_field}",
            details={"start_field": start_field, "end_field": end_field},
        )
