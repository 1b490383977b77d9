"""Transition tables and admissibility checks for the sales pipelines.

Everything here is pure: no I/O, no logging, no session access. The action
layer calls :func:`validate_transition` before any write and uses the
returned reason verbatim in error messages.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Literal


OpportunityState = Literal["lead", "qualified", "proposal", "closed_won", "closed_lost"]
QuoteState = Literal["draft", "pending_approval", "approved", "rejected"]
HandoverState = Literal["pending", "accepted", "flagged"]
ApprovalStatus = Literal["pending", "approved", "rejected"]

TransitionTable = Mapping[str, Sequence[str]]

OPPORTUNITY_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "lead": ("qualified", "closed_lost"),
    "qualified": ("proposal", "closed_lost"),
    "proposal": ("closed_won", "closed_lost"),
    "closed_won": (),
    "closed_lost": (),
}

QUOTE_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "draft": ("pending_approval",),
    "pending_approval": ("approved", "rejected"),
    "approved": (),
    "rejected": (),
}

HANDOVER_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "pending": ("accepted", "flagged"),
    "accepted": (),
    "flagged": (),
}

TRANSITION_TABLES: dict[str, dict[str, tuple[str, ...]]] = {
    "opportunity": OPPORTUNITY_TRANSITIONS,
    "quote": QUOTE_TRANSITIONS,
    "handover": HANDOVER_TRANSITIONS,
}

# Listed explicitly so a misconfigured table cannot reopen a closed record.
TERMINAL_STATES = frozenset({"closed_won", "closed_lost", "approved", "rejected", "accepted", "flagged"})

QUOTE_CREATABLE_PARENT_STATES = ("proposal", "closed_won")
HANDOVER_CREATABLE_PARENT_STATES = ("closed_won",)
QUOTE_DECISION_STATES = frozenset({"approved", "rejected"})

CLOSED_STATE_MESSAGE = "Cannot transition from a closed state. No backward transitions allowed."


@dataclass(frozen=True)
class TransitionCheck:
    allowed: bool
    current_state: str
    target_state: str
    valid_next_states: list[str] = field(default_factory=list)
    reason: str | None = None


def valid_next_states(current: str, table: TransitionTable) -> list[str]:
    return list(table.get(current, ()))


def is_valid_transition(current: str, target: str, table: TransitionTable) -> bool:
    return target in table.get(current, ())


def is_terminal_state(state: str) -> bool:
    return state in TERMINAL_STATES


def describe_rejection(current: str, target: str, table: TransitionTable) -> str:
    allowed = valid_next_states(current, table)
    return f"Invalid transition from {current} to {target}. Valid transitions: {', '.join(allowed) or 'none'}"


def validate_transition(current: str, target: str, table: TransitionTable) -> TransitionCheck:
    """Decide whether ``current -> target`` is admissible under ``table``."""

    next_states = valid_next_states(current, table)
    if not is_valid_transition(current, target, table):
        return TransitionCheck(
            allowed=False,
            current_state=current,
            target_state=target,
            valid_next_states=next_states,
            reason=describe_rejection(current, target, table),
        )
    if is_terminal_state(current):
        return TransitionCheck(
            allowed=False,
            current_state=current,
            target_state=target,
            valid_next_states=[],
            reason=CLOSED_STATE_MESSAGE,
        )
    return TransitionCheck(allowed=True, current_state=current, target_state=target, valid_next_states=next_states)
