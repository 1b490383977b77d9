from salesdesk.workflows.transitions import (
    HANDOVER_TRANSITIONS,
    OPPORTUNITY_TRANSITIONS,
    QUOTE_TRANSITIONS,
    TERMINAL_STATES,
    TransitionCheck,
    is_terminal_state,
    is_valid_transition,
    validate_transition,
    valid_next_states,
)

__all__ = [
    "HANDOVER_TRANSITIONS",
    "OPPORTUNITY_TRANSITIONS",
    "QUOTE_TRANSITIONS",
    "TERMINAL_STATES",
    "TransitionCheck",
    "is_terminal_state",
    "is_valid_transition",
    "validate_transition",
    "valid_next_states",
]
