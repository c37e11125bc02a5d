"""
Order status state machine. Both update paths validate against this table.
"""
from types import MappingProxyType

# Current status -> allowed next statuses
VALID_TRANSITIONS = MappingProxyType({
    "pending": frozenset({"preparing", "cancelled"}),
    "preparing": frozenset({"ready", "cancelled"}),
    "ready": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),  # terminal
    "cancelled": frozenset(),  # terminal
})

ORDER_STATUSES = frozenset(VALID_TRANSITIONS)
TERMINAL_STATUSES = frozenset(s for s, allowed in VALID_TRANSITIONS.items() if not allowed)

COMPLETED = "completed"


def allowed_targets(current_status: str | None) -> frozenset[str]:
    return VALID_TRANSITIONS.get(current_status, frozenset())


def is_valid_transition(current_status: str | None, new_status: str | None) -> bool:
    """True if new_status is allowed after current_status. Unknown statuses are never valid."""
    return new_status in allowed_targets(current_status)
