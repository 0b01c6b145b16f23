# app/services/order_status.py
"""
Order status state machine.

The legal-transition table is plain data so the repository can enforce it
inside its conditional UPDATE (the write only matches rows whose current
status is an allowed predecessor of the target).
"""
from typing import Literal

OrderStatus = Literal[
    "Pending",
    "Runner Accepted",
    "Runner at ATM",
    "Cash Withdrawn",
    "Pending Handoff",
    "Completed",
    "Cancelled",
]

PENDING = "Pending"
RUNNER_ACCEPTED = "Runner Accepted"
RUNNER_AT_ATM = "Runner at ATM"
CASH_WITHDRAWN = "Cash Withdrawn"
PENDING_HANDOFF = "Pending Handoff"
COMPLETED = "Completed"
CANCELLED = "Cancelled"

ALL_STATUSES: tuple[str, ...] = (
    PENDING,
    RUNNER_ACCEPTED,
    RUNNER_AT_ATM,
    CASH_WITHDRAWN,
    PENDING_HANDOFF,
    COMPLETED,
    CANCELLED,
)

TERMINAL_STATUSES: frozenset[str] = frozenset({COMPLETED, CANCELLED})

#   Pending         -> Runner Accepted, Cancelled
#   Runner Accepted -> Runner at ATM, Cancelled
#   Runner at ATM   -> Cash Withdrawn, Cancelled
#   Cash Withdrawn  -> Pending Handoff, Cancelled
#   Pending Handoff -> Completed, Cancelled
#   Completed       -> (none)
#   Cancelled       -> (none)
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({RUNNER_ACCEPTED, CANCELLED}),
    RUNNER_ACCEPTED: frozenset({RUNNER_AT_ATM, CANCELLED}),
    RUNNER_AT_ATM: frozenset({CASH_WITHDRAWN, CANCELLED}),
    CASH_WITHDRAWN: frozenset({PENDING_HANDOFF, CANCELLED}),
    PENDING_HANDOFF: frozenset({COMPLETED, CANCELLED}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
}

# Timestamp column stamped when an order enters the status
MILESTONE_TIMESTAMPS: dict[str, str] = {
    RUNNER_ACCEPTED: "runner_accepted_at",
    RUNNER_AT_ATM: "runner_at_atm_at",
    CASH_WITHDRAWN: "cash_withdrawn_at",
    COMPLETED: "handoff_completed_at",
    CANCELLED: "cancelled_at",
}


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def is_active(status: str) -> bool:
    return not is_terminal(status)


def can_transition(current: str, target: str) -> bool:
    """True if `target` is directly reachable from `current`."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def valid_next_statuses(current: str) -> list[str]:
    """Reachable statuses from `current`, in lifecycle order."""
    allowed = ALLOWED_TRANSITIONS.get(current, frozenset())
    return [s for s in ALL_STATUSES if s in allowed]


def allowed_predecessors(target: str) -> list[str]:
    """Statuses from which `target` may be entered."""
    return [s for s in ALL_STATUSES if target in ALLOWED_TRANSITIONS[s]]
