"""Payment status transitions enforced by the record store."""

PENDING = "Pending"
COMPLETED = "Completed"
FAILED = "Failed"

STATUSES = (PENDING, COMPLETED, FAILED)

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PENDING: {COMPLETED, FAILED},
    COMPLETED: set(),
    FAILED: set(),
}


def is_terminal(status: str) -> bool:
    return not ALLOWED_TRANSITIONS.get(status, set())


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")
