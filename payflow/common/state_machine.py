"""Payment state machine transitions enforced by the payment store."""

from payflow.common.errors import InvalidTransition

PENDING = "Pending"
SUCCEEDED = "Succeeded"
FAILED = "Failed"

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PENDING: {SUCCEEDED, FAILED},
    SUCCEEDED: set(),
    FAILED: set(),
}


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransition(f"Invalid transition: {current} -> {new}")
