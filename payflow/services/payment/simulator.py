"""Deterministic stand-in for a payment provider's authorization decision."""

from decimal import Decimal

AUTHORIZATION_LIMIT = Decimal("5000")


def simulate(amount: Decimal) -> tuple[bool, str | None]:
    """Return `(ok, reason)` for an authorization of `amount`; no I/O."""

    if amount <= 0:
        return False, "Amount must be > 0"
    if amount > AUTHORIZATION_LIMIT:
        return False, "Amount exceeds limit"
    return True, None
