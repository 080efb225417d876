"""Wall-clock helpers. Offer deadlines are absolute epoch milliseconds."""

import time


def now_ms() -> int:
    return int(time.time() * 1000)


def remaining_ms(expires_at: int | None, now: int) -> int:
    """Milliseconds left before `expires_at`, clamped at zero."""
    if expires_at is None:
        return 0
    return max(0, expires_at - now)
