"""
Retry backoff policy.

Delays double from two minutes after the first attempt and are capped at
one hour. The fifth failed attempt is terminal.
"""

BASE_DELAY_SECONDS = 60
MAX_DELAY_SECONDS = 3600
MAX_ATTEMPTS = 5


def next_delay(attempt: int) -> int:
    """Seconds to wait before the attempt following `attempt`."""
    return min(2 ** attempt * BASE_DELAY_SECONDS, MAX_DELAY_SECONDS)


def is_terminal(attempt: int) -> bool:
    """True once `attempt` has reached the attempt ceiling."""
    return attempt >= MAX_ATTEMPTS
