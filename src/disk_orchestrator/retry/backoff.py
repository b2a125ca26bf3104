"""
Backoff computation.

Delay before retry number ``attempt`` (1 = first retry) is
``min(base * 2 ** (attempt - 1), cap)`` unless the server supplied a numeric
Retry-After, which then wins for that attempt.
"""

from typing import Optional

from disk_orchestrator.models.operations import RetryPolicy


def compute_backoff(attempt: int, base: float, cap: float) -> float:
    """Capped exponential backoff for the given 1-indexed attempt."""
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    return min(base * (2 ** (attempt - 1)), cap)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Parse a Retry-After header given in whole seconds.

    HTTP-dates and anything else non-numeric yield None so the caller falls
    back to computed backoff.
    """
    if value is None:
        return None
    value = value.strip()
    if not value.isdigit():
        return None
    return float(value)


def next_delay(
    attempt: int,
    policy: RetryPolicy,
    retry_after: Optional[str] = None,
) -> tuple[float, str]:
    """
    Delay before the next attempt and where it came from.

    Returns:
        Tuple of (seconds, source) where source is "retry-after" or "backoff"
    """
    if policy.honor_retry_after:
        hinted = parse_retry_after(retry_after)
        if hinted is not None:
            return hinted, "retry-after"
    return compute_backoff(attempt, policy.base_delay, policy.max_delay), "backoff"
