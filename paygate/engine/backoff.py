from datetime import datetime, timedelta


def retry_delay(attempt: int, base_minutes: float = 1.0) -> timedelta:
    """
    Exponential delay before the next delivery after `attempt` failed.

    delay = base * 2^(attempt - 1)  ->  1, 2, 4, 8, 16 minutes for attempts 1..5

    No jitter and no sleeping: the caller stores the result as
    next_attempt_at and lets the scheduler's sweep pick it up.
    """
    if attempt < 1:
        raise ValueError("attempt numbers start at 1")
    return timedelta(minutes=base_minutes * (2 ** (attempt - 1)))


def next_attempt_at(now: datetime, attempt: int, base_minutes: float = 1.0) -> datetime:
    return now + retry_delay(attempt, base_minutes)
