from datetime import datetime, timedelta


def compute_backoff_seconds(attempt: int, base: int = 60) -> int:
    # exponential backoff keyed on the attempt count after the failed send
    return base * (2 ** max(0, attempt - 1))


def next_retry_time(now: datetime, *, attempt: int, base: int) -> datetime:
    return now + timedelta(seconds=compute_backoff_seconds(attempt, base=base))
