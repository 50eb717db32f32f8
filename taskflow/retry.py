"""
Retry and exponential backoff policy.
"""
from datetime import datetime, timedelta
from typing import Optional

from taskflow.config import DEFAULT_CONFIG
from taskflow.errors import InvalidTransition
from taskflow.models import FAR_FUTURE, RUNNING, WAITING, Task, utcnow


def backoff_delay(base: float, attempts: int) -> float:
    """
    Seconds to wait before the next attempt: base ^ attempts.

    `attempts` is the count after the failure being scored, so the first
    retry waits base^1, the second base^2 and so on. There is no ceiling;
    score() clamps a delay that overflows datetime to the far future.

    Example:
        backoff_delay(2, 1) -> 2.0
        backoff_delay(2, 3) -> 8.0
    """
    return float(base) ** int(attempts)


def should_retry(attempts: int, max_retries: int) -> bool:
    """
    Decide whether a task with `attempts` completed attempts may run again.

    Example:
        max_retries = 3
        attempts = 1 -> True
        attempts = 2 -> True
        attempts = 3 -> False (task is failed)
    """
    return attempts < max_retries


def score(
    task: Task,
    exit_code: Optional[int],
    error_message: Optional[str],
    base: Optional[float] = None,
    now: Optional[datetime] = None
) -> Task:
    """
    Apply the outcome of a failed execution to a running task.

    Increments attempts, then either schedules the task again after
    backoff_delay(base, attempts) or marks it failed when the retry budget
    is spent. The task is mutated in place and returned.
    """
    if base is None:
        base = DEFAULT_CONFIG['backoff_base']

    if task.state != RUNNING:
        raise InvalidTransition(task.id, task.state, WAITING)

    task.attempts += 1

    if should_retry(task.attempts, task.max_retries):
        now = now or utcnow()
        try:
            next_run_at = now + timedelta(seconds=backoff_delay(base, task.attempts))
        except OverflowError:
            # Delay is past the last representable instant
            next_run_at = FAR_FUTURE
        task.schedule_retry(next_run_at, exit_code, error_message)
    else:
        task.give_up(exit_code, error_message)

    return task
