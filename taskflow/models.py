"""
Data models for the task queue.

A Task moves through a small state machine:

    waiting -> running          (claimed by a worker)
    running -> done             (command exited 0)
    running -> waiting          (command failed, retries left)
    running -> failed           (command failed, retries exhausted)
    failed  -> waiting          (administrative requeue)

Every state change goes through Task.transition(), which refuses anything
not listed above.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from taskflow.errors import InvalidTransition

logger = logging.getLogger(__name__)

WAITING = 'waiting'
RUNNING = 'running'
DONE = 'done'
FAILED = 'failed'

STATES = (WAITING, RUNNING, DONE, FAILED)

TRANSITIONS = {
    WAITING: (RUNNING,),
    RUNNING: (DONE, WAITING, FAILED),
    DONE: (),
    FAILED: (WAITING,),
}

# Field order of the persisted record
FIELDS = (
    'id', 'command', 'state', 'attempts', 'max_retries',
    'created_at', 'updated_at', 'next_run_at', 'last_error', 'exit_code',
)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)
FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def timestamp(moment: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp string, as stored in the backing file."""
    return (moment or utcnow()).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a stored timestamp.

    Accepts the trailing 'Z' written by older tools. Naive values are taken
    to be UTC. Returns None for empty values.

    Raises:
        ValueError: the value is not an ISO-8601 timestamp
    """
    if not value:
        return None
    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Task:
    """
    Represents a task in the queue.

    Attributes:
        id: Unique identifier for the task
        command: Shell command to execute
        state: Current state (waiting, running, done, failed)
        attempts: Number of completed execution attempts
        max_retries: Attempt ceiling before the task is marked failed
        created_at: When the task was created
        updated_at: When the task was last mutated
        next_run_at: Earliest time the task may be claimed again
        last_error: Diagnostic from the most recent failed attempt
        exit_code: Exit code of the most recent execution
    """

    def __init__(
        self,
        id: str,
        command: str,
        state: str = WAITING,
        attempts: int = 0,
        max_retries: int = 3,
        created_at: Optional[str] = None,
        updated_at: Optional[str] = None,
        next_run_at: Optional[str] = None,
        last_error: Optional[str] = None,
        exit_code: Optional[int] = None
    ):
        now = timestamp()
        self.id = id
        self.command = command
        self.state = state
        self.attempts = attempts
        self.max_retries = max_retries
        self.created_at = created_at or now
        self.updated_at = updated_at or now
        self.next_run_at = next_run_at
        self.last_error = last_error
        self.exit_code = exit_code

    def to_dict(self) -> dict:
        """Convert Task to dictionary for storage."""
        return {name: getattr(self, name) for name in FIELDS}

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        """Create Task from a canonical stored record."""
        return cls(
            id=data['id'],
            command=data['command'],
            state=data.get('state', WAITING),
            attempts=int(data.get('attempts') or 0),
            max_retries=int(data['max_retries']),
            created_at=data.get('created_at'),
            updated_at=data.get('updated_at'),
            next_run_at=data.get('next_run_at'),
            last_error=data.get('last_error'),
            exit_code=data.get('exit_code')
        )

    def is_eligible(self, now: Optional[datetime] = None) -> bool:
        """A task can be claimed when waiting and its next_run_at has passed."""
        if self.state != WAITING:
            return False
        try:
            next_run = parse_timestamp(self.next_run_at)
        except ValueError:
            logger.warning("Task %s has unreadable next_run_at %r; skipping it", self.id, self.next_run_at)
            return False
        return next_run is None or next_run <= (now or utcnow())

    def sort_key(self) -> datetime:
        """Claim order: created_at, with unreadable values after every valid one."""
        try:
            return parse_timestamp(self.created_at) or _EPOCH
        except ValueError:
            logger.warning("Task %s has unreadable created_at %r; ordering it last", self.id, self.created_at)
            return FAR_FUTURE

    def touch(self) -> None:
        self.updated_at = timestamp()

    def transition(self, target: str) -> None:
        """Move to `target`, refusing transitions the state machine lacks."""
        if target not in TRANSITIONS.get(self.state, ()):
            raise InvalidTransition(self.id, self.state, target)
        self.state = target
        self.touch()

    def start(self) -> None:
        """waiting -> running, on a successful claim."""
        self.transition(RUNNING)

    def succeed(self, exit_code: int = 0) -> None:
        """running -> done."""
        self.transition(DONE)
        self.exit_code = exit_code
        self.next_run_at = None

    def schedule_retry(self, next_run_at: datetime, exit_code: Optional[int], error: Optional[str]) -> None:
        """running -> waiting, eligible again at next_run_at."""
        self.transition(WAITING)
        self.next_run_at = timestamp(next_run_at)
        self.exit_code = exit_code
        self.last_error = error

    def give_up(self, exit_code: Optional[int], error: Optional[str]) -> None:
        """running -> failed, retries exhausted."""
        self.transition(FAILED)
        self.next_run_at = None
        self.exit_code = exit_code
        self.last_error = error

    def requeue(self) -> None:
        """failed -> waiting with a fresh retry budget."""
        self.transition(WAITING)
        self.attempts = 0
        self.next_run_at = None

    def __repr__(self):
        return f"Task(id={self.id}, command={self.command}, state={self.state})"
