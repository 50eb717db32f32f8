"""
Queue operations: adding, claiming, settling and requeueing tasks.

Every mutation runs inside Store.transaction(), so claim and settle are
serialized across all worker processes sharing one backing file.
"""
import json
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from taskflow.config import DEFAULT_CONFIG
from taskflow.errors import TaskInputError, TaskNotFound
from taskflow.models import FAILED, STATES, Task, utcnow
from taskflow.retry import score
from taskflow.storage import Store

logger = logging.getLogger(__name__)


def parse_payload(text: Optional[str]) -> Dict[str, Any]:
    """
    Parse a task JSON payload supplied by the user.

    Raises:
        TaskInputError: empty input, invalid JSON, or a non-object value
    """
    if text is None or not text.strip():
        raise TaskInputError("Empty input received")
    text = text.lstrip('\ufeff')
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise TaskInputError(f"Invalid JSON: {e.msg} (line {e.lineno}, column {e.colno})") from e
    if not isinstance(data, dict):
        raise TaskInputError("Task JSON must be an object, not a list or primitive value")
    return data


def _config_int(config: Dict[str, Any], key: str) -> int:
    value = config.get(key, DEFAULT_CONFIG[key])
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric config %s=%r", key, value)
        return DEFAULT_CONFIG[key]


class TaskQueue:
    """
    Task lifecycle operations on top of a Store.

    Example:
        queue = TaskQueue(Store())
        task = queue.add({'command': 'echo hi'})
        claimed = queue.claim()
    """

    def __init__(self, store: Optional[Store] = None):
        self.store = store or Store()

    def add(self, data: Dict[str, Any]) -> Task:
        """
        Validate a payload and append a new waiting task.

        Args:
            data: Parsed payload; 'command' is required, 'id' and
                'max_retries' are optional

        Returns:
            The stored Task

        Raises:
            TaskInputError: missing/empty command, empty id, bad
                max_retries, or an id that is already taken
        """
        command = data.get('command')
        if command is None:
            raise TaskInputError("Missing required field 'command'")
        if not isinstance(command, str) or not command.strip():
            raise TaskInputError("Field 'command' must be a non-empty string")

        task_id = data.get('id')
        if task_id is not None and not str(task_id).strip():
            raise TaskInputError("Field 'id' cannot be empty")
        task_id = str(task_id) if task_id is not None else str(uuid.uuid4())

        max_retries = data.get('max_retries')
        if max_retries is not None:
            if isinstance(max_retries, bool) or not isinstance(max_retries, int) or max_retries < 0:
                raise TaskInputError("Field 'max_retries' must be a non-negative integer")

        with self.store.transaction() as snapshot:
            if snapshot.find(task_id) is not None:
                raise TaskInputError(f"Task '{task_id}' already exists")
            if max_retries is None:
                max_retries = _config_int(snapshot.config, 'max_retries')
            task = Task(id=task_id, command=command, max_retries=max_retries)
            snapshot.tasks.append(task)

        logger.debug("Added task %s: %s", task.id, task.command)
        return task

    def claim(self, now: Optional[datetime] = None) -> Optional[Task]:
        """
        Claim the oldest eligible task, moving it to running.

        Candidates are waiting tasks whose next_run_at has passed, ordered
        by created_at with ties kept in file order.

        Returns:
            The claimed Task, or None when nothing is eligible (in which
            case the backing file is not written)
        """
        now = now or utcnow()
        with self.store.transaction() as snapshot:
            candidates = sorted(
                (task for task in snapshot.tasks if task.is_eligible(now)),
                key=Task.sort_key
            )
            if not candidates:
                return None
            task = candidates[0]
            task.start()
        return task

    def complete(self, task_id: str, exit_code: int = 0) -> Optional[Task]:
        """Mark a running task done. Returns None if the task vanished."""
        with self.store.transaction() as snapshot:
            task = snapshot.find(task_id)
            if task is None:
                logger.warning("Task %s disappeared before it could be marked done", task_id)
                return None
            task.succeed(exit_code)
        return task

    def fail(self, task_id: str, exit_code: Optional[int], error: Optional[str]) -> Optional[Task]:
        """
        Score a failed execution against the retry policy.

        The backoff base is read from config at the time of the failure.
        Returns None if the task vanished.
        """
        with self.store.transaction() as snapshot:
            task = snapshot.find(task_id)
            if task is None:
                logger.warning("Task %s disappeared before its failure could be recorded", task_id)
                return None
            base = _config_int(snapshot.config, 'backoff_base')
            score(task, exit_code, error, base)
        return task

    def retry_dead(self, task_id: str) -> Task:
        """
        Move a failed task back to waiting with attempts reset to 0.

        Raises:
            TaskNotFound: no task with this id is in the failed state
        """
        with self.store.transaction() as snapshot:
            task = snapshot.find(task_id)
            if task is None or task.state != FAILED:
                raise TaskNotFound(f"No such task in failed list: {task_id}")
            task.requeue()
        return task

    def list_tasks(self, state: Optional[str] = None) -> List[Task]:
        """List tasks in file order, optionally filtered by state."""
        tasks = self.store.load().tasks
        if state:
            tasks = [task for task in tasks if task.state == state]
        return tasks

    def counts(self) -> Dict[str, int]:
        """
        Count tasks by state.

        Returns:
            Dictionary with every known state, e.g.
            {'waiting': 2, 'running': 1, 'done': 10, 'failed': 0}
        """
        counts = {state: 0 for state in STATES}
        for task in self.store.load().tasks:
            counts[task.state] = counts.get(task.state, 0) + 1
        return counts
