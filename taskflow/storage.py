"""
JSON file storage layer for the task queue.
"""
import fcntl
import filecmp
import json
import logging
import os
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from taskflow.config import DEFAULT_CONFIG, get_data_path
from taskflow.models import DONE, FAILED, RUNNING, WAITING, Task

logger = logging.getLogger(__name__)

# State names used by the older 'jobs' schema
LEGACY_STATES = {
    'pending': WAITING,
    'processing': RUNNING,
    'completed': DONE,
    'dead': FAILED,
}


class Snapshot:
    """
    The full in-memory content of the backing file.

    Attributes:
        tasks: Task records in file order
        config: Configuration key/value pairs as stored
    """

    def __init__(self, tasks: Optional[List[Task]] = None, config: Optional[Dict[str, Any]] = None):
        self.tasks = tasks if tasks is not None else []
        self.config = config if config is not None else dict(DEFAULT_CONFIG)

    def find(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tasks': [task.to_dict() for task in self.tasks],
            'config': self.config,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        config = data.get('config')
        return cls(
            tasks=[Task.from_dict(item) for item in data['tasks']],
            config=config if isinstance(config, dict) else dict(DEFAULT_CONFIG)
        )


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write JSON to a temporary sibling, fsync it, and rename it over `path`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.{os.getpid()}.tmp")
    with open(tmp_path, 'w', encoding='utf-8') as f:
        json.dump(payload, f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)


def _migrate_legacy(raw: Dict[str, Any]) -> Snapshot:
    """Convert a {'jobs': [...]} document into a canonical Snapshot."""
    config = raw.get('config') if isinstance(raw.get('config'), dict) else dict(DEFAULT_CONFIG)
    default_retries = config.get('max_retries', DEFAULT_CONFIG['max_retries'])

    tasks = []
    for job in raw['jobs']:
        state = job.get('state') or WAITING
        max_retries = job.get('max_retries')
        tasks.append(Task(
            id=job['id'],
            command=job['command'],
            state=LEGACY_STATES.get(state, state),
            attempts=int(job.get('attempts') or 0),
            max_retries=int(max_retries if max_retries is not None else default_retries),
            created_at=job.get('created_at'),
            updated_at=job.get('updated_at'),
            next_run_at=job.get('next_attempt_at'),
            last_error=job.get('last_error'),
            exit_code=job.get('exit_code')
        ))
    return Snapshot(tasks=tasks, config=config)


class Store:
    """
    Durable read/modify/write access to tasks and configuration.

    The whole collection lives in one JSON document:
        {"tasks": [...], "config": {"max_retries": 3, "backoff_base": 2}}

    Writes go to a temporary file that is then renamed over the real one,
    so readers never see a half-written document. Mutations that must not
    race with other processes run inside transaction(), which holds an
    exclusive lock on a sidecar '.lock' file.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        """
        Initialize storage with the backing file path.

        Args:
            path: Path to the JSON file (defaults to TASKFLOW_DB or ./taskdata.json)
        """
        self.path = Path(path) if path else get_data_path()
        self.lock_path = self.path.with_name(self.path.name + '.lock')
        self.backup_path = self.path.with_name(self.path.name + '.corrupt')

    def exists(self) -> bool:
        return self.path.exists()

    def init(self) -> bool:
        """
        Create an empty backing file if there is none.

        Returns:
            True if the file was created, False if it already existed
        """
        if self.exists():
            return False
        self.save(Snapshot())
        return True

    def load(self) -> Snapshot:
        """
        Read the current snapshot.

        A missing file yields an empty snapshot. An unreadable or
        unexpectedly shaped file is logged, copied aside, and also
        yields an empty snapshot; the file itself is left untouched.
        A legacy 'jobs' document is upgraded and written back at once.

        Example:
            snapshot = store.load()
            for task in snapshot.tasks:
                print(task.id, task.state)
        """
        if not self.path.exists():
            return Snapshot()

        try:
            with open(self.path, 'r', encoding='utf-8-sig') as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Could not read %s (%s); using empty dataset, file preserved", self.path, e)
            self._preserve_corrupt()
            return Snapshot()

        if isinstance(raw, dict) and isinstance(raw.get('jobs'), list):
            try:
                snapshot = _migrate_legacy(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Legacy data in %s is malformed (%s); using empty dataset", self.path, e)
                self._preserve_corrupt()
                return Snapshot()
            logger.warning("Migrated legacy job schema in %s (%d task(s))", self.path, len(snapshot.tasks))
            self.save(snapshot)
            return snapshot

        if isinstance(raw, dict) and isinstance(raw.get('tasks'), list):
            try:
                return Snapshot.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Task records in %s are malformed (%s); using empty dataset", self.path, e)
                self._preserve_corrupt()
                return Snapshot()

        logger.warning("Data file %s has unexpected shape; using empty dataset, file preserved", self.path)
        self._preserve_corrupt()
        return Snapshot()

    def save(self, snapshot: Snapshot) -> None:
        """
        Atomically replace the backing file with `snapshot`.

        The document is written and fsynced to a per-process temporary
        file, then renamed over the real path.
        """
        write_json_atomic(self.path, snapshot.to_dict())

    @contextmanager
    def transaction(self) -> Iterator[Snapshot]:
        """
        Load, let the caller mutate, and save under an exclusive lock.

        Other processes entering transaction() block until this one
        finishes. The snapshot is saved only when the block exits without
        an exception and actually changed something.

        Usage:
            with store.transaction() as snapshot:
                snapshot.tasks.append(task)
        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.lock_path, 'a') as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                snapshot = self.load()
                before = json.dumps(snapshot.to_dict(), sort_keys=True)
                yield snapshot
                if json.dumps(snapshot.to_dict(), sort_keys=True) != before:
                    self.save(snapshot)
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def set_config(self, key: str, value: Any) -> None:
        """
        Store a configuration value.

        Example:
            store.set_config('max_retries', 5)
        """
        with self.transaction() as snapshot:
            snapshot.config[key] = value

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Retrieve a configuration value.

        Falls back to the built-in default for known keys, then to `default`.

        Example:
            base = store.get_config('backoff_base')
        """
        config = self.load().config
        if key in config:
            return config[key]
        return DEFAULT_CONFIG.get(key, default)

    def _preserve_corrupt(self) -> None:
        """
        Copy a damaged backing file aside where no save can overwrite it.

        The first copy goes to '<data>.corrupt', later distinct damage to
        '<data>.corrupt.1', '<data>.corrupt.2' and so on. Content that is
        already backed up is not copied again.
        """
        candidate = self.backup_path
        suffix = 0
        try:
            while candidate.exists():
                if filecmp.cmp(self.path, candidate, shallow=False):
                    return
                suffix += 1
                candidate = self.backup_path.with_name(f"{self.backup_path.name}.{suffix}")
            shutil.copy2(self.path, candidate)
            logger.warning("Copied unreadable data file to %s", candidate)
        except OSError as e:
            logger.warning("Could not copy unreadable data file to %s: %s", candidate, e)
