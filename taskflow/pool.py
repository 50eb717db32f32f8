"""
Worker pool management: spawning worker processes and stopping them later.

The pool records every worker it starts in a registry file next to the
backing file:

    {"workers": [{"pid": 4242, "started_at": "2024-01-01T00:00:00+00:00"}]}

so that `taskflow worker stop`, run from any shell, can find and signal
them even after the process that started them is gone.
"""
import json
import logging
import multiprocessing
import os
import signal
from pathlib import Path
from typing import Callable, List, NamedTuple, Optional, Tuple

from taskflow.config import get_workers_path
from taskflow.models import timestamp
from taskflow.storage import Store, write_json_atomic
from taskflow.worker import worker_process_runner

logger = logging.getLogger(__name__)

SIGNALLED = 'signalled'
NOT_FOUND = 'not found'
PERMISSION_DENIED = 'permission denied'


def _interrupt(signum, frame):
    raise KeyboardInterrupt


class WorkerHandle(NamedTuple):
    worker_id: str
    pid: int
    started_at: str
    process: multiprocessing.Process


class WorkerPool:
    """
    Supervises a set of worker processes sharing one backing file.

    Example:
        pool = WorkerPool(Store())
        pool.start(3)      # blocks until the workers exit
        ...
        WorkerPool(Store()).stop()   # from another shell
    """

    def __init__(
        self,
        store: Optional[Store] = None,
        registry_path: Optional[Path] = None,
        target: Callable = worker_process_runner,
        log_level: int = logging.INFO
    ):
        self.store = store or Store()
        self.registry_path = Path(registry_path) if registry_path else get_workers_path(self.store.path)
        self.target = target
        self.log_level = log_level

    def load_registry(self) -> List[dict]:
        """Recorded workers; empty when the registry is missing or unreadable."""
        if not self.registry_path.exists():
            return []
        try:
            with open(self.registry_path, 'r', encoding='utf-8-sig') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Could not read worker registry %s: %s", self.registry_path, e)
            return []
        workers = data.get('workers') if isinstance(data, dict) else None
        if not isinstance(workers, list):
            return []
        return [w for w in workers if isinstance(w, dict) and 'pid' in w]

    def _save_registry(self, workers: List[dict]) -> None:
        write_json_atomic(self.registry_path, {'workers': workers})

    def _discard_registry(self) -> None:
        try:
            self.registry_path.unlink()
        except FileNotFoundError:
            pass

    def start(self, count: int, wait: bool = True) -> List[WorkerHandle]:
        """
        Launch `count` worker processes and record them in the registry.

        Args:
            count: Number of workers to start (at least 1)
            wait: Block until every worker exits, then discard the registry

        Returns:
            One WorkerHandle per started worker
        """
        if count < 1:
            raise ValueError("count must be at least 1")

        handles = []
        for i in range(count):
            worker_id = f"worker-{i + 1}"
            process = multiprocessing.Process(
                target=self.target,
                args=(worker_id, str(self.store.path), self.log_level),
                name=worker_id
            )
            process.start()
            handles.append(WorkerHandle(worker_id, process.pid, timestamp(), process))
            logger.info("Started %s (pid=%d)", worker_id, process.pid)

        # Keep entries from a pool that is still running elsewhere
        workers = self.load_registry()
        workers.extend({'pid': h.pid, 'started_at': h.started_at} for h in handles)
        self._save_registry(workers)

        if wait:
            self.wait(handles)
        return handles

    def wait(self, handles: List[WorkerHandle]) -> None:
        """
        Join the given workers, forwarding Ctrl+C or SIGTERM as SIGTERM.

        Workers finish their in-flight task before exiting, so joins are
        not time-limited. Must be called from the main thread.
        """
        previous = {signum: signal.getsignal(signum) for signum in (signal.SIGINT, signal.SIGTERM)}
        signal.signal(signal.SIGTERM, _interrupt)
        try:
            try:
                for handle in handles:
                    handle.process.join()
            except KeyboardInterrupt:
                # Further signals are ignored until every child has exited
                signal.signal(signal.SIGINT, signal.SIG_IGN)
                signal.signal(signal.SIGTERM, signal.SIG_IGN)
                logger.info("Shutting down all workers...")
                for handle in handles:
                    if handle.process.is_alive():
                        logger.info("Stopping %s...", handle.worker_id)
                        handle.process.terminate()
                for handle in handles:
                    handle.process.join()
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
        self._forget([h.pid for h in handles])
        logger.info("All workers stopped.")

    def _forget(self, pids: List[int]) -> None:
        remaining = [w for w in self.load_registry() if w['pid'] not in pids]
        if remaining:
            self._save_registry(remaining)
        else:
            self._discard_registry()

    def stop(self) -> List[Tuple[int, str]]:
        """
        Ask every recorded worker to terminate, then discard the registry.

        Sends SIGTERM, which workers treat as a request to stop after the
        current task. Workers that already exited are reported, not fatal.

        Returns:
            (pid, outcome) pairs, outcome being 'signalled', 'not found' or
            'permission denied'
        """
        report = []
        for worker in self.load_registry():
            pid = int(worker['pid'])
            try:
                os.kill(pid, signal.SIGTERM)
                outcome = SIGNALLED
            except ProcessLookupError:
                outcome = NOT_FOUND
            except PermissionError:
                outcome = PERMISSION_DENIED
            logger.info("Worker pid %d: %s", pid, outcome)
            report.append((pid, outcome))
        self._discard_registry()
        return report
