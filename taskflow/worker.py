"""
Worker process logic for executing tasks from the queue.
"""
import logging
import os
import signal
import time
from typing import Callable, Optional

from taskflow.config import POLL_INTERVAL
from taskflow.executor import ExecutionResult, execute_command
from taskflow.log import configure_logging
from taskflow.models import DONE, WAITING, Task
from taskflow.storage import Store
from taskflow.taskqueue import TaskQueue

logger = logging.getLogger(__name__)

# exit_code recorded when the command could not be run at all
EXECUTION_ERROR_CODE = -1


class Worker:
    """
    Worker that processes tasks from the queue.

    The worker repeatedly claims the oldest eligible task, runs its
    command, and settles the outcome. When nothing is eligible it sleeps
    for the poll interval. Shutdown is cooperative: the running flag is
    checked once per iteration, so a command in flight always finishes.
    """

    def __init__(
        self,
        worker_id: str = "worker-1",
        store: Optional[Store] = None,
        poll_interval: float = POLL_INTERVAL,
        executor: Callable[[str, str], ExecutionResult] = execute_command
    ):
        """
        Initialize the worker.

        Args:
            worker_id: Identifier used in log lines
            store: Store to work against (defaults to TASKFLOW_DB)
            poll_interval: Seconds to wait when no task is eligible
            executor: Callable running a command and returning its result
        """
        self.worker_id = worker_id
        self.queue = TaskQueue(store or Store())
        self.poll_interval = poll_interval
        self.executor = executor
        self.running = True

    def process_next(self) -> bool:
        """
        Claim and run at most one task.

        Returns:
            True if a task was claimed, False if nothing was eligible
        """
        task = self.queue.claim()
        if task is None:
            return False

        logger.info("[%s] Claimed task %s: %s", self.worker_id, task.id, task.command)

        try:
            result = self.executor(task.command, task.id)
        except Exception as e:
            logger.error("[%s] Task %s could not be executed: %s", self.worker_id, task.id, e)
            settled = self.queue.fail(task.id, EXECUTION_ERROR_CODE, str(e))
        else:
            if result.ok:
                settled = self.queue.complete(task.id, result.exit_code)
            else:
                settled = self.queue.fail(task.id, result.exit_code, result.error_message())

        if settled is not None:
            self._report(settled)
        return True

    def _report(self, task: Task) -> None:
        if task.state == DONE:
            logger.info("[%s] Task %s completed successfully", self.worker_id, task.id)
        elif task.state == WAITING:
            logger.info(
                "[%s] Task %s failed (exit %s), retry %d/%d scheduled at %s",
                self.worker_id, task.id, task.exit_code,
                task.attempts, task.max_retries, task.next_run_at
            )
        else:
            logger.warning(
                "[%s] Task %s failed permanently after %d attempt(s): %s",
                self.worker_id, task.id, task.attempts, task.last_error
            )

    def run(self) -> None:
        """
        Main worker loop.

        Continuously processes tasks until stopped.
        """
        self.setup_signal_handlers()
        logger.info("Worker %s started (pid=%d). Waiting for tasks...", self.worker_id, os.getpid())

        while self.running:
            try:
                if not self.process_next():
                    time.sleep(self.poll_interval)
            except Exception as e:
                # Store hiccups must not kill the worker
                logger.exception("[%s] Unexpected error in worker loop: %s", self.worker_id, e)
                time.sleep(self.poll_interval)

        logger.info("Worker %s stopped.", self.worker_id)

    def setup_signal_handlers(self) -> None:
        """
        Set up signal handlers for graceful shutdown.

        Handles SIGINT (Ctrl+C) and SIGTERM (worker stop).
        """
        def signal_handler(signum, frame):
            logger.info("%s received, worker %s will stop after the current task",
                        signal.Signals(signum).name, self.worker_id)
            self.shutdown()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def shutdown(self) -> None:
        """Ask the loop to exit at the top of its next iteration."""
        self.running = False


def worker_process_runner(worker_id: str, data_path: Optional[str] = None, log_level: int = logging.INFO) -> None:
    """
    Entry point for a worker running in its own process.

    Args:
        worker_id: Unique identifier for this worker
        data_path: Backing file the parent was using
        log_level: Level the parent process logs at
    """
    configure_logging(log_level)
    Worker(worker_id=worker_id, store=Store(data_path)).run()
