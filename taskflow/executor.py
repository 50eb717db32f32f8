"""
Shell execution of task commands.
"""
import logging
import subprocess
from typing import NamedTuple

logger = logging.getLogger(__name__)

# Longest error text kept on a task record
MAX_ERROR_LENGTH = 512


class ExecutionResult(NamedTuple):
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def error_message(self) -> str:
        """Diagnostic for a failed run: trailing stderr, or the exit code."""
        err = (self.stderr or "").strip()
        if err:
            return err[-MAX_ERROR_LENGTH:]
        return f"Exit {self.exit_code}"


def execute_command(command: str, task_id: str = "-") -> ExecutionResult:
    """
    Execute a shell command and wait for it to finish.

    - Exit code 0 = success
    - Exit code non-zero = failure

    There is no timeout: a command that never exits blocks the caller.
    OSError from spawning the shell propagates to the caller.

    Args:
        command: The shell command to execute
        task_id: The task ID (for logging)
    """
    logger.info("[%s] Executing command: %s", task_id, command)

    result = subprocess.run(
        command,
        shell=True,
        capture_output=True,
        text=True,
        errors='replace'
    )

    if result.stdout:
        logger.debug("[%s] STDOUT:\n%s", task_id, result.stdout.rstrip())
    if result.stderr:
        logger.debug("[%s] STDERR:\n%s", task_id, result.stderr.rstrip())

    logger.info("[%s] Exit code: %s", task_id, result.returncode)
    return ExecutionResult(result.returncode, result.stdout, result.stderr)
