"""Tests for shell command execution."""
from taskflow.executor import MAX_ERROR_LENGTH, ExecutionResult, execute_command


def test_successful_command():
    result = execute_command("echo hello", "t1")
    assert result.ok
    assert result.exit_code == 0
    assert result.stdout.strip() == "hello"


def test_failing_command_reports_exit_code():
    result = execute_command("exit 3", "t1")
    assert not result.ok
    assert result.exit_code == 3
    assert result.error_message() == "Exit 3"


def test_error_message_prefers_stderr():
    result = execute_command("echo broken >&2; exit 2", "t1")
    assert result.exit_code == 2
    assert result.error_message() == "broken"


def test_error_message_is_truncated():
    result = ExecutionResult(1, "", "x" * (MAX_ERROR_LENGTH * 2))
    assert len(result.error_message()) == MAX_ERROR_LENGTH
