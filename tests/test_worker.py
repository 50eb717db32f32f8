"""Tests for the worker loop."""
import pytest

from taskflow.executor import ExecutionResult
from taskflow.models import DONE, FAILED, WAITING
from taskflow.worker import EXECUTION_ERROR_CODE, Worker


@pytest.fixture
def make_worker(store, monkeypatch):
    def factory(**kwargs):
        worker = Worker(worker_id="test", store=store, poll_interval=0.01, **kwargs)
        # Keep pytest's own SIGINT handling intact
        monkeypatch.setattr(worker, "setup_signal_handlers", lambda: None)
        return worker
    return factory


def test_process_next_with_nothing_to_do(make_worker):
    assert make_worker().process_next() is False


def test_successful_command_is_done(make_worker, queue, store):
    queue.add({"id": "ok", "command": "true"})

    assert make_worker().process_next() is True

    task = store.load().find("ok")
    assert task.state == DONE
    assert task.exit_code == 0


def test_failing_command_is_scheduled_for_retry(make_worker, queue, store):
    queue.add({"id": "bad", "command": "echo nope >&2; exit 4", "max_retries": 3})

    make_worker().process_next()

    task = store.load().find("bad")
    assert task.state == WAITING
    assert task.attempts == 1
    assert task.exit_code == 4
    assert task.last_error == "nope"
    assert task.next_run_at is not None


def test_failing_command_without_retries_is_failed(make_worker, queue, store):
    queue.add({"id": "bad", "command": "exit 1", "max_retries": 1})

    make_worker().process_next()

    task = store.load().find("bad")
    assert task.state == FAILED
    assert task.last_error == "Exit 1"


def test_executor_exception_is_scored_as_failure(make_worker, queue, store):
    def explode(command, task_id):
        raise OSError("no shell")

    queue.add({"id": "boom", "command": "echo", "max_retries": 1})

    make_worker(executor=explode).process_next()

    task = store.load().find("boom")
    assert task.state == FAILED
    assert task.exit_code == EXECUTION_ERROR_CODE
    assert task.last_error == "no shell"


def test_run_finishes_in_flight_task_before_stopping(make_worker, queue, store):
    queue.add({"id": "a", "command": "echo a"})
    queue.add({"id": "b", "command": "echo b"})
    seen = []

    def stop_after_first(command, task_id):
        seen.append(task_id)
        worker.shutdown()
        return ExecutionResult(0, "", "")

    worker = make_worker(executor=stop_after_first)
    worker.run()

    assert seen == ["a"]
    assert store.load().find("a").state == DONE
    assert store.load().find("b").state == WAITING


def test_run_survives_unexpected_errors(make_worker, monkeypatch):
    worker = make_worker()
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("store hiccup")
        worker.shutdown()
        return False

    monkeypatch.setattr(worker, "process_next", flaky)
    worker.run()

    assert len(calls) == 2
