"""Tests for the taskflow command line."""
import json

import pytest
from click.testing import CliRunner

from taskflow.cli import main
from taskflow.models import FAILED, Task
from taskflow.storage import Snapshot


@pytest.fixture
def runner(data_path):
    return CliRunner()


def invoke(runner, *args, **kwargs):
    return runner.invoke(main, list(args), **kwargs)


def test_init(runner, data_path):
    result = invoke(runner, "init")
    assert result.exit_code == 0
    assert "Database created" in result.output
    assert data_path.exists()

    result = invoke(runner, "init")
    assert "already exists" in result.output


def test_add_from_argument(runner, store):
    result = invoke(runner, "add", '{"id":"job1","command":"echo hi","max_retries":2}')

    assert result.exit_code == 0, result.output
    assert "Task added with id job1" in result.output
    task = store.load().find("job1")
    assert task.command == "echo hi"
    assert task.max_retries == 2


def test_add_from_stdin(runner, store):
    result = invoke(runner, "add", "-", input='{"command":"echo stdin"}')
    assert result.exit_code == 0, result.output
    assert [t.command for t in store.load().tasks] == ["echo stdin"]


def test_add_from_file(runner, store, tmp_path):
    payload = tmp_path / "task.json"
    payload.write_bytes(b"\xef\xbb\xbf" + b'{"id":"from-file","command":"echo file"}')

    result = invoke(runner, "add", "--file", str(payload))

    assert result.exit_code == 0, result.output
    assert store.load().find("from-file") is not None


@pytest.mark.parametrize("args, kwargs, message", [
    (("add",), {}, "No JSON provided"),
    (("add", "{bad"), {}, "Invalid JSON"),
    (("add", '{"id":"x"}'), {}, "Missing required field 'command'"),
    (("add", "-"), {"input": ""}, "Empty input"),
    (("add", "--file", "/nonexistent/task.json"), {}, "File not found"),
])
def test_add_failures_exit_nonzero_without_writing(runner, store, args, kwargs, message):
    result = invoke(runner, *args, **kwargs)
    assert result.exit_code == 1
    assert message in result.output
    assert not store.path.exists()


def test_list_and_status(runner, store):
    store.save(Snapshot(tasks=[
        Task(id="w", command="echo w"),
        Task(id="f", command="exit 1", state=FAILED),
    ]))

    result = invoke(runner, "list")
    assert [json.loads(line)["id"] for line in result.output.splitlines()] == ["w", "f"]

    result = invoke(runner, "list", "--state", "failed")
    assert [json.loads(line)["id"] for line in result.output.splitlines()] == ["f"]

    result = invoke(runner, "status")
    assert result.exit_code == 0
    assert "Waiting:" in result.output
    assert "Total:" in result.output
    assert str(store.path) in result.output


def test_config_set_and_get(runner, store):
    result = invoke(runner, "config", "set", "max-retries", "5")
    assert result.exit_code == 0
    assert store.load().config["max_retries"] == 5

    assert invoke(runner, "config", "get", "max_retries").output.strip() == "5"
    assert invoke(runner, "config", "get", "backoff-base").output.strip() == "2"
    assert invoke(runner, "config", "get", "nothing").output.strip() == "Not set"


def test_config_set_rejects_non_integer_for_known_keys(runner, store):
    result = invoke(runner, "config", "set", "backoff_base", "fast")
    assert result.exit_code == 1
    assert not store.path.exists()


def test_dead_list_and_retry(runner, store):
    store.save(Snapshot(tasks=[
        Task(id="dead", command="exit 1", state=FAILED, attempts=3),
        Task(id="done", command="true", state="done"),
    ]))

    result = invoke(runner, "dead", "list")
    assert [json.loads(line)["id"] for line in result.output.splitlines()] == ["dead"]

    result = invoke(runner, "dead", "retry", "dead")
    assert result.exit_code == 0
    task = store.load().find("dead")
    assert (task.state, task.attempts, task.next_run_at) == ("waiting", 0, None)

    result = invoke(runner, "dead", "retry", "done")
    assert result.exit_code == 1
    assert "No such task in failed list" in result.output
    assert store.load().find("done").state == "done"


def test_selfcheck(runner, data_path):
    result = invoke(runner, "selfcheck")
    assert result.exit_code == 0, result.output
    assert "Selfcheck passed" in result.output
    assert list(data_path.parent.glob("*.selftest.json*")) == []


def test_worker_stop_without_workers(runner):
    result = invoke(runner, "worker", "stop")
    assert result.exit_code == 0
    assert "No worker metadata found" in result.output


def test_worker_start_rejects_bad_count(runner):
    result = invoke(runner, "worker", "start", "--count", "0")
    assert result.exit_code == 1
