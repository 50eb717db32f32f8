"""Test fixtures for taskflow tests."""
import pytest

from taskflow.storage import Store
from taskflow.taskqueue import TaskQueue


@pytest.fixture
def data_path(tmp_path, monkeypatch):
    """Point TASKFLOW_DB at a fresh file inside the test's temp dir."""
    path = tmp_path / "taskdata.json"
    monkeypatch.setenv("TASKFLOW_DB", str(path))
    return path


@pytest.fixture
def store(data_path):
    return Store(data_path)


@pytest.fixture
def queue(store):
    return TaskQueue(store)
