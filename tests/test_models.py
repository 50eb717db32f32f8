"""Tests for the task record and its state machine."""
from datetime import datetime, timedelta, timezone

import pytest

from taskflow.errors import InvalidTransition
from taskflow.models import (
    DONE, FAILED, FIELDS, RUNNING, WAITING, Task, parse_timestamp, timestamp
)


def make_task(**kwargs):
    kwargs.setdefault('id', 't1')
    kwargs.setdefault('command', 'echo hi')
    return Task(**kwargs)


def test_new_task_defaults():
    task = make_task()
    assert task.state == WAITING
    assert task.attempts == 0
    assert task.next_run_at is None
    assert task.created_at == task.updated_at


def test_to_dict_uses_canonical_fields():
    task = make_task()
    assert tuple(task.to_dict()) == FIELDS
    assert Task.from_dict(task.to_dict()).to_dict() == task.to_dict()


def test_legal_lifecycle():
    task = make_task()
    task.start()
    assert task.state == RUNNING
    task.succeed()
    assert task.state == DONE
    assert task.exit_code == 0


def test_failed_task_can_be_requeued():
    task = make_task(state=RUNNING, attempts=2, max_retries=3)
    task.give_up(1, "boom")
    assert task.state == FAILED

    task.requeue()
    assert task.state == WAITING
    assert task.attempts == 0
    assert task.next_run_at is None


@pytest.mark.parametrize("state, action", [
    (WAITING, 'succeed'),
    (WAITING, 'requeue'),
    (RUNNING, 'start'),
    (RUNNING, 'requeue'),
    (DONE, 'start'),
    (DONE, 'requeue'),
    (FAILED, 'start'),
])
def test_illegal_transitions_raise(state, action):
    task = make_task(state=state)
    with pytest.raises(InvalidTransition):
        getattr(task, action)()
    assert task.state == state


def test_transition_refreshes_updated_at():
    old = "2020-01-01T00:00:00+00:00"
    task = make_task(created_at=old, updated_at=old)
    task.start()
    assert task.created_at == old
    assert task.updated_at != old


def test_eligibility():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert make_task().is_eligible(now)
    assert make_task(next_run_at=timestamp(now - timedelta(seconds=1))).is_eligible(now)
    assert make_task(next_run_at=timestamp(now)).is_eligible(now)
    assert not make_task(next_run_at=timestamp(now + timedelta(seconds=1))).is_eligible(now)
    assert not make_task(state=RUNNING).is_eligible(now)
    assert not make_task(state=FAILED).is_eligible(now)


def test_unreadable_next_run_at_is_never_eligible(caplog):
    task = make_task(next_run_at="1700000000")
    assert not task.is_eligible(datetime(2024, 1, 1, tzinfo=timezone.utc))
    assert "unreadable next_run_at" in caplog.text


def test_unreadable_created_at_sorts_after_valid_ones():
    valid = make_task(created_at="2099-01-01T00:00:00+00:00")
    broken = make_task(id="t2", created_at="yesterday")
    assert sorted([broken, valid], key=Task.sort_key) == [valid, broken]


def test_parse_timestamp_accepts_zulu_and_naive():
    expected = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert parse_timestamp("2024-05-01T12:00:00.000Z") == expected
    assert parse_timestamp("2024-05-01T12:00:00") == expected
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None
    with pytest.raises(ValueError):
        parse_timestamp("1700000000")
