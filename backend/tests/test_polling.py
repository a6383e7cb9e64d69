"""
Tests for cancellable scheduled tasks.
"""
import threading

import pytest

from services.polling import PeriodicTask, TaskGroup, TaskHandle, schedule_once


def test_periodic_task_runs_until_cancelled():
    ran = threading.Event()
    calls = []

    def tick():
        calls.append(1)
        if len(calls) >= 3:
            ran.set()

    task = PeriodicTask("tick", 0.01, tick)
    handle = task.start()
    assert ran.wait(2.0)
    assert task.is_running()
    assert handle.cancel(wait=True) is True
    assert not task.is_running()
    assert handle.cancel() is False


def test_periodic_task_start_is_idempotent():
    task = PeriodicTask("idle", 60.0, lambda: None, run_immediately=False)
    first = task.start()
    try:
        assert task.start() is first
    finally:
        first.cancel(wait=True)


def test_periodic_task_survives_exceptions():
    ran = threading.Event()
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")
        ran.set()

    task = PeriodicTask("flaky", 0.01, flaky)
    handle = task.start()
    try:
        assert ran.wait(2.0)
    finally:
        handle.cancel(wait=True)


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        PeriodicTask("bad", 0, lambda: None)


def test_schedule_once_runs_after_delay():
    done = threading.Event()
    handle = schedule_once(0.01, done.set)
    assert done.wait(2.0)
    handle.cancel(wait=True)


def test_cancelled_schedule_never_runs():
    done = threading.Event()
    handle = schedule_once(0.2, done.set)
    assert handle.cancel(wait=True) is True
    assert not done.wait(0.4)


def test_task_group_cancels_everything():
    group = TaskGroup()
    handles = [group.add(TaskHandle(f"t{i}", threading.Event())) for i in range(3)]
    handles[0].cancel()
    assert group.pending() == 2
    assert group.cancel_all() == 2
    assert group.pending() == 0
    assert all(h.cancelled for h in handles)
