"""Unit tests for the task scheduler."""
from __future__ import annotations

import threading
import time

import pytest

from pyds_bridge.errors import ReadError, TaskCancelledError
from pyds_bridge.table import ExtensionTable, TaskScheduler
from pyds_bridge.types import to_struct_type


def test_results_keep_task_order() -> None:
    scheduler = TaskScheduler(max_parallel_tasks=3)

    def run(value: int) -> int:
        time.sleep(0.01 * (5 - value))
        return value * 10

    assert scheduler.run([0, 1, 2, 3, 4], run, threading.Event()) == [0, 10, 20, 30, 40]


def test_first_failure_cancels_siblings() -> None:
    scheduler = TaskScheduler(max_parallel_tasks=2)
    cancelled = threading.Event()
    started = []

    def run(value: int) -> int:
        started.append(value)
        if value == 0:
            raise ReadError.create("first task failed")
        if not cancelled.wait(timeout=5):
            return value
        raise TaskCancelledError.create("cancelled")

    with pytest.raises(ReadError, match="first task failed"):
        scheduler.run(list(range(10)), run, cancelled)

    assert cancelled.is_set()
    assert len(started) < 10


def test_empty_task_list() -> None:
    assert TaskScheduler().run([], lambda task: task, threading.Event()) == []


def test_max_parallel_tasks_must_be_positive() -> None:
    with pytest.raises(ValueError):
        TaskScheduler(max_parallel_tasks=0)


def test_table_without_partitions_schedules_one_sentinel_task() -> None:
    table = ExtensionTable(name="status", schema=to_struct_type("status STRING"))

    tasks = table.read_tasks()

    assert table.num_partitions == 1
    assert len(tasks) == 1
    assert not tasks[0].has_descriptor
