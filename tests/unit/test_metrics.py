"""Unit tests for task and operator byte metrics."""
from __future__ import annotations

import pytest

from pyds_bridge.metrics import BYTES_RECEIVED, BYTES_SENT, OperatorMetrics, TaskMetrics, format_bytes


@pytest.mark.parametrize(
    "size, rendered",
    [
        (0, "0.0 B"),
        (2047, "2047.0 B"),
        (2048, "2.0 KiB"),
        (5 * 1024 * 1024, "5.0 MiB"),
    ],
)
def test_format_bytes(size: int, rendered: str) -> None:
    assert format_bytes(size) == rendered
    assert format_bytes(size).endswith("B")


def test_task_metrics_only_grow() -> None:
    metrics = TaskMetrics()
    metrics.add_sent(10)
    metrics.add_received(3)
    metrics.add_sent(0)

    assert metrics.bytes_sent == 10
    assert metrics.bytes_received == 3
    with pytest.raises(ValueError):
        metrics.add_sent(-1)


def test_operator_metrics_aggregate_tasks() -> None:
    first, second = TaskMetrics(), TaskMetrics()
    first.add_sent(100)
    second.add_sent(20)
    second.add_received(4096)

    totals = OperatorMetrics.aggregate([first, second])

    assert totals.task_count == 2
    assert totals.as_dict() == {BYTES_SENT: 120, BYTES_RECEIVED: 4096}
    assert totals.formatted() == {BYTES_SENT: "120.0 B", BYTES_RECEIVED: "4.0 KiB"}
