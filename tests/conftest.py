"""Pytest configuration: environment loading and shared bridge fixtures."""
from __future__ import annotations

from pathlib import Path

import pytest

try:
    from pyds_bridge.env import load_env
except ImportError as exc:
    raise RuntimeError(
        "pyds_bridge is not importable. Run 'pip install -e .[dev]' before running pytest."
    ) from exc

from pyds_bridge.config import BridgeConfig, PlannerConfig, SchedulerConfig, WorkerConfig
from pyds_bridge.runtime import ExtensionRuntime
from pyds_bridge.session import Session

# Load default runtime env first, then overlay .env.test if provided
load_env()
test_env = Path(".env.test")
if test_env.exists():
    load_env(dotenv_path=test_env, override=True)


@pytest.fixture
def bridge_config() -> BridgeConfig:
    return BridgeConfig(
        planner=PlannerConfig(timeout_seconds=60),
        worker=WorkerConfig(start_method="spawn", channel_capacity=4, log_level="WARNING"),
        scheduler=SchedulerConfig(max_parallel_tasks=2),
    )


@pytest.fixture
def runtime(bridge_config: BridgeConfig) -> ExtensionRuntime:
    return ExtensionRuntime(bridge_config.worker)


@pytest.fixture
def session(bridge_config: BridgeConfig):
    with Session(bridge_config) as active:
        yield active
