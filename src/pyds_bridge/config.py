"""Typed configuration loader for the data source bridge."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .env import load_env

load_env()

CONFIG_PATH_ENV = "PYDS_BRIDGE_CONFIG_PATH"


class PlannerConfig(BaseModel):
    timeout_seconds: float = Field(60.0, gt=0, description="Hard limit for the planning round-trip")


class WorkerConfig(BaseModel):
    start_method: Optional[Literal["fork", "spawn", "forkserver"]] = None
    channel_capacity: int = Field(16, ge=1, description="Frames buffered per channel direction")
    poll_interval_seconds: float = Field(0.05, gt=0)
    shutdown_grace_seconds: float = Field(5.0, ge=0)
    log_level: str = "WARNING"

    @field_validator("start_method", mode="before")
    @classmethod
    def _normalize_start_method(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            if value in ("", "auto", "none"):
                return None
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value):
        if value is None:
            return "WARNING"
        return str(value).upper()


class SchedulerConfig(BaseModel):
    max_parallel_tasks: int = Field(4, ge=1)


class BridgeConfig(BaseModel):
    planner: PlannerConfig = Field(default_factory=PlannerConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)


class ConfigLoader:
    """Loads YAML driven configuration and validates it with Pydantic."""

    def __init__(self, path: str | Path | None = None) -> None:
        raw_path = path or os.getenv(CONFIG_PATH_ENV)
        self.config_path = Path(raw_path) if raw_path else None
        if self.config_path is not None and not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")
        self.model = self._parse_yaml()

    def _parse_yaml(self) -> BridgeConfig:
        raw: dict = {}
        if self.config_path is not None:
            with self.config_path.open("r", encoding="utf-8") as fp:
                raw = yaml.safe_load(fp) or {}
        try:
            return BridgeConfig(**raw)
        except ValidationError as exc:
            raise ValueError(f"Invalid configuration: {exc}") from exc


__all__ = [
    "BridgeConfig",
    "ConfigLoader",
    "PlannerConfig",
    "SchedulerConfig",
    "WorkerConfig",
]
