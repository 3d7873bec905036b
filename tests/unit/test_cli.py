"""Unit tests for the command line interface."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from pyds_bridge.cli import app

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "bridge.yaml"
    path.write_text("worker:\n  start_method: spawn\nplanner:\n  timeout_seconds: 60\n")
    return path


def test_probe_reports_capabilities_as_json() -> None:
    result = runner.invoke(app, ["probe", "datasources:ReadWriteDataSource", "--format", "json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["variant"] == "reader+writer"
    assert payload["declares_schema"] is True


def test_probe_table_output() -> None:
    result = runner.invoke(app, ["probe", "datasources:JsonLinesDataSource"])

    assert result.exit_code == 0, result.output
    assert "writer" in result.stdout
    assert "datasources:JsonLinesDataSource" in result.stdout


def test_probe_rejects_non_data_source() -> None:
    result = runner.invoke(app, ["probe", "datasources:NotADataSource"])

    assert result.exit_code == 1


def test_probe_reports_constructor_failure() -> None:
    result = runner.invoke(app, ["probe", "datasources:RaisingConstructorDataSource"])

    assert result.exit_code == 1
    assert "bad options" in result.output
    assert result.exception is None or isinstance(result.exception, SystemExit)


def test_plan_prints_schema_and_partitions(config_file: Path) -> None:
    result = runner.invoke(
        app,
        ["plan", "datasources:PathsDataSource", "--option", "path=a", "--format", "json", "--config", str(config_file)],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["source"] == "PathsDataSource"
    assert payload["schema"] == "struct<id:string,value:int>"
    assert payload["partition_count"] == 1
    assert payload["options"] == {"path": "a"}


def test_plan_table_lists_fields(config_file: Path) -> None:
    result = runner.invoke(app, ["plan", "datasources:RangeDataSource", "--config", str(config_file)])

    assert result.exit_code == 0, result.output
    assert "partition_count" in result.stdout
    assert "id" in result.stdout


def test_plan_failure_exits_non_zero(config_file: Path) -> None:
    result = runner.invoke(app, ["plan", "datasources:EmptyDataSource", "--schema", "id INT", "--config", str(config_file)])

    assert result.exit_code == 1
    assert "METHOD_NOT_IMPLEMENTED" in result.output


def test_plan_rejects_malformed_option(config_file: Path) -> None:
    result = runner.invoke(app, ["plan", "datasources:RangeDataSource", "--option", "novalue", "--config", str(config_file)])

    assert result.exit_code != 0
