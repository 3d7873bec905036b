"""Command line interface for inspecting extension data sources."""
import logging
from typing import Dict, List, Optional

import typer

from .config import ConfigLoader
from .datasource import DataSource, declares_schema, probe_capabilities
from .errors import DataSourceError
from .plan_inspect import format_plan, format_probe
from .planner import Mode
from .registry import DataSourceDefinition
from .session import Session

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)

app = typer.Typer(help="Python data source bridge tooling")


def _parse_options(pairs: Optional[List[str]]) -> Dict[str, str]:
    options: Dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got {pair!r}", param_hint="--option")
        options[key] = value
    return options


@app.command()
def probe(
    entry_point: str = typer.Argument(..., help="module:Class or path/to/file.py:Class"),
    option: Optional[List[str]] = typer.Option(None, "--option", help="key=value passed to the data source"),
    output_format: str = typer.Option("table", "--format", help="table or json"),
) -> None:
    """Report which capabilities a data source implements, without calling them."""
    options = _parse_options(option)
    try:
        source_cls = DataSourceDefinition.from_entry_point(entry_point).load()
    except (ImportError, AttributeError, ValueError, OSError) as exc:
        typer.echo(f"Unable to load {entry_point}: {exc}", err=True)
        raise typer.Exit(code=1)
    if not (isinstance(source_cls, type) and issubclass(source_cls, DataSource)):
        typer.echo(f"{entry_point} is not a DataSource subclass", err=True)
        raise typer.Exit(code=1)
    try:
        source = source_cls(options)
        capabilities = probe_capabilities(source)
        has_schema = declares_schema(source)
    except Exception as exc:
        typer.echo(f"Unable to probe {entry_point}: {type(exc).__name__}: {exc}", err=True)
        raise typer.Exit(code=1)
    logger.info("Probed %s: %s", entry_point, capabilities.variant)
    typer.echo(format_probe(entry_point, capabilities, has_schema, output_format))


@app.command()
def plan(
    entry_point: str = typer.Argument(..., help="module:Class or path/to/file.py:Class"),
    name: Optional[str] = typer.Option(None, "--name", help="Registration name (defaults to the class name)"),
    schema: Optional[str] = typer.Option(None, "--schema", help="DDL schema supplied by the caller"),
    option: Optional[List[str]] = typer.Option(None, "--option", help="key=value passed to the data source"),
    mode: str = typer.Option("read", "--mode", help="read or write"),
    output_format: str = typer.Option("table", "--format", help="table or json"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Bridge configuration YAML"),
) -> None:
    """Run the planning round-trip in the extension runtime and print the result."""
    try:
        plan_mode = Mode(mode.lower())
    except ValueError:
        raise typer.BadParameter("Expected read or write", param_hint="--mode")
    options = _parse_options(option)
    try:
        definition = DataSourceDefinition.from_entry_point(entry_point)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="ENTRY_POINT")
    source_name = name or entry_point.rsplit(":", 1)[1].split(".")[-1]

    with Session(ConfigLoader(config_path).model) as session:
        registration = session.data_source.register_python(source_name, definition)
        try:
            planned = session.planner.plan(
                registration, options, plan_mode, declared_schema=schema
            )
        except DataSourceError as exc:
            typer.echo(str(exc), err=True)
            raise typer.Exit(code=1)
    typer.echo(format_plan(planned, output_format=output_format))


if __name__ == "__main__":
    app()
