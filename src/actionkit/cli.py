from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from typer import Argument, Option

from .config.loader import load_config
from .connectors import available_connectors
from .core.errors import ActionError, ConfigError, get_exit_code
from .dispatch import Dispatcher, DispatchOutcome
from .observability.logging import get_logger, set_verbose

app = typer.Typer(
    name="actionkit",
    help="actionkit - validate and run actions against data resources",
    no_args_is_help=True,
    add_completion=False,
)


def _read_options(path: Optional[str], what: str) -> Dict[str, Any]:
    if not path:
        return {}
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"cannot read {what} options from {path}: {e}") from e
    except ValueError as e:
        raise ConfigError(f"{what} options in {path} are not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{what} options in {path} must be a JSON object")
    return data


def _dispatcher(config: Optional[str], verbose: bool) -> Dispatcher:
    set_verbose(verbose)
    return Dispatcher(load_config(config))


def _emit(outcome: DispatchOutcome) -> None:
    """Print the result as JSON, or the error on stderr with its exit code."""
    if outcome.error is not None:
        typer.echo(f"Error: {outcome.error.message}", err=True)
        raise typer.Exit(get_exit_code(outcome.error))
    typer.echo(json.dumps(outcome.result.model_dump(by_alias=True), indent=2, default=str))


def _fail(e: ActionError) -> None:
    get_logger().error("Command failed", error=e.message, error_type=type(e).__name__)
    typer.echo(f"Error: {e.message}", err=True)
    raise typer.Exit(get_exit_code(e))


@app.command("run")
def run_action(
    resource_type: str = Argument(..., help="Resource type tag, e.g. postgresql or restapi"),
    resource: Optional[str] = Option(None, "-r", "--resource", help="Path to resource options JSON"),
    action: Optional[str] = Option(None, "-a", "--action", help="Path to action options JSON"),
    test_first: bool = Option(False, "--test", help="Test the connection before running"),
    config: Optional[str] = Option(None, "-c", "--config", help="Path to actionkit YAML config"),
    verbose: bool = Option(False, "-v", "--verbose", help="Enable debug logging"),
) -> None:
    """Validate and run one action."""
    try:
        dispatcher = _dispatcher(config, verbose)
        outcome = dispatcher.run_action(
            resource_type,
            _read_options(resource, "resource"),
            _read_options(action, "action"),
            test_connection=test_first,
        )
    except ActionError as e:
        _fail(e)
    _emit(outcome)


@app.command("validate")
def validate(
    resource_type: str = Argument(..., help="Resource type tag"),
    resource: Optional[str] = Option(None, "-r", "--resource", help="Path to resource options JSON"),
    action: Optional[str] = Option(None, "-a", "--action", help="Path to action options JSON"),
    config: Optional[str] = Option(None, "-c", "--config", help="Path to actionkit YAML config"),
    verbose: bool = Option(False, "-v", "--verbose", help="Enable debug logging"),
) -> None:
    """Validate resource options and, when given, action options."""
    try:
        dispatcher = _dispatcher(config, verbose)
        outcome = dispatcher.validate_resource(resource_type, _read_options(resource, "resource"))
        if outcome.ok and action:
            outcome = dispatcher.validate_action(resource_type, _read_options(action, "action"))
    except ActionError as e:
        _fail(e)
    _emit(outcome)


@app.command("test")
def test_connection(
    resource_type: str = Argument(..., help="Resource type tag"),
    resource: Optional[str] = Option(None, "-r", "--resource", help="Path to resource options JSON"),
    config: Optional[str] = Option(None, "-c", "--config", help="Path to actionkit YAML config"),
    verbose: bool = Option(False, "-v", "--verbose", help="Enable debug logging"),
) -> None:
    """Probe connectivity for a resource."""
    try:
        outcome = _dispatcher(config, verbose).test_connection(resource_type, _read_options(resource, "resource"))
    except ActionError as e:
        _fail(e)
    _emit(outcome)


@app.command("meta")
def meta_info(
    resource_type: str = Argument(..., help="Resource type tag"),
    resource: Optional[str] = Option(None, "-r", "--resource", help="Path to resource options JSON"),
    config: Optional[str] = Option(None, "-c", "--config", help="Path to actionkit YAML config"),
    verbose: bool = Option(False, "-v", "--verbose", help="Enable debug logging"),
) -> None:
    """Print the resource's metadata (tables, buckets, collections...)."""
    try:
        outcome = _dispatcher(config, verbose).get_meta_info(resource_type, _read_options(resource, "resource"))
    except ActionError as e:
        _fail(e)
    _emit(outcome)


@app.command("types")
def list_types() -> None:
    """List registered resource type tags."""
    for name in available_connectors():
        typer.echo(name)


def main() -> None:
    """Main entry point for the actionkit CLI."""
    app()


@app.callback(invoke_without_command=True)
def version_callback(
    ctx: typer.Context,
    version: bool = Option(False, "--version", help="Show version and exit"),
) -> None:
    """actionkit CLI."""
    if version:
        import importlib.metadata as importlib_metadata

        try:
            version_str = importlib_metadata.version("actionkit")
        except importlib_metadata.PackageNotFoundError:
            version_str = "0.0.0+local"
        typer.echo(version_str)
        raise typer.Exit(0)


if __name__ == "__main__":
    main()
