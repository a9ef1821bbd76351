"""RDS reconciler CLI (rdsr).

Drives handler invocations from the command line.

Usage:
    rdsr types                                               # List resource types
    rdsr invoke AWS::RDS::DBClusterParameterGroup UPDATE \\
        --request update.yaml --context ctx.json             # One invocation
    rdsr run AWS::RDS::CustomDBEngineVersion CREATE \\
        --request create.yaml                                # Re-invoke until done
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

import click

from .client import create_rds_client
from .config import Config, ConfigurationError
from .handler import Action, BaseHandler
from .main import RESOURCE_TYPES, create_handler, setup_logging
from .progress import CallbackContext, ProgressEvent
from .spec_loader import SpecLoadError, load_callback_context, load_request, save_callback_context

# CLI constants with documented bounds
DEFAULT_MAX_INVOCATIONS = 1000
MAX_INVOCATIONS_LIMIT = 100_000

ACTIONS = tuple(action.value for action in Action)


def _load_config() -> Config:
    try:
        return Config.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def _build_handler(resource_type: str, config: Config) -> BaseHandler[Any]:
    try:
        return create_handler(resource_type, create_rds_client(config.region), config)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def _echo_result(result: ProgressEvent[Any]) -> None:
    click.echo(json.dumps(result.to_dict(), indent=2, sort_keys=True))


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="rdsr")
@click.option("--log-level", envvar="LOG_LEVEL", default="INFO", help="Log level")
def cli(log_level: str) -> None:
    """RDS reconciler CLI (rdsr).

    Runs create/read/update/delete operations against RDS resources, one
    invocation at a time or until the operation completes.
    """
    setup_logging(log_level)


@cli.command()
def types() -> None:
    """List supported resource types."""
    for resource_type in sorted(RESOURCE_TYPES):
        click.echo(resource_type)


@cli.command()
@click.argument("resource_type", type=click.Choice(sorted(RESOURCE_TYPES)))
@click.argument("action", type=click.Choice(ACTIONS, case_sensitive=False))
@click.option(
    "--request",
    "-r",
    "request_path",
    type=click.Path(dir_okay=False, path_type=Path),
    required=True,
    help="Request file (YAML or JSON)",
)
@click.option(
    "--context",
    "-c",
    "context_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Callback context file, read before and written after the invocation",
)
def invoke(
    resource_type: str, action: str, request_path: Path, context_path: Path | None
) -> None:
    """Run a single invocation and print its result.

    While the operation is in progress the updated context is written back to
    --context; on a terminal result the context file is removed.
    """
    config = _load_config()
    try:
        request = load_request(request_path)
        context = load_callback_context(context_path) if context_path else CallbackContext()
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e

    handler = _build_handler(resource_type, config)
    result = handler.handle(action.upper(), request, context)
    _echo_result(result)

    if context_path is not None:
        if result.is_in_progress:
            save_callback_context(context_path, result.callback_context)
        else:
            context_path.unlink(missing_ok=True)

    if result.is_failed:
        raise SystemExit(1)


@cli.command()
@click.argument("resource_type", type=click.Choice(sorted(RESOURCE_TYPES)))
@click.argument("action", type=click.Choice(ACTIONS, case_sensitive=False))
@click.option(
    "--request",
    "-r",
    "request_path",
    type=click.Path(dir_okay=False, path_type=Path),
    required=True,
    help="Request file (YAML or JSON)",
)
@click.option(
    "--max-invocations",
    "-n",
    type=click.IntRange(1, MAX_INVOCATIONS_LIMIT),
    default=DEFAULT_MAX_INVOCATIONS,
    show_default=True,
    help="Give up after this many invocations",
)
def run(resource_type: str, action: str, request_path: Path, max_invocations: int) -> None:
    """Invoke repeatedly, waiting the returned delay, until the operation ends."""
    config = _load_config()
    try:
        request = load_request(request_path)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e

    handler = _build_handler(resource_type, config)
    context = CallbackContext()

    for invocation in range(1, max_invocations + 1):
        result = handler.handle(action.upper(), request, context)
        if not result.is_in_progress:
            _echo_result(result)
            if result.is_failed:
                raise SystemExit(1)
            return

        context = result.callback_context
        click.echo(
            f"[{invocation}] {result.status.value}: waiting {result.callback_delay_seconds}s",
            err=True,
        )
        time.sleep(result.callback_delay_seconds)

    raise click.ClickException(f"Operation still in progress after {max_invocations} invocations")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
