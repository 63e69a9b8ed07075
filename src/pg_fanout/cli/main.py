"""pg-fanout main entry point and command registration."""

from __future__ import annotations

import atexit
from pathlib import Path  # noqa: TC003
from typing import Annotated

import sentry_sdk
import typer

from pg_fanout.__about__ import __version__
from pg_fanout.cli.commands.config import config_app
from pg_fanout.cli.commands.export import export_command
from pg_fanout.core.exceptions import FanoutError
from pg_fanout.core.exit_codes import ExitCode
from pg_fanout.core.logging import close_log_file, diagnostic_log_path, setup_logging
from pg_fanout.core.monitoring import setup_sentry

app = typer.Typer(
    help="pg-fanout - run one SQL query against many PostgreSQL servers",
    no_args_is_help=True,
)

app.add_typer(config_app, name="config")
app.command("export")(export_command)


def version_callback(value: bool) -> None:
    if value:
        typer.echo(f"pg-fanout {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Enable verbose logging to stderr"),
    ] = False,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config file"),
    ] = None,
) -> None:
    """pg-fanout - run one SQL query against many PostgreSQL servers."""
    setup_logging(verbose, log_file=diagnostic_log_path())
    atexit.register(close_log_file)

    if setup_sentry():
        transaction = sentry_sdk.start_transaction(
            op="cli", name=ctx.invoked_subcommand or "pg-fanout"
        )
        transaction.__enter__()

        def cleanup() -> None:
            transaction.__exit__(None, None, None)
            sentry_sdk.flush(timeout=2)

        atexit.register(cleanup)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_file"] = config_file


def run() -> None:
    """Entry point with global error handling."""
    try:
        app()
    except FanoutError as e:
        sentry_sdk.capture_exception(e)
        typer.echo(f"Error: {e.message}", err=True)
        raise SystemExit(e.exit_code) from None
    except SystemExit:
        raise
    except KeyboardInterrupt:
        raise SystemExit(ExitCode.CANCELLED) from None
    except Exception as e:
        sentry_sdk.capture_exception(e)
        typer.echo(f"Error: {e}", err=True)
        raise SystemExit(ExitCode.GENERAL_ERROR) from None
