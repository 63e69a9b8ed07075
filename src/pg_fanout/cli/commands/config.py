"""Configuration management CLI commands."""

from __future__ import annotations

from typing import TYPE_CHECKING

import typer

from pg_fanout.core.config import (
    DEFAULT_CONFIG_PATH,
    AppConfig,
    load_config,
    mask_password,
    resolve_settings,
)
from pg_fanout.core.exceptions import ConfigError

if TYPE_CHECKING:
    from pathlib import Path

config_app = typer.Typer(help="Configuration management commands")


@config_app.callback(invoke_without_command=True)
def config_callback(ctx: typer.Context) -> None:
    if not ctx.invoked_subcommand:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _load(config_path: Path | None) -> AppConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        typer.echo(f"Error: {exc.message}", err=True)
        raise typer.Exit(exc.exit_code) from exc


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Display resolved run settings with source attribution."""
    config_path: Path | None = ctx.obj.get("config_file")
    try:
        resolved = resolve_settings(load_config(config_path))
    except ConfigError as exc:
        typer.echo(f"Error: {exc.message}", err=True)
        raise typer.Exit(exc.exit_code) from exc
    sources = resolved.sources

    typer.echo("Run Settings (resolved):")
    fields = [
        ("connect_timeout", f"{resolved.connect_timeout}s"),
        ("max_workers", str(resolved.max_workers or "one per endpoint")),
        ("on_collision", str(resolved.on_collision)),
        ("application_name", resolved.application_name),
        ("refresh_interval", f"{resolved.refresh_interval:.3f}s"),
        ("status_interval", f"{resolved.status_interval:.3f}s"),
    ]
    for field_name, value in fields:
        source = sources.get(field_name, "default")
        typer.echo(f"  {field_name}: {value} ({source})")

    typer.echo("")
    display_path = config_path or DEFAULT_CONFIG_PATH
    typer.echo(f"Config File: {display_path}")


@config_app.command("groups")
def config_groups(ctx: typer.Context) -> None:
    """List endpoint groups defined in the config file."""
    config_path: Path | None = ctx.obj.get("config_file")
    app_config = _load(config_path)

    if not app_config.groups:
        typer.echo("No endpoint groups configured.")
        display_path = config_path or DEFAULT_CONFIG_PATH
        typer.echo(f"Add groups to: {display_path}")
        return

    typer.echo("Endpoint Groups:")
    typer.echo("")
    for name, dsns in sorted(app_config.groups.items()):
        typer.echo(f"  {name} ({len(dsns)} endpoints)")
        for dsn in dsns:
            typer.echo(f"      {mask_password(dsn)}")
        typer.echo("")
