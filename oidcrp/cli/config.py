"""Configuration management CLI commands."""

from __future__ import annotations

from pathlib import Path

import click

from oidcrp.cli.common import error_result, json_option, output_result
from oidcrp.core.config import DEFAULT_CONFIG_FILE, get_default_config_yaml, load_settings
from oidcrp.core.errors import ConfigurationError

REDACTED = "[REDACTED]"


@click.group()
def config() -> None:
    """Manage oidcrp configuration."""
    pass


@config.command("init")
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite an existing config file.",
)
@json_option
@click.pass_context
def config_init(ctx: click.Context, force: bool, output_json: bool) -> None:
    """Write a documented config.yaml template.

    The file is written to --config when given, otherwise to
    ~/.oidcrp/config.yaml.

    Examples:

        # Create the default config file
        oidcrp config init

        # Create a project-local config
        oidcrp --config ./oidcrp.yaml config init
    """
    path: Path = ctx.obj.get("config_path") or DEFAULT_CONFIG_FILE

    if path.exists() and not force:
        error_result(f"Config file already exists: {path} (use --force to overwrite)", output_json)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_default_config_yaml())

    if output_json:
        output_result({"status": "created", "path": str(path)}, as_json=True)
        return
    click.echo(f"Config file written to: {path}")
    click.echo("Edit authority, client_id and redirect_uri before running 'oidcrp signin-url'.")


@config.command("show")
@click.option("--show-secrets", is_flag=True, help="Print client_secret unredacted.")
@json_option
@click.pass_context
def config_show(ctx: click.Context, show_secrets: bool, output_json: bool) -> None:
    """Show the effective settings (file plus environment overrides)."""
    try:
        settings = load_settings(ctx.obj.get("config_path"))
    except ConfigurationError as e:
        error_result(f"Invalid configuration: {e}", output_json)

    data = settings.to_dict()
    if data.get("client_secret") and not show_secrets:
        data["client_secret"] = REDACTED

    if output_json:
        output_result(data, as_json=True)
        return

    if settings.config_path:
        click.echo(f"# {settings.config_path}")
    output_result({k: v for k, v in data.items() if v not in (None, {}, [])})
