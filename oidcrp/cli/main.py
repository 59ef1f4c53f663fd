"""CLI entry point for oidcrp."""

from __future__ import annotations

from pathlib import Path

import click

from oidcrp import __version__
from oidcrp.cli import config as config_commands
from oidcrp.cli import flows as flow_commands
from oidcrp.cli import state as state_commands
from oidcrp.core.logging import configure_logging


@click.group()
@click.version_option(version=__version__, prog_name="oidcrp")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),  # type: ignore[type-var]
    help="Path to config file. Defaults to ~/.oidcrp/config.yaml",
)
@click.option(
    "--db-path",
    type=click.Path(path_type=Path, dir_okay=False),  # type: ignore[type-var]
    envvar="OIDCRP_DB_PATH",
    help="Path to the state database. Defaults to ~/.oidcrp/state.db",
)
@click.option(
    "--log-level",
    type=click.Choice(["ERROR", "INFO", "DEBUG", "TRACE"], case_sensitive=False),
    help="Enable protocol logging at this level.",
)
@click.option(
    "--trace",
    is_flag=True,
    help="Allow TRACE logging of request/response bodies (includes secrets).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    db_path: Path | None,
    log_level: str | None,
    trace: bool,
) -> None:
    """oidcrp - OAuth2 Authorization Code + PKCE / OpenID Connect client."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["db_path"] = db_path

    if log_level:
        configure_logging(log_level, trace_enabled=trace)


cli.add_command(flow_commands.discover)
cli.add_command(flow_commands.signin_url)
cli.add_command(flow_commands.callback)
cli.add_command(flow_commands.refresh)
cli.add_command(flow_commands.revoke)
cli.add_command(flow_commands.signout_url)
cli.add_command(state_commands.state)
cli.add_command(config_commands.config)
