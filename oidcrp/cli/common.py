"""Shared helpers for CLI commands."""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, NoReturn, TypeVar

import click
import httpx

from oidcrp.core.config import load_settings
from oidcrp.core.errors import ErrorResponse, OidcError
from oidcrp.core.logging import create_http_client, get_protocol_logger
from oidcrp.core.oidc import OidcClient
from oidcrp.storage import Database, DatabaseStateStore

T = TypeVar("T")

# Common option for JSON output
json_option = click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output results as JSON for scripting",
)


def output_result(data: dict[str, Any], as_json: bool = False) -> None:
    """Output result as JSON or as aligned key/value lines.

    Args:
        data: Data to output
        as_json: If True, output as JSON
    """
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
        return
    width = max((len(k) for k in data), default=0)
    for key, value in data.items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value, default=str)
        click.echo(f"{key.ljust(width)}  {value}")


def error_result(message: str, as_json: bool = False) -> NoReturn:
    """Output error message and exit.

    This function never returns - it either raises ClickException or calls sys.exit.

    Args:
        message: Error message
        as_json: If True, output as JSON
    """
    if as_json:
        click.echo(json.dumps({"error": message}, indent=2), err=True)
        sys.exit(1)
    raise click.ClickException(message)


def parse_state_data(value: str | None) -> Any:
    """Interpret --state-data as JSON, falling back to the raw string."""
    if value is None:
        return None
    try:
        return json.loads(value)
    except ValueError:
        return value


def get_state_store(ctx: click.Context) -> DatabaseStateStore:
    db_path: Path | None = ctx.obj.get("db_path")
    return DatabaseStateStore(Database(db_path=db_path))


def describe_error(error: Exception) -> str:
    if isinstance(error, ErrorResponse):
        if error.error_description:
            return f"{error.error}: {error.error_description}"
        return error.error
    return str(error) or type(error).__name__


def run_with_client(
    ctx: click.Context,
    action: Callable[[OidcClient], Awaitable[T]],
    as_json: bool = False,
) -> T:
    """Build an OidcClient from the CLI context and run an async action with it.

    Settings come from --config (or the default config file) plus
    environment overrides; pending state is kept in the SQLite store.
    """
    try:
        settings = load_settings(ctx.obj.get("config_path"))
    except OidcError as e:
        error_result(f"Invalid configuration: {e}", as_json)

    store = get_state_store(ctx)

    async def runner() -> T:
        async with create_http_client(get_protocol_logger(), transport=ctx.obj.get("transport")) as http:
            client = OidcClient(settings, state_store=store, http_client=http)
            return await action(client)

    try:
        return asyncio.run(runner())
    except OidcError as e:
        error_result(describe_error(e), as_json)
    except httpx.HTTPError as e:
        error_result(f"HTTP error: {describe_error(e)}", as_json)
    finally:
        store.database.close()
