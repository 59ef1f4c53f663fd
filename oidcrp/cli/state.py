"""Pending state CLI commands."""

from __future__ import annotations

import asyncio
from typing import Any

import click

from oidcrp.cli.common import get_state_store, json_option, output_result
from oidcrp.core.config import DEFAULT_STALE_STATE_AGE_IN_SECONDS
from oidcrp.core.oidc import State, get_epoch_time


@click.group()
def state() -> None:
    """Inspect and clean up pending signin/signout state."""
    pass


@state.command("list")
@json_option
@click.pass_context
def state_list(ctx: click.Context, output_json: bool) -> None:
    """List pending state entries with their age."""
    store = get_state_store(ctx)

    async def collect() -> list[dict[str, Any]]:
        now = get_epoch_time()
        entries = []
        for key in await store.get_all_keys():
            item = await store.get(key)
            try:
                pending = State.from_storage_string(item or "")
            except (ValueError, TypeError):
                entries.append({"id": key, "age": None, "request_type": None, "valid": False})
                continue
            entries.append({
                "id": key,
                "age": now - pending.created,
                "request_type": pending.request_type,
                "valid": True,
            })
        return entries

    try:
        entries = asyncio.run(collect())
    finally:
        store.database.close()

    if output_json:
        output_result({"states": entries, "count": len(entries)}, as_json=True)
        return

    if not entries:
        click.echo("No pending state.")
        return
    for entry in entries:
        age = f"{entry['age']}s" if entry["valid"] else "unparseable"
        click.echo(f"{entry['id']}  {age}  {entry['request_type'] or '-'}")


@state.command("sweep")
@click.option(
    "--max-age",
    type=int,
    default=DEFAULT_STALE_STATE_AGE_IN_SECONDS,
    show_default=True,
    help="Remove entries older than this many seconds",
)
@json_option
@click.pass_context
def state_sweep(ctx: click.Context, max_age: int, output_json: bool) -> None:
    """Remove stale, empty and unparseable state entries."""
    store = get_state_store(ctx)

    async def sweep() -> tuple[int, int]:
        before = len(await store.get_all_keys())
        await State.clear_stale_state(store, max_age)
        return before, len(await store.get_all_keys())

    try:
        before, after = asyncio.run(sweep())
    finally:
        store.database.close()

    removed = before - after
    if output_json:
        output_result({"removed": removed, "remaining": after}, as_json=True)
    else:
        click.echo(f"Removed {removed} stale state entries ({after} remaining).")
