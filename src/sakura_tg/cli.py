"""Typer CLI for sakura-tg."""

from __future__ import annotations

import asyncio
import importlib
from collections.abc import Callable
from pathlib import Path
from typing import Any

import structlog
import typer
from rich.console import Console
from rich.table import Table

from sakura_tg.api.client import BotApiClient
from sakura_tg.config.loader import export_config, load_bot_config
from sakura_tg.config.models import BotConfig
from sakura_tg.errors import HandlerContractError, SakuraError
from sakura_tg.observability.log import configure_logging
from sakura_tg.polling.poller import Poller
from sakura_tg.types import Update

logger = structlog.get_logger()
console = Console()
app = typer.Typer(name="sakura", help="Telegram Bot API long-polling runner")


def _load(config_path: str, *, restore_backup: bool = False) -> BotConfig:
    path = Path(config_path)
    if not path.exists():
        console.print(f"[red]Config file not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        config = load_bot_config(path, restore_backup=restore_backup)
    except SakuraError as exc:
        console.print(f"[red]Validation error:[/red] {exc}")
        raise typer.Exit(1) from exc
    configure_logging(config.logging)
    return config


def _import_handler(target: str) -> Callable[[Any], Any]:
    """Resolve ``package.module:function`` to a callable."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        msg = f"Handler must be given as 'module:function', got '{target}'"
        raise typer.BadParameter(msg)
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        msg = f"Cannot import module '{module_name}': {exc}"
        raise typer.BadParameter(msg) from exc
    obj: Any = module
    for part in attr.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as exc:
            msg = f"'{module_name}' has no attribute '{attr}'"
            raise typer.BadParameter(msg) from exc
    return obj


def _serve(poller: Poller, client: BotApiClient) -> None:
    async def _main() -> None:
        async with client:
            me = await client.get_me()
            console.print(
                f"[green]Authenticated[/green] as @{me.username or me.first_name}"
                f" (id={me.id})"
            )
            await poller.serve(install_signal_handlers=True)

    try:
        asyncio.run(_main())
    except SakuraError as exc:
        console.print(f"[red]Stopped:[/red] {exc}")
        raise typer.Exit(1) from exc


@app.command()
def validate(
    config_path: str = typer.Argument(..., help="Path to bot YAML"),
    restore_backup: bool = typer.Option(
        False, "--restore-backup", help="Apply the newest exported settings file"
    ),
) -> None:
    """Validate a bot configuration file."""
    config = _load(config_path, restore_backup=restore_backup)
    polling = config.polling
    console.print("[green]Valid[/green]")
    console.print(f"  api:          {config.api.base_url}")
    console.print(f"  timeout:      {polling.timeout_seconds}s")
    console.print(f"  limit:        {polling.limit or '(server default)'}")
    allowed = (
        ", ".join(u.value for u in polling.allowed_updates)
        if polling.allowed_updates is not None
        else "(server default)"
    )
    console.print(f"  updates:      {allowed}")
    console.print(f"  concurrency:  {polling.max_concurrency}")
    console.print(f"  admins:       {len(config.admins)}")


@app.command()
def check(
    config_path: str = typer.Argument(..., help="Path to bot YAML"),
) -> None:
    """Validate the token against the Bot API (getMe)."""
    config = _load(config_path)

    async def _check() -> None:
        async with BotApiClient(config.api) as client:
            me = await client.get_me()
        table = Table(title="Bot")
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        table.add_row("id", str(me.id))
        table.add_row("username", me.username or "")
        table.add_row("name", me.first_name)
        console.print(table)

    try:
        asyncio.run(_check())
    except SakuraError as exc:
        console.print(f"[red]Check failed:[/red] {exc}")
        raise typer.Exit(1) from exc


@app.command()
def tail(
    config_path: str = typer.Argument(..., help="Path to bot YAML"),
) -> None:
    """Print incoming updates to the console (debug)."""
    config = _load(config_path)

    async def handler(update: Update) -> None:
        sender = update.sender_id
        who = f" from={sender}" if sender is not None else ""
        if sender is not None and config.is_admin(sender):
            who += " [magenta](admin)[/magenta]"
        console.print(
            f"[cyan]{update.kind or 'unknown'}[/cyan] id={update.update_id}{who}"
        )
        console.print(f"  {update.payload}")
        console.print()

    client = BotApiClient(config.api)
    poller = Poller(handler, client, config=config.polling)
    console.print("[yellow]Waiting for updates...[/yellow]")
    _serve(poller, client)


@app.command()
def run(
    config_path: str = typer.Argument(..., help="Path to bot YAML"),
    handler: str = typer.Option(
        ..., "--handler", "-H", help="Update handler as 'module:function'"
    ),
    on_error: str | None = typer.Option(
        None, "--on-error", help="Error hook as 'module:function' (update, exc)"
    ),
    restore_backup: bool = typer.Option(
        False, "--restore-backup", help="Apply the newest exported settings file"
    ),
) -> None:
    """Run the long-polling loop with a user handler."""
    config = _load(config_path, restore_backup=restore_backup)
    fn = _import_handler(handler)
    hook = _import_handler(on_error) if on_error is not None else None

    client = BotApiClient(config.api)
    try:
        poller = Poller(fn, client, config=config.polling, on_error=hook)
    except HandlerContractError as exc:
        console.print(f"[red]Invalid handler:[/red] {exc}")
        raise typer.Exit(1) from exc

    console.print(
        f"[yellow]Starting poller:[/yellow] {handler} "
        f"(max_concurrency={poller.pool.max_concurrency})"
    )
    _serve(poller, client)


@app.command("export")
def export(
    config_path: str = typer.Argument(..., help="Path to bot YAML"),
    directory: str | None = typer.Option(
        None, "--dir", help="Target directory (default: config_dir)"
    ),
) -> None:
    """Export the effective settings to a timestamped backup file."""
    config = _load(config_path)
    path = export_config(config, directory)
    console.print(f"[green]Settings exported:[/green] {path}")
