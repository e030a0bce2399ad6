#!/usr/bin/env python3
"""Runnable demo: echo every text message back to its chat.

Prerequisites:
    export SAKURA_BOT_TOKEN=123456:your-token
    uv run python examples/echo_bot.py examples/bot.yaml
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any

from pydantic import BaseModel, ConfigDict
from rich.console import Console

from sakura_tg.api.client import BotApiClient
from sakura_tg.config.loader import load_bot_config
from sakura_tg.errors import SakuraError
from sakura_tg.observability.log import configure_logging
from sakura_tg.polling.poller import Poller

console = Console()


class MessageUpdate(BaseModel):
    """Just the parts of an update the echo handler reads."""

    model_config = ConfigDict(extra="ignore")

    update_id: int
    message: dict[str, Any] | None = None


async def main(config_path: str) -> None:
    config = load_bot_config(config_path)
    configure_logging(config.logging)

    async with BotApiClient(config.api) as client:
        me = await client.get_me()
        console.print(f"[bold]Echoing as[/bold] @{me.username or me.first_name}")

        async def echo(update: MessageUpdate) -> None:
            message = update.message or {}
            text = message.get("text")
            if not text:
                return
            await client.call(
                "sendMessage",
                {
                    "chat_id": message["chat"]["id"],
                    "text": text,
                    "reply_to_message_id": message["message_id"],
                },
            )

        poller = Poller(echo, client, config=config.polling)
        await poller.serve(install_signal_handlers=True)


if __name__ == "__main__":
    if len(sys.argv) != 2:
        console.print("usage: echo_bot.py <config.yaml>")
        sys.exit(2)
    try:
        asyncio.run(main(sys.argv[1]))
    except SakuraError as exc:
        console.print(f"[red]{exc}[/red]")
        sys.exit(1)
