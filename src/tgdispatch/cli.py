"""CLI entrypoint: a sample echo bot.

Replies to every non-command message with its own text, and to `/start` with
a greeting. Polls by default; `--webhook-url` switches to the built-in webhook
server instead.
"""

from __future__ import annotations

import argparse
import logging
from typing import Any

import anyio
import logfire
from rich import print

from .bot import Bot, PollingBot, WebhookBot
from .context import Context
from .entities import Update
from .errors import TgDispatchError
from .shorthands import DEFAULT_SHORTHANDS


def _parse_cli_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="tgdispatch",
        description="Telegram echo bot (getUpdates polling or webhook).",
    )
    parser.add_argument(
        "--token",
        default=None,
        help="Telegram bot token (never printed). Defaults to $TGDISPATCH_TOKEN.",
    )
    parser.add_argument(
        "--interval-ms",
        type=int,
        default=None,
        help="Pause between getUpdates cycles in milliseconds.",
    )
    parser.add_argument(
        "--webhook-url",
        default="",
        help="Public https URL. When set, serve a webhook instead of polling.",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Webhook server port (default: $TGDISPATCH_WEBHOOK_PORT or 3000).",
    )
    return parser.parse_args(argv)


def install_echo_handlers(bot: Bot) -> None:
    """Register the echo bot's shorthands and handlers on `bot`."""

    bot.add_shorthand(DEFAULT_SHORTHANDS)

    @bot.on_command("start")
    async def greet(ctx: Context, parsed: Any, update: Update) -> None:
        await ctx.reply_message("Hi! Send me anything and I will echo it back.")

    @bot.on_message()
    async def echo(ctx: Context, update: Update) -> None:
        view = ctx.message
        if view is None or not view.text:
            return
        await ctx.reply_message(
            view.text, reply_to_message_id=update.message.message_id
        )


async def run(
    *,
    token: str | None = None,
    interval_ms: int | None = None,
    webhook_url: str = "",
    port: int | None = None,
) -> None:
    """Function entrypoint."""

    logfire.configure(send_to_logfire="if-token-present")
    logging.basicConfig(level=logging.INFO, handlers=[logfire.LogfireLoggingHandler()])

    overrides: dict[str, Any] = {} if token is None else {"token": token}

    if webhook_url:
        webhook_bot = WebhookBot.from_env(**overrides)
        install_echo_handlers(webhook_bot)
        print("[green]Echo bot serving webhook[/green]")
        try:
            await webhook_bot.set_webhook_and_serve(webhook_url, port=port)
        finally:
            with anyio.CancelScope(shield=True):
                await webhook_bot.delete_webhook()
        return

    polling_bot = PollingBot.from_env(**overrides)
    install_echo_handlers(polling_bot)
    print("[green]Echo bot polling[/green] (Ctrl+C to stop)")
    await polling_bot.start_polling(interval_ms)


async def main() -> None:
    """CLI entrypoint."""
    args = _parse_cli_args()
    try:
        await run(
            token=args.token,
            interval_ms=args.interval_ms,
            webhook_url=args.webhook_url,
            port=args.port,
        )
    except TgDispatchError as e:
        print(f"[red]tgdispatch[/red]: {e}")
        raise SystemExit(2) from None


def cli() -> None:
    anyio.run(main)
