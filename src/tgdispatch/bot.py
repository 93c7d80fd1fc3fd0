"""Bot facades: the registration surface plus the two update transports.

`Bot` owns one shorthand registry, one dispatcher and one API client. The
transport subclasses add the update source:

- :class:`PollingBot` drives a :class:`~tgdispatch.polling.PollingSource`.
- :class:`WebhookBot` drives a :class:`~tgdispatch.webhook.WebhookSource`
  and registers / deregisters the webhook URL with Telegram.

Nothing here is shared between bot instances; two bots in one process never
see each other's handlers, shorthands or cursor.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Iterable, Mapping, Sequence
from logging import getLogger
from typing import Any, TypeAlias
from urllib.parse import urlsplit, urlunsplit

import anyio
from anyio.abc import TaskGroup
from fastapi import FastAPI
from pydantic import ValidationError

from .api import BotApi, TelegramBotApi
from .config import BotConfig, require_token
from .dispatcher import (
    AllCommandsCallback,
    CommandCallback,
    Dispatcher,
    Handler,
    HandlerFailure,
    MessageCallback,
)
from .entities import ApiResponse, Update
from .errors import ConfigurationError, TgDispatchError
from .polling import Backoff, PollingSource, constant_backoff
from .shorthands import ShortHandArg, ShortHandRegistry, set_commands
from .webhook import WebhookSource

logger = getLogger(__name__)

ApiErrorHandler: TypeAlias = Callable[[ApiResponse], Any]


def default_api_error_handler(response: ApiResponse) -> None:
    logger.error(
        "Telegram Bot API error (error_code=%s): %s",
        response.error_code,
        response.description,
    )


def _load_config(**overrides: Any) -> BotConfig:
    try:
        return BotConfig(**overrides)
    except ValidationError as e:
        # Only field names: the rejected input may be the token itself.
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise ConfigurationError(
            f"Invalid bot configuration: {', '.join(fields)}"
        ) from None


class Bot:
    """Handlers, shorthands and the API client of one Telegram bot."""

    def __init__(
        self,
        token: str | None = None,
        *,
        config: BotConfig | None = None,
        api: BotApi | None = None,
    ) -> None:
        if config is None:
            config = _load_config(token=require_token(token))
        elif token is not None:
            config = config.model_copy(update={"token": require_token(token)})

        self.config = config
        self.registry = ShortHandRegistry()
        self.dispatcher = Dispatcher(
            api if api is not None else self._make_api(config),
            self.registry,
            blocking=config.blocking_handlers,
        )
        self._api_error_handler: ApiErrorHandler = default_api_error_handler

    @classmethod
    def from_env(cls, **overrides: Any) -> Bot:
        """Build a bot from `TGDISPATCH_*` variables / `.env`, plus overrides."""

        return cls(config=_load_config(**overrides))

    @staticmethod
    def _make_api(config: BotConfig) -> TelegramBotApi:
        return TelegramBotApi(
            config.token,
            api_base=config.api_base,
            timeout_seconds=config.request_timeout_seconds,
        )

    @property
    def token(self) -> str:
        return self.config.token

    @property
    def api(self) -> BotApi:
        return self.dispatcher.api

    def change_token(self, token: str) -> None:
        """Talk to Telegram as a different bot from now on.

        Registered handlers and shorthands are kept.
        """

        self.config = self.config.model_copy(update={"token": require_token(token)})
        self.dispatcher.api = self._make_api(self.config)

    # ---------- API errors ----------

    def register_api_error_handler(self, handler: ApiErrorHandler) -> None:
        """Replace the handler called with every `ok=False` API response."""

        if not callable(handler):
            raise ConfigurationError(
                f"API error handler must be callable; got {handler!r}"
            )
        self._api_error_handler = handler

    async def report_api_error(self, response: ApiResponse) -> None:
        try:
            result = self._api_error_handler(response)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("API error handler failed")

    # ---------- registration ----------

    def add_shorthand(self, short_hand: ShortHandArg) -> None:
        self.registry.add(short_hand)

    def check_shorthand_conflicts(self, name: str) -> bool:
        """True when `name` is already taken by a registered shorthand."""

        return self.registry.has_conflict(name)

    def add_handler(self, handler: Handler) -> int:
        return self.dispatcher.add_handler(handler)

    def on_command(
        self, command: str, callback: CommandCallback | None = None
    ) -> int | Callable[[CommandCallback], CommandCallback]:
        return self.dispatcher.on_command(command, callback)

    def on_all_commands(
        self, callback: AllCommandsCallback | None = None
    ) -> int | Callable[[AllCommandsCallback], AllCommandsCallback]:
        return self.dispatcher.on_all_commands(callback)

    def on_message(
        self, callback: MessageCallback | None = None
    ) -> int | Callable[[MessageCallback], MessageCallback]:
        return self.dispatcher.on_message(callback)

    async def dispatch(
        self, updates: Iterable[Update], *, task_group: TaskGroup | None = None
    ) -> list[HandlerFailure]:
        return await self.dispatcher.dispatch(updates, task_group=task_group)

    async def set_commands(
        self, bot_commands: Sequence[Mapping[str, str]] = (), *, merge: bool = True
    ) -> ApiResponse:
        return await set_commands(self.api, bot_commands, merge=merge)


class PollingBot(Bot):
    """Bot receiving updates by polling `getUpdates`."""

    def __init__(
        self,
        token: str | None = None,
        *,
        config: BotConfig | None = None,
        api: BotApi | None = None,
        backoff: Backoff = constant_backoff,
    ) -> None:
        super().__init__(token, config=config, api=api)
        self.polling = PollingSource(
            self.dispatcher,
            on_api_error=self.report_api_error,
            limit=self.config.polling_limit,
            long_poll_timeout_seconds=self.config.long_poll_timeout_seconds,
            backoff=backoff,
        )

    @property
    def cursor(self) -> int:
        return self.polling.cursor

    async def start_polling(self, interval_ms: int | None = None) -> None:
        """Poll until :meth:`stop_polling`; defaults to the configured interval."""

        if interval_ms is None:
            interval_ms = self.config.polling_interval_ms
        await self.polling.start(interval_ms)

    def stop_polling(self) -> None:
        self.polling.stop()

    async def change_polling_interval(self, new_interval_ms: int) -> None:
        await self.polling.change_interval(new_interval_ms)


class WebhookBot(Bot):
    """Bot receiving updates through its built-in webhook server."""

    def __init__(
        self,
        token: str | None = None,
        *,
        config: BotConfig | None = None,
        api: BotApi | None = None,
    ) -> None:
        super().__init__(token, config=config, api=api)
        self.webhook = WebhookSource(
            self.dispatcher,
            on_api_error=self.report_api_error,
            path=self.config.effective_webhook_path,
        )

    @property
    def app(self) -> FastAPI:
        """The ASGI app, for mounting behind a server of your own."""

        return self.webhook.app

    def change_token(self, token: str) -> None:
        default_path = self.webhook.path == self.config.effective_webhook_path
        super().change_token(token)
        if default_path:
            self.webhook.path = self.config.effective_webhook_path

    async def serve(self, port: int | None = None, host: str | None = None) -> None:
        """Run the webhook server until :meth:`stop_server` is called."""

        await self.webhook.serve(
            host=host if host is not None else self.config.webhook_host,
            port=port if port is not None else self.config.webhook_port,
        )

    def stop_server(self) -> bool:
        return self.webhook.stop()

    async def set_webhook(self, url: str, **webhook_config: Any) -> ApiResponse:
        """Register `url` with Telegram via `setWebhook`.

        A URL without a path gets `/<token>`. The server then listens on the
        URL's path. Extra keyword arguments (`secret_token`,
        `max_connections`, ...) are passed to `setWebhook` as is.

        Raises:
            ConfigurationError: If `url` is not an https URL.
            TelegramBotApiError: If Telegram rejects the registration.
        """

        parts = urlsplit(url)
        if parts.scheme != "https":
            raise ConfigurationError("Only HTTPS URLs allowed for webhooks")

        path = parts.path
        if path in ("", "/"):
            path = "/" + self.token
            url = urlunsplit(parts._replace(path=path))

        response = await self.api.call("setWebhook", {**webhook_config, "url": url})
        response.raise_for_ok("setWebhook")
        self.webhook.path = path
        logger.info("Webhook registered with Telegram")
        return response

    async def delete_webhook(self, **options: Any) -> ApiResponse:
        """Deregister the webhook; safe to call when none is set."""

        return await self.api.call("deleteWebhook", options or None)

    async def set_webhook_and_serve(
        self,
        url: str,
        *,
        port: int | None = None,
        host: str | None = None,
        **webhook_config: Any,
    ) -> None:
        """Start the server, then register `url`; serves until stopped.

        If the registration fails the server is shut down and the error is
        raised.
        """

        error: TgDispatchError | None = None
        async with anyio.create_task_group() as tg:
            tg.start_soon(self.serve, port, host)
            await self.webhook.wait_started()
            try:
                await self.set_webhook(url, **webhook_config)
            except TgDispatchError as e:
                error = e
                self.stop_server()
        if error is not None:
            raise error

    async def stop_server_and_delete_webhook(self, **options: Any) -> ApiResponse:
        """Deregister first so Telegram stops sending, then stop the server."""

        response = await self.delete_webhook(**options)
        if not response.ok:
            await self.report_api_error(response)
        self.stop_server()
        return response
