"""Telegram Bot API update dispatch.

Updates arrive by polling `getUpdates` (:class:`PollingBot`) or through a
webhook (:class:`WebhookBot`). Each update gets a fresh :class:`Context` built
from the registered shorthands and is passed, with that context, to every
registered handler in registration order.
"""

from __future__ import annotations

from .api import BotApi, TelegramBotApi
from .bot import Bot, PollingBot, WebhookBot, default_api_error_handler
from .commands import has_no_commands, list_commands, parse_command
from .config import BotConfig
from .context import Context, compose_context
from .dispatcher import Dispatcher, HandlerFailure
from .entities import ApiResponse, Chat, Message, MessageEntity, Update, User
from .errors import (
    ConfigurationError,
    InvalidShortHandConfiguration,
    TelegramBotApiError,
    TgDispatchError,
)
from .polling import PollingSource, PollingState, exponential_backoff
from .shorthands import (
    DEFAULT_SHORTHANDS,
    ShortHandConfig,
    ShortHandRegistry,
    default_shorthands,
    set_commands,
)
from .webhook import WebhookSource

__all__ = [
    "DEFAULT_SHORTHANDS",
    "ApiResponse",
    "Bot",
    "BotApi",
    "BotConfig",
    "Chat",
    "ConfigurationError",
    "Context",
    "Dispatcher",
    "HandlerFailure",
    "InvalidShortHandConfiguration",
    "Message",
    "MessageEntity",
    "PollingBot",
    "PollingSource",
    "PollingState",
    "ShortHandConfig",
    "ShortHandRegistry",
    "TelegramBotApi",
    "TelegramBotApiError",
    "TgDispatchError",
    "Update",
    "User",
    "WebhookBot",
    "WebhookSource",
    "compose_context",
    "default_api_error_handler",
    "default_shorthands",
    "exponential_backoff",
    "has_no_commands",
    "list_commands",
    "parse_command",
    "set_commands",
]
