"""Shorthand registry and the built-in shorthands.

A shorthand is a factory called once per update with `(update, api)`. What it
returns ends up on that update's :class:`~tgdispatch.context.Context`:

- a `Mapping` is a *bundle*: every key/value pair is merged into the context;
- anything else is stored under the shorthand's registered name.

Registry invariants:
- Keys are shorthand names (the factory's `__name__`, or the explicit
  `ShortHandConfig.name`), kept in registration order.
- Re-registering a taken name logs a warning, replaces the earlier factory and
  moves the name to the end, so the later registration wins when composing.
- Malformed registrations raise `InvalidShortHandConfiguration` immediately;
  nothing is validated lazily at dispatch time.
- Names in `RESERVED_NAMES` would be shadowed by `Context` attributes and are
  rejected.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from logging import getLogger
from typing import Any, TypeAlias

from .api import BotApi, send_message_payload
from .commands import list_commands
from .entities import ApiResponse, Update
from .errors import InvalidShortHandConfiguration

logger = getLogger(__name__)

ShortHandFactory: TypeAlias = Callable[[Update, BotApi], Any]

# Attributes and methods of `Context`.
RESERVED_NAMES = frozenset({"get", "keys", "items", "values", "update", "api"})


@dataclass(frozen=True, slots=True)
class ShortHandConfig:
    """Register `short_hand` under `name`, e.g. to dodge a name collision."""

    name: str
    short_hand: ShortHandFactory


ShortHandArg: TypeAlias = (
    ShortHandFactory
    | ShortHandConfig
    | Mapping[str, Any]
    | Sequence["ShortHandFactory | ShortHandConfig | Mapping[str, Any]"]
)


def _normalize(short_hand: Any) -> tuple[str, ShortHandFactory]:
    if isinstance(short_hand, ShortHandConfig):
        name, factory = short_hand.name, short_hand.short_hand
    elif isinstance(short_hand, Mapping):
        name, factory = short_hand.get("name"), short_hand.get("short_hand")
    elif callable(short_hand):
        name = getattr(short_hand, "__name__", type(short_hand).__name__)
        factory = short_hand
    else:
        raise InvalidShortHandConfiguration(
            f"Invalid short hand configuration object used: {short_hand!r}"
        )

    if not isinstance(name, str) or not name or not callable(factory):
        raise InvalidShortHandConfiguration(
            "Short hand configuration needs a non-empty `name` string and a "
            f"callable `short_hand`; got {short_hand!r}"
        )
    if name in RESERVED_NAMES:
        raise InvalidShortHandConfiguration(
            f"Short hand name {name!r} is reserved by the context; register it "
            "with `ShortHandConfig` under another name"
        )
    return name, factory


class ShortHandRegistry:
    """Insertion-ordered `name -> factory` mapping with collision warnings."""

    def __init__(self) -> None:
        self._factories: dict[str, ShortHandFactory] = {}
        self._warned_keys: set[str] = set()

    def add(self, short_hand: ShortHandArg) -> None:
        """Register one shorthand, or each element of a list/tuple of them."""

        if isinstance(short_hand, (list, tuple)):
            # Validate everything first so a bad element registers nothing.
            normalized = [_normalize(item) for item in short_hand]
        else:
            normalized = [_normalize(short_hand)]

        for name, factory in normalized:
            if self.has_conflict(name):
                logger.warning(
                    "Short hand name %r is taken. Rename it, or it overrides the "
                    "previously added short hand.",
                    name,
                )
                del self._factories[name]
            self._factories[name] = factory

    def warn_key_overridden(self, key: str, *, earlier: str, later: str) -> None:
        """Warn, once per key, that `later` replaced the value `earlier` produced."""

        if key in self._warned_keys:
            return
        self._warned_keys.add(key)
        logger.warning(
            "Short hand key %r is taken: %r overrides the value from %r. Rename "
            "one of them.",
            key,
            later,
            earlier,
        )

    def has_conflict(self, name: str) -> bool:
        return name in self._factories

    def names(self) -> list[str]:
        return list(self._factories)

    def items(self) -> Iterable[tuple[str, ShortHandFactory]]:
        return list(self._factories.items())

    def __len__(self) -> int:
        return len(self._factories)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._factories))


@dataclass(frozen=True, slots=True)
class MessageView:
    """The message parts handlers check most often."""

    text: str | None
    photo: list[dict[str, Any]] | None
    video: dict[str, Any] | None
    sticker: dict[str, Any] | None


def reply_message(update: Update, api: BotApi) -> Callable[..., Any]:
    """`await ctx.reply_message(text, **extra)` sends to the update's chat."""

    chat_id = update.message.chat_id if update.message is not None else None

    async def _reply(text: str, **extra: Any) -> ApiResponse:
        return await api.call(
            "sendMessage", send_message_payload(chat_id=chat_id, text=text, **extra)
        )

    return _reply


def commands(update: Update, api: BotApi) -> list[str]:
    return list_commands(update.message)


def message(update: Update, api: BotApi) -> MessageView | None:
    msg = update.message
    if msg is None:
        return None
    return MessageView(
        text=msg.text,
        photo=msg.photo,
        video=msg.video,
        sticker=msg.sticker,
    )


def default_shorthands(update: Update, api: BotApi) -> dict[str, Any]:
    """Bundle of `reply_message`, `commands` and `message`."""

    return {
        "reply_message": reply_message(update, api),
        "commands": commands(update, api),
        "message": message(update, api),
    }


DEFAULT_SHORTHANDS: list[ShortHandFactory] = [reply_message, commands, message]


async def set_commands(
    api: BotApi,
    bot_commands: Sequence[Mapping[str, str]] = (),
    *,
    merge: bool = True,
) -> ApiResponse:
    """Set the bot's command menu via `setMyCommands`.

    An empty `bot_commands` clears the menu. With `merge=True` the new commands
    are appended to the ones already registered (duplicates are kept, the
    latest description wins on Telegram's side).

    Raises:
        TelegramBotApiError: If the existing commands cannot be read.
    """

    merged: list[dict[str, str]] = [dict(c) for c in bot_commands]
    if merged and merge:
        existing = await api.call("getMyCommands")
        current = existing.raise_for_ok("getMyCommands") or []
        merged = [dict(c) for c in current] + merged

    return await api.call("setMyCommands", {"commands": merged})
