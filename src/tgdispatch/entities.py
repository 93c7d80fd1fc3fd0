"""Pydantic models for the Telegram payloads tgdispatch reads.

Only the fields the dispatch engine and the built-in shorthands touch are
declared. Every model allows extra fields so the rest of a Telegram payload
(`edited_message`, `callback_query`, `reply_to_message`, ...) stays reachable
as attributes on the parsed record.

Invariants:
- Updates and messages are immutable once parsed (`frozen=True`).
- `MessageEntity.offset` / `length` count UTF-16 code units, exactly as Telegram
  sends them. Use :func:`tgdispatch.commands.utf16_slice` to cut text with them.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .errors import TelegramBotApiError

_RECORD_CONFIG = ConfigDict(frozen=True, extra="allow", populate_by_name=True)


class MessageEntity(BaseModel):
    model_config = _RECORD_CONFIG

    type: str
    offset: int
    length: int


class Chat(BaseModel):
    model_config = _RECORD_CONFIG

    id: int
    type: str | None = None


class User(BaseModel):
    model_config = _RECORD_CONFIG

    id: int
    is_bot: bool = False
    first_name: str | None = None
    username: str | None = None


class Message(BaseModel):
    """A Telegram message; `from` is exposed as `from_user`."""

    model_config = _RECORD_CONFIG

    message_id: int | None = None
    chat: Chat | None = None
    from_user: User | None = Field(default=None, alias="from")
    text: str | None = None
    entities: list[MessageEntity] | None = None
    photo: list[dict[str, Any]] | None = None
    video: dict[str, Any] | None = None
    sticker: dict[str, Any] | None = None

    @property
    def chat_id(self) -> int | None:
        return self.chat.id if self.chat is not None else None


class Update(BaseModel):
    """One inbound event. `update_id` increases monotonically per bot."""

    model_config = _RECORD_CONFIG

    update_id: int
    message: Message | None = None


class ApiResponse(BaseModel):
    """Envelope returned by every Bot API method.

    `ok=False` responses are data, not exceptions: callers route them to the
    bot's API-error handler. Setup-time helpers that must fail loudly call
    :meth:`raise_for_ok`.
    """

    model_config = ConfigDict(extra="allow")

    ok: bool
    result: Any = None
    description: str | None = None
    error_code: int | None = None

    def raise_for_ok(self, method: str) -> Any:
        if not self.ok:
            raise TelegramBotApiError(
                f"Telegram {method} failed"
                + (f": {self.description}" if self.description else "")
            )
        return self.result
