"""Command parsing from `bot_command` message entities.

Telegram marks every `/command` token in a message with a `bot_command`
entity whose span includes the leading slash. Offsets and lengths count UTF-16
code units, so text is cut through :func:`utf16_slice` rather than with plain
`str` indexing (which counts code points and drifts after any emoji).

Known quirk (kept on purpose, covered by tests): the arguments of a matched
command are *everything* after its entity, including any later commands.
`"/start /start val1"` parses as `[["/start", "val1"], ["val1"]]`.

All functions here are pure and never raise for malformed input; absence is
signalled with `None` (or an empty list for :func:`list_commands`).
"""

from __future__ import annotations

from collections.abc import Iterator

from .entities import Message, MessageEntity

BOT_COMMAND = "bot_command"


def utf16_slice(text: str, start: int, end: int | None = None) -> str:
    """Slice `text` using UTF-16 code unit indices."""

    encoded = text.encode("utf-16-le", errors="surrogatepass")
    stop = None if end is None else max(end, 0) * 2
    return encoded[max(start, 0) * 2 : stop].decode(
        "utf-16-le", errors="surrogatepass"
    )


def _command_entities(message: Message | None) -> Iterator[MessageEntity]:
    if message is None or not message.entities:
        return
    for entity in message.entities:
        if entity.type == BOT_COMMAND:
            yield entity


def _command_name(text: str, entity: MessageEntity) -> str:
    # +1 drops the leading "/"
    return utf16_slice(text, entity.offset + 1, entity.offset + entity.length)


def parse_command(
    message: Message | None, command: str
) -> list[list[str] | None] | None:
    """Return the arguments of every occurrence of `/command` in `message`.

    Each matching `bot_command` entity (case-sensitive, slash excluded)
    contributes one entry, in entity order: `None` when nothing follows the
    command, otherwise the trimmed remainder of the text split on single
    spaces. Returns `None` when the message is absent, has no entities, or
    never mentions `command`.
    """

    if message is None or not message.entities:
        return None

    text = message.text or ""
    occurrences: list[list[str] | None] = []
    for entity in _command_entities(message):
        if _command_name(text, entity) != command:
            continue
        # TODO: stop at the next bot_command entity once callers no longer
        # rely on the whole-tail argument behaviour.
        args = utf16_slice(text, entity.offset + entity.length + 1).strip()
        occurrences.append(args.split(" ") if args else None)

    return occurrences or None


def list_commands(message: Message | None) -> list[str]:
    """Names (without the slash) of all commands in `message`, in order."""

    if message is None:
        return []
    text = message.text or ""
    return [_command_name(text, entity) for entity in _command_entities(message)]


def has_no_commands(message: Message | None) -> bool:
    """True when `message` carries no `bot_command` entity at all."""

    return next(_command_entities(message), None) is None
