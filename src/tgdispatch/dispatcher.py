"""Handler registry and update dispatch.

For each update, in order, the dispatcher composes a fresh
:class:`~tgdispatch.context.Context` and calls every registered handler, in
registration order, as `handler(context, update)`. Handlers may be plain
functions or coroutine functions.

Dispatch policies:
- non-blocking (default): handlers are started on the caller's anyio task
  group and not awaited, so a slow handler never holds up the next handler or
  the next update. Completion order may interleave.
- blocking (`blocking=True`, or when no task group is given): each handler is
  awaited to completion before the next one starts, so handlers of update N+1
  never start before every handler of update N has settled.

Fault isolation: a handler that raises is logged with its traceback and
recorded as a :class:`HandlerFailure`; sibling handlers and later updates are
still dispatched. Nothing a handler raises propagates to the caller.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from logging import getLogger
from typing import Any, TypeAlias

from anyio.abc import TaskGroup

from .api import BotApi
from .commands import has_no_commands, list_commands, parse_command
from .context import Context, compose_context
from .entities import Update
from .errors import ConfigurationError
from .shorthands import ShortHandRegistry

logger = getLogger(__name__)

Handler: TypeAlias = Callable[[Context, Update], Any]
ParsedCommand: TypeAlias = list[list[str] | None]
CommandCallback: TypeAlias = Callable[[Context, ParsedCommand, Update], Any]
AllCommandsCallback: TypeAlias = Callable[[Context, list[str], Update], Any]
MessageCallback: TypeAlias = Callable[[Context, Update], Any]

_COMPOSE = "<compose_context>"


@dataclass(frozen=True, slots=True)
class HandlerFailure:
    """One handler (or the context composition) failing on one update."""

    update_id: int
    handler: str
    error: Exception


def handler_name(handler: Callable[..., Any]) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class Dispatcher:
    """Ordered, append-only handler list bound to one bot instance."""

    def __init__(
        self,
        api: BotApi,
        registry: ShortHandRegistry | None = None,
        *,
        blocking: bool = False,
    ) -> None:
        self.api = api
        self.registry = registry if registry is not None else ShortHandRegistry()
        self.blocking = blocking
        self.handlers: list[Handler] = []

    # ---------- registration ----------

    def add_handler(self, handler: Handler) -> int:
        """Append `handler`; returns the number of registered handlers."""

        if not callable(handler):
            raise ConfigurationError(f"Handler must be callable; got {handler!r}")
        self.handlers.append(handler)
        return len(self.handlers)

    def on_command(
        self, command: str, callback: CommandCallback | None = None
    ) -> int | Callable[[CommandCallback], CommandCallback]:
        """Call `callback(context, parsed, update)` when `/command` is sent.

        `parsed` is the :func:`~tgdispatch.commands.parse_command` result: one
        argument list (or `None`) per occurrence of the command. Without a
        callback this returns a decorator.
        """

        command = command.lstrip("/")
        if not command:
            raise ConfigurationError("Command name must not be empty")

        def register(cb: CommandCallback) -> int:
            async def command_handler(context: Context, update: Update) -> Any:
                parsed = parse_command(update.message, command)
                if parsed:
                    return await _call(cb, context, parsed, update)
                return None

            command_handler.__qualname__ = (
                f"on_command({command!r}, {handler_name(cb)})"
            )
            return self.add_handler(command_handler)

        return self._register_or_decorate(register, callback)

    def on_all_commands(
        self, callback: AllCommandsCallback | None = None
    ) -> int | Callable[[AllCommandsCallback], AllCommandsCallback]:
        """Call `callback(context, command_names, update)` for any command."""

        def register(cb: AllCommandsCallback) -> int:
            async def all_commands_handler(context: Context, update: Update) -> Any:
                names = list_commands(update.message)
                if names:
                    return await _call(cb, context, names, update)
                return None

            all_commands_handler.__qualname__ = (
                f"on_all_commands({handler_name(cb)})"
            )
            return self.add_handler(all_commands_handler)

        return self._register_or_decorate(register, callback)

    def on_message(
        self, callback: MessageCallback | None = None
    ) -> int | Callable[[MessageCallback], MessageCallback]:
        """Call `callback(context, update)` for messages without any command."""

        def register(cb: MessageCallback) -> int:
            async def message_handler(context: Context, update: Update) -> Any:
                if update.message is not None and has_no_commands(update.message):
                    return await _call(cb, context, update)
                return None

            message_handler.__qualname__ = f"on_message({handler_name(cb)})"
            return self.add_handler(message_handler)

        return self._register_or_decorate(register, callback)

    @staticmethod
    def _register_or_decorate(
        register: Callable[[Any], int], callback: Any | None
    ) -> Any:
        if callback is not None:
            return register(callback)

        def decorator(cb: Any) -> Any:
            register(cb)
            return cb

        return decorator

    # ---------- dispatch ----------

    async def dispatch(
        self,
        updates: Iterable[Update],
        *,
        task_group: TaskGroup | None = None,
    ) -> list[HandlerFailure]:
        """Dispatch `updates` in order to every handler.

        Returns the failures observed while dispatching. In non-blocking mode
        only context-composition failures can be reported here; handler
        failures surface in the log once the handler task finishes.
        """

        blocking = self.blocking or task_group is None
        failures: list[HandlerFailure] = []

        for update in updates:
            try:
                context = compose_context(update, self.api, self.registry)
            except Exception as e:
                logger.exception(
                    "Composing the context for update %s failed; skipping handlers",
                    update.update_id,
                )
                failures.append(HandlerFailure(update.update_id, _COMPOSE, e))
                continue

            for handler in list(self.handlers):
                if blocking:
                    failure = await self._run_handler(handler, context, update)
                    if failure is not None:
                        failures.append(failure)
                else:
                    assert task_group is not None
                    task_group.start_soon(self._run_handler, handler, context, update)

        return failures

    async def _run_handler(
        self, handler: Handler, context: Context, update: Update
    ) -> HandlerFailure | None:
        try:
            await _call(handler, context, update)
        except Exception as e:
            name = handler_name(handler)
            logger.exception("Handler %s failed on update %s", name, update.update_id)
            return HandlerFailure(update.update_id, name, e)
        return None

