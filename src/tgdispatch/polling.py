"""Polling transport: a `getUpdates` loop feeding the dispatcher.

State machine: `STOPPED -> POLLING` on :meth:`PollingSource.start`, back to
`STOPPED` on :meth:`PollingSource.stop` (cooperative) or when the loop exits.

Design notes / invariants:
- The cursor is owned by the polling source. It starts at 0, moves only after
  a successful non-empty fetch (to the last update id + 1) and never goes
  backwards. It lives in memory only; a restart refetches whatever Telegram
  still holds.
- At most one fetch is in flight: the next `getUpdates` starts only after the
  previous cycle's fetch, dispatch hand-off and pause have finished.
- A failed fetch (`ok=False`) is reported to the API-error handler exactly
  once and retried with the same cursor on the next cycle (at-least-once,
  never skipping). The pause after a failure comes from the `backoff`
  callable, which by default is just the polling interval.
- `stop()` does not cancel an in-flight fetch; it only keeps the next cycle
  from starting. A pending pause is cut short. `start()` returns once the
  handlers it started in the background have settled.
"""

from __future__ import annotations

import enum
from collections.abc import Awaitable, Callable
from logging import getLogger
from typing import Any, TypeAlias

import anyio
import anyio.lowlevel
from anyio.abc import TaskGroup
from pydantic import ValidationError

from .api import get_updates_payload
from .dispatcher import Dispatcher
from .entities import ApiResponse, Update
from .errors import ConfigurationError

logger = getLogger(__name__)

ApiErrorReporter: TypeAlias = Callable[[ApiResponse], Awaitable[Any]]
Backoff: TypeAlias = Callable[[int, int], float]
"""`(consecutive_failures, interval_ms) -> pause_ms` after a failed fetch."""


def constant_backoff(consecutive_failures: int, interval_ms: int) -> float:
    """Retry failed fetches at the regular polling interval."""

    return interval_ms


def exponential_backoff(
    *, base_ms: float = 1000.0, max_ms: float = 30000.0
) -> Backoff:
    """Double the pause from `base_ms` per failure, capped at `max_ms`."""

    def backoff(consecutive_failures: int, interval_ms: int) -> float:
        delay = base_ms * 2 ** max(consecutive_failures - 1, 0)
        return max(float(interval_ms), min(delay, max_ms))

    return backoff


class PollingState(enum.Enum):
    STOPPED = "stopped"
    POLLING = "polling"


def _validate_interval(interval_ms: int) -> int:
    if interval_ms < 0:
        raise ConfigurationError(f"interval_ms must be >= 0; got {interval_ms}")
    return interval_ms


def _last_update_id(raw_updates: list[Any]) -> int | None:
    ids = [
        item["update_id"]
        for item in raw_updates
        if isinstance(item, dict) and isinstance(item.get("update_id"), int)
    ]
    return ids[-1] if ids else None


class PollingSource:
    """Owns the dispatch cursor and the polling loop of one bot instance."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        on_api_error: ApiErrorReporter,
        limit: int | None = None,
        long_poll_timeout_seconds: int = 0,
        backoff: Backoff = constant_backoff,
    ) -> None:
        self.dispatcher = dispatcher
        self.on_api_error = on_api_error
        self.limit = limit
        self.long_poll_timeout_seconds = long_poll_timeout_seconds
        self.backoff = backoff

        self.cursor = 0
        self.state = PollingState.STOPPED
        self.interval_ms = 200
        self.consecutive_failures = 0
        self._wakeup: anyio.Event | None = None
        self._generation = 0
        self._cycle_lock: anyio.Lock | None = None

    @property
    def is_polling(self) -> bool:
        return self.state is PollingState.POLLING

    async def start(self, interval_ms: int = 200) -> None:
        """Poll until :meth:`stop` is called.

        `interval_ms` is the pause between the end of one cycle and the start
        of the next; `0` polls back-to-back with a single cooperative
        checkpoint in between.
        """

        if self.is_polling:
            raise RuntimeError("Polling is already running")
        self.interval_ms = _validate_interval(interval_ms)
        self.state = PollingState.POLLING
        self._generation += 1
        generation = self._generation
        if self._cycle_lock is None:
            self._cycle_lock = anyio.Lock()
        cycle_lock = self._cycle_lock

        try:
            # A registered webhook makes Telegram reject getUpdates.
            cleared = await self.dispatcher.api.call("deleteWebhook")
            if not cleared.ok:
                await self.on_api_error(cleared)

            logger.info("Polling started (interval_ms=%s)", self.interval_ms)
            async with anyio.create_task_group() as tg:
                while self._owns_loop(generation):
                    # An earlier loop may still be finishing its last cycle.
                    async with cycle_lock:
                        await self.poll_once(task_group=tg)
                    if not self._owns_loop(generation):
                        break
                    await self._pause()
        finally:
            # A newer start() may already own the state after a stop/start.
            if self._generation == generation:
                self.state = PollingState.STOPPED
                self._wakeup = None
            logger.info("Polling stopped (cursor=%s)", self.cursor)

    def stop(self) -> None:
        """Stop after the in-flight cycle; a pending pause ends immediately."""

        self.state = PollingState.STOPPED
        self._wake()

    async def change_interval(self, new_interval_ms: int) -> None:
        """Poll at a new interval; registered handlers are left untouched.

        While polling, the running loop adopts the interval after its current
        cycle. While stopped, this starts polling (and runs until stopped).
        """

        new_interval_ms = _validate_interval(new_interval_ms)
        if self.is_polling:
            self.interval_ms = new_interval_ms
            self._wake()
            return
        await self.start(new_interval_ms)

    async def poll_once(self, *, task_group: TaskGroup | None = None) -> list[Update]:
        """Run one fetch cycle and return the updates handed to the dispatcher."""

        payload = get_updates_payload(
            offset=self.cursor,
            limit=self.limit,
            timeout_seconds=self.long_poll_timeout_seconds,
        )

        response = await self._fetch(payload)
        if not response.ok:
            self.consecutive_failures += 1
            await self.on_api_error(response)
            return []
        self.consecutive_failures = 0

        raw_updates = response.result if isinstance(response.result, list) else []
        last_id = _last_update_id(raw_updates)
        if last_id is None:
            return []
        self.cursor = max(self.cursor, last_id + 1)

        updates: list[Update] = []
        for item in raw_updates:
            try:
                updates.append(Update.model_validate(item))
            except ValidationError as e:
                logger.warning(
                    "Dropping malformed update in getUpdates batch: %s error(s)",
                    e.error_count(),
                )

        logger.debug(
            "Fetched %s update(s); next offset %s", len(updates), self.cursor
        )
        await self.dispatcher.dispatch(updates, task_group=task_group)
        return updates

    async def _fetch(self, payload: dict[str, Any]) -> ApiResponse:
        try:
            return await self.dispatcher.api.call("getUpdates", payload)
        except Exception as e:
            # Clients are expected to fold transport errors into ok=False;
            # keep the loop alive for ones that raise instead.
            logger.exception("getUpdates raised instead of returning a response")
            return ApiResponse(
                ok=False,
                description=f"Telegram getUpdates failed: {type(e).__name__}: {e}",
            )

    async def _pause(self) -> None:
        delay_ms = (
            self.backoff(self.consecutive_failures, self.interval_ms)
            if self.consecutive_failures
            else self.interval_ms
        )
        if delay_ms <= 0:
            await anyio.lowlevel.checkpoint()
            return

        self._wakeup = anyio.Event()
        with anyio.move_on_after(delay_ms / 1000):
            await self._wakeup.wait()
        self._wakeup = None

    def _owns_loop(self, generation: int) -> bool:
        return self.is_polling and self._generation == generation

    def _wake(self) -> None:
        if self._wakeup is not None:
            self._wakeup.set()
