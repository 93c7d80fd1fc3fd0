"""Telegram Bot API client.

Every remote operation goes through :meth:`TelegramBotApi.call`, which POSTs a
JSON body to `<api_base>/bot<token>/<method>` and returns the parsed
:class:`~tgdispatch.entities.ApiResponse` envelope.

Design notes / boundaries:
- Transport failures (network errors, HTTP errors, invalid JSON) are folded
  into `ApiResponse(ok=False, description=...)`; `call()` never raises for
  them. Callers decide whether a failed response is fatal.
- stdlib `urllib` is blocking, so requests run in a worker thread via
  `anyio.to_thread` and the dispatch loop stays cooperative.
- The method URL embeds the bot token and must never be logged.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from dataclasses import dataclass
from logging import getLogger
from typing import Any, Final, Protocol

import anyio.to_thread as to_thread

from .entities import ApiResponse

logger = getLogger(__name__)

DEFAULT_API_BASE: Final[str] = "https://api.telegram.org"


def _parse_envelope(raw: bytes, *, method: str) -> ApiResponse:
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return ApiResponse(
            ok=False, description=f"Telegram {method} failed: invalid JSON"
        )

    if not isinstance(payload, dict) or not isinstance(payload.get("ok"), bool):
        return ApiResponse(
            ok=False, description=f"Telegram {method} failed: malformed response"
        )
    return ApiResponse.model_validate(payload)


@dataclass(slots=True)
class TelegramBotApi:
    """Minimal JSON-RPC style client for the Telegram Bot API."""

    token: str
    api_base: str = DEFAULT_API_BASE
    timeout_seconds: float = 35.0

    def _method_url(self, method: str) -> str:
        # Never log/print this URL; it embeds the bot token.
        return f"{self.api_base}/bot{self.token}/{method}"

    def _call_sync(
        self,
        method: str,
        payload: dict[str, Any],
        *,
        timeout_seconds: float | None = None,
    ) -> ApiResponse:
        data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        request = urllib.request.Request(
            self._method_url(method),
            data=data,
            method="POST",
        )
        request.add_header("Content-Type", "application/json")

        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        try:
            with urllib.request.urlopen(request, timeout=timeout) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            # Telegram answers 4xx/5xx with a regular `{"ok": false, ...}` body.
            try:
                raw = e.read()
            except OSError:  # pragma: no cover (network dependent)
                raw = b""
            response = _parse_envelope(raw, method=method)
            if response.ok or response.error_code is None:
                return ApiResponse(
                    ok=False,
                    error_code=e.code,
                    description=f"Telegram {method} failed: HTTP {e.code}",
                )
            return response
        except (
            urllib.error.URLError,
            OSError,
        ) as e:  # pragma: no cover (network dependent)
            logger.debug("Telegram %s network error: %s", method, type(e).__name__)
            return ApiResponse(
                ok=False, description=f"Telegram {method} failed: network error"
            )

        return _parse_envelope(raw, method=method)

    async def call(
        self,
        method: str,
        payload: dict[str, Any] | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> ApiResponse:
        """Invoke a Bot API method (async wrapper).

        A `timeout` field in the payload (Telegram long polling) widens the
        client-side timeout so it always exceeds the server-side one.
        """

        body = dict(payload or {})
        if timeout_seconds is None and isinstance(body.get("timeout"), int):
            timeout_seconds = max(self.timeout_seconds, body["timeout"] + 15)
        return await to_thread.run_sync(
            lambda: self._call_sync(method, body, timeout_seconds=timeout_seconds)
        )


class BotApi(Protocol):
    """The single call shape the dispatch engine needs from an API client."""

    async def call(
        self, method: str, payload: dict[str, Any] | None = None
    ) -> ApiResponse: ...


def get_updates_payload(
    *, offset: int | None, limit: int | None = None, timeout_seconds: int = 0
) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if offset is not None:
        payload["offset"] = offset
    if limit is not None:
        payload["limit"] = limit
    if timeout_seconds > 0:
        payload["timeout"] = timeout_seconds
    return payload


def send_message_payload(
    *, chat_id: int | None, text: str, **extra: Any
) -> dict[str, Any]:
    payload: dict[str, Any] = {"text": text, **extra}
    if chat_id is not None:
        payload["chat_id"] = chat_id
    return payload
