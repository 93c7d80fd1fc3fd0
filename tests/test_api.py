import io
import json
import urllib.error
import urllib.request

import pytest

from tgdispatch.api import (
    TelegramBotApi,
    _parse_envelope,
    get_updates_payload,
    send_message_payload,
)
from tgdispatch.entities import ApiResponse
from tgdispatch.errors import TelegramBotApiError


class _FakeHttpResponse:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None


@pytest.mark.anyio
async def test_call_runs_the_sync_impl_and_widens_long_poll_timeout(
    monkeypatch,
) -> None:
    api = TelegramBotApi(token="test-token", timeout_seconds=10)
    got: list[tuple[str, dict, float | None]] = []

    def fake_call_sync(self, method, payload, *, timeout_seconds=None):
        got.append((method, payload, timeout_seconds))
        return ApiResponse(ok=True, result=[])

    monkeypatch.setattr(TelegramBotApi, "_call_sync", fake_call_sync)

    await api.call("getMe")
    await api.call(
        "getUpdates", get_updates_payload(offset=5, limit=3, timeout_seconds=30)
    )
    await api.call(
        "sendMessage",
        send_message_payload(chat_id=42, text="hello", parse_mode="HTML"),
    )

    assert got == [
        ("getMe", {}, None),
        ("getUpdates", {"offset": 5, "limit": 3, "timeout": 30}, 45),
        ("sendMessage", {"text": "hello", "parse_mode": "HTML", "chat_id": 42}, None),
    ]


def test_call_sync_posts_json_to_the_method_url(monkeypatch) -> None:
    api = TelegramBotApi(token="123:abc", api_base="https://tg.example")
    seen: dict = {}

    def fake_urlopen(request: urllib.request.Request, timeout: float):
        seen["url"] = request.full_url
        seen["body"] = json.loads(request.data)
        seen["content_type"] = request.get_header("Content-type")
        seen["timeout"] = timeout
        return _FakeHttpResponse(b'{"ok": true, "result": {"id": 1}}')

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)

    response = api._call_sync("getMe", {"x": "é"})

    assert response.ok is True
    assert response.result == {"id": 1}
    assert seen == {
        "url": "https://tg.example/bot123:abc/getMe",
        "body": {"x": "é"},
        "content_type": "application/json",
        "timeout": 35.0,
    }


def _http_error(code: int, body: bytes) -> urllib.error.HTTPError:
    return urllib.error.HTTPError(
        "https://tg.example/hidden", code, "error", {}, io.BytesIO(body)
    )


def test_http_error_with_telegram_body_keeps_its_envelope(monkeypatch) -> None:
    body = b'{"ok": false, "error_code": 409, "description": "Conflict"}'

    def fake_urlopen(request, timeout):
        raise _http_error(409, body)

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)

    response = TelegramBotApi(token="t")._call_sync("getUpdates", {})

    assert response.ok is False
    assert response.error_code == 409
    assert response.description == "Conflict"


def test_http_error_without_envelope_falls_back_to_status(monkeypatch) -> None:
    def fake_urlopen(request, timeout):
        raise _http_error(502, b"<html>Bad Gateway</html>")

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)

    response = TelegramBotApi(token="t")._call_sync("getUpdates", {})

    assert response.ok is False
    assert response.error_code == 502
    assert response.description == "Telegram getUpdates failed: HTTP 502"


def test_network_error_is_folded_into_a_failed_response(monkeypatch) -> None:
    def fake_urlopen(request, timeout):
        raise urllib.error.URLError("unreachable")

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)

    response = TelegramBotApi(token="secret")._call_sync("getMe", {})

    assert response.ok is False
    assert response.description == "Telegram getMe failed: network error"
    assert "secret" not in response.description


@pytest.mark.parametrize(
    ("raw", "description"),
    [
        (b"not json", "Telegram getMe failed: invalid JSON"),
        (b"[1, 2]", "Telegram getMe failed: malformed response"),
        (b'{"result": 1}', "Telegram getMe failed: malformed response"),
    ],
)
def test_parse_envelope_rejects_garbage(raw, description) -> None:
    response = _parse_envelope(raw, method="getMe")

    assert response.ok is False
    assert response.description == description


def test_raise_for_ok() -> None:
    assert ApiResponse(ok=True, result=[1]).raise_for_ok("getMe") == [1]
    with pytest.raises(TelegramBotApiError, match="getMe failed: Unauthorized"):
        ApiResponse(ok=False, description="Unauthorized").raise_for_ok("getMe")


def test_get_updates_payload_omits_unset_fields() -> None:
    assert get_updates_payload(offset=None) == {}
    assert get_updates_payload(offset=0, timeout_seconds=0) == {"offset": 0}
    assert get_updates_payload(offset=3, limit=1, timeout_seconds=5) == {
        "offset": 3,
        "limit": 1,
        "timeout": 5,
    }


def test_send_message_payload_omits_unknown_chat() -> None:
    assert send_message_payload(chat_id=None, text="hi") == {"text": "hi"}
    assert send_message_payload(chat_id=7, text="hi", parse_mode="HTML") == {
        "text": "hi",
        "parse_mode": "HTML",
        "chat_id": 7,
    }
