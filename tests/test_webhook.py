import anyio
import pytest
from fakes import FakeApi
from fastapi.testclient import TestClient

from tgdispatch.bot import WebhookBot
from tgdispatch.config import BotConfig
from tgdispatch.entities import ApiResponse
from tgdispatch.errors import ConfigurationError, TelegramBotApiError

TOKEN = "123:abc"
UPDATE = {
    "update_id": 11,
    "message": {"message_id": 1, "chat": {"id": 5}, "text": "hi"},
}


def _make_bot(fake_api: FakeApi, **config):
    bot = WebhookBot(config=BotConfig(token=TOKEN, **config), api=fake_api)
    errors: list[ApiResponse] = []
    bot.register_api_error_handler(errors.append)
    return bot, errors


def test_post_on_the_token_path_dispatches_in_the_background(fake_api) -> None:
    bot, errors = _make_bot(fake_api)
    seen: list[int] = []
    bot.add_handler(lambda ctx, update: seen.append(update.update_id))

    with TestClient(bot.app) as client:
        response = client.post(f"/{TOKEN}", json=UPDATE)

    assert response.status_code == 200
    assert response.content == b""
    assert seen == [11]
    assert errors == []


@pytest.mark.parametrize(
    ("method", "path"),
    [
        ("POST", "/"),
        ("POST", "/wrong"),
        ("POST", f"/{TOKEN}/extra"),
        ("GET", f"/{TOKEN}"),
        ("PUT", f"/{TOKEN}"),
    ],
)
def test_anything_but_post_on_the_path_is_404(fake_api, method, path) -> None:
    bot, errors = _make_bot(fake_api)
    seen: list[int] = []
    bot.add_handler(lambda ctx, update: seen.append(update.update_id))

    with TestClient(bot.app) as client:
        response = client.request(method, path, json=UPDATE)

    assert response.status_code == 404
    assert seen == []
    assert errors == []


@pytest.mark.parametrize(
    "body",
    [b"{not json", b"[]", b'{"message": {"text": "no update id"}}'],
)
def test_malformed_body_is_400_and_reported(fake_api, body) -> None:
    bot, errors = _make_bot(fake_api)

    with TestClient(bot.app) as client:
        response = client.post(
            f"/{TOKEN}", content=body, headers={"content-type": "application/json"}
        )
        ok = client.post(f"/{TOKEN}", json=UPDATE)

    assert response.status_code == 400
    assert ok.status_code == 200
    assert len(errors) == 1
    assert errors[0].ok is False
    assert errors[0].error_code == 400


def test_blocking_handler_failure_is_500_and_reported(fake_api) -> None:
    bot, errors = _make_bot(fake_api, blocking_handlers=True)
    order: list[str] = []

    def broken(ctx, update):
        order.append("broken")
        raise RuntimeError("boom")

    bot.add_handler(broken)
    bot.add_handler(lambda ctx, update: order.append("after"))

    with TestClient(bot.app) as client:
        response = client.post(f"/{TOKEN}", json=UPDATE)

    assert response.status_code == 500
    assert order == ["broken", "after"]
    assert len(errors) == 1
    assert "broken" in (errors[0].description or "")


def test_configured_path_replaces_the_token_path(fake_api) -> None:
    bot, _ = _make_bot(fake_api, webhook_path="hooks/tg")

    with TestClient(bot.app) as client:
        assert client.post("/hooks/tg", json=UPDATE).status_code == 200
        assert client.post(f"/{TOKEN}", json=UPDATE).status_code == 404


@pytest.mark.anyio
async def test_set_webhook_rejects_plain_http_before_any_call(fake_api) -> None:
    bot, _ = _make_bot(fake_api)

    with pytest.raises(ConfigurationError, match="HTTPS"):
        await bot.set_webhook("http://example.com/hook")
    assert fake_api.calls == []


@pytest.mark.anyio
@pytest.mark.parametrize("url", ["https://example.com", "https://example.com/"])
async def test_set_webhook_defaults_path_to_token(fake_api, url) -> None:
    bot, _ = _make_bot(fake_api, webhook_path="/old")

    await bot.set_webhook(url, secret_token="s3cret")

    assert fake_api.calls == [
        (
            "setWebhook",
            {"url": f"https://example.com/{TOKEN}", "secret_token": "s3cret"},
        )
    ]
    assert bot.webhook.path == f"/{TOKEN}"


@pytest.mark.anyio
async def test_set_webhook_follows_an_explicit_path(fake_api) -> None:
    bot, _ = _make_bot(fake_api)

    await bot.set_webhook("https://example.com/bot/hook?x=1")

    assert fake_api.calls[0][1] == {"url": "https://example.com/bot/hook?x=1"}
    assert bot.webhook.path == "/bot/hook"


@pytest.mark.anyio
async def test_set_webhook_raises_on_rejection_and_keeps_the_path(fake_api) -> None:
    fake_api.script("setWebhook", ApiResponse(ok=False, description="bad webhook"))
    bot, _ = _make_bot(fake_api)

    with pytest.raises(TelegramBotApiError, match="bad webhook"):
        await bot.set_webhook("https://example.com/new")
    assert bot.webhook.path == f"/{TOKEN}"


@pytest.mark.anyio
async def test_delete_webhook_is_idempotent(fake_api) -> None:
    bot, _ = _make_bot(fake_api)

    first = await bot.delete_webhook()
    second = await bot.delete_webhook(drop_pending_updates=True)

    assert first.ok and second.ok
    assert fake_api.calls == [
        ("deleteWebhook", None),
        ("deleteWebhook", {"drop_pending_updates": True}),
    ]


@pytest.mark.anyio
async def test_stop_server_and_delete_webhook_deregisters_first(fake_api) -> None:
    bot, errors = _make_bot(fake_api)
    fake_api.script("deleteWebhook", ApiResponse(ok=False, description="down"))

    response = await bot.stop_server_and_delete_webhook()

    assert response.ok is False
    assert fake_api.methods() == ["deleteWebhook"]
    assert [e.description for e in errors] == ["down"]
    assert bot.stop_server() is False


@pytest.mark.anyio
async def test_set_webhook_and_serve_stops_the_server_on_rejection(
    fake_api, monkeypatch
) -> None:
    bot, _ = _make_bot(fake_api)
    fake_api.script("setWebhook", ApiResponse(ok=False, description="nope"))
    events: list[str] = []
    stopped = anyio.Event()

    async def fake_serve(*, host: str, port: int) -> None:
        events.append(f"serve {host}:{port}")
        while not stopped.is_set():
            await anyio.sleep(0.001)
        events.append("closed")

    async def fake_wait_started(**kwargs) -> None:
        events.append("started")

    def fake_stop() -> bool:
        events.append("stop")
        stopped.set()
        return True

    monkeypatch.setattr(bot.webhook, "serve", fake_serve)
    monkeypatch.setattr(bot.webhook, "wait_started", fake_wait_started)
    monkeypatch.setattr(bot.webhook, "stop", fake_stop)

    with anyio.fail_after(2):
        with pytest.raises(TelegramBotApiError, match="nope"):
            await bot.set_webhook_and_serve("https://example.com", port=8443)

    assert "serve 0.0.0.0:8443" in events
    assert events.index("started") < events.index("stop")
    assert events[-1] == "closed"
    assert fake_api.methods() == ["setWebhook"]
