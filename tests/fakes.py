from __future__ import annotations

from typing import Any

from tgdispatch.entities import ApiResponse, Update


class FakeApi:
    """Records every call; answers from per-method scripted responses."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any] | None]] = []
        self.responses: dict[str, list[ApiResponse]] = {}

    def script(self, method: str, *responses: ApiResponse) -> None:
        self.responses.setdefault(method, []).extend(responses)

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]

    async def call(
        self, method: str, payload: dict[str, Any] | None = None
    ) -> ApiResponse:
        self.calls.append((method, payload))
        queued = self.responses.get(method)
        if queued:
            return queued.pop(0)
        if method == "getUpdates":
            return ApiResponse(ok=True, result=[])
        return ApiResponse(ok=True, result=True)


def make_update(
    update_id: int,
    text: str | None = None,
    *,
    entities: list[dict[str, Any]] | None = None,
    chat_id: int = 42,
) -> Update:
    raw: dict[str, Any] = {"update_id": update_id}
    if text is not None:
        message: dict[str, Any] = {
            "message_id": update_id * 10,
            "chat": {"id": chat_id, "type": "private"},
            "from": {"id": 7, "is_bot": False, "first_name": "Ada"},
            "text": text,
        }
        if entities is not None:
            message["entities"] = entities
        raw["message"] = message
    return Update.model_validate(raw)


def command_entity(offset: int, length: int) -> dict[str, Any]:
    return {"type": "bot_command", "offset": offset, "length": length}
