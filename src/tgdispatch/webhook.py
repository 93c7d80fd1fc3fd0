"""Webhook transport: a FastAPI app receiving one update per request.

Telegram POSTs each update as a bare JSON `Update` object (no `ok` envelope)
to the URL registered through `setWebhook`.

Design notes / invariants:
- One catch-all route. Only `POST` on exactly :attr:`WebhookSource.path` is
  processed; anything else gets an empty `404` and its body is never read.
- The default path is `/<token>`, so the path is a secret. Neither the path
  nor request URLs are logged.
- Non-blocking dispatch runs as a Starlette background task, after the `200`
  has been sent. Blocking dispatch answers only once every handler settled.
- Failures never stop the server: malformed bodies get `400`, handler failures
  in blocking mode and unexpected errors get `500`, and each is reported to
  the API-error handler as an `ApiResponse(ok=False)`.
"""

from __future__ import annotations

from logging import getLogger
from typing import Final

import anyio
import uvicorn
from fastapi import BackgroundTasks, FastAPI, Request, Response
from pydantic import ValidationError

from .dispatcher import Dispatcher
from .entities import ApiResponse, Update
from .polling import ApiErrorReporter

logger = getLogger(__name__)

_ALL_METHODS: Final[list[str]] = [
    "GET",
    "HEAD",
    "POST",
    "PUT",
    "PATCH",
    "DELETE",
    "OPTIONS",
]


class WebhookSource:
    """Owns the webhook FastAPI app and, while serving, its uvicorn server."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        on_api_error: ApiErrorReporter,
        path: str,
    ) -> None:
        self.dispatcher = dispatcher
        self.on_api_error = on_api_error
        self.path = path
        self.app = self._build_app()
        self._server: uvicorn.Server | None = None

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.started

    def _build_app(self) -> FastAPI:
        app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

        @app.api_route("/{full_path:path}", methods=_ALL_METHODS)
        async def receive(request: Request, background: BackgroundTasks) -> Response:
            if request.method != "POST" or request.url.path != self.path:
                return Response(status_code=404)
            return await self.handle(await request.body(), background)

        return app

    async def handle(self, body: bytes, background: BackgroundTasks) -> Response:
        """Parse one webhook body and dispatch it; returns the HTTP answer."""

        try:
            update = Update.model_validate_json(body)
        except ValidationError as e:
            logger.warning(
                "Rejecting malformed webhook body: %s error(s)", e.error_count()
            )
            await self.on_api_error(
                ApiResponse(
                    ok=False,
                    error_code=400,
                    description="Webhook received a malformed update",
                )
            )
            return Response(status_code=400)

        try:
            if not self.dispatcher.blocking:
                background.add_task(self._dispatch_detached, update)
                return Response(status_code=200)

            failures = await self.dispatcher.dispatch([update])
        except Exception as e:
            logger.exception("Webhook dispatch of update %s failed", update.update_id)
            await self.on_api_error(
                ApiResponse(
                    ok=False,
                    error_code=500,
                    description=f"Webhook dispatch failed: {type(e).__name__}",
                )
            )
            return Response(status_code=500)

        if failures:
            names = ", ".join(f.handler for f in failures)
            await self.on_api_error(
                ApiResponse(
                    ok=False,
                    error_code=500,
                    description=(
                        f"{len(failures)} handler(s) failed on update "
                        f"{update.update_id}: {names}"
                    ),
                )
            )
            return Response(status_code=500)
        return Response(status_code=200)

    async def _dispatch_detached(self, update: Update) -> None:
        async with anyio.create_task_group() as tg:
            await self.dispatcher.dispatch([update], task_group=tg)

    # ---------- server lifecycle ----------

    async def serve(self, *, host: str, port: int) -> None:
        """Run the uvicorn server until :meth:`stop` is called."""

        if self._server is not None:
            raise RuntimeError("Webhook server is already running")

        config = uvicorn.Config(
            self.app,
            host=host,
            port=port,
            log_level="warning",
            lifespan="off",
        )
        server = uvicorn.Server(config)
        self._server = server
        logger.info("Webhook server starting on %s:%s", host, port)
        try:
            await server.serve()
        finally:
            self._server = None
            logger.info("Webhook server closed")

    async def wait_started(self, *, poll_seconds: float = 0.05) -> None:
        while not self.is_serving:
            await anyio.sleep(poll_seconds)

    def stop(self) -> bool:
        """Ask the server to exit after in-flight requests; False if not running."""

        if self._server is None:
            return False
        self._server.should_exit = True
        return True
