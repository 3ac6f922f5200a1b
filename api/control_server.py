"""Control HTTP server: settings, stats, tick trigger and test notification."""

import asyncio
import hmac
import logging
from typing import Any

from aiohttp import web

import config
from storage.ledger_stats import compute_stats
from storage.state_store import SettingsValidationError, StateStore
from utils.state_file import StateFileLockError

logger = logging.getLogger(__name__)


def _error(status: int, error: str) -> web.Response:
    return web.json_response({"ok": False, "error": error}, status=status)


@web.middleware
async def _auth_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    token = str(request.app.get("api_token") or "")
    if token:
        header = request.headers.get("Authorization", "")
        supplied = header[7:].strip() if header.lower().startswith("bearer ") else ""
        if not hmac.compare_digest(supplied, token):
            return _error(401, "unauthorized")
    return await handler(request)


class ControlServer:
    def __init__(
        self,
        store: StateStore,
        engine: Any = None,
        notifier: Any = None,
        *,
        api_token: str | None = None,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        self.store = store
        self.engine = engine
        self.notifier = notifier
        self.api_token = config.CONTROL_API_TOKEN if api_token is None else api_token
        self.host = host or config.CONTROL_HOST
        self.port = int(port or config.CONTROL_PORT)
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None
        self._tick_lock = asyncio.Lock()

    def build_app(self) -> web.Application:
        app = web.Application(middlewares=[_auth_middleware])
        app["api_token"] = self.api_token
        app.router.add_get("/settings", self._get_settings)
        app.router.add_post("/settings", self._post_settings)
        app.router.add_get("/stats", self._get_stats)
        app.router.add_post("/tick", self._post_tick)
        app.router.add_post("/notify/test", self._post_notify_test)
        return app

    async def start(self) -> None:
        self.runner = web.AppRunner(self.build_app())
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()
        logger.info(
            "Control server listening on %s:%s auth=%s",
            self.host,
            self.port,
            "bearer" if self.api_token else "none",
        )

    async def stop(self) -> None:
        if self.runner:
            await self.runner.cleanup()
            self.runner = None

    async def _get_settings(self, request: web.Request) -> web.Response:
        try:
            settings = self.store.get_settings()
        except StateFileLockError as exc:
            return _error(503, str(exc))
        return web.json_response(settings.to_dict())

    async def _post_settings(self, request: web.Request) -> web.Response:
        try:
            payload = await request.json()
        except Exception:
            return _error(400, "invalid_json")
        try:
            settings = self.store.patch_settings(payload)
        except SettingsValidationError as exc:
            return _error(400, str(exc))
        except StateFileLockError as exc:
            return _error(503, str(exc))
        return web.json_response(settings.to_dict())

    async def _get_stats(self, request: web.Request) -> web.Response:
        try:
            trades = self.store.get_trades()
        except StateFileLockError as exc:
            return _error(503, str(exc))
        return web.json_response(compute_stats(trades))

    async def _post_tick(self, request: web.Request) -> web.Response:
        if self.engine is None:
            return _error(503, "tick_engine_not_configured")
        async with self._tick_lock:
            report = await self.engine.run_tick()
        return web.json_response(report.to_dict(), status=report.status_code)

    async def _post_notify_test(self, request: web.Request) -> web.Response:
        if self.notifier is None:
            return _error(503, "notifier_not_configured")
        payload: Any = {}
        if request.can_read_body:
            try:
                payload = await request.json()
            except Exception:
                return _error(400, "invalid_json")
        if not isinstance(payload, dict):
            return _error(400, "body_must_be_object")
        target = payload.get("target") or payload.get("chatId")
        if not target:
            try:
                target = self.store.get_settings().notify_target
            except StateFileLockError as exc:
                return _error(503, str(exc))
        result = await self.notifier.send_test(str(target) if target else None)
        return web.json_response(result)
