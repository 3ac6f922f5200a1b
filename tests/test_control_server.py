from __future__ import annotations

from datetime import datetime, timedelta, timezone

from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase

from api.control_server import ControlServer
from storage.blob_store import MemoryBlobStore
from storage.state_store import StateStore
from trading.models import TradeRecord
from trading.tick_engine import TickReport
from utils.state_file import StateFileLockError


class _StubEngine:
    def __init__(self, report: TickReport) -> None:
        self.report = report
        self.calls = 0

    async def run_tick(self) -> TickReport:
        self.calls += 1
        return self.report


class _StubNotifier:
    def __init__(self) -> None:
        self.targets: list[str | None] = []

    async def send_test(self, target):
        self.targets.append(target)
        if not target:
            return {"ok": False, "error": "no_target"}
        return {"ok": True}


class ControlServerTests(AioHTTPTestCase):
    api_token = ""

    async def get_application(self) -> web.Application:
        self.blobs = MemoryBlobStore({"settings": {"enabled": False, "riskMode": "safe", "notifyTarget": "chat-9"}})
        self.store = StateStore(self.blobs)
        self.engine = _StubEngine(TickReport(status="ok", message="opened=1 closed=0 skipped=0", opened=1, sequence=4))
        self.notifier = _StubNotifier()
        server = ControlServer(self.store, self.engine, self.notifier, api_token=self.api_token)
        return server.build_app()

    async def test_get_settings_returns_camel_case_document(self) -> None:
        resp = await self.client.get("/settings")
        self.assertEqual(resp.status, 200)
        body = await resp.json()
        self.assertEqual(body["riskMode"], "safe")
        self.assertFalse(body["enabled"])
        self.assertEqual(body["notifyTarget"], "chat-9")

    async def test_post_settings_patches_and_ignores_unknown_fields(self) -> None:
        resp = await self.client.post("/settings", json={"run": True, "riskMode": "medium", "theme": "dark"})
        self.assertEqual(resp.status, 200)
        body = await resp.json()
        self.assertTrue(body["enabled"])
        self.assertEqual(body["riskMode"], "medium")
        self.assertNotIn("theme", body)
        self.assertTrue(self.store.get_settings().enabled)

    async def test_post_settings_rejects_invalid_values(self) -> None:
        resp = await self.client.post("/settings", json={"riskMode": "yolo"})
        self.assertEqual(resp.status, 400)
        resp = await self.client.post("/settings", data="{not json", headers={"Content-Type": "application/json"})
        self.assertEqual(resp.status, 400)
        self.assertEqual((await resp.json())["error"], "invalid_json")
        self.assertFalse(self.store.get_settings().enabled)

    async def test_stats_summarises_ledger(self) -> None:
        now = datetime.now(timezone.utc)
        self.store.append_trades(
            [
                TradeRecord("MintA", 10.0, now - timedelta(hours=2), now - timedelta(hours=1), -0.2, "AAA"),
                TradeRecord("MintB", 10.0, now - timedelta(days=9), now - timedelta(days=8), -0.5, "BBB"),
            ]
        )
        resp = await self.client.get("/stats")
        self.assertEqual(resp.status, 200)
        body = await resp.json()
        self.assertEqual(body["count"], 2)
        self.assertAlmostEqual(body["pnl24h"], -0.2)
        self.assertAlmostEqual(body["pnl7d"], -0.2)
        self.assertAlmostEqual(body["pnl30d"], -0.7)
        self.assertEqual([t["tokenMint"] for t in body["recentTrades"]], ["MintA", "MintB"])

    async def test_tick_trigger_returns_report(self) -> None:
        resp = await self.client.post("/tick")
        self.assertEqual(resp.status, 200)
        body = await resp.json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["sequence"], 4)
        self.assertEqual(self.engine.calls, 1)

    async def test_tick_error_maps_to_500(self) -> None:
        self.engine.report = TickReport(status="error", message="evaluating:OSError:disk gone")
        resp = await self.client.post("/tick")
        self.assertEqual(resp.status, 500)
        self.assertEqual((await resp.json())["status"], "error")

    async def test_notify_test_uses_body_target_then_settings(self) -> None:
        resp = await self.client.post("/notify/test", json={"chatId": "chat-1"})
        self.assertEqual(await resp.json(), {"ok": True})
        resp = await self.client.post("/notify/test")
        self.assertEqual(await resp.json(), {"ok": True})
        self.assertEqual(self.notifier.targets, ["chat-1", "chat-9"])

    async def test_notify_test_reports_locked_settings_as_503(self) -> None:
        def _locked():
            raise StateFileLockError("E_STATE_LOCKED: lock timeout path=settings.json")

        self.store.get_settings = _locked
        resp = await self.client.post("/notify/test")
        self.assertEqual(resp.status, 503)
        self.assertEqual(self.notifier.targets, [])
        resp = await self.client.post("/notify/test", json={"target": "chat-2"})
        self.assertEqual(await resp.json(), {"ok": True})


class ControlServerAuthTests(AioHTTPTestCase):
    async def get_application(self) -> web.Application:
        store = StateStore(MemoryBlobStore())
        return ControlServer(store, None, None, api_token="s3cret").build_app()

    async def test_missing_or_wrong_token_is_rejected(self) -> None:
        resp = await self.client.get("/settings")
        self.assertEqual(resp.status, 401)
        resp = await self.client.get("/settings", headers={"Authorization": "Bearer nope"})
        self.assertEqual(resp.status, 401)

    async def test_valid_token_is_accepted(self) -> None:
        resp = await self.client.get("/settings", headers={"Authorization": "Bearer s3cret"})
        self.assertEqual(resp.status, 200)

    async def test_unconfigured_engine_and_notifier_return_503(self) -> None:
        headers = {"Authorization": "Bearer s3cret"}
        self.assertEqual((await self.client.post("/tick", headers=headers)).status, 503)
        self.assertEqual((await self.client.post("/notify/test", headers=headers)).status, 503)
