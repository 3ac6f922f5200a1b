from __future__ import annotations

import json
import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone

from storage.blob_store import FileBlobStore, MemoryBlobStore
from storage.state_store import SettingsValidationError, StateStore
from trading.errors import ConfigurationError
from trading.models import Position, TradeRecord

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _trade(i: int) -> TradeRecord:
    return TradeRecord(
        token_mint=f"Mint{i}",
        size_fiat=1.0,
        opened_at=NOW - timedelta(hours=2),
        closed_at=NOW - timedelta(minutes=i),
        profit_loss_fiat=-0.02,
        symbol=f"T{i}",
    )


class SettingsStoreTests(unittest.TestCase):
    def test_missing_settings_use_defaults(self) -> None:
        settings = StateStore(MemoryBlobStore()).get_settings()
        self.assertFalse(settings.enabled)
        self.assertIn(settings.risk_mode, ("safe", "medium", "aggressive", "custom"))
        self.assertIsNone(settings.notify_target)

    def test_malformed_settings_fall_back_to_defaults_and_log(self) -> None:
        store = StateStore(MemoryBlobStore({"settings": ["not", "an", "object"]}))
        with self.assertLogs("storage.state_store", level="WARNING") as logs:
            settings = store.get_settings()
        self.assertFalse(settings.enabled)
        self.assertIn("SETTINGS_MALFORMED", "\n".join(logs.output))

    def test_legacy_run_key_is_read_as_enabled(self) -> None:
        store = StateStore(MemoryBlobStore({"settings": {"run": True, "riskMode": "medium"}}))
        settings = store.get_settings()
        self.assertTrue(settings.enabled)
        self.assertEqual(settings.risk_mode, "medium")

    def test_patch_merges_known_fields_and_stamps_update(self) -> None:
        blobs = MemoryBlobStore({"settings": {"enabled": False, "riskMode": "safe", "customFiatAmount": 1.0}})
        store = StateStore(blobs)
        updated = store.patch_settings({"run": True, "riskMode": "Custom", "customFiatAmount": 2.5, "theme": "dark"})
        self.assertTrue(updated.enabled)
        self.assertEqual(updated.risk_mode, "custom")
        self.assertEqual(updated.custom_fiat_amount, 2.5)
        self.assertIsNotNone(updated.last_updated)
        stored = blobs.get_json("settings")
        self.assertNotIn("theme", stored)
        self.assertNotIn("run", stored)
        self.assertTrue(stored["enabled"])

    def test_patch_rejects_invalid_values_without_writing(self) -> None:
        blobs = MemoryBlobStore({"settings": {"enabled": False}})
        store = StateStore(blobs)
        for bad in (
            {"run": "yes"},
            {"riskMode": "yolo"},
            {"customFiatAmount": -1},
            {"customFiatAmount": True},
            {"customFiatAmount": float("nan")},
            {"notifyTarget": ["x"]},
            ["not", "object"],
        ):
            with self.assertRaises(SettingsValidationError):
                store.patch_settings(bad)
        self.assertEqual(blobs.get_json("settings"), {"enabled": False})

    def test_notify_target_can_be_cleared(self) -> None:
        store = StateStore(MemoryBlobStore({"settings": {"notifyTarget": "12345"}}))
        self.assertEqual(store.get_settings().notify_target, "12345")
        self.assertIsNone(store.patch_settings({"notifyTarget": None}).notify_target)


class PositionLedgerStoreTests(unittest.TestCase):
    def test_positions_round_trip_and_unreadable_rows_are_dropped(self) -> None:
        blobs = MemoryBlobStore({"positions": [{"tokenMint": "MintA", "openedAt": 1_772_366_400_000}, {"symbol": "x"}, 5]})
        store = StateStore(blobs)
        positions = store.get_positions()
        self.assertEqual([p.token_mint for p in positions], ["MintA"])
        self.assertEqual(positions[0].opened_at, NOW)

    def test_add_position_replaces_same_mint(self) -> None:
        store = StateStore(MemoryBlobStore())
        store.add_position(Position("MintA", "A", NOW, 1.0, "sig1"))
        store.add_position(Position("MintB", "B", NOW, 1.0, "sig2"))
        store.add_position(Position("MintA", "A", NOW, 2.0, "sig3"))
        positions = store.get_positions()
        self.assertEqual([p.token_mint for p in positions], ["MintB", "MintA"])
        self.assertEqual(positions[1].entry_reference, "sig3")

    def test_ledger_is_capped_with_oldest_evicted_first(self) -> None:
        store = StateStore(MemoryBlobStore(), ledger_max_entries=200)
        store.append_trades([_trade(i) for i in range(150)])
        size = store.append_trades([_trade(i) for i in range(150, 260)])
        self.assertEqual(size, 200)
        trades = store.get_trades()
        self.assertEqual(len(trades), 200)
        self.assertEqual(trades[0].token_mint, "Mint60")
        self.assertEqual(trades[-1].token_mint, "Mint259")

    def test_non_list_documents_read_as_empty(self) -> None:
        store = StateStore(MemoryBlobStore({"positions": {"oops": 1}, "trades": "nope"}))
        self.assertEqual(store.get_positions(), [])
        self.assertEqual(store.get_trades(), [])


class TickLeaseTests(unittest.TestCase):
    def test_lease_is_exclusive_until_released(self) -> None:
        store = StateStore(MemoryBlobStore())
        first = store.acquire_lease("worker-a", now=1000.0, ttl_seconds=300)
        self.assertEqual(first, 1)
        self.assertIsNone(store.acquire_lease("worker-b", now=1001.0, ttl_seconds=300))
        self.assertTrue(store.release_lease("worker-a", first))
        self.assertEqual(store.acquire_lease("worker-b", now=1002.0, ttl_seconds=300), 2)

    def test_expired_lease_is_taken_over_with_next_sequence(self) -> None:
        store = StateStore(MemoryBlobStore())
        self.assertEqual(store.acquire_lease("worker-a", now=1000.0, ttl_seconds=60), 1)
        with self.assertLogs("storage.state_store", level="WARNING"):
            self.assertEqual(store.acquire_lease("worker-b", now=1061.0, ttl_seconds=60), 2)
        # The stale holder cannot release the new lease.
        with self.assertLogs("storage.state_store", level="WARNING"):
            self.assertFalse(store.release_lease("worker-a", 1))
        self.assertIsNone(store.acquire_lease("worker-c", now=1062.0, ttl_seconds=60))


    def test_renew_extends_only_the_current_holder(self) -> None:
        store = StateStore(MemoryBlobStore())
        seq = store.acquire_lease("worker-a", now=1000.0, ttl_seconds=60)
        self.assertTrue(store.renew_lease("worker-a", seq, now=1050.0, ttl_seconds=60))
        self.assertIsNone(store.acquire_lease("worker-b", now=1100.0, ttl_seconds=60))
        self.assertEqual(store.acquire_lease("worker-b", now=1111.0, ttl_seconds=60), 2)
        with self.assertLogs("storage.state_store", level="WARNING") as logs:
            self.assertFalse(store.renew_lease("worker-a", seq, now=1112.0, ttl_seconds=60))
        self.assertIn("TICK_LEASE_LOST", "\n".join(logs.output))


class FileBlobStoreTests(unittest.TestCase):
    def test_documents_are_json_files_under_state_dir(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            store = StateStore(FileBlobStore(tmp_dir))
            store.patch_settings({"run": True})
            store.append_trades([_trade(1)])
            self.assertEqual(store.acquire_lease("w", now=10.0, ttl_seconds=5), 1)
            for name in ("settings.json", "trades.json", "tick_lease.json"):
                self.assertTrue(os.path.exists(os.path.join(tmp_dir, name)), name)
            with open(os.path.join(tmp_dir, "settings.json"), "r", encoding="utf-8") as f:
                self.assertTrue(json.load(f)["enabled"])

    def test_corrupt_settings_file_reads_as_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            with open(os.path.join(tmp_dir, "settings.json"), "w", encoding="utf-8") as f:
                f.write("{oops")
            store = StateStore(FileBlobStore(tmp_dir))
            with self.assertLogs("storage.state_store", level="WARNING"):
                self.assertFalse(store.get_settings().enabled)

    def test_undecodable_bytes_read_as_defaults_and_are_overwritten(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            with open(os.path.join(tmp_dir, "positions.json"), "wb") as f:
                f.write(b"[\xff\xfe]")
            with open(os.path.join(tmp_dir, "trades.json"), "wb") as f:
                f.write(b"\xff")
            store = StateStore(FileBlobStore(tmp_dir))
            with self.assertLogs("storage.state_store", level="WARNING"):
                self.assertEqual(store.get_positions(), [])
            with self.assertLogs("utils.state_file", level="WARNING"):
                store.add_position(Position("MintA", "A", NOW, 1.0, "sig1"))
                store.append_trades([_trade(1)])
            self.assertEqual([p.token_mint for p in store.get_positions()], ["MintA"])
            self.assertEqual(len(store.get_trades()), 1)

    def test_bad_keys_are_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            blobs = FileBlobStore(tmp_dir)
            with self.assertRaises(ValueError):
                blobs.path_for("../escape")
            with self.assertRaises(ValueError):
                blobs.path_for("")

    def test_unusable_state_dir_is_configuration_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            blocker = os.path.join(tmp_dir, "file")
            with open(blocker, "w", encoding="utf-8") as f:
                f.write("x")
            with self.assertRaises(ConfigurationError):
                FileBlobStore(os.path.join(blocker, "state"))


if __name__ == "__main__":
    unittest.main()
