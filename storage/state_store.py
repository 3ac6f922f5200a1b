"""Typed access to settings, open positions, the trade ledger and the tick lease."""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Iterable

import config
from storage.blob_store import BlobStore
from trading.models import RISK_MODES, Position, Settings, TradeRecord, utc_now
from utils.state_file import StateFileCorruptError

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings"
POSITIONS_KEY = "positions"
TRADES_KEY = "trades"
LEASE_KEY = "tick_lease"


class SettingsValidationError(ValueError):
    """A settings patch carried a value of the wrong type or range."""


def validate_settings_patch(patch: Any) -> dict[str, Any]:
    """Return the recognised, validated fields of a settings patch. Unknown keys are ignored."""
    if not isinstance(patch, dict):
        raise SettingsValidationError("settings patch must be an object")
    clean: dict[str, Any] = {}
    for key in ("run", "enabled"):
        if key in patch:
            if not isinstance(patch[key], bool):
                raise SettingsValidationError(f"{key} must be a boolean")
            clean["enabled"] = patch[key]
    if "riskMode" in patch:
        mode = patch["riskMode"]
        if not isinstance(mode, str) or mode.strip().lower() not in RISK_MODES:
            raise SettingsValidationError(f"riskMode must be one of {', '.join(RISK_MODES)}")
        clean["riskMode"] = mode.strip().lower()
    if "customFiatAmount" in patch:
        amount = patch["customFiatAmount"]
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise SettingsValidationError("customFiatAmount must be a number")
        if not math.isfinite(float(amount)) or float(amount) < 0:
            raise SettingsValidationError("customFiatAmount must be a finite number >= 0")
        clean["customFiatAmount"] = float(amount)
    if "notifyTarget" in patch:
        target = patch["notifyTarget"]
        if target is not None and not isinstance(target, (str, int)):
            raise SettingsValidationError("notifyTarget must be a string or null")
        text = "" if target is None else str(target).strip()
        clean["notifyTarget"] = text or None
    return clean


class StateStore:
    def __init__(self, blobs: BlobStore, *, ledger_max_entries: int | None = None) -> None:
        self.blobs = blobs
        self.ledger_max_entries = max(1, int(ledger_max_entries or config.LEDGER_MAX_ENTRIES))

    def _read(self, key: str, default: Any) -> Any:
        try:
            return self.blobs.get_json(key, default)
        except StateFileCorruptError as exc:
            logger.warning("STATE_CORRUPT key=%s action=use_default error=%s", key, exc)
            return default

    def get_settings(self) -> Settings:
        raw = self._read(SETTINGS_KEY, None)
        if raw is None:
            return Settings.defaults()
        if not isinstance(raw, dict):
            logger.warning("SETTINGS_MALFORMED type=%s action=use_defaults", type(raw).__name__)
            return Settings.defaults()
        return Settings.from_dict(raw)

    def patch_settings(self, patch: Any) -> Settings:
        clean = validate_settings_patch(patch)

        def _mutate(current: Any) -> dict[str, Any]:
            settings = Settings.from_dict(current if isinstance(current, dict) else None)
            if "enabled" in clean:
                settings.enabled = clean["enabled"]
            if "riskMode" in clean:
                settings.risk_mode = clean["riskMode"]
            if "customFiatAmount" in clean:
                settings.custom_fiat_amount = clean["customFiatAmount"]
            if "notifyTarget" in clean:
                settings.notify_target = clean["notifyTarget"]
            settings.last_updated = utc_now()
            return settings.to_dict()

        updated = self.blobs.update_json(SETTINGS_KEY, _mutate, None)
        logger.info("SETTINGS_UPDATED fields=%s", ",".join(sorted(clean)) or "none")
        return Settings.from_dict(updated)

    def get_positions(self) -> list[Position]:
        raw = self._read(POSITIONS_KEY, [])
        if not isinstance(raw, list):
            logger.warning("POSITIONS_MALFORMED type=%s action=use_empty", type(raw).__name__)
            return []
        out: list[Position] = []
        for row in raw:
            pos = Position.from_dict(row)
            if pos is None:
                logger.warning("POSITION_DROPPED reason=unreadable row=%s", row)
                continue
            out.append(pos)
        return out

    def set_positions(self, positions: Iterable[Position]) -> None:
        self.blobs.set_json(POSITIONS_KEY, [p.to_dict() for p in positions])

    def add_position(self, position: Position) -> None:
        """Append one position, replacing any open row for the same mint."""

        def _mutate(current: Any) -> list[Any]:
            rows = current if isinstance(current, list) else []
            kept = [r for r in rows if not (isinstance(r, dict) and r.get("tokenMint") == position.token_mint)]
            kept.append(position.to_dict())
            return kept

        self.blobs.update_json(POSITIONS_KEY, _mutate, [])

    def get_trades(self) -> list[TradeRecord]:
        raw = self._read(TRADES_KEY, [])
        if not isinstance(raw, list):
            logger.warning("TRADES_MALFORMED type=%s action=use_empty", type(raw).__name__)
            return []
        return [t for t in (TradeRecord.from_dict(row) for row in raw) if t is not None]

    def append_trades(self, trades: Iterable[TradeRecord]) -> int:
        """Append records and keep only the newest `ledger_max_entries`. Returns the ledger size."""
        new_rows = [t.to_dict() for t in trades]
        if not new_rows:
            return len(self.get_trades())
        limit = self.ledger_max_entries

        def _mutate(current: Any) -> list[Any]:
            rows = current if isinstance(current, list) else []
            merged = rows + new_rows
            return merged[-limit:]

        updated = self.blobs.update_json(TRADES_KEY, _mutate, [])
        return len(updated)

    def acquire_lease(self, owner: str, *, now: float | None = None, ttl_seconds: float | None = None) -> int | None:
        """Take the tick lease. Returns the new sequence number, or None when another holder is live."""
        stamp = time.time() if now is None else float(now)
        ttl = float(config.TICK_LEASE_TTL_SECONDS if ttl_seconds is None else ttl_seconds)
        granted: dict[str, Any] = {}

        def _mutate(current: Any) -> dict[str, Any]:
            doc = current if isinstance(current, dict) else {}
            holder = str(doc.get("owner") or "")
            try:
                expires_at = float(doc.get("expiresAt") or 0.0)
                seq = int(doc.get("seq") or 0)
            except (TypeError, ValueError):
                expires_at, seq = 0.0, 0
            if holder and expires_at > stamp:
                return doc
            if holder:
                logger.warning("TICK_LEASE_TAKEOVER previous_owner=%s previous_seq=%s", holder, seq)
            granted["seq"] = seq + 1
            return {"seq": seq + 1, "owner": owner, "expiresAt": stamp + ttl}

        self.blobs.update_json(LEASE_KEY, _mutate, {})
        return granted.get("seq")

    def renew_lease(self, owner: str, seq: int, *, now: float | None = None, ttl_seconds: float | None = None) -> bool:
        """Extend the lease held as (owner, seq). False once another worker has taken it over."""
        stamp = time.time() if now is None else float(now)
        ttl = float(config.TICK_LEASE_TTL_SECONDS if ttl_seconds is None else ttl_seconds)
        renewed: dict[str, bool] = {}

        def _mutate(current: Any) -> dict[str, Any]:
            doc = current if isinstance(current, dict) else {}
            if doc.get("owner") != owner or int(doc.get("seq") or 0) != int(seq):
                return doc
            renewed["ok"] = True
            return {"seq": int(seq), "owner": owner, "expiresAt": stamp + ttl}

        doc = self.blobs.update_json(LEASE_KEY, _mutate, {})
        if not renewed:
            current = doc if isinstance(doc, dict) else {}
            logger.warning(
                "TICK_LEASE_LOST owner=%s seq=%s holder=%s holder_seq=%s",
                owner,
                seq,
                current.get("owner") or "none",
                current.get("seq"),
            )
        return bool(renewed)

    def release_lease(self, owner: str, seq: int) -> bool:
        released: dict[str, bool] = {}

        def _mutate(current: Any) -> dict[str, Any]:
            doc = current if isinstance(current, dict) else {}
            if doc.get("owner") != owner or int(doc.get("seq") or 0) != int(seq):
                return doc
            released["ok"] = True
            return {"seq": int(seq), "owner": "", "expiresAt": 0.0}

        self.blobs.update_json(LEASE_KEY, _mutate, {})
        if not released:
            logger.warning("TICK_LEASE_RELEASE_SKIPPED owner=%s seq=%s", owner, seq)
        return bool(released)
