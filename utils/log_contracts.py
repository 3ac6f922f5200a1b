"""Stable decision log contracts shared by the tick engine and its collaborators."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

LOG_SCHEMA_VERSION = "2026-10-01.v1"

SCHEMA_CANDIDATE_DECISION = "candidate_decision.v1"
SCHEMA_POSITION_EVENT = "position_event.v1"
SCHEMA_TICK_SUMMARY = "tick_summary.v1"

_STAGE_PREFIX: dict[str, str] = {
    "screening": "PRE",
    "sizing": "SIZE",
    "swapping": "EXEC",
    "settlement": "SETTLE",
    "exit": "EXIT",
    "tick": "TICK",
}

_REASON_CODE_OVERRIDES: dict[str, str] = {
    "safety_unavailable": "PRE_SAFETY_UNAVAILABLE",
    "safety_failed": "PRE_SAFETY_FAILED",
    "already_held": "PRE_ALREADY_HELD",
    "size_zero": "SIZE_ZERO",
    "price_unavailable": "SIZE_PRICE_UNAVAILABLE",
    "balance_unavailable": "SIZE_BALANCE_UNAVAILABLE",
    "swap_submitted": "EXEC_SWAP_SUBMITTED",
    "swap_failed": "EXEC_SWAP_FAILED",
    "unexpected_error": "EXEC_UNEXPECTED_ERROR",
    "confirmed": "SETTLE_CONFIRMED",
    "settlement_failed": "SETTLE_FAILED",
    "settlement_timeout": "SETTLE_TIMEOUT",
    "invalid_signature": "SETTLE_INVALID_SIGNATURE",
    "time_stop": "EXIT_TIME_STOP",
    "malformed_position": "EXIT_MALFORMED_POSITION",
    "paused": "TICK_PAUSED",
    "lease_busy": "TICK_LEASE_BUSY",
    "lease_lost": "TICK_LEASE_LOST",
}

REASON_CODE_TAXONOMY: dict[str, dict[str, str]] = {
    "PRE_SAFETY_UNAVAILABLE": {"severity": "WARN", "category": "screening", "title": "Safety lookup failed (fail-closed)"},
    "PRE_SAFETY_FAILED": {"severity": "INFO", "category": "screening", "title": "Safety gate rejected token"},
    "PRE_ALREADY_HELD": {"severity": "INFO", "category": "screening", "title": "Token already held"},
    "SIZE_ZERO": {"severity": "INFO", "category": "sizing", "title": "Sizing produced no tradable amount"},
    "SIZE_PRICE_UNAVAILABLE": {"severity": "WARN", "category": "sizing", "title": "Base price unavailable"},
    "SIZE_BALANCE_UNAVAILABLE": {"severity": "WARN", "category": "sizing", "title": "Wallet balance unavailable"},
    "EXEC_SWAP_SUBMITTED": {"severity": "INFO", "category": "execute", "title": "Swap submitted"},
    "EXEC_SWAP_FAILED": {"severity": "WARN", "category": "execute", "title": "Swap step failed"},
    "EXEC_UNEXPECTED_ERROR": {"severity": "ERROR", "category": "execute", "title": "Candidate pipeline raised"},
    "SETTLE_CONFIRMED": {"severity": "INFO", "category": "settlement", "title": "Entry confirmed on chain"},
    "SETTLE_FAILED": {"severity": "WARN", "category": "settlement", "title": "Entry failed on chain"},
    "SETTLE_TIMEOUT": {"severity": "WARN", "category": "settlement", "title": "Entry never confirmed"},
    "SETTLE_INVALID_SIGNATURE": {"severity": "WARN", "category": "settlement", "title": "Stored entry signature unreadable"},
    "EXIT_TIME_STOP": {"severity": "INFO", "category": "exit", "title": "Closed by time-stop"},
    "EXIT_MALFORMED_POSITION": {"severity": "WARN", "category": "exit", "title": "Dropped unreadable position"},
    "TICK_PAUSED": {"severity": "INFO", "category": "tick", "title": "Trading disabled"},
    "TICK_LEASE_BUSY": {"severity": "WARN", "category": "tick", "title": "Another tick holds the lease"},
    "TICK_LEASE_LOST": {"severity": "WARN", "category": "tick", "title": "Lease taken over mid-tick"},
}


def reason_code(stage: str, reason: str) -> str:
    key = str(reason or "").strip().lower()
    if key in _REASON_CODE_OVERRIDES:
        return _REASON_CODE_OVERRIDES[key]
    prefix = _STAGE_PREFIX.get(str(stage or "").strip().lower(), "UNKNOWN")
    slug = "".join(ch if ch.isalnum() else "_" for ch in key.upper()).strip("_") or "UNSPECIFIED"
    return f"{prefix}_{slug}"


def build_decision_event(
    *,
    schema: str,
    stage: str,
    reason: str,
    token_mint: str = "",
    symbol: str = "",
    detail: str = "",
    ts: float | None = None,
    **fields: Any,
) -> dict[str, Any]:
    code = reason_code(stage, reason)
    meta = REASON_CODE_TAXONOMY.get(code, {})
    stamp = float(ts) if ts is not None else datetime.now(timezone.utc).timestamp()
    event: dict[str, Any] = {
        "schema_name": schema,
        "log_schema_version": LOG_SCHEMA_VERSION,
        "ts": stamp,
        "timestamp": datetime.fromtimestamp(stamp, tz=timezone.utc).isoformat(),
        "stage": stage,
        "reason": reason,
        "reason_code": code,
        "severity": meta.get("severity", "INFO"),
        "token_mint": token_mint,
        "symbol": symbol,
        "detail": detail,
    }
    event.update(fields)
    return event


def format_decision(event: dict[str, Any]) -> str:
    """Render a decision event as one grep-friendly key=value log line."""
    head = f"{str(event.get('stage', 'unknown')).upper()} code={event.get('reason_code', 'UNKNOWN')}"
    parts = [head]
    for key in ("symbol", "token_mint", "detail"):
        value = event.get(key)
        if value not in (None, ""):
            parts.append(f"{key}={value}")
    return " ".join(parts)
