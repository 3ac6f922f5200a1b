"""Domain records shared by the tick engine, store and control surface."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import config
from utils.addressing import normalize_mint

logger = logging.getLogger(__name__)

RISK_MODES = ("safe", "medium", "aggressive", "custom")

STATUS_SUBMITTED = "submitted"
STATUS_CONFIRMED = "confirmed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Accept ISO-8601 strings and epoch seconds or milliseconds."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        ts = float(value)
        if ts > 1e11:
            ts /= 1000.0
        try:
            return datetime.fromtimestamp(ts, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    if not text:
        return None
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(default)


@dataclass
class Settings:
    enabled: bool = False
    risk_mode: str = "safe"
    custom_fiat_amount: float = 1.0
    notify_target: str | None = None
    last_updated: datetime | None = None

    @classmethod
    def defaults(cls) -> "Settings":
        mode = config.DEFAULT_RISK_MODE if config.DEFAULT_RISK_MODE in RISK_MODES else "safe"
        return cls(risk_mode=mode, custom_fiat_amount=float(config.DEFAULT_CUSTOM_FIAT_AMOUNT))

    @classmethod
    def from_dict(cls, row: Any) -> "Settings":
        out = cls.defaults()
        if not isinstance(row, dict):
            return out
        enabled = row.get("enabled", row.get("run"))
        if isinstance(enabled, bool):
            out.enabled = enabled
        mode = str(row.get("riskMode") or "").strip().lower()
        if mode in RISK_MODES:
            out.risk_mode = mode
        out.custom_fiat_amount = _as_float(row.get("customFiatAmount"), out.custom_fiat_amount)
        target = str(row.get("notifyTarget") or "").strip()
        out.notify_target = target or None
        out.last_updated = parse_timestamp(row.get("lastUpdated"))
        return out

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": bool(self.enabled),
            "riskMode": self.risk_mode,
            "customFiatAmount": float(self.custom_fiat_amount),
            "notifyTarget": self.notify_target,
            "lastUpdated": _iso(self.last_updated),
        }


@dataclass
class Position:
    token_mint: str
    symbol: str
    opened_at: datetime | None
    size_fiat: float
    entry_reference: str
    time_stop_minutes: float = 60.0
    status: str = STATUS_SUBMITTED
    amount_lamports: int = 0
    expected_out_amount: int = 0

    @classmethod
    def from_dict(cls, row: Any) -> "Position | None":
        """Lenient decode: a missing/unreadable `openedAt` yields `opened_at=None`, no mint yields None."""
        if not isinstance(row, dict):
            return None
        mint = normalize_mint(row.get("tokenMint"))
        if not mint:
            return None
        try:
            return cls(
                token_mint=mint,
                symbol=str(row.get("symbol") or "N/A"),
                opened_at=parse_timestamp(row.get("openedAt")),
                size_fiat=_as_float(row.get("sizeFiat")),
                entry_reference=str(row.get("entryReference") or ""),
                time_stop_minutes=_as_float(row.get("timeStopMinutes"), config.TIME_STOP_MINUTES),
                status=str(row.get("status") or STATUS_SUBMITTED),
                amount_lamports=int(row.get("amountLamports") or 0),
                expected_out_amount=int(row.get("expectedOutAmount") or 0),
            )
        except (TypeError, ValueError) as exc:
            logger.warning("POSITION_DECODE_FAILED mint=%s error=%s", mint, exc)
            return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokenMint": self.token_mint,
            "symbol": self.symbol,
            "openedAt": _iso(self.opened_at),
            "sizeFiat": float(self.size_fiat),
            "entryReference": self.entry_reference,
            "timeStopMinutes": float(self.time_stop_minutes),
            "status": self.status,
            "amountLamports": int(self.amount_lamports),
            "expectedOutAmount": int(self.expected_out_amount),
        }


@dataclass(frozen=True)
class TradeRecord:
    token_mint: str
    size_fiat: float
    opened_at: datetime
    closed_at: datetime
    profit_loss_fiat: float
    symbol: str = ""
    reason: str = "time_stop"

    @classmethod
    def from_dict(cls, row: Any) -> "TradeRecord | None":
        if not isinstance(row, dict):
            return None
        opened_at = parse_timestamp(row.get("openedAt"))
        closed_at = parse_timestamp(row.get("closedAt"))
        if opened_at is None or closed_at is None:
            return None
        return cls(
            token_mint=normalize_mint(row.get("tokenMint")),
            size_fiat=_as_float(row.get("sizeFiat")),
            opened_at=opened_at,
            closed_at=closed_at,
            profit_loss_fiat=_as_float(row.get("profitLossFiat")),
            symbol=str(row.get("symbol") or ""),
            reason=str(row.get("reason") or "time_stop"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokenMint": self.token_mint,
            "symbol": self.symbol,
            "sizeFiat": float(self.size_fiat),
            "openedAt": _iso(self.opened_at),
            "closedAt": _iso(self.closed_at),
            "profitLossFiat": float(self.profit_loss_fiat),
            "reason": self.reason,
        }


@dataclass(frozen=True)
class Candidate:
    token_mint: str
    symbol: str
    short_term_change_pct: float
    medium_term_change_pct: float

    @property
    def momentum(self) -> float:
        return self.short_term_change_pct + self.medium_term_change_pct


@dataclass(frozen=True)
class SafetyAssessment:
    token_mint: str
    score: float | None
    is_honeypot: bool | None
    can_freeze: bool | None
    source: str = "unknown"
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_mapping(cls, row: dict[str, Any]) -> "SafetyAssessment":
        score = row.get("score")
        is_honeypot = row.get("isHoneypot")
        can_freeze = row.get("canFreeze")
        return cls(
            token_mint=normalize_mint(row.get("tokenMint")),
            score=None if score is None or isinstance(score, bool) else _as_float(score),
            is_honeypot=is_honeypot if isinstance(is_honeypot, bool) else None,
            can_freeze=can_freeze if isinstance(can_freeze, bool) else None,
            source=str(row.get("source") or "mapping"),
            warnings=tuple(str(w) for w in (row.get("warnings") or ())),
        )
