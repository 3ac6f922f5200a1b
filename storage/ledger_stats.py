"""Rolling PnL summary over the trade ledger."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Iterable

import config
from trading.models import TradeRecord, utc_now

WINDOWS = {
    "pnl24h": timedelta(days=1),
    "pnl7d": timedelta(days=7),
    "pnl30d": timedelta(days=30),
}


def sum_within(trades: Iterable[TradeRecord], window: timedelta, now: datetime) -> float:
    total = 0.0
    for trade in trades:
        if trade.closed_at is None:
            continue
        if now - trade.closed_at <= window:
            total += float(trade.profit_loss_fiat)
    return total


def compute_stats(trades: list[TradeRecord], now: datetime | None = None) -> dict[str, Any]:
    now = now or utc_now()
    out: dict[str, Any] = {"count": len(trades)}
    for key, window in WINDOWS.items():
        out[key] = round(sum_within(trades, window, now), 8)
    out["recentTrades"] = [t.to_dict() for t in trades[-int(config.STATS_RECENT_TRADES):]]
    return out
