"""Time-stop exit evaluation over the open-position set."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

import config
from trading.models import Position, TradeRecord

logger = logging.getLogger(__name__)


def realized_loss(size_fiat: float, decay_fraction: float | None = None) -> float:
    """Closed positions book a fixed adverse decay instead of a live price lookup."""
    fraction = float(config.EXIT_DECAY_FRACTION if decay_fraction is None else decay_fraction)
    return -abs(float(size_fiat) * fraction)


def is_expired(position: Position, now: datetime) -> bool:
    if position.opened_at is None:
        return False
    return (now - position.opened_at) > timedelta(minutes=float(position.time_stop_minutes))


def evaluate(
    positions: list[Position],
    now: datetime,
    *,
    decay_fraction: float | None = None,
) -> tuple[list[Position], list[TradeRecord]]:
    """Split positions into (still_open, closed_trades).

    Every expired position yields exactly one trade record. Positions without
    `opened_at` are dropped with a warning and produce no record.
    """
    still_open: list[Position] = []
    closed: list[TradeRecord] = []
    for position in positions:
        if position.opened_at is None:
            logger.warning(
                "EXIT code=EXIT_MALFORMED_POSITION mint=%s detail=missing_opened_at action=drop",
                position.token_mint,
            )
            continue
        if not is_expired(position, now):
            still_open.append(position)
            continue
        record = TradeRecord(
            token_mint=position.token_mint,
            symbol=position.symbol,
            size_fiat=float(position.size_fiat),
            opened_at=position.opened_at,
            closed_at=now,
            profit_loss_fiat=realized_loss(position.size_fiat, decay_fraction),
            reason="time_stop",
        )
        held_minutes = (now - position.opened_at).total_seconds() / 60.0
        logger.info(
            "EXIT code=EXIT_TIME_STOP symbol=%s mint=%s held=%.1fm stop=%.0fm pnl=%.4f",
            position.symbol,
            position.token_mint,
            held_minutes,
            position.time_stop_minutes,
            record.profit_loss_fiat,
        )
        closed.append(record)
    return still_open, closed
