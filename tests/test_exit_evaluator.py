from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from trading import exit_evaluator
from trading.models import Position

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _position(mint: str, minutes_old: float | None, size: float = 10.0) -> Position:
    return Position(
        token_mint=mint,
        symbol=mint[:3].upper(),
        opened_at=None if minutes_old is None else NOW - timedelta(minutes=minutes_old),
        size_fiat=size,
        entry_reference=f"sig-{mint}",
        time_stop_minutes=60.0,
        status="confirmed",
    )


class ExitEvaluatorTests(unittest.TestCase):
    def test_expired_position_closes_and_fresh_one_stays(self) -> None:
        old = _position("oldmint", 61)
        fresh = _position("freshmint", 59)
        still_open, closed = exit_evaluator.evaluate([old, fresh], NOW, decay_fraction=0.02)
        self.assertEqual([p.token_mint for p in still_open], ["freshmint"])
        self.assertEqual(len(closed), 1)
        record = closed[0]
        self.assertEqual(record.token_mint, "oldmint")
        self.assertEqual(record.closed_at, NOW)
        self.assertEqual(record.opened_at, old.opened_at)
        self.assertLess(record.profit_loss_fiat, 0)
        self.assertAlmostEqual(record.profit_loss_fiat, -0.2)
        self.assertEqual(record.reason, "time_stop")

    def test_exactly_at_time_stop_stays_open(self) -> None:
        still_open, closed = exit_evaluator.evaluate([_position("edge", 60)], NOW)
        self.assertEqual(len(still_open), 1)
        self.assertEqual(closed, [])

    def test_position_without_opened_at_is_dropped_without_record(self) -> None:
        with self.assertLogs("trading.exit_evaluator", level="WARNING") as logs:
            still_open, closed = exit_evaluator.evaluate([_position("broken", None), _position("ok", 5)], NOW)
        self.assertEqual([p.token_mint for p in still_open], ["ok"])
        self.assertEqual(closed, [])
        self.assertIn("EXIT_MALFORMED_POSITION", "\n".join(logs.output))

    def test_realized_loss_is_negative_regardless_of_size_sign(self) -> None:
        self.assertAlmostEqual(exit_evaluator.realized_loss(50.0, 0.02), -1.0)
        self.assertAlmostEqual(exit_evaluator.realized_loss(-50.0, 0.02), -1.0)
        self.assertEqual(exit_evaluator.realized_loss(50.0, 0.0), 0.0)


if __name__ == "__main__":
    unittest.main()
