"""Tick orchestrator: exits, then entries, under a single-holder tick lease."""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import config
from monitor import token_checker
from trading import candidate_selector, exit_evaluator, sizing
from trading.models import STATUS_SUBMITTED, Candidate, Position, Settings, TradeRecord, utc_now
from utils.log_contracts import (
    SCHEMA_CANDIDATE_DECISION,
    SCHEMA_TICK_SUMMARY,
    build_decision_event,
    format_decision,
)

logger = logging.getLogger(__name__)

STAGE_IDLE = "idle"
STAGE_EVALUATING = "evaluating"
STAGE_SELECTING = "selecting"
STAGE_SCREENING = "screening"
STAGE_SIZING = "sizing"
STAGE_SWAPPING = "swapping"

STATUS_OK = "ok"
STATUS_PAUSED = "paused"
STATUS_BUSY = "busy"
STATUS_ERROR = "error"

RESULT_OPENED = "opened"
RESULT_SKIPPED = "skipped"
RESULT_FAILED = "failed"


class LeaseLostError(RuntimeError):
    """Raised when another worker has taken over the tick lease mid-tick."""


@dataclass
class TickReport:
    status: str
    message: str = ""
    opened: int = 0
    closed: int = 0
    skipped: int = 0
    failures: list[str] = field(default_factory=list)
    sequence: int | None = None

    @property
    def status_code(self) -> int:
        return 500 if self.status == STATUS_ERROR else 200

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "opened": int(self.opened),
            "closed": int(self.closed),
            "skipped": int(self.skipped),
            "failures": list(self.failures),
            "sequence": self.sequence,
        }


def _default_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class TickEngine:
    def __init__(
        self,
        store: Any,
        oracle: Any,
        screener: Any,
        executor: Any,
        wallet: Any,
        notifier: Any = None,
        *,
        owner: str | None = None,
    ) -> None:
        self.store = store
        self.oracle = oracle
        self.screener = screener
        self.executor = executor
        self.wallet = wallet
        self.notifier = notifier
        self.owner = owner or _default_owner()
        self.stage = STAGE_IDLE
        self._lease_seq: int | None = None

    async def run_tick(self, now: datetime | None = None) -> TickReport:
        """Run one tick. Always returns a report; never raises."""
        now = now or utc_now()
        try:
            settings = self.store.get_settings()
        except Exception as exc:
            logger.exception("TICK_ERROR stage=load_settings")
            return TickReport(status=STATUS_ERROR, message=f"settings_unreadable:{exc}")

        if not settings.enabled:
            logger.info(format_decision(build_decision_event(schema=SCHEMA_TICK_SUMMARY, stage="tick", reason="paused")))
            return TickReport(status=STATUS_PAUSED, message="trading disabled")

        try:
            seq = self.store.acquire_lease(self.owner)
        except Exception as exc:
            logger.exception("TICK_ERROR stage=acquire_lease")
            return TickReport(status=STATUS_ERROR, message=f"lease_unavailable:{exc}")
        if seq is None:
            logger.warning(
                format_decision(build_decision_event(schema=SCHEMA_TICK_SUMMARY, stage="tick", reason="lease_busy"))
            )
            return TickReport(status=STATUS_BUSY, message="another tick is running")

        report = TickReport(status=STATUS_OK, sequence=seq)
        self._lease_seq = seq
        lease_lost = False
        try:
            await self._run_leased(settings, now, report)
        except LeaseLostError:
            lease_lost = True
            logger.warning(
                format_decision(
                    build_decision_event(
                        schema=SCHEMA_TICK_SUMMARY, stage="tick", reason="lease_lost", detail=f"seq={seq} stage={self.stage}"
                    )
                )
            )
            report.status = STATUS_BUSY
            report.message = f"tick lease lost during {self.stage}; tick aborted"
        except Exception as exc:
            logger.exception("TICK_ERROR stage=%s seq=%s", self.stage, seq)
            report.status = STATUS_ERROR
            report.message = f"{self.stage}:{exc.__class__.__name__}:{exc}"
        finally:
            self.stage = STAGE_IDLE
            self._lease_seq = None
            if not lease_lost:
                try:
                    self.store.release_lease(self.owner, seq)
                except Exception:
                    logger.exception("TICK_LEASE_RELEASE_FAILED seq=%s", seq)

        if not report.message:
            report.message = f"opened={report.opened} closed={report.closed} skipped={report.skipped}"
        logger.info(
            "TICK_DONE seq=%s status=%s opened=%s closed=%s skipped=%s failures=%s message=%s",
            seq,
            report.status,
            report.opened,
            report.closed,
            report.skipped,
            len(report.failures),
            report.message,
        )
        return report

    async def _run_leased(self, settings: Settings, now: datetime, report: TickReport) -> None:
        self.stage = STAGE_EVALUATING
        open_positions = await self._settle_and_exit(settings, now, report)

        self.stage = STAGE_SELECTING
        price = await self._base_price()
        if price is None:
            report.message = "base price unavailable; entries skipped"
            return

        balance = await self.wallet.balance_lamports()
        if not balance.ok:
            logger.warning(
                format_decision(
                    build_decision_event(
                        schema=SCHEMA_TICK_SUMMARY,
                        stage="sizing",
                        reason="balance_unavailable",
                        detail=balance.describe(),
                    )
                )
            )
            report.message = "wallet balance unavailable; entries skipped"
            return
        base_units = float(balance.value) / float(config.LAMPORTS_PER_SOL)
        valuation = base_units * price
        logger.info("WALLET balance_sol=%.6f balance_usd=%.2f price_usd=%.4f", base_units, valuation, price)

        pairs = await self.oracle.new_pairs()
        if not pairs.ok:
            logger.warning("FEED_UNAVAILABLE source=pairs detail=%s", pairs.describe())
            report.failures.append(f"pairs:{pairs.describe()}")
            report.message = "pair feed unavailable; entries skipped"
            return
        held = {p.token_mint for p in open_positions}
        self._log_held(pairs.value or [], held)
        candidates = candidate_selector.select(pairs.value or [], exclude_mints=held)
        logger.info("CANDIDATES raw=%s selected=%s", len(pairs.value or []), len(candidates))

        remaining = valuation
        for candidate in candidates:
            self._hold_lease()
            try:
                result, spent = await self._process_candidate(candidate, settings, price, remaining, now)
            except LeaseLostError:
                raise
            except Exception as exc:
                logger.exception("CANDIDATE_ERROR symbol=%s token_mint=%s", candidate.symbol, candidate.token_mint)
                self._log_candidate(candidate, "swapping", "unexpected_error", f"{exc.__class__.__name__}:{exc}")
                report.failures.append(f"{candidate.token_mint}:unexpected_error")
                continue
            if result == RESULT_OPENED:
                report.opened += 1
                remaining = max(0.0, remaining - spent)
            elif result == RESULT_SKIPPED:
                report.skipped += 1
            else:
                report.failures.append(f"{candidate.token_mint}:swap_failed")

    async def _settle_and_exit(self, settings: Settings, now: datetime, report: TickReport) -> list[Position]:
        positions = self.store.get_positions()
        settled = await self.executor.reconcile(positions, now)
        for pos, reason in settled.failed:
            report.failures.append(f"{pos.token_mint}:{reason}")

        still_open, closed = exit_evaluator.evaluate(settled.positions, now)
        changed = closed or settled.failed or settled.confirmed or len(still_open) != len(positions)
        if changed:
            self._hold_lease()
        if closed:
            self.store.append_trades(closed)
        if changed:
            self.store.set_positions(still_open)
        report.closed = len(closed)

        for trade in closed:
            await self._notify(settings, "notify_closed", trade)
        return still_open

    def _hold_lease(self) -> None:
        if self._lease_seq is None:
            return
        if not self.store.renew_lease(self.owner, self._lease_seq):
            raise LeaseLostError(f"seq={self._lease_seq}")

    async def _base_price(self) -> float | None:
        result = await self.oracle.base_price_usd()
        if result.ok:
            return float(result.value)
        fallback = float(config.BASE_PRICE_FALLBACK_USD)
        event = build_decision_event(
            schema=SCHEMA_TICK_SUMMARY,
            stage="sizing",
            reason="price_unavailable",
            detail=f"{result.describe()} fallback={fallback}",
        )
        logger.warning(format_decision(event))
        return fallback if fallback > 0 else None

    async def _process_candidate(
        self,
        candidate: Candidate,
        settings: Settings,
        price: float,
        valuation: float,
        now: datetime,
    ) -> tuple[str, float]:
        self.stage = STAGE_SCREENING
        assessment = await self.screener.assess(candidate.token_mint)
        if not assessment.ok:
            self._log_candidate(candidate, "screening", "safety_unavailable", assessment.describe())
            return RESULT_SKIPPED, 0.0
        if not token_checker.passes(assessment.value):
            a = assessment.value
            self._log_candidate(
                candidate,
                "screening",
                "safety_failed",
                f"score={a.score} honeypot={a.is_honeypot} can_freeze={a.can_freeze}",
            )
            return RESULT_SKIPPED, 0.0

        self.stage = STAGE_SIZING
        size_fiat = sizing.size(settings.risk_mode, settings.custom_fiat_amount, valuation)
        if size_fiat <= 0:
            self._log_candidate(candidate, "sizing", "size_zero", f"mode={settings.risk_mode} valuation={valuation:.2f}")
            return RESULT_SKIPPED, 0.0

        self.stage = STAGE_SWAPPING
        self._hold_lease()
        outcome = await self.executor.execute(candidate, size_fiat, price)
        if not outcome.ok:
            self._log_candidate(candidate, "swapping", "swap_failed", f"step={outcome.step} error={outcome.error}")
            return RESULT_FAILED, 0.0

        position = Position(
            token_mint=candidate.token_mint,
            symbol=candidate.symbol,
            opened_at=now,
            size_fiat=size_fiat,
            entry_reference=outcome.signature,
            time_stop_minutes=float(config.TIME_STOP_MINUTES),
            status=STATUS_SUBMITTED,
            amount_lamports=outcome.amount_lamports,
            expected_out_amount=outcome.expected_out_amount,
        )
        self.store.add_position(position)
        self._log_candidate(candidate, "swapping", "swap_submitted", f"size_usd={size_fiat:.4f} signature={outcome.signature}")
        await self._notify(settings, "notify_opened", position)
        return RESULT_OPENED, size_fiat

    async def _notify(self, settings: Settings, method: str, payload: Position | TradeRecord) -> None:
        if self.notifier is None or not settings.notify_target:
            return
        try:
            result = await getattr(self.notifier, method)(settings.notify_target, payload)
        except Exception as exc:
            logger.warning("NOTIFY_FAILED token_mint=%s error=%s", payload.token_mint, exc)
            return
        if isinstance(result, dict) and not result.get("ok"):
            logger.warning("NOTIFY_FAILED token_mint=%s error=%s", payload.token_mint, result.get("error"))

    @staticmethod
    def _log_held(pairs: list[Any], held: set[str]) -> None:
        seen: set[str] = set()
        for pair in pairs:
            candidate = candidate_selector.to_candidate(pair)
            if candidate is None or candidate.token_mint not in held or candidate.token_mint in seen:
                continue
            seen.add(candidate.token_mint)
            TickEngine._log_candidate(candidate, "screening", "already_held", "open position")

    @staticmethod
    def _log_candidate(candidate: Candidate, stage: str, reason: str, detail: str) -> None:
        event = build_decision_event(
            schema=SCHEMA_CANDIDATE_DECISION,
            stage=stage,
            reason=reason,
            token_mint=candidate.token_mint,
            symbol=candidate.symbol,
            detail=detail,
        )
        line = format_decision(event)
        if reason == "swap_submitted":
            logger.info("CANDIDATE_OPEN %s", line)
        elif event["severity"] == "INFO":
            logger.info("CANDIDATE_SKIP %s", line)
        else:
            logger.warning("CANDIDATE_SKIP %s", line)
