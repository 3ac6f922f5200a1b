"""Jupiter swap pipeline for entries and on-chain settlement reconciliation."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import config
from trading.errors import SwapStepError
from trading.models import STATUS_CONFIRMED, STATUS_SUBMITTED, Candidate, Position, utc_now
from trading.wallet import SETTLED_CONFIRMED, SETTLED_FAILED, SETTLED_INVALID, SETTLED_PENDING, SolanaWallet
from utils.http_client import ResilientHttpClient
from utils.log_contracts import SCHEMA_POSITION_EVENT, build_decision_event, format_decision

logger = logging.getLogger(__name__)

STEP_AMOUNT = "amount"
STEP_QUOTE = "quote"
STEP_BUILD = "build"
STEP_SIGN = "sign"
STEP_SUBMIT = "submit"


@dataclass
class SwapOutcome:
    ok: bool
    signature: str = ""
    step: str = ""
    error: str = ""
    amount_lamports: int = 0
    expected_out_amount: int = 0


@dataclass
class ReconcileResult:
    positions: list[Position]
    confirmed: list[Position] = field(default_factory=list)
    failed: list[tuple[Position, str]] = field(default_factory=list)
    lookup_error: str = ""


def amount_lamports(size_fiat: float, fiat_per_base: float) -> int:
    """Convert a fiat size into base-asset lamports, rounding down."""
    try:
        price = float(fiat_per_base)
        size = float(size_fiat)
    except (TypeError, ValueError) as exc:
        raise SwapStepError(STEP_AMOUNT, f"not_numeric:{exc}") from exc
    if not math.isfinite(price) or price <= 0:
        raise SwapStepError(STEP_AMOUNT, f"bad_price:{fiat_per_base}")
    if not math.isfinite(size) or size <= 0:
        raise SwapStepError(STEP_AMOUNT, f"bad_size:{size_fiat}")
    lamports = int(math.floor(size / price * config.LAMPORTS_PER_SOL))
    if lamports <= 0:
        raise SwapStepError(STEP_AMOUNT, "amount_rounds_to_zero")
    return lamports


class SwapExecutor:
    def __init__(self, wallet: SolanaWallet, http: ResilientHttpClient | None = None) -> None:
        self._wallet = wallet
        self._http = http or ResilientHttpClient(
            timeout_seconds=float(config.HTTP_TIMEOUT_SECONDS),
            headers={"Accept": "application/json"},
            source_limits={"jupiter_swap": 2},
        )

    async def close(self) -> None:
        await self._http.close()

    def runtime_stats(self, reset: bool = False) -> dict[str, dict[str, int | float]]:
        return self._http.snapshot_stats(reset=reset)

    async def execute(self, candidate: Candidate, size_fiat: float, fiat_per_base: float) -> SwapOutcome:
        lamports = 0
        expected_out = 0
        try:
            lamports = amount_lamports(size_fiat, fiat_per_base)
            quote = await self._quote(candidate.token_mint, lamports)
            expected_out = self._quote_out_amount(quote)
            unsigned = await self._build(quote)
            signed = self._sign(unsigned)
            signature = await self._submit(signed)
        except SwapStepError as exc:
            logger.warning(
                "SWAP_STEP_FAILED step=%s symbol=%s token_mint=%s lamports=%s detail=%s",
                exc.step,
                candidate.symbol,
                candidate.token_mint,
                lamports,
                exc.detail,
            )
            return SwapOutcome(
                ok=False,
                step=exc.step,
                error=exc.detail,
                amount_lamports=lamports,
                expected_out_amount=expected_out,
            )

        logger.info(
            "SWAP_SUBMITTED symbol=%s token_mint=%s lamports=%s expected_out=%s signature=%s",
            candidate.symbol,
            candidate.token_mint,
            lamports,
            expected_out,
            signature,
        )
        return SwapOutcome(
            ok=True,
            signature=signature,
            amount_lamports=lamports,
            expected_out_amount=expected_out,
        )

    async def _quote(self, token_mint: str, lamports: int) -> dict[str, Any]:
        result = await self._http.get_json(
            f"{config.JUPITER_SWAP_API}/quote",
            source="jupiter_swap",
            params={
                "inputMint": config.SOL_MINT,
                "outputMint": token_mint,
                "amount": str(int(lamports)),
                "slippageBps": str(int(config.SWAP_SLIPPAGE_BPS)),
            },
        )
        if not result.ok:
            raise SwapStepError(STEP_QUOTE, result.describe())
        if not isinstance(result.data, dict) or result.data.get("error"):
            detail = result.data.get("error") if isinstance(result.data, dict) else "quote_not_object"
            raise SwapStepError(STEP_QUOTE, str(detail))
        return result.data

    @staticmethod
    def _quote_out_amount(quote: dict[str, Any]) -> int:
        try:
            out = int(quote.get("outAmount"))
        except (TypeError, ValueError) as exc:
            raise SwapStepError(STEP_QUOTE, "quote_missing_out_amount") from exc
        if out <= 0:
            raise SwapStepError(STEP_QUOTE, "quote_zero_out_amount")
        return out

    async def _build(self, quote: dict[str, Any]) -> bytes:
        payload = {
            "quoteResponse": quote,
            "userPublicKey": self._wallet.address,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
        }
        result = await self._http.post_json(
            f"{config.JUPITER_SWAP_API}/swap",
            payload,
            source="jupiter_swap",
            headers={"Content-Type": "application/json"},
        )
        if not result.ok:
            raise SwapStepError(STEP_BUILD, result.describe())
        data = result.data if isinstance(result.data, dict) else {}
        encoded = data.get("swapTransaction")
        if not isinstance(encoded, str) or not encoded:
            raise SwapStepError(STEP_BUILD, "swap_transaction_missing")
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise SwapStepError(STEP_BUILD, f"swap_transaction_not_base64:{exc}") from exc

    def _sign(self, unsigned: bytes) -> bytes:
        try:
            return self._wallet.sign_transaction(unsigned)
        except Exception as exc:
            raise SwapStepError(STEP_SIGN, f"{exc.__class__.__name__}:{exc}") from exc

    async def _submit(self, signed: bytes) -> str:
        attempts = max(1, int(config.SWAP_SUBMIT_RETRIES))
        last_error = "unknown"
        for attempt in range(1, attempts + 1):
            try:
                signature = await self._wallet.submit(signed)
            except Exception as exc:
                last_error = f"{exc.__class__.__name__}:{exc}"
                logger.warning("SWAP_SUBMIT_RETRY attempt=%s/%s error=%s", attempt, attempts, last_error)
                if attempt < attempts:
                    await asyncio.sleep(float(config.SWAP_SUBMIT_BACKOFF_SECONDS) * attempt)
                continue
            if signature:
                return signature
            last_error = "empty_signature"
        raise SwapStepError(STEP_SUBMIT, last_error)

    async def reconcile(self, positions: list[Position], now: datetime | None = None) -> ReconcileResult:
        """Settle `submitted` entries against signature statuses.

        A failed status lookup leaves every position as it was. An entry whose
        stored signature cannot be parsed is failed on its own.
        """
        now = now or utc_now()
        pending = [p for p in positions if p.status == STATUS_SUBMITTED and p.entry_reference]
        if not pending:
            statuses: dict[str, str] = {}
        else:
            lookup = await self._wallet.signature_statuses([p.entry_reference for p in pending])
            if not lookup.ok:
                logger.warning("SETTLE_LOOKUP_FAILED pending=%s detail=%s", len(pending), lookup.describe())
                return ReconcileResult(positions=list(positions), lookup_error=lookup.describe())
            statuses = dict(lookup.value or {})

        out = ReconcileResult(positions=[])
        for pos in positions:
            if pos.status != STATUS_SUBMITTED:
                out.positions.append(pos)
                continue
            state = statuses.get(pos.entry_reference, SETTLED_PENDING)
            if state == SETTLED_CONFIRMED:
                pos.status = STATUS_CONFIRMED
                out.confirmed.append(pos)
                out.positions.append(pos)
                self._log_settlement(pos, "confirmed")
            elif state == SETTLED_FAILED:
                out.failed.append((pos, "settlement_failed"))
                self._log_settlement(pos, "settlement_failed")
            elif state == SETTLED_INVALID:
                out.failed.append((pos, "invalid_signature"))
                self._log_settlement(pos, "invalid_signature")
            elif self._settlement_expired(pos, now):
                out.failed.append((pos, "settlement_timeout"))
                self._log_settlement(pos, "settlement_timeout")
            else:
                out.positions.append(pos)
        return out

    @staticmethod
    def _settlement_expired(pos: Position, now: datetime) -> bool:
        if pos.opened_at is None:
            # Left for the exit evaluator, which drops it.
            return False
        age = (now - pos.opened_at).total_seconds()
        return age > float(config.SETTLEMENT_TIMEOUT_SECONDS)

    @staticmethod
    def _log_settlement(pos: Position, reason: str) -> None:
        event = build_decision_event(
            schema=SCHEMA_POSITION_EVENT,
            stage="settlement",
            reason=reason,
            token_mint=pos.token_mint,
            symbol=pos.symbol,
            detail=f"signature={pos.entry_reference}",
        )
        if reason == "confirmed":
            logger.info(format_decision(event))
        else:
            logger.warning(format_decision(event))
