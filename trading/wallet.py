"""Custody keypair and Solana RPC access for the agent wallet."""

from __future__ import annotations

import json
import logging

import base58
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction
from solders.transaction_status import TransactionConfirmationStatus

import config
from trading.errors import ConfigurationError
from utils.feed_result import FeedResult

logger = logging.getLogger(__name__)

SETTLED_CONFIRMED = "confirmed"
SETTLED_FAILED = "failed"
SETTLED_PENDING = "pending"
SETTLED_INVALID = "invalid"

_CONFIRMED_LEVELS = (TransactionConfirmationStatus.Confirmed, TransactionConfirmationStatus.Finalized)


def load_keypair(raw: str | None = None) -> Keypair:
    """Load the custody key from a base58 string or a JSON byte array."""
    secret = str(config.BOT_PRIVATE_KEY if raw is None else raw).strip()
    if not secret:
        raise ConfigurationError("BOT_PRIVATE_KEY is not set")
    try:
        if secret.startswith("["):
            values = json.loads(secret)
            return Keypair.from_bytes(bytes(int(v) & 0xFF for v in values))
        return Keypair.from_bytes(base58.b58decode(secret))
    except Exception as exc:
        raise ConfigurationError(
            f"Invalid BOT_PRIVATE_KEY format. Expected base58 string or JSON array. {exc}"
        ) from exc


class SolanaWallet:
    def __init__(self, keypair: Keypair | None = None, client: AsyncClient | None = None) -> None:
        if not config.SOLANA_RPC_URL:
            raise ConfigurationError("SOLANA_RPC_URL is empty")
        self.keypair = keypair or load_keypair()
        self.commitment = Commitment(config.SOLANA_COMMITMENT)
        self.client = client or AsyncClient(config.SOLANA_RPC_URL, commitment=self.commitment)

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    @property
    def address(self) -> str:
        return str(self.pubkey)

    async def close(self) -> None:
        await self.client.close()

    async def balance_lamports(self) -> FeedResult[int]:
        try:
            resp = await self.client.get_balance(self.pubkey, commitment=self.commitment)
        except Exception as exc:
            return FeedResult.unavailable(f"rpc_error:{exc.__class__.__name__}:{exc}")
        try:
            return FeedResult.success(int(resp.value))
        except (AttributeError, TypeError, ValueError):
            return FeedResult.malformed("balance_value_missing")

    def sign_transaction(self, tx_bytes: bytes) -> bytes:
        unsigned = VersionedTransaction.from_bytes(tx_bytes)
        signed = VersionedTransaction(unsigned.message, [self.keypair])
        return bytes(signed)

    async def submit(self, raw_tx: bytes) -> str:
        """Send without waiting for confirmation; returns the signature string."""
        opts = TxOpts(
            skip_preflight=bool(config.SWAP_SKIP_PREFLIGHT),
            preflight_commitment=self.commitment,
        )
        resp = await self.client.send_raw_transaction(raw_tx, opts=opts)
        return str(resp.value)

    async def signature_statuses(self, signatures: list[str]) -> FeedResult[dict[str, str]]:
        if not signatures:
            return FeedResult.success({})
        out: dict[str, str] = {}
        valid: list[str] = []
        parsed: list[Signature] = []
        for sig in signatures:
            try:
                parsed.append(Signature.from_string(sig))
            except Exception as exc:
                logger.warning("SIGNATURE_INVALID signature=%s error=%s", sig, exc)
                out[sig] = SETTLED_INVALID
                continue
            valid.append(sig)
        if not parsed:
            return FeedResult.success(out)
        try:
            resp = await self.client.get_signature_statuses(parsed, search_transaction_history=True)
        except Exception as exc:
            return FeedResult.unavailable(f"rpc_error:{exc.__class__.__name__}:{exc}")

        for sig, status in zip(valid, list(resp.value or [])):
            if status is None:
                out[sig] = SETTLED_PENDING
            elif status.err is not None:
                out[sig] = SETTLED_FAILED
            elif status.confirmation_status in _CONFIRMED_LEVELS:
                out[sig] = SETTLED_CONFIRMED
            else:
                out[sig] = SETTLED_PENDING
        return FeedResult.success(out)
