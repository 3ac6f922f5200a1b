"""Market oracle: base-asset fiat price and freshly listed Solana pairs."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

import config
from utils.addressing import normalize_mint
from utils.feed_result import FeedResult
from utils.http_client import HttpResult, ResilientHttpClient

logger = logging.getLogger(__name__)


class MarketOracle:
    def __init__(self, http: ResilientHttpClient | None = None) -> None:
        self._http = http or ResilientHttpClient(
            timeout_seconds=float(config.HTTP_TIMEOUT_SECONDS),
            headers={"Accept": "application/json, text/plain, */*"},
            source_limits={"dexscreener": 4, "jupiter": 2},
        )

    async def close(self) -> None:
        await self._http.close()

    def runtime_stats(self, reset: bool = False) -> dict[str, dict[str, int | float]]:
        return self._http.snapshot_stats(reset=reset)

    async def base_price_usd(self) -> FeedResult[float]:
        result = await self._http.get_json(
            config.JUPITER_PRICE_API,
            source="jupiter",
            params={"ids": config.SOL_MINT},
        )
        if not result.ok:
            return self._failed(result)
        return self.parse_price(result.data, config.SOL_MINT)

    @staticmethod
    def _failed(result: HttpResult) -> FeedResult[Any]:
        if result.malformed:
            return FeedResult.malformed(result.describe())
        return FeedResult.unavailable(result.describe())

    @staticmethod
    def parse_price(payload: Any, mint: str) -> FeedResult[float]:
        if not isinstance(payload, dict):
            return FeedResult.malformed("price_payload_not_object")
        # v3 keys the mint at top level; v2 nests it under "data".
        row = payload.get(mint)
        if row is None and isinstance(payload.get("data"), dict):
            row = payload["data"].get(mint)
        if not isinstance(row, dict):
            return FeedResult.malformed("price_entry_missing")
        raw = row.get("usdPrice", row.get("price"))
        try:
            price = float(raw)
        except (TypeError, ValueError):
            return FeedResult.malformed("price_not_numeric")
        if price <= 0:
            return FeedResult.malformed("price_not_positive")
        return FeedResult.success(price)

    async def new_pairs(self) -> FeedResult[list[dict[str, Any]]]:
        queries = list(config.DEX_SEARCH_QUERIES)
        results = await asyncio.gather(*[self._fetch_query(q) for q in queries])
        merged: list[dict[str, Any]] = []
        failures: list[str] = []
        for query, result in zip(queries, results):
            if not result.ok:
                failures.append(f"{query}:{result.describe()}")
                continue
            merged.extend(result.value or [])
        if failures and len(failures) == len(queries):
            return FeedResult.unavailable(";".join(failures))
        if failures:
            logger.warning("Dex query partially failed: %s", ";".join(failures))
        return FeedResult.success(self._dedupe(merged))

    async def _fetch_query(self, query: str) -> FeedResult[list[dict[str, Any]]]:
        result = await self._http.get_json(
            f"{config.DEXSCREENER_API}/search",
            source="dexscreener",
            params={"q": query},
        )
        if not result.ok:
            return self._failed(result)
        data = result.data
        if not isinstance(data, dict) or not isinstance(data.get("pairs", []), list):
            return FeedResult.malformed("pairs_not_list")
        return FeedResult.success(self.filter_new_pairs(data.get("pairs") or []))

    @staticmethod
    def filter_new_pairs(pairs: list[Any], now: datetime | None = None) -> list[dict[str, Any]]:
        """Keep Solana pairs younger than NEW_PAIR_MAX_AGE_MINUTES; shape stays raw DexScreener."""
        now = now or datetime.now(timezone.utc)
        max_age_seconds = float(config.NEW_PAIR_MAX_AGE_MINUTES) * 60.0
        out: list[dict[str, Any]] = []
        for pair in pairs:
            if not isinstance(pair, dict):
                continue
            if str(pair.get("chainId", "")).lower() != config.CHAIN_ID:
                continue
            created_ms = pair.get("pairCreatedAt")
            try:
                created_at = datetime.fromtimestamp(float(created_ms) / 1000.0, tz=timezone.utc)
            except (TypeError, ValueError, OverflowError, OSError):
                continue
            if (now - created_at).total_seconds() > max_age_seconds:
                continue
            liquidity = float((pair.get("liquidity") or {}).get("usd") or 0)
            if liquidity < float(config.NEW_PAIR_MIN_LIQUIDITY_USD):
                continue
            out.append(pair)
        return out

    @staticmethod
    def _dedupe(pairs: list[dict[str, Any]]) -> list[dict[str, Any]]:
        by_mint: dict[str, dict[str, Any]] = {}
        passthrough: list[dict[str, Any]] = []
        for pair in pairs:
            mint = normalize_mint((pair.get("baseToken") or {}).get("address"))
            if not mint:
                # Structural rejection belongs to the candidate selector.
                passthrough.append(pair)
                continue
            existing = by_mint.get(mint)
            if existing is None:
                by_mint[mint] = pair
                continue
            liq_new = float((pair.get("liquidity") or {}).get("usd") or 0)
            liq_old = float((existing.get("liquidity") or {}).get("usd") or 0)
            if liq_new > liq_old:
                by_mint[mint] = pair
        return list(by_mint.values()) + passthrough
