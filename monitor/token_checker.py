"""Token safety assessment via RugCheck and the fail-closed entry gate."""

from __future__ import annotations

import logging
import time
from typing import Any, Mapping

import config
from trading.models import SafetyAssessment
from utils.addressing import normalize_mint
from utils.feed_result import FeedResult
from utils.http_client import ResilientHttpClient

logger = logging.getLogger(__name__)

_HONEYPOT_RISK_MARKERS = ("honeypot", "cannot sell", "non-transferable")


def passes(assessment: SafetyAssessment | Mapping[str, Any] | None) -> bool:
    """Entry gate: score >= SAFETY_MIN_SCORE, not a honeypot, no retained freeze authority.

    No assessment, or a flag that could not be determined, rejects the token.
    """
    if assessment is None:
        return False
    if isinstance(assessment, Mapping):
        assessment = SafetyAssessment.from_mapping(dict(assessment))
    if assessment.score is None or assessment.score < float(config.SAFETY_MIN_SCORE):
        return False
    if assessment.is_honeypot is not False:
        return False
    if assessment.can_freeze is not False:
        return False
    return True


class TokenChecker:
    def __init__(self, http: ResilientHttpClient | None = None) -> None:
        self._http = http or ResilientHttpClient(
            timeout_seconds=float(config.HTTP_TIMEOUT_SECONDS),
            source_limits={"rugcheck": 2},
        )
        self._checks_total = 0
        self._api_ok = 0
        self._api_fail = 0
        self._api_fail_reasons: dict[str, int] = {}
        self._safety_cache: dict[str, tuple[float, SafetyAssessment]] = {}

    async def close(self) -> None:
        await self._http.close()

    def runtime_stats(self, reset: bool = False) -> dict[str, Any]:
        total = int(self._checks_total)
        err_pct = (float(self._api_fail) / total * 100.0) if total > 0 else 0.0
        top_reason, top_count = "none", 0
        if self._api_fail_reasons:
            top_reason, top_count = max(self._api_fail_reasons.items(), key=lambda kv: int(kv[1]))
        out = {
            "checks_total": total,
            "api_ok": int(self._api_ok),
            "api_fail": int(self._api_fail),
            "api_error_percent": round(err_pct, 2),
            "fail_reason_top": top_reason,
            "fail_reason_top_count": int(top_count),
        }
        if reset:
            self._checks_total = 0
            self._api_ok = 0
            self._api_fail = 0
            self._api_fail_reasons = {}
        return out

    def _mark_fail_reason(self, reason: str) -> None:
        key = str(reason or "unknown").strip().lower() or "unknown"
        self._api_fail_reasons[key] = int(self._api_fail_reasons.get(key, 0)) + 1

    def _get_cached(self, mint: str) -> SafetyAssessment | None:
        entry = self._safety_cache.get(mint)
        if not entry:
            return None
        ts, cached = entry
        if (time.time() - float(ts)) > float(config.SAFETY_CACHE_TTL_SECONDS):
            self._safety_cache.pop(mint, None)
            return None
        return cached

    def _remember(self, mint: str, assessment: SafetyAssessment) -> None:
        if int(config.SAFETY_CACHE_TTL_SECONDS) <= 0:
            return
        self._safety_cache[mint] = (time.time(), assessment)
        if len(self._safety_cache) > 2000:
            oldest_key = min(self._safety_cache.items(), key=lambda kv: float(kv[1][0]))[0]
            self._safety_cache.pop(oldest_key, None)

    async def assess(self, token_mint: str) -> FeedResult[SafetyAssessment]:
        mint = normalize_mint(token_mint)
        if not mint:
            return FeedResult.malformed("empty_token_mint")
        cached = self._get_cached(mint)
        if cached is not None:
            return FeedResult.success(cached)

        self._checks_total += 1
        result = await self._http.get_json(f"{config.RUGCHECK_API}/tokens/{mint}/report", source="rugcheck")
        if not result.ok:
            self._api_fail += 1
            if result.malformed:
                self._mark_fail_reason("invalid_json")
                return FeedResult.malformed("invalid_json")
            reason = f"http_{result.status}" if result.status else result.describe()
            self._mark_fail_reason(reason)
            logger.debug("SAFETY_LOOKUP_FAILED mint=%s reason=%s", mint, reason)
            return FeedResult.unavailable(reason)

        parsed = self.parse_report(mint, result.data)
        if not parsed.ok:
            self._api_fail += 1
            self._mark_fail_reason(parsed.detail)
            return parsed
        self._api_ok += 1
        self._remember(mint, parsed.value)
        return parsed

    @staticmethod
    def parse_report(mint: str, payload: Any) -> FeedResult[SafetyAssessment]:
        if not isinstance(payload, dict):
            return FeedResult.malformed("report_not_object")
        risk_raw = payload.get("score_normalised")
        if risk_raw is None or isinstance(risk_raw, bool):
            return FeedResult.malformed("missing_score_normalised")
        try:
            risk = min(100.0, max(0.0, float(risk_raw)))
        except (TypeError, ValueError):
            return FeedResult.malformed("bad_score_normalised")

        warnings: list[str] = []
        is_honeypot = bool(payload.get("rugged"))
        if is_honeypot:
            warnings.append("Marked rugged")
        risks = payload.get("risks") or []
        if isinstance(risks, list):
            for risk_row in risks:
                if not isinstance(risk_row, dict):
                    continue
                name = str(risk_row.get("name") or "").strip()
                if not name:
                    continue
                warnings.append(name)
                lowered = name.lower()
                if any(marker in lowered for marker in _HONEYPOT_RISK_MARKERS):
                    is_honeypot = True

        can_freeze = bool(payload.get("freezeAuthority"))
        if can_freeze:
            warnings.append("Freeze authority retained")

        return FeedResult.success(
            SafetyAssessment(
                token_mint=mint,
                score=100.0 - risk,
                is_honeypot=is_honeypot,
                can_freeze=can_freeze,
                source="rugcheck",
                warnings=tuple(warnings),
            )
        )
