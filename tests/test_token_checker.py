from __future__ import annotations

import asyncio
import unittest

import config
from monitor import token_checker
from monitor.token_checker import TokenChecker
from trading.models import SafetyAssessment
from utils.http_client import HttpResult


class ConfigPatchMixin:
    def setUp(self) -> None:
        super().setUp()
        self._cfg_old: dict[str, object] = {}

    def patch_cfg(self, **kwargs: object) -> None:
        for key, value in kwargs.items():
            if key not in self._cfg_old:
                self._cfg_old[key] = getattr(config, key, None)
            setattr(config, key, value)

    def tearDown(self) -> None:
        for key, value in self._cfg_old.items():
            setattr(config, key, value)
        super().tearDown()


class _StubHttp:
    def __init__(self, results: list[HttpResult]) -> None:
        self._results = list(results)
        self.urls: list[str] = []

    async def get_json(self, url: str, **kwargs) -> HttpResult:
        self.urls.append(url)
        return self._results.pop(0)

    async def close(self) -> None:
        return None


def _report(**overrides) -> dict:
    payload = {"score_normalised": 10, "rugged": False, "risks": [], "freezeAuthority": None}
    payload.update(overrides)
    return payload


class SafetyGateTests(ConfigPatchMixin, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.patch_cfg(SAFETY_MIN_SCORE=70)

    def test_gate_contract(self) -> None:
        self.assertFalse(token_checker.passes(None))
        self.assertFalse(token_checker.passes({"score": 0}))
        self.assertTrue(token_checker.passes({"score": 70, "isHoneypot": False, "canFreeze": False}))

    def test_each_disqualifier_rejects(self) -> None:
        self.assertFalse(token_checker.passes({"score": 69.9, "isHoneypot": False, "canFreeze": False}))
        self.assertFalse(token_checker.passes({"score": 95, "isHoneypot": True, "canFreeze": False}))
        self.assertFalse(token_checker.passes({"score": 95, "isHoneypot": False, "canFreeze": True}))

    def test_missing_flag_fails_closed(self) -> None:
        self.assertFalse(token_checker.passes({"score": 95, "canFreeze": False}))
        self.assertFalse(token_checker.passes({"score": 95, "isHoneypot": False}))
        self.assertFalse(token_checker.passes({"score": 95, "isHoneypot": "no", "canFreeze": False}))

    def test_accepts_assessment_objects(self) -> None:
        ok = SafetyAssessment("MintA", 80.0, False, False, source="rugcheck")
        self.assertTrue(token_checker.passes(ok))
        self.assertFalse(token_checker.passes(SafetyAssessment("MintA", None, False, False)))


class RugcheckParseTests(unittest.TestCase):
    def test_score_is_inverted_risk(self) -> None:
        result = TokenChecker.parse_report("MintA", _report(score_normalised=12))
        self.assertTrue(result.ok)
        self.assertEqual(result.value.score, 88.0)
        self.assertIs(result.value.is_honeypot, False)
        self.assertIs(result.value.can_freeze, False)
        self.assertEqual(result.value.source, "rugcheck")

    def test_honeypot_and_freeze_signals(self) -> None:
        result = TokenChecker.parse_report(
            "MintA",
            _report(
                risks=[{"name": "Low Liquidity"}, {"name": "Token cannot sell (Honeypot)"}],
                freezeAuthority="FreezeAuth1111111111111111111111111111111",
            ),
        )
        self.assertTrue(result.ok)
        self.assertTrue(result.value.is_honeypot)
        self.assertTrue(result.value.can_freeze)
        self.assertIn("Low Liquidity", result.value.warnings)

    def test_rugged_flag_marks_honeypot(self) -> None:
        result = TokenChecker.parse_report("MintA", _report(rugged=True))
        self.assertTrue(result.value.is_honeypot)

    def test_missing_score_is_malformed(self) -> None:
        self.assertEqual(TokenChecker.parse_report("MintA", {"risks": []}).status, "malformed")
        self.assertEqual(TokenChecker.parse_report("MintA", _report(score_normalised="x")).status, "malformed")
        self.assertEqual(TokenChecker.parse_report("MintA", ["not", "a", "dict"]).status, "malformed")


class TokenCheckerAssessTests(ConfigPatchMixin, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.patch_cfg(SAFETY_CACHE_TTL_SECONDS=900, RUGCHECK_API="https://rugcheck.test/v1")

    def test_assess_caches_successful_reports(self) -> None:
        http = _StubHttp([HttpResult(ok=True, status=200, data=_report())])
        checker = TokenChecker(http=http)
        first = asyncio.run(checker.assess("MintA"))
        second = asyncio.run(checker.assess("MintA"))
        self.assertTrue(first.ok)
        self.assertEqual(first.value, second.value)
        self.assertEqual(http.urls, ["https://rugcheck.test/v1/tokens/MintA/report"])
        self.assertEqual(checker.runtime_stats()["api_ok"], 1)

    def test_http_failure_is_unavailable_and_not_cached(self) -> None:
        http = _StubHttp(
            [
                HttpResult(ok=False, status=429, data=None, error="http_status_429"),
                HttpResult(ok=True, status=200, data=_report()),
            ]
        )
        checker = TokenChecker(http=http)
        failed = asyncio.run(checker.assess("MintA"))
        self.assertEqual(failed.status, "unavailable")
        self.assertEqual(failed.detail, "http_429")
        self.assertTrue(asyncio.run(checker.assess("MintA")).ok)
        stats = checker.runtime_stats(reset=True)
        self.assertEqual(stats["api_fail"], 1)
        self.assertEqual(stats["fail_reason_top"], "http_429")
        self.assertEqual(checker.runtime_stats()["checks_total"], 0)

    def test_empty_mint_is_malformed_without_http(self) -> None:
        http = _StubHttp([])
        checker = TokenChecker(http=http)
        self.assertEqual(asyncio.run(checker.assess("  ")).status, "malformed")
        self.assertEqual(http.urls, [])


if __name__ == "__main__":
    unittest.main()
