"""Shared aiohttp client for the price, listing, safety and swap-routing APIs.

Each upstream is addressed by a ``source`` name and gets its own lane: a
concurrency cap, a 429 cooldown window and counters that are drained once per
tick into the ``TICK_SOURCES`` log line. Transport failures and bodies that do
not decode are reported separately so callers can map them onto
``FeedResult.unavailable`` and ``FeedResult.malformed``.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any

import aiohttp

import config

logger = logging.getLogger(__name__)


@dataclass
class HttpResult:
    ok: bool
    status: int
    data: Any | None
    error: str = ""
    malformed: bool = False

    def describe(self) -> str:
        if self.ok:
            return "ok"
        return self.error or f"http_status_{self.status}"


def is_retryable(status: int) -> bool:
    # status 0 means the request never produced a response.
    return status == 0 or status == 429 or 500 <= status <= 599


def backoff_delay(attempt: int, status: int, jitter: float | None = None) -> float:
    base = float(config.HTTP_BACKOFF_BASE_SECONDS)
    cap = max(base, float(config.HTTP_BACKOFF_MAX_SECONDS))
    delay = min(cap, base * (2 ** max(0, attempt - 1)))
    if status == 429:
        delay = min(cap, delay + float(config.HTTP_RATE_LIMIT_DELAY_SECONDS))
    if jitter is None:
        jitter = random.uniform(0.0, float(config.HTTP_JITTER_SECONDS))
    return max(0.01, delay + jitter)


class _SourceLane:
    def __init__(self, name: str, limit: int) -> None:
        self.name = name
        self.semaphore = asyncio.Semaphore(max(1, int(limit)))
        self.cooldown_until = 0.0
        self.reset()

    def reset(self) -> None:
        self.ok = 0
        self.fail = 0
        self.malformed = 0
        self.rate_limited = 0
        self.retries = 0
        self.latency_total_ms = 0.0
        self.latency_count = 0

    def observe(self, started: float) -> None:
        self.latency_total_ms += max(0.0, (time.perf_counter() - started) * 1000.0)
        self.latency_count += 1

    def start_cooldown(self, response: aiohttp.ClientResponse) -> float:
        retry_after = 0.0
        raw = (response.headers or {}).get("Retry-After", "")
        try:
            retry_after = max(0.0, float(raw)) if raw else 0.0
        except ValueError:
            retry_after = 0.0
        configured = config.HTTP_SOURCE_429_COOLDOWNS.get(self.name, config.HTTP_429_COOLDOWN_SECONDS)
        seconds = max(float(configured), retry_after)
        self.cooldown_until = max(self.cooldown_until, time.monotonic() + seconds)
        return seconds

    async def wait_cooldown(self) -> None:
        wait_for = self.cooldown_until - time.monotonic()
        if wait_for > 0:
            logger.debug("HTTP_COOLDOWN_WAIT source=%s wait=%.2fs", self.name, wait_for)
            await asyncio.sleep(wait_for)

    def snapshot(self) -> dict[str, int | float]:
        total = self.ok + self.fail
        return {
            "ok": self.ok,
            "fail": self.fail,
            "malformed": self.malformed,
            "rate_limited": self.rate_limited,
            "retries": self.retries,
            "error_percent": round((self.fail / total * 100.0) if total else 0.0, 2),
            "latency_avg_ms": round(self.latency_total_ms / self.latency_count, 2) if self.latency_count else 0.0,
        }


class ResilientHttpClient:
    def __init__(
        self,
        timeout_seconds: float,
        headers: dict[str, str] | None = None,
        source_limits: dict[str, int] | None = None,
    ) -> None:
        self._timeout = aiohttp.ClientTimeout(total=max(1.0, float(timeout_seconds)))
        self._headers = dict(headers or {})
        self._source_limits = {str(k).lower(): int(v) for k, v in (source_limits or {}).items()}
        self._session: aiohttp.ClientSession | None = None
        self._lanes: dict[str, _SourceLane] = {}

    async def close(self) -> None:
        session, self._session = self._session, None
        if session is not None and not session.closed:
            await session.close()

    def _lane(self, source: str) -> _SourceLane:
        name = str(source or "default").strip().lower() or "default"
        lane = self._lanes.get(name)
        if lane is None:
            lane = _SourceLane(name, self._source_limits.get(name, config.HTTP_DEFAULT_CONCURRENCY))
            self._lanes[name] = lane
        return lane

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=max(1, int(config.HTTP_CONNECTOR_LIMIT)))
            self._session = aiohttp.ClientSession(timeout=self._timeout, connector=connector, headers=self._headers)
        return self._session

    def snapshot_stats(self, reset: bool = False) -> dict[str, dict[str, int | float]]:
        out = {name: lane.snapshot() for name, lane in self._lanes.items()}
        if reset:
            for lane in self._lanes.values():
                lane.reset()
        return out

    async def get_json(
        self,
        url: str,
        *,
        source: str = "default",
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        max_attempts: int | None = None,
    ) -> HttpResult:
        return await self._request("GET", url, source, params=params, headers=headers, max_attempts=max_attempts)

    async def post_json(
        self,
        url: str,
        payload: Any,
        *,
        source: str = "default",
        headers: dict[str, str] | None = None,
        max_attempts: int | None = None,
    ) -> HttpResult:
        return await self._request("POST", url, source, json_body=payload, headers=headers, max_attempts=max_attempts)

    async def _request(
        self,
        method: str,
        url: str,
        source: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
        max_attempts: int | None = None,
    ) -> HttpResult:
        attempts = max(1, int(max_attempts or config.HTTP_RETRY_ATTEMPTS))
        lane = self._lane(source)
        result = HttpResult(ok=False, status=0, data=None, error="http_exhausted")
        for attempt in range(1, attempts + 1):
            await lane.wait_cooldown()
            async with lane.semaphore:
                result = await self._attempt(lane, method, url, params, json_body, headers)
            if result.ok or result.malformed:
                return result
            if not is_retryable(result.status) or attempt >= attempts:
                lane.fail += 1
                return result
            lane.retries += 1
            delay = backoff_delay(attempt, result.status)
            logger.debug(
                "HTTP_RETRY source=%s method=%s attempt=%s/%s error=%s delay=%.2fs",
                lane.name,
                method,
                attempt,
                attempts,
                result.describe(),
                delay,
            )
            await asyncio.sleep(delay)
        return result

    async def _attempt(
        self,
        lane: _SourceLane,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        json_body: Any,
        headers: dict[str, str] | None,
    ) -> HttpResult:
        started = time.perf_counter()
        try:
            session = await self._get_session()
            async with session.request(method, url, params=params, json=json_body, headers=headers) as response:
                status = int(response.status or 0)
                if status == 429:
                    lane.rate_limited += 1
                    seconds = lane.start_cooldown(response)
                    logger.warning("RATE_LIMIT source=%s status=429 cooldown=%.1fs", lane.name, seconds)
                if not 200 <= status < 300:
                    return HttpResult(ok=False, status=status, data=None, error=f"http_status_{status}")
                try:
                    payload = await response.json(content_type=None)
                except ValueError as exc:
                    lane.malformed += 1
                    lane.fail += 1
                    return HttpResult(ok=False, status=status, data=None, error=f"invalid_json:{exc}", malformed=True)
                lane.ok += 1
                return HttpResult(ok=True, status=status, data=payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            return HttpResult(ok=False, status=0, data=None, error=f"http_error:{exc.__class__.__name__}:{exc}")
        finally:
            lane.observe(started)
