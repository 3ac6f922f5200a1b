"""Entry point for the Solana tick agent."""

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler

import config
from api.control_server import ControlServer
from config import APP_LOG_FILE, LOG_DIR, LOG_LEVEL
from monitor.market_oracle import MarketOracle
from monitor.notifier import TelegramNotifier
from monitor.token_checker import TokenChecker
from storage.blob_store import FileBlobStore
from storage.state_store import StateStore
from trading.errors import ConfigurationError
from trading.swap_executor import SwapExecutor
from trading.tick_engine import TickEngine, TickReport
from trading.wallet import SolanaWallet


def configure_logging() -> None:
    os.makedirs(LOG_DIR, exist_ok=True)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = RotatingFileHandler(APP_LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    # Avoid leaking bot token in verbose transport logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("telegram").setLevel(logging.INFO)


logger = logging.getLogger(__name__)


def _merge_source_stats(*parts: dict[str, dict[str, int | float]]) -> dict[str, dict[str, int | float]]:
    merged: dict[str, dict[str, int | float]] = {}
    for block in parts:
        for source, row in (block or {}).items():
            cur = merged.setdefault(source, {"ok": 0, "fail": 0, "rate_limited": 0, "retries": 0})
            for key in ("ok", "fail", "rate_limited", "retries"):
                cur[key] = int(cur[key]) + int(row.get(key, 0))
    for row in merged.values():
        total = int(row["ok"]) + int(row["fail"])
        row["error_percent"] = round((float(row["fail"]) / total * 100.0) if total > 0 else 0.0, 2)
    return merged


def _format_source_stats_brief(source_stats: dict[str, dict[str, int | float]]) -> str:
    if not source_stats:
        return "none"
    parts: list[str] = []
    for source in sorted(source_stats.keys()):
        row = source_stats.get(source) or {}
        parts.append(
            (
                f"{source}:ok={int(row.get('ok', 0))}"
                f"/fail={int(row.get('fail', 0))}"
                f"/429={int(row.get('rate_limited', 0))}"
                f"/err={float(row.get('error_percent', 0.0)):.1f}%"
            )
        )
    return "; ".join(parts)


@dataclass
class Runtime:
    store: StateStore
    oracle: MarketOracle
    screener: TokenChecker
    wallet: SolanaWallet
    executor: SwapExecutor
    notifier: TelegramNotifier
    engine: TickEngine

    async def run_tick(self) -> TickReport:
        report = await self.engine.run_tick()
        source_stats = _merge_source_stats(self.oracle.runtime_stats(reset=True), self.executor.runtime_stats(reset=True))
        safety = self.screener.runtime_stats(reset=True)
        logger.info(
            "TICK_SOURCES sources=%s safety_checks=%s safety_fail=%s",
            _format_source_stats_brief(source_stats),
            safety.get("checks_total", 0),
            safety.get("api_fail", 0),
        )
        return report

    async def close(self) -> None:
        for closer in (self.oracle.close, self.screener.close, self.executor.close, self.wallet.close, self.notifier.close):
            try:
                await closer()
            except Exception:
                logger.exception("Shutdown close failed")


def build_runtime() -> Runtime:
    """Wire collaborators from config. Raises ConfigurationError on bad key or storage setup."""
    store = StateStore(FileBlobStore(config.STATE_DIR))
    wallet = SolanaWallet()
    oracle = MarketOracle()
    screener = TokenChecker()
    executor = SwapExecutor(wallet)
    notifier = TelegramNotifier()
    engine = TickEngine(store, oracle, screener, executor, wallet, notifier)
    logger.info("RUNTIME_READY wallet=%s state_dir=%s rpc=%s", wallet.address, config.STATE_DIR, config.SOLANA_RPC_URL)
    return Runtime(store, oracle, screener, wallet, executor, notifier, engine)


async def run_single_tick() -> int:
    runtime = build_runtime()
    try:
        report = await runtime.run_tick()
    finally:
        await runtime.close()
    print(f"{report.status}: {report.message}")
    return 0 if report.status_code == 200 else 1


async def tick_loop(runtime: Runtime, interval_seconds: int) -> None:
    while True:
        try:
            await runtime.run_tick()
        except Exception:
            logger.exception("Tick loop error")
        await asyncio.sleep(interval_seconds)


async def serve(interval_seconds: int | None) -> int:
    runtime = build_runtime()
    server = ControlServer(runtime.store, runtime, runtime.notifier)
    await server.start()
    loop_task: asyncio.Task | None = None
    if interval_seconds:
        loop_task = asyncio.create_task(tick_loop(runtime, interval_seconds))
        logger.info("Tick loop started interval=%ss", interval_seconds)
    try:
        await asyncio.Event().wait()
    finally:
        if loop_task:
            loop_task.cancel()
            try:
                await loop_task
            except asyncio.CancelledError:
                pass
        await server.stop()
        await runtime.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Periodic Solana memecoin tick agent")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("tick", help="Run one tick and exit (cron trigger)")
    serve_parser = sub.add_parser("serve", help="Run the control server")
    serve_parser.add_argument(
        "--interval",
        type=int,
        nargs="?",
        const=config.TICK_INTERVAL_SECONDS,
        default=None,
        help="Also run ticks internally every N seconds (default TICK_INTERVAL_SECONDS)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    try:
        if args.command == "tick":
            return asyncio.run(run_single_tick())
        return asyncio.run(serve(args.interval))
    except ConfigurationError as exc:
        logger.error("CONFIG_ERROR %s", exc)
        return 2
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0


if __name__ == "__main__":
    sys.exit(main())
