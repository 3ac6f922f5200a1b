"""Application configuration."""

import os
from pathlib import Path
from typing import Dict, Tuple

from dotenv import load_dotenv


def _load_dotenv_safe(dotenv_path: str | None = None, *, override: bool = False) -> None:
    """Load dotenv using UTF-8-SIG so BOM-prefixed files don't break first key parsing."""
    try:
        load_dotenv(dotenv_path=dotenv_path, override=override, encoding="utf-8-sig")
    except TypeError:
        # Older python-dotenv versions may not expose the `encoding` argument.
        load_dotenv(dotenv_path=dotenv_path, override=override)


# Load base environment first, then optional per-instance override env file.
_load_dotenv_safe()
_BOT_ENV_FILE = os.getenv("BOT_ENV_FILE", "").strip()
if _BOT_ENV_FILE:
    _bot_env_path = Path(_BOT_ENV_FILE).expanduser()
    if not _bot_env_path.is_absolute():
        _bot_env_path = (Path.cwd() / _bot_env_path).resolve()
    if not _bot_env_path.exists():
        raise FileNotFoundError(f"BOT_ENV_FILE does not exist: {_bot_env_path}")
    if not _bot_env_path.is_file():
        raise IsADirectoryError(f"BOT_ENV_FILE is not a file: {_bot_env_path}")
    try:
        _load_dotenv_safe(str(_bot_env_path), override=True)
    except (OSError, UnicodeError, ValueError) as exc:
        raise RuntimeError(f"Failed to load BOT_ENV_FILE '{_bot_env_path}': {exc}") from exc


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "y", "on")


def _parse_source_float_map(raw: str) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for chunk in str(raw or "").split(","):
        item = chunk.strip()
        if not item or ":" not in item:
            continue
        source_part, value_part = item.split(":", 1)
        source = source_part.strip().lower()
        if not source:
            continue
        try:
            out[source] = max(0.0, float(value_part.strip()))
        except ValueError:
            continue
    return out


def _parse_preset_bands(raw: str) -> Dict[str, Tuple[float, float]]:
    """Parse `safe:0.1-1,medium:5-50` into {mode: (min, max)}."""
    out: Dict[str, Tuple[float, float]] = {}
    for chunk in str(raw or "").split(","):
        item = chunk.strip()
        if not item or ":" not in item:
            continue
        mode_part, band_part = item.split(":", 1)
        mode = mode_part.strip().lower()
        if not mode or "-" not in band_part:
            continue
        low_part, high_part = band_part.split("-", 1)
        try:
            low = max(0.0, float(low_part.strip()))
            high = max(low, float(high_part.strip()))
        except ValueError:
            continue
        out[mode] = (low, high)
    return out


# Chain / custody
SOLANA_RPC_URL = os.getenv("SOLANA_RPC_URL", os.getenv("RPC_URL", "https://api.mainnet-beta.solana.com")).strip()
SOLANA_COMMITMENT = os.getenv("SOLANA_COMMITMENT", "processed").strip().lower()
BOT_PRIVATE_KEY = os.getenv("BOT_PRIVATE_KEY", os.getenv("BOT_KEY", "")).strip()
SOL_MINT = "So11111111111111111111111111111111111111112"
LAMPORTS_PER_SOL = 1_000_000_000
CHAIN_ID = os.getenv("CHAIN_ID", "solana").strip().lower()

# Persistence
STATE_DIR = os.getenv("STATE_DIR", os.path.join("data", "state"))
STATE_LOCK_TIMEOUT_SECONDS = max(0.05, float(os.getenv("STATE_LOCK_TIMEOUT_SECONDS", "2.0")))
LEDGER_MAX_ENTRIES = max(1, int(os.getenv("LEDGER_MAX_ENTRIES", "200")))
STATS_RECENT_TRADES = max(1, int(os.getenv("STATS_RECENT_TRADES", "50")))
TICK_LEASE_TTL_SECONDS = max(5, int(os.getenv("TICK_LEASE_TTL_SECONDS", "300")))

# Settings defaults (used when the stored document is missing or malformed)
DEFAULT_RISK_MODE = os.getenv("DEFAULT_RISK_MODE", "safe").strip().lower()
DEFAULT_CUSTOM_FIAT_AMOUNT = float(os.getenv("DEFAULT_CUSTOM_FIAT_AMOUNT", "1.0"))

# Tick engine
TICK_INTERVAL_SECONDS = max(5, int(os.getenv("TICK_INTERVAL_SECONDS", "60")))
CANDIDATE_LIMIT = max(1, int(os.getenv("CANDIDATE_LIMIT", "5")))
TIME_STOP_MINUTES = max(1.0, float(os.getenv("TIME_STOP_MINUTES", "60")))
EXIT_DECAY_FRACTION = min(1.0, max(0.0, float(os.getenv("EXIT_DECAY_FRACTION", "0.02"))))
BASE_PRICE_FALLBACK_USD = max(0.0, float(os.getenv("BASE_PRICE_FALLBACK_USD", "0")))

# Sizing
WALLET_FRACTION_CAP = min(1.0, max(0.0, float(os.getenv("WALLET_FRACTION_CAP", "0.10"))))
CUSTOM_MIN_FIAT_AMOUNT = max(0.0, float(os.getenv("CUSTOM_MIN_FIAT_AMOUNT", "0.01")))
RISK_PRESET_BANDS = _parse_preset_bands(
    os.getenv("RISK_PRESET_BANDS", "safe:0.10-1,medium:5-50,aggressive:100-500")
)

# Safety screening
SAFETY_MIN_SCORE = float(os.getenv("SAFETY_MIN_SCORE", "70"))
SAFETY_CACHE_TTL_SECONDS = max(0, int(os.getenv("SAFETY_CACHE_TTL_SECONDS", "900")))
RUGCHECK_API = os.getenv("RUGCHECK_API", "https://api.rugcheck.xyz/v1").rstrip("/")

# Market data
DEXSCREENER_API = os.getenv("DEXSCREENER_API", "https://api.dexscreener.com/latest/dex").rstrip("/")
DEX_SEARCH_QUERIES = [
    q.strip()
    for q in os.getenv("DEX_SEARCH_QUERIES", "solana").split(",")
    if q.strip()
] or ["solana"]
JUPITER_PRICE_API = os.getenv("JUPITER_PRICE_API", "https://lite-api.jup.ag/price/v3").rstrip("/")
NEW_PAIR_MAX_AGE_MINUTES = max(1, int(os.getenv("NEW_PAIR_MAX_AGE_MINUTES", "60")))
NEW_PAIR_MIN_LIQUIDITY_USD = max(0.0, float(os.getenv("NEW_PAIR_MIN_LIQUIDITY_USD", "0")))

# Swap venue
JUPITER_SWAP_API = os.getenv("JUPITER_SWAP_API", "https://lite-api.jup.ag/swap/v1").rstrip("/")
SWAP_SLIPPAGE_BPS = max(1, int(os.getenv("SWAP_SLIPPAGE_BPS", "10")))
SWAP_SUBMIT_RETRIES = max(1, int(os.getenv("SWAP_SUBMIT_RETRIES", "3")))
SWAP_SUBMIT_BACKOFF_SECONDS = max(0.0, float(os.getenv("SWAP_SUBMIT_BACKOFF_SECONDS", "0.5")))
SWAP_SKIP_PREFLIGHT = _env_bool("SWAP_SKIP_PREFLIGHT", "true")
SETTLEMENT_TIMEOUT_SECONDS = max(30, int(os.getenv("SETTLEMENT_TIMEOUT_SECONDS", "180")))

# HTTP
HTTP_TIMEOUT_SECONDS = max(1.0, float(os.getenv("HTTP_TIMEOUT_SECONDS", "10")))
HTTP_CONNECTOR_LIMIT = max(1, int(os.getenv("HTTP_CONNECTOR_LIMIT", "30")))
HTTP_DEFAULT_CONCURRENCY = max(1, int(os.getenv("HTTP_DEFAULT_CONCURRENCY", "4")))
HTTP_RETRY_ATTEMPTS = max(1, int(os.getenv("HTTP_RETRY_ATTEMPTS", "3")))
HTTP_BACKOFF_BASE_SECONDS = max(0.05, float(os.getenv("HTTP_BACKOFF_BASE_SECONDS", "0.50")))
HTTP_BACKOFF_MAX_SECONDS = max(0.10, float(os.getenv("HTTP_BACKOFF_MAX_SECONDS", "8.00")))
HTTP_JITTER_SECONDS = max(0.0, float(os.getenv("HTTP_JITTER_SECONDS", "0.25")))
HTTP_RATE_LIMIT_DELAY_SECONDS = max(0.0, float(os.getenv("HTTP_RATE_LIMIT_DELAY_SECONDS", "2.00")))
HTTP_429_COOLDOWN_SECONDS = max(0.0, float(os.getenv("HTTP_429_COOLDOWN_SECONDS", "30")))
HTTP_SOURCE_429_COOLDOWNS = _parse_source_float_map(
    os.getenv("HTTP_SOURCE_429_COOLDOWNS", "dexscreener:20,jupiter:10,rugcheck:60")
)

# Notifications
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
TELEGRAM_DEFAULT_CHAT_ID = os.getenv("TELEGRAM_DEFAULT_CHAT_ID", "").strip()
NOTIFY_TIMEOUT_SECONDS = max(1.0, float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "10")))
EXPLORER_TX_URL_TEMPLATE = os.getenv("EXPLORER_TX_URL_TEMPLATE", "https://solscan.io/tx/{signature}")
DEXSCREENER_TOKEN_URL_TEMPLATE = os.getenv(
    "DEXSCREENER_TOKEN_URL_TEMPLATE",
    "https://dexscreener.com/solana/{token_mint}",
)

# Control surface
CONTROL_HOST = os.getenv("CONTROL_HOST", "127.0.0.1").strip()
CONTROL_PORT = int(os.getenv("CONTROL_PORT", "8787"))
CONTROL_API_TOKEN = os.getenv("CONTROL_API_TOKEN", "").strip()

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")
APP_LOG_FILE = os.path.join(LOG_DIR, "app.log")
