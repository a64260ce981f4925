"""Application configuration."""

import os
from pathlib import Path
from typing import List, Tuple

from dotenv import load_dotenv


def _load_dotenv_safe(dotenv_path: str | None = None, *, override: bool = False) -> None:
    """Load dotenv using UTF-8-SIG so BOM-prefixed files don't break first key parsing."""
    try:
        load_dotenv(dotenv_path=dotenv_path, override=override, encoding="utf-8-sig")
    except TypeError:
        # Older python-dotenv versions may not expose the `encoding` argument.
        load_dotenv(dotenv_path=dotenv_path, override=override)


# Base environment first, then the optional per-instance override file.
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


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _parse_trail_tiers(raw: str) -> List[Tuple[float, float]]:
    """Parse `minProfit:trail,...` pairs, highest threshold first."""
    out: List[Tuple[float, float]] = []
    for chunk in str(raw or "").split(","):
        item = chunk.strip()
        if not item or ":" not in item:
            continue
        profit_part, trail_part = item.split(":", 1)
        try:
            min_profit = float(profit_part.strip())
            trail = float(trail_part.strip())
        except ValueError:
            continue
        if trail <= 0 or trail >= 100:
            continue
        out.append((min_profit, trail))
    out.sort(key=lambda pair: pair[0], reverse=True)
    return out


# Telegram front end
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID", "").strip()

# Chain / wallet
PRIVATE_KEY = os.getenv("PRIVATE_KEY", "").strip()
BASE_RPC_URL = os.getenv("BASE_RPC_URL", "https://mainnet.base.org")
RPC_TIMEOUT_SECONDS = max(1, int(os.getenv("RPC_TIMEOUT_SECONDS", "20")))
EVM_CHAIN_ID = int(os.getenv("EVM_CHAIN_ID", "8453"))
CHAIN_ID = os.getenv("CHAIN_ID", "base").strip().lower()
USDC_ADDRESS = os.getenv("USDC_ADDRESS", "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913")
USDC_DECIMALS = int(os.getenv("USDC_DECIMALS", "6"))
TX_TIMEOUT_SECONDS = max(10, int(os.getenv("TX_TIMEOUT_SECONDS", "120")))
MAX_GAS_GWEI = max(0.0, float(os.getenv("MAX_GAS_GWEI", "2.0")))
PRIORITY_FEE_GWEI = max(0.0, float(os.getenv("PRIORITY_FEE_GWEI", "0.01")))
GAS_LIMIT_BUFFER = max(1.0, float(os.getenv("GAS_LIMIT_BUFFER", "1.3")))
EXPLORER_TX_URL_TEMPLATE = os.getenv("EXPLORER_TX_URL_TEMPLATE", "https://basescan.org/tx/{tx_hash}")

# Swap aggregator
ZEROX_API_KEY = os.getenv("ZEROX_API_KEY", "")
ZEROX_API_URL = os.getenv("ZEROX_API_URL", "https://base.api.0x.org").rstrip("/")
SLIPPAGE_BPS = max(1, int(os.getenv("SLIPPAGE_BPS", "100")))
DRY_RUN = _env_bool("DRY_RUN", "false")

# Price feed / HTTP
DEXSCREENER_API = os.getenv("DEXSCREENER_API", "https://api.dexscreener.com").rstrip("/")
DEX_TIMEOUT = int(os.getenv("DEX_TIMEOUT", "15"))
DEX_RETRIES = int(os.getenv("DEX_RETRIES", "3"))
HTTP_RETRY_ATTEMPTS = max(1, int(os.getenv("HTTP_RETRY_ATTEMPTS", "3")))
HTTP_BACKOFF_BASE_SECONDS = max(0.05, float(os.getenv("HTTP_BACKOFF_BASE_SECONDS", "0.50")))
HTTP_BACKOFF_MAX_SECONDS = max(0.10, float(os.getenv("HTTP_BACKOFF_MAX_SECONDS", "8.00")))
HTTP_JITTER_SECONDS = max(0.0, float(os.getenv("HTTP_JITTER_SECONDS", "0.25")))
HTTP_RATE_LIMIT_DELAY_SECONDS = max(0.0, float(os.getenv("HTTP_RATE_LIMIT_DELAY_SECONDS", "2.00")))

# Scheduler cadence
MONITOR_INTERVAL_SECONDS = max(1.0, float(os.getenv("MONITOR_INTERVAL_SECONDS", "30")))
BALANCE_CHECK_EVERY_TICKS = max(1, int(os.getenv("BALANCE_CHECK_EVERY_TICKS", "10")))
ADVISORY_EVERY_TICKS = max(0, int(os.getenv("ADVISORY_EVERY_TICKS", "20")))

# Lifecycle coordinator
ETH_WARN_THRESHOLD = max(0.0, float(os.getenv("ETH_WARN_THRESHOLD", "0.001")))
LOW_BALANCE_WARN_COOLDOWN_SECONDS = max(1, int(os.getenv("LOW_BALANCE_WARN_COOLDOWN_SECONDS", "3600")))
REENTRY_COOLDOWN_SECONDS = max(0, int(os.getenv("REENTRY_COOLDOWN_SECONDS", "30")))
MAX_POSITIONS = max(1, int(os.getenv("MAX_POSITIONS", "5")))
TRADE_PERCENT = min(100.0, max(0.0, float(os.getenv("TRADE_PERCENT", "10"))))
MIN_USDC_BALANCE = max(0.0, float(os.getenv("MIN_USDC_BALANCE", "10")))

# Exit rules
STOP_LOSS_PERCENT = max(0.1, float(os.getenv("STOP_LOSS_PERCENT", "5")))
TAKE_PROFIT_PERCENT = max(0.1, float(os.getenv("TAKE_PROFIT_PERCENT", "20")))
MILESTONE_STEP_PERCENT = max(1.0, float(os.getenv("MILESTONE_STEP_PERCENT", "25")))
TRAIL_TIERS = _parse_trail_tiers(os.getenv("TRAIL_TIERS", "100:5,50:10,0:20"))
DEFAULT_TRAIL_PERCENT = min(99.0, max(0.1, float(os.getenv("DEFAULT_TRAIL_PERCENT", "20"))))
BUYBACK_PERCENT = max(0.1, float(os.getenv("BUYBACK_PERCENT", "10")))
BUYBACK_NOTIFY_PERCENT = max(1.0, float(os.getenv("BUYBACK_NOTIFY_PERCENT", "25")))
BUYBACK_USDC_PER_BUY = max(0.0, float(os.getenv("BUYBACK_USDC_PER_BUY", "25")))
BUYBACK_TOTAL_BUDGET = max(0.0, float(os.getenv("BUYBACK_TOTAL_BUDGET", "100")))

# Single-focus token pre-seeded at startup
FOCUSED_TOKEN = os.getenv("FOCUSED_TOKEN", "").strip()

# Store
DATA_DIR = os.getenv("DATA_DIR", "data")
HISTORY_MAX_ENTRIES = max(1, int(os.getenv("HISTORY_MAX_ENTRIES", "100")))

# Advisory model
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
AI_MODEL = os.getenv("AI_MODEL", "claude-haiku-4-5-20251001")
AI_TIMEOUT_SECONDS = max(1.0, float(os.getenv("AI_TIMEOUT_SECONDS", "30")))
AI_MAX_TOKENS = max(64, int(os.getenv("AI_MAX_TOKENS", "768")))

# Logging
LOG_DIR = os.getenv("LOG_DIR", "logs")
APP_LOG_FILE = os.getenv("APP_LOG_FILE", os.path.join(LOG_DIR, "app.log"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
