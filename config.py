import os

from dotenv import load_dotenv

load_dotenv()

# =========================
# Telegram
# =========================
BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")

# =========================
# DexScreener
# =========================
DEXSCREENER_API_URL = os.getenv("DEXSCREENER_API_URL", "https://api.dexscreener.com/latest").rstrip("/")
CHAIN_ID = (os.getenv("CHAIN_ID") or os.getenv("MONAD_CHAIN_ID", "monad")).strip().lower()
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "10"))  # seconds

# =========================
# Buy filter / polling
# =========================
MIN_BUY_USD = float(os.getenv("MIN_BUY_AMOUNT_USD", "100"))
POLL_INTERVAL_MS = int(os.getenv("POLLING_INTERVAL", "5000"))

# Snapshot cache: fresh for CACHE_TTL_MS, served stale on upstream errors up to CACHE_STALE_MS
CACHE_TTL_MS = int(os.getenv("CACHE_TTL_MS", "5000"))
CACHE_STALE_MS = int(os.getenv("CACHE_STALE_MS", "30000"))

# =========================
# Leaderboard / notifications
# =========================
LEADERBOARD_SIZE = int(os.getenv("LEADERBOARD_SIZE", "10"))
NOTIFY_QUEUE_SIZE = int(os.getenv("NOTIFY_QUEUE_SIZE", "1000"))

# =========================
# Web / runtime
# =========================
WEB_ENABLED = os.getenv("WEB_ENABLED", "1") == "1"
PORT = int(os.getenv("PORT", "8080"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def validate_config():
    if not BOT_TOKEN:
        raise RuntimeError("Missing TELEGRAM_BOT_TOKEN")
    if POLL_INTERVAL_MS <= 0:
        raise RuntimeError("POLLING_INTERVAL must be positive")
    if MIN_BUY_USD < 0:
        raise RuntimeError("MIN_BUY_AMOUNT_USD must not be negative")
