"""
config.py — Centralized configuration for the Race Alert Bot.

All settings are loaded from environment variables (a local ``.env`` file is
honoured).  Sensible defaults are provided so the bot works out of the box;
features whose credentials are missing quietly switch themselves off.
"""

import os

from dotenv import load_dotenv

load_dotenv(override=False)  # Don't override existing env vars


def _csv(name: str) -> list[str]:
    return [v.strip() for v in os.environ.get(name, "").split(",") if v.strip()]


def _bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


# ── Telegram Settings ────────────────────────────────────────────────────────
TELEGRAM_BOT_TOKEN: str = os.environ.get("TELEGRAM_BOT_TOKEN", "")
# Chat that receives race alerts and price-movement alerts.
NOTIFICATION_CHAT_ID: str = os.environ.get("NOTIFICATION_CHAT_ID", "")
# Comma-separated chat ids allowed to submit screenshots.  Empty = any chat.
ALLOWED_CHAT_IDS: list[str] = _csv("ALLOWED_CHAT_IDS")

# ── Vision / LLM Settings ────────────────────────────────────────────────────
OPENAI_API_KEY: str = os.environ.get("OPENAI_API_KEY", "")
OPENAI_BASE_URL: str = os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1")
VISION_MODEL: str = os.environ.get("VISION_MODEL", "gpt-4o")
VISION_MAX_TOKENS: int = int(os.environ.get("VISION_MAX_TOKENS", "1000"))

# ── Odds Provider Settings ───────────────────────────────────────────────────
ODDS_API_TOKEN: str = os.environ.get("ODDS_API_TOKEN", "")
ODDS_API_BASE: str = os.environ.get("ODDS_API_BASE", "https://api.b365api.com")
# Provider sport id for horse racing.
ODDS_SPORT_ID: str = os.environ.get("ODDS_SPORT_ID", "2")

# ── Track Filter (optional) ──────────────────────────────────────────────────
# Comma-separated track names.  If set, only races whose name or track
# contains one of them (case-insensitive) are scheduled and price-monitored.
# Example: "flemington,randwick,moonee valley"
TRACK_ALLOWLIST: list[str] = _csv("TRACK_ALLOWLIST")

# ── Time ─────────────────────────────────────────────────────────────────────
# Every race time is interpreted and displayed in this zone.
TIMEZONE: str = os.environ.get("TIMEZONE", "Australia/Melbourne")

# ── Race Alerts ──────────────────────────────────────────────────────────────
ALERT_CHECK_INTERVAL_SECONDS: int = int(os.environ.get("ALERT_CHECK_INTERVAL_SECONDS", "30"))
#    Alert when a race is at most this many minutes away.
ALERT_LEAD_MINUTES: float = float(os.environ.get("ALERT_LEAD_MINUTES", "5"))
#    Forget a race once it started more than this many minutes ago.
ALERT_GRACE_MINUTES: float = float(os.environ.get("ALERT_GRACE_MINUTES", "10"))
#    False: a race counts as alerted only after Telegram accepted the message,
#    so a failed send is retried on the next check.  True: at most one attempt.
ALERT_MARK_BEFORE_SEND: bool = _bool("ALERT_MARK_BEFORE_SEND")

# ── Odds Monitor ─────────────────────────────────────────────────────────────
#    Must stay below the width of the baseline window (115-125s) or races can
#    step over it without a capture.
ODDS_POLL_INTERVAL_SECONDS: int = int(os.environ.get("ODDS_POLL_INTERVAL_SECONDS", "5"))
#    Baseline prices are captured once, when a race is this many seconds out.
BASELINE_WINDOW_START_SECONDS: float = float(os.environ.get("BASELINE_WINDOW_START_SECONDS", "115"))
BASELINE_WINDOW_END_SECONDS: float = float(os.environ.get("BASELINE_WINDOW_END_SECONDS", "125"))
#    Races further out than this are ignored by the odds monitor.
ODDS_MONITOR_WINDOW_SECONDS: float = float(os.environ.get("ODDS_MONITOR_WINDOW_SECONDS", "180"))
#    Relative price change (%) against the baseline that triggers an alert.
MOVEMENT_THRESHOLD_PERCENT: float = float(os.environ.get("MOVEMENT_THRESHOLD_PERCENT", "20"))
#    "both" flags firming and drifting runners, "shorten" only firming ones.
MOVEMENT_DIRECTION: str = os.environ.get("MOVEMENT_DIRECTION", "both").strip().lower()
PRICE_HISTORY_SIZE: int = int(os.environ.get("PRICE_HISTORY_SIZE", "10"))
PRICE_RETENTION_MINUTES: float = float(os.environ.get("PRICE_RETENTION_MINUTES", "30"))
#    The movement-alert dedup set is cleared wholesale past this size.
ALERT_DEDUP_CEILING: int = int(os.environ.get("ALERT_DEDUP_CEILING", "1000"))

# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

# ── HTTP Settings ────────────────────────────────────────────────────────────
REQUEST_TIMEOUT: int = int(os.environ.get("REQUEST_TIMEOUT", "30"))
MAX_RETRIES: int = int(os.environ.get("MAX_RETRIES", "3"))
