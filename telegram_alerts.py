"""
telegram_alerts.py — Format and send the bot's Telegram messages.

Message formats:

  🔔 RACE ALERT!
  🏇 Flemington R4 starts in 5 minutes!
  ⏰ Race time: 14:30 (Australia/Melbourne)

  📉 PRICE MOVE — pre-start
  🏇 Flemington - Race 4  |  starts in 25s
  ────────────────────────────────
  #3 Fast Horse   4.50 → 3.20  (−28.9%)

Sending is synchronous from the caller's point of view: each message is
delivered on a short-lived event loop, so the periodic checks can call
``send_message`` from worker threads.  Without a bot token, messages are
printed to the console instead.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime
from typing import Callable

import telegram
from telegram.constants import ParseMode

import config
from odds_monitor import Checkpoint, UpcomingRace
from price_baselines import MovementRecord, PriceSeries
from race_schedule import EventRecord

logger = logging.getLogger(__name__)

TELEGRAM_MAX_LEN = 4096

CHECKPOINT_LABELS = {
    "pre":  "pre-start",
    "post": "after the jump",
}


# ── HTML helpers ──────────────────────────────────────────────────────────────

def _esc(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _trunc(text: str, max_len: int) -> str:
    return text if len(text) <= max_len else text[:max_len - 1] + "…"


def _hhmm(dt: datetime | None) -> str:
    return dt.strftime("%H:%M") if dt else "--:--"


def _countdown(seconds: float) -> str:
    if seconds < 0:
        return f"started {abs(seconds):.0f}s ago"
    if seconds < 120:
        return f"starts in {seconds:.0f}s"
    return f"starts in {math.ceil(seconds / 60)} min"


# ── Race alerts ───────────────────────────────────────────────────────────────

def format_race_alert(record: EventRecord, now: datetime) -> str:
    minutes = max(1, math.ceil(record.minutes_until(now)))
    name_line = ""
    if record.has_real_name and record.display_name != record.identifier:
        name_line = f"\n🏁 Race: {_esc(_trunc(record.display_name, 120))}"
    return (
        "🔔 <b>RACE ALERT!</b>\n\n"
        f"🏇 <b>{_esc(record.identifier)}</b> starts in <b>{minutes} minute"
        f"{'' if minutes == 1 else 's'}</b>!\n"
        f"⏰ Race time: {_hhmm(record.scheduled_at)} ({_esc(config.TIMEZONE)})"
        f"{name_line}\n\n"
        "🎯 Get ready to place your bets!"
    )


# ── Price-movement alerts ─────────────────────────────────────────────────────

def _movement_line(m: MovementRecord) -> str:
    number = f"#{m.runner_number} " if m.runner_number is not None else ""
    sign = "−" if m.direction == "in" else "+"
    arrow = "🟢" if m.direction == "in" else "🔴"
    return (
        f"{arrow} {number}<b>{_esc(_trunc(m.runner_label, 40))}</b>  "
        f"{m.baseline_price:.2f} → {m.current_price:.2f}  ({sign}{m.change_percent:.1f}%)"
    )


def format_movement_alert(
    race: UpcomingRace,
    checkpoint: Checkpoint,
    movements: list[MovementRecord],
    now: datetime,
) -> str:
    label = CHECKPOINT_LABELS.get(checkpoint.name, checkpoint.name)
    header = "📉" if all(m.direction == "in" for m in movements) else "📊"
    lines = [
        f"{header} <b>PRICE MOVE — {_esc(label)}</b>",
        f"🏇 {_esc(_trunc(race.label, 80))}  |  {_countdown(race.seconds_to_start(now))}",
        "─" * 32,
    ]
    lines += [_movement_line(m) for m in movements]
    lines.append(f"\n<i>Threshold: {config.MOVEMENT_THRESHOLD_PERCENT:.0f}% vs baseline</i>")
    return "\n".join(lines)


# ── Command replies ───────────────────────────────────────────────────────────

def format_help(now: datetime, vision_enabled: bool) -> str:
    return (
        "🤖 <b>Racing Bot — AI Screenshot Analysis &amp; Alerts</b>\n\n"
        "📸 <b>Upload a racing screenshot</b> and I'll read the race times from it.\n\n"
        "🔔 <b>Notifications:</b>\n"
        f"  • Alert {config.ALERT_LEAD_MINUTES:g} minutes before each race\n"
        f"  • Price-move alerts at ≥{config.MOVEMENT_THRESHOLD_PERCENT:.0f}% vs baseline\n\n"
        f"🕐 <b>Current time:</b> {now.strftime('%Y-%m-%d %H:%M:%S')} ({_esc(config.TIMEZONE)})\n"
        f"🤖 <b>AI:</b> {'✅ enabled' if vision_enabled else '❌ set OPENAI_API_KEY'}\n\n"
        "<b>Commands:</b>\n"
        "  • /clear — remove all race notifications\n"
        "  • /status — list scheduled race alerts\n"
        "  • /tracking — list races being price-monitored"
    )


def format_clear(count: int) -> str:
    return (
        f"🗑️ <b>Cleared {count} race notification{'' if count == 1 else 's'}!</b>\n\n"
        "Upload a new racing screenshot to set up fresh alerts."
    )


def format_status(records: list[EventRecord], now: datetime) -> str:
    if not records:
        return "📊 <b>No active race notifications</b>\n\n📸 Upload a racing screenshot to set some up!"
    lines = [f"📊 <b>Active Race Notifications ({len(records)}):</b>\n"]
    for r in records:
        alert_in = max(0, math.floor(r.minutes_until(now) - config.ALERT_LEAD_MINUTES))
        lines.append(f"🏇 <b>{_esc(r.identifier)}</b> — {_hhmm(r.scheduled_at)}")
        lines.append(f"   ⏰ Alert in {alert_in} min")
    lines.append("\nUse /clear to remove all notifications")
    return _trunc("\n".join(lines), TELEGRAM_MAX_LEN)


def format_tracking(series: list[PriceSeries], now: datetime, monitor_enabled: bool) -> str:
    if not monitor_enabled:
        return "📈 <b>Odds monitor is off</b> (no odds API token or notification chat configured)."
    if not series:
        return "📈 <b>No races are being price-monitored right now.</b>"
    lines = [f"📈 <b>Price Tracking ({len(series)}):</b>\n"]
    for s in series:
        when = _countdown((s.starts_at - now).total_seconds()) if s.starts_at else "start unknown"
        if s.baseline:
            base = f"baseline {len(s.baseline)} runners @ {s.baseline_at.strftime('%H:%M:%S')}"
        else:
            base = "waiting for baseline"
        lines.append(f"🏇 <b>{_esc(_trunc(s.label or s.event_id, 60))}</b> — {when}")
        lines.append(f"   {base}, {len(s.history)} snapshot(s)")
    return _trunc("\n".join(lines), TELEGRAM_MAX_LEN)


def format_analysis_reply(analysis: str, added: list[EventRecord], found: int, now: datetime) -> str:
    parts = [
        "🏇 <b>Racing Screenshot Analyzed!</b>\n",
        f"🤖 <b>Analysis:</b>\n<pre>{_esc(_trunc(analysis, 400))}</pre>\n",
    ]
    if added:
        parts.append(f"⏰ <b>Race Times ({_esc(config.TIMEZONE)}):</b>")
        for r in added:
            mins = math.ceil(r.minutes_until(now))
            parts.append(f"  • {_esc(r.identifier)}: {_hhmm(r.scheduled_at)} (in {mins} min)")
        parts.append(f"\n🔔 <b>Notifications set up!</b> Alerts go out "
                     f"{config.ALERT_LEAD_MINUTES:g} minutes before each race.")
    elif found:
        parts.append(f"ℹ️ Found {found} race(s), but they are already tracked or not upcoming.")
    else:
        parts.append("⚠️ No upcoming races detected in this image.")
    parts.append(f"\n🕐 <b>Current time:</b> {now.strftime('%Y-%m-%d %H:%M:%S')}")
    return _trunc("\n".join(parts), TELEGRAM_MAX_LEN)


ERROR_REPLY = "❌ Sorry, I couldn't process that image. Please try again with a clear racing screenshot."


# ── Async send helper ─────────────────────────────────────────────────────────

async def _send_async(bot: telegram.Bot, chat_id: str, text: str) -> bool:
    try:
        await bot.send_message(
            chat_id=chat_id,
            text=text,
            parse_mode=ParseMode.HTML,
            disable_web_page_preview=True,
        )
        return True
    except telegram.error.TelegramError as exc:
        logger.error("Telegram send failed: %s", exc)
        return False


def _run(coro):
    """Run a coroutine in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ── Main send function ────────────────────────────────────────────────────────

def send_message(chat_id: str, text: str) -> bool:
    """Deliver ``text`` to ``chat_id``.  Returns True once Telegram accepted it."""
    if not config.TELEGRAM_BOT_TOKEN or not chat_id:
        _print_console(chat_id, text)
        return True
    return _run(_send_async(telegram.Bot(token=config.TELEGRAM_BOT_TOKEN), chat_id, text))


def make_sender(chat_id: str, dry_run: bool = False) -> Callable[[str], bool]:
    """A ``send(text)`` callable bound to one chat."""
    if dry_run:
        def send(text: str) -> bool:
            logger.info("[DRY RUN] Would send to %s:\n%s", chat_id or "(console)", text)
            return True
        return send
    return lambda text: send_message(chat_id, text)


# ── Console fallback ──────────────────────────────────────────────────────────

def _print_console(chat_id: str, text: str) -> None:
    logger.warning("Telegram not configured — printing message for %s to console.",
                   chat_id or "(no chat)")
    print("\n" + "═" * 65)
    print(text)
    print("═" * 65)
