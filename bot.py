#!/usr/bin/env python3
"""
bot.py — Main entry point for the Race Alert Bot.

Runs one Telegram bot process that:
  1. Reads racing screenshots posted to allowed chats, asks the vision model
     for the races on them, and schedules those races.
  2. Every ALERT_CHECK_INTERVAL_SECONDS, alerts races about to start and
     forgets races that are long over.
  3. Every ODDS_POLL_INTERVAL_SECONDS, captures baseline prices for races
     about to start and alerts on big price moves around the jump.

Usage:
    python bot.py              # normal operation
    python bot.py --once       # one alert check + one odds poll, then exit
    python bot.py --dry-run    # log outgoing alerts instead of sending them
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Callable

from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes, MessageHandler, filters

import config
import odds_client
import telegram_alerts
import vision_client
from alert_scheduler import AlertScheduler
from clock import Clock
from ingestion import ScheduleIngestion
from odds_monitor import OddsMonitor
from price_baselines import AlertDedupSet, PriceBaselineStore
from race_schedule import ScheduleStore

# ── Logging setup ────────────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger("race_bot")


# ── Wiring ───────────────────────────────────────────────────────────────────

@dataclass
class Runtime:
    clock:      Clock
    schedule:   ScheduleStore
    prices:     PriceBaselineStore
    ingestion:  ScheduleIngestion
    alerts:     AlertScheduler
    odds:       OddsMonitor


def build_runtime(dry_run: bool = False) -> Runtime:
    """Construct the stores once and hand them to the components that own them."""
    clock = Clock(config.TIMEZONE)
    schedule = ScheduleStore()
    prices = PriceBaselineStore()
    send = telegram_alerts.make_sender(config.NOTIFICATION_CHAT_ID, dry_run=dry_run)

    if not config.NOTIFICATION_CHAT_ID:
        logger.warning("NOTIFICATION_CHAT_ID not set — race alerts will only be logged.")
    odds_enabled = odds_client.is_configured() and bool(config.NOTIFICATION_CHAT_ID)
    if not odds_enabled:
        logger.warning("Odds monitor disabled (needs ODDS_API_TOKEN and NOTIFICATION_CHAT_ID).")

    return Runtime(
        clock=clock,
        schedule=schedule,
        prices=prices,
        ingestion=ScheduleIngestion(schedule, clock, config.TRACK_ALLOWLIST),
        alerts=AlertScheduler(schedule, clock, send, telegram_alerts.format_race_alert),
        odds=OddsMonitor(
            prices,
            clock,
            fetch_events=lambda: odds_client.fetch_upcoming_events(config.ODDS_SPORT_ID),
            fetch_event_odds=odds_client.fetch_event_odds,
            send=send,
            format_alert=telegram_alerts.format_movement_alert,
            track_allowlist=config.TRACK_ALLOWLIST,
            dedup=AlertDedupSet(config.ALERT_DEDUP_CEILING),
            enabled=odds_enabled,
        ),
    )


def _runtime(context: ContextTypes.DEFAULT_TYPE) -> Runtime:
    return context.application.bot_data["runtime"]


# ── Periodic loops ───────────────────────────────────────────────────────────

def next_slot(due: float, now: float, interval: float) -> float:
    """
    When the next tick should start, on a fixed cadence anchored at ``due``.

    A tick that overran its slot is followed immediately and the cadence is
    re-anchored there, so slow ticks never stretch the period.
    """
    due += interval
    return due if due > now else now


async def run_every(name: str, interval: float, tick: Callable[[], int]) -> None:
    """Call ``tick`` off the event loop every ``interval`` seconds, forever."""
    logger.info("%s loop started (every %ss).", name, interval)
    loop = asyncio.get_running_loop()
    due = loop.time()
    while True:
        try:
            sent = await asyncio.to_thread(tick)
            if sent:
                logger.info("%s: %d alert(s) sent.", name, sent)
        except Exception:
            logger.exception("%s tick failed.", name)
        now = loop.time()
        if now - due > interval:
            logger.warning("%s tick overran its %ss slot (%.1fs).", name, interval, now - due)
        due = next_slot(due, now, interval)
        await asyncio.sleep(max(0.0, due - now))


async def _start_loops(application: Application) -> None:
    runtime: Runtime = application.bot_data["runtime"]
    # Keep references so the loops are not garbage-collected.
    application.bot_data["loops"] = [
        asyncio.create_task(
            run_every("Race alerts", config.ALERT_CHECK_INTERVAL_SECONDS, runtime.alerts.tick)
        ),
        asyncio.create_task(
            run_every("Odds monitor", config.ODDS_POLL_INTERVAL_SECONDS, runtime.odds.tick)
        ),
    ]


# ── Command handlers ─────────────────────────────────────────────────────────

async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    now = _runtime(context).clock.now()
    await update.effective_message.reply_html(
        telegram_alerts.format_help(now, vision_client.is_configured())
    )


async def cmd_clear(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    count = _runtime(context).schedule.clear_all()
    logger.info("Cleared %d notifications via /clear.", count)
    await update.effective_message.reply_html(telegram_alerts.format_clear(count))


async def cmd_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    runtime = _runtime(context)
    await update.effective_message.reply_html(
        telegram_alerts.format_status(runtime.schedule.upcoming(), runtime.clock.now())
    )


async def cmd_tracking(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    runtime = _runtime(context)
    await update.effective_message.reply_html(
        telegram_alerts.format_tracking(
            runtime.prices.tracking_status(), runtime.clock.now(), runtime.odds.enabled,
        )
    )


# ── Screenshot handler ───────────────────────────────────────────────────────

def _chat_allowed(chat_id: int | str) -> bool:
    return not config.ALLOWED_CHAT_IDS or str(chat_id) in config.ALLOWED_CHAT_IDS


async def on_image(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    if message is None or (update.effective_user and update.effective_user.is_bot):
        return
    if not _chat_allowed(message.chat_id):
        logger.debug("Ignoring image from chat %s (not allowed).", message.chat_id)
        return

    if message.photo:
        file_id, mime_type = message.photo[-1].file_id, "image/jpeg"
    elif message.document and (message.document.mime_type or "").startswith("image/"):
        file_id, mime_type = message.document.file_id, message.document.mime_type
    else:
        return

    runtime = _runtime(context)
    logger.info("Image received in chat %s — analysing.", message.chat_id)
    try:
        tg_file = await context.bot.get_file(file_id)
        data = await tg_file.download_as_bytearray()
        image_url = f"data:{mime_type};base64,{base64.b64encode(bytes(data)).decode()}"

        result = await asyncio.to_thread(vision_client.analyze_racing_image, image_url)
        now = runtime.clock.now()
        added = runtime.ingestion.ingest(result.payload, now)
        reply = telegram_alerts.format_analysis_reply(
            result.analysis, added, len(result.races), now,
        )
    except Exception:
        logger.exception("Error processing image from chat %s.", message.chat_id)
        await message.reply_text(telegram_alerts.ERROR_REPLY)
        return
    await message.reply_html(reply)


# ── Main entry point ─────────────────────────────────────────────────────────

def main() -> None:
    parser = argparse.ArgumentParser(description="Race Alert Bot")
    parser.add_argument("--once",    action="store_true",
                        help="Run one alert check and one odds poll, then exit.")
    parser.add_argument("--dry-run", action="store_true",
                        help="Log outgoing alerts instead of sending them.")
    args = parser.parse_args()

    runtime = build_runtime(dry_run=args.dry_run)

    logger.info("=" * 60)
    logger.info("  Race Alert Bot starting")
    logger.info("=" * 60)
    logger.info("  Timezone        : %s (now %s)", config.TIMEZONE,
                runtime.clock.now().strftime("%Y-%m-%d %H:%M:%S"))
    logger.info("  Alert check     : every %ds, %g min lead, %g min grace",
                config.ALERT_CHECK_INTERVAL_SECONDS, config.ALERT_LEAD_MINUTES,
                config.ALERT_GRACE_MINUTES)
    logger.info("  Odds poll       : every %ds, baseline at %g-%gs, threshold %.0f%% (%s)",
                config.ODDS_POLL_INTERVAL_SECONDS, config.BASELINE_WINDOW_START_SECONDS,
                config.BASELINE_WINDOW_END_SECONDS, config.MOVEMENT_THRESHOLD_PERCENT,
                config.MOVEMENT_DIRECTION)
    logger.info("  Track filter    : %s", ", ".join(config.TRACK_ALLOWLIST) or "(all)")
    logger.info("  Vision model    : %s",
                config.VISION_MODEL if vision_client.is_configured() else "NOT configured")
    logger.info("  Odds monitor    : %s", "enabled" if runtime.odds.enabled else "disabled")
    logger.info("=" * 60)

    if args.once:
        runtime.alerts.tick()
        runtime.odds.tick()
        return

    if not config.TELEGRAM_BOT_TOKEN:
        logger.error("TELEGRAM_BOT_TOKEN is not set — cannot receive screenshots.")
        return

    application = (
        Application.builder()
        .token(config.TELEGRAM_BOT_TOKEN)
        .post_init(_start_loops)
        .build()
    )
    application.bot_data["runtime"] = runtime
    application.add_handler(CommandHandler(["help", "start"], cmd_help))
    application.add_handler(CommandHandler("clear", cmd_clear))
    application.add_handler(CommandHandler("status", cmd_status))
    application.add_handler(CommandHandler("tracking", cmd_tracking))
    application.add_handler(MessageHandler(filters.PHOTO | filters.Document.IMAGE, on_image))

    application.run_polling(allowed_updates=Update.ALL_TYPES)
    logger.info("Bot stopped.")


if __name__ == "__main__":
    main()
