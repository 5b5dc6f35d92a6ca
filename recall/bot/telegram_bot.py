"""
Recall Assistant — Telegram Bot.

Telegram is the only user interface: notes and reminders are captured as
chat text, locations arrive as (live) location shares, and every
notification is delivered back into the same chat.

Security-first: only the configured chat is served; everyone else is
silently ignored.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from recall.config import settings
from recall.core.geofence import NOTE_CATEGORIES, detect_location_category
from recall.core.reminder_intent import auto_detect_reminder
from recall.core.time_parser import extract_time_from_text, format_reminder_display

if TYPE_CHECKING:
    from recall.adapters.telegram_location import TelegramLocationAdapter
    from recall.core.geofence import GeofenceEngine
    from recall.core.reminder_scheduler import ReminderScheduler
    from recall.core.smart_notifications import SmartNotificationOrchestrator
    from recall.data.db import TaskDB
    from recall.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")
_CATEGORY_TAG = re.compile(r"#(\w+)")
_TONES = ("professional", "friendly", "casual", "motivational")
_LOCATION_TYPES = ("home", "work", "gym")
_DEFAULT_RADIUS_M = 100

# /locsettings key → LocationSettings field
_SETTING_KEYS = {
    "enabled": "enabled",
    "filtering": "smart_filtering_enabled",
    "leavehome": "leave_home_reminder",
    "stores": "auto_detect_stores",
}


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores updates from any other chat.

    Does NOT send any response to strangers — the bot must not reveal
    its existence to unauthorized users. Authorized updates count as the
    app coming to the foreground: smart notifications are refreshed first.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        chat = update.effective_chat
        if chat is None or chat.id != settings.TELEGRAM_CHAT_ID:
            cid = chat.id if chat else "unknown"
            logger.warning("Unauthorized access attempt from chat_id=%s", cid)
            return  # Silent ignore

        orchestrator: SmartNotificationOrchestrator | None = context.bot_data.get("orchestrator")
        if orchestrator is not None:
            await orchestrator.reschedule_smart_notifications()
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Note capture: text → note (+ reminder)
# ---------------------------------------------------------------------------


def _note_category(text: str) -> str | None:
    """Location category for a note: an explicit #tag, else place keywords."""
    for tag in _CATEGORY_TAG.findall(text.lower()):
        if tag in NOTE_CATEGORIES:
            return tag
    return detect_location_category(text)


async def _process_note(text: str, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Shared logic: store the note and schedule its reminder when it is one."""
    tasks: TaskDB = context.bot_data["tasks"]
    scheduler: ReminderScheduler = context.bot_data["scheduler"]

    is_reminder, _extraction = auto_detect_reminder(text)

    if not is_reminder:
        category = _note_category(text)
        try:
            note = tasks.add_note(text, location_category=category)
        except Exception as exc:
            logger.error("Failed to store note: %s", exc)
            await update.message.reply_text("Couldn't save that note. Please try again.")
            return
        reply = f"📝 Saved note #{note.id}."
        if category:
            reply += f" I'll bring it up when you're near a {category} spot."
        await update.message.reply_text(reply)
        return

    try:
        note = tasks.add_note(text, is_reminder=True)
    except Exception as exc:
        logger.error("Failed to store reminder note: %s", exc)
        await update.message.reply_text("Couldn't save that reminder. Please try again.")
        return

    notification_id, info = await scheduler.schedule_reminder_from_note(text, note_id=note.id)
    if notification_id is None:
        await update.message.reply_text(
            f"Saved note #{note.id}, but I couldn't schedule the reminder for {info.display_text}."
        )
        return

    tasks.set_reminder_at(note.id, info.date)
    reply = f"⏰ Reminder set: {info.display_text}"
    if not info.is_valid:
        reply += "\n(That's my best guess. Send the time again to change it.)"
    await update.message.reply_text(reply)


@authorized_only
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle plain text messages — capture as a note or reminder."""
    await _process_note(update.message.text, update, context)


# ---------------------------------------------------------------------------
# Commands: general
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message."""
    await update.message.reply_text(
        "Welcome to *Recall Assistant*!\n\n"
        "I remember things for you, at the right time and the right place:\n"
        "• Send me a note like 'remind me to call mom tomorrow at 5pm'\n"
        "• Tag errands like 'milk and eggs #grocery' and share your live location\n"
        "• Set /wake and /bedtime for daily check-ins\n\n"
        "Type /help for the full command list.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/reminders — List pending reminders\n"
        "/cancelall — Cancel every pending reminder\n"
        "/when <text> — Show which time I'd read from a text\n"
        "/done <id> — Mark a location item as handled\n"
        "/setlocation <home|work|gym> [radius] [name] — Save your last shared location\n"
        "/locations — List saved locations\n"
        "/deletelocation <id> — Delete a saved location\n"
        "/locsettings [enabled|filtering|leavehome|stores on|off] — Location settings\n"
        "/wake HH:MM — Set your wake-up time\n"
        "/bedtime HH:MM — Set your bed time\n"
        "/tone <professional|friendly|casual|motivational> — Notification tone\n"
        "/food <caption> — Log a meal in your food journal\n"
        "/logout — Stop daily check-ins\n"
        "/help — Show this message",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_reminders(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /reminders — list pending notifications."""
    scheduler: ReminderScheduler = context.bot_data["scheduler"]
    pending = sorted(await scheduler.list_scheduled(), key=lambda n: _as_local(n.trigger_at))

    if not pending:
        await update.message.reply_text("No pending reminders.")
        return

    lines = ["*Pending reminders:*"]
    for notification in pending:
        when = format_reminder_display(_as_local(notification.trigger_at))
        lines.append(f"• {when} — {notification.title}: {notification.body}")
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_cancelall(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /cancelall — cancel every pending notification."""
    scheduler: ReminderScheduler = context.bot_data["scheduler"]
    count = await scheduler.get_badge_count()
    await scheduler.cancel_all()
    await update.message.reply_text(f"🗑 Cancelled {count} pending reminder{'s' if count != 1 else ''}.")


@authorized_only
async def cmd_when(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /when <text> — preview the time read from a text, no scheduling."""
    text = " ".join(context.args or [])
    if not text:
        await update.message.reply_text("Usage: /when <text>\nExample: /when call mom next friday at 5pm")
        return

    extraction = extract_time_from_text(text)
    if not extraction.has_time:
        await update.message.reply_text("I don't see a time in that.")
        return

    info = extraction.reminder_info
    reply = f"'{extraction.time_string}' → {info.display_text} ({info.date:%Y-%m-%d %H:%M})"
    if not info.is_valid:
        reply += "\n(low confidence guess)"
    await update.message.reply_text(reply)


@authorized_only
async def cmd_done(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /done <id> — mark a location item as handled."""
    engine: GeofenceEngine = context.bot_data["engine"]

    args = context.args
    if not args:
        await update.message.reply_text("Usage: /done <note_id>")
        return

    try:
        item_id = int(args[0])
    except ValueError:
        await update.message.reply_text("Invalid note ID.")
        return

    if await engine.mark_location_completed(item_id):
        await update.message.reply_text(f"✅ Note #{item_id} done. I won't bring it up near stores anymore.")
    else:
        await update.message.reply_text(f"Couldn't find note #{item_id}.")


# ---------------------------------------------------------------------------
# Commands: locations
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_setlocation(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /setlocation <home|work|gym> [radius] [name]."""
    engine: GeofenceEngine = context.bot_data["engine"]
    locations: TelegramLocationAdapter = context.bot_data["locations"]

    args = list(context.args or [])
    if not args or args[0].lower() not in _LOCATION_TYPES:
        await update.message.reply_text(
            "Usage: /setlocation <home|work|gym> [radius_m] [name]\n"
            "Share your location first (📎 → Location)."
        )
        return

    location_type = args.pop(0).lower()
    radius = _DEFAULT_RADIUS_M
    if args and args[0].isdigit():
        radius = int(args.pop(0))
    name = " ".join(args) or location_type.title()

    address = ""
    position = locations.last_position
    if position is None and args and settings.GOOGLE_MAPS_API_KEY:
        from recall.integrations.google_maps import search_place

        place = await search_place(name, settings.GOOGLE_MAPS_API_KEY)
        if place is not None:
            position = (place.latitude, place.longitude)
            address = place.formatted_address

    if position is None:
        await update.message.reply_text(
            "I don't know where that is yet. Share your location (📎 → Location), "
            "then send /setlocation again."
        )
        return

    saved = await engine.save_location(
        name=name,
        type=location_type,
        latitude=position[0],
        longitude=position[1],
        radius=radius,
        address=address,
    )
    reply = f"📍 Saved {location_type} '{saved.name}' ({radius} m) as {saved.id}."
    if not (await engine.get_settings()).enabled:
        reply += "\nLocation reminders are off: /locsettings enabled on"
    await update.message.reply_text(reply)


@authorized_only
async def cmd_locations(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /locations — list saved locations and settings."""
    engine: GeofenceEngine = context.bot_data["engine"]
    saved = await engine.get_saved_locations()
    current = await engine.get_settings()

    lines = []
    if saved:
        lines.append("*Saved locations:*")
        for loc in saved:
            lines.append(f"• `{loc.id}` {loc.type}: {loc.name} ({loc.radius:.0f} m)")
    else:
        lines.append("No saved locations. Use /setlocation.")
    lines.append("")
    lines.append(_format_settings(current))
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_deletelocation(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /deletelocation <id>."""
    engine: GeofenceEngine = context.bot_data["engine"]
    if not context.args:
        await update.message.reply_text("Usage: /deletelocation <id>\nUse /locations to see IDs.")
        return

    location_id = context.args[0]
    if await engine.delete_location(location_id):
        await update.message.reply_text(f"🗑 Deleted location {location_id}.")
    else:
        await update.message.reply_text(f"No saved location {location_id}.")


@authorized_only
async def cmd_locsettings(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /locsettings [key on|off]."""
    engine: GeofenceEngine = context.bot_data["engine"]
    args = [a.lower() for a in (context.args or [])]

    if not args:
        await update.message.reply_text(_format_settings(await engine.get_settings()), parse_mode="Markdown")
        return

    if len(args) != 2 or args[0] not in _SETTING_KEYS or args[1] not in ("on", "off"):
        await update.message.reply_text(
            "Usage: /locsettings <enabled|filtering|leavehome|stores> <on|off>"
        )
        return

    updated = await engine.update_settings(**{_SETTING_KEYS[args[0]]: args[1] == "on"})
    await update.message.reply_text(_format_settings(updated), parse_mode="Markdown")


def _format_settings(current) -> str:
    def flag(value: bool) -> str:
        return "on" if value else "off"

    return (
        "*Location settings:*\n"
        f"enabled: {flag(current.enabled)}\n"
        f"filtering: {flag(current.smart_filtering_enabled)}\n"
        f"leavehome: {flag(current.leave_home_reminder)}\n"
        f"stores: {flag(current.auto_detect_stores)}"
    )


@authorized_only
async def handle_location(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle shared and live locations — feed the software geofencer."""
    locations: TelegramLocationAdapter = context.bot_data["locations"]
    message = update.effective_message
    if message is None or message.location is None:
        return

    sent_at = message.edit_date or message.date
    timestamp = _as_local(sent_at) if sent_at else datetime.now()
    await locations.handle_location(
        message.location.latitude, message.location.longitude, timestamp,
    )

    # Live-location edits arrive silently; a one-off share gets an acknowledgement
    if update.edited_message is None and not message.location.live_period:
        await message.reply_text("📍 Got it. Use /setlocation to save this place.")


# ---------------------------------------------------------------------------
# Commands: profile & journal
# ---------------------------------------------------------------------------


async def _set_profile_time(
    field_name: str, label: str, update: Update, context: ContextTypes.DEFAULT_TYPE,
) -> None:
    tasks: TaskDB = context.bot_data["tasks"]
    value = context.args[0] if context.args else ""
    match = _HHMM.match(value)
    if not match:
        await update.message.reply_text(f"Usage: /{label} HH:MM (24h), e.g. /{label} 07:30")
        return

    hh_mm = f"{int(match.group(1)):02d}:{match.group(2)}"
    tasks.update_profile(**{field_name: hh_mm})
    await _refresh_smart_notifications(context)
    await update.message.reply_text(f"✅ {label.title()} time set to {hh_mm}.")


@authorized_only
async def cmd_wake(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /wake HH:MM."""
    await _set_profile_time("wake_up_time", "wake", update, context)


@authorized_only
async def cmd_bedtime(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /bedtime HH:MM."""
    await _set_profile_time("bed_time", "bedtime", update, context)


@authorized_only
async def cmd_tone(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /tone <tone>."""
    tasks: TaskDB = context.bot_data["tasks"]
    tone = (context.args[0].lower() if context.args else "")
    if tone not in _TONES:
        await update.message.reply_text(f"Usage: /tone <{'|'.join(_TONES)}>")
        return

    tasks.update_profile(tone=tone)
    await update.message.reply_text(f"✅ Tone set to {tone}.")


@authorized_only
async def cmd_food(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /food <caption> — log a meal."""
    tasks: TaskDB = context.bot_data["tasks"]
    caption = " ".join(context.args or []).strip()
    if not caption:
        await update.message.reply_text("Usage: /food <what you ate>")
        return

    tasks.add_food_entry(caption)
    await update.message.reply_text("🍽 Logged.")


@authorized_only
async def cmd_logout(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /logout — cancel the daily smart notifications."""
    orchestrator: SmartNotificationOrchestrator = context.bot_data["orchestrator"]
    await orchestrator.cancel_all_smart_notifications()
    await update.message.reply_text("👋 Daily check-ins stopped. Send /wake or /bedtime to resume.")


async def _refresh_smart_notifications(context: ContextTypes.DEFAULT_TYPE) -> None:
    orchestrator: SmartNotificationOrchestrator | None = context.bot_data.get("orchestrator")
    if orchestrator is not None:
        await orchestrator.resume_smart_notifications()
        await orchestrator.reschedule_smart_notifications(force=True)


def _as_local(value: datetime) -> datetime:
    """Naive local time for an aware (e.g. Telegram UTC) or naive datetime."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


async def _post_init(app: Application) -> None:
    """Start the location consumer and restore state lost with the job queue."""
    engine: GeofenceEngine = app.bot_data["engine"]
    scheduler: ReminderScheduler = app.bot_data["scheduler"]
    tasks: TaskDB = app.bot_data["tasks"]
    orchestrator: SmartNotificationOrchestrator = app.bot_data["orchestrator"]

    engine.start()
    await engine.refresh_monitoring()

    restored = 0
    for note in tasks.get_upcoming_reminders():
        reminder_at = datetime.fromisoformat(note.reminder_at)
        if await scheduler.schedule_reminder_for_date(note.transcript, reminder_at, note_id=note.id):
            restored += 1
    logger.info("Restored %d pending reminders", restored)

    await orchestrator.reschedule_smart_notifications(force=True)


async def _post_shutdown(app: Application) -> None:
    engine: GeofenceEngine = app.bot_data["engine"]
    await engine.stop()


def build_app(notifier: NotificationPort | None = None) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot and job queue after the app is built).
    """
    from recall.adapters.llm_content import LLMContentGenerator
    from recall.adapters.telegram_location import TelegramLocationAdapter
    from recall.adapters.telegram_notifier import TelegramNotifier
    from recall.core.geofence import GeofenceEngine
    from recall.core.reminder_scheduler import ReminderScheduler
    from recall.core.smart_notifications import SmartNotificationOrchestrator
    from recall.data.db import KeyValueDB, TaskDB

    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )

    if notifier is None:
        notifier = TelegramNotifier(app.bot, app.job_queue, settings.TELEGRAM_CHAT_ID)

    store = KeyValueDB()
    tasks = TaskDB()
    scheduler = ReminderScheduler(notifier, store)

    events: asyncio.Queue = asyncio.Queue()
    locations = TelegramLocationAdapter(events)
    geocoder = None
    if settings.GOOGLE_MAPS_API_KEY:
        from recall.integrations.google_maps import GoogleMapsGeocoder
        geocoder = GoogleMapsGeocoder(settings.GOOGLE_MAPS_API_KEY)
    engine = GeofenceEngine(store, scheduler, locations, tasks, geocoder=geocoder, events=events)

    orchestrator = SmartNotificationOrchestrator(
        scheduler, store, tasks, ai=LLMContentGenerator(settings.AI_TIMEOUT_SECONDS),
    )

    # Store collaborators in bot_data for handler access
    app.bot_data["notifier"] = notifier
    app.bot_data["store"] = store
    app.bot_data["tasks"] = tasks
    app.bot_data["scheduler"] = scheduler
    app.bot_data["locations"] = locations
    app.bot_data["engine"] = engine
    app.bot_data["orchestrator"] = orchestrator

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("reminders", cmd_reminders))
    app.add_handler(CommandHandler("cancelall", cmd_cancelall))
    app.add_handler(CommandHandler("when", cmd_when))
    app.add_handler(CommandHandler("done", cmd_done))
    app.add_handler(CommandHandler("setlocation", cmd_setlocation))
    app.add_handler(CommandHandler("locations", cmd_locations))
    app.add_handler(CommandHandler("deletelocation", cmd_deletelocation))
    app.add_handler(CommandHandler("locsettings", cmd_locsettings))
    app.add_handler(CommandHandler("wake", cmd_wake))
    app.add_handler(CommandHandler("bedtime", cmd_bedtime))
    app.add_handler(CommandHandler("tone", cmd_tone))
    app.add_handler(CommandHandler("food", cmd_food))
    app.add_handler(CommandHandler("logout", cmd_logout))

    # Locations: one-off shares and live-location edits
    app.add_handler(MessageHandler(filters.LOCATION, handle_location))

    # Text messages (non-command, not edits)
    app.add_handler(
        MessageHandler(filters.TEXT & ~filters.COMMAND & filters.UpdateType.MESSAGE, handle_text)
    )

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Recall Assistant bot...")
    app = build_app()
    app.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
