"""
SafeZone — Telegram Bot.

The user-facing surface over the core: raise and resolve SOS alerts,
manage emergency contacts, and run monitored trips fed by Telegram's
(live) location sharing.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import KeyboardButton, ReplyKeyboardMarkup, ReplyKeyboardRemove, Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    ConversationHandler,
    MessageHandler,
    filters,
)

from safezone.config import settings
from safezone.core.errors import InvalidInput, InvalidState, NoContacts, NotFound
from safezone.core.fanout import DispatchOutcome
from safezone.core.messages import format_time
from safezone.ports.store_port import StoreUnavailable

if TYPE_CHECKING:
    from safezone.core.alert_dispatcher import AlertDispatcher, DispatchResult
    from safezone.core.fanout import FanoutResult
    from safezone.core.trip_monitor import TripMonitor
    from safezone.data.db import ContactDB
    from safezone.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, Any]],
) -> Callable[..., Coroutine[Any, Any, Any]]:
    """Decorator that silently ignores messages from unauthorized users."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> Any:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return None  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_RE = re.compile(r"^\+?[\d\-\s()]{6,}$")

_LOCATION_KEYBOARD = ReplyKeyboardMarkup(
    [[KeyboardButton("📍 Share location", request_location=True)]],
    one_time_keyboard=True,
    resize_keyboard=True,
)


def _parse_contact_args(args: list[str]) -> tuple[str, str, str] | None:
    """Split ``/addcontact`` arguments into (name, email, phone).

    Accepts the name first, followed by an email and/or a phone number in
    any order: ``/addcontact Dana Levi dana@example.com +972501234567``.
    """
    name_parts: list[str] = []
    email = ""
    phone = ""
    for token in args:
        if _EMAIL_RE.match(token) and not email:
            email = token
        elif _PHONE_RE.match(token) and not phone:
            phone = token
        else:
            name_parts.append(token)
    name = " ".join(name_parts).strip()
    if not name or not (email or phone):
        return None
    return name, email, phone


def _format_fanout(fanout: FanoutResult) -> str:
    if fanout.outcome is DispatchOutcome.NO_CONTACTS:
        return "No emergency contacts on file — nobody was notified."
    if fanout.outcome is DispatchOutcome.SKIPPED:
        return "⚠️ Couldn't load your contacts — nobody was notified."
    if fanout.outcome is DispatchOutcome.TOTAL_FAILURE:
        return f"⚠️ Could not reach any of your {fanout.failed_count} contacts."
    msg = f"Notified {fanout.sent_count} contact(s)."
    if fanout.failed_count:
        msg += f" {fanout.failed_count} could not be reached."
    return msg


def _format_dispatch(result: DispatchResult) -> str:
    alert = result.alert
    if result.outcome is DispatchOutcome.TOTAL_FAILURE:
        return (
            f"🚨 SOS alert #{alert.id} recorded, but none of your contacts could be "
            "reached. Call emergency services directly if you can."
        )
    return (
        f"🚨 SOS alert #{alert.id} sent to {result.sent_count} contact(s)"
        + (f" ({result.failed_count} failed)." if result.failed_count else ".")
        + f"\nUse /resolve {alert.id} once you are safe."
    )


def _sender_name(update: Update) -> str | None:
    user = update.effective_user
    return user.first_name if user else None


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message."""
    await update.message.reply_text(
        "Welcome to *SafeZone*!\n\n"
        "I alert your emergency contacts when you need help:\n"
        "• /addcontact to register someone to notify\n"
        "• /sos to raise an emergency alert with your location\n"
        "• /trip to have a journey monitored until you /arrived\n\n"
        "Type /help for the full command list.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/addcontact <name> <email> [phone] — Add an emergency contact\n"
        "/contacts — List your emergency contacts\n"
        "/deletecontact <id> — Remove a contact\n"
        "/sos — Raise an emergency alert\n"
        "/alerts — List your active alerts\n"
        "/resolve <id> — Resolve an alert\n"
        "/trip — Start a monitored trip\n"
        "/tripstatus — Show your active trip\n"
        "/arrived — Complete your active trip\n"
        "/canceltrip — Cancel your active trip\n"
        "/help — Show this message",
        parse_mode="Markdown",
    )


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_addcontact(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /addcontact <name> <email> [phone]."""
    parsed = _parse_contact_args(context.args or [])
    if parsed is None:
        await update.message.reply_text(
            "Usage: /addcontact <name> <email> [phone]\n"
            "Example: /addcontact Dana dana@example.com +972501234567"
        )
        return

    name, email, phone = parsed
    contacts: ContactDB = context.bot_data["contacts"]
    try:
        contact = contacts.add_contact(update.effective_user.id, name, email=email, phone=phone)
    except StoreUnavailable as exc:
        logger.error("/addcontact store error: %s", exc)
        await update.message.reply_text("Couldn't save the contact. Please try again.")
        return

    await update.message.reply_text(f"✅ Added contact `{contact.id}` — {contact.name}", parse_mode="Markdown")


@authorized_only
async def cmd_contacts(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /contacts — list the user's emergency contacts."""
    contacts: ContactDB = context.bot_data["contacts"]
    try:
        items = contacts.list_contacts(update.effective_user.id)
    except StoreUnavailable as exc:
        logger.error("/contacts store error: %s", exc)
        await update.message.reply_text("Couldn't load contacts. Please try again.")
        return

    if not items:
        await update.message.reply_text("No emergency contacts yet. Use /addcontact to add one.")
        return

    lines = ["*Emergency contacts:*\n"]
    for c in items:
        details = ", ".join(part for part in (c.email, c.phone) if part)
        lines.append(f"`{c.id}` — {c.name} ({details})")
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_deletecontact(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /deletecontact <id>."""
    args = context.args
    if not args:
        await update.message.reply_text("Usage: /deletecontact <id>\nUse /contacts to see IDs.")
        return
    try:
        contact_id = int(args[0])
    except ValueError:
        await update.message.reply_text("Invalid contact ID. Use /contacts to see valid IDs.")
        return

    contacts: ContactDB = context.bot_data["contacts"]
    try:
        deleted = contacts.delete_contact(contact_id, update.effective_user.id)
    except StoreUnavailable as exc:
        logger.error("/deletecontact store error: %s", exc)
        await update.message.reply_text("Couldn't delete the contact. Please try again.")
        return

    if deleted:
        await update.message.reply_text(f"✅ Contact {contact_id} removed.")
    else:
        await update.message.reply_text(f"Contact {contact_id} not found.")


# ---------------------------------------------------------------------------
# SOS alerts
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_sos(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /sos — ask for the location, the alert fires once it arrives."""
    context.user_data["awaiting_sos_location"] = True
    await update.message.reply_text(
        "🚨 Share your location to send the SOS alert.",
        reply_markup=_LOCATION_KEYBOARD,
    )


async def _trigger_sos(
    update: Update, context: ContextTypes.DEFAULT_TYPE, lat: float, lon: float,
) -> None:
    dispatcher: AlertDispatcher = context.bot_data["dispatcher"]
    message = update.effective_message
    try:
        result = await dispatcher.trigger(
            update.effective_user.id, {"lat": lat, "lon": lon},
            user_name=_sender_name(update),
        )
    except NoContacts:
        await message.reply_text(
            "No emergency contacts found. Please add one with /addcontact first.",
            reply_markup=ReplyKeyboardRemove(),
        )
        return
    except InvalidInput as exc:
        await message.reply_text(f"Invalid location: {exc}", reply_markup=ReplyKeyboardRemove())
        return
    except StoreUnavailable as exc:
        logger.error("SOS trigger store error: %s", exc)
        await message.reply_text(
            "Couldn't record the alert. Call emergency services directly.",
            reply_markup=ReplyKeyboardRemove(),
        )
        return

    await message.reply_text(_format_dispatch(result), reply_markup=ReplyKeyboardRemove())


@authorized_only
async def cmd_alerts(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /alerts — list active alerts."""
    dispatcher: AlertDispatcher = context.bot_data["dispatcher"]
    try:
        alerts = dispatcher.list_active(update.effective_user.id)
    except StoreUnavailable as exc:
        logger.error("/alerts store error: %s", exc)
        await update.message.reply_text("Couldn't load alerts. Please try again.")
        return

    if not alerts:
        await update.message.reply_text("No active alerts.")
        return

    lines = ["*Active alerts:*\n"]
    for a in alerts:
        lines.append(f"`{a.id}` — {format_time(a.created_at, settings.TIMEZONE)}")
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_resolve(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /resolve <id>."""
    args = context.args
    if not args:
        await update.message.reply_text("Usage: /resolve <alert_id>\nUse /alerts to see IDs.")
        return
    try:
        alert_id = int(args[0])
    except ValueError:
        await update.message.reply_text("Invalid alert ID. Use /alerts to see valid IDs.")
        return

    dispatcher: AlertDispatcher = context.bot_data["dispatcher"]
    try:
        result = await dispatcher.resolve(
            alert_id, update.effective_user.id, user_name=_sender_name(update),
        )
    except NotFound:
        await update.message.reply_text(f"No active alert {alert_id}.")
        return
    except StoreUnavailable as exc:
        logger.error("/resolve store error: %s", exc)
        await update.message.reply_text("Couldn't resolve the alert. Please try again.")
        return

    await update.message.reply_text(
        f"✅ Alert {alert_id} resolved. {_format_fanout(result.fanout)}"
    )


# ---------------------------------------------------------------------------
# Trips
# ---------------------------------------------------------------------------

# ConversationHandler states for /trip
TRIP_START_LOC, TRIP_END_LOC, TRIP_MINUTES = range(3)

_TRIP_KEYS = ("trip_start", "trip_end")

# Live-location updates arrive as edited messages and must not answer a setup step
_NEW_LOCATION = filters.LOCATION & filters.UpdateType.MESSAGE


def _clear_trip_data(context: ContextTypes.DEFAULT_TYPE) -> None:
    for k in _TRIP_KEYS:
        context.user_data.pop(k, None)


@authorized_only
async def cmd_trip(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Handle /trip — start the trip conversation."""
    await update.message.reply_text(
        "Share your starting location.", reply_markup=_LOCATION_KEYBOARD,
    )
    return TRIP_START_LOC


async def trip_start_location(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Receive the starting point, ask for the destination."""
    message = update.effective_message
    loc = message.location
    context.user_data["trip_start"] = {"lat": loc.latitude, "lon": loc.longitude}
    await message.reply_text(
        "Now send the destination (📎 → Location → pick a place on the map).",
        reply_markup=ReplyKeyboardRemove(),
    )
    return TRIP_END_LOC


async def trip_end_location(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Receive the destination, ask for the expected duration."""
    message = update.effective_message
    loc = message.location
    context.user_data["trip_end"] = {"lat": loc.latitude, "lon": loc.longitude}
    keyboard = ReplyKeyboardMarkup(
        [["15", "30", "45"], ["60", "90", "120"]],
        one_time_keyboard=True,
        resize_keyboard=True,
    )
    await message.reply_text(
        "How many minutes should the trip take?", reply_markup=keyboard,
    )
    return TRIP_MINUTES


async def trip_minutes(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Receive the duration and start monitoring."""
    text = update.message.text.strip()
    try:
        minutes = int(text)
        if minutes < 1 or minutes > 24 * 60:
            raise ValueError
    except ValueError:
        await update.message.reply_text("Please send a number of minutes between 1 and 1440.")
        return TRIP_MINUTES

    monitor: TripMonitor = context.bot_data["monitor"]
    expected = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    try:
        result = await monitor.start(
            update.effective_user.id,
            context.user_data["trip_start"],
            context.user_data["trip_end"],
            expected,
            user_name=_sender_name(update),
        )
    except InvalidInput as exc:
        await update.message.reply_text(f"Couldn't start the trip: {exc}", reply_markup=ReplyKeyboardRemove())
        _clear_trip_data(context)
        return ConversationHandler.END
    except StoreUnavailable as exc:
        logger.error("/trip store error: %s", exc)
        await update.message.reply_text("Couldn't start the trip. Please try again.", reply_markup=ReplyKeyboardRemove())
        _clear_trip_data(context)
        return ConversationHandler.END

    _clear_trip_data(context)
    await update.message.reply_text(
        f"🧭 Trip #{result.trip.id} started, expected in {minutes} min. "
        f"{_format_fanout(result.fanout)}\n"
        "Share your live location so I can follow along; send /arrived when you get there.",
        reply_markup=ReplyKeyboardRemove(),
    )
    return ConversationHandler.END


async def trip_cancel_conversation(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Abort the /trip conversation before a trip exists."""
    _clear_trip_data(context)
    await update.message.reply_text("Trip setup cancelled.", reply_markup=ReplyKeyboardRemove())
    return ConversationHandler.END


@authorized_only
async def cmd_tripstatus(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /tripstatus — show the active trip."""
    monitor: TripMonitor = context.bot_data["monitor"]
    try:
        trip = monitor.get_active(update.effective_user.id)
    except StoreUnavailable as exc:
        logger.error("/tripstatus store error: %s", exc)
        await update.message.reply_text("Couldn't load your trip. Please try again.")
        return

    if trip is None:
        await update.message.reply_text("No active trip.")
        return
    await update.message.reply_text(
        f"Trip #{trip.id}: {trip.status.value}, "
        f"expected by {format_time(trip.expected_end_time, settings.TIMEZONE)}."
    )


async def _finish_trip(
    update: Update, context: ContextTypes.DEFAULT_TYPE, complete: bool,
) -> None:
    monitor: TripMonitor = context.bot_data["monitor"]
    user_id = update.effective_user.id
    try:
        trip = monitor.get_active(user_id)
        if trip is None:
            await update.message.reply_text("No active trip.")
            return
        if complete:
            result = await monitor.complete(trip.id, user_id=user_id, user_name=_sender_name(update))
        else:
            result = await monitor.cancel(trip.id, user_id=user_id)
    except (NotFound, InvalidState) as exc:
        await update.message.reply_text(f"Couldn't update the trip: {exc}")
        return
    except StoreUnavailable as exc:
        logger.error("Trip finish store error: %s", exc)
        await update.message.reply_text("Couldn't update the trip. Please try again.")
        return

    if complete:
        await update.message.reply_text(
            f"✅ Welcome back! Trip #{trip.id} completed. {_format_fanout(result.fanout)}"
        )
    else:
        await update.message.reply_text(f"Trip #{trip.id} cancelled.")


@authorized_only
async def cmd_arrived(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /arrived — complete the active trip."""
    await _finish_trip(update, context, complete=True)


@authorized_only
async def cmd_canceltrip(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /canceltrip — cancel the active trip without notifying anyone."""
    await _finish_trip(update, context, complete=False)


# ---------------------------------------------------------------------------
# Location messages (SOS + live trip tracking)
# ---------------------------------------------------------------------------


@authorized_only
async def handle_location(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Route a (live) location: pending SOS first, otherwise the active trip."""
    message = update.effective_message
    loc = message.location
    if context.user_data.pop("awaiting_sos_location", False):
        await _trigger_sos(update, context, loc.latitude, loc.longitude)
        return

    monitor: TripMonitor = context.bot_data["monitor"]
    user_id = update.effective_user.id
    try:
        trip = monitor.get_active(user_id)
        if trip is None:
            if update.edited_message is None:
                await message.reply_text("No active trip. Use /sos or /trip.")
            return
        result = await monitor.update_location(
            trip.id, {"lat": loc.latitude, "lon": loc.longitude},
            user_id=user_id, user_name=_sender_name(update),
        )
    except (NotFound, InvalidState, InvalidInput) as exc:
        logger.info("Location update ignored for user %d: %s", user_id, exc)
        return
    except StoreUnavailable as exc:
        logger.error("Location update store error: %s", exc)
        return

    if result.fanout is not None:
        await message.reply_text(
            f"⏰ You're past your expected arrival — your contacts were alerted. "
            f"{_format_fanout(result.fanout)} Send /arrived when you're safe."
        )


# ---------------------------------------------------------------------------
# Overdue sweep job
# ---------------------------------------------------------------------------


async def run_overdue_sweep(monitor: TripMonitor, notifier: NotificationPort) -> int:
    """Delay every overdue trip and tell each owner their contacts were alerted."""
    results = await monitor.sweep_overdue()
    for result in results:
        try:
            await notifier.send_message(
                result.trip.user_id,
                f"⏰ Trip #{result.trip.id} is overdue — your contacts were alerted. "
                f"{_format_fanout(result.fanout)} Send /arrived when you're safe.",
            )
        except Exception as exc:
            logger.error("Failed to tell user %d about overdue trip: %s", result.trip.user_id, exc)
    return len(results)


# ---------------------------------------------------------------------------
# Application wiring
# ---------------------------------------------------------------------------


def build_app(
    dispatcher: AlertDispatcher | None = None,
    monitor: TripMonitor | None = None,
    contacts: ContactDB | None = None,
    notifier: NotificationPort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Unset collaborators are created from settings: SQLite stores at
    DATABASE_PATH and the gateway chosen by NOTIFY_CHANNEL.
    """
    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    if contacts is None:
        from safezone.data.db import ContactDB
        contacts = ContactDB()

    if dispatcher is None or monitor is None:
        from safezone.adapters.notifier_factory import create_gateway
        gateway = create_gateway()

        if dispatcher is None:
            from safezone.core.alert_dispatcher import AlertDispatcher
            from safezone.data.db import AlertDB
            dispatcher = AlertDispatcher(contacts, AlertDB(), gateway)

        if monitor is None:
            from safezone.core.trip_monitor import TripMonitor
            from safezone.data.db import TripDB
            monitor = TripMonitor(contacts, TripDB(), gateway)

    if notifier is None:
        from safezone.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    app.bot_data["contacts"] = contacts
    app.bot_data["dispatcher"] = dispatcher
    app.bot_data["monitor"] = monitor
    app.bot_data["notifier"] = notifier

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("addcontact", cmd_addcontact))
    app.add_handler(CommandHandler("contacts", cmd_contacts))
    app.add_handler(CommandHandler("deletecontact", cmd_deletecontact))
    app.add_handler(CommandHandler("sos", cmd_sos))
    app.add_handler(CommandHandler("alerts", cmd_alerts))
    app.add_handler(CommandHandler("resolve", cmd_resolve))
    app.add_handler(CommandHandler("tripstatus", cmd_tripstatus))
    app.add_handler(CommandHandler("arrived", cmd_arrived))
    app.add_handler(CommandHandler("canceltrip", cmd_canceltrip))

    trip_conv = ConversationHandler(
        entry_points=[CommandHandler("trip", cmd_trip)],
        states={
            TRIP_START_LOC: [MessageHandler(_NEW_LOCATION, trip_start_location)],
            TRIP_END_LOC: [MessageHandler(_NEW_LOCATION, trip_end_location)],
            TRIP_MINUTES: [MessageHandler(filters.TEXT & ~filters.COMMAND, trip_minutes)],
        },
        fallbacks=[CommandHandler("cancel", trip_cancel_conversation)],
    )
    app.add_handler(trip_conv)

    # Plain and live (edited) location messages
    app.add_handler(MessageHandler(filters.LOCATION, handle_location))

    _setup_overdue_sweep(app, monitor, notifier)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_overdue_sweep(
    app: Application, monitor: TripMonitor, notifier: NotificationPort,
) -> None:
    """Register the repeating overdue-trip sweep."""

    async def _sweep_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        try:
            count = await run_overdue_sweep(monitor, notifier)
        except StoreUnavailable as exc:
            logger.error("Overdue sweep failed: %s", exc)
            return
        if count:
            logger.info("Overdue sweep delayed %d trip(s)", count)

    interval = timedelta(minutes=settings.OVERDUE_SWEEP_MINUTES)
    app.job_queue.run_repeating(_sweep_job_callback, interval=interval, first=interval, name="overdue_sweep")
    logger.info("Overdue sweep scheduled every %d min", settings.OVERDUE_SWEEP_MINUTES)


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting SafeZone bot...")
    app = build_app()
    app.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
