import asyncio
import logging
import threading

from telegram import (
    BotCommand,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    LinkPreviewOptions,
    Update,
)
from telegram.constants import ChatAction
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from tg_relay.errors import TransportDeliveryError
from tg_relay.policy import LOCALE_LABELS, MODE_LABELS, TransitionKind, menu_data
from tg_relay.store import Locale, Mode

logger = logging.getLogger(__name__)

MAX_TELEGRAM_CHARS = 4096

BOT_COMMANDS = [
    BotCommand("start", "Start"),
    BotCommand("menu", "Topic / language"),
    BotCommand("reset", "Clear the conversation"),
    BotCommand("help", "Help"),
]


# === Rendering ===

def build_menu(locale: Locale) -> InlineKeyboardMarkup:
    labels = MODE_LABELS[locale]
    mode_rows = [
        [InlineKeyboardButton(labels[mode], callback_data=menu_data(TransitionKind.SET_MODE, mode))]
        for mode in Mode
    ]
    locale_row = [
        InlineKeyboardButton(LOCALE_LABELS[loc], callback_data=menu_data(TransitionKind.SET_LOCALE, loc))
        for loc in Locale
    ]
    return InlineKeyboardMarkup(mode_rows + [locale_row])


def split_message(text, limit=MAX_TELEGRAM_CHARS):
    """Split ``text`` into chunks Telegram accepts, preferring line breaks."""
    chunks = []
    while len(text) > limit:
        cut = text.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(text[:cut])
        text = text[cut:].lstrip("\n")
    if text:
        chunks.append(text)
    return chunks


async def deliver(bot, chat_id, outbound):
    """Send an Outbound to ``chat_id``. Raises TransportDeliveryError on failure."""
    chunks = split_message(outbound.text)
    try:
        for i, chunk in enumerate(chunks):
            last = i == len(chunks) - 1
            await bot.send_message(
                chat_id=chat_id,
                text=chunk,
                reply_markup=build_menu(outbound.locale) if outbound.show_menu and last else None,
                link_preview_options=LinkPreviewOptions(is_disabled=True),
            )
    except TelegramError as e:
        raise TransportDeliveryError(chat_id, e) from e


# === Handlers ===

def _ids(update: Update):
    chat_id = update.effective_chat.id
    user = update.effective_user
    return chat_id, (user.id if user else chat_id)


def _orchestrator(context: ContextTypes.DEFAULT_TYPE):
    return context.bot_data["orchestrator"]


def _command_handler(name):
    async def handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
        chat_id, user_id = _ids(update)
        outbound = await getattr(_orchestrator(context), f"on_{name}")(user_id)
        await deliver(context.bot, chat_id, outbound)

    handler.__name__ = name
    return handler


start = _command_handler("start")
reset = _command_handler("reset")
menu = _command_handler("menu")
help_command = _command_handler("help")
stats = _command_handler("stats")


async def unknown_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    chat_id, user_id = _ids(update)
    command = (update.effective_message.text or "").split()[0].lstrip("/").split("@")[0]
    outbound = await _orchestrator(context).on_unknown_command(user_id, command)
    await deliver(context.bot, chat_id, outbound)


async def button(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    chat_id, user_id = _ids(update)
    outbound = await _orchestrator(context).on_button(user_id, query.data)
    await deliver(context.bot, chat_id, outbound)


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE):
    chat_id, user_id = _ids(update)

    async def typing():
        try:
            await context.bot.send_chat_action(chat_id=chat_id, action=ChatAction.TYPING)
        except TelegramError as e:
            logger.debug(f"typing action failed for chat {chat_id}: {e}")

    outbound = await _orchestrator(context).on_text(
        user_id, update.effective_message.text, before_call=typing
    )
    await deliver(context.bot, chat_id, outbound)


async def handle_non_text(update: Update, context: ContextTypes.DEFAULT_TYPE):
    chat_id, user_id = _ids(update)
    outbound = await _orchestrator(context).on_non_text(user_id)
    await deliver(context.bot, chat_id, outbound)


async def on_error(update: object, context: ContextTypes.DEFAULT_TYPE):
    error = context.error
    if isinstance(error, TransportDeliveryError):
        logger.warning(str(error))
        return
    logger.error("Unhandled error while processing an update", exc_info=error)


async def register_commands(application: Application):
    try:
        await application.bot.set_my_commands(BOT_COMMANDS)
    except TelegramError as e:
        logger.warning(f"Could not register bot commands: {e}")


# === Application ===

def add_handlers(application: Application):
    # edited messages are not new turns
    new = filters.UpdateType.MESSAGE
    application.add_handler(CommandHandler("start", start, filters=new))
    application.add_handler(CommandHandler("reset", reset, filters=new))
    application.add_handler(CommandHandler("menu", menu, filters=new))
    application.add_handler(CommandHandler("help", help_command, filters=new))
    application.add_handler(CommandHandler("stats", stats, filters=new))
    application.add_handler(MessageHandler(new & filters.COMMAND, unknown_command))
    application.add_handler(CallbackQueryHandler(button))
    application.add_handler(MessageHandler(new & filters.TEXT & ~filters.COMMAND, handle_message))
    application.add_handler(
        MessageHandler(new & ~filters.TEXT & ~filters.StatusUpdate.ALL, handle_non_text)
    )
    application.add_error_handler(on_error)


def build_application(token, orchestrator, webhook=False) -> Application:
    builder = ApplicationBuilder().token(token).concurrent_updates(True).post_init(register_commands)
    if webhook:
        # updates arrive through the Flask webhook instead of getUpdates
        builder = builder.updater(None)
    application = builder.build()
    application.bot_data["orchestrator"] = orchestrator
    add_handlers(application)
    return application


class WebhookBridge:
    """Runs the application on its own event loop thread for the Flask webhook."""

    def __init__(self, application: Application):
        self.application = application
        self.loop = asyncio.new_event_loop()
        self._thread = None

    def _run_loop(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def _run(self, coro, timeout=None):
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout)

    def start(self):
        self._thread = threading.Thread(target=self._run_loop, name="ptb-loop", daemon=True)
        self._thread.start()
        self._run(self.application.initialize())
        self._run(register_commands(self.application))
        self._run(self.application.start())
        logger.info("Telegram application started (webhook mode)")

    def submit(self, payload):
        """Queue one raw update without waiting for it to be handled."""
        update = Update.de_json(payload, self.application.bot)
        future = asyncio.run_coroutine_threadsafe(self.application.update_queue.put(update), self.loop)
        future.add_done_callback(self._log_failure)
        return future

    @staticmethod
    def _log_failure(future):
        if future.cancelled():
            logger.warning("Queueing an update was cancelled")
        elif future.exception() is not None:
            logger.error("Could not queue update", exc_info=future.exception())

    def stop(self, timeout=10):
        if self._thread is None:
            return
        try:
            if self.application.running:
                self._run(self.application.stop(), timeout)
            self._run(self.application.shutdown(), timeout)
        finally:
            self.loop.call_soon_threadsafe(self.loop.stop)
            self._thread.join(timeout)
            self._thread = None
        logger.info("Telegram application stopped")
