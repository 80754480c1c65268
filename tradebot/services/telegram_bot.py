"""Telegram bot for trading notifications and remote control."""

import asyncio
import logging
import threading
from typing import Any, Callable, Optional

from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import (
    Application,
    CommandHandler,
    CallbackQueryHandler,
    ContextTypes,
)

from tradebot.services.notifier import Notifier

logger = logging.getLogger(__name__)

_SEVERITY_PREFIX = {"info": "ℹ️", "warning": "⚠️", "critical": "🚨"}


async def _call(func: Callable[[], Any]) -> Any:
    return func()


class TelegramNotifier(Notifier):
    """Telegram bot running in a background thread with its own event loop.

    Commands touching the trading services are marshalled back onto the
    application's event loop.
    """

    def __init__(
        self,
        token: str,
        chat_ids: list[int],
        get_status: Callable[[], dict] | None = None,
        stop_bot: Callable[[], bool] | None = None,
    ):
        self.token = token
        self.chat_ids = set(chat_ids)
        self.get_status = get_status
        self.stop_bot = stop_bot
        self._app: Optional[Application] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._main_loop: Optional[asyncio.AbstractEventLoop] = None

    def _is_authorized(self, user_id: int) -> bool:
        return user_id in self.chat_ids

    async def _check_auth(self, update: Update) -> bool:
        if not update.effective_user or not self._is_authorized(update.effective_user.id):
            if update.message:
                await update.message.reply_text("Unauthorized.")
            return False
        return True

    async def _on_main_loop(self, func: Callable[[], Any]) -> Any:
        if self._main_loop is None:
            return func()
        future = asyncio.run_coroutine_threadsafe(_call(func), self._main_loop)
        return await asyncio.wrap_future(future)

    async def _cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return
        if self.get_status is None:
            await update.message.reply_text("Status unavailable.")
            return

        status = await self._on_main_loop(self.get_status)
        await update.message.reply_text(format_status(status))

    async def _cmd_stop(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not await self._check_auth(update):
            return

        keyboard = InlineKeyboardMarkup([
            [
                InlineKeyboardButton("Yes, stop the bot", callback_data="confirm_stop"),
                InlineKeyboardButton("Cancel", callback_data="cancel"),
            ]
        ])
        await update.message.reply_text(
            "Stop the trading bot? Open trades stay open and keep being monitored.",
            reply_markup=keyboard,
        )

    async def _handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        query = update.callback_query
        if not query or not query.from_user or not self._is_authorized(query.from_user.id):
            return

        await query.answer()

        if query.data == "cancel":
            await query.edit_message_text("Cancelled.")
            return

        if query.data == "confirm_stop" and self.stop_bot is not None:
            stopped = await self._on_main_loop(self.stop_bot)
            await query.edit_message_text("Bot stopped." if stopped else "Bot was not running.")

    async def send_notification(self, message: str):
        """Send a message to all whitelisted chat IDs."""
        if not self._app or not self._app.bot:
            return
        for chat_id in self.chat_ids:
            try:
                await self._app.bot.send_message(chat_id=chat_id, text=message)
            except Exception as e:
                logger.warning(f"Failed to send Telegram notification to {chat_id}: {e}")

    def notify(self, severity: str, title: str, detail: str = ""):
        """Queue a message on the bot's loop (fire-and-forget)."""
        if not self._loop:
            return
        prefix = _SEVERITY_PREFIX.get(severity, "")
        message = f"{prefix} {title}\n{detail}".strip()
        asyncio.run_coroutine_threadsafe(self.send_notification(message), self._loop)

    def _run_bot(self):
        """Run the bot in a background thread with its own event loop."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        self._app = (
            Application.builder()
            .token(self.token)
            .build()
        )

        self._app.add_handler(CommandHandler("status", self._cmd_status))
        self._app.add_handler(CommandHandler("stop", self._cmd_stop))
        self._app.add_handler(CallbackQueryHandler(self._handle_callback))

        logger.info("Telegram bot starting...")
        self._loop.run_until_complete(self._app.initialize())
        self._loop.run_until_complete(self._app.start())
        self._loop.run_until_complete(self._app.updater.start_polling())
        self._loop.run_forever()

    def start(self):
        try:
            self._main_loop = asyncio.get_running_loop()
        except RuntimeError:
            self._main_loop = None
        self._thread = threading.Thread(target=self._run_bot, daemon=True)
        self._thread.start()

    def stop(self):
        if self._loop and self._app:
            async def _shutdown():
                await self._app.updater.stop()
                await self._app.stop()
                await self._app.shutdown()

            asyncio.run_coroutine_threadsafe(_shutdown(), self._loop).result(timeout=10)
            self._loop.call_soon_threadsafe(self._loop.stop)


def format_status(status: dict) -> str:
    bot = status.get("bot", {})
    risk = status.get("risk", {})
    state = "running" if bot.get("running") else "stopped"
    lines = [
        f"Bot: {state}",
        f"Open trades: {status.get('open_trades', 0)}",
        f"Equity: {status.get('equity', 0.0):.2f}",
        f"Today: {status.get('today_trades', 0)} trades, PnL {status.get('today_profit', 0.0):.2f}",
    ]
    if risk.get("tripped"):
        lines.append("Extreme stop: TRIPPED")
    return "\n".join(lines)
