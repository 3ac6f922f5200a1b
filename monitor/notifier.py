"""Telegram delivery for position open/close events."""

import asyncio
import logging
from html import escape
from typing import Any

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup

import config
from trading.models import Position, TradeRecord

logger = logging.getLogger(__name__)


class TelegramNotifier:
    def __init__(self, bot: Any = None, token: str | None = None) -> None:
        self._token = (token if token is not None else config.TELEGRAM_BOT_TOKEN) or ""
        self._bot = bot

    @property
    def configured(self) -> bool:
        return self._bot is not None or bool(self._token)

    def _get_bot(self) -> Any:
        if self._bot is None:
            self._bot = Bot(token=self._token)
        return self._bot

    async def close(self) -> None:
        bot = self._bot
        if bot is not None and hasattr(bot, "shutdown"):
            try:
                await bot.shutdown()
            except Exception as exc:
                logger.debug("Telegram bot shutdown failed: %s", exc)

    async def send(self, target: str | None, text: str, keyboard: InlineKeyboardMarkup | None = None) -> dict[str, Any]:
        """Send one HTML message. Never raises; returns {ok, error?}."""
        chat_id = str(target or config.TELEGRAM_DEFAULT_CHAT_ID or "").strip()
        if not chat_id:
            return {"ok": False, "error": "no_target"}
        if not self.configured:
            return {"ok": False, "error": "telegram_not_configured"}
        try:
            await asyncio.wait_for(
                self._get_bot().send_message(
                    chat_id=chat_id,
                    text=text,
                    parse_mode="HTML",
                    reply_markup=keyboard,
                    disable_web_page_preview=True,
                ),
                timeout=float(config.NOTIFY_TIMEOUT_SECONDS),
            )
        except Exception as exc:
            logger.warning("NOTIFY_FAILED chat_id=%s error=%s", chat_id, exc)
            return {"ok": False, "error": f"{exc.__class__.__name__}: {exc}"}
        return {"ok": True}

    async def send_test(self, target: str | None) -> dict[str, Any]:
        text = "\U0001F9EA <b>Test message</b>\n\nTelegram integration is ✅ READY"
        return await self.send(target, text)

    async def notify_opened(self, target: str | None, position: Position) -> dict[str, Any]:
        return await self.send(
            target,
            self.format_opened(position),
            self._build_keyboard(position.token_mint, position.entry_reference),
        )

    async def notify_closed(self, target: str | None, trade: TradeRecord) -> dict[str, Any]:
        return await self.send(target, self.format_closed(trade), self._build_keyboard(trade.token_mint, ""))

    @staticmethod
    def _build_keyboard(token_mint: str, signature: str) -> InlineKeyboardMarkup:
        row = [
            InlineKeyboardButton(
                "\U0001F4CA Chart",
                url=config.DEXSCREENER_TOKEN_URL_TEMPLATE.format(token_mint=token_mint),
            )
        ]
        if signature:
            row.append(
                InlineKeyboardButton(
                    "\U0001F50D Transaction",
                    url=config.EXPLORER_TX_URL_TEMPLATE.format(signature=signature),
                )
            )
        return InlineKeyboardMarkup([row])

    @staticmethod
    def format_opened(position: Position) -> str:
        symbol = escape(str(position.symbol or "N/A"))
        mint = escape(position.token_mint)
        return (
            "\U0001F7E2 POSITION OPENED\n\n"
            f"Symbol: {symbol}\n"
            f"Mint: <code>{mint}</code>\n"
            f"\U0001F4B0 Size: ${float(position.size_fiat):,.2f}\n"
            f"⏰ Time stop: {float(position.time_stop_minutes):.0f} min\n"
            f"Status: {escape(position.status)}"
        )

    @staticmethod
    def format_closed(trade: TradeRecord) -> str:
        symbol = escape(str(trade.symbol or "N/A"))
        mint = escape(trade.token_mint)
        held_minutes = max(0, int((trade.closed_at - trade.opened_at).total_seconds() // 60))
        return (
            "\U0001F534 POSITION CLOSED\n\n"
            f"Symbol: {symbol}\n"
            f"Mint: <code>{mint}</code>\n"
            f"\U0001F4B0 Size: ${float(trade.size_fiat):,.2f}\n"
            f"\U0001F4C8 PnL: ${float(trade.profit_loss_fiat):+,.4f}\n"
            f"⏰ Held: {held_minutes} min\n"
            f"Reason: {escape(trade.reason)}"
        )
