"""Telegram delivery for trade and price notifications."""

import logging
from typing import Any

import config
from telegram.error import TelegramError

logger = logging.getLogger(__name__)

# Telegram rejects messages longer than 4096 characters.
MAX_MESSAGE_CHARS = 4000


class TelegramNotifier:
    """Sends HTML messages to the configured chat; never raises."""

    def __init__(self, chat_id: str | int | None = None) -> None:
        raw = config.TELEGRAM_CHAT_ID if chat_id is None else chat_id
        self.chat_id = str(raw or "").strip()
        self._bot: Any = None
        self.sent_count = 0
        self.failed_count = 0

    def bind(self, bot: Any) -> None:
        self._bot = bot

    async def notify(self, text: str) -> bool:
        if self._bot is None or not self.chat_id:
            logger.info("NOTIFY_DROPPED reason=%s text=%s", "no_bot" if self._bot is None else "no_chat", text[:120])
            return False
        try:
            await self._bot.send_message(
                chat_id=int(self.chat_id),
                text=text[:MAX_MESSAGE_CHARS],
                parse_mode="HTML",
                disable_web_page_preview=True,
            )
        except (TelegramError, ValueError) as exc:
            self.failed_count += 1
            logger.warning("NOTIFY_FAILED chat_id=%s err=%s", self.chat_id, exc)
            return False
        self.sent_count += 1
        return True
