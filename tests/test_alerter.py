from __future__ import annotations

import unittest

from telegram.error import NetworkError

from monitor.alerter import MAX_MESSAGE_CHARS, TelegramNotifier


class _Bot:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.sent: list[dict] = []

    async def send_message(self, **kwargs) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append(kwargs)


class TelegramNotifierTests(unittest.IsolatedAsyncioTestCase):
    async def test_unbound_notifier_drops_message(self) -> None:
        notifier = TelegramNotifier(chat_id="42")
        self.assertFalse(await notifier.notify("hello"))

    async def test_sends_truncated_html(self) -> None:
        bot = _Bot()
        notifier = TelegramNotifier(chat_id="42")
        notifier.bind(bot)
        self.assertTrue(await notifier.notify("x" * 5000))
        self.assertEqual(bot.sent[0]["chat_id"], 42)
        self.assertEqual(bot.sent[0]["parse_mode"], "HTML")
        self.assertEqual(len(bot.sent[0]["text"]), MAX_MESSAGE_CHARS)
        self.assertEqual(notifier.sent_count, 1)

    async def test_delivery_errors_are_swallowed(self) -> None:
        notifier = TelegramNotifier(chat_id="42")
        notifier.bind(_Bot(NetworkError("timed out")))
        self.assertFalse(await notifier.notify("hello"))
        self.assertEqual(notifier.failed_count, 1)

    async def test_missing_chat_drops_message(self) -> None:
        notifier = TelegramNotifier(chat_id="")
        notifier.bind(_Bot())
        self.assertFalse(await notifier.notify("hello"))


if __name__ == "__main__":
    unittest.main()
