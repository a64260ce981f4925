from __future__ import annotations

import unittest
from types import SimpleNamespace

import config
from bot import handlers
from bot.keyboards import BTN_PAUSE
from bot.messages import UNAUTHORIZED
from trading.commands import PolicyConfigError


class ConfigPatchMixin:
    def setUp(self) -> None:
        super().setUp()
        self._cfg_old: dict[str, object] = {}

    def patch_cfg(self, **kwargs: object) -> None:
        for key, value in kwargs.items():
            if key not in self._cfg_old:
                self._cfg_old[key] = getattr(config, key, None)
            setattr(config, key, value)

    def tearDown(self) -> None:
        for key, value in self._cfg_old.items():
            setattr(config, key, value)
        super().tearDown()


class _Message:
    def __init__(self, text: str = "") -> None:
        self.text = text
        self.replies: list[str] = []

    async def reply_text(self, text: str, **kwargs) -> None:
        self.replies.append(text)


class _Commands:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.store = SimpleNamespace(paused=False)

    async def set_exit_levels(self, address: str, **kwargs):
        self.calls.append(("set_exit_levels", dict(kwargs, address=address)))
        if address == "bad":
            raise PolicyConfigError("invalid token address: 'bad'")
        return SimpleNamespace(symbol="TKN")

    def pause(self) -> None:
        self.calls.append(("pause", {}))
        self.store.paused = True


def _update(chat_id: int, text: str = "") -> SimpleNamespace:
    return SimpleNamespace(effective_chat=SimpleNamespace(id=chat_id), message=_Message(text))


def _context(commands: _Commands, args: list[str] | None = None) -> SimpleNamespace:
    return SimpleNamespace(application=SimpleNamespace(bot_data={"commands": commands}), args=args or [])


class HandlerTests(ConfigPatchMixin, unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.patch_cfg(TELEGRAM_CHAT_ID="42")
        self.commands = _Commands()

    async def test_foreign_chat_is_rejected(self) -> None:
        update = _update(7)
        await handlers.pause_command(update, _context(self.commands))
        self.assertEqual(update.message.replies, [UNAUTHORIZED])
        self.assertEqual(self.commands.calls, [])

    async def test_setsl_percent_and_price_forms(self) -> None:
        await handlers.setsl_command(_update(42), _context(self.commands, ["0xabc", "7%", "35"]))
        await handlers.setsl_command(_update(42), _context(self.commands, ["0xabc", "$0.25"]))
        self.assertEqual(
            [kwargs for _, kwargs in self.commands.calls],
            [
                {"address": "0xabc", "stop_loss_percent": 7.0, "take_profit_percent": 35.0},
                {"address": "0xabc", "stop_loss_price": 0.25},
            ],
        )

    async def test_setsl_reports_validation_errors(self) -> None:
        update = _update(42)
        await handlers.setsl_command(update, _context(self.commands, ["bad", "5%"]))
        self.assertIn("invalid token address", update.message.replies[0])

        update = _update(42)
        await handlers.setsl_command(update, _context(self.commands, ["0xabc", "five"]))
        self.assertTrue(update.message.replies[0].startswith("❌"))

    async def test_menu_button_routes_to_command(self) -> None:
        update = _update(42, BTN_PAUSE)
        await handlers.handle_text_menu(update, _context(self.commands))
        self.assertEqual(self.commands.calls, [("pause", {})])
        self.assertTrue(self.commands.store.paused)


if __name__ == "__main__":
    unittest.main()
