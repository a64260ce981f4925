"""Keyboards for bot navigation."""

from telegram import KeyboardButton, ReplyKeyboardMarkup

BTN_STATUS = "📊 Status"
BTN_PORTFOLIO = "📋 Portfolio"
BTN_HISTORY = "📜 History"
BTN_MONITORS = "👁 Tracked"
BTN_PAUSE = "⏸️ Pause"
BTN_RESUME = "▶️ Resume"


def main_menu_keyboard(paused: bool = False) -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        [
            [KeyboardButton(BTN_STATUS), KeyboardButton(BTN_PORTFOLIO)],
            [KeyboardButton(BTN_HISTORY), KeyboardButton(BTN_MONITORS)],
            [KeyboardButton(BTN_RESUME if paused else BTN_PAUSE)],
        ],
        resize_keyboard=True,
        is_persistent=True,
    )
