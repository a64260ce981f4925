from __future__ import annotations

import unittest

from bot.messages import format_history, format_portfolio, format_sell, tx_link
from trading.models import TRADE_BUY, TRADE_SELL, Position, TradeHistoryEntry

ADDR = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"


def _entry(kind: str, symbol: str, ts: float, pnl: float | None = None) -> TradeHistoryEntry:
    return TradeHistoryEntry(kind, ADDR, symbol, 1.0, "1", 10.0, "", ts, "manual", pnl)


class MessageFormattingTests(unittest.TestCase):
    def test_symbols_are_html_escaped(self) -> None:
        text = format_sell(_entry(TRADE_SELL, "<b>X&Y</b>", 0.0, -3.0))
        self.assertIn("&lt;b&gt;X&amp;Y&lt;/b&gt;", text)
        self.assertIn("-3.00%", text)

    def test_history_lists_newest_first(self) -> None:
        text = format_history([_entry(TRADE_BUY, "OLD", 0.0), _entry(TRADE_SELL, "NEW", 60.0, 5.0)])
        self.assertLess(text.index("NEW"), text.index("OLD"))
        self.assertIn("1970-01-01 00:01 UTC", text)

    def test_portfolio_shows_stop_and_hold_time(self) -> None:
        pos = Position(ADDR, "TKN", "Token", 1.0, 2.4, 2.5, 10, 100.0, 0.0)
        text = format_portfolio([(pos, 2.375, 5.0)], now=2 * 3600 + 300)
        self.assertIn("$2.375 (5% trail)", text)
        self.assertIn("Held: 2h 5m", text)
        self.assertIn("+140.00%", text)

    def test_missing_tx_hash_has_no_link(self) -> None:
        self.assertEqual(tx_link(""), "N/A")
        self.assertIn("0xabc", tx_link("0xabc"))


if __name__ == "__main__":
    unittest.main()
