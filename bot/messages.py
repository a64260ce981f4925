"""Message templates."""

from __future__ import annotations

import html
import time
from typing import Iterable

import config
from trading.models import MonitoredAsset, Position, TradeHistoryEntry

WELCOME_MESSAGE = (
    "👋 <b>Position Keeper</b>\n\n"
    "I watch tracked Base tokens, enforce stop-loss and take-profit levels,\n"
    "and report every trade here.\n\n"
    "Commands: /status /portfolio /balance /history /monitors\n"
    "/track /trail /watch /buyback /setsl /untrack /sell\n"
    "/pause /resume /blacklist /unblacklist"
)

STATUS_TEMPLATE = (
    "📊 <b>Status</b>\n\n"
    "💎 ETH: {eth:.6f}\n"
    "💵 USDC: ${usdc:.2f}\n"
    "📁 Positions: {open_count}/{max_positions}\n"
    "👁 Monitors: {monitor_count}\n"
    "{trading_state}\n\n"
    "<b>Positions:</b>\n{positions}"
)

PAUSED_MESSAGE = "⏸️ Trading has been <b>PAUSED</b>. Exits keep running. Use /resume to restart."
RESUMED_MESSAGE = "▶️ Trading has been <b>RESUMED</b>."
NO_POSITIONS = "📭 No open positions."
NO_HISTORY = "📭 No trade history yet."
NO_MONITORS = "📭 Nothing is being tracked."
UNAUTHORIZED = "⛔ This bot only answers its configured chat."


def tx_link(tx_hash: str) -> str:
    if not tx_hash:
        return "N/A"
    url = config.EXPLORER_TX_URL_TEMPLATE.format(tx_hash=tx_hash)
    return f'<a href="{html.escape(url)}">View tx</a>'


def _signed(value: float, digits: int = 2) -> str:
    return f"{'+' if value >= 0 else ''}{value:.{digits}f}%"


def _price(value: float) -> str:
    return f"${value:.6g}"


def _age(seconds: float) -> str:
    seconds = max(0, int(seconds))
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h {(seconds % 3600) // 60}m"
    return f"{seconds // 86400}d {(seconds % 86400) // 3600}h"


def format_buy(position: Position, reason: str = "") -> str:
    tag = f" ({html.escape(reason)})" if reason else ""
    return (
        f"🟢 <b>BUY {html.escape(position.symbol)}</b>{tag}\n"
        f"💰 Spent: ${position.usdc_invested:.2f} USDC\n"
        f"💵 Price: {_price(position.entry_price)}\n"
        f"🔗 {tx_link(position.buy_tx_hash)}"
    )


def format_sell(entry: TradeHistoryEntry) -> str:
    pnl = entry.profit_percent or 0.0
    emoji = "🟢" if pnl >= 0 else "🔴"
    return (
        f"{emoji} <b>SELL {html.escape(entry.symbol)}</b> ({html.escape(entry.reason or 'exit')})\n"
        f"💰 Received: ${entry.usdc_amount:.2f} USDC\n"
        f"💵 Price: {_price(entry.price)}\n"
        f"📊 P&L: {_signed(pnl)}\n"
        f"🔗 {tx_link(entry.tx_hash)}"
    )


def format_exit_failed(symbol: str, reason: str, price: float, error: str) -> str:
    return (
        f"🛑 <b>{html.escape(reason.upper())}: {html.escape(symbol)}</b> at {_price(price)}\n"
        f"❌ Sell failed, will retry next tick\n"
        f"<code>{html.escape(error[:300])}</code>"
    )


def format_stop_alert(monitor: MonitoredAsset, price: float, stop_price: float) -> str:
    return (
        f"🛑 <b>STOP LEVEL HIT: {html.escape(monitor.symbol)}</b>\n"
        f"💵 Price: {_price(price)} (stop {_price(stop_price)})\n"
        "No open position to sell; tracking stopped."
    )


def format_milestone(monitor: MonitoredAsset, price: float, milestone: float) -> str:
    return (
        f"🚀 <b>{html.escape(monitor.symbol)} +{milestone:g}%</b>\n"
        f"💵 Price: {_price(price)} (entry {_price(monitor.policy.entry_price)})"
    )


def format_buyback(monitor: MonitoredAsset, price: float, level: int, spend: float, remaining: float, tx_hash: str) -> str:
    return (
        f"🔁 <b>BUYBACK {html.escape(monitor.symbol)}</b> level {level}\n"
        f"💰 Spent: ${spend:.2f} USDC at {_price(price)}\n"
        f"🏦 Budget left: ${remaining:.2f}\n"
        f"🔗 {tx_link(tx_hash)}"
    )


def format_low_balance(balance: float, threshold: float) -> str:
    return (
        "⚠️ <b>LOW ETH WARNING</b>\n\n"
        f"Current balance: {balance:.6f} ETH\n"
        f"Threshold: {threshold:.6f} ETH\n\n"
        "Top up ETH on Base so exits can still pay gas."
    )


def format_positions_brief(positions: Iterable[Position]) -> str:
    lines = []
    for p in positions:
        emoji = "🟢" if p.profit_percent >= 0 else "🔴"
        lines.append(f"{emoji} {html.escape(p.symbol)}: {_price(p.current_price)} ({_signed(p.profit_percent, 1)})")
    return "\n".join(lines) or "No open positions"


def format_portfolio(rows: Iterable[tuple[Position, float, float]], now: float | None = None) -> str:
    """`rows` holds (position, stop_price, trail_percent) triples."""
    now = time.time() if now is None else now
    parts = ["📋 <b>Portfolio</b>\n"]
    for pos, stop_price, trail in rows:
        emoji = "🟢" if pos.profit_percent >= 0 else "🔴"
        parts.append(
            f"{emoji} <b>{html.escape(pos.symbol)}</b>\n"
            f"   Entry: {_price(pos.entry_price)}\n"
            f"   Current: {_price(pos.current_price)}\n"
            f"   Peak: {_price(pos.highest_price)}\n"
            f"   P&L: {_signed(pos.profit_percent)}\n"
            f"   Stop: {_price(stop_price)} ({trail:g}% trail)\n"
            f"   Invested: ${pos.usdc_invested:.2f}\n"
            f"   Held: {_age(now - pos.entry_ts)}\n"
        )
    return "\n".join(parts)


def format_history(entries: Iterable[TradeHistoryEntry]) -> str:
    parts = ["📜 <b>Recent Trades</b>\n"]
    for e in reversed(list(entries)):
        label = "🟢 BUY" if e.kind == "buy" else "🔴 SELL"
        reason = f" ({html.escape(e.reason)})" if e.reason else ""
        pnl = f" | P&L: {_signed(e.profit_percent, 1)}" if e.profit_percent is not None else ""
        stamp = time.strftime("%Y-%m-%d %H:%M UTC", time.gmtime(e.timestamp))
        parts.append(
            f"{label} <b>{html.escape(e.symbol)}</b>{reason}\n"
            f"   ${e.usdc_amount:.2f} USDC @ {_price(e.price)}{pnl}\n"
            f"   {stamp}\n"
        )
    return "\n".join(parts)


def format_monitors(monitors: Iterable[MonitoredAsset]) -> str:
    parts = ["👁 <b>Tracked Tokens</b>\n"]
    for m in monitors:
        state = "active" if m.active else "inactive"
        parts.append(
            f"• <b>{html.escape(m.symbol)}</b> [{m.policy.kind}, {state}]\n"
            f"   <code>{m.address}</code>\n"
            f"   Entry: {_price(m.policy.entry_price)} | Peak: {_price(m.highest_price)}"
            f" | Milestone: {m.last_notified_milestone:g}%"
        )
    return "\n".join(parts)
