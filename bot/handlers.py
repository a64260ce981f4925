"""Telegram handlers."""

from __future__ import annotations

import html
import logging

import config

from telegram import Update
from telegram.ext import ContextTypes

from bot.keyboards import BTN_HISTORY, BTN_MONITORS, BTN_PAUSE, BTN_PORTFOLIO, BTN_RESUME, BTN_STATUS, main_menu_keyboard
from bot.messages import (
    NO_HISTORY,
    NO_MONITORS,
    NO_POSITIONS,
    PAUSED_MESSAGE,
    RESUMED_MESSAGE,
    STATUS_TEMPLATE,
    UNAUTHORIZED,
    WELCOME_MESSAGE,
    format_history,
    format_monitors,
    format_portfolio,
    format_positions_brief,
)
from trading.commands import PolicyConfigError, TradingCommands
from trading.store import StorePersistenceError

logger = logging.getLogger(__name__)


def _commands(context: ContextTypes.DEFAULT_TYPE) -> TradingCommands:
    return context.application.bot_data["commands"]


async def _authorized(update: Update) -> bool:
    chat = update.effective_chat
    if chat is None or update.message is None:
        return False
    if config.TELEGRAM_CHAT_ID and str(chat.id) == str(config.TELEGRAM_CHAT_ID):
        return True
    logger.warning("UNAUTHORIZED_COMMAND chat_id=%s", chat.id)
    await update.message.reply_text(UNAUTHORIZED)
    return False


def _parse_float(raw: str) -> float:
    return float(str(raw).strip().rstrip("%").lstrip("$"))


async def _reply_error(update: Update, exc: Exception) -> None:
    if update.message is not None:
        await update.message.reply_text(f"❌ {html.escape(str(exc))}", parse_mode="HTML")


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _authorized(update):
        return
    await update.message.reply_text(
        WELCOME_MESSAGE,
        parse_mode="HTML",
        reply_markup=main_menu_keyboard(_commands(context).store.paused),
    )


async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _authorized(update):
        return
    snap = await _commands(context).status_snapshot()
    state = "⏸️ Trading PAUSED" if snap.paused else "▶️ Trading ACTIVE"
    if snap.dry_run:
        state += " (dry run)"
    await update.message.reply_text(
        STATUS_TEMPLATE.format(
            eth=snap.eth_balance or 0.0,
            usdc=snap.usdc_balance or 0.0,
            open_count=len(snap.positions),
            max_positions=snap.max_positions,
            monitor_count=sum(1 for m in snap.monitors if m.active),
            trading_state=state,
            positions=format_positions_brief(snap.positions),
        ),
        parse_mode="HTML",
    )


async def portfolio_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _authorized(update):
        return
    rows = _commands(context).portfolio_rows()
    if not rows:
        await update.message.reply_text(NO_POSITIONS)
        return
    await update.message.reply_text(format_portfolio(rows), parse_mode="HTML")


async def balance_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _authorized(update):
        return
    commands = _commands(context)
    snap = await commands.status_snapshot()
    if snap.eth_balance is None:
        await update.message.reply_text("❌ Failed to fetch balances. Check logs.")
        return
    wallet = getattr(commands.executor, "wallet", "")
    await update.message.reply_text(
        "💰 <b>Wallet Balances</b>\n\n"
        f"💎 ETH: {snap.eth_balance:.6f}\n"
        f"💵 USDC: ${snap.usdc_balance or 0.0:.2f}\n"
        f"📍 Address: <code>{html.escape(str(wallet))}</code>",
        parse_mode="HTML",
    )


async def history_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _authorized(update):
        return
    limit = 10
    if context.args:
        try:
            limit = max(1, min(50, int(context.args[0])))
        except ValueError:
            await update.message.reply_text("Usage: /history [count]")
            return
    entries = _commands(context).store.get_history(limit)
    if not entries:
        await update.message.reply_text(NO_HISTORY)
        return
    await update.message.reply_text(format_history(entries), parse_mode="HTML")


async def monitors_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _authorized(update):
        return
    monitors = _commands(context).store.monitors()
    if not monitors:
        await update.message.reply_text(NO_MONITORS)
        return
    await update.message.reply_text(format_monitors(monitors), parse_mode="HTML")


async def pause_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _authorized(update):
        return
    _commands(context).pause()
    await update.message.reply_text(PAUSED_MESSAGE, parse_mode="HTML", reply_markup=main_menu_keyboard(True))


async def resume_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _authorized(update):
        return
    _commands(context).resume()
    await update.message.reply_text(RESUMED_MESSAGE, parse_mode="HTML", reply_markup=main_menu_keyboard(False))


async def sell_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _authorized(update):
        return
    commands = _commands(context)
    if not context.args:
        positions = commands.store.positions()
        if not positions:
            await update.message.reply_text("📭 No positions to sell.")
            return
        lines = ["Usage: /sell <token_address>\n\nOpen positions:"]
        lines += [f"• {html.escape(p.symbol)}: <code>{p.token_address}</code>" for p in positions]
        await update.message.reply_text("\n".join(lines), parse_mode="HTML")
        return

    await update.message.reply_text(f"⏳ Selling {html.escape(context.args[0])}...")
    try:
        result = await commands.force_sell(context.args[0])
    except (PolicyConfigError, StorePersistenceError) as exc:
        await _reply_error(update, exc)
        return
    if result is None:
        await update.message.reply_text("❌ No open position found for that token.")
    elif not result.success:
        await update.message.reply_text("❌ Sell failed; the position is still open. Check logs.")
    else:
        pnl = result.entry.profit_percent or 0.0
        await update.message.reply_text(
            f"✅ Sold <b>{html.escape(result.position.symbol)}</b>\n"
            f"P&L: {'+' if pnl >= 0 else ''}{pnl:.2f}%\n"
            f"TX: {html.escape(result.entry.tx_hash or 'N/A')}",
            parse_mode="HTML",
        )


async def blacklist_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _authorized(update):
        return
    if len(context.args) != 1:
        await update.message.reply_text("Usage: /blacklist <token_address>")
        return
    try:
        address = _commands(context).blacklist(context.args[0])
    except (PolicyConfigError, StorePersistenceError) as exc:
        await _reply_error(update, exc)
        return
    await update.message.reply_text(f"🚫 Token <code>{address}</code> has been blacklisted.", parse_mode="HTML")


async def unblacklist_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _authorized(update):
        return
    if len(context.args) != 1:
        await update.message.reply_text("Usage: /unblacklist <token_address>")
        return
    try:
        removed = _commands(context).unblacklist(context.args[0])
    except (PolicyConfigError, StorePersistenceError) as exc:
        await _reply_error(update, exc)
        return
    await update.message.reply_text("✅ Removed from blacklist." if removed else "That token was not blacklisted.")


async def track_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/track <address> [stop_loss%] [take_profit%] buys now and re-enters after exits."""
    if not await _authorized(update):
        return
    args = context.args or []
    if not 1 <= len(args) <= 3:
        await update.message.reply_text("Usage: /track <token_address> [stop_loss%] [take_profit%]")
        return
    try:
        sl = _parse_float(args[1]) if len(args) > 1 else None
        tp = _parse_float(args[2]) if len(args) > 2 else None
        result = await _commands(context).track_flat(args[0], stop_loss_percent=sl, take_profit_percent=tp)
    except (PolicyConfigError, StorePersistenceError, ValueError) as exc:
        await _reply_error(update, exc)
        return
    policy = result.monitor.policy
    bought = "bought" if result.position is not None else "entry pending (see logs)"
    await update.message.reply_text(
        f"🎯 Tracking <b>{html.escape(result.monitor.symbol)}</b>: SL {policy.stop_loss_percent:g}% / "
        f"TP {policy.take_profit_percent:g}%, {bought}.",
        parse_mode="HTML",
    )


async def trail_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/trail <address> [buy] puts a tiered trailing stop on a token."""
    if not await _authorized(update):
        return
    args = context.args or []
    if not 1 <= len(args) <= 2:
        await update.message.reply_text("Usage: /trail <token_address> [buy]")
        return
    buy = len(args) == 2 and args[1].strip().lower() == "buy"
    try:
        result = await _commands(context).track_trailing(args[0], buy=buy)
    except (PolicyConfigError, StorePersistenceError) as exc:
        await _reply_error(update, exc)
        return
    tiers = ", ".join(f">{t.min_profit_percent:g}%: {t.trail_percent:g}%" for t in result.monitor.policy.tiers)
    await update.message.reply_text(
        f"📈 Trailing <b>{html.escape(result.monitor.symbol)}</b> ({tiers})"
        + (", bought." if result.position is not None else "."),
        parse_mode="HTML",
    )


async def watch_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/watch <address> <stop_price> alerts (or sells a held position) at the stop."""
    if not await _authorized(update):
        return
    args = context.args or []
    if len(args) != 2:
        await update.message.reply_text("Usage: /watch <token_address> <stop_price>")
        return
    try:
        result = await _commands(context).track_notify_only(args[0], _parse_float(args[1]))
    except (PolicyConfigError, StorePersistenceError, ValueError) as exc:
        await _reply_error(update, exc)
        return
    policy = result.monitor.policy
    await update.message.reply_text(
        f"👁 Watching <b>{html.escape(result.monitor.symbol)}</b> from ${policy.entry_price:.6g}, "
        f"stop ${policy.stop_loss_price:.6g}.",
        parse_mode="HTML",
    )


async def buyback_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/buyback <address> [drop%] [usdc_per_buy] [budget]"""
    if not await _authorized(update):
        return
    args = context.args or []
    if not 1 <= len(args) <= 4:
        await update.message.reply_text("Usage: /buyback <token_address> [drop%] [usdc_per_buy] [total_budget]")
        return
    try:
        values = [_parse_float(a) for a in args[1:]] + [None] * (4 - len(args))
        result = await _commands(context).track_buyback(
            args[0], buyback_percent=values[0], usdc_per_buy=values[1], total_budget=values[2]
        )
    except (PolicyConfigError, StorePersistenceError, ValueError) as exc:
        await _reply_error(update, exc)
        return
    policy = result.monitor.policy
    await update.message.reply_text(
        f"🔁 Buyback ladder on <b>{html.escape(result.monitor.symbol)}</b>: every {policy.buyback_percent:g}% drop, "
        f"${policy.usdc_per_buy:.2f} per buy, budget ${policy.total_budget:.2f}.",
        parse_mode="HTML",
    )


async def setsl_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/setsl <address> <stop> [take_profit%]; a stop ending in % is a percent, otherwise a price."""
    if not await _authorized(update):
        return
    args = context.args or []
    if not 2 <= len(args) <= 3:
        await update.message.reply_text("Usage: /setsl <token_address> <stop%|stop_price> [take_profit%]")
        return
    try:
        stop_raw = args[1].strip()
        kwargs: dict[str, float] = {}
        if stop_raw.endswith("%"):
            kwargs["stop_loss_percent"] = _parse_float(stop_raw)
        else:
            kwargs["stop_loss_price"] = _parse_float(stop_raw)
        if len(args) == 3:
            kwargs["take_profit_percent"] = _parse_float(args[2])
        monitor = await _commands(context).set_exit_levels(args[0], **kwargs)
    except (PolicyConfigError, StorePersistenceError, ValueError) as exc:
        await _reply_error(update, exc)
        return
    await update.message.reply_text(f"✅ Exit levels updated for <b>{html.escape(monitor.symbol)}</b>.", parse_mode="HTML")


async def untrack_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await _authorized(update):
        return
    if len(context.args) != 1:
        await update.message.reply_text("Usage: /untrack <token_address>")
        return
    try:
        removed = _commands(context).stop_tracking(context.args[0])
    except (PolicyConfigError, StorePersistenceError) as exc:
        await _reply_error(update, exc)
        return
    await update.message.reply_text("✅ Tracking stopped." if removed else "That token is not tracked.")


async def handle_text_menu(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if update.message is None:
        return
    text = (update.message.text or "").strip()
    routes = {
        BTN_STATUS: status_command,
        BTN_PORTFOLIO: portfolio_command,
        BTN_HISTORY: history_command,
        BTN_MONITORS: monitors_command,
        BTN_PAUSE: pause_command,
        BTN_RESUME: resume_command,
    }
    handler = routes.get(text)
    if handler is not None:
        context.args = []
        await handler(update, context)
