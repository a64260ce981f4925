"""Tick body: price refresh, exit/entry/buyback execution and advisory review."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

import config
from bot.messages import (
    format_buy,
    format_buyback,
    format_exit_failed,
    format_milestone,
    format_sell,
    format_stop_alert,
)
from trading.coordinator import GATE_ALREADY_HELD, GATE_COOLDOWN, LifecycleCoordinator
from trading.exit_rules import (
    ACTION_BUYBACK,
    ACTION_ENTER,
    ACTION_EXIT,
    ACTION_STOP_ALERT,
    buyback_spend,
    evaluate_monitor,
    evaluate_position_trailing,
    tiers_from_pairs,
)
from trading.models import (
    REASON_ADVISORY,
    REASON_BUYBACK,
    REASON_ENTRY,
    REASON_STOP_LOSS,
    REASON_TAKE_PROFIT,
    TRADE_BUY,
    TRADE_SELL,
    BuybackPolicy,
    FlatPolicy,
    MonitoredAsset,
    Position,
    TradeHistoryEntry,
)
from trading.store import PositionStore
from utils.addressing import normalize_address

logger = logging.getLogger(__name__)

ADVICE_SELL = "sell"

# Exits after which a Flat monitor re-arms for another entry.
REENTRY_REASONS = {REASON_STOP_LOSS, REASON_TAKE_PROFIT}


@dataclass
class EntryCandidate:
    address: str
    symbol: str = ""
    name: str = ""
    price: float | None = None
    dex_url: str = ""


class PositionEngine:
    """Processes every tracked item once per tick.

    Work order is fixed: active monitors in insertion order, then open
    positions that have no active monitor (governed by the configured
    trailing tiers). Failures are contained per item.
    """

    def __init__(
        self,
        store: PositionStore,
        coordinator: LifecycleCoordinator,
        price_feed: Any,
        executor: Any,
        notifier: Any,
    ) -> None:
        self.store = store
        self.coordinator = coordinator
        self.price_feed = price_feed
        self.executor = executor
        self.notifier = notifier
        self.default_tiers = tiers_from_pairs(config.TRAIL_TIERS)

    async def run_tick(self, tick_no: int) -> int:
        if tick_no % int(config.BALANCE_CHECK_EVERY_TICKS) == 0:
            await self.coordinator.check_native_balance()
            self._log_source_stats()

        processed = 0
        failed = 0
        monitors = self.store.active_monitors()
        monitored = {m.address for m in monitors}
        for monitor in monitors:
            try:
                await self.process_monitor(monitor)
                processed += 1
            except Exception:
                failed += 1
                logger.exception("ITEM_FAILED kind=monitor address=%s symbol=%s", monitor.address, monitor.symbol)
        for position in self.store.positions():
            if position.token_address in monitored:
                continue
            try:
                await self.process_position(position)
                processed += 1
            except Exception:
                failed += 1
                logger.exception(
                    "ITEM_FAILED kind=position address=%s symbol=%s", position.token_address, position.symbol
                )

        every = int(config.ADVISORY_EVERY_TICKS)
        if every > 0 and tick_no % every == 0:
            try:
                await self.run_advisory()
            except Exception:
                logger.exception("ADVISORY_FAILED tick=%s", tick_no)

        logger.info("TICK_DONE tick=%s items=%s failed=%s", tick_no, processed, failed)
        return processed

    def _log_source_stats(self) -> None:
        runtime_stats = getattr(self.price_feed, "runtime_stats", None)
        if runtime_stats is None:
            return
        for source, row in runtime_stats(reset=True).items():
            logger.info(
                "SOURCE_STATS source=%s ok=%s fail=%s rate_limited=%s retries=%s error_percent=%s latency_avg_ms=%s",
                source,
                row.get("ok", 0),
                row.get("fail", 0),
                row.get("rate_limited", 0),
                row.get("retries", 0),
                row.get("error_percent", 0.0),
                row.get("latency_avg_ms", 0.0),
            )

    # --- per-item processing ------------------------------------------

    async def _fetch_price(self, address: str, symbol: str) -> float | None:
        price = await self.price_feed.get_price(address)
        if price is None or price <= 0:
            logger.warning("PRICE_UNAVAILABLE address=%s symbol=%s", address, symbol)
            return None
        return float(price)

    def _refresh_position(self, address: str, price: float) -> Position | None:
        if self.store.get_position(address) is None:
            return None
        return self.store.update_position(address, current_price=price, highest_price=price)

    async def process_monitor(self, monitor: MonitoredAsset) -> None:
        price = await self._fetch_price(monitor.address, monitor.symbol)
        if price is None:
            return
        position = self._refresh_position(monitor.address, price)
        if price > monitor.highest_price:
            self.store.update_monitor(monitor.address, highest_price=price)

        verdict = evaluate_monitor(
            monitor,
            price,
            position,
            config.MILESTONE_STEP_PERCENT,
            self.default_tiers,
            config.DEFAULT_TRAIL_PERCENT,
        )
        logger.debug(
            "MONITOR_CHECK address=%s symbol=%s policy=%s price=%.10g action=%s",
            monitor.address,
            monitor.symbol,
            monitor.policy.kind,
            price,
            verdict.action,
        )

        if verdict.action == ACTION_EXIT and position is not None:
            await self.exit_position(position, verdict.reason, price)
        elif verdict.action == ACTION_ENTER:
            await self._enter_focus(monitor, price)
        elif verdict.action == ACTION_BUYBACK and verdict.buyback_level is not None:
            await self._buyback(monitor, price, verdict.buyback_level)
        elif verdict.action == ACTION_STOP_ALERT:
            logger.info("STOP_ALERT address=%s symbol=%s price=%.10g", monitor.address, monitor.symbol, price)
            await self.notifier.notify(format_stop_alert(monitor, price, verdict.stop_price or price))
            self.store.update_monitor(monitor.address, active=False)
        elif verdict.milestone is not None:
            logger.info(
                "MILESTONE_REACHED address=%s symbol=%s level=%s price=%.10g",
                monitor.address,
                monitor.symbol,
                verdict.milestone,
                price,
            )
            await self.notifier.notify(format_milestone(monitor, price, verdict.milestone))
            self.store.update_monitor(monitor.address, last_notified_milestone=verdict.milestone)

    async def process_position(self, position: Position) -> None:
        price = await self._fetch_price(position.token_address, position.symbol)
        if price is None:
            return
        refreshed = self._refresh_position(position.token_address, price)
        if refreshed is None:
            return
        verdict = evaluate_position_trailing(refreshed, price, self.default_tiers, config.DEFAULT_TRAIL_PERCENT)
        if verdict.action == ACTION_EXIT:
            logger.info(
                "TRAIL_STOP_HIT address=%s symbol=%s price=%.10g stop=%.10g trail=%s",
                refreshed.token_address,
                refreshed.symbol,
                price,
                verdict.stop_price or 0.0,
                verdict.trail_percent,
            )
            await self.exit_position(refreshed, verdict.reason, price)

    # --- exit path ----------------------------------------------------

    async def exit_position(self, position: Position, reason: str, price: float | None = None) -> TradeHistoryEntry | None:
        """Sell the whole position; on success record history and drop it.

        After a stop-loss or take-profit a Flat monitor on the same address is
        reset for re-entry and put on cooldown. A manual or advisory exit
        deactivates it instead, so the token is not bought back. Any other
        monitor is removed.
        """
        address = position.token_address
        price = float(price if price is not None else position.current_price)
        amount: int | str = position.quantity_raw if position.quantity_raw > 0 else "all"
        result = await self.executor.sell(address, amount)
        if not result.success:
            logger.error(
                "EXIT_FAILED address=%s symbol=%s reason=%s err=%s",
                address,
                position.symbol,
                reason,
                result.error,
            )
            await self.notifier.notify(format_exit_failed(position.symbol, reason, price, result.error or "unknown"))
            return None

        proceeds = float(result.proceeds_amount or 0.0)
        if proceeds > 0 and position.usdc_invested > 0:
            pnl = (proceeds - position.usdc_invested) / position.usdc_invested * 100.0
        else:
            pnl = (price - position.entry_price) / position.entry_price * 100.0 if position.entry_price > 0 else 0.0
        entry = TradeHistoryEntry(
            kind=TRADE_SELL,
            token_address=address,
            symbol=position.symbol,
            price=price,
            quantity=str(result.filled_quantity or position.quantity_raw),
            usdc_amount=proceeds,
            tx_hash=result.tx_hash or "",
            timestamp=self.coordinator.clock(),
            reason=reason,
            profit_percent=pnl,
        )
        self.store.append_history(entry)
        self.store.remove_position(address)

        monitor = self.store.get_monitor(address)
        if monitor is not None:
            if isinstance(monitor.policy, FlatPolicy) and reason not in REENTRY_REASONS:
                self.store.update_monitor(address, active=False)
                logger.info("FOCUS_REENTRY_DISABLED address=%s reason=%s", address, reason)
            elif isinstance(monitor.policy, FlatPolicy):
                # Fresh runtime fields; add_monitor replaces the old record.
                self.store.add_monitor(
                    replace(
                        monitor,
                        highest_price=0.0,
                        last_notified_milestone=0.0,
                        active=True,
                        added_at=self.coordinator.clock(),
                    )
                )
                self.coordinator.set_reentry_cooldown(address, monitor.policy.reentry_cooldown_seconds)
            else:
                self.store.remove_monitor(address)

        logger.info(
            "EXIT_EXECUTED address=%s symbol=%s reason=%s price=%.10g proceeds=%.2f pnl=%.2f dry_run=%s tx=%s",
            address,
            position.symbol,
            reason,
            price,
            proceeds,
            pnl,
            getattr(result, "dry_run", False),
            result.tx_hash or "-",
        )
        await self.notifier.notify(format_sell(entry))
        return entry

    # --- entry path ---------------------------------------------------

    async def enter(self, candidate: EntryCandidate, reason: str = REASON_ENTRY) -> Position | None:
        address = normalize_address(candidate.address)
        gate = await self.coordinator.entry_gate(address)
        if not gate.allowed:
            # Cooldown and held states repeat every tick for a focus token.
            log = logger.debug if gate.reason in {GATE_COOLDOWN, GATE_ALREADY_HELD} else logger.info
            log("ENTRY_BLOCKED address=%s reason=%s detail=%s", address, gate.reason, gate.detail)
            return None

        amount = await self.coordinator.investable_amount()
        if amount <= 0:
            logger.info("ENTRY_BLOCKED address=%s reason=zero_size", address)
            return None

        price = candidate.price
        if price is None:
            price = await self._fetch_price(address, candidate.symbol)
            if price is None:
                return None

        result = await self.executor.buy(address, amount)
        if not result.success:
            logger.error("ENTRY_FAILED address=%s usdc=%.2f err=%s", address, amount, result.error)
            return None

        now = self.coordinator.clock()
        position = Position(
            token_address=address,
            symbol=candidate.symbol or "N/A",
            name=candidate.name or candidate.symbol or "",
            entry_price=float(price),
            current_price=float(price),
            highest_price=float(price),
            quantity_raw=int(result.filled_quantity or 0),
            usdc_invested=float(amount),
            entry_ts=now,
            buy_tx_hash=result.tx_hash or "",
            dex_url=candidate.dex_url,
        )
        self.store.add_position(position)
        self.store.append_history(
            TradeHistoryEntry(
                kind=TRADE_BUY,
                token_address=address,
                symbol=position.symbol,
                price=position.entry_price,
                quantity=str(position.quantity_raw),
                usdc_amount=position.usdc_invested,
                tx_hash=position.buy_tx_hash,
                timestamp=now,
                reason=reason,
            )
        )
        logger.info(
            "ENTRY_EXECUTED address=%s symbol=%s usdc=%.2f price=%.10g qty=%s dry_run=%s",
            address,
            position.symbol,
            amount,
            position.entry_price,
            position.quantity_raw,
            getattr(result, "dry_run", False),
        )
        await self.notifier.notify(format_buy(position, reason))
        return position

    async def enter_batch(self, candidates: list[EntryCandidate]) -> list[Position]:
        """Buy candidates in order; sizing re-reads the balance before each buy."""
        opened: list[Position] = []
        for candidate in candidates:
            try:
                position = await self.enter(candidate)
            except Exception:
                logger.exception("ENTRY_FAILED address=%s", candidate.address)
                continue
            if position is not None:
                opened.append(position)
        logger.info("ENTRY_BATCH_DONE candidates=%s opened=%s", len(candidates), len(opened))
        return opened

    async def _enter_focus(self, monitor: MonitoredAsset, price: float) -> None:
        position = await self.enter(
            EntryCandidate(monitor.address, monitor.symbol, monitor.name, price, monitor.dex_url)
        )
        if position is None:
            return
        self.store.add_monitor(
            replace(
                monitor,
                policy=replace(monitor.policy, entry_price=position.entry_price),
                highest_price=position.entry_price,
                last_notified_milestone=0.0,
            )
        )

    # --- buyback ladder -----------------------------------------------

    async def _buyback(self, monitor: MonitoredAsset, price: float, level: int) -> None:
        policy = monitor.policy
        if not isinstance(policy, BuybackPolicy):
            return
        spend = buyback_spend(policy.usdc_per_buy, policy.total_budget, policy.spent)
        if spend <= 0:
            return
        gate = await self.coordinator.entry_gate(monitor.address, allow_held=True)
        if not gate.allowed:
            logger.info(
                "BUYBACK_SKIPPED address=%s reason=%s detail=%s level=%s",
                monitor.address,
                gate.reason,
                gate.detail,
                level,
            )
            return
        balance = await self.coordinator.quote_balance()
        if balance < spend:
            logger.warning(
                "BUYBACK_SKIPPED address=%s reason=low_balance usdc=%.2f need=%.2f", monitor.address, balance, spend
            )
            return

        result = await self.executor.buy(monitor.address, spend)
        if not result.success:
            logger.error("BUYBACK_FAILED address=%s level=%s err=%s", monitor.address, level, result.error)
            return

        spent = policy.spent + spend
        self.store.update_monitor(monitor.address, spent=spent, last_buyback_level=level)
        now = self.coordinator.clock()
        filled = int(result.filled_quantity or 0)
        held = self.store.get_position(monitor.address)
        if held is None:
            self.store.add_position(
                Position(
                    token_address=monitor.address,
                    symbol=monitor.symbol,
                    name=monitor.name,
                    entry_price=price,
                    current_price=price,
                    highest_price=price,
                    quantity_raw=filled,
                    usdc_invested=spend,
                    entry_ts=now,
                    buy_tx_hash=result.tx_hash or "",
                    dex_url=monitor.dex_url,
                )
            )
        else:
            # USDC-weighted average entry across the ladder fills.
            invested = held.usdc_invested + spend
            units = (held.usdc_invested / held.entry_price if held.entry_price > 0 else 0.0) + spend / price
            self.store.update_position(
                monitor.address,
                entry_price=invested / units if units > 0 else price,
                quantity_raw=held.quantity_raw + filled,
                usdc_invested=invested,
            )
        self.store.append_history(
            TradeHistoryEntry(
                kind=TRADE_BUY,
                token_address=monitor.address,
                symbol=monitor.symbol,
                price=price,
                quantity=str(filled),
                usdc_amount=spend,
                tx_hash=result.tx_hash or "",
                timestamp=now,
                reason=REASON_BUYBACK,
            )
        )
        remaining = replace(policy, spent=spent).remaining_budget
        logger.info(
            "BUYBACK_EXECUTED address=%s level=%s spend=%.2f remaining=%.2f",
            monitor.address,
            level,
            spend,
            remaining,
        )
        await self.notifier.notify(format_buyback(monitor, price, level, spend, remaining, result.tx_hash or ""))

    # --- advisory -----------------------------------------------------

    async def run_advisory(self) -> int:
        """Act on `sell` advice for open positions; returns the number of exits."""
        positions = self.store.positions()
        advice = await self.coordinator.collect_advice(positions)
        exits = 0
        for item in advice:
            address = normalize_address(getattr(item, "token_address", ""))
            action = str(getattr(item, "action", "")).lower()
            logger.info(
                "ADVISORY_ADVICE address=%s action=%s reason=%s",
                address,
                action,
                getattr(item, "reason", ""),
            )
            if action != ADVICE_SELL:
                continue
            position = self.store.get_position(address)
            if position is None:
                continue
            try:
                if await self.exit_position(position, REASON_ADVISORY, position.current_price):
                    exits += 1
            except Exception:
                logger.exception("ADVISORY_EXIT_FAILED address=%s", address)
        return exits
