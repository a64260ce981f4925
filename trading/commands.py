"""Plain-call command surface: tracking changes, manual sells, pause and blacklist."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Sequence

import config
from trading.engine import EntryCandidate, PositionEngine
from trading.exit_rules import compute_trail_stop, tiers_from_pairs, tiers_sorted_descending
from trading.models import (
    REASON_MANUAL,
    BuybackPolicy,
    FlatPolicy,
    MonitoredAsset,
    NotifyOnlyPolicy,
    Position,
    TradeHistoryEntry,
    TrailingPolicy,
    TrailTier,
)
from utils.addressing import is_valid_address, normalize_address

logger = logging.getLogger(__name__)


class PolicyConfigError(ValueError):
    """A tracking request was malformed; nothing was stored."""


@dataclass
class TrackResult:
    monitor: MonitoredAsset
    position: Position | None = None


@dataclass
class ForceSellResult:
    position: Position
    entry: TradeHistoryEntry | None

    @property
    def success(self) -> bool:
        return self.entry is not None


@dataclass
class StatusSnapshot:
    eth_balance: float | None
    usdc_balance: float | None
    paused: bool
    positions: list[Position] = field(default_factory=list)
    monitors: list[MonitoredAsset] = field(default_factory=list)
    max_positions: int = 0
    dry_run: bool = False


def _positive(name: str, value: float | None) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise PolicyConfigError(f"{name} must be a number") from None
    if not math.isfinite(number) or number <= 0:
        raise PolicyConfigError(f"{name} must be positive")
    return number


def _percent(name: str, value: float | None, cap: float | None = None) -> float:
    number = _positive(name, value)
    if cap is not None and number >= cap:
        raise PolicyConfigError(f"{name} must be below {cap:g}")
    return number


class TradingCommands:
    def __init__(self, engine: PositionEngine) -> None:
        self.engine = engine
        self.store = engine.store
        self.coordinator = engine.coordinator
        self.price_feed = engine.price_feed
        self.executor = engine.executor

    @staticmethod
    def _address(value: str) -> str:
        if not is_valid_address(value):
            raise PolicyConfigError(f"invalid token address: {value!r}")
        return normalize_address(value)

    async def _token(self, address: str) -> Any:
        info = await self.price_feed.get_token_info(address)
        if info is None or not info.price or info.price <= 0:
            raise PolicyConfigError(f"no price available for {address}")
        return info

    def _monitor(self, info: Any, policy: Any) -> MonitoredAsset:
        return MonitoredAsset(
            address=info.address,
            symbol=info.symbol or "N/A",
            name=info.name or "",
            policy=policy,
            dex_url=getattr(info, "dex_url", "") or "",
            added_at=self.coordinator.clock(),
        )

    async def _track(self, monitor: MonitoredAsset, buy: bool) -> TrackResult:
        if not buy:
            self.store.add_monitor(monitor)
            return TrackResult(monitor)
        async with self.coordinator.busy:
            self.store.add_monitor(monitor)
            position = await self.engine.enter(
                EntryCandidate(
                    monitor.address, monitor.symbol, monitor.name, monitor.policy.entry_price, monitor.dex_url
                )
            )
        return TrackResult(self.store.get_monitor(monitor.address) or monitor, position)

    # --- tracking -----------------------------------------------------

    async def track_flat(
        self,
        address: str,
        stop_loss_percent: float | None = None,
        take_profit_percent: float | None = None,
        stop_loss_price: float | None = None,
        cooldown_seconds: int | None = None,
        buy: bool = True,
    ) -> TrackResult:
        """Single-focus fixed stop/target tracking; buys immediately when `buy`."""
        key = self._address(address)
        sl = _percent("stop_loss_percent", config.STOP_LOSS_PERCENT if stop_loss_percent is None else stop_loss_percent, cap=100)
        tp = _percent(
            "take_profit_percent", config.TAKE_PROFIT_PERCENT if take_profit_percent is None else take_profit_percent
        )
        cooldown = config.REENTRY_COOLDOWN_SECONDS if cooldown_seconds is None else int(cooldown_seconds)
        if cooldown < 0:
            raise PolicyConfigError("cooldown_seconds must not be negative")
        info = await self._token(key)
        if stop_loss_price is not None:
            stop_loss_price = _positive("stop_loss_price", stop_loss_price)
            if stop_loss_price >= info.price:
                raise PolicyConfigError("stop_loss_price must be below the current price")
        policy = FlatPolicy(
            entry_price=info.price,
            stop_loss_percent=sl,
            take_profit_percent=tp,
            reentry_cooldown_seconds=cooldown,
            stop_loss_price=stop_loss_price,
        )
        return await self._track(self._monitor(info, policy), buy)

    async def track_trailing(
        self,
        address: str,
        tiers: Sequence[tuple[float, float]] | None = None,
        default_trail_percent: float | None = None,
        buy: bool = False,
    ) -> TrackResult:
        key = self._address(address)
        parsed: tuple[TrailTier, ...] = tiers_from_pairs(tiers if tiers is not None else config.TRAIL_TIERS)
        if not tiers_sorted_descending(parsed):
            raise PolicyConfigError("trail tiers must be sorted by descending profit threshold")
        for tier in parsed:
            if not 0 < tier.trail_percent < 100:
                raise PolicyConfigError("trail percent must be between 0 and 100")
        default_trail = _positive(
            "default_trail_percent",
            config.DEFAULT_TRAIL_PERCENT if default_trail_percent is None else default_trail_percent,
        )
        if default_trail >= 100:
            raise PolicyConfigError("default_trail_percent must be below 100")
        info = await self._token(key)
        policy = TrailingPolicy(entry_price=info.price, tiers=parsed, default_trail_percent=default_trail)
        return await self._track(self._monitor(info, policy), buy)

    async def track_notify_only(self, address: str, stop_loss_price: float) -> TrackResult:
        key = self._address(address)
        stop = _positive("stop_loss_price", stop_loss_price)
        info = await self._token(key)
        if stop >= info.price:
            raise PolicyConfigError(
                f"stop_loss_price {stop:.10g} must be below the current price {info.price:.10g}"
            )
        return await self._track(self._monitor(info, NotifyOnlyPolicy(entry_price=info.price, stop_loss_price=stop)), False)

    async def track_buyback(
        self,
        address: str,
        buyback_percent: float | None = None,
        usdc_per_buy: float | None = None,
        total_budget: float | None = None,
        notify_percent: float | None = None,
    ) -> TrackResult:
        key = self._address(address)
        drop = _percent("buyback_percent", config.BUYBACK_PERCENT if buyback_percent is None else buyback_percent, cap=100)
        per_buy = _positive("usdc_per_buy", config.BUYBACK_USDC_PER_BUY if usdc_per_buy is None else usdc_per_buy)
        budget = _positive("total_budget", config.BUYBACK_TOTAL_BUDGET if total_budget is None else total_budget)
        notify = _positive(
            "notify_percent", config.BUYBACK_NOTIFY_PERCENT if notify_percent is None else notify_percent
        )
        if budget < per_buy:
            raise PolicyConfigError("total_budget must be at least usdc_per_buy")
        info = await self._token(key)
        policy = BuybackPolicy(
            entry_price=info.price,
            notify_percent=notify,
            buyback_percent=drop,
            usdc_per_buy=per_buy,
            total_budget=budget,
        )
        return await self._track(self._monitor(info, policy), False)

    async def set_exit_levels(
        self,
        address: str,
        stop_loss_percent: float | None = None,
        take_profit_percent: float | None = None,
        stop_loss_price: float | None = None,
    ) -> MonitoredAsset:
        key = self._address(address)
        monitor = self.store.get_monitor(key)
        if monitor is None:
            raise PolicyConfigError(f"{key} is not tracked")
        updates: dict[str, Any] = {}
        policy = monitor.policy
        if isinstance(policy, FlatPolicy):
            if stop_loss_percent is not None:
                updates["stop_loss_percent"] = _percent("stop_loss_percent", stop_loss_percent, cap=100)
            if take_profit_percent is not None:
                updates["take_profit_percent"] = _percent("take_profit_percent", take_profit_percent)
            if stop_loss_price is not None:
                updates["stop_loss_price"] = _positive("stop_loss_price", stop_loss_price)
        elif isinstance(policy, NotifyOnlyPolicy):
            if stop_loss_percent is not None or take_profit_percent is not None:
                raise PolicyConfigError("notify-only tracking takes a stop_loss_price only")
            if stop_loss_price is not None:
                updates["stop_loss_price"] = _positive("stop_loss_price", stop_loss_price)
        else:
            raise PolicyConfigError(f"{policy.kind} tracking has no fixed exit levels")
        if not updates:
            raise PolicyConfigError("no exit level given")
        if "stop_loss_price" in updates:
            price = await self.price_feed.get_price(key)
            if not price or price <= 0:
                raise PolicyConfigError(f"no price available for {key}")
            if updates["stop_loss_price"] >= price:
                raise PolicyConfigError(
                    f"stop_loss_price {updates['stop_loss_price']:.10g} must be below the current price {price:.10g}"
                )
        return self.store.update_monitor(key, **updates) or monitor

    def stop_tracking(self, address: str) -> bool:
        return self.store.remove_monitor(self._address(address)) is not None

    # --- manual sell --------------------------------------------------

    async def force_sell(self, address: str) -> ForceSellResult | None:
        """Sell an open position now; None when nothing is held.

        Waits for any in-flight tick, then re-reads the position so a sell
        the tick already made is not submitted twice.
        """
        key = self._address(address)
        async with self.coordinator.busy:
            position = self.store.get_position(key)
            if position is None:
                logger.info("FORCE_SELL_NO_POSITION address=%s", key)
                return None
            price = await self.price_feed.get_price(key)
            entry = await self.engine.exit_position(position, REASON_MANUAL, price or position.current_price)
        return ForceSellResult(position=position, entry=entry)

    # --- trading switches ---------------------------------------------

    def pause(self) -> None:
        self.store.set_paused(True)

    def resume(self) -> None:
        self.store.set_paused(False)

    def blacklist(self, address: str) -> str:
        key = self._address(address)
        self.store.add_to_blacklist(key)
        return key

    def unblacklist(self, address: str) -> bool:
        return self.store.remove_from_blacklist(self._address(address))

    # --- read-only views ----------------------------------------------

    async def status_snapshot(self) -> StatusSnapshot:
        eth: float | None
        usdc: float | None
        try:
            eth = float(await self.executor.native_balance())
            usdc = float(await self.executor.quote_balance())
        except Exception as exc:
            logger.warning("STATUS_BALANCE_UNAVAILABLE err=%s", exc)
            eth, usdc = None, None
        return StatusSnapshot(
            eth_balance=eth,
            usdc_balance=usdc,
            paused=self.store.paused,
            positions=self.store.positions(),
            monitors=self.store.monitors(),
            max_positions=int(config.MAX_POSITIONS),
            dry_run=bool(config.DRY_RUN),
        )

    def portfolio_rows(self) -> list[tuple[Position, float, float]]:
        rows = []
        monitors = {m.address: m for m in self.store.active_monitors()}
        for pos in self.store.positions():
            policy = monitors[pos.token_address].policy if pos.token_address in monitors else None
            tiers = self.engine.default_tiers
            default_trail = config.DEFAULT_TRAIL_PERCENT
            if isinstance(policy, TrailingPolicy):
                tiers = policy.tiers or tiers
                default_trail = policy.default_trail_percent
            stop = compute_trail_stop(pos.entry_price, pos.highest_price, tiers, default_trail)
            stop_price, trail = stop.stop_price, stop.trail_percent
            if isinstance(policy, FlatPolicy):
                trail = policy.stop_loss_percent
                stop_price = policy.stop_loss_price or pos.entry_price * (1 - trail / 100.0)
            elif isinstance(policy, NotifyOnlyPolicy):
                stop_price = policy.stop_loss_price
                trail = (pos.highest_price - stop_price) / pos.highest_price * 100.0 if pos.highest_price > 0 else 0.0
            rows.append((pos, stop_price, trail))
        return rows
