"""Pure exit/notify/buyback decisions for tracked assets.

Nothing here performs I/O: callers pass the current price and act on the
returned verdict. Percent values are plain percents (5.0 means 5%).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence

from trading.models import (
    REASON_STOP_LOSS,
    REASON_TAKE_PROFIT,
    BuybackPolicy,
    FlatPolicy,
    MonitoredAsset,
    NotifyOnlyPolicy,
    Position,
    TrailingPolicy,
    TrailTier,
)

EXIT_HOLD = "hold"
EXIT_STOP_LOSS = REASON_STOP_LOSS
EXIT_TAKE_PROFIT = REASON_TAKE_PROFIT

ACTION_HOLD = "hold"
ACTION_EXIT = "exit"
ACTION_ENTER = "enter"
ACTION_BUYBACK = "buyback"
ACTION_STOP_ALERT = "stop_alert"

DEFAULT_TRAIL_TIERS: tuple[TrailTier, ...] = (
    TrailTier(100.0, 5.0),
    TrailTier(50.0, 10.0),
    TrailTier(0.0, 20.0),
)
DEFAULT_TRAIL_PERCENT = 20.0

# Float noise guard for floor() on percent ratios (1 - 0.9 is 0.0999...).
_LEVEL_ROUND_DIGITS = 9


@dataclass(frozen=True)
class TrailStop:
    stop_price: float
    trail_percent: float
    profit_percent: float


@dataclass(frozen=True)
class Verdict:
    action: str
    reason: str = ""
    milestone: float | None = None
    buyback_level: int | None = None
    stop_price: float | None = None
    trail_percent: float | None = None


def profit_percent(entry_price: float, price: float) -> float:
    if entry_price <= 0:
        return 0.0
    return (price - entry_price) / entry_price * 100.0


def ratchet_high(highest_price: float, current_price: float) -> float:
    return max(float(highest_price), float(current_price))


def tiers_from_pairs(pairs: Iterable[tuple[float, float]]) -> tuple[TrailTier, ...]:
    return tuple(TrailTier(float(p), float(t)) for p, t in pairs)


def tiers_sorted_descending(tiers: Sequence[TrailTier]) -> bool:
    return all(tiers[i].min_profit_percent >= tiers[i + 1].min_profit_percent for i in range(len(tiers) - 1))


def compute_trail_stop(
    entry_price: float,
    highest_price: float,
    tiers: Sequence[TrailTier],
    default_trail_percent: float = DEFAULT_TRAIL_PERCENT,
) -> TrailStop:
    """Stop price trailing `highest_price` by the first tier the peak profit reaches.

    Tiers are scanned in the given order, so callers pass them highest
    threshold first. The result is recomputed from scratch on every call.
    """
    peak_profit = profit_percent(entry_price, highest_price)
    trail = float(default_trail_percent)
    for tier in tiers:
        if tier.min_profit_percent <= peak_profit:
            trail = float(tier.trail_percent)
            break
    return TrailStop(
        stop_price=highest_price * (1.0 - trail / 100.0),
        trail_percent=trail,
        profit_percent=peak_profit,
    )


def check_flat_exit(
    entry_price: float,
    stop_loss_percent: float,
    take_profit_percent: float,
    current_price: float,
    stop_loss_price: float | None = None,
) -> str:
    """Fixed-level exit check.

    Take-profit is evaluated before stop-loss, so a config where both fire
    at once (e.g. a take-profit below entry) resolves to take-profit. A fixed
    `stop_loss_price` replaces the percent-derived stop level.
    """
    if current_price >= entry_price * (1.0 + take_profit_percent / 100.0):
        return EXIT_TAKE_PROFIT
    stop_level = stop_loss_price if stop_loss_price is not None else entry_price * (1.0 - stop_loss_percent / 100.0)
    if current_price <= stop_level:
        return EXIT_STOP_LOSS
    return EXIT_HOLD


def next_milestone(entry_price: float, current_price: float, last_notified: float, step_percent: float) -> float | None:
    """Highest gain level reached if it is new; skipped levels are not backfilled."""
    if entry_price <= 0 or step_percent <= 0:
        return None
    gain = profit_percent(entry_price, current_price)
    level = math.floor(round(gain / step_percent, _LEVEL_ROUND_DIGITS)) * step_percent
    if level > 0 and level > last_notified:
        return float(level)
    return None


def next_buyback_level(entry_price: float, current_price: float, last_level: int, buyback_percent: float) -> int | None:
    if entry_price <= 0 or buyback_percent <= 0 or current_price >= entry_price:
        return None
    drop = (entry_price - current_price) / entry_price * 100.0
    level = int(math.floor(round(drop / buyback_percent, _LEVEL_ROUND_DIGITS)))
    if level > last_level:
        return level
    return None


def buyback_spend(usdc_per_buy: float, total_budget: float, spent: float) -> float:
    """USDC to spend on the next rung; 0.0 once the budget is exhausted."""
    if spent >= total_budget:
        return 0.0
    return max(0.0, min(usdc_per_buy, total_budget - spent))


# --- per-item verdicts ---------------------------------------------------


def evaluate_position_trailing(
    position: Position,
    current_price: float,
    tiers: Sequence[TrailTier],
    default_trail_percent: float = DEFAULT_TRAIL_PERCENT,
) -> Verdict:
    highest = ratchet_high(position.highest_price, current_price)
    stop = compute_trail_stop(position.entry_price, highest, tiers, default_trail_percent)
    if current_price <= stop.stop_price:
        return Verdict(ACTION_EXIT, EXIT_STOP_LOSS, stop_price=stop.stop_price, trail_percent=stop.trail_percent)
    return Verdict(ACTION_HOLD, stop_price=stop.stop_price, trail_percent=stop.trail_percent)


def evaluate_monitor(
    monitor: MonitoredAsset,
    current_price: float,
    position: Position | None,
    milestone_step_percent: float,
    default_tiers: Sequence[TrailTier] = DEFAULT_TRAIL_TIERS,
    default_trail_percent: float = DEFAULT_TRAIL_PERCENT,
) -> Verdict:
    """Verdict for one monitored asset at `current_price`.

    Exit-type outcomes win over milestones; a held verdict carries the
    milestone to announce, if any.
    """
    policy = monitor.policy
    step = milestone_step_percent

    if isinstance(policy, FlatPolicy):
        if position is None:
            return Verdict(ACTION_ENTER)
        outcome = check_flat_exit(
            position.entry_price,
            policy.stop_loss_percent,
            policy.take_profit_percent,
            current_price,
            policy.stop_loss_price,
        )
        if outcome != EXIT_HOLD:
            return Verdict(ACTION_EXIT, outcome)
    elif isinstance(policy, NotifyOnlyPolicy):
        if current_price <= policy.stop_loss_price:
            if position is not None:
                return Verdict(ACTION_EXIT, EXIT_STOP_LOSS, stop_price=policy.stop_loss_price)
            return Verdict(ACTION_STOP_ALERT, EXIT_STOP_LOSS, stop_price=policy.stop_loss_price)
    elif isinstance(policy, TrailingPolicy):
        if position is not None:
            verdict = evaluate_position_trailing(
                position,
                current_price,
                policy.tiers or default_tiers,
                policy.default_trail_percent or default_trail_percent,
            )
            if verdict.action == ACTION_EXIT:
                return verdict
    elif isinstance(policy, BuybackPolicy):
        step = policy.notify_percent
        level = next_buyback_level(policy.entry_price, current_price, policy.last_buyback_level, policy.buyback_percent)
        if level is not None and policy.spent < policy.total_budget:
            return Verdict(ACTION_BUYBACK, buyback_level=level)
    else:
        raise TypeError(f"unsupported policy type: {type(policy).__name__}")

    milestone = next_milestone(policy.entry_price, current_price, monitor.last_notified_milestone, step)
    return Verdict(ACTION_HOLD, milestone=milestone)
