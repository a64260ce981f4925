"""Tracked-asset, position and trade-history records plus their JSON shapes."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Union

from utils.addressing import normalize_address

POLICY_TRAILING = "trailing"
POLICY_FLAT = "flat"
POLICY_NOTIFY_ONLY = "notify_only"
POLICY_BUYBACK = "buyback"

TRADE_BUY = "buy"
TRADE_SELL = "sell"

REASON_STOP_LOSS = "stop-loss"
REASON_TAKE_PROFIT = "take-profit"
REASON_MANUAL = "manual"
REASON_ADVISORY = "advisory"
REASON_BUYBACK = "buyback"
REASON_ENTRY = "entry"


@dataclass(frozen=True)
class TrailTier:
    min_profit_percent: float
    trail_percent: float


@dataclass
class TrailingPolicy:
    entry_price: float
    tiers: tuple[TrailTier, ...] = ()
    default_trail_percent: float = 20.0
    kind: str = field(default=POLICY_TRAILING, init=False)


@dataclass
class FlatPolicy:
    entry_price: float
    stop_loss_percent: float
    take_profit_percent: float
    reentry_cooldown_seconds: int = 30
    stop_loss_price: float | None = None
    kind: str = field(default=POLICY_FLAT, init=False)


@dataclass
class NotifyOnlyPolicy:
    entry_price: float
    stop_loss_price: float
    kind: str = field(default=POLICY_NOTIFY_ONLY, init=False)


@dataclass
class BuybackPolicy:
    entry_price: float
    notify_percent: float
    buyback_percent: float
    usdc_per_buy: float
    total_budget: float
    spent: float = 0.0
    last_buyback_level: int = 0
    kind: str = field(default=POLICY_BUYBACK, init=False)

    @property
    def remaining_budget(self) -> float:
        return max(0.0, self.total_budget - self.spent)


Policy = Union[TrailingPolicy, FlatPolicy, NotifyOnlyPolicy, BuybackPolicy]


@dataclass
class MonitoredAsset:
    address: str
    symbol: str
    name: str
    policy: Policy
    highest_price: float = 0.0
    last_notified_milestone: float = 0.0
    active: bool = True
    added_at: float = field(default_factory=time.time)
    dex_url: str = ""

    def __post_init__(self) -> None:
        self.address = normalize_address(self.address)
        if self.highest_price <= 0:
            self.highest_price = float(self.policy.entry_price)


@dataclass
class Position:
    token_address: str
    symbol: str
    name: str
    entry_price: float
    current_price: float
    highest_price: float
    quantity_raw: int
    usdc_invested: float
    entry_ts: float
    buy_tx_hash: str = ""
    dex_url: str = ""

    def __post_init__(self) -> None:
        self.token_address = normalize_address(self.token_address)

    @property
    def profit_percent(self) -> float:
        if self.entry_price <= 0:
            return 0.0
        return (self.current_price - self.entry_price) / self.entry_price * 100.0


@dataclass(frozen=True)
class TradeHistoryEntry:
    kind: str
    token_address: str
    symbol: str
    price: float
    quantity: str
    usdc_amount: float
    tx_hash: str
    timestamp: float
    reason: str | None = None
    profit_percent: float | None = None


# --- serialization -------------------------------------------------------


def policy_to_dict(policy: Policy) -> dict[str, Any]:
    row = asdict(policy)
    if isinstance(policy, TrailingPolicy):
        row["tiers"] = [
            {"min_profit_percent": t.min_profit_percent, "trail_percent": t.trail_percent} for t in policy.tiers
        ]
    return row


def policy_from_dict(row: dict[str, Any]) -> Policy:
    kind = str(row.get("kind", "")).strip().lower()
    if kind == POLICY_TRAILING:
        tiers = tuple(
            TrailTier(float(t["min_profit_percent"]), float(t["trail_percent"])) for t in (row.get("tiers") or [])
        )
        return TrailingPolicy(
            entry_price=float(row["entry_price"]),
            tiers=tiers,
            default_trail_percent=float(row.get("default_trail_percent", 20.0)),
        )
    if kind == POLICY_FLAT:
        sl_price = row.get("stop_loss_price")
        return FlatPolicy(
            entry_price=float(row["entry_price"]),
            stop_loss_percent=float(row["stop_loss_percent"]),
            take_profit_percent=float(row["take_profit_percent"]),
            reentry_cooldown_seconds=int(row.get("reentry_cooldown_seconds", 30)),
            stop_loss_price=float(sl_price) if sl_price is not None else None,
        )
    if kind == POLICY_NOTIFY_ONLY:
        return NotifyOnlyPolicy(
            entry_price=float(row["entry_price"]),
            stop_loss_price=float(row["stop_loss_price"]),
        )
    if kind == POLICY_BUYBACK:
        return BuybackPolicy(
            entry_price=float(row["entry_price"]),
            notify_percent=float(row["notify_percent"]),
            buyback_percent=float(row["buyback_percent"]),
            usdc_per_buy=float(row["usdc_per_buy"]),
            total_budget=float(row["total_budget"]),
            spent=float(row.get("spent", 0.0)),
            last_buyback_level=int(row.get("last_buyback_level", 0)),
        )
    raise ValueError(f"unknown policy kind: {kind!r}")


def monitor_to_dict(monitor: MonitoredAsset) -> dict[str, Any]:
    return {
        "address": monitor.address,
        "symbol": monitor.symbol,
        "name": monitor.name,
        "policy": policy_to_dict(monitor.policy),
        "highest_price": monitor.highest_price,
        "last_notified_milestone": monitor.last_notified_milestone,
        "active": monitor.active,
        "added_at": monitor.added_at,
        "dex_url": monitor.dex_url,
    }


def monitor_from_dict(row: dict[str, Any]) -> MonitoredAsset:
    return MonitoredAsset(
        address=str(row["address"]),
        symbol=str(row.get("symbol", "N/A")),
        name=str(row.get("name", "")),
        policy=policy_from_dict(dict(row["policy"])),
        highest_price=float(row.get("highest_price", 0.0)),
        last_notified_milestone=float(row.get("last_notified_milestone", 0.0)),
        active=bool(row.get("active", True)),
        added_at=float(row.get("added_at", 0.0)),
        dex_url=str(row.get("dex_url", "")),
    )


def position_to_dict(pos: Position) -> dict[str, Any]:
    row = asdict(pos)
    # Raw token amounts can exceed 2**53; keep them exact in JSON.
    row["quantity_raw"] = str(pos.quantity_raw)
    return row


def position_from_dict(row: dict[str, Any]) -> Position:
    return Position(
        token_address=str(row["token_address"]),
        symbol=str(row.get("symbol", "N/A")),
        name=str(row.get("name", "")),
        entry_price=float(row["entry_price"]),
        current_price=float(row.get("current_price", row["entry_price"])),
        highest_price=float(row.get("highest_price", row["entry_price"])),
        quantity_raw=int(str(row.get("quantity_raw", "0"))),
        usdc_invested=float(row.get("usdc_invested", 0.0)),
        entry_ts=float(row.get("entry_ts", 0.0)),
        buy_tx_hash=str(row.get("buy_tx_hash", "")),
        dex_url=str(row.get("dex_url", "")),
    )


def history_to_dict(entry: TradeHistoryEntry) -> dict[str, Any]:
    return asdict(entry)


def history_from_dict(row: dict[str, Any]) -> TradeHistoryEntry:
    profit = row.get("profit_percent")
    reason = row.get("reason")
    return TradeHistoryEntry(
        kind=str(row["kind"]),
        token_address=normalize_address(str(row["token_address"])),
        symbol=str(row.get("symbol", "N/A")),
        price=float(row.get("price", 0.0)),
        quantity=str(row.get("quantity", "")),
        usdc_amount=float(row.get("usdc_amount", 0.0)),
        tx_hash=str(row.get("tx_hash", "")),
        timestamp=float(row.get("timestamp", 0.0)),
        reason=str(reason) if reason is not None else None,
        profit_percent=float(profit) if profit is not None else None,
    )
