"""Cross-cutting lifecycle state: balance warnings, cooldowns, entry gating, sizing."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import config
from bot.messages import format_low_balance
from trading.store import PositionStore
from utils.addressing import normalize_address

logger = logging.getLogger(__name__)

GATE_OK = "ok"
GATE_PAUSED = "paused"
GATE_BLACKLISTED = "blacklisted"
GATE_ALREADY_HELD = "already_held"
GATE_COOLDOWN = "cooldown"
GATE_LOW_BALANCE = "low_balance"
GATE_CAPACITY = "max_positions"


@dataclass(frozen=True)
class GateResult:
    allowed: bool
    reason: str = GATE_OK
    detail: str = ""


class LifecycleCoordinator:
    """Owns the shared busy lock plus the state the tick body consults between items.

    `busy` is the single guard both the scheduler and manual commands take
    before touching positions.
    """

    def __init__(
        self,
        store: PositionStore,
        wallet: Any,
        notifier: Any,
        advisor: Any | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.wallet = wallet
        self.notifier = notifier
        self.advisor = advisor
        self.clock = clock
        self.busy = asyncio.Lock()
        self._reentry_until: dict[str, float] = {}
        self._last_low_balance_warn_ts = 0.0

    # --- native balance -----------------------------------------------

    async def check_native_balance(self) -> bool:
        """Warn once per cooldown window while the native balance is low.

        Returns True when a warning was sent.
        """
        try:
            balance = float(await self.wallet.native_balance())
        except Exception:
            logger.exception("BALANCE_CHECK_FAILED kind=native")
            return False
        threshold = float(config.ETH_WARN_THRESHOLD)
        if balance >= threshold:
            return False
        now = self.clock()
        window = float(config.LOW_BALANCE_WARN_COOLDOWN_SECONDS)
        if self._last_low_balance_warn_ts and now - self._last_low_balance_warn_ts < window:
            logger.debug("LOW_BALANCE_WARN_DEBOUNCED balance=%.6f", balance)
            return False
        self._last_low_balance_warn_ts = now
        logger.warning("LOW_BALANCE_WARN balance=%.6f threshold=%.6f", balance, threshold)
        await self.notifier.notify(format_low_balance(balance, threshold))
        return True

    # --- re-entry cooldown --------------------------------------------

    def set_reentry_cooldown(self, address: str, seconds: float | None = None) -> float:
        duration = float(config.REENTRY_COOLDOWN_SECONDS if seconds is None else seconds)
        until = self.clock() + max(0.0, duration)
        key = normalize_address(address)
        self._reentry_until[key] = until
        logger.info("REENTRY_COOLDOWN_SET address=%s seconds=%.0f", key, duration)
        return until

    def cooldown_remaining(self, address: str) -> float:
        key = normalize_address(address)
        until = self._reentry_until.get(key, 0.0)
        remaining = until - self.clock()
        if remaining <= 0:
            self._reentry_until.pop(key, None)
            return 0.0
        return remaining

    # --- entry gating and sizing --------------------------------------

    async def entry_gate(self, address: str, allow_held: bool = False) -> GateResult:
        """Run the pre-buy checks in order; the first failure wins.

        With `allow_held` a buy that adds to an open position passes the
        held check and does not need a free slot.
        """
        key = normalize_address(address)
        if self.store.paused:
            return GateResult(False, GATE_PAUSED)
        if self.store.is_blacklisted(key):
            return GateResult(False, GATE_BLACKLISTED)
        held = key in self.store.held_addresses()
        if held and not allow_held:
            return GateResult(False, GATE_ALREADY_HELD)
        remaining = self.cooldown_remaining(key)
        if remaining > 0:
            return GateResult(False, GATE_COOLDOWN, f"{remaining:.0f}s left")
        balance = await self.quote_balance()
        if balance < float(config.MIN_USDC_BALANCE):
            return GateResult(False, GATE_LOW_BALANCE, f"usdc={balance:.2f}")
        free_slots = int(config.MAX_POSITIONS) - self.store.open_position_count()
        if not held and free_slots <= 0:
            return GateResult(False, GATE_CAPACITY, f"open={self.store.open_position_count()}")
        return GateResult(True)

    async def investable_amount(self) -> float:
        """USDC to commit to the next buy, from a fresh balance read."""
        balance = await self.quote_balance()
        return max(0.0, balance * float(config.TRADE_PERCENT) / 100.0)

    async def quote_balance(self) -> float:
        try:
            return float(await self.wallet.quote_balance())
        except Exception:
            logger.exception("BALANCE_CHECK_FAILED kind=quote")
            return 0.0

    # --- advisory -----------------------------------------------------

    async def collect_advice(self, positions: list) -> list:
        """Ask the advisor about `positions`; any failure yields no advice."""
        if self.advisor is None or not positions:
            return []
        if not getattr(self.advisor, "enabled", True):
            return []
        try:
            advice = await self.advisor.review(positions)
        except Exception as exc:
            logger.warning("ADVISORY_UNAVAILABLE err=%s", exc)
            return []
        return list(advice or [])
