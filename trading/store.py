"""Durable store for positions, monitors, blacklist and trade history.

Each collection lives in its own JSON file and is rewritten in full, atomically,
after every mutation. The in-memory copies are owned here; callers get
snapshots (copies of the lists) and mutate only through store methods.
"""

from __future__ import annotations

import logging
import os
from dataclasses import fields, replace
from typing import Any, Callable

import config
from trading.models import (
    MonitoredAsset,
    Position,
    TradeHistoryEntry,
    history_from_dict,
    history_to_dict,
    monitor_from_dict,
    monitor_to_dict,
    position_from_dict,
    position_to_dict,
)
from utils.addressing import normalize_address
from utils.state_file import atomic_write_json, load_json_list

logger = logging.getLogger(__name__)

POSITIONS_FILE = "positions.json"
MONITORS_FILE = "monitors.json"
BLACKLIST_FILE = "blacklist.json"
HISTORY_FILE = "history.json"

# Runtime fields that only ever move up.
_MONOTONIC_MONITOR_FIELDS = {"highest_price", "last_notified_milestone"}
_MONOTONIC_POLICY_FIELDS = {"spent", "last_buyback_level"}


class StorePersistenceError(RuntimeError):
    """A collection could not be rewritten; the in-memory change is kept."""


class PositionStore:
    def __init__(self, data_dir: str | None = None, history_limit: int | None = None) -> None:
        self.data_dir = str(data_dir or config.DATA_DIR)
        self.history_limit = max(1, int(history_limit or config.HISTORY_MAX_ENTRIES))
        self._positions: list[Position] = []
        self._monitors: list[MonitoredAsset] = []
        self._blacklist: list[str] = []
        self._history: list[TradeHistoryEntry] = []
        self._paused = False

    def _path(self, name: str) -> str:
        return os.path.join(self.data_dir, name)

    # --- load / save ---------------------------------------------------

    def load(self) -> None:
        self._positions = self._load_rows(POSITIONS_FILE, position_from_dict)
        self._monitors = self._load_rows(MONITORS_FILE, monitor_from_dict)
        self._history = self._load_rows(HISTORY_FILE, history_from_dict)[-self.history_limit :]
        blacklist: list[str] = []
        for value in load_json_list(self._path(BLACKLIST_FILE)):
            addr = normalize_address(value)
            if addr and addr not in blacklist:
                blacklist.append(addr)
        self._blacklist = blacklist

        # Collapse duplicate addresses left by older files; last record wins.
        self._positions = list({p.token_address: p for p in self._positions}.values())
        self._monitors = list({m.address: m for m in self._monitors}.values())
        logger.info(
            "STORE_LOADED dir=%s positions=%s monitors=%s blacklist=%s history=%s",
            self.data_dir,
            len(self._positions),
            len(self._monitors),
            len(self._blacklist),
            len(self._history),
        )

    def _load_rows(self, name: str, parse: Callable[[dict[str, Any]], Any]) -> list[Any]:
        out: list[Any] = []
        for row in load_json_list(self._path(name)):
            try:
                out.append(parse(dict(row)))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("STORE_ROW_SKIPPED file=%s err=%s", name, exc)
        return out

    def _write(self, name: str, payload: list[Any]) -> None:
        try:
            atomic_write_json(self._path(name), payload)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("STORE_WRITE_FAILED file=%s err=%s", name, exc)
            raise StorePersistenceError(f"failed to persist {name}: {exc}") from exc

    def _save_positions(self) -> None:
        self._write(POSITIONS_FILE, [position_to_dict(p) for p in self._positions])

    def _save_monitors(self) -> None:
        self._write(MONITORS_FILE, [monitor_to_dict(m) for m in self._monitors])

    def _save_blacklist(self) -> None:
        self._write(BLACKLIST_FILE, list(self._blacklist))

    def _save_history(self) -> None:
        self._write(HISTORY_FILE, [history_to_dict(e) for e in self._history])

    def save_all(self) -> None:
        self._save_positions()
        self._save_monitors()
        self._save_blacklist()
        self._save_history()
        logger.info("STORE_SAVED_ALL dir=%s", self.data_dir)

    # --- positions -----------------------------------------------------

    def positions(self) -> list[Position]:
        return [replace(p) for p in self._positions]

    def get_position(self, address: str) -> Position | None:
        key = normalize_address(address)
        for pos in self._positions:
            if pos.token_address == key:
                return replace(pos)
        return None

    def open_position_count(self) -> int:
        return len(self._positions)

    def held_addresses(self) -> set[str]:
        return {p.token_address for p in self._positions}

    def add_position(self, position: Position) -> None:
        """Record an open position; an existing one for the same address is replaced."""
        key = normalize_address(position.token_address)
        self._positions = [p for p in self._positions if p.token_address != key]
        self._positions.append(replace(position))
        self._save_positions()
        logger.info(
            "STORE_POSITION_ADD address=%s symbol=%s entry=%.10g invested=%.2f",
            key,
            position.symbol,
            position.entry_price,
            position.usdc_invested,
        )

    def update_position(self, address: str, **updates: Any) -> Position | None:
        key = normalize_address(address)
        pos = next((p for p in self._positions if p.token_address == key), None)
        if pos is None:
            return None
        allowed = {f.name for f in fields(Position)} - {"token_address"}
        unknown = set(updates) - allowed
        if unknown:
            raise ValueError(f"unknown position fields: {sorted(unknown)}")
        if "highest_price" in updates:
            updates["highest_price"] = max(pos.highest_price, float(updates["highest_price"]))
        for name, value in updates.items():
            setattr(pos, name, value)
        self._save_positions()
        logger.debug("STORE_POSITION_UPDATE address=%s fields=%s", key, ",".join(sorted(updates)))
        return replace(pos)

    def remove_position(self, address: str) -> Position | None:
        key = normalize_address(address)
        for idx, pos in enumerate(self._positions):
            if pos.token_address == key:
                removed = self._positions.pop(idx)
                self._save_positions()
                logger.info("STORE_POSITION_REMOVE address=%s symbol=%s", key, removed.symbol)
                return removed
        return None

    # --- monitors ------------------------------------------------------

    def monitors(self) -> list[MonitoredAsset]:
        return [replace(m, policy=replace(m.policy)) for m in self._monitors]

    def active_monitors(self) -> list[MonitoredAsset]:
        return [m for m in self.monitors() if m.active]

    def get_monitor(self, address: str) -> MonitoredAsset | None:
        key = normalize_address(address)
        for mon in self._monitors:
            if mon.address == key:
                return replace(mon, policy=replace(mon.policy))
        return None

    def add_monitor(self, monitor: MonitoredAsset) -> None:
        """Start tracking `monitor`, atomically replacing any monitor on the same address."""
        key = normalize_address(monitor.address)
        self._monitors = [m for m in self._monitors if m.address != key]
        self._monitors.append(replace(monitor, policy=replace(monitor.policy)))
        self._save_monitors()
        logger.info(
            "STORE_MONITOR_ADD address=%s symbol=%s policy=%s entry=%.10g",
            key,
            monitor.symbol,
            monitor.policy.kind,
            monitor.policy.entry_price,
        )

    def update_monitor(self, address: str, **updates: Any) -> MonitoredAsset | None:
        """Apply partial field updates to a monitor or its policy.

        Keys name either a MonitoredAsset field or a field of its policy.
        Monotonic runtime fields keep the larger of old and new values.
        """
        key = normalize_address(address)
        mon = next((m for m in self._monitors if m.address == key), None)
        if mon is None:
            return None
        monitor_fields = {f.name for f in fields(MonitoredAsset)} - {"address", "policy"}
        policy_fields = {f.name for f in fields(mon.policy) if f.init}
        unknown = set(updates) - monitor_fields - policy_fields
        if unknown:
            raise ValueError(f"unknown monitor fields for {mon.policy.kind}: {sorted(unknown)}")

        for name, value in updates.items():
            if name in monitor_fields:
                if name in _MONOTONIC_MONITOR_FIELDS:
                    value = max(getattr(mon, name), value)
                setattr(mon, name, value)
            else:
                if name in _MONOTONIC_POLICY_FIELDS:
                    value = max(getattr(mon.policy, name), value)
                setattr(mon.policy, name, value)
        self._save_monitors()
        logger.info("STORE_MONITOR_UPDATE address=%s fields=%s", key, ",".join(sorted(updates)))
        return replace(mon, policy=replace(mon.policy))

    def remove_monitor(self, address: str) -> MonitoredAsset | None:
        key = normalize_address(address)
        for idx, mon in enumerate(self._monitors):
            if mon.address == key:
                removed = self._monitors.pop(idx)
                self._save_monitors()
                logger.info("STORE_MONITOR_REMOVE address=%s symbol=%s", key, removed.symbol)
                return removed
        return None

    def clear_monitors(self) -> int:
        count = len(self._monitors)
        self._monitors = []
        self._save_monitors()
        logger.info("STORE_MONITORS_CLEARED count=%s", count)
        return count

    # --- blacklist -----------------------------------------------------

    def blacklist(self) -> set[str]:
        return set(self._blacklist)

    def is_blacklisted(self, address: str) -> bool:
        return normalize_address(address) in self._blacklist

    def add_to_blacklist(self, address: str) -> None:
        key = normalize_address(address)
        if key not in self._blacklist:
            self._blacklist.append(key)
        self._save_blacklist()
        logger.info("STORE_BLACKLIST_ADD address=%s", key)

    def remove_from_blacklist(self, address: str) -> bool:
        key = normalize_address(address)
        if key not in self._blacklist:
            return False
        self._blacklist.remove(key)
        self._save_blacklist()
        logger.info("STORE_BLACKLIST_REMOVE address=%s", key)
        return True

    # --- history -------------------------------------------------------

    def append_history(self, entry: TradeHistoryEntry) -> None:
        self._history.append(entry)
        if len(self._history) > self.history_limit:
            self._history = self._history[-self.history_limit :]
        self._save_history()
        logger.info(
            "STORE_HISTORY_APPEND kind=%s address=%s symbol=%s usdc=%.2f reason=%s",
            entry.kind,
            entry.token_address,
            entry.symbol,
            entry.usdc_amount,
            entry.reason or "-",
        )

    def get_history(self, limit: int = 10) -> list[TradeHistoryEntry]:
        if limit <= 0:
            return []
        return list(self._history[-limit:])

    def full_history(self) -> list[TradeHistoryEntry]:
        return list(self._history)

    # --- trading pause -------------------------------------------------

    @property
    def paused(self) -> bool:
        return self._paused

    def set_paused(self, paused: bool) -> None:
        self._paused = bool(paused)
        logger.info("STORE_PAUSED_SET paused=%s", self._paused)

