from __future__ import annotations

import json
import os
import tempfile
import unittest
from unittest.mock import patch

from trading.models import (
    TRADE_SELL,
    BuybackPolicy,
    FlatPolicy,
    MonitoredAsset,
    Position,
    TradeHistoryEntry,
    TrailingPolicy,
    TrailTier,
)
from trading.store import (
    BLACKLIST_FILE,
    HISTORY_FILE,
    MONITORS_FILE,
    POSITIONS_FILE,
    PositionStore,
    StorePersistenceError,
)

ADDR_A = "0xAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
ADDR_B = "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"


def _position(address: str = ADDR_A, entry: float = 1.0) -> Position:
    return Position(
        token_address=address,
        symbol="AAA",
        name="Token A",
        entry_price=entry,
        current_price=entry,
        highest_price=entry,
        quantity_raw=2**60,
        usdc_invested=50.0,
        entry_ts=1000.0,
    )


def _history(idx: int) -> TradeHistoryEntry:
    return TradeHistoryEntry(
        kind=TRADE_SELL,
        token_address=ADDR_A,
        symbol=f"T{idx}",
        price=1.0,
        quantity="1",
        usdc_amount=float(idx),
        tx_hash="",
        timestamp=float(idx),
        reason="manual",
        profit_percent=0.0,
    )


class PositionStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.data_dir = self._tmp.name
        self.store = PositionStore(self.data_dir, history_limit=5)
        self.store.load()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _reload(self) -> PositionStore:
        store = PositionStore(self.data_dir, history_limit=5)
        store.load()
        return store

    def test_missing_files_load_empty(self) -> None:
        self.assertEqual(self.store.positions(), [])
        self.assertEqual(self.store.monitors(), [])
        self.assertEqual(self.store.blacklist(), set())
        self.assertEqual(self.store.get_history(), [])

    def test_position_round_trips_with_large_quantity(self) -> None:
        self.store.add_position(_position())
        loaded = self._reload().get_position(ADDR_A.lower())
        self.assertIsNotNone(loaded)
        self.assertEqual(loaded.quantity_raw, 2**60)
        with open(os.path.join(self.data_dir, POSITIONS_FILE), encoding="utf-8") as f:
            self.assertEqual(json.load(f)[0]["quantity_raw"], str(2**60))

    def test_add_position_replaces_same_address(self) -> None:
        self.store.add_position(_position(entry=1.0))
        self.store.add_position(_position(address=ADDR_A.lower(), entry=2.0))
        self.assertEqual(self.store.open_position_count(), 1)
        self.assertEqual(self.store.get_position(ADDR_A).entry_price, 2.0)

    def test_snapshots_do_not_alias_store(self) -> None:
        self.store.add_position(_position())
        snap = self.store.positions()[0]
        snap.current_price = 99.0
        self.assertEqual(self.store.get_position(ADDR_A).current_price, 1.0)

    def test_position_highest_price_only_rises(self) -> None:
        self.store.add_position(_position())
        self.store.update_position(ADDR_A, current_price=1.5, highest_price=1.5)
        updated = self.store.update_position(ADDR_A, current_price=1.2, highest_price=1.2)
        self.assertEqual(updated.highest_price, 1.5)
        self.assertEqual(updated.current_price, 1.2)

    def test_update_position_rejects_unknown_field(self) -> None:
        self.store.add_position(_position())
        with self.assertRaises(ValueError):
            self.store.update_position(ADDR_A, bogus=1)
        self.assertIsNone(self.store.update_position(ADDR_B, current_price=1.0))

    def test_remove_position(self) -> None:
        self.store.add_position(_position())
        self.store.add_position(_position(ADDR_B))
        self.assertEqual(self.store.held_addresses(), {ADDR_A.lower(), ADDR_B})
        self.assertIsNotNone(self.store.remove_position(ADDR_A))
        self.assertIsNone(self.store.remove_position(ADDR_A))
        self.assertEqual([p.token_address for p in self._reload().positions()], [ADDR_B])

    def test_add_monitor_replaces_and_preserves_policy_type(self) -> None:
        tiers = (TrailTier(50, 10), TrailTier(0, 20))
        self.store.add_monitor(MonitoredAsset(ADDR_A, "AAA", "A", FlatPolicy(1.0, 5, 20)))
        self.store.add_monitor(MonitoredAsset(ADDR_A, "AAA", "A", TrailingPolicy(1.0, tiers)))
        monitors = self._reload().monitors()
        self.assertEqual(len(monitors), 1)
        self.assertIsInstance(monitors[0].policy, TrailingPolicy)
        self.assertEqual(monitors[0].policy.tiers, tiers)

    def test_monotonic_monitor_fields_are_clamped(self) -> None:
        policy = BuybackPolicy(1.0, notify_percent=25, buyback_percent=10, usdc_per_buy=10, total_budget=100)
        self.store.add_monitor(MonitoredAsset(ADDR_A, "AAA", "A", policy))
        self.store.update_monitor(ADDR_A, highest_price=2.0, last_notified_milestone=50.0, spent=20.0, last_buyback_level=2)
        mon = self.store.update_monitor(
            ADDR_A, highest_price=1.5, last_notified_milestone=25.0, spent=10.0, last_buyback_level=1
        )
        self.assertEqual(mon.highest_price, 2.0)
        self.assertEqual(mon.last_notified_milestone, 50.0)
        self.assertEqual(mon.policy.spent, 20.0)
        self.assertEqual(mon.policy.last_buyback_level, 2)

    def test_update_monitor_rejects_field_of_other_policy(self) -> None:
        self.store.add_monitor(MonitoredAsset(ADDR_A, "AAA", "A", FlatPolicy(1.0, 5, 20)))
        with self.assertRaises(ValueError):
            self.store.update_monitor(ADDR_A, spent=5.0)
        mon = self.store.update_monitor(ADDR_A, stop_loss_percent=8.0, active=False)
        self.assertEqual(mon.policy.stop_loss_percent, 8.0)
        self.assertEqual(self.store.active_monitors(), [])

    def test_remove_and_clear_monitors(self) -> None:
        self.store.add_monitor(MonitoredAsset(ADDR_A, "AAA", "A", FlatPolicy(1.0, 5, 20)))
        self.store.add_monitor(MonitoredAsset(ADDR_B, "BBB", "B", FlatPolicy(1.0, 5, 20)))
        self.assertEqual(self.store.remove_monitor(ADDR_B.upper()).symbol, "BBB")
        self.assertIsNone(self.store.remove_monitor(ADDR_B))
        self.assertEqual(self.store.clear_monitors(), 1)
        self.assertEqual(self._reload().monitors(), [])

    def test_blacklist_is_case_insensitive(self) -> None:
        self.store.add_to_blacklist(ADDR_A)
        self.store.add_to_blacklist(ADDR_A.lower())
        self.assertTrue(self._reload().is_blacklisted(ADDR_A.lower()))
        self.assertEqual(len(self.store.blacklist()), 1)
        self.assertTrue(self.store.remove_from_blacklist(ADDR_A))
        self.assertFalse(self.store.remove_from_blacklist(ADDR_A))

    def test_history_is_capped_and_newest_last(self) -> None:
        for idx in range(8):
            self.store.append_history(_history(idx))
        self.assertEqual([e.symbol for e in self.store.full_history()], ["T3", "T4", "T5", "T6", "T7"])
        self.assertEqual([e.symbol for e in self.store.get_history(2)], ["T6", "T7"])
        self.assertEqual(self.store.get_history(0), [])
        self.assertEqual(len(self._reload().full_history()), 5)

    def test_corrupt_file_loads_as_empty(self) -> None:
        with open(os.path.join(self.data_dir, HISTORY_FILE), "w", encoding="utf-8") as f:
            f.write("{not json")
        self.assertEqual(self._reload().full_history(), [])

    def test_bad_rows_are_skipped_and_duplicates_collapse(self) -> None:
        rows = [
            {"address": ADDR_A, "policy": {"kind": "flat", "entry_price": 1, "stop_loss_percent": 5, "take_profit_percent": 20}},
            {"address": ADDR_B, "policy": {"kind": "mystery", "entry_price": 1}},
            {"address": ADDR_A.lower(), "policy": {"kind": "notify_only", "entry_price": 1, "stop_loss_price": 0.5}},
        ]
        with open(os.path.join(self.data_dir, MONITORS_FILE), "w", encoding="utf-8") as f:
            json.dump(rows, f)
        monitors = self._reload().monitors()
        self.assertEqual(len(monitors), 1)
        self.assertEqual(monitors[0].policy.kind, "notify_only")

    def test_write_failure_raises_persistence_error(self) -> None:
        with patch("trading.store.atomic_write_json", side_effect=OSError("disk full")):
            with self.assertRaises(StorePersistenceError):
                self.store.add_position(_position())
        # The in-memory change survives the failed write.
        self.assertIsNotNone(self.store.get_position(ADDR_A))

    def test_pause_flag_is_not_persisted(self) -> None:
        self.store.set_paused(True)
        self.assertTrue(self.store.paused)
        self.assertFalse(self._reload().paused)

    def test_save_all_writes_every_collection(self) -> None:
        self.store.save_all()
        for name in (POSITIONS_FILE, MONITORS_FILE, BLACKLIST_FILE, HISTORY_FILE):
            with open(os.path.join(self.data_dir, name), encoding="utf-8") as f:
                self.assertEqual(json.load(f), [])


if __name__ == "__main__":
    unittest.main()
