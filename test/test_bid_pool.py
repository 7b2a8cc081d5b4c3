"""
Unit tests for the bid pool snapshots.
"""

import unittest
import sys
import os
import numpy as np

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))
from bid_pool import BidPoolStore, PRODUCT_FLOOR, SCALE_FACTOR
from fixed_point import Decimal256
from queue_errors import InvalidAmount, NotFound

TOKEN = "bluna"


class TestBidPoolStore(unittest.TestCase):
    def setUp(self):
        """Initialize a store with one empty pool in slot 0"""
        self.store = BidPoolStore()
        self.pool = self.store.get_or_create(TOKEN, 0, Decimal256.zero())

    def test_new_pool(self):
        self.assertEqual(self.pool.product_snapshot, Decimal256.one())
        self.assertEqual(self.pool.sum_snapshot, Decimal256.zero())
        self.assertEqual(self.pool.current_epoch, 0)
        self.assertEqual(self.pool.current_scale, 0)
        self.assertEqual(self.store.sum_at(TOKEN, 0, 0, 0), Decimal256.zero())
        self.assertIsNone(self.store.sum_at(TOKEN, 0, 0, 1))

    def test_get_missing_pool(self):
        self.assertIsNone(self.store.find(TOKEN, 1))
        with self.assertRaises(NotFound):
            self.store.get(TOKEN, 1)

    def test_get_or_create_is_stable(self):
        """A second call returns the same pool"""
        self.store.deposit(TOKEN, 0, 100)
        pool = self.store.get_or_create(TOKEN, 0, Decimal256.percent(5))
        self.assertIs(pool, self.pool)
        self.assertEqual(pool.premium_rate, Decimal256.zero())

    def test_pools_by_collateral(self):
        self.store.get_or_create(TOKEN, 4, Decimal256.percent(4))
        self.store.get_or_create(TOKEN, 2, Decimal256.percent(2))
        self.store.get_or_create("other", 1, Decimal256.percent(1))

        self.assertEqual([slot for slot, _ in self.store.pools_by_collateral(TOKEN)], [0, 2, 4])
        self.store.deposit(TOKEN, 2, 300)
        self.store.deposit("other", 1, 50)
        self.assertEqual(self.store.total_bids(TOKEN), 300)

    def test_deposit_and_withdraw(self):
        self.store.deposit(TOKEN, 0, 500)
        self.store.withdraw(TOKEN, 0, 200)
        self.assertEqual(self.pool.total_bid_amount, 300)

        with self.assertRaises(InvalidAmount):
            self.store.withdraw(TOKEN, 0, 301)
        with self.assertRaises(InvalidAmount):
            self.store.deposit(TOKEN, 0, 0)

    def test_fill_updates_snapshots(self):
        """S grows by P * collateral / total and P shrinks by the filled share"""
        self.store.deposit(TOKEN, 0, 1000)
        self.store.apply_fill(TOKEN, 0, 500, 50)

        self.assertEqual(self.pool.total_bid_amount, 500)
        self.assertEqual(self.pool.product_snapshot, Decimal256.from_str("0.5"))
        self.assertEqual(self.pool.sum_snapshot, Decimal256.from_str("0.05"))

        self.store.apply_fill(TOKEN, 0, 250, 30)
        self.assertEqual(self.pool.product_snapshot, Decimal256.from_str("0.25"))
        # 0.05 + 0.5 * 30 / 500
        self.assertEqual(self.pool.sum_snapshot, Decimal256.from_str("0.08"))
        self.assertEqual(self.store.sum_at(TOKEN, 0, 0, 0), Decimal256.from_str("0.08"))

    def test_fill_rejects_invalid_amounts(self):
        with self.assertRaises(InvalidAmount):
            self.store.apply_fill(TOKEN, 0, 10, 1)

        self.store.deposit(TOKEN, 0, 100)
        with self.assertRaises(InvalidAmount):
            self.store.apply_fill(TOKEN, 0, 101, 1)

    def test_depletion_starts_new_epoch(self):
        self.store.deposit(TOKEN, 0, 1000)
        self.store.track_bid(TOKEN, 0, 0, 1)
        self.store.apply_fill(TOKEN, 0, 1000, 100)

        self.assertEqual(self.pool.current_epoch, 1)
        self.assertEqual(self.pool.current_scale, 0)
        self.assertEqual(self.pool.product_snapshot, Decimal256.one())
        self.assertEqual(self.pool.sum_snapshot, Decimal256.zero())
        # Closing sum of epoch 0 is kept for the tracked bid
        self.assertEqual(self.store.sum_at(TOKEN, 0, 0, 0), Decimal256.from_str("0.1"))

        self.store.untrack_bid(TOKEN, 0, 0, 1)
        self.assertIsNone(self.store.sum_at(TOKEN, 0, 0, 0))

    def test_depletion_without_bids_prunes_history(self):
        self.store.deposit(TOKEN, 0, 1000)
        self.store.apply_fill(TOKEN, 0, 1000, 100)
        self.assertNotIn(0, self.store.epoch_scale_sums[(TOKEN, 0)])

    def test_current_epoch_is_never_pruned(self):
        self.store.deposit(TOKEN, 0, 1000)
        self.store.track_bid(TOKEN, 0, 0, 1)
        self.store.untrack_bid(TOKEN, 0, 0, 1)
        self.assertEqual(self.store.sum_at(TOKEN, 0, 0, 0), Decimal256.zero())

    def test_withdrawing_everything_starts_new_epoch(self):
        self.store.deposit(TOKEN, 0, 500)
        self.store.track_bid(TOKEN, 0, 0, 1)
        self.store.apply_fill(TOKEN, 0, 250, 10)
        self.store.withdraw(TOKEN, 0, 250)

        self.assertEqual(self.pool.current_epoch, 1)
        self.assertEqual(self.pool.product_snapshot, Decimal256.one())
        # Bid 1 still holds a snapshot from epoch 0
        self.assertEqual(self.store.bids_in_epoch(TOKEN, 0, 0), [1])
        self.assertEqual(self.store.sum_at(TOKEN, 0, 0, 0), Decimal256.from_str("0.02"))

    def test_bids_in_epoch(self):
        for idx in (3, 1, 2):
            self.store.track_bid(TOKEN, 0, 0, idx)
        self.store.untrack_bid(TOKEN, 0, 0, 2)
        self.assertEqual(self.store.bids_in_epoch(TOKEN, 0, 0), [1, 3])
        self.assertEqual(self.store.bids_in_epoch(TOKEN, 0, 1), [])

    def test_rescale(self):
        """P below the floor is multiplied by SCALE_FACTOR"""
        self.store.deposit(TOKEN, 0, 10 ** 12)
        self.store.apply_fill(TOKEN, 0, 10 ** 12 - 1, 10 ** 12 - 1)

        self.assertEqual(self.pool.current_scale, 1)
        self.assertEqual(self.pool.product_snapshot.atoms, 10 ** 6 * SCALE_FACTOR)
        self.assertEqual(self.pool.sum_snapshot, Decimal256.zero())
        self.assertEqual(self.store.sum_at(TOKEN, 0, 0, 0), Decimal256(10 ** 6 * (10 ** 12 - 1)))
        self.assertEqual(self.store.sum_at(TOKEN, 0, 0, 1), Decimal256.zero())

    def test_multiple_rescales_in_one_fill(self):
        self.store.deposit(TOKEN, 0, 10 ** 21)
        self.store.apply_fill(TOKEN, 0, 10 ** 21 - 1, 1)

        # 1e-21 needs two rescales to get back above 1e-9
        self.assertEqual(self.pool.current_scale, 2)
        self.assertGreaterEqual(self.pool.product_snapshot, PRODUCT_FLOOR)
        self.assertEqual(self.store.sum_at(TOKEN, 0, 0, 2), Decimal256.zero())

    def test_product_stays_in_range(self):
        """P stays in (0, 1] through random partial fills"""
        rng = np.random.default_rng(42)
        self.store.deposit(TOKEN, 0, 10 ** 9)

        for _ in range(200):
            total = self.pool.total_bid_amount
            if total <= 1:
                self.store.deposit(TOKEN, 0, int(rng.integers(1, 10 ** 6)))
                continue
            fill = int(rng.integers(1, total))
            epoch = self.pool.current_epoch
            self.store.apply_fill(TOKEN, 0, fill, int(rng.integers(0, 10 ** 4)))

            self.assertEqual(self.pool.current_epoch, epoch)
            self.assertGreater(self.pool.product_snapshot, Decimal256.zero())
            self.assertLessEqual(self.pool.product_snapshot, Decimal256.one())
            self.assertGreaterEqual(self.pool.product_snapshot, PRODUCT_FLOOR)


if __name__ == "__main__":
    unittest.main()
