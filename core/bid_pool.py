"""
Bid Pool Model for the Liquidation Queue.

One BidPool exists per (collateral token, premium slot). Instead of touching
every bid on each liquidation, a pool keeps two running snapshots:

- product_snapshot (P): how much of one unit of stable deposited at the start
  of the current epoch is still unexecuted.
- sum_snapshot (S): collateral earned per unit of stable, weighted by P at the
  time of each liquidation.

A bid records P and S when it joins, and its remaining amount and collateral
gain are later derived from the change in P and S. When a liquidation or the
last withdrawal empties the pool, the epoch is incremented and P/S restart. When P gets too small to
represent accurately, it is multiplied by SCALE_FACTOR and the scale is
incremented; S restarts for each new scale and the closing S of every
(epoch, scale) pair is kept in the history for bids that still refer to it.
"""

import logging
from dataclasses import dataclass, field

from fixed_point import DECIMAL_FRACTIONAL, Decimal256
from queue_errors import InvalidAmount, NotFound

logger = logging.getLogger(__name__)

# Factor applied to P when it drops below PRODUCT_FLOOR
SCALE_FACTOR = 10 ** 9
PRODUCT_FLOOR = Decimal256(DECIMAL_FRACTIONAL // SCALE_FACTOR)  # 1e-9


@dataclass
class BidPool:
    """Aggregate state of all active bids in one (collateral, slot) pair."""
    premium_rate: Decimal256
    sum_snapshot: Decimal256 = field(default_factory=Decimal256.zero)
    product_snapshot: Decimal256 = field(default_factory=Decimal256.one)
    total_bid_amount: int = 0
    current_epoch: int = 0
    current_scale: int = 0


class BidPoolStore:
    """
    Keyed store of bid pools plus the epoch/scale sum history.

    The history keeps, per pool, the last S value of every (epoch, scale)
    pair. An epoch's entries are dropped once the pool has moved past it and
    no active bid still holds a snapshot from it.
    """

    def __init__(self):
        self.pools = {}             # (token, slot) -> BidPool
        self.epoch_scale_sums = {}  # (token, slot) -> {epoch: {scale: Decimal256}}
        self.epoch_bids = {}        # (token, slot) -> {epoch: set of active bid indexes}

    def find(self, collateral_token, slot):
        """Returns the pool or None when it was never created."""
        return self.pools.get((collateral_token, slot))

    def get(self, collateral_token, slot):
        """
        Returns an existing pool.

        Raises:
            NotFound: If no bid was ever activated in the slot
        """
        pool = self.find(collateral_token, slot)
        if pool is None:
            raise NotFound(f"Bid pool not found: {collateral_token} slot {slot}")
        return pool

    def get_or_create(self, collateral_token, slot, premium_rate):
        """Returns the pool, creating an empty one with the slot's premium rate."""
        key = (collateral_token, slot)
        pool = self.pools.get(key)
        if pool is None:
            pool = BidPool(premium_rate=premium_rate)
            self.pools[key] = pool
            self.epoch_scale_sums[key] = {0: {0: Decimal256.zero()}}
            self.epoch_bids[key] = {}
        return pool

    def pools_by_collateral(self, collateral_token):
        """Returns [(slot, pool)] for a collateral in ascending slot order."""
        return sorted(
            ((slot, pool) for (token, slot), pool in self.pools.items() if token == collateral_token),
            key=lambda item: item[0],
        )

    def total_bids(self, collateral_token):
        """Active stable amount across all slots of a collateral."""
        return sum(pool.total_bid_amount for _, pool in self.pools_by_collateral(collateral_token))

    def deposit(self, collateral_token, slot, amount):
        """Adds an activated bid amount to the pool total."""
        if amount <= 0:
            raise InvalidAmount("Deposit amount must be greater than zero")
        pool = self.get(collateral_token, slot)
        pool.total_bid_amount += amount
        return pool

    def withdraw(self, collateral_token, slot, amount):
        """
        Removes a retracted amount from the pool total. A pool emptied by
        withdrawals starts a new epoch, the same as one emptied by a fill.
        """
        pool = self.get(collateral_token, slot)
        if amount > pool.total_bid_amount:
            raise InvalidAmount(
                f"Withdrawal of {amount} exceeds pool total {pool.total_bid_amount}")
        pool.total_bid_amount -= amount
        if pool.total_bid_amount == 0:
            self._start_epoch((collateral_token, slot), pool)
        return pool

    def sum_at(self, collateral_token, slot, epoch, scale):
        """
        Returns the S value recorded for (epoch, scale), or None when the pool
        never reached that scale in that epoch.
        """
        epochs = self.epoch_scale_sums.get((collateral_token, slot), {})
        return epochs.get(epoch, {}).get(scale)

    def track_bid(self, collateral_token, slot, epoch, bid_idx):
        """Registers an active bid holding a snapshot from the given epoch."""
        self.epoch_bids[(collateral_token, slot)].setdefault(epoch, set()).add(bid_idx)

    def untrack_bid(self, collateral_token, slot, epoch, bid_idx):
        """Releases a bid snapshot and prunes the epoch history when unused."""
        key = (collateral_token, slot)
        bids = self.epoch_bids[key].get(epoch)
        if bids is not None:
            bids.discard(bid_idx)
            if bids:
                return
            del self.epoch_bids[key][epoch]
        self._prune_epoch(key, epoch)

    def bids_in_epoch(self, collateral_token, slot, epoch):
        """Indexes of the active bids holding a snapshot from the epoch, ascending."""
        return sorted(self.epoch_bids.get((collateral_token, slot), {}).get(epoch, ()))

    def _prune_epoch(self, key, epoch):
        pool = self.pools[key]
        if epoch >= pool.current_epoch:
            return
        if self.epoch_bids[key].get(epoch):
            return
        if self.epoch_scale_sums[key].pop(epoch, None) is not None:
            logger.debug("Pruned sum history of %s slot %s epoch %d", key[0], key[1], epoch)

    def _set_sum(self, key, pool, value):
        pool.sum_snapshot = value
        self.epoch_scale_sums[key].setdefault(pool.current_epoch, {})[pool.current_scale] = value

    def _start_epoch(self, key, pool):
        closed_epoch = pool.current_epoch
        pool.current_epoch += 1
        pool.current_scale = 0
        pool.product_snapshot = Decimal256.one()
        self._set_sum(key, pool, Decimal256.zero())
        self._prune_epoch(key, closed_epoch)
        logger.info("Pool %s slot %s emptied, epoch %d -> %d",
                    key[0], key[1], closed_epoch, pool.current_epoch)

    def apply_fill(self, collateral_token, slot, stable_amount, collateral_amount):
        """
        Applies one liquidation fill to a pool's snapshots in O(1).

        Args:
            collateral_token: Address of the collateral token
            slot: Premium slot of the pool
            stable_amount: Stable amount consumed from the pool
            collateral_amount: Collateral credited to the pool's bidders

        Returns:
            The updated BidPool
        """
        key = (collateral_token, slot)
        pool = self.get(collateral_token, slot)
        total = pool.total_bid_amount

        if total == 0:
            raise InvalidAmount(f"Cannot fill empty pool {collateral_token} slot {slot}")
        if stable_amount > total:
            raise InvalidAmount(f"Fill of {stable_amount} exceeds pool total {total}")

        # S += P * collateral / total
        sum_increase = Decimal256(pool.product_snapshot.atoms * collateral_amount // total)
        self._set_sum(key, pool, pool.sum_snapshot + sum_increase)

        new_total = total - stable_amount

        if new_total == 0:
            self._start_epoch(key, pool)
        else:
            # P *= new_total / total, rescaling while P is below the floor
            numerator = pool.product_snapshot.atoms * new_total
            new_product = numerator // total
            while new_product < PRODUCT_FLOOR.atoms:
                numerator *= SCALE_FACTOR
                new_product = numerator // total
                pool.current_scale += 1
                self._set_sum(key, pool, Decimal256.zero())
                logger.info("Pool %s slot %s rescaled to scale %d",
                            collateral_token, slot, pool.current_scale)
            pool.product_snapshot = Decimal256(new_product)

        pool.total_bid_amount = new_total
        logger.debug("Filled %s slot %s: stable=%d collateral=%d remaining=%d",
                     collateral_token, slot, stable_amount, collateral_amount, new_total)
        return pool
