"""
Claim Engine for the Liquidation Queue model.

Reconciliation is the lazy settlement of bids against their pool: from the
change in the pool's product and sum snapshots since a bid's last update it
derives how much of the bid is still unexecuted and how much collateral the
bid has earned. It runs on retraction and on claims, never during a
liquidation, so liquidations stay O(1) in the number of bids.

Remaining amounts are whole stable units while the snapshots only give each
bid's exact share. Reconciling a bid therefore settles every active bid of
its pool's current epoch together, and the units lost to rounding are handed
out so that the remainders always add up to the pool total.
"""

import logging

from bid_pool import SCALE_FACTOR
from fixed_point import DECIMAL_FRACTIONAL, Decimal256
from queue_errors import NotActive, NotFound, NothingToClaim, Unauthorized

logger = logging.getLogger(__name__)


class ClaimEngine:
    """
    Settles individual bids against the shared bid pool snapshots.
    """

    def __init__(self, bid_pools, bids):
        self.bid_pools = bid_pools
        self.bids = bids

    def exact_share(self, bid, pool):
        """
        Calculates a bid's unexecuted stable in Decimal256 atoms, before rounding.

        A bid whose epoch has ended was fully consumed. Within the same epoch,
        the amount shrinks by P_now / P_bid, divided by SCALE_FACTOR once per
        scale change since the bid's snapshot.
        """
        if pool.current_epoch > bid.epoch_snapshot:
            return 0

        scale_diff = pool.current_scale - bid.scale_snapshot
        denominator = bid.product_snapshot.atoms * SCALE_FACTOR ** scale_diff
        return bid.amount * DECIMAL_FRACTIONAL * pool.product_snapshot.atoms // denominator

    def remaining_bids(self, collateral_token, slot):
        """
        Splits a pool's total over the active bids of its current epoch.

        Every bid gets the floor of its exact share. The units lost to rounding
        go one at a time to the bids with the largest fractional share, lowest
        index first; bids already reduced to zero only take part when no other
        bid is left.

        Args:
            collateral_token: Address of the collateral token
            slot: Premium slot of the pool

        Returns:
            Dict of bid index to remaining amount, summing to total_bid_amount
        """
        pool = self.bid_pools.get(collateral_token, slot)
        bids = [self.bids.get(idx)
                for idx in self.bid_pools.bids_in_epoch(collateral_token, slot, pool.current_epoch)]

        shares = {bid.idx: self.exact_share(bid, pool) for bid in bids}
        remaining = {idx: share // DECIMAL_FRACTIONAL for idx, share in shares.items()}

        # P only rounds down, so the floors never exceed the pool total
        dust = pool.total_bid_amount - sum(remaining.values())
        receivers = [bid.idx for bid in bids if bid.amount > 0] or list(remaining)
        if dust > 0 and receivers:
            base, extra = divmod(dust, len(receivers))
            receivers.sort(key=lambda idx: (-(shares[idx] % DECIMAL_FRACTIONAL), idx))
            for rank, idx in enumerate(receivers):
                remaining[idx] += base + (1 if rank < extra else 0)
        return remaining

    def remaining_bid(self, bid):
        """Returns the unexecuted stable amount an active bid would settle to."""
        pool = self.bid_pools.get(bid.collateral_token, bid.premium_slot)
        if pool.current_epoch > bid.epoch_snapshot:
            return 0
        return self.remaining_bids(bid.collateral_token, bid.premium_slot)[bid.idx]

    def liquidated_collateral(self, bid):
        """
        Calculates the collateral a bid earned since its last update.

        Sums the S gains of the bid's own scale and every later scale of the
        same epoch, each later scale divided by one more SCALE_FACTOR, then
        multiplies by amount / P_bid. For an ended epoch the closing S values
        from the history are used, not the restarted ones.

        Args:
            bid: An active Bid

        Returns:
            The collateral gain as a Decimal256
        """
        token, slot = bid.collateral_token, bid.premium_slot
        epoch, scale = bid.epoch_snapshot, bid.scale_snapshot

        reference_sum = self.bid_pools.sum_at(token, slot, epoch, scale)
        if reference_sum is None:
            raise NotFound(f"No sum history for bid {bid.idx} at epoch {epoch} scale {scale}")

        # numerator / SCALE_FACTOR ** depth == sum of the scaled S gains
        numerator = (reference_sum - bid.sum_snapshot).atoms
        depth = 0
        while True:
            later_sum = self.bid_pools.sum_at(token, slot, epoch, scale + depth + 1)
            if later_sum is None:
                break
            numerator = numerator * SCALE_FACTOR + later_sum.atoms
            depth += 1

        return Decimal256.from_ratio(
            bid.amount * numerator,
            bid.product_snapshot.atoms * SCALE_FACTOR ** depth,
        )

    def _settle(self, bid, pool, remaining):
        """Credits a bid's collateral gain and re-snapshots it at the pool's state."""
        collateral = self.liquidated_collateral(bid).floor()

        old_epoch = bid.epoch_snapshot
        bid.amount = remaining
        bid.pending_liquidated_collateral += collateral
        bid.product_snapshot = pool.product_snapshot
        bid.sum_snapshot = pool.sum_snapshot
        bid.epoch_snapshot = pool.current_epoch
        bid.scale_snapshot = pool.current_scale

        if bid.epoch_snapshot != old_epoch:
            token, slot = bid.collateral_token, bid.premium_slot
            self.bid_pools.track_bid(token, slot, bid.epoch_snapshot, bid.idx)
            self.bid_pools.untrack_bid(token, slot, old_epoch, bid.idx)

        if collateral:
            logger.debug("Bid %d reconciled: remaining=%d collateral=+%d",
                         bid.idx, remaining, collateral)

    def settle_pool(self, collateral_token, slot):
        """Reconciles every active bid of a pool's current epoch."""
        pool = self.bid_pools.get(collateral_token, slot)
        for idx, remaining in self.remaining_bids(collateral_token, slot).items():
            self._settle(self.bids.get(idx), pool, remaining)

    def reconcile(self, bid):
        """
        Brings a bid up to date with its pool.

        Moves earned collateral into pending_liquidated_collateral, sets the
        amount to the remaining stable and re-snapshots P, S, epoch and scale.
        A bid of the current epoch is settled together with the other bids of
        that epoch, so the result does not depend on which bid goes first.

        Args:
            bid: The Bid to settle

        Returns:
            Tuple of (remaining amount, pending liquidated collateral)

        Raises:
            NotActive: If the bid is still in its waiting period
        """
        if not bid.is_active:
            raise NotActive(f"Bid {bid.idx} is waiting until {bid.wait_end}")

        token, slot = bid.collateral_token, bid.premium_slot
        pool = self.bid_pools.get(token, slot)

        if pool.current_epoch > bid.epoch_snapshot:
            self._settle(bid, pool, 0)
        else:
            self.settle_pool(token, slot)
        return bid.amount, bid.pending_liquidated_collateral

    def remove_bid(self, bid):
        """Deletes a bid record, releasing its epoch snapshot."""
        if bid.is_active:
            self.bid_pools.untrack_bid(
                bid.collateral_token, bid.premium_slot, bid.epoch_snapshot, bid.idx)
        self.bids.remove(bid.idx)
        logger.debug("Bid %d removed", bid.idx)

    def select_bids(self, collateral_token, sender, bids_idx=None):
        """
        Resolves the bids targeted by an ActivateBids or ClaimLiquidations call.

        Without explicit indexes, every bid of the sender on the collateral is
        selected. Explicit indexes must belong to the sender and the collateral.
        """
        if bids_idx is None:
            return self.bids.all_bids_by_user(collateral_token, sender)

        selected = []
        for idx in dict.fromkeys(bids_idx):
            bid = self.bids.get(idx)
            if bid.bidder != sender:
                raise Unauthorized(f"Bid {idx} does not belong to {sender}")
            if bid.collateral_token != collateral_token:
                raise NotFound(f"Bid {idx} is not a bid on {collateral_token}")
            selected.append(bid)
        return selected

    def claim_liquidations(self, collateral_token, sender, bids_idx=None):
        """
        Claims the liquidated collateral of a user's bids.

        Args:
            collateral_token: Address of the collateral token
            sender: Address of the bidder
            bids_idx: Optional list of bid indexes; all the sender's bids otherwise

        Returns:
            The total collateral amount claimed

        Raises:
            NothingToClaim: If the selected bids have no collateral to claim
        """
        bids = [bid for bid in self.select_bids(collateral_token, sender, bids_idx) if bid.is_active]

        for bid in bids:
            self.reconcile(bid)

        claim_amount = sum(bid.pending_liquidated_collateral for bid in bids)
        if claim_amount == 0:
            raise NothingToClaim()

        for bid in bids:
            bid.pending_liquidated_collateral = 0
            if bid.amount == 0:
                self.remove_bid(bid)

        logger.info("%s claimed %d %s from %d bids", sender, claim_amount, collateral_token, len(bids))
        return claim_amount
