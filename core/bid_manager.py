"""
Bid submission, activation and retraction for the Liquidation Queue model.
"""

import logging

from queue_errors import InvalidAmount, InvalidSlot, Unauthorized

logger = logging.getLogger(__name__)


class BidManager:
    """
    Handles the bidder-facing operations that move stable in and out of pools.
    """

    def __init__(self, registry, bid_pools, bids, claim_engine):
        self.registry = registry
        self.bid_pools = bid_pools
        self.bids = bids
        self.claim_engine = claim_engine

    def _pool_for(self, info, slot):
        return self.bid_pools.get_or_create(info.collateral_token, slot, info.premium_rate(slot))

    def _activate(self, bid, pool):
        """Snapshots the pool and adds the bid amount to it."""
        bid.product_snapshot = pool.product_snapshot
        bid.sum_snapshot = pool.sum_snapshot
        bid.epoch_snapshot = pool.current_epoch
        bid.scale_snapshot = pool.current_scale
        bid.wait_end = None
        self.bid_pools.deposit(bid.collateral_token, bid.premium_slot, bid.amount)
        self.bid_pools.track_bid(
            bid.collateral_token, bid.premium_slot, bid.epoch_snapshot, bid.idx)

    def submit_bid(self, collateral_token, premium_slot, bidder, amount, waiting_period, now):
        """
        Submits a new bid.

        The bid is active immediately when the collateral's active bids are
        below its bid_threshold or there is no waiting period; otherwise it
        waits until now + waiting_period and must be activated.

        Args:
            collateral_token: Address of the collateral token
            premium_slot: Premium slot to bid in
            bidder: Address of the bidder
            amount: Stable amount sent with the bid
            waiting_period: Seconds before the bid can be activated
            now: Current block time

        Returns:
            The new Bid
        """
        info = self.registry.get(collateral_token)
        if premium_slot < 0 or premium_slot >= info.max_slot:
            raise InvalidSlot(f"Invalid premium slot {premium_slot}, max_slot is {info.max_slot}")
        if amount <= 0:
            raise InvalidAmount("Bid amount must be greater than zero")

        pool = self._pool_for(info, premium_slot)
        instant = waiting_period == 0 or self.bid_pools.total_bids(collateral_token) < info.bid_threshold

        bid = self.bids.add(
            collateral_token=collateral_token,
            premium_slot=premium_slot,
            bidder=bidder,
            amount=amount,
            product_snapshot=pool.product_snapshot,
            sum_snapshot=pool.sum_snapshot,
            epoch_snapshot=pool.current_epoch,
            scale_snapshot=pool.current_scale,
            wait_end=now + waiting_period,
        )
        if instant:
            self._activate(bid, pool)

        logger.info("Bid %d submitted by %s: %d on %s slot %d (%s)", bid.idx, bidder, amount,
                    collateral_token, premium_slot, "active" if instant else f"wait until {bid.wait_end}")
        return bid

    def activate_bids(self, collateral_token, sender, now, bids_idx=None):
        """
        Activates bids whose waiting period has passed.

        Bids still waiting or already active are skipped without error.

        Returns:
            List of activated bids
        """
        info = self.registry.get(collateral_token)
        activated = []
        for bid in self.claim_engine.select_bids(collateral_token, sender, bids_idx):
            if bid.is_active or bid.wait_end > now:
                continue
            self._activate(bid, self._pool_for(info, bid.premium_slot))
            activated.append(bid)

        if activated:
            logger.info("%s activated bids %s", sender, [bid.idx for bid in activated])
        return activated

    def retract_bid(self, bid_idx, sender, amount=None):
        """
        Withdraws stable from a bid.

        Active bids are reconciled first, so only the unexecuted remainder can
        be withdrawn. The bid is deleted once it holds neither stable nor
        pending collateral.

        Args:
            bid_idx: Index of the bid
            sender: Address of the caller, must be the bidder
            amount: Amount to withdraw, or None for the whole remainder

        Returns:
            Tuple of (bid, withdrawn amount)
        """
        bid = self.bids.get(bid_idx)
        if bid.bidder != sender:
            raise Unauthorized(f"Bid {bid_idx} does not belong to {sender}")

        if bid.is_active:
            remaining, _ = self.claim_engine.reconcile(bid)
        else:
            remaining = bid.amount

        withdraw = remaining if amount is None else amount
        if withdraw > remaining:
            raise InvalidAmount(f"Retract amount {withdraw} exceeds bid balance {remaining}")
        if withdraw <= 0:
            raise InvalidAmount("Nothing to retract")

        if bid.is_active:
            self.bid_pools.withdraw(bid.collateral_token, bid.premium_slot, withdraw)
        bid.amount = remaining - withdraw

        if bid.amount == 0 and bid.pending_liquidated_collateral == 0:
            self.claim_engine.remove_bid(bid)

        logger.info("Bid %d retracted %d by %s", bid_idx, withdraw, sender)
        return bid, withdraw

    def slot_in_use(self, collateral_token, slot):
        """True when a slot holds active stable or a bid waiting to activate."""
        pool = self.bid_pools.find(collateral_token, slot)
        if pool is not None and pool.total_bid_amount > 0:
            return True
        return any(not bid.is_active for bid in self.bids.bids_in_slot(collateral_token, slot))
