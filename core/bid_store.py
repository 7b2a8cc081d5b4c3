"""
Bid store for the Liquidation Queue model.

Bids are keyed by an auto-incrementing index and indexed per
(collateral token, bidder) in ascending order for paginated queries.
"""

import bisect
from dataclasses import dataclass
from typing import Optional

from fixed_point import Decimal256
from queue_config import DEFAULT_LIMIT, MAX_LIMIT
from queue_errors import NotFound


@dataclass
class Bid:
    """
    A standing bid of a liquidator in one premium slot.

    The snapshot fields hold the pool's P, S, epoch and scale at the bid's last
    update; they are only meaningful once the bid is active.
    """
    idx: int
    collateral_token: str
    premium_slot: int
    bidder: str
    amount: int                        # stable still queued, as of the last update
    product_snapshot: Decimal256
    sum_snapshot: Decimal256
    epoch_snapshot: int
    scale_snapshot: int
    pending_liquidated_collateral: int = 0
    wait_end: Optional[int] = None     # None once the bid is active

    @property
    def is_active(self):
        return self.wait_end is None


def clamp_limit(limit):
    """Bounds a page size to MAX_LIMIT, defaulting to DEFAULT_LIMIT."""
    if limit is None:
        return DEFAULT_LIMIT
    return max(0, min(int(limit), MAX_LIMIT))


class BidStore:
    """
    Map from bid index to Bid with a sorted per-user index.
    """

    def __init__(self):
        self.bids = {}          # idx -> Bid
        self.user_index = {}    # (token, bidder) -> sorted list of idx
        self.next_idx = 1

    def add(self, **bid_fields):
        """Creates a bid with the next index and returns it."""
        idx = self.next_idx
        self.next_idx += 1
        bid = Bid(idx=idx, **bid_fields)
        self.bids[idx] = bid
        bisect.insort(self.user_index.setdefault((bid.collateral_token, bid.bidder), []), idx)
        return bid

    def get(self, idx):
        """
        Returns a bid by index.

        Raises:
            NotFound: If the bid does not exist
        """
        bid = self.bids.get(idx)
        if bid is None:
            raise NotFound(f"Bid not found: {idx}")
        return bid

    def remove(self, idx):
        bid = self.bids.pop(idx)
        key = (bid.collateral_token, bid.bidder)
        indexes = self.user_index[key]
        indexes.pop(bisect.bisect_left(indexes, idx))
        if not indexes:
            del self.user_index[key]
        return bid

    def bids_by_user(self, collateral_token, bidder, start_after=None, limit=None):
        """
        Returns one page of a user's bids on a collateral, ascending by index.

        Args:
            collateral_token: Address of the collateral token
            bidder: Address of the bidder
            start_after: Exclusive lower bound on the bid index
            limit: Page size, capped at MAX_LIMIT

        Returns:
            List of Bid
        """
        indexes = self.user_index.get((collateral_token, bidder), [])
        start = 0 if start_after is None else bisect.bisect_right(indexes, start_after)
        page = indexes[start:start + clamp_limit(limit)]
        return [self.bids[idx] for idx in page]

    def all_bids_by_user(self, collateral_token, bidder):
        """Every bid of a user on a collateral, ascending by index."""
        return [self.bids[idx] for idx in self.user_index.get((collateral_token, bidder), [])]

    def bids_in_slot(self, collateral_token, slot):
        return [bid for bid in self.bids.values()
                if bid.collateral_token == collateral_token and bid.premium_slot == slot]
