"""
Collateral Registry for the Liquidation Queue model.

Keeps the per-collateral configuration: bid threshold, number of premium
slots and the premium rate granted per slot. Records are created on
whitelisting, changed by UpdateCollateralInfo and never deleted.
"""

import logging
from dataclasses import dataclass

from fixed_point import Decimal256
from queue_config import MAX_SLOT_LIMIT
from queue_errors import AlreadyWhitelisted, InvalidConfig, InvalidSlot, NotFound

logger = logging.getLogger(__name__)


@dataclass
class CollateralInfo:
    """Configuration of a whitelisted collateral token."""
    collateral_token: str
    bid_threshold: int               # active bid total below which bids skip the waiting period
    max_slot: int                    # valid slots are 0 .. max_slot - 1
    premium_rate_per_slot: Decimal256
    custody_contract: str            # the only sender allowed to liquidate this collateral

    def premium_rate(self, slot: int) -> Decimal256:
        """Discount granted to bids in the given slot."""
        return Decimal256(self.premium_rate_per_slot.atoms * slot)

    def max_premium_rate(self) -> Decimal256:
        """Discount of the highest valid slot."""
        return self.premium_rate(self.max_slot - 1)


def _validate_slots(max_slot, premium_rate_per_slot):
    if max_slot < 1 or max_slot > MAX_SLOT_LIMIT:
        raise InvalidConfig(f"max_slot must be between 1 and {MAX_SLOT_LIMIT}, got {max_slot}")
    if Decimal256(premium_rate_per_slot.atoms * (max_slot - 1)) >= Decimal256.one():
        raise InvalidConfig("Premium rate of the highest slot must be below 1")


class CollateralRegistry:
    """
    Stores CollateralInfo records keyed by collateral token.
    """

    def __init__(self):
        self.collaterals = {}  # token -> CollateralInfo

    def get(self, collateral_token):
        """
        Returns the CollateralInfo of a token.

        Raises:
            NotFound: If the token was never whitelisted
        """
        info = self.collaterals.get(collateral_token)
        if info is None:
            raise NotFound(f"Collateral not whitelisted: {collateral_token}")
        return info

    def is_whitelisted(self, collateral_token):
        return collateral_token in self.collaterals

    def whitelist(self, collateral_token, bid_threshold, max_slot, premium_rate_per_slot,
                  custody_contract):
        """
        Whitelists a new collateral.

        Args:
            collateral_token: Address of the collateral token
            bid_threshold: Stable amount of active bids below which bids activate instantly
            max_slot: Number of premium slots
            premium_rate_per_slot: Discount granted per slot index
            custody_contract: Address of the custody that sends collateral to liquidate

        Returns:
            The new CollateralInfo

        Raises:
            AlreadyWhitelisted: If the token already has a record
        """
        if collateral_token in self.collaterals:
            raise AlreadyWhitelisted(f"Collateral already whitelisted: {collateral_token}")
        if bid_threshold < 0:
            raise InvalidConfig("bid_threshold cannot be negative")
        _validate_slots(max_slot, premium_rate_per_slot)

        info = CollateralInfo(
            collateral_token=collateral_token,
            bid_threshold=bid_threshold,
            max_slot=max_slot,
            premium_rate_per_slot=premium_rate_per_slot,
            custody_contract=custody_contract,
        )
        self.collaterals[collateral_token] = info
        logger.info("Whitelisted %s with %d slots at %s per slot",
                    collateral_token, max_slot, premium_rate_per_slot)
        return info

    def update(self, collateral_token, bid_threshold=None, max_slot=None, slot_in_use=None,
               custody_contract=None):
        """
        Updates the bid threshold, slot count or custody of a collateral.

        Growing max_slot is always allowed. Shrinking it is rejected when a slot
        that would fall out of range still holds bids.

        Args:
            collateral_token: Address of the collateral token
            bid_threshold: New bid threshold, or None to keep it
            max_slot: New slot count, or None to keep it
            slot_in_use: Callable(slot) -> bool telling whether a slot holds bids
            custody_contract: New custody address, or None to keep it

        Returns:
            The updated CollateralInfo
        """
        info = self.get(collateral_token)

        if bid_threshold is not None and bid_threshold < 0:
            raise InvalidConfig("bid_threshold cannot be negative")

        if max_slot is not None:
            _validate_slots(max_slot, info.premium_rate_per_slot)
            if max_slot < info.max_slot and slot_in_use is not None:
                for slot in range(max_slot, info.max_slot):
                    if slot_in_use(slot):
                        raise InvalidSlot(
                            f"Cannot reduce max_slot to {max_slot}: slot {slot} still holds bids")

        if bid_threshold is not None:
            info.bid_threshold = bid_threshold
        if max_slot is not None:
            info.max_slot = max_slot
        if custody_contract is not None:
            info.custody_contract = custody_contract

        logger.info("Updated collateral %s: bid_threshold=%s max_slot=%s custody=%s",
                    collateral_token, info.bid_threshold, info.max_slot, info.custody_contract)
        return info
