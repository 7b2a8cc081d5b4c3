"""
Configuration for the Liquidation Queue model.

Holds the protocol parameters set at instantiation and the owner-only
UpdateConfig operation.
"""

import logging
from dataclasses import dataclass, fields, replace
from typing import Optional

from fixed_point import Decimal256
from queue_errors import InvalidConfig, Unauthorized

logger = logging.getLogger(__name__)

# Pagination bounds for the list queries
DEFAULT_LIMIT = 10
MAX_LIMIT = 30

# Premium slots are stored as an unsigned byte
MAX_SLOT_LIMIT = 255


@dataclass
class Config:
    """
    Protocol parameters of the liquidation queue.
    """
    owner: str
    oracle_contract: str
    stable_addr: str
    safe_ratio: Decimal256      # borrow_amount / borrow_limit target after liquidation
    bid_fee: Decimal256         # share of filled stable sent to the overseer interest buffer
    liquidator_fee: Decimal256  # share of filled stable sent to the liquidation executor
    liquidation_threshold: int  # below this collateral value, everything is liquidated
    price_timeframe: int        # seconds an oracle price stays valid
    waiting_period: int         # seconds before a bid can be activated
    overseer: str
    oraiswap_oracle: Optional[str] = None

    def validate(self):
        """
        Checks parameter bounds.

        Raises:
            InvalidConfig: If a ratio or fee is out of range
        """
        if self.safe_ratio.is_zero() or self.safe_ratio > Decimal256.one():
            raise InvalidConfig(f"safe_ratio must be in (0, 1], got {self.safe_ratio}")
        if self.bid_fee >= Decimal256.one() or self.liquidator_fee >= Decimal256.one():
            raise InvalidConfig("Fees must be below 1")
        if self.bid_fee + self.liquidator_fee >= Decimal256.one():
            raise InvalidConfig("bid_fee + liquidator_fee must be below 1")
        if self.price_timeframe < 0 or self.waiting_period < 0:
            raise InvalidConfig("Time periods cannot be negative")
        if self.liquidation_threshold < 0:
            raise InvalidConfig("liquidation_threshold cannot be negative")

    def fee_deductor(self):
        """Share of a filled stable amount that is repaid; both fees are taken from the fill."""
        return Decimal256.one() - self.bid_fee - self.liquidator_fee


def update_config(config, sender, **changes):
    """
    Applies an UpdateConfig call. Only the owner may update; None values are
    left unchanged.

    Args:
        config: Current Config
        sender: Address of the caller
        **changes: Field names and new values

    Returns:
        The new, validated Config
    """
    if sender != config.owner:
        raise Unauthorized()

    known = {f.name for f in fields(Config)}
    unknown = set(changes) - known
    if unknown:
        raise InvalidConfig(f"Unknown config fields: {sorted(unknown)}")

    # stable_addr is fixed at instantiation
    if changes.get("stable_addr") is not None:
        raise InvalidConfig("stable_addr cannot be updated")

    updates = {name: value for name, value in changes.items() if value is not None}
    new_config = replace(config, **updates)
    new_config.validate()

    if updates:
        logger.info("Config updated: %s", ", ".join(sorted(updates)))
    return new_config
