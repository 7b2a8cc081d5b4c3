"""
Liquidation Engine for the Liquidation Queue model.

Sells collateral against the bid pools of a collateral token, walking premium
slots from the lowest premium upward. Each slot is settled with a single
snapshot update, so a liquidation costs O(max_slot) regardless of how many
bids are queued.
"""

import logging
from dataclasses import dataclass, field
from typing import List

from fixed_point import DECIMAL_FRACTIONAL, Decimal256
from queue_errors import InvalidAmount

logger = logging.getLogger(__name__)


@dataclass
class SlotFill:
    """Stable consumed and collateral credited in one premium slot."""
    slot: int
    premium_rate: Decimal256
    stable_amount: int
    collateral_amount: int
    depleted: bool


@dataclass
class LiquidationResult:
    """
    Outcome of one ExecuteBid.

    remaining_collateral > 0 means the bid pools did not hold enough stable to
    buy everything; the caller decides what to do with the shortfall.
    """
    collateral_token: str
    collateral_amount: int
    price: Decimal256
    filled_stable: int = 0
    remaining_collateral: int = 0
    fills: List[SlotFill] = field(default_factory=list)

    @property
    def sold_collateral(self):
        return self.collateral_amount - self.remaining_collateral

    @property
    def insufficient_pool_liquidity(self):
        return self.remaining_collateral > 0


class LiquidationEngine:
    """
    Distributes liquidated collateral across a collateral's bid pools.
    """

    def __init__(self, registry, bid_pools):
        self.registry = registry
        self.bid_pools = bid_pools

    def execute_liquidation(self, collateral_token, collateral_amount, price):
        """
        Sells collateral to the bid pools, lowest premium first.

        In each slot the bidders pay price * (1 - premium_rate) per unit of
        collateral. A slot that can pay for all remaining collateral takes it
        and the walk stops; otherwise the slot's whole stable is used and the
        walk continues with the next slot. A slot where either side of the
        fill rounds to zero is skipped.

        Args:
            collateral_token: Address of the collateral token
            collateral_amount: Amount of collateral to sell
            price: Oracle price of the collateral in stable

        Returns:
            LiquidationResult with per-slot fills and any unsold collateral
        """
        info = self.registry.get(collateral_token)
        if collateral_amount <= 0:
            raise InvalidAmount("Collateral amount must be greater than zero")
        if price.is_zero():
            raise InvalidAmount(f"Invalid price for {collateral_token}: {price}")

        result = LiquidationResult(
            collateral_token=collateral_token,
            collateral_amount=collateral_amount,
            price=price,
            remaining_collateral=collateral_amount,
        )

        for slot in range(info.max_slot):
            if result.remaining_collateral == 0:
                break

            pool = self.bid_pools.find(collateral_token, slot)
            if pool is None or pool.total_bid_amount == 0:
                continue

            slot_price = price * (Decimal256.one() - pool.premium_rate)
            if slot_price.is_zero():
                continue

            required_stable = slot_price.mul_uint(result.remaining_collateral)
            if required_stable <= pool.total_bid_amount:
                stable_amount = required_stable
                collateral_amount_filled = result.remaining_collateral
            else:
                stable_amount = pool.total_bid_amount
                collateral_amount_filled = min(
                    result.remaining_collateral,
                    stable_amount * DECIMAL_FRACTIONAL // slot_price.atoms,
                )

            # Too little collateral to cost anything, or too little stable to buy a unit
            if stable_amount == 0 or collateral_amount_filled == 0:
                continue

            depleted = stable_amount == pool.total_bid_amount
            self.bid_pools.apply_fill(collateral_token, slot, stable_amount, collateral_amount_filled)

            result.fills.append(SlotFill(
                slot=slot,
                premium_rate=pool.premium_rate,
                stable_amount=stable_amount,
                collateral_amount=collateral_amount_filled,
                depleted=depleted,
            ))
            result.filled_stable += stable_amount
            result.remaining_collateral -= collateral_amount_filled

        if result.insufficient_pool_liquidity:
            logger.warning("Insufficient bids for %s: sold %d of %d, %d left unsold",
                           collateral_token, result.sold_collateral, collateral_amount,
                           result.remaining_collateral)
        else:
            logger.info("Liquidated %d %s for %d stable across %d slots",
                        collateral_amount, collateral_token, result.filled_stable, len(result.fills))
        return result

    def liquidation_amount(self, config, borrow_amount, borrow_limit, collaterals, collateral_prices):
        """
        Proposes how much of each collateral to liquidate for a position.

        Nothing is liquidated for a safe position, everything when the
        collateral is worth no more than liquidation_threshold. Otherwise a
        uniform ratio of every collateral is sold so that, after repaying at
        the worst premium and net of fees, borrow_amount falls to
        safe_ratio * borrow_limit.

        Args:
            config: Current Config
            borrow_amount: Outstanding borrow of the position
            borrow_limit: Borrow limit of the position
            collaterals: List of (collateral token, amount)
            collateral_prices: List of Decimal256 prices, same order as collaterals

        Returns:
            List of (collateral token, amount to liquidate)
        """
        if len(collaterals) != len(collateral_prices):
            raise InvalidAmount("Collaterals and prices must have the same length")

        if borrow_amount <= borrow_limit:
            return []

        collaterals_value = sum(
            price.mul_uint(amount) for (_, amount), price in zip(collaterals, collateral_prices))
        if collaterals_value <= config.liquidation_threshold:
            return list(collaterals)

        safe_borrow = config.safe_ratio.mul_uint(borrow_limit)
        fee_deductor = config.fee_deductor()

        expected_repay = 0
        for (token, amount), price in zip(collaterals, collateral_prices):
            info = self.registry.get(token)
            discounted_price = price * (Decimal256.one() - info.max_premium_rate()) * fee_deductor
            expected_repay += discounted_price.mul_uint(amount)

        if expected_repay <= safe_borrow:
            return list(collaterals)

        ratio = Decimal256.from_ratio(borrow_amount - safe_borrow, expected_repay - safe_borrow)
        if ratio >= Decimal256.one():
            return list(collaterals)

        return [(token, ratio.mul_uint(amount)) for token, amount in collaterals]
