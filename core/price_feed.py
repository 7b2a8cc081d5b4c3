"""
Price feed used by the Liquidation Queue model.

Stands in for the oracle contract: prices of collateral tokens quoted in the
stable asset, each with the time it was last updated.
"""

from dataclasses import dataclass

from fixed_point import Decimal256
from queue_errors import NotFound, PriceTooOld


@dataclass
class PriceResponse:
    """Oracle answer for one collateral/stable pair."""
    rate: Decimal256
    last_updated_base: int
    last_updated_quote: int


class PriceFeed:
    """Simple price feed implementation for simulations and tests."""

    def __init__(self, prices=None):
        self.prices = {}  # collateral token -> PriceResponse
        for token, (price, updated_at) in (prices or {}).items():
            self.set_price(token, price, updated_at)

    def set_price(self, collateral_token, price, updated_at):
        """Sets a new price for a collateral token."""
        self.prices[collateral_token] = PriceResponse(
            rate=price,
            last_updated_base=updated_at,
            last_updated_quote=updated_at,
        )

    def query_price(self, collateral_token, stable_denom=None):
        """Returns the PriceResponse of a collateral token."""
        response = self.prices.get(collateral_token)
        if response is None:
            raise NotFound(f"No price for {collateral_token}")
        return response

    def fetch_price(self, collateral_token, now, price_timeframe):
        """
        Returns the current price, rejecting stale quotes.

        Args:
            collateral_token: Address of the collateral token
            now: Current block time
            price_timeframe: Maximum age of a valid price in seconds

        Returns:
            The price as a Decimal256

        Raises:
            PriceTooOld: If either side of the quote is older than price_timeframe
        """
        response = self.query_price(collateral_token)
        oldest = min(response.last_updated_base, response.last_updated_quote)
        if oldest + price_timeframe < now:
            raise PriceTooOld(
                f"Price of {collateral_token} is too old: updated at {oldest}, now {now}")
        return response.rate
