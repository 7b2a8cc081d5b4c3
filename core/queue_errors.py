"""
Error types for the Liquidation Queue model.

Every error raised by the queue derives from LiquidationQueueError, which is a
ValueError so callers can keep catching ValueError the way they do for the
rest of the protocol models.
"""


class LiquidationQueueError(ValueError):
    """Base class for all liquidation queue failures."""


class Unauthorized(LiquidationQueueError):
    """Caller is not the owner or the bidder where one is required."""

    def __init__(self, message="Unauthorized"):
        super().__init__(message)


class NotFound(LiquidationQueueError):
    """Missing collateral, bid or bid pool."""


class AlreadyWhitelisted(LiquidationQueueError):
    """Collateral token has already been whitelisted."""


class InvalidSlot(LiquidationQueueError):
    """Premium slot outside the collateral's slot range."""


class InvalidAmount(LiquidationQueueError):
    """Zero, negative or excessive amount."""


class InvalidConfig(LiquidationQueueError):
    """Configuration or collateral parameters out of bounds."""


class NotActive(LiquidationQueueError):
    """Bid is still inside its waiting period."""


class NothingToClaim(LiquidationQueueError):
    """No liquidated collateral available for the requested bids."""

    def __init__(self, message="No liquidated collateral to claim"):
        super().__init__(message)


class PriceTooOld(LiquidationQueueError):
    """Oracle price is older than the configured price timeframe."""


class InvalidMessage(LiquidationQueueError):
    """A message could not be decoded into a known variant."""


class Underflow(LiquidationQueueError, ArithmeticError):
    """Fixed-point arithmetic produced a negative value."""
