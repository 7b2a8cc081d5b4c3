"""
Market Simulation for the Liquidation Queue model.

Drives a LiquidationQueue through a random market: a log-normal collateral
price path, bidders submitting and retracting bids, custody liquidating
collateral on price drops and bidders claiming what they bought. Token
movements go through a TokenLedger, so the queue's balances can be checked
against its pool totals at every step.
"""

import logging

import numpy as np
import matplotlib.pyplot as plt

from fixed_point import DECIMAL_FRACTIONAL, Decimal256
from liquidation_queue import LiquidationQueue
from price_feed import PriceFeed
from queue_errors import InvalidAmount, NothingToClaim
from queue_msgs import (
    ActivateBids, BidsByUserQuery, ClaimLiquidations, Cw20ReceiveMsg,
    InstantiateMsg, Receive, RetractBid, WhitelistCollateral, to_binary,
)
from token_ledger import TokenLedger

logger = logging.getLogger(__name__)

QUEUE = "liquidation_queue"
STABLE = "stable"
OWNER = "owner"
CUSTODY = "custody"
OVERSEER = "overseer"
LIQUIDATOR = "liquidator"

HOUR = 60 * 60


def to_price(value):
    """Converts a float price to a Decimal256 with 6 decimals."""
    return Decimal256.from_str(f"{value:.6f}")


class QueueSimulation:
    """
    Liquidation queue with one collateral, a set of bidders and history
    tracking for plots.
    """

    def __init__(self, collateral_token="bluna", initial_price=10.0, max_slot=10,
                 premium_rate_per_slot="0.01", waiting_period=0, num_bidders=5, seed=None):
        self.rng = np.random.default_rng(seed)
        self.collateral_token = collateral_token
        self.max_slot = max_slot
        self.current_time = 0

        self.price_feed = PriceFeed({collateral_token: (to_price(initial_price), self.current_time)})
        self.ledger = TokenLedger()
        self.queue = LiquidationQueue(
            InstantiateMsg(
                owner=OWNER,
                oracle_contract="oracle",
                stable_addr=STABLE,
                safe_ratio=Decimal256.from_str("0.8"),
                bid_fee=Decimal256.from_str("0.01"),
                liquidator_fee=Decimal256.from_str("0.01"),
                liquidation_threshold=500,
                price_timeframe=HOUR,
                waiting_period=waiting_period,
                overseer=OVERSEER,
            ),
            self.price_feed,
        )
        self.queue.execute(
            WhitelistCollateral(
                collateral_token=collateral_token,
                bid_threshold=0,
                max_slot=max_slot,
                premium_rate_per_slot=Decimal256.from_str(premium_rate_per_slot),
                custody_contract=CUSTODY,
            ),
            OWNER,
            self.current_time,
        )

        self.bidders = [f"bidder{i}" for i in range(num_bidders)]

        # Totals over the whole run
        self.submitted_stable = 0
        self.filled_stable = 0
        self.sold_collateral = 0
        self.unsold_collateral = 0
        self.claimed_collateral = 0

        self.price_history = []
        self.total_bids_history = []
        self.product_history = []
        self.epoch_history = []
        self.scale_history = []

    # Token flows

    def _send(self, token, sender, amount, hook):
        """Transfers tokens to the queue together with a receive hook."""
        if self.ledger.balance_of(token, sender) < amount:
            raise ValueError(f"Insufficient {token} balance for {sender}")

        msg = Receive(receive=Cw20ReceiveMsg(sender=sender, amount=amount, msg=to_binary(hook)))
        response = self.queue.execute(msg, token, self.current_time)
        self.ledger.transfer(token, sender, QUEUE, amount)
        return self.ledger.apply(QUEUE, response)

    def submit_bid(self, bidder, premium_slot, amount):
        """Mints stable to a bidder and submits it as a bid. Returns the bid index."""
        self.ledger.mint(STABLE, bidder, amount)
        response = self._send(STABLE, bidder, amount, {
            "submit_bid": {"collateral_token": self.collateral_token, "premium_slot": premium_slot},
        })
        self.submitted_stable += amount
        return response.data

    def retract_oldest_bid(self, bidder):
        """Retracts the whole remainder of a bidder's oldest bid, if any."""
        page = self.queue.query(BidsByUserQuery(
            collateral_token=self.collateral_token, bidder=bidder, limit=1))
        if not page.bids:
            return 0

        try:
            response = self.queue.execute(RetractBid(bid_idx=page.bids[0].idx), bidder, self.current_time)
        except InvalidAmount:
            # fully executed, only collateral left to claim
            return 0
        self.ledger.apply(QUEUE, response)
        return int(response.attribute("amount"))

    def activate_bids(self, bidder):
        response = self.queue.execute(
            ActivateBids(collateral_token=self.collateral_token), bidder, self.current_time)
        return response.data

    def liquidate(self, collateral_amount):
        """
        Sends collateral from custody to the queue for liquidation.

        Returns:
            The LiquidationResult of the ExecuteBid call
        """
        self.ledger.mint(self.collateral_token, CUSTODY, collateral_amount)
        response = self._send(self.collateral_token, CUSTODY, collateral_amount, {
            "execute_bid": {"liquidator": LIQUIDATOR},
        })
        result = response.data
        self.filled_stable += result.filled_stable
        self.sold_collateral += result.sold_collateral
        self.unsold_collateral += result.remaining_collateral
        return result

    def claim(self, bidder):
        """Claims a bidder's liquidated collateral. Returns the amount claimed."""
        try:
            response = self.queue.execute(
                ClaimLiquidations(collateral_token=self.collateral_token), bidder, self.current_time)
        except NothingToClaim:
            return 0
        self.ledger.apply(QUEUE, response)
        amount = int(response.attribute("collateral_amount"))
        self.claimed_collateral += amount
        return amount

    # Market

    def update_price(self, new_price):
        self.price_feed.set_price(self.collateral_token, to_price(new_price), self.current_time)

    def update_time(self, seconds):
        self.current_time += seconds

    def pools(self):
        """Returns {slot: BidPool} for every pool of the collateral."""
        return dict(self.queue.state.bid_pools.pools_by_collateral(self.collateral_token))

    def get_system_state(self):
        """
        Gets the current state of the simulated market.

        Returns:
            Dictionary with price, pool totals and the queue's token balances
        """
        pools = self.pools()
        return {
            'price': float(str(self.price_feed.query_price(self.collateral_token).rate)),
            'total_bids': sum(pool.total_bid_amount for pool in pools.values()),
            'queue_stable': self.ledger.balance_of(STABLE, QUEUE),
            'queue_collateral': self.ledger.balance_of(self.collateral_token, QUEUE),
            'bids': len(self.queue.state.bids.bids),
            'pools': pools,
        }

    def _update_history(self):
        state = self.get_system_state()

        products = np.full(self.max_slot, np.nan)
        epochs = np.zeros(self.max_slot)
        scales = np.zeros(self.max_slot)
        for slot, pool in state['pools'].items():
            products[slot] = pool.product_snapshot.atoms / DECIMAL_FRACTIONAL
            epochs[slot] = pool.current_epoch
            scales[slot] = pool.current_scale

        self.price_history.append(state['price'])
        self.total_bids_history.append(state['total_bids'])
        self.product_history.append(products)
        self.epoch_history.append(epochs)
        self.scale_history.append(scales)

    def simulate_market_scenario(self, hours, price_volatility=0.05, bid_rate=1.5,
                                 retract_rate=0.05, claim_rate=0.2, plot_results=True):
        """
        Runs the queue through random hourly price moves.

        Each hour new bids arrive (Poisson with mean bid_rate), custody
        liquidates collateral proportional to any price drop, and each bidder
        may retract its oldest bid or claim its collateral.

        Args:
            hours: Number of hourly steps to simulate
            price_volatility: Daily volatility of the log price
            bid_rate: Mean number of new bids per hour
            retract_rate: Per-bidder probability of retracting each hour
            claim_rate: Per-bidder probability of claiming each hour
            plot_results: Whether to plot the results

        Returns:
            Dictionary with simulation results
        """
        self.price_history = []
        self.total_bids_history = []
        self.product_history = []
        self.epoch_history = []
        self.scale_history = []
        self._update_history()

        price = self.price_history[0]
        hourly_volatility = price_volatility / np.sqrt(24)
        log_returns = self.rng.normal(0, hourly_volatility, hours)
        time_points = np.zeros(hours)

        for i in range(hours):
            price *= np.exp(log_returns[i])
            self.update_time(HOUR)
            self.update_price(price)

            for _ in range(self.rng.poisson(bid_rate)):
                bidder = self.bidders[self.rng.integers(len(self.bidders))]
                slot = int(self.rng.integers(self.max_slot))
                amount = int(self.rng.integers(100, 5000))
                self.submit_bid(bidder, slot, amount)

            for bidder in self.bidders:
                if self.queue.config.waiting_period > 0:
                    self.activate_bids(bidder)
                if self.rng.random() < retract_rate:
                    self.retract_oldest_bid(bidder)

            # Positions get liquidated when the price falls
            if log_returns[i] < 0:
                drop = -log_returns[i] / hourly_volatility
                collateral_amount = int(drop * self.rng.integers(50, 500)) + 1
                self.liquidate(collateral_amount)

            for bidder in self.bidders:
                if self.rng.random() < claim_rate:
                    self.claim(bidder)

            self._update_history()
            time_points[i] = self.current_time / HOUR

        if plot_results:
            products = np.array(self.product_history[1:])
            epochs = np.array(self.epoch_history[1:])
            scales = np.array(self.scale_history[1:])

            fig, axs = plt.subplots(4, 1, figsize=(12, 16), sharex=True)

            axs[0].plot(time_points, self.price_history[1:])
            axs[0].set_title('Collateral Price')
            axs[0].set_ylabel('Stable')

            axs[1].plot(time_points, self.total_bids_history[1:])
            axs[1].set_title('Total Active Bids')
            axs[1].set_ylabel('Stable')

            for slot in range(self.max_slot):
                if not np.all(np.isnan(products[:, slot])):
                    axs[2].semilogy(time_points, products[:, slot], label=f'slot {slot}')
            axs[2].set_title('Pool Product Snapshot')
            axs[2].set_ylabel('P')
            axs[2].legend(loc='lower left', fontsize='small')

            axs[3].plot(time_points, epochs.sum(axis=1), label='epochs')
            axs[3].plot(time_points, scales.sum(axis=1), label='scales')
            axs[3].set_title('Pool Epochs and Scales (all slots)')
            axs[3].set_ylabel('Count')
            axs[3].set_xlabel('Hours')
            axs[3].legend()

            plt.tight_layout()
            plt.show()

        final_state = self.get_system_state()
        results = {
            'final_price': final_state['price'],
            'total_bids': final_state['total_bids'],
            'submitted_stable': self.submitted_stable,
            'filled_stable': self.filled_stable,
            'sold_collateral': self.sold_collateral,
            'unsold_collateral': self.unsold_collateral,
            'claimed_collateral': self.claimed_collateral,
            'open_bids': final_state['bids'],
            'epochs': int(self.epoch_history[-1].sum()),
            'scales': int(self.scale_history[-1].sum()),
        }
        logger.info("Simulated %d hours: %d collateral sold for %d stable",
                    hours, self.sold_collateral, self.filled_stable)
        return results
