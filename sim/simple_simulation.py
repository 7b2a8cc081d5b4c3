"""
Simple simulation for the Liquidation Queue model.

This script walks through one liquidation cycle: whitelisting a collateral,
submitting bids in two premium slots, liquidating collateral and claiming it.
"""

import logging
import sys
import os

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))
from queue_simulation import QueueSimulation, QUEUE, STABLE, OVERSEER, CUSTODY
from queue_msgs import BidPoolsByCollateralQuery, BidsByUserQuery


def print_pools(sim):
    response = sim.queue.query(BidPoolsByCollateralQuery(collateral_token=sim.collateral_token))
    for pool in response.bid_pools:
        print(f"  premium {pool.premium_rate}: total={pool.total_bid_amount} "
              f"P={pool.product_snapshot} S={pool.sum_snapshot} "
              f"epoch={pool.current_epoch} scale={pool.current_scale}")


def run_basic_simulation():
    # Initialize the queue with 10 slots of 1% premium each
    sim = QueueSimulation(initial_price=10.0, max_slot=10, premium_rate_per_slot="0.01", seed=1)

    print("Submitting bids...")
    sim.submit_bid("alice", 0, 600)
    sim.submit_bid("bob", 0, 400)
    sim.submit_bid("carol", 2, 2000)
    print("alice: 600 in slot 0, bob: 400 in slot 0, carol: 2000 in slot 2")
    print_pools(sim)

    print("\nLiquidating 150 collateral at price 10...")
    sim.update_time(60)
    sim.update_price(10.0)
    result = sim.liquidate(150)
    for fill in result.fills:
        print(f"  slot {fill.slot}: {fill.stable_amount} stable for {fill.collateral_amount} collateral"
              f"{' (depleted)' if fill.depleted else ''}")
    print(f"  filled {result.filled_stable} stable, {result.remaining_collateral} collateral unsold")
    print(f"  overseer fee: {sim.ledger.balance_of(STABLE, OVERSEER)}, "
          f"custody repay: {sim.ledger.balance_of(STABLE, CUSTODY)}")
    print_pools(sim)

    print("\nClaiming liquidated collateral...")
    for bidder in ("alice", "bob", "carol"):
        claimed = sim.claim(bidder)
        print(f"  {bidder} claimed {claimed} {sim.collateral_token}")

    print("\nRemaining bids:")
    for bidder in ("alice", "bob", "carol"):
        bids = sim.queue.query(BidsByUserQuery(collateral_token=sim.collateral_token, bidder=bidder)).bids
        for bid in bids:
            print(f"  bid {bid.idx} of {bidder}: amount={bid.amount} epoch={bid.epoch_snapshot}")
        if not bids:
            print(f"  {bidder} has no open bids")

    print("\nRetracting carol's remaining bid...")
    retracted = sim.retract_oldest_bid("carol")
    print(f"  carol got back {retracted} stable")

    print("\nQueue balances:")
    print(f"  stable: {sim.ledger.balance_of(STABLE, QUEUE)}")
    print(f"  collateral: {sim.ledger.balance_of(sim.collateral_token, QUEUE)}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_basic_simulation()
