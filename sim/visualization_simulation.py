"""
Visualization simulation for the Liquidation Queue model.

This script runs the queue through a random market and plots the pool
snapshots.
"""

import logging
import sys
import os

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))
from queue_simulation import QueueSimulation


def run_visualization_simulation():
    # Initialize the queue
    sim = QueueSimulation(initial_price=10.0, max_slot=10, premium_rate_per_slot="0.01", num_bidders=8)

    print("Seeding bid pools...")
    for i, bidder in enumerate(sim.bidders):
        sim.submit_bid(bidder, i % sim.max_slot, 2000)
    print(f"Submitted {len(sim.bidders)} bids of 2000 stable")

    # Run a simulation with price movements and plot results
    print("\nRunning simulation with visualizations...")
    results = sim.simulate_market_scenario(24 * 14, price_volatility=0.08, plot_results=True)

    print("\nSimulation Results:")
    for key, value in results.items():
        print(f"  {key}: {value}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_visualization_simulation()
