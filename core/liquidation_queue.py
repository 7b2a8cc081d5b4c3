"""
Liquidation Queue Model.

This module simulates the liquidation queue contract of a money market.
Liquidators submit stable-denominated bids against whitelisted collateral in
premium slots. When custody liquidates a position, the collateral is sold to
the bid pools from the lowest premium upward, and bidders later claim their
share of the liquidated collateral.

Every execute call is atomic: it runs against a copy of the state and the
copy is only kept when the call succeeds.
"""

import copy
import logging
from dataclasses import dataclass, field

from bid_manager import BidManager
from bid_pool import BidPoolStore
from bid_store import BidStore, clamp_limit
from claim_engine import ClaimEngine
from collateral_registry import CollateralRegistry
from liquidation_engine import LiquidationEngine
from queue_config import Config, update_config
from queue_errors import InvalidMessage, Unauthorized
from queue_msgs import (
    ActivateBids, BidPoolQuery, BidPoolResponse, BidPoolsByCollateralQuery, BidPoolsResponse,
    BidQuery, BidResponse, BidsByUserQuery, BidsResponse, ClaimLiquidations, CollateralInfoQuery,
    CollateralInfoResponse, ConfigQuery, ConfigResponse, ExecuteBid, InstantiateMsg,
    LiquidationAmountQuery, LiquidationAmountResponse, Receive, Response, RetractBid, SubmitBid,
    UpdateCollateralInfo, UpdateConfig, WhitelistCollateral, decode_execute_msg, decode_hook_msg,
    decode_instantiate_msg, decode_query_msg,
)

logger = logging.getLogger(__name__)


@dataclass
class QueueState:
    """All mutable state of the queue."""
    config: Config
    registry: CollateralRegistry = field(default_factory=CollateralRegistry)
    bid_pools: BidPoolStore = field(default_factory=BidPoolStore)
    bids: BidStore = field(default_factory=BidStore)


def bid_response(bid):
    return BidResponse(
        idx=bid.idx,
        collateral_token=bid.collateral_token,
        premium_slot=bid.premium_slot,
        bidder=bid.bidder,
        amount=bid.amount,
        product_snapshot=bid.product_snapshot,
        sum_snapshot=bid.sum_snapshot,
        pending_liquidated_collateral=bid.pending_liquidated_collateral,
        wait_end=bid.wait_end,
        epoch_snapshot=bid.epoch_snapshot,
        scale_snapshot=bid.scale_snapshot,
    )


def bid_pool_response(pool):
    return BidPoolResponse(
        sum_snapshot=pool.sum_snapshot,
        product_snapshot=pool.product_snapshot,
        total_bid_amount=pool.total_bid_amount,
        premium_rate=pool.premium_rate,
        current_epoch=pool.current_epoch,
        current_scale=pool.current_scale,
    )


class LiquidationQueue:
    """
    Simulates the liquidation queue contract.
    """

    def __init__(self, instantiate_msg, price_feed):
        """
        Instantiates the queue.

        Args:
            instantiate_msg: InstantiateMsg or its JSON form
            price_feed: Oracle collaborator providing fetch_price
        """
        if not isinstance(instantiate_msg, InstantiateMsg):
            instantiate_msg = decode_instantiate_msg(instantiate_msg)

        config = Config(**vars(instantiate_msg))
        config.validate()

        self.state = QueueState(config=config)
        self.price_feed = price_feed
        logger.info("Liquidation queue instantiated, owner %s, stable %s",
                    config.owner, config.stable_addr)

    @property
    def config(self):
        return self.state.config

    def _claim_engine(self):
        return ClaimEngine(self.state.bid_pools, self.state.bids)

    def _bid_manager(self):
        return BidManager(self.state.registry, self.state.bid_pools, self.state.bids,
                          self._claim_engine())

    def _liquidation_engine(self):
        return LiquidationEngine(self.state.registry, self.state.bid_pools)

    def _assert_owner(self, sender):
        if sender != self.config.owner:
            raise Unauthorized()

    # Execute

    def execute(self, msg, sender, now):
        """
        Runs one execute message as an atomic unit.

        Args:
            msg: Execute message dataclass or its JSON form
            sender: Address calling the queue (the token contract for hooks)
            now: Current block time in seconds

        Returns:
            Response with transfer instructions and attributes
        """
        if isinstance(msg, (dict, str, bytes)):
            msg = decode_execute_msg(msg)

        saved_state = copy.deepcopy(self.state)
        try:
            return self._dispatch(msg, sender, now)
        except Exception:
            self.state = saved_state
            raise

    def _dispatch(self, msg, sender, now):
        if isinstance(msg, Receive):
            return self._receive(msg.receive, sender, now)
        if isinstance(msg, UpdateConfig):
            return self._update_config(msg, sender)
        if isinstance(msg, WhitelistCollateral):
            return self._whitelist_collateral(msg, sender)
        if isinstance(msg, UpdateCollateralInfo):
            return self._update_collateral_info(msg, sender)
        if isinstance(msg, RetractBid):
            return self._retract_bid(msg, sender)
        if isinstance(msg, ActivateBids):
            return self._activate_bids(msg, sender, now)
        if isinstance(msg, ClaimLiquidations):
            return self._claim_liquidations(msg, sender)
        raise InvalidMessage(f"Unsupported execute message: {type(msg).__name__}")

    def _receive(self, cw20_msg, token, now):
        hook = decode_hook_msg(cw20_msg.msg)
        if isinstance(hook, SubmitBid):
            return self._submit_bid(hook, token, cw20_msg.sender, cw20_msg.amount, now)
        if isinstance(hook, ExecuteBid):
            return self._execute_bid(hook, token, cw20_msg.sender, cw20_msg.amount, now)
        raise InvalidMessage(f"Unsupported hook message: {type(hook).__name__}")

    def _update_config(self, msg, sender):
        self.state.config = update_config(self.config, sender, **vars(msg))
        return Response(attributes=[("action", "update_config")])

    def _whitelist_collateral(self, msg, sender):
        self._assert_owner(sender)
        self.state.registry.whitelist(
            msg.collateral_token, msg.bid_threshold, msg.max_slot, msg.premium_rate_per_slot,
            msg.custody_contract)
        return Response(attributes=[
            ("action", "whitelist_collateral"),
            ("collateral_token", msg.collateral_token),
        ])

    def _update_collateral_info(self, msg, sender):
        self._assert_owner(sender)
        manager = self._bid_manager()
        self.state.registry.update(
            msg.collateral_token,
            bid_threshold=msg.bid_threshold,
            max_slot=msg.max_slot,
            slot_in_use=lambda slot: manager.slot_in_use(msg.collateral_token, slot),
            custody_contract=msg.custody_contract,
        )
        return Response(attributes=[
            ("action", "update_collateral_info"),
            ("collateral_token", msg.collateral_token),
        ])

    def _submit_bid(self, hook, token, bidder, amount, now):
        if token != self.config.stable_addr:
            raise Unauthorized(f"Bids must be paid in {self.config.stable_addr}, got {token}")

        bid = self._bid_manager().submit_bid(
            hook.collateral_token, hook.premium_slot, bidder, amount,
            self.config.waiting_period, now)
        return Response(
            attributes=[
                ("action", "submit_bid"),
                ("bid_idx", str(bid.idx)),
                ("amount", str(amount)),
            ],
            data=bid.idx,
        )

    def _retract_bid(self, msg, sender):
        bid, withdrawn = self._bid_manager().retract_bid(msg.bid_idx, sender, msg.amount)
        response = Response(attributes=[
            ("action", "retract_bid"),
            ("bid_idx", str(bid.idx)),
            ("amount", str(withdrawn)),
        ])
        return response.add_transfer(self.config.stable_addr, sender, withdrawn)

    def _activate_bids(self, msg, sender, now):
        activated = self._bid_manager().activate_bids(
            msg.collateral_token, sender, now, msg.bids_idx)
        return Response(
            attributes=[
                ("action", "activate_bids"),
                ("amount", str(sum(bid.amount for bid in activated))),
            ],
            data=[bid.idx for bid in activated],
        )

    def _claim_liquidations(self, msg, sender):
        amount = self._claim_engine().claim_liquidations(
            msg.collateral_token, sender, msg.bids_idx)
        response = Response(attributes=[
            ("action", "claim_liquidations"),
            ("collateral_token", msg.collateral_token),
            ("collateral_amount", str(amount)),
        ])
        return response.add_transfer(msg.collateral_token, sender, amount)

    def _execute_bid(self, hook, collateral_token, custody, collateral_amount, now):
        """
        Liquidates collateral sent by custody against the bid pools.

        The filled stable is split into the bid fee (overseer interest buffer),
        the liquidator fee (fee_address) and the repayment (repay_address); both
        addresses default to the custody sender. Unsold collateral goes back to
        custody. Only the collateral's registered custody may liquidate.
        """
        config = self.config
        info = self.state.registry.get(collateral_token)
        if custody != info.custody_contract:
            raise Unauthorized(f"Only {info.custody_contract} can liquidate {collateral_token}")
        price = self.price_feed.fetch_price(collateral_token, now, config.price_timeframe)

        result = self._liquidation_engine().execute_liquidation(
            collateral_token, collateral_amount, price)

        bid_fee = config.bid_fee.mul_uint(result.filled_stable)
        liquidator_fee = config.liquidator_fee.mul_uint(result.filled_stable)
        repay_amount = result.filled_stable - bid_fee - liquidator_fee

        repay_address = hook.repay_address or custody
        fee_address = hook.fee_address or custody

        response = Response(
            attributes=[
                ("action", "execute_bid"),
                ("collateral_token", collateral_token),
                ("collateral_amount", str(result.sold_collateral)),
                ("repay_amount", str(repay_amount)),
                ("bid_fee", str(bid_fee)),
                ("liquidator_fee", str(liquidator_fee)),
                ("remaining_collateral", str(result.remaining_collateral)),
                ("insufficient_pool_liquidity", str(result.insufficient_pool_liquidity).lower()),
            ],
            data=result,
        )
        response.add_transfer(config.stable_addr, repay_address, repay_amount)
        response.add_transfer(config.stable_addr, config.overseer, bid_fee)
        response.add_transfer(config.stable_addr, fee_address, liquidator_fee)
        response.add_transfer(collateral_token, custody, result.remaining_collateral)
        return response

    # Query

    def query(self, msg):
        """
        Answers a query message.

        Args:
            msg: Query message dataclass or its JSON form

        Returns:
            The matching response dataclass
        """
        if isinstance(msg, (dict, str, bytes)):
            msg = decode_query_msg(msg)

        state = self.state
        if isinstance(msg, ConfigQuery):
            config = state.config
            return ConfigResponse(
                owner=config.owner,
                oracle_contract=config.oracle_contract,
                stable_addr=config.stable_addr,
                safe_ratio=config.safe_ratio,
                bid_fee=config.bid_fee,
                liquidator_fee=config.liquidator_fee,
                liquidation_threshold=config.liquidation_threshold,
                price_timeframe=config.price_timeframe,
                waiting_period=config.waiting_period,
                overseer=config.overseer,
            )
        if isinstance(msg, LiquidationAmountQuery):
            collaterals = self._liquidation_engine().liquidation_amount(
                state.config, msg.borrow_amount, msg.borrow_limit,
                msg.collaterals, msg.collateral_prices)
            return LiquidationAmountResponse(collaterals=collaterals)
        if isinstance(msg, CollateralInfoQuery):
            info = state.registry.get(msg.collateral_token)
            return CollateralInfoResponse(
                collateral_token=info.collateral_token,
                bid_threshold=info.bid_threshold,
                max_slot=info.max_slot,
                premium_rate_per_slot=info.premium_rate_per_slot,
                custody_contract=info.custody_contract,
            )
        if isinstance(msg, BidQuery):
            return bid_response(state.bids.get(msg.bid_idx))
        if isinstance(msg, BidsByUserQuery):
            bids = state.bids.bids_by_user(
                msg.collateral_token, msg.bidder, msg.start_after, msg.limit)
            return BidsResponse(bids=[bid_response(bid) for bid in bids])
        if isinstance(msg, BidPoolQuery):
            return bid_pool_response(state.bid_pools.get(msg.collateral_token, msg.bid_slot))
        if isinstance(msg, BidPoolsByCollateralQuery):
            pools = [(slot, pool) for slot, pool in state.bid_pools.pools_by_collateral(msg.collateral_token)
                     if msg.start_after is None or slot > msg.start_after]
            pools = pools[:clamp_limit(msg.limit)]
            return BidPoolsResponse(bid_pools=[bid_pool_response(pool) for _, pool in pools])
        raise InvalidMessage(f"Unsupported query message: {type(msg).__name__}")
