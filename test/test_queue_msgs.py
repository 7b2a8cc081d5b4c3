"""
Unit tests for message decoding.
"""

import base64
import unittest
import sys
import os

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))
from fixed_point import Decimal256
from queue_errors import InvalidMessage
from queue_msgs import (
    ActivateBids, BidsByUserQuery, ClaimLiquidations, Cw20ReceiveMsg, ExecuteBid,
    LiquidationAmountQuery, Receive, Response, RetractBid, SubmitBid, UpdateConfig,
    decode_execute_msg, decode_hook_msg, decode_instantiate_msg, decode_query_msg, to_binary,
)


class TestExecuteMessages(unittest.TestCase):
    def test_retract_bid(self):
        msg = decode_execute_msg({"retract_bid": {"bid_idx": "3", "amount": "250"}})
        self.assertEqual(msg, RetractBid(bid_idx=3, amount=250))

        msg = decode_execute_msg('{"retract_bid": {"bid_idx": 3}}')
        self.assertEqual(msg, RetractBid(bid_idx=3, amount=None))

    def test_optional_lists(self):
        msg = decode_execute_msg({"claim_liquidations": {"collateral_token": "bluna"}})
        self.assertEqual(msg, ClaimLiquidations(collateral_token="bluna", bids_idx=None))

        msg = decode_execute_msg({"activate_bids": {"collateral_token": "bluna", "bids_idx": ["1", 2]}})
        self.assertEqual(msg, ActivateBids(collateral_token="bluna", bids_idx=[1, 2]))

    def test_update_config_decimals(self):
        msg = decode_execute_msg({"update_config": {"safe_ratio": "0.75", "price_timeframe": "30"}})
        self.assertIsInstance(msg, UpdateConfig)
        self.assertEqual(msg.safe_ratio, Decimal256.from_str("0.75"))
        self.assertEqual(msg.price_timeframe, 30)
        self.assertIsNone(msg.owner)

    def test_receive(self):
        hook = to_binary({"submit_bid": {"collateral_token": "bluna", "premium_slot": 2}})
        msg = decode_execute_msg({"receive": {"sender": "alice", "amount": "1000", "msg": hook}})
        self.assertEqual(msg, Receive(receive=Cw20ReceiveMsg(sender="alice", amount=1000, msg=hook)))

    def test_receive_from_json_text(self):
        """A receive message is decoded the same from a string or bytes"""
        hook = to_binary({"execute_bid": {"liquidator": "liquidator"}})
        text = '{"receive": {"sender": "custody", "amount": "50", "msg": "%s"}}' % hook
        expected = Receive(receive=Cw20ReceiveMsg(sender="custody", amount=50, msg=hook))

        self.assertEqual(decode_execute_msg(text), expected)
        self.assertEqual(decode_execute_msg(text.encode()), expected)

    def test_whitelist_collateral_needs_custody(self):
        body = {"collateral_token": "bluna", "bid_threshold": "0", "max_slot": 10,
                "premium_rate_per_slot": "0.01"}
        with self.assertRaises(InvalidMessage):
            decode_execute_msg({"whitelist_collateral": body})

        msg = decode_execute_msg({"whitelist_collateral": dict(body, custody_contract="custody")})
        self.assertEqual(msg.custody_contract, "custody")

    def test_unknown_variant(self):
        with self.assertRaises(InvalidMessage):
            decode_execute_msg({"liquidate_everything": {}})

    def test_more_than_one_variant(self):
        with self.assertRaises(InvalidMessage):
            decode_execute_msg({"retract_bid": {"bid_idx": 1}, "claim_liquidations": {}})

    def test_missing_field(self):
        with self.assertRaises(InvalidMessage):
            decode_execute_msg({"retract_bid": {}})

    def test_unknown_field(self):
        with self.assertRaises(InvalidMessage):
            decode_execute_msg({"retract_bid": {"bid_idx": 1, "everything": True}})

    def test_invalid_values(self):
        """Negative, fractional and malformed numbers are rejected"""
        for bid_idx in ("-1", 1.5, "abc", True):
            with self.assertRaises(InvalidMessage):
                decode_execute_msg({"retract_bid": {"bid_idx": bid_idx}})
        with self.assertRaises(InvalidMessage):
            decode_execute_msg({"update_config": {"bid_fee": "1.2.3"}})

    def test_invalid_json(self):
        with self.assertRaises(InvalidMessage):
            decode_execute_msg("{not json")

    def test_instantiate(self):
        with self.assertRaises(InvalidMessage):
            decode_instantiate_msg({"owner": "owner"})


class TestHookMessages(unittest.TestCase):
    def test_submit_bid(self):
        binary = to_binary({"submit_bid": {"collateral_token": "bluna", "premium_slot": "4"}})
        self.assertEqual(decode_hook_msg(binary), SubmitBid(collateral_token="bluna", premium_slot=4))

    def test_execute_bid(self):
        binary = to_binary({"execute_bid": {"liquidator": "liq", "repay_address": "market"}})
        self.assertEqual(decode_hook_msg(binary),
                         ExecuteBid(liquidator="liq", fee_address=None, repay_address="market"))

    def test_invalid_base64(self):
        with self.assertRaises(InvalidMessage):
            decode_hook_msg("not base64!")

    def test_base64_of_invalid_json(self):
        with self.assertRaises(InvalidMessage):
            decode_hook_msg(base64.b64encode(b"[1, 2]").decode())

    def test_execute_variant_is_not_a_hook(self):
        with self.assertRaises(InvalidMessage):
            decode_hook_msg(to_binary({"retract_bid": {"bid_idx": 1}}))


class TestQueryMessages(unittest.TestCase):
    def test_bids_by_user(self):
        msg = decode_query_msg({"bids_by_user": {
            "collateral_token": "bluna", "bidder": "alice", "start_after": "10", "limit": 5}})
        self.assertEqual(msg, BidsByUserQuery(
            collateral_token="bluna", bidder="alice", start_after=10, limit=5))

    def test_liquidation_amount(self):
        msg = decode_query_msg({"liquidation_amount": {
            "borrow_amount": "8000",
            "borrow_limit": "7000",
            "collaterals": [["bluna", "1000"], ["beth", "2"]],
            "collateral_prices": ["10", "2000.5"],
        }})
        self.assertIsInstance(msg, LiquidationAmountQuery)
        self.assertEqual(msg.collaterals, [("bluna", 1000), ("beth", 2)])
        self.assertEqual(msg.collateral_prices[1], Decimal256.from_str("2000.5"))

    def test_collaterals_must_be_a_list(self):
        with self.assertRaises(InvalidMessage):
            decode_query_msg({"liquidation_amount": {
                "borrow_amount": "1", "borrow_limit": "1",
                "collaterals": "bluna", "collateral_prices": []}})


class TestResponse(unittest.TestCase):
    def test_zero_transfers_are_skipped(self):
        response = Response(attributes=[("action", "test")])
        response.add_transfer("stable", "alice", 0)
        response.add_transfer("stable", "bob", 5)

        self.assertEqual(len(response.messages), 1)
        self.assertEqual(response.messages[0].recipient, "bob")
        self.assertEqual(response.attribute("action"), "test")
        self.assertIsNone(response.attribute("missing"))


if __name__ == "__main__":
    unittest.main()
