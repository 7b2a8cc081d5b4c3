"""
Messages of the Liquidation Queue model.

Execute, hook and query messages are tagged variants: each is a dataclass and
a JSON message carries exactly one variant name (snake_case) mapped to its
fields, e.g. {"retract_bid": {"bid_idx": "3"}}. Messages are decoded once,
at the boundary, by decode_execute_msg / decode_hook_msg / decode_query_msg.
The Cw20 receive hook carries its inner message as base64-encoded JSON.
"""

import base64
import binascii
import json
from dataclasses import MISSING, dataclass, field, fields
from typing import List, Optional, Tuple

from fixed_point import Decimal256, to_decimal256, to_uint256
from queue_errors import InvalidMessage


def _decoded(decode, default=MISSING):
    """Dataclass field carrying the decoder used for its JSON value."""
    if default is MISSING:
        return field(metadata={"decode": decode})
    return field(default=default, metadata={"decode": decode})


def _list_of(decode):
    def decode_list(values):
        if not isinstance(values, list):
            raise ValueError(f"Expected a list, got {values!r}")
        return [decode(value) for value in values]
    return decode_list


def _token_amount(value):
    token, amount = value
    return str(token), to_uint256(amount)


# Instantiate and execute messages

@dataclass
class InstantiateMsg:
    owner: str = _decoded(str)
    oracle_contract: str = _decoded(str)
    stable_addr: str = _decoded(str)
    safe_ratio: Decimal256 = _decoded(to_decimal256)
    bid_fee: Decimal256 = _decoded(to_decimal256)
    liquidator_fee: Decimal256 = _decoded(to_decimal256)
    liquidation_threshold: int = _decoded(to_uint256)
    price_timeframe: int = _decoded(to_uint256)
    waiting_period: int = _decoded(to_uint256)
    overseer: str = _decoded(str)
    oraiswap_oracle: Optional[str] = _decoded(str, None)


@dataclass
class Cw20ReceiveMsg:
    """Hook sent by a Cw20 token contract after a transfer to the queue."""
    sender: str = _decoded(str)
    amount: int = _decoded(to_uint256)
    msg: str = _decoded(str)


@dataclass
class Receive:
    receive: Cw20ReceiveMsg


@dataclass
class UpdateConfig:
    owner: Optional[str] = _decoded(str, None)
    oracle_contract: Optional[str] = _decoded(str, None)
    safe_ratio: Optional[Decimal256] = _decoded(to_decimal256, None)
    bid_fee: Optional[Decimal256] = _decoded(to_decimal256, None)
    liquidator_fee: Optional[Decimal256] = _decoded(to_decimal256, None)
    liquidation_threshold: Optional[int] = _decoded(to_uint256, None)
    price_timeframe: Optional[int] = _decoded(to_uint256, None)
    waiting_period: Optional[int] = _decoded(to_uint256, None)
    overseer: Optional[str] = _decoded(str, None)


@dataclass
class WhitelistCollateral:
    collateral_token: str = _decoded(str)
    bid_threshold: int = _decoded(to_uint256)
    max_slot: int = _decoded(to_uint256)
    premium_rate_per_slot: Decimal256 = _decoded(to_decimal256)
    custody_contract: str = _decoded(str)


@dataclass
class UpdateCollateralInfo:
    collateral_token: str = _decoded(str)
    bid_threshold: Optional[int] = _decoded(to_uint256, None)
    max_slot: Optional[int] = _decoded(to_uint256, None)
    custody_contract: Optional[str] = _decoded(str, None)


@dataclass
class RetractBid:
    bid_idx: int = _decoded(to_uint256)
    amount: Optional[int] = _decoded(to_uint256, None)


@dataclass
class ActivateBids:
    collateral_token: str = _decoded(str)
    bids_idx: Optional[List[int]] = _decoded(_list_of(to_uint256), None)


@dataclass
class ClaimLiquidations:
    collateral_token: str = _decoded(str)
    bids_idx: Optional[List[int]] = _decoded(_list_of(to_uint256), None)


# Cw20 hook messages

@dataclass
class ExecuteBid:
    """Sent by custody together with the collateral to liquidate."""
    liquidator: str = _decoded(str)
    fee_address: Optional[str] = _decoded(str, None)
    repay_address: Optional[str] = _decoded(str, None)


@dataclass
class SubmitBid:
    """Sent by a bidder together with the stable amount of the bid."""
    collateral_token: str = _decoded(str)
    premium_slot: int = _decoded(to_uint256)


# Query messages

@dataclass
class ConfigQuery:
    pass


@dataclass
class LiquidationAmountQuery:
    borrow_amount: int = _decoded(to_uint256)
    borrow_limit: int = _decoded(to_uint256)
    collaterals: List[Tuple[str, int]] = _decoded(_list_of(_token_amount))
    collateral_prices: List[Decimal256] = _decoded(_list_of(to_decimal256))


@dataclass
class CollateralInfoQuery:
    collateral_token: str = _decoded(str)


@dataclass
class BidQuery:
    bid_idx: int = _decoded(to_uint256)


@dataclass
class BidsByUserQuery:
    collateral_token: str = _decoded(str)
    bidder: str = _decoded(str)
    start_after: Optional[int] = _decoded(to_uint256, None)
    limit: Optional[int] = _decoded(to_uint256, None)


@dataclass
class BidPoolQuery:
    collateral_token: str = _decoded(str)
    bid_slot: int = _decoded(to_uint256)


@dataclass
class BidPoolsByCollateralQuery:
    collateral_token: str = _decoded(str)
    start_after: Optional[int] = _decoded(to_uint256, None)
    limit: Optional[int] = _decoded(to_uint256, None)


EXECUTE_VARIANTS = {
    "update_config": UpdateConfig,
    "whitelist_collateral": WhitelistCollateral,
    "update_collateral_info": UpdateCollateralInfo,
    "retract_bid": RetractBid,
    "activate_bids": ActivateBids,
    "claim_liquidations": ClaimLiquidations,
}

HOOK_VARIANTS = {
    "execute_bid": ExecuteBid,
    "submit_bid": SubmitBid,
}

QUERY_VARIANTS = {
    "config": ConfigQuery,
    "liquidation_amount": LiquidationAmountQuery,
    "collateral_info": CollateralInfoQuery,
    "bid": BidQuery,
    "bids_by_user": BidsByUserQuery,
    "bid_pool": BidPoolQuery,
    "bid_pools_by_collateral": BidPoolsByCollateralQuery,
}


# Responses

@dataclass
class Transfer:
    """Token transfer instruction returned by an execute call."""
    token: str
    recipient: str
    amount: int


@dataclass
class Response:
    """Result of an execute call: transfers to perform and event attributes."""
    messages: List[Transfer] = field(default_factory=list)
    attributes: List[Tuple[str, str]] = field(default_factory=list)
    data: object = None

    def add_transfer(self, token, recipient, amount):
        if amount > 0:
            self.messages.append(Transfer(token=token, recipient=recipient, amount=amount))
        return self

    def attribute(self, key):
        """Returns the first attribute value with the given key, or None."""
        for name, value in self.attributes:
            if name == key:
                return value
        return None


@dataclass
class ConfigResponse:
    owner: str
    oracle_contract: str
    stable_addr: str
    safe_ratio: Decimal256
    bid_fee: Decimal256
    liquidator_fee: Decimal256
    liquidation_threshold: int
    price_timeframe: int
    waiting_period: int
    overseer: str


@dataclass
class LiquidationAmountResponse:
    collaterals: List[Tuple[str, int]]


@dataclass
class CollateralInfoResponse:
    collateral_token: str
    bid_threshold: int
    max_slot: int
    premium_rate_per_slot: Decimal256
    custody_contract: str


@dataclass
class BidResponse:
    idx: int
    collateral_token: str
    premium_slot: int
    bidder: str
    amount: int
    product_snapshot: Decimal256
    sum_snapshot: Decimal256
    pending_liquidated_collateral: int
    wait_end: Optional[int]
    epoch_snapshot: int
    scale_snapshot: int


@dataclass
class BidsResponse:
    bids: List[BidResponse]


@dataclass
class BidPoolResponse:
    sum_snapshot: Decimal256
    product_snapshot: Decimal256
    total_bid_amount: int
    premium_rate: Decimal256
    current_epoch: int
    current_scale: int


@dataclass
class BidPoolsResponse:
    bid_pools: List[BidPoolResponse]


# Decoding

def _parse_json(raw, kind):
    if not isinstance(raw, (str, bytes)):
        return raw
    try:
        return json.loads(raw)
    except ValueError as e:
        raise InvalidMessage(f"Invalid {kind} JSON: {e}") from e


def _decode_variant(raw, variants, kind):
    raw = _parse_json(raw, kind)
    if not isinstance(raw, dict) or len(raw) != 1:
        raise InvalidMessage(f"A {kind} message must hold exactly one variant")

    name, body = next(iter(raw.items()))
    cls = variants.get(name)
    if cls is None:
        raise InvalidMessage(f"Unknown {kind} message: {name}")
    return _decode_fields(cls, body or {}, name)


def _decode_fields(cls, body, name):
    if not isinstance(body, dict):
        raise InvalidMessage(f"Fields of {name} must be an object")

    known = {f.name for f in fields(cls)}
    unknown = set(body) - known
    if unknown:
        raise InvalidMessage(f"Unknown fields for {name}: {sorted(unknown)}")

    kwargs = {}
    for f in fields(cls):
        value = body.get(f.name)
        if value is None:
            if f.default is MISSING:
                raise InvalidMessage(f"Missing field {f.name} for {name}")
            continue
        decode = f.metadata.get("decode", lambda v: v)
        try:
            kwargs[f.name] = decode(value)
        except (ValueError, TypeError) as e:
            raise InvalidMessage(f"Invalid {f.name} for {name}: {e}") from e
    return cls(**kwargs)


def decode_instantiate_msg(raw):
    """Decodes the JSON fields of an InstantiateMsg."""
    return _decode_fields(InstantiateMsg, _parse_json(raw, "instantiate"), "instantiate")


def decode_execute_msg(raw):
    """
    Decodes a JSON execute message into its dataclass.

    A {"receive": {...}} message becomes Receive(Cw20ReceiveMsg); its inner
    hook is decoded separately with decode_hook_msg.
    """
    raw = _parse_json(raw, "execute")
    if isinstance(raw, dict) and set(raw) == {"receive"}:
        return Receive(receive=_decode_fields(Cw20ReceiveMsg, raw["receive"] or {}, "receive"))
    return _decode_variant(raw, EXECUTE_VARIANTS, "execute")


def decode_hook_msg(binary):
    """Decodes the base64 JSON body of a Cw20 receive hook."""
    try:
        raw = base64.b64decode(binary, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise InvalidMessage(f"Hook message is not valid base64: {e}") from e
    return _decode_variant(raw, HOOK_VARIANTS, "hook")


def decode_query_msg(raw):
    """Decodes a JSON query message into its dataclass."""
    return _decode_variant(raw, QUERY_VARIANTS, "query")


def to_binary(message):
    """Encodes a JSON-shaped message as base64, the form hooks carry."""
    return base64.b64encode(json.dumps(message).encode()).decode()
