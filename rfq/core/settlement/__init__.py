"""Bid signing, validation and settlement"""
from rfq.core.settlement.bid import Bid, BidPayload
from rfq.core.settlement.signature import (
    SignatureVerifier,
    TestPayload,
    BID_TYPE,
    BID_TYPEHASH,
    BID_TYPES,
    TEST_TYPE,
    TEST_TYPES,
)
from rfq.core.settlement.validator import (
    BidValidator,
    BidCheckResult,
    BidError,
    ViolationList,
    MAX_ERRORS,
    compute_price,
)
from rfq.core.settlement.engine import SettlementEngine

__all__ = [
    "Bid",
    "BidPayload",
    "SignatureVerifier",
    "TestPayload",
    "BID_TYPE",
    "BID_TYPEHASH",
    "BID_TYPES",
    "TEST_TYPE",
    "TEST_TYPES",
    "BidValidator",
    "BidCheckResult",
    "BidError",
    "ViolationList",
    "MAX_ERRORS",
    "compute_price",
    "SettlementEngine",
]
