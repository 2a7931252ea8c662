"""
Bid Validator - read-only pre-flight simulation of a settlement.

Runs every rule against an offer and a candidate bid and reports all the
failures at once, in a fixed order:

    1. SIGNATURE_MISMATCHED       recovered signer (current nonce) != signer_address
    2. INVALID_SIGNER_FOR_BIDDER  signer is neither bidder nor its delegate
    3. BID_TOO_SMALL              bid_amount < min_bid_size
    4. BID_EXCEED_TOTAL_SIZE      bid_amount > total_size
    5. PRICE_TOO_LOW              sell_amount * 10**decimals // bid_amount < min_price
    6. BIDDER_ALLOWANCE_LOW       bidder's bid_token allowance < sell_amount
    7. SELLER_ALLOWANCE_LOW       seller's offer_token allowance < bid_amount

The price is computed with floor division; that truncation is the exact
rule, so a price landing exactly on min_price passes.

An empty result means the bid passes every rule known here. It does not
guarantee settlement: nonces, delegations and allowances can change
before settle_offer runs.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Tuple

from rfq.core.exceptions import InvalidParameter, ViolationCapacityExceeded
from rfq.core.settlement.bid import Bid
from rfq.core.settlement.signature import SignatureVerifier
from rfq.core.state.delegation import DelegationRegistry
from rfq.core.state.nonces import NonceLedger
from rfq.core.state.offers import Offer
from rfq.core.tokens import TokenDirectory
from rfq.utils.logger import get_logger

logger = get_logger("validator")

# Number of rules below; the violation list never needs more room
MAX_ERRORS = 7


class BidError(str, Enum):
    """Violation codes, in check order."""

    SIGNATURE_MISMATCHED = "SIGNATURE_MISMATCHED"
    INVALID_SIGNER_FOR_BIDDER = "INVALID_SIGNER_FOR_BIDDER"
    BID_TOO_SMALL = "BID_TOO_SMALL"
    BID_EXCEED_TOTAL_SIZE = "BID_EXCEED_TOTAL_SIZE"
    PRICE_TOO_LOW = "PRICE_TOO_LOW"
    BIDDER_ALLOWANCE_LOW = "BIDDER_ALLOWANCE_LOW"
    SELLER_ALLOWANCE_LOW = "SELLER_ALLOWANCE_LOW"


class ViolationList:
    """
    Ordered, bounded list of violation codes.

    Appending past capacity raises instead of dropping codes.
    """

    def __init__(self, capacity: int = MAX_ERRORS):
        if capacity < 1:
            raise InvalidParameter("capacity must be >= 1")
        self.capacity = capacity
        self._codes: List[BidError] = []

    def append(self, code: BidError) -> None:
        if len(self._codes) >= self.capacity:
            raise ViolationCapacityExceeded(
                "Too many violations recorded",
                {"capacity": self.capacity, "code": code.value},
            )
        self._codes.append(code)

    def __len__(self) -> int:
        return len(self._codes)

    def __iter__(self) -> Iterator[BidError]:
        return iter(self._codes)

    def as_tuple(self) -> Tuple[BidError, ...]:
        return tuple(self._codes)


@dataclass(frozen=True)
class BidCheckResult:
    """Outcome of check_bid: (error_count, errors)."""
    error_count: int
    errors: Tuple[BidError, ...]

    @property
    def passed(self) -> bool:
        return self.error_count == 0

    def __iter__(self):
        # Allows `count, errors = engine.check_bid(bid)`
        return iter((self.error_count, self.errors))

    def codes(self) -> List[str]:
        return [e.value for e in self.errors]


def compute_price(sell_amount: int, bid_amount: int, offer_token_decimals: int) -> int:
    """Price of one whole offer_token in bid_token base units, floored."""
    return sell_amount * 10**offer_token_decimals // bid_amount


class BidValidator:
    """
    Runs the ordered rule battery. Never mutates state and never raises
    for a rule failure.
    """

    def __init__(
        self,
        verifier: SignatureVerifier,
        nonces: NonceLedger,
        delegations: DelegationRegistry,
        tokens: TokenDirectory,
        engine_address: bytes,
        max_errors: int = MAX_ERRORS,
    ):
        self.verifier = verifier
        self.nonces = nonces
        self.delegations = delegations
        self.tokens = tokens
        self.engine_address = engine_address
        self.max_errors = max_errors

    def _allowance(self, token_address: bytes, owner: bytes) -> int:
        # Tokens the directory cannot resolve grant no allowance
        try:
            token = self.tokens.token(token_address)
        except InvalidParameter:
            logger.debug("Allowance lookup on unknown token")
            return 0
        return token.allowance(owner, self.engine_address)

    def check(self, offer: Offer, bid: Bid) -> BidCheckResult:
        """Run every rule in order and collect the failures."""
        errors = ViolationList(self.max_errors)

        nonce = self.nonces.current(bid.signer_address)
        digest = self.verifier.digest_for_bid(bid, nonce)
        if self.verifier.try_recover(digest, bid.signature) != bid.signer_address:
            errors.append(BidError.SIGNATURE_MISMATCHED)

        if not self.delegations.is_authorized_signer(bid.bidder_address, bid.signer_address):
            errors.append(BidError.INVALID_SIGNER_FOR_BIDDER)

        if bid.bid_amount < offer.min_bid_size:
            errors.append(BidError.BID_TOO_SMALL)

        if bid.bid_amount > offer.total_size:
            errors.append(BidError.BID_EXCEED_TOTAL_SIZE)

        # A zero bid_amount has no price; it can never meet min_price
        if bid.bid_amount == 0 or compute_price(
            bid.sell_amount, bid.bid_amount, offer.offer_token_decimals
        ) < offer.min_price:
            errors.append(BidError.PRICE_TOO_LOW)

        if self._allowance(bid.bid_token, bid.bidder_address) < bid.sell_amount:
            errors.append(BidError.BIDDER_ALLOWANCE_LOW)

        if self._allowance(bid.offer_token, offer.seller) < bid.bid_amount:
            errors.append(BidError.SELLER_ALLOWANCE_LOW)

        result = BidCheckResult(error_count=len(errors), errors=errors.as_tuple())
        logger.debug(f"check offer={offer.offer_id} bid={bid.bid_id}: {result.codes()}")
        return result
