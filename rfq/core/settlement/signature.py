"""
Signature Verifier - typed-data digests and signer recovery for bids.

The bid digest is the interoperability contract between wallets that sign
bids and this engine. Member order below must match byte for byte on both
sides:

    Bid(uint256 offerId,uint256 bidId,address signerAddress,
        address bidderAddress,address bidToken,address offerToken,
        uint256 bidAmount,uint256 sellAmount,uint256 nonce)

The nonce is always an explicit argument. The read path (check_bid,
get_bid_signer) passes the signer's current nonce; settlement passes the
value returned by consuming it. Between two calls with no settlement in
between both yield the same digest for the same bid.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from rfq.core.domain import DomainContext, type_string
from rfq.core.exceptions import InvalidSignature
from rfq.core.settlement.bid import Bid
from rfq.crypto import (
    bytes_to_hex,
    keccak256,
    recover_address,
    sign_recoverable,
    split_signature,
)
from rfq.utils.logger import get_logger

logger = get_logger("signature")

# =============================================================================
# Typed-Data Types
# =============================================================================

BID_TYPES = {
    "Bid": [
        {"name": "offerId", "type": "uint256"},
        {"name": "bidId", "type": "uint256"},
        {"name": "signerAddress", "type": "address"},
        {"name": "bidderAddress", "type": "address"},
        {"name": "bidToken", "type": "address"},
        {"name": "offerToken", "type": "address"},
        {"name": "bidAmount", "type": "uint256"},
        {"name": "sellAmount", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
    ],
}
BID_TYPE = type_string("Bid", BID_TYPES["Bid"])
BID_TYPEHASH = keccak256(BID_TYPE.encode())

# Diagnostic payload for checking an external signer's typed-data stack
TEST_TYPES = {
    "Test": [
        {"name": "signer", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
    ],
}
TEST_TYPE = type_string("Test", TEST_TYPES["Test"])


@dataclass(frozen=True)
class TestPayload:
    """Minimal signed payload: Test(address signer,uint256 value,uint256 nonce)."""
    __test__ = False  # not a pytest class

    signer: bytes
    value: int
    signature: bytes = b""


class SignatureVerifier:
    """Builds domain-bound digests and recovers their signers."""

    def __init__(self, domain: DomainContext):
        self.domain = domain

    # =========================================================================
    # Digests
    # =========================================================================

    @staticmethod
    def bid_message(bid: Bid, nonce: int) -> Dict[str, Any]:
        return {
            "offerId": bid.offer_id,
            "bidId": bid.bid_id,
            "signerAddress": bid.signer_address,
            "bidderAddress": bid.bidder_address,
            "bidToken": bid.bid_token,
            "offerToken": bid.offer_token,
            "bidAmount": bid.bid_amount,
            "sellAmount": bid.sell_amount,
            "nonce": nonce,
        }

    def digest_for_bid(self, bid: Bid, nonce: int) -> bytes:
        return self.digest_for_struct(BID_TYPES, self.bid_message(bid, nonce))

    def digest_for_struct(self, types: Dict[str, List[Dict[str, str]]], message: Dict[str, Any]) -> bytes:
        """Digest for any typed struct under this domain."""
        return self.domain.hash_typed_data(types, message)

    def digest_for_test(self, payload: TestPayload, nonce: int) -> bytes:
        return self.digest_for_struct(
            TEST_TYPES, {"signer": payload.signer, "value": payload.value, "nonce": nonce}
        )

    # =========================================================================
    # Recovery
    # =========================================================================

    @staticmethod
    def try_recover(digest: bytes, signature: bytes) -> Optional[bytes]:
        """Recovered address, or None for a malformed or unrecoverable signature."""
        return recover_address(digest, signature)

    def recover_signer(self, digest: bytes, signature: bytes) -> bytes:
        """
        Recover the address that signed digest.

        The result may differ from the claimed signer; callers compare.

        Raises:
            InvalidSignature: wrong length, bad v, r/s out of range, high s,
                or no point recoverable
        """
        if split_signature(signature) is None:
            raise InvalidSignature("Malformed signature", {"length": len(signature)})

        signer = self.try_recover(digest, signature)
        if signer is None:
            raise InvalidSignature("Signature recovery failed")
        return signer

    # =========================================================================
    # Signing (signer-side helpers)
    # =========================================================================

    @staticmethod
    def sign_digest(digest: bytes, private_key: bytes) -> bytes:
        return sign_recoverable(digest, private_key)

    def sign_bid(self, bid: Bid, nonce: int, private_key: bytes) -> Bid:
        """Return bid carrying a signature over its digest at nonce."""
        digest = self.digest_for_bid(bid, nonce)
        logger.debug(f"Signing bid {bid.bid_id} digest {bytes_to_hex(digest)}")
        return bid.with_signature(self.sign_digest(digest, private_key))

    def sign_test(self, payload: TestPayload, nonce: int, private_key: bytes) -> TestPayload:
        digest = self.digest_for_test(payload, nonce)
        return TestPayload(payload.signer, payload.value, self.sign_digest(digest, private_key))
