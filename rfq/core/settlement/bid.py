"""
Bid - a signed authorization to fill part of an offer.

Bids are never stored. They exist for the duration of a check or a
settlement call. BidPayload is the JSON form exchanged with external
signers: addresses and the signature as 0x-hex strings, amounts as
integers.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict

from pydantic import BaseModel, ValidationError, field_validator

from rfq.core.exceptions import InvalidParameter
from rfq.crypto import bytes_to_hex, hex_to_bytes, is_valid_address
from rfq.utils.validation import (
    validate_address,
    validate_hex_string,
    validate_signature,
    validate_uint256,
)

ADDRESS_FIELDS = ("signer_address", "bidder_address", "bid_token", "offer_token")
UINT_FIELDS = ("offer_id", "bid_id", "bid_amount", "sell_amount")


@dataclass(frozen=True)
class Bid:
    """
    A candidate fill of an offer.

    Attributes:
        offer_id: Offer being filled
        bid_id: Caller correlation id (not checked for uniqueness)
        signer_address: Key that signed the bid
        bidder_address: Party receiving offer_token and paying bid_token
        bid_token: Token the bidder pays with
        offer_token: Token the bidder receives
        bid_amount: Amount of offer_token requested
        sell_amount: Amount of bid_token paid
        signature: 65-byte r || s || v over the bid digest
    """
    offer_id: int
    bid_id: int
    signer_address: bytes
    bidder_address: bytes
    bid_token: bytes
    offer_token: bytes
    bid_amount: int
    sell_amount: int
    signature: bytes = b""

    def validate(self) -> None:
        """
        Check field types and ranges.

        Raises:
            InvalidParameter: first malformed field
        """
        for name in ADDRESS_FIELDS:
            valid, err = validate_address(getattr(self, name), name)
            if not valid:
                raise InvalidParameter(err)
        for name in UINT_FIELDS:
            valid, err = validate_uint256(getattr(self, name), name)
            if not valid:
                raise InvalidParameter(err)
        valid, err = validate_signature(self.signature)
        if not valid:
            raise InvalidParameter(err)

    def with_signature(self, signature: bytes) -> "Bid":
        return replace(self, signature=signature)

    def to_dict(self) -> Dict[str, Any]:
        return BidPayload.from_bid(self).model_dump()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Bid":
        """
        Parse a JSON-style dict.

        Raises:
            InvalidParameter: the payload does not validate
        """
        try:
            payload = BidPayload.model_validate(data)
        except ValidationError as e:
            raise InvalidParameter("Invalid bid payload", {"errors": e.error_count()}) from e
        return payload.to_bid()


class BidPayload(BaseModel):
    """JSON representation of a Bid."""

    offer_id: int
    bid_id: int
    signer_address: str
    bidder_address: str
    bid_token: str
    offer_token: str
    bid_amount: int
    sell_amount: int
    signature: str = ""

    model_config = {"frozen": True}

    @field_validator(*ADDRESS_FIELDS)
    @classmethod
    def validate_address_field(cls, v: str) -> str:
        if not is_valid_address(v):
            raise ValueError("must be a 0x-prefixed 20-byte hex address")
        return v.lower()

    @field_validator(*UINT_FIELDS)
    @classmethod
    def validate_uint_field(cls, v: int) -> int:
        valid, err = validate_uint256(v, "value")
        if not valid:
            raise ValueError(err)
        return v

    @field_validator("signature")
    @classmethod
    def validate_signature_field(cls, v: str) -> str:
        if not v:
            return v
        valid, err = validate_hex_string(v, "signature")
        if not valid:
            raise ValueError(err)
        return v.lower()

    def to_bid(self) -> Bid:
        return Bid(
            offer_id=self.offer_id,
            bid_id=self.bid_id,
            signer_address=hex_to_bytes(self.signer_address),
            bidder_address=hex_to_bytes(self.bidder_address),
            bid_token=hex_to_bytes(self.bid_token),
            offer_token=hex_to_bytes(self.offer_token),
            bid_amount=self.bid_amount,
            sell_amount=self.sell_amount,
            signature=hex_to_bytes(self.signature) if self.signature else b"",
        )

    @classmethod
    def from_bid(cls, bid: Bid) -> "BidPayload":
        return cls(
            offer_id=bid.offer_id,
            bid_id=bid.bid_id,
            signer_address=bytes_to_hex(bid.signer_address),
            bidder_address=bytes_to_hex(bid.bidder_address),
            bid_token=bytes_to_hex(bid.bid_token),
            offer_token=bytes_to_hex(bid.offer_token),
            bid_amount=bid.bid_amount,
            sell_amount=bid.sell_amount,
            signature=bytes_to_hex(bid.signature) if bid.signature else "",
        )
