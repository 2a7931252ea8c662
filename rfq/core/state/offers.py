"""
Offer Store - sellers' standing offers.

Offers get dense sequential ids starting at 1 and are immutable once
stored. Settlement never decrements total_size: every bid is checked
against the original total on its own, so repeated settlements against
one offer can together exceed it. The seller decides when to stop
settling.
"""

import threading
from dataclasses import dataclass
from typing import List, Optional, Protocol

from rfq.core.events import EventBus, OfferCreated
from rfq.core.exceptions import InvalidParameter, OfferNotFound, StorageError
from rfq.crypto import bytes_to_hex
from rfq.utils.logger import get_logger
from rfq.utils.validation import validate_address, validate_uint256

logger = get_logger("offers")


@dataclass(frozen=True)
class Offer:
    """
    A standing sell order.

    Attributes:
        offer_id: Sequential id, >= 1
        seller: Address that created the offer and may settle it
        offer_token: Token being sold
        bid_token: Token accepted as payment
        min_price: Price of one whole offer_token unit in bid_token base units
        min_bid_size: Smallest bid_amount accepted
        total_size: Largest bid_amount accepted by a single bid
        offer_token_decimals: Decimals of offer_token when the offer was made
    """
    offer_id: int
    seller: bytes
    offer_token: bytes
    bid_token: bytes
    min_price: int
    min_bid_size: int
    total_size: int
    offer_token_decimals: int

    def details(self):
        """(seller, offer_token, bid_token, min_price, min_bid_size)"""
        return (self.seller, self.offer_token, self.bid_token, self.min_price, self.min_bid_size)

    def to_dict(self) -> dict:
        return {
            "offer_id": self.offer_id,
            "seller": bytes_to_hex(self.seller),
            "offer_token": bytes_to_hex(self.offer_token),
            "bid_token": bytes_to_hex(self.bid_token),
            "min_price": self.min_price,
            "min_bid_size": self.min_bid_size,
            "total_size": self.total_size,
            "offer_token_decimals": self.offer_token_decimals,
        }


class OfferRepository(Protocol):
    """Backend contract for offer records."""

    def count(self) -> int: ...

    def get(self, offer_id: int) -> Optional[Offer]: ...

    def ids(self) -> List[int]:
        """Stored offer ids in ascending order."""
        ...

    def insert(self, offer: Offer) -> None:
        """Store a new offer. Raises StorageError if the id is taken."""
        ...


class InMemoryOfferRepository:
    """List-backed OfferRepository; offer n lives at index n-1."""

    def __init__(self):
        self._offers: List[Offer] = []

    def count(self) -> int:
        return len(self._offers)

    def get(self, offer_id: int) -> Optional[Offer]:
        if 1 <= offer_id <= len(self._offers):
            return self._offers[offer_id - 1]
        return None

    def ids(self) -> List[int]:
        return [offer.offer_id for offer in self._offers]

    def insert(self, offer: Offer) -> None:
        if offer.offer_id != len(self._offers) + 1:
            raise StorageError("Offer id out of sequence", {"offer_id": offer.offer_id})
        self._offers.append(offer)


class OfferStore:
    """Creates and looks up offers."""

    def __init__(self, repository: OfferRepository = None, events: Optional[EventBus] = None):
        self.repository = repository if repository is not None else InMemoryOfferRepository()
        self.events = events
        self._lock = threading.Lock()

    def create(
        self,
        seller: bytes,
        offer_token: bytes,
        bid_token: bytes,
        min_price: int,
        min_bid_size: int,
        total_size: int,
        offer_token_decimals: int,
    ) -> int:
        """
        Store a new offer and return its id.

        Raises:
            InvalidParameter: min_price or min_bid_size is zero, or any
                field is malformed
        """
        for value, name in (
            (seller, "seller"),
            (offer_token, "offer_token"),
            (bid_token, "bid_token"),
        ):
            valid, err = validate_address(value, name)
            if not valid:
                raise InvalidParameter(err)
        for value, name in (
            (min_price, "min_price"),
            (min_bid_size, "min_bid_size"),
            (total_size, "total_size"),
            (offer_token_decimals, "offer_token_decimals"),
        ):
            valid, err = validate_uint256(value, name)
            if not valid:
                raise InvalidParameter(err)

        if min_price == 0:
            raise InvalidParameter("min_price must be > 0")
        if min_bid_size == 0:
            raise InvalidParameter("min_bid_size must be > 0")

        with self._lock:
            offer = Offer(
                offer_id=self.repository.count() + 1,
                seller=bytes(seller),
                offer_token=bytes(offer_token),
                bid_token=bytes(bid_token),
                min_price=min_price,
                min_bid_size=min_bid_size,
                total_size=total_size,
                offer_token_decimals=offer_token_decimals,
            )
            self.repository.insert(offer)

        logger.info(
            f"Offer {offer.offer_id} created by {bytes_to_hex(offer.seller)}: "
            f"min_price={min_price} min_bid_size={min_bid_size} total_size={total_size}"
        )

        if self.events is not None:
            self.events.emit(OfferCreated(
                offer_id=offer.offer_id,
                seller=offer.seller,
                offer_token=offer.offer_token,
                bid_token=offer.bid_token,
                min_price=offer.min_price,
                min_bid_size=offer.min_bid_size,
                total_size=offer.total_size,
                offer_token_decimals=offer.offer_token_decimals,
            ))
        return offer.offer_id

    def get(self, offer_id: int) -> Offer:
        """
        Look up an offer.

        Raises:
            OfferNotFound: offer_id was never created
        """
        offer = None
        if isinstance(offer_id, int) and not isinstance(offer_id, bool):
            offer = self.repository.get(offer_id)
        if offer is None:
            raise OfferNotFound(f"Offer {offer_id} not found", {"offer_id": offer_id})
        return offer

    def exists(self, offer_id: int) -> bool:
        return self.repository.get(offer_id) is not None

    def count(self) -> int:
        return self.repository.count()

    def all_offers(self) -> List[Offer]:
        """Every offer, in id order."""
        return [self.get(offer_id) for offer_id in self.repository.ids()]
