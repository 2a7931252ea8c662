"""
Settlement Engine - authorizes and executes fills of RFQ offers.

Settlement flow (settle_offer):
------------------------------
1. Caller must be the offer's seller                      -> Unauthorized
2. Bid must target this offer, its tokens, and meet
   min_bid_size                                           -> InconsistentOffer
3. A signer other than the bidder must be its delegate    -> InvalidDelegate
4. Consume the signer's nonce and build the bid digest
5. Recovered signer must equal signer_address             -> InvalidSignature
6. Move bid_amount of offer_token seller -> bidder and
   sell_amount of bid_token bidder -> seller, atomically  -> TransferFailed
7. Emit OfferSettled

The nonce consumed in step 4 stays consumed when step 5 or 6 fails. The
signed payload for that nonce can therefore never be replayed, whatever
the outcome; external signers rely on this ordering.

Concurrency:
-----------
Nonce consumption is linearizable per signer (NonceLedger). Settlements
of the same offer are additionally serialized by a per-offer lock so a
check_bid taken just before settle_offer sees the state settle acts on.
Read operations take no locks.
"""

import threading
import weakref
from typing import List, Optional, Tuple

from rfq.core.config import EngineConfig
from rfq.core.domain import DomainContext
from rfq.core.events import EventBus, OfferSettled
from rfq.core.exceptions import (
    InconsistentOffer,
    InvalidDelegate,
    InvalidParameter,
    InvalidSignature,
    TransferFailed,
    Unauthorized,
)
from rfq.core.settlement.bid import Bid
from rfq.core.settlement.signature import SignatureVerifier, TestPayload
from rfq.core.settlement.validator import BidCheckResult, BidValidator
from rfq.core.state.delegation import DelegationRegistry
from rfq.core.state.nonces import NonceLedger
from rfq.core.state.offers import Offer, OfferStore
from rfq.core.tokens import InMemoryTokenDirectory, TokenDirectory
from rfq.crypto import bytes_to_hex
from rfq.utils.logger import get_logger, offer_logger
from rfq.utils.validation import validate_address, validate_uint256

logger = get_logger("settlement")


class SettlementEngine:
    """
    Public surface of the RFQ engine.

    Every state-changing operation takes the calling identity explicitly
    as `caller`; authenticating the caller is the transport's job.

    Attributes:
        domain: EIP-712 domain bound into every digest
        address: The engine's identity (the domain's verifying contract),
            used as spender for token allowances
    """

    def __init__(
        self,
        domain: DomainContext,
        tokens: TokenDirectory,
        nonces: Optional[NonceLedger] = None,
        delegations: Optional[DelegationRegistry] = None,
        offers: Optional[OfferStore] = None,
        events: Optional[EventBus] = None,
        max_errors: int = 7,
    ):
        self.domain = domain
        self.address = domain.verifying_contract
        self.tokens = tokens
        self.events = events if events is not None else EventBus()
        self.nonce_ledger = nonces if nonces is not None else NonceLedger()
        self.delegations = delegations if delegations is not None else DelegationRegistry(events=self.events)
        self.offers = offers if offers is not None else OfferStore(events=self.events)

        self.verifier = SignatureVerifier(domain)
        self.validator = BidValidator(
            verifier=self.verifier,
            nonces=self.nonce_ledger,
            delegations=self.delegations,
            tokens=tokens,
            engine_address=self.address,
            max_errors=max_errors,
        )

        # Entries disappear once no settlement holds them
        self._offer_locks = weakref.WeakValueDictionary()
        self._offer_locks_guard = threading.Lock()

        logger.info(
            f"SettlementEngine initialized: domain={domain.name} v{domain.version} "
            f"chain={domain.chain_id} engine={bytes_to_hex(self.address)}"
        )

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        tokens: Optional[TokenDirectory] = None,
        storage=None,
    ) -> "SettlementEngine":
        """
        Build an engine from configuration.

        Args:
            config: Domain parameters and limits
            tokens: Token collaborator (in-memory directory if None)
            storage: Optional StorageManager; in-memory stores if None
        """
        domain = DomainContext.from_config(config)
        events = EventBus()
        tokens = tokens if tokens is not None else InMemoryTokenDirectory()

        if storage is None:
            return cls(domain, tokens, events=events, max_errors=config.max_errors)

        storage.bind_domain(domain.separator)
        return cls(
            domain,
            tokens,
            nonces=NonceLedger(storage.nonce_store),
            delegations=DelegationRegistry(storage.delegation_store, events=events),
            offers=OfferStore(storage.offer_repository, events=events),
            events=events,
            max_errors=config.max_errors,
        )

    def _offer_lock(self, offer_id: int) -> threading.Lock:
        with self._offer_locks_guard:
            lock = self._offer_locks.get(offer_id)
            if lock is None:
                lock = self._offer_locks[offer_id] = threading.Lock()
            return lock

    @staticmethod
    def _require_address(value: bytes, name: str):
        valid, err = validate_address(value, name)
        if not valid:
            raise InvalidParameter(err)

    # =========================================================================
    # Offers
    # =========================================================================

    def create_offer(
        self,
        caller: bytes,
        offer_token: bytes,
        bid_token: bytes,
        min_price: int,
        min_bid_size: int,
        total_size: int,
    ) -> int:
        """
        Post an offer with caller as seller.

        offer_token's decimals are read from the token directory now and
        frozen into the offer.

        Returns:
            New offer id

        Raises:
            InvalidParameter: zero min_price/min_bid_size, malformed input,
                or unknown offer_token
        """
        self._require_address(offer_token, "offer_token")
        decimals = self.tokens.token(offer_token).decimals
        return self.offers.create(
            seller=caller,
            offer_token=offer_token,
            bid_token=bid_token,
            min_price=min_price,
            min_bid_size=min_bid_size,
            total_size=total_size,
            offer_token_decimals=decimals,
        )

    def get_offer(self, offer_id: int) -> Offer:
        return self.offers.get(offer_id)

    def list_offers(self) -> List[Offer]:
        return self.offers.all_offers()

    def get_offer_details(self, offer_id: int) -> Tuple[bytes, bytes, bytes, int, int]:
        """(seller, offer_token, bid_token, min_price, min_bid_size)"""
        return self.offers.get(offer_id).details()

    # =========================================================================
    # Delegation & Nonces
    # =========================================================================

    def delegate_to_signer(self, caller: bytes, new_signer: bytes) -> None:
        """Authorize new_signer to sign bids for caller."""
        self.delegations.delegate(caller, new_signer)

    def nonces(self, address: bytes) -> int:
        return self.nonce_ledger.current(address)

    def domain_separator(self) -> bytes:
        return self.domain.separator

    # =========================================================================
    # Read Path
    # =========================================================================

    def check_bid(self, bid: Bid) -> BidCheckResult:
        """
        Simulate a settlement without changing state.

        Raises:
            OfferNotFound: bid.offer_id does not exist
            InvalidParameter: malformed bid fields
        """
        bid.validate()
        offer = self.offers.get(bid.offer_id)
        return self.validator.check(offer, bid)

    def get_bid_signer(self, bid: Bid) -> bytes:
        """
        Recover who signed bid, using the claimed signer's current nonce.

        Raises:
            InvalidSignature: malformed signature
        """
        bid.validate()
        nonce = self.nonce_ledger.current(bid.signer_address)
        return self.verifier.recover_signer(self.verifier.digest_for_bid(bid, nonce), bid.signature)

    def get_test_signer(self, payload: TestPayload) -> bytes:
        """Recover the signer of a diagnostic Test payload (current nonce)."""
        self._require_address(payload.signer, "signer")
        valid, err = validate_uint256(payload.value, "value")
        if not valid:
            raise InvalidParameter(err)
        nonce = self.nonce_ledger.current(payload.signer)
        return self.verifier.recover_signer(self.verifier.digest_for_test(payload, nonce), payload.signature)

    # =========================================================================
    # Settlement
    # =========================================================================

    def settle_offer(self, caller: bytes, offer_id: int, bid: Bid) -> None:
        """
        Settle bid against offer_id. See module docstring for the steps.

        Raises:
            OfferNotFound, Unauthorized, InconsistentOffer, InvalidDelegate,
            InvalidSignature, TransferFailed, InvalidParameter
        """
        self._require_address(caller, "caller")
        bid.validate()
        offer = self.offers.get(offer_id)
        log = offer_logger(logger, offer.offer_id)

        with self._offer_lock(offer.offer_id):
            if caller != offer.seller:
                log.warning(f"settle by non-seller {bytes_to_hex(caller)}")
                raise Unauthorized("Caller is not the offer seller", {"offer_id": offer_id})

            if not (
                offer_id == bid.offer_id
                and bid.bid_token == offer.bid_token
                and bid.offer_token == offer.offer_token
                and bid.bid_amount >= offer.min_bid_size
            ):
                log.warning(f"bid {bid.bid_id} inconsistent with offer")
                raise InconsistentOffer("Bid does not match offer", {"offer_id": offer_id, "bid_id": bid.bid_id})

            if bid.bidder_address != bid.signer_address and not self.delegations.is_authorized_signer(
                bid.bidder_address, bid.signer_address
            ):
                log.warning(f"{bytes_to_hex(bid.signer_address)} is not a delegate")
                raise InvalidDelegate(
                    "Signer is not authorized for bidder",
                    {"signer": bytes_to_hex(bid.signer_address), "bidder": bytes_to_hex(bid.bidder_address)},
                )

            # Nonce is spent from here on, even if verification fails
            nonce = self.nonce_ledger.consume(bid.signer_address)
            digest = self.verifier.digest_for_bid(bid, nonce)
            recovered = self.verifier.try_recover(digest, bid.signature)
            if recovered != bid.signer_address:
                log.warning(f"bad signature on bid {bid.bid_id} (nonce {nonce} consumed)")
                raise InvalidSignature("Invalid signature", {"bid_id": bid.bid_id, "nonce": nonce})

            self._transfer(offer, bid)

        log.info(
            f"settled bid {bid.bid_id}, {bid.bid_amount} offer_token to "
            f"{bytes_to_hex(bid.bidder_address)}, {bid.sell_amount} bid_token to seller"
        )
        self.events.emit(OfferSettled(
            offer_id=offer.offer_id,
            bid_id=bid.bid_id,
            offer_token=offer.offer_token,
            bid_token=offer.bid_token,
            seller=offer.seller,
            bidder=bid.bidder_address,
            bid_amount=bid.bid_amount,
            sell_amount=bid.sell_amount,
        ))

    def _transfer(self, offer: Offer, bid: Bid) -> None:
        """Both legs or neither."""
        try:
            offer_token = self.tokens.token(offer.offer_token)
            bid_token = self.tokens.token(offer.bid_token)
        except InvalidParameter as e:
            raise TransferFailed("Token not available", {"offer_id": offer.offer_id}) from e

        with self.tokens.atomic():
            offer_leg = offer_token.transfer_from(
                self.address, offer.seller, bid.bidder_address, bid.bid_amount
            )
            if not offer_leg:
                raise TransferFailed("offer_token transfer failed", {"offer_id": offer.offer_id, "leg": "offer"})

            bid_leg = bid_token.transfer_from(
                self.address, bid.bidder_address, offer.seller, bid.sell_amount
            )
            if not bid_leg:
                raise TransferFailed("bid_token transfer failed", {"offer_id": offer.offer_id, "leg": "bid"})
