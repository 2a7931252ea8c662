"""
Delegation Registry - bidders authorizing another key to sign for them.

Each bidder has at most one delegate. A new delegation overwrites the old
one; there is no revocation other than delegating to a different signer
(delegating to oneself is allowed and effectively clears the delegate).
"""

import threading
from typing import Dict, Optional, Protocol

from rfq.core.events import DelegationChanged, EventBus
from rfq.core.exceptions import InvalidParameter
from rfq.crypto import ZERO_ADDRESS, bytes_to_hex
from rfq.utils.logger import get_logger
from rfq.utils.validation import validate_address

logger = get_logger("delegation")


class DelegationStore(Protocol):
    """Backend contract for bidder -> delegate mappings."""

    def get(self, bidder: bytes) -> Optional[bytes]: ...

    def set(self, bidder: bytes, signer: bytes) -> None: ...


class InMemoryDelegationStore:
    """Dictionary-backed DelegationStore."""

    def __init__(self):
        self._delegates: Dict[bytes, bytes] = {}
        self._lock = threading.Lock()

    def get(self, bidder: bytes) -> Optional[bytes]:
        return self._delegates.get(bidder)

    def set(self, bidder: bytes, signer: bytes) -> None:
        with self._lock:
            self._delegates[bidder] = signer


class DelegationRegistry:
    """Maps bidders to the signer allowed to sign bids on their behalf."""

    def __init__(self, store: DelegationStore = None, events: Optional[EventBus] = None):
        self.store = store if store is not None else InMemoryDelegationStore()
        self.events = events

    def delegate(self, bidder: bytes, new_signer: bytes) -> None:
        """
        Record new_signer as bidder's delegate, replacing any previous one.

        Raises:
            InvalidParameter: new_signer is the null address or malformed
        """
        for value, name in ((bidder, "bidder"), (new_signer, "new_signer")):
            valid, err = validate_address(value, name)
            if not valid:
                raise InvalidParameter(err)
        if bytes(new_signer) == ZERO_ADDRESS:
            raise InvalidParameter("new_signer must not be the zero address")

        self.store.set(bytes(bidder), bytes(new_signer))
        logger.info(f"Delegation {bytes_to_hex(bidder)} -> {bytes_to_hex(new_signer)}")

        if self.events is not None:
            self.events.emit(DelegationChanged(bidder=bytes(bidder), new_signer=bytes(new_signer)))

    def delegate_of(self, bidder: bytes) -> Optional[bytes]:
        return self.store.get(bidder)

    def is_authorized_signer(self, bidder: bytes, signer: bytes) -> bool:
        """True if signer is the bidder itself or its registered delegate."""
        if signer == bidder:
            return True
        return self.store.get(bidder) == signer
