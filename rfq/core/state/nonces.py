"""
Nonce Ledger - per-signer replay protection.

Every signed bid embeds the signer's nonce. Settlement consumes it:
consume() returns the current value and advances the stored counter by
one, so a signature over nonce n can never verify again once n has been
consumed.

Consumption is linearizable per signer. The ledger holds a per-signer
lock for callers in this process and commits through the store's
compare_and_set, so backends shared between processes (SQLite) also
never hand the same nonce to two consumers.
"""

import threading
import weakref
from typing import Dict, Protocol

from rfq.core.exceptions import InvalidParameter
from rfq.crypto import bytes_to_hex
from rfq.utils.logger import get_logger
from rfq.utils.validation import validate_address

logger = get_logger("nonces")


class NonceStore(Protocol):
    """Backend contract for nonce counters."""

    def get(self, signer: bytes) -> int:
        """Stored counter, 0 if the signer has never been seen."""
        ...

    def compare_and_set(self, signer: bytes, expected: int, new: int) -> bool:
        """Set the counter to new only if it currently equals expected."""
        ...


class InMemoryNonceStore:
    """Dictionary-backed NonceStore."""

    def __init__(self):
        self._counters: Dict[bytes, int] = {}
        self._lock = threading.Lock()

    def get(self, signer: bytes) -> int:
        return self._counters.get(signer, 0)

    def compare_and_set(self, signer: bytes, expected: int, new: int) -> bool:
        with self._lock:
            if self._counters.get(signer, 0) != expected:
                return False
            self._counters[signer] = new
            return True


class NonceLedger:
    """
    Per-signer monotonically increasing counters.

    Attributes:
        store: Backend holding the counters
    """

    def __init__(self, store: NonceStore = None):
        self.store = store if store is not None else InMemoryNonceStore()
        # Entries disappear once no consume holds them
        self._locks = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _lock_for(self, signer: bytes) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(signer)
            if lock is None:
                lock = self._locks[signer] = threading.Lock()
            return lock

    @staticmethod
    def _check(signer: bytes):
        valid, err = validate_address(signer, "signer")
        if not valid:
            raise InvalidParameter(err)

    def current(self, signer: bytes) -> int:
        """Current (next unused) nonce for signer. No side effects."""
        self._check(signer)
        return self.store.get(signer)

    def consume(self, signer: bytes) -> int:
        """
        Return the current nonce and advance the counter by one.

        Retries the compare-and-set if another process advanced the
        counter between the read and the write.
        """
        self._check(signer)
        with self._lock_for(signer):
            while True:
                nonce = self.store.get(signer)
                if self.store.compare_and_set(signer, nonce, nonce + 1):
                    logger.debug(f"Consumed nonce {nonce} for {bytes_to_hex(signer)}")
                    return nonce
                logger.debug(f"Nonce race for {bytes_to_hex(signer)}, retrying")
