"""
Token Ledger - the external value-transfer collaborator.

The engine never moves value itself. It asks a TokenDirectory for the
Token at an address and calls transfer_from / allowance on it, with the
engine's own address as the spender.

Both settlement legs run inside TokenDirectory.atomic(): if either leg
fails, every balance and allowance touched inside the block is restored.
Tokens registered with an InMemoryTokenDirectory share its lock, so a
mint, approve or transfer from another thread waits for the block to
commit or roll back instead of being overwritten by the rollback.

InMemoryToken / InMemoryTokenDirectory are the reference implementation,
used by tests, the demo and any deployment that keeps balances in-process.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Protocol, Tuple

from rfq.core.exceptions import InvalidParameter
from rfq.crypto import bytes_to_hex
from rfq.utils.logger import get_logger
from rfq.utils.validation import validate_address, validate_uint256

logger = get_logger("tokens")


# =============================================================================
# Collaborator Interfaces
# =============================================================================


class Token(Protocol):
    """ERC-20 style token as seen by the engine."""

    address: bytes
    decimals: int

    def balance_of(self, owner: bytes) -> int: ...

    def allowance(self, owner: bytes, spender: bytes) -> int: ...

    def transfer_from(self, spender: bytes, owner: bytes, recipient: bytes, amount: int) -> bool: ...


class TokenDirectory(Protocol):
    """Resolves token addresses and provides the atomic transfer boundary."""

    def token(self, address: bytes) -> Token: ...

    def atomic(self): ...


# =============================================================================
# In-Memory Implementation
# =============================================================================


class InMemoryToken:
    """
    Minimal ERC-20 ledger.

    transfer_from returns False (never raises) when allowance or balance is
    insufficient, mirroring tokens that signal failure by return value.
    Mutators hold lock, which a directory replaces with its own on register.
    """

    def __init__(self, address: bytes, decimals: int = 18, symbol: str = "", lock=None):
        valid, err = validate_address(address, "token address")
        if not valid:
            raise InvalidParameter(err)
        self.address = bytes(address)
        self.decimals = decimals
        self.symbol = symbol or bytes_to_hex(self.address)[:10]
        self._balances: Dict[bytes, int] = {}
        self._allowances: Dict[Tuple[bytes, bytes], int] = {}
        self._lock = lock if lock is not None else threading.RLock()

    def balance_of(self, owner: bytes) -> int:
        return self._balances.get(owner, 0)

    def allowance(self, owner: bytes, spender: bytes) -> int:
        return self._allowances.get((owner, spender), 0)

    def mint(self, owner: bytes, amount: int) -> None:
        valid, err = validate_uint256(amount, "amount")
        if not valid:
            raise InvalidParameter(err)
        with self._lock:
            self._balances[owner] = self.balance_of(owner) + amount

    def approve(self, owner: bytes, spender: bytes, amount: int) -> None:
        valid, err = validate_uint256(amount, "amount")
        if not valid:
            raise InvalidParameter(err)
        with self._lock:
            self._allowances[(owner, spender)] = amount

    def transfer_from(self, spender: bytes, owner: bytes, recipient: bytes, amount: int) -> bool:
        with self._lock:
            allowed = self.allowance(owner, spender)
            balance = self.balance_of(owner)
            if allowed < amount:
                logger.debug(f"{self.symbol}: allowance {allowed} < {amount}")
                return False
            if balance < amount:
                logger.debug(f"{self.symbol}: balance {balance} < {amount}")
                return False

            self._allowances[(owner, spender)] = allowed - amount
            self._balances[owner] = balance - amount
            self._balances[recipient] = self.balance_of(recipient) + amount
            return True

    def snapshot(self) -> Tuple[Dict[bytes, int], Dict[Tuple[bytes, bytes], int]]:
        with self._lock:
            return dict(self._balances), dict(self._allowances)

    def restore(self, state: Tuple[Dict[bytes, int], Dict[Tuple[bytes, bytes], int]]) -> None:
        with self._lock:
            self._balances, self._allowances = dict(state[0]), dict(state[1])


class InMemoryTokenDirectory:
    """
    Registry of InMemoryTokens with snapshot/rollback atomicity.

    Every registered token mutates under the directory lock, the same lock
    atomic() holds for its whole block.
    """

    def __init__(self):
        self._tokens: Dict[bytes, InMemoryToken] = {}
        self._lock = threading.RLock()

    def register(self, token: InMemoryToken) -> InMemoryToken:
        with self._lock:
            with token._lock:
                token._lock = self._lock
            self._tokens[token.address] = token
        return token

    def create(self, address: bytes, decimals: int = 18, symbol: str = "") -> InMemoryToken:
        return self.register(InMemoryToken(address, decimals=decimals, symbol=symbol, lock=self._lock))

    def token(self, address: bytes) -> InMemoryToken:
        token = self._tokens.get(address)
        if token is None:
            raise InvalidParameter("Unknown token", {"token": bytes_to_hex(address)})
        return token

    def find(self, address: bytes) -> Optional[InMemoryToken]:
        return self._tokens.get(address)

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """
        Run a block of transfers all-or-nothing.

        Holds the directory lock for the whole block, so neither another
        atomic block nor a token mutator on another thread observes or
        interleaves with a half-applied settlement.
        """
        with self._lock:
            snapshots = {addr: token.snapshot() for addr, token in self._tokens.items()}
            try:
                yield
            except BaseException:
                for addr, state in snapshots.items():
                    self._tokens[addr].restore(state)
                logger.debug("Rolled back token state")
                raise
