from pathlib import Path
from typing import List, Optional

from rfq.core.exceptions import StorageError
from rfq.core.state.offers import Offer
from rfq.core.storage.sqlite_adapter import SQLiteAdapter
from rfq.utils.logger import get_logger

logger = get_logger("storage.manager")


class SQLiteNonceStore:
    """NonceStore backed by SQLiteAdapter."""

    def __init__(self, adapter: SQLiteAdapter):
        self.adapter = adapter

    def get(self, signer: bytes) -> int:
        return self.adapter.get_nonce(signer)

    def compare_and_set(self, signer: bytes, expected: int, new: int) -> bool:
        return self.adapter.compare_and_set_nonce(signer, expected, new)


class SQLiteDelegationStore:
    """DelegationStore backed by SQLiteAdapter."""

    def __init__(self, adapter: SQLiteAdapter):
        self.adapter = adapter

    def get(self, bidder: bytes) -> Optional[bytes]:
        return self.adapter.get_delegate(bidder)

    def set(self, bidder: bytes, signer: bytes) -> None:
        self.adapter.set_delegate(bidder, signer)


class SQLiteOfferRepository:
    """OfferRepository backed by SQLiteAdapter."""

    def __init__(self, adapter: SQLiteAdapter):
        self.adapter = adapter

    def count(self) -> int:
        return self.adapter.count_offers()

    def get(self, offer_id: int) -> Optional[Offer]:
        row = self.adapter.get_offer_row(offer_id)
        return Offer(*row) if row else None

    def ids(self) -> List[int]:
        return self.adapter.list_offer_ids()

    def insert(self, offer: Offer) -> None:
        self.adapter.insert_offer_row(
            offer.offer_id,
            (
                offer.seller,
                offer.offer_token,
                offer.bid_token,
                offer.min_price,
                offer.min_bid_size,
                offer.total_size,
                offer.offer_token_decimals,
            ),
        )


class StorageManager:
    """
    Manages persistent storage for the engine.

    Hands out SQLite-backed stores for nonces, delegations and offers, and
    pins the database to the domain separator it was first used with:
    nonces and offers are only meaningful under the domain whose
    signatures consumed them.
    """

    DOMAIN_KEY = "domain_separator"

    def __init__(self, data_dir: Path, db_name: str = "rfq.db"):
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.adapter = SQLiteAdapter(self.db_path)

        self.nonce_store = SQLiteNonceStore(self.adapter)
        self.delegation_store = SQLiteDelegationStore(self.adapter)
        self.offer_repository = SQLiteOfferRepository(self.adapter)

        logger.info(f"StorageManager initialized at {self.db_path}")

    def bind_domain(self, separator: bytes):
        """
        Record the domain separator, or check it against the recorded one.

        Raises:
            StorageError: the database belongs to a different domain
        """
        stored = self.adapter.get_meta(self.DOMAIN_KEY)
        if stored is None:
            self.adapter.set_meta(self.DOMAIN_KEY, separator.hex())
            return
        if stored != separator.hex():
            raise StorageError(
                "Database was created for a different domain",
                {"stored": stored, "current": separator.hex()},
            )

    def close(self):
        self.adapter.close()
