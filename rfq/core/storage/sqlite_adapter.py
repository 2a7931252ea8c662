import sqlite3
import threading
from pathlib import Path
from typing import List, Optional, Tuple

from rfq.core.exceptions import StorageError
from rfq.utils.logger import get_logger

logger = get_logger("storage.sqlite")

# Offer columns in table order, after offer_id
OFFER_COLUMNS = (
    "seller",
    "offer_token",
    "bid_token",
    "min_price",
    "min_bid_size",
    "total_size",
    "offer_token_decimals",
)


class SQLiteAdapter:
    """
    SQLite backend for persistent engine state.

    Provides:
    1. Nonce counters (compare-and-set updates)
    2. Bidder -> delegate mappings
    3. Offer records
    4. Engine metadata (domain separator the data was written under)

    uint256 amounts exceed SQLite's 64-bit INTEGER, so they are stored as
    decimal TEXT and converted back on read.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn_local = threading.local()

        if not db_path.parent.exists():
            db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()
        logger.debug(f"SQLite schema ready at {db_path}")

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create connection for current thread."""
        if not hasattr(self._conn_local, "conn"):
            self._conn_local.conn = sqlite3.connect(
                self.db_path,
                timeout=30.0,
                check_same_thread=False
            )
            self._conn_local.conn.row_factory = sqlite3.Row
            # Enable WAL mode for better concurrency
            self._conn_local.conn.execute("PRAGMA journal_mode=WAL;")
            self._conn_local.conn.execute("PRAGMA synchronous=NORMAL;")
        return self._conn_local.conn

    def close(self):
        """Close this thread's connection."""
        conn = getattr(self._conn_local, "conn", None)
        if conn is not None:
            conn.close()
            del self._conn_local.conn

    def _init_schema(self):
        """Initialize database schema."""
        conn = self._get_conn()
        with conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS nonces (
                    signer BLOB PRIMARY KEY,
                    value INTEGER NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS delegations (
                    bidder BLOB PRIMARY KEY,
                    signer BLOB NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS offers (
                    offer_id INTEGER PRIMARY KEY,
                    seller BLOB NOT NULL,
                    offer_token BLOB NOT NULL,
                    bid_token BLOB NOT NULL,
                    min_price TEXT NOT NULL,
                    min_bid_size TEXT NOT NULL,
                    total_size TEXT NOT NULL,
                    offer_token_decimals INTEGER NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS meta (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)

    # =========================================================================
    # Nonces
    # =========================================================================

    def get_nonce(self, signer: bytes) -> int:
        conn = self._get_conn()
        row = conn.execute("SELECT value FROM nonces WHERE signer = ?", (signer,)).fetchone()
        return row["value"] if row else 0

    def compare_and_set_nonce(self, signer: bytes, expected: int, new: int) -> bool:
        """Atomically move signer's counter from expected to new."""
        conn = self._get_conn()
        with conn:
            if expected == 0:
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO nonces (signer, value) VALUES (?, ?)",
                    (signer, new)
                )
                if cursor.rowcount == 1:
                    return True
            cursor = conn.execute(
                "UPDATE nonces SET value = ? WHERE signer = ? AND value = ?",
                (new, signer, expected)
            )
            return cursor.rowcount == 1

    # =========================================================================
    # Delegations
    # =========================================================================

    def get_delegate(self, bidder: bytes) -> Optional[bytes]:
        conn = self._get_conn()
        row = conn.execute("SELECT signer FROM delegations WHERE bidder = ?", (bidder,)).fetchone()
        return bytes(row["signer"]) if row else None

    def set_delegate(self, bidder: bytes, signer: bytes):
        conn = self._get_conn()
        with conn:
            conn.execute(
                "INSERT OR REPLACE INTO delegations (bidder, signer) VALUES (?, ?)",
                (bidder, signer)
            )

    # =========================================================================
    # Offers
    # =========================================================================

    def count_offers(self) -> int:
        conn = self._get_conn()
        return conn.execute("SELECT COUNT(*) AS cnt FROM offers").fetchone()["cnt"]

    def get_offer_row(self, offer_id: int) -> Optional[Tuple]:
        """(offer_id, *OFFER_COLUMNS) with amounts converted back to int."""
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM offers WHERE offer_id = ?", (offer_id,)).fetchone()
        if row is None:
            return None
        try:
            return (
                row["offer_id"],
                bytes(row["seller"]),
                bytes(row["offer_token"]),
                bytes(row["bid_token"]),
                int(row["min_price"]),
                int(row["min_bid_size"]),
                int(row["total_size"]),
                row["offer_token_decimals"],
            )
        except ValueError as e:
            raise StorageError("Corrupt offer row", {"offer_id": offer_id}) from e

    def insert_offer_row(self, offer_id: int, values: Tuple):
        conn = self._get_conn()
        seller, offer_token, bid_token, min_price, min_bid_size, total_size, decimals = values
        try:
            with conn:
                conn.execute(
                    f"INSERT INTO offers (offer_id, {', '.join(OFFER_COLUMNS)}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        offer_id, seller, offer_token, bid_token,
                        str(min_price), str(min_bid_size), str(total_size), decimals,
                    )
                )
        except sqlite3.IntegrityError as e:
            raise StorageError("Offer id already taken", {"offer_id": offer_id}) from e

    def list_offer_ids(self) -> List[int]:
        conn = self._get_conn()
        return [row["offer_id"] for row in conn.execute("SELECT offer_id FROM offers ORDER BY offer_id")]

    # =========================================================================
    # Metadata
    # =========================================================================

    def set_meta(self, key: str, value: str):
        conn = self._get_conn()
        with conn:
            conn.execute("INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)", (key, value))

    def get_meta(self, key: str) -> Optional[str]:
        conn = self._get_conn()
        row = conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None
