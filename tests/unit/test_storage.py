"""
Unit tests for SQLite storage.
"""

import threading

import pytest

from rfq.core.exceptions import StorageError
from rfq.core.state.offers import Offer
from rfq.core.storage import SQLiteAdapter, StorageManager

SIGNER = bytes.fromhex("aa" * 20)
BIDDER = bytes.fromhex("bb" * 20)
T1 = bytes.fromhex("11" * 20)
T2 = bytes.fromhex("22" * 20)


@pytest.fixture
def adapter(tmp_path):
    a = SQLiteAdapter(tmp_path / "db" / "rfq.db")
    yield a
    a.close()


@pytest.fixture
def manager(tmp_path):
    m = StorageManager(tmp_path)
    yield m
    m.close()


# =============================================================================
# Adapter
# =============================================================================


class TestSQLiteAdapter:
    """Tests for raw table access."""

    def test_creates_parent_directory(self, adapter, tmp_path):
        assert (tmp_path / "db" / "rfq.db").exists()

    def test_nonce_compare_and_set(self, adapter):
        assert adapter.get_nonce(SIGNER) == 0
        assert adapter.compare_and_set_nonce(SIGNER, 0, 1)
        assert not adapter.compare_and_set_nonce(SIGNER, 0, 1)
        assert adapter.compare_and_set_nonce(SIGNER, 1, 2)
        assert adapter.get_nonce(SIGNER) == 2

    def test_delegate_overwrite(self, adapter):
        assert adapter.get_delegate(BIDDER) is None
        adapter.set_delegate(BIDDER, SIGNER)
        adapter.set_delegate(BIDDER, BIDDER)
        assert adapter.get_delegate(BIDDER) == BIDDER

    def test_offer_amounts_beyond_64_bits(self, adapter):
        big = 2**256 - 1
        adapter.insert_offer_row(1, (SIGNER, T1, T2, big, big, big, 18))

        row = adapter.get_offer_row(1)
        assert row == (1, SIGNER, T1, T2, big, big, big, 18)
        assert adapter.count_offers() == 1
        assert adapter.list_offer_ids() == [1]

    def test_duplicate_offer_id(self, adapter):
        adapter.insert_offer_row(1, (SIGNER, T1, T2, 1, 1, 1, 18))
        with pytest.raises(StorageError):
            adapter.insert_offer_row(1, (SIGNER, T1, T2, 1, 1, 1, 18))

    def test_missing_offer_row(self, adapter):
        assert adapter.get_offer_row(42) is None

    def test_meta(self, adapter):
        assert adapter.get_meta("k") is None
        adapter.set_meta("k", "v1")
        adapter.set_meta("k", "v2")
        assert adapter.get_meta("k") == "v2"

    def test_connections_are_per_thread(self, adapter):
        """Writes from another thread are visible here."""
        def worker():
            adapter.set_delegate(BIDDER, SIGNER)
            adapter.close()

        t = threading.Thread(target=worker)
        t.start()
        t.join()

        assert adapter.get_delegate(BIDDER) == SIGNER


# =============================================================================
# Manager
# =============================================================================


class TestStorageManager:
    """Tests for store wrappers and domain pinning."""

    def test_offer_repository_roundtrip(self, manager):
        offer = Offer(1, SIGNER, T1, T2, 1000, 1, 10, 6)
        manager.offer_repository.insert(offer)

        assert manager.offer_repository.count() == 1
        assert manager.offer_repository.get(1) == offer
        assert manager.offer_repository.get(2) is None
        assert manager.offer_repository.ids() == [1]

    def test_nonce_store(self, manager):
        store = manager.nonce_store
        assert store.compare_and_set(SIGNER, 0, 1)
        assert store.get(SIGNER) == 1

    def test_bind_domain_first_use_records(self, manager):
        manager.bind_domain(b"\x01" * 32)
        manager.bind_domain(b"\x01" * 32)
        assert manager.adapter.get_meta(StorageManager.DOMAIN_KEY) == "01" * 32

    def test_bind_domain_mismatch(self, manager):
        manager.bind_domain(b"\x01" * 32)
        with pytest.raises(StorageError):
            manager.bind_domain(b"\x02" * 32)

    def test_state_survives_reopen(self, tmp_path):
        first = StorageManager(tmp_path)
        first.nonce_store.compare_and_set(SIGNER, 0, 1)
        first.delegation_store.set(BIDDER, SIGNER)
        first.close()

        second = StorageManager(tmp_path)
        try:
            assert second.nonce_store.get(SIGNER) == 1
            assert second.delegation_store.get(BIDDER) == SIGNER
        finally:
            second.close()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
