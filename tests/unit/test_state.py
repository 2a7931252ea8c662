"""
Unit tests for engine state: nonce ledger, delegation registry, offer store.

Tests cover:
1. Nonce current/consume semantics and concurrency
2. Delegation overwrite and authorization
3. Offer creation, sequencing and lookup
4. Event delivery
"""

import gc
import threading

import pytest

from rfq.core.events import DelegationChanged, EventBus, OfferCreated
from rfq.core.exceptions import InvalidParameter, OfferNotFound, StorageError
from rfq.core.state import (
    DelegationRegistry,
    InMemoryNonceStore,
    InMemoryOfferRepository,
    NonceLedger,
    Offer,
    OfferStore,
)
from rfq.crypto import ZERO_ADDRESS

ALICE = bytes.fromhex("aa" * 20)
BOB = bytes.fromhex("bb" * 20)
CAROL = bytes.fromhex("cc" * 20)
T1 = bytes.fromhex("11" * 20)
T2 = bytes.fromhex("22" * 20)


# =============================================================================
# Nonces
# =============================================================================


class TestNonceLedger:
    """Tests for per-signer nonces."""

    def test_unseen_signer_starts_at_zero(self):
        assert NonceLedger().current(ALICE) == 0

    def test_consume_returns_pre_increment_value(self):
        ledger = NonceLedger()

        assert ledger.consume(ALICE) == 0
        assert ledger.consume(ALICE) == 1
        assert ledger.current(ALICE) == 2

    def test_current_has_no_side_effect(self):
        ledger = NonceLedger()
        ledger.current(ALICE)
        ledger.current(ALICE)
        assert ledger.current(ALICE) == 0

    def test_signers_are_independent(self):
        ledger = NonceLedger()
        ledger.consume(ALICE)
        ledger.consume(ALICE)

        assert ledger.current(BOB) == 0
        assert ledger.consume(BOB) == 0
        assert ledger.current(ALICE) == 2

    def test_rejects_malformed_signer(self):
        with pytest.raises(InvalidParameter):
            NonceLedger().consume(b"short")

    def test_concurrent_consumers_get_distinct_nonces(self):
        """No two threads observe the same nonce."""
        ledger = NonceLedger()
        seen = []
        seen_lock = threading.Lock()

        def worker():
            for _ in range(50):
                n = ledger.consume(ALICE)
                with seen_lock:
                    seen.append(n)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(seen) == list(range(400))
        assert ledger.current(ALICE) == 400

    def test_consume_retries_lost_race(self):
        """A competing writer between read and CAS forces a retry."""

        class RacyStore(InMemoryNonceStore):
            def __init__(self):
                super().__init__()
                self.raced = False

            def compare_and_set(self, signer, expected, new):
                if not self.raced:
                    self.raced = True
                    # Another process consumes first
                    super().compare_and_set(signer, expected, new)
                return super().compare_and_set(signer, expected, new)

        ledger = NonceLedger(RacyStore())
        assert ledger.consume(ALICE) == 1
        assert ledger.current(ALICE) == 2

    def test_signer_lock_shared_while_held(self):
        ledger = NonceLedger()
        lock = ledger._lock_for(ALICE)

        assert ledger._lock_for(ALICE) is lock
        assert ledger._lock_for(BOB) is not lock

    def test_signer_locks_are_released(self):
        ledger = NonceLedger()
        for signer in (ALICE, BOB, CAROL):
            ledger.consume(signer)
        gc.collect()

        assert len(ledger._locks) == 0


# =============================================================================
# Delegation
# =============================================================================


class TestDelegationRegistry:
    """Tests for bidder -> signer delegation."""

    def test_bidder_is_always_authorized(self):
        assert DelegationRegistry().is_authorized_signer(ALICE, ALICE)

    def test_unregistered_signer_not_authorized(self):
        assert not DelegationRegistry().is_authorized_signer(ALICE, BOB)

    def test_delegate_authorizes_signer(self):
        registry = DelegationRegistry()
        registry.delegate(ALICE, BOB)

        assert registry.is_authorized_signer(ALICE, BOB)
        assert registry.delegate_of(ALICE) == BOB
        assert not registry.is_authorized_signer(BOB, ALICE)

    def test_redelegation_overwrites(self):
        registry = DelegationRegistry()
        registry.delegate(ALICE, BOB)
        registry.delegate(ALICE, CAROL)

        assert registry.is_authorized_signer(ALICE, CAROL)
        assert not registry.is_authorized_signer(ALICE, BOB)

    def test_self_delegation_allowed(self):
        registry = DelegationRegistry()
        registry.delegate(ALICE, BOB)
        registry.delegate(ALICE, ALICE)

        assert registry.delegate_of(ALICE) == ALICE
        assert not registry.is_authorized_signer(ALICE, BOB)

    def test_same_delegate_for_several_bidders(self):
        registry = DelegationRegistry()
        registry.delegate(ALICE, CAROL)
        registry.delegate(BOB, CAROL)

        assert registry.is_authorized_signer(ALICE, CAROL)
        assert registry.is_authorized_signer(BOB, CAROL)

    def test_zero_signer_rejected(self):
        registry = DelegationRegistry()
        with pytest.raises(InvalidParameter):
            registry.delegate(ALICE, ZERO_ADDRESS)
        assert registry.delegate_of(ALICE) is None

    def test_zero_signer_never_authorized_by_default(self):
        assert not DelegationRegistry().is_authorized_signer(ALICE, ZERO_ADDRESS)

    def test_emits_event(self):
        events = EventBus()
        DelegationRegistry(events=events).delegate(ALICE, BOB)

        assert events.history() == [DelegationChanged(bidder=ALICE, new_signer=BOB)]


# =============================================================================
# Offers
# =============================================================================


@pytest.fixture
def store():
    return OfferStore(events=EventBus())


def create(store, **overrides):
    params = dict(
        seller=ALICE,
        offer_token=T1,
        bid_token=T2,
        min_price=1000,
        min_bid_size=1,
        total_size=10,
        offer_token_decimals=18,
    )
    params.update(overrides)
    return store.create(**params)


class TestOfferStore:
    """Tests for offer creation and lookup."""

    def test_ids_are_sequential_from_one(self, store):
        assert create(store) == 1
        assert create(store) == 2
        assert create(store, seller=BOB) == 3
        assert store.count() == 3

    def test_all_offers_in_id_order(self, store):
        create(store)
        create(store, seller=BOB)

        assert [o.offer_id for o in store.all_offers()] == [1, 2]
        assert store.all_offers()[1].seller == BOB

    def test_get_returns_record(self, store):
        offer_id = create(store)
        offer = store.get(offer_id)

        assert offer == Offer(1, ALICE, T1, T2, 1000, 1, 10, 18)
        assert offer.details() == (ALICE, T1, T2, 1000, 1)

    def test_zero_min_price_rejected(self, store):
        with pytest.raises(InvalidParameter):
            create(store, min_price=0)
        assert store.count() == 0

    def test_zero_min_bid_size_rejected(self, store):
        with pytest.raises(InvalidParameter):
            create(store, min_bid_size=0)

    def test_zero_total_size_allowed(self, store):
        """Only min_price and min_bid_size are required to be positive."""
        assert create(store, total_size=0) == 1

    def test_negative_amount_rejected(self, store):
        with pytest.raises(InvalidParameter):
            create(store, total_size=-1)

    @pytest.mark.parametrize("offer_id", [0, 2, -1, True, "1"])
    def test_missing_offer(self, store, offer_id):
        create(store)
        with pytest.raises(OfferNotFound):
            store.get(offer_id)

    def test_offer_is_immutable(self, store):
        offer = store.get(create(store))
        with pytest.raises(AttributeError):
            offer.total_size = 0

    def test_emits_event_with_all_fields(self, store):
        create(store)
        (event,) = store.events.history(OfferCreated)

        assert event == OfferCreated(
            offer_id=1,
            seller=ALICE,
            offer_token=T1,
            bid_token=T2,
            min_price=1000,
            min_bid_size=1,
            total_size=10,
            offer_token_decimals=18,
        )

    def test_repository_rejects_out_of_sequence_ids(self):
        repo = InMemoryOfferRepository()
        with pytest.raises(StorageError):
            repo.insert(Offer(5, ALICE, T1, T2, 1, 1, 1, 18))


# =============================================================================
# Events
# =============================================================================


class TestEventBus:
    """Tests for synchronous delivery."""

    def test_delivers_in_subscription_order(self):
        events = EventBus()
        received = []
        events.subscribe(lambda e: received.append(("first", e.name)))
        events.subscribe(lambda e: received.append(("second", e.name)))

        events.emit(DelegationChanged(bidder=ALICE, new_signer=BOB))

        assert received == [("first", "DelegationChanged"), ("second", "DelegationChanged")]

    def test_failing_subscriber_is_logged_and_skipped(self, caplog):
        events = EventBus()
        received = []

        def explode(event):
            raise RuntimeError("subscriber down")

        events.subscribe(explode)
        events.subscribe(received.append)

        event = DelegationChanged(bidder=ALICE, new_signer=BOB)
        with caplog.at_level("ERROR", logger="rfq.events"):
            events.emit(event)

        assert received == [event]
        assert events.history() == [event]
        assert "subscriber down" in caplog.text

    def test_unsubscribe(self):
        events = EventBus()
        received = []
        events.subscribe(received.append)
        events.unsubscribe(received.append)

        events.emit(DelegationChanged(bidder=ALICE, new_signer=BOB))

        assert received == []
        assert len(events.history()) == 1
