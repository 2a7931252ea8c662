"""Engine state: nonces, delegations and offers"""
from rfq.core.state.nonces import NonceLedger, NonceStore, InMemoryNonceStore
from rfq.core.state.delegation import (
    DelegationRegistry,
    DelegationStore,
    InMemoryDelegationStore,
)
from rfq.core.state.offers import (
    Offer,
    OfferStore,
    OfferRepository,
    InMemoryOfferRepository,
)

__all__ = [
    "NonceLedger",
    "NonceStore",
    "InMemoryNonceStore",
    "DelegationRegistry",
    "DelegationStore",
    "InMemoryDelegationStore",
    "Offer",
    "OfferStore",
    "OfferRepository",
    "InMemoryOfferRepository",
]
