"""
Shared fixtures: deterministic keys, two tokens and a funded engine.

The standard scenario sells up to 10 T1 (18 decimals) for T2 (6 decimals)
at a minimum of 1000 T2 per T1, with a minimum bid of 1 T1.
"""

import pytest

from rfq.core.domain import DomainContext
from rfq.core.settlement import Bid, SettlementEngine
from rfq.core.tokens import InMemoryTokenDirectory
from rfq.crypto import keypair_from_private_key

ENGINE_ADDRESS = bytes.fromhex("00" * 19 + "01")
T1_ADDRESS = bytes.fromhex("11" * 20)
T2_ADDRESS = bytes.fromhex("22" * 20)

ONE_T1 = 10**18
ONE_T2 = 10**6

MIN_PRICE = 1000 * ONE_T2
MIN_BID_SIZE = 1 * ONE_T1
TOTAL_SIZE = 10 * ONE_T1


def _key(n: int):
    return keypair_from_private_key(n.to_bytes(32, byteorder="big"))


@pytest.fixture
def seller():
    return _key(0xA11CE)


@pytest.fixture
def bidder():
    return _key(0xB0B)


@pytest.fixture
def delegate():
    return _key(0xDE1E6A7E)


@pytest.fixture
def stranger():
    return _key(0x5CA7)


@pytest.fixture
def domain():
    return DomainContext(name="RFQ", version="1", chain_id=1, verifying_contract=ENGINE_ADDRESS)


@pytest.fixture
def tokens():
    directory = InMemoryTokenDirectory()
    directory.create(T1_ADDRESS, decimals=18, symbol="T1")
    directory.create(T2_ADDRESS, decimals=6, symbol="T2")
    return directory


@pytest.fixture
def engine(domain, tokens):
    return SettlementEngine(domain, tokens)


@pytest.fixture
def funded(engine, tokens, seller, bidder):
    """Seller holds and approves T1, bidder holds and approves T2."""
    t1 = tokens.token(T1_ADDRESS)
    t2 = tokens.token(T2_ADDRESS)
    t1.mint(seller.address, 100 * ONE_T1)
    t2.mint(bidder.address, 100_000 * ONE_T2)
    t1.approve(seller.address, engine.address, 100 * ONE_T1)
    t2.approve(bidder.address, engine.address, 100_000 * ONE_T2)
    return engine


@pytest.fixture
def offer_id(funded, seller):
    return funded.create_offer(
        seller.address, T1_ADDRESS, T2_ADDRESS, MIN_PRICE, MIN_BID_SIZE, TOTAL_SIZE
    )


def make_bid(
    offer_id,
    signer,
    bidder=None,
    bid_id=1,
    bid_amount=10 * ONE_T1,
    sell_amount=10_000 * ONE_T2,
    bid_token=T2_ADDRESS,
    offer_token=T1_ADDRESS,
):
    """Unsigned bid; bidder defaults to the signer."""
    return Bid(
        offer_id=offer_id,
        bid_id=bid_id,
        signer_address=signer.address,
        bidder_address=(bidder or signer).address,
        bid_token=bid_token,
        offer_token=offer_token,
        bid_amount=bid_amount,
        sell_amount=sell_amount,
    )


def sign_bid(engine, bid, signer, nonce=None):
    """Sign bid with signer's key at nonce (current nonce by default)."""
    if nonce is None:
        nonce = engine.nonces(bid.signer_address)
    return engine.verifier.sign_bid(bid, nonce, signer.private_key)
