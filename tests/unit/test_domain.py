"""
Unit tests for EIP-712 domain separation and typed-data digests.

Reference values come from the EIP-712 "Ether Mail" example, so a pass
here means digests match what standard wallets produce.
"""

import dataclasses

import pytest

from rfq.core.config import EngineConfig
from rfq.core.domain import DOMAIN_TYPE, DomainContext, message_value, type_string
from rfq.core.exceptions import InvalidParameter
from rfq.crypto import keccak256

MAIL_CONTRACT = bytes.fromhex("cc" * 20)
COW_WALLET = bytes.fromhex("cd2a3d9f938e13cd947ec05abc7fe734df8dd826")
BOB_WALLET = "0xbBbBBBBbbBBBbbbBbbBbbbbBBbBbbbbBbBbbBBbB"

PERSON_TYPES = {
    "Person": [
        {"name": "name", "type": "string"},
        {"name": "wallet", "type": "address"},
    ],
}

MAIL_TYPES = {
    **PERSON_TYPES,
    "Mail": [
        {"name": "from", "type": "Person"},
        {"name": "to", "type": "Person"},
        {"name": "contents", "type": "string"},
    ],
}

MAIL_MESSAGE = {
    "from": {"name": "Cow", "wallet": "0x" + COW_WALLET.hex()},
    "to": {"name": "Bob", "wallet": BOB_WALLET},
    "contents": "Hello, Bob!",
}


@pytest.fixture
def ether_mail():
    return DomainContext(name="Ether Mail", version="1", chain_id=1, verifying_contract=MAIL_CONTRACT)


class TestDomainSeparator:
    """Tests for the domain separator."""

    def test_domain_type(self):
        assert DOMAIN_TYPE == "EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"
        assert keccak256(DOMAIN_TYPE.encode()).hex() == (
            "8b73c3c69bb8fe3d512ecc4cf759cc79239f7b179b0ffacaa9a75d522b39400f"
        )

    def test_ether_mail_separator(self, ether_mail):
        assert ether_mail.separator.hex() == "f2cee375fa42b42143804025fc449deafd50cc031ca257e0b194a650a912090f"

    def test_separator_depends_on_every_field(self, ether_mail):
        variants = [
            DomainContext("Other Mail", "1", 1, MAIL_CONTRACT),
            DomainContext("Ether Mail", "2", 1, MAIL_CONTRACT),
            DomainContext("Ether Mail", "1", 5, MAIL_CONTRACT),
            DomainContext("Ether Mail", "1", 1, bytes.fromhex("dd" * 20)),
        ]
        separators = {v.separator for v in variants}
        assert ether_mail.separator not in separators
        assert len(separators) == 4

    def test_separator_is_immutable(self, ether_mail):
        with pytest.raises(dataclasses.FrozenInstanceError):
            ether_mail.separator = bytes(32)
        with pytest.raises(dataclasses.FrozenInstanceError):
            ether_mail.chain_id = 5

    def test_from_config(self):
        config = EngineConfig(domain_name="Ether Mail", chain_id=1, verifying_contract="0x" + "cc" * 20)
        d = DomainContext.from_config(config)
        assert d.separator.hex() == "f2cee375fa42b42143804025fc449deafd50cc031ca257e0b194a650a912090f"

    def test_bad_verifying_contract(self):
        with pytest.raises(InvalidParameter):
            DomainContext("RFQ", "1", 1, b"\x01")

    def test_bad_chain_id(self):
        with pytest.raises(InvalidParameter):
            DomainContext("RFQ", "1", -1, MAIL_CONTRACT)


class TestTypedData:
    """Tests for message encoding under a domain."""

    def test_person_struct_hash(self, ether_mail):
        """hashStruct(Person{name: "Cow", wallet: 0xCD2a...D826}) from the EIP."""
        signable = ether_mail.encode(PERSON_TYPES, {"name": "Cow", "wallet": COW_WALLET})
        assert bytes(signable.body).hex() == "fc71e5fa27ff56c350aa531bc129ebdf613b772b6604664f5d8dbe21b85eb0c8"

    def test_header_is_separator(self, ether_mail):
        signable = ether_mail.encode(PERSON_TYPES, {"name": "Cow", "wallet": COW_WALLET})
        assert bytes(signable.header) == ether_mail.separator

    def test_mail_digest(self, ether_mail):
        """Nested Mail{from, to, contents} signing hash from the EIP."""
        signable = ether_mail.encode(MAIL_TYPES, MAIL_MESSAGE)
        assert bytes(signable.body).hex() == "c52c0ee5d84264471806290a3f2c4cecfc5490626bf912d01f240d7a274b371e"
        assert ether_mail.hash_typed_data(MAIL_TYPES, MAIL_MESSAGE).hex() == (
            "be609aee343fb3c4b28e1df9e632fca64fcfaede20f02e86244efddf30957bd2"
        )

    def test_digest_is_eip191_framed(self, ether_mail):
        signable = ether_mail.encode(PERSON_TYPES, {"name": "Cow", "wallet": COW_WALLET})
        expected = keccak256(b"\x19\x01" + ether_mail.separator + bytes(signable.body))
        assert DomainContext.digest(signable) == expected

    def test_missing_member(self, ether_mail):
        with pytest.raises(InvalidParameter):
            ether_mail.encode(PERSON_TYPES, {"name": "Cow"})

    def test_type_string(self):
        assert type_string("Person", PERSON_TYPES["Person"]) == "Person(string name,address wallet)"


class TestMessageValues:
    """Tests for engine value conversion."""

    def test_address_bytes_become_hex(self):
        assert message_value("address", COW_WALLET, "wallet") == "0x" + COW_WALLET.hex()

    def test_address_string_passes_through(self):
        assert message_value("address", BOB_WALLET, "wallet") == BOB_WALLET

    def test_bad_address(self):
        with pytest.raises(InvalidParameter):
            message_value("address", b"\x01" * 19, "wallet")

    def test_uint256_bounds(self):
        assert message_value("uint256", 2**256 - 1, "amount") == 2**256 - 1
        with pytest.raises(InvalidParameter):
            message_value("uint256", 2**256, "amount")
        with pytest.raises(InvalidParameter):
            message_value("uint256", -1, "amount")
        with pytest.raises(InvalidParameter):
            message_value("uint256", True, "amount")

    def test_other_types_pass_through(self):
        assert message_value("string", "Cow", "name") == "Cow"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
