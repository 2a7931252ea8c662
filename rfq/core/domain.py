"""
Domain Context - EIP-712 domain separation for every signed payload.

Every digest the engine signs or verifies is bound to a fixed domain
(name, version, chainId, verifyingContract). Typed-data encoding itself
is done by eth_account's encode_typed_data; this module only converts
engine values (raw 20-byte addresses, ints) into the message dict it
expects and reads the signing digest off the resulting SignableMessage:

    digest = keccak256(0x19 || version || domain_separator || struct_hash)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from eth_account.messages import SignableMessage, encode_typed_data

from rfq.core.exceptions import InvalidParameter
from rfq.crypto import bytes_to_hex, keccak256
from rfq.utils.validation import validate_address, validate_string, validate_uint256

# =============================================================================
# Constants
# =============================================================================

DOMAIN_FIELDS = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

# Only the header of an encoded message is kept when deriving the separator
_SEPARATOR_TYPES = {"Separator": [{"name": "chainId", "type": "uint256"}]}


def type_string(primary_type: str, members: List[Dict[str, str]]) -> str:
    """Canonical "Name(type1 name1,...)" form of a flat struct."""
    return f"{primary_type}({','.join(m['type'] + ' ' + m['name'] for m in members)})"


DOMAIN_TYPE = type_string("EIP712Domain", DOMAIN_FIELDS)


def message_value(member_type: str, value: Any, name: str) -> Any:
    """
    Convert one engine value into what encode_typed_data accepts.

    Addresses travel through the engine as raw bytes and are handed over
    as 0x hex. uint256 values are range-checked here so a bad amount is
    reported as InvalidParameter instead of an encoder error.
    """
    if member_type == "address":
        if isinstance(value, str):
            return value
        valid, err = validate_address(value, name)
        if not valid:
            raise InvalidParameter(err)
        return bytes_to_hex(bytes(value))
    if member_type == "uint256":
        valid, err = validate_uint256(value, name)
        if not valid:
            raise InvalidParameter(err)
    return value


# =============================================================================
# Domain Context
# =============================================================================


@dataclass(frozen=True)
class DomainContext:
    """
    Immutable EIP-712 domain.

    The separator is derived once in __post_init__ and never recomputed.
    """
    name: str
    version: str
    chain_id: int
    verifying_contract: bytes
    separator: bytes = field(init=False, repr=False)

    def __post_init__(self):
        for value, label in ((self.name, "name"), (self.version, "version")):
            valid, err = validate_string(value, label)
            if not valid:
                raise InvalidParameter(err)

        separator = self.encode(_SEPARATOR_TYPES, {"chainId": 0}).header
        object.__setattr__(self, "separator", bytes(separator))

    @classmethod
    def from_config(cls, config) -> "DomainContext":
        return cls(
            name=config.domain_name,
            version=config.domain_version,
            chain_id=config.chain_id,
            verifying_contract=config.verifying_contract_bytes,
        )

    def domain_data(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": message_value("uint256", self.chain_id, "chain_id"),
            "verifyingContract": message_value("address", self.verifying_contract, "verifying_contract"),
        }

    def encode(self, types: Dict[str, List[Dict[str, str]]], message: Dict[str, Any]) -> SignableMessage:
        """
        Encode message under this domain.

        types holds every struct type the message uses; the primary type
        is the one no other type references. Members of the primary type
        are converted with message_value, nested values are passed as-is.
        """
        primary_type = next(
            name for name in types
            if not any(m["type"] == name for members in types.values() for m in members)
        )
        converted = {}
        for member in types[primary_type]:
            if member["name"] not in message:
                raise InvalidParameter("Missing struct member", {"member": member["name"]})
            converted[member["name"]] = message_value(member["type"], message[member["name"]], member["name"])

        return encode_typed_data(full_message={
            "types": {"EIP712Domain": DOMAIN_FIELDS, **types},
            "primaryType": primary_type,
            "domain": self.domain_data(),
            "message": converted,
        })

    @staticmethod
    def digest(signable: SignableMessage) -> bytes:
        """EIP-191 hash of an encoded message; this is what gets signed."""
        return keccak256(b"\x19" + signable.version + signable.header + signable.body)

    def hash_typed_data(self, types: Dict[str, List[Dict[str, str]]], message: Dict[str, Any]) -> bytes:
        return self.digest(self.encode(types, message))
