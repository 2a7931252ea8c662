"""
Cryptographic primitives for RFQ settlement.

This module provides:
- Keccak-256 hashing (Ethereum-style)
- Key generation and address derivation
- Recoverable ECDSA signatures on secp256k1 (r || s || v)
- Signer recovery from a 32-byte digest

Design Notes:
-------------
Signatures are 65 bytes laid out as r (32) || s (32) || v (1), with v in
{27, 28}. This is the layout produced by every mainstream EVM wallet, so a
bid signed by an external wallet can be verified here and vice versa.

Only low-s signatures are accepted (EIP-2). py_ecc already normalizes s
when signing and flips v accordingly.
"""

import secrets
from dataclasses import dataclass
from typing import Optional, Tuple

from Crypto.Hash import keccak
from py_ecc.secp256k1 import secp256k1


# =============================================================================
# Constants
# =============================================================================

# secp256k1 curve order (number of points on the curve)
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

# Upper bound for s in a canonical (non-malleable) signature
SECP256K1_HALF_ORDER = SECP256K1_ORDER // 2

SIGNATURE_LENGTH = 65
ADDRESS_LENGTH = 20

ZERO_ADDRESS = bytes(ADDRESS_LENGTH)


# =============================================================================
# Hashing
# =============================================================================


def keccak256(data: bytes) -> bytes:
    """
    Compute Keccak-256 hash (Ethereum-style).

    Used for: typed-data digests, type hashes, address derivation.
    """
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


# =============================================================================
# Key Generation
# =============================================================================


def address_from_public_key(public_key: bytes) -> bytes:
    """
    Derive a 20-byte address from a 64-byte uncompressed public key.

    Address = last 20 bytes of keccak256(x || y).
    """
    if len(public_key) != 64:
        raise ValueError("Public key must be 64 bytes")
    return keccak256(public_key)[-ADDRESS_LENGTH:]


@dataclass
class KeyPair:
    """
    An ECDSA keypair on secp256k1.

    Attributes:
        private_key: 32-byte secret key (integer in [1, order-1])
        public_key: 64-byte uncompressed public key (x || y coordinates)
    """
    private_key: bytes  # 32 bytes
    public_key: bytes   # 64 bytes (uncompressed, no 0x04 prefix)

    @property
    def address(self) -> bytes:
        """20-byte address derived from the public key."""
        return address_from_public_key(self.public_key)

    @property
    def address_hex(self) -> str:
        return bytes_to_hex(self.address)

    @property
    def private_key_hex(self) -> str:
        """Return private key as hex string."""
        return self.private_key.hex()


def _point_to_bytes(point: Tuple[int, int]) -> bytes:
    return point[0].to_bytes(32, byteorder="big") + point[1].to_bytes(32, byteorder="big")


def generate_keypair() -> KeyPair:
    """
    Generate a new random keypair.

    Uses cryptographically secure random number generator.
    """
    private_key_int = secrets.randbelow(SECP256K1_ORDER - 1) + 1
    private_key = private_key_int.to_bytes(32, byteorder="big")
    return KeyPair(private_key=private_key, public_key=private_key_to_public_key(private_key))


def keypair_from_private_key(private_key: bytes) -> KeyPair:
    """Rebuild a KeyPair from an existing 32-byte private key."""
    return KeyPair(private_key=private_key, public_key=private_key_to_public_key(private_key))


def private_key_to_public_key(private_key: bytes) -> bytes:
    """
    Derive public key from private key.

    Args:
        private_key: 32-byte private key

    Returns:
        64-byte uncompressed public key
    """
    if len(private_key) != 32:
        raise ValueError("Private key must be 32 bytes")

    key_int = int.from_bytes(private_key, byteorder="big")
    if not 0 < key_int < SECP256K1_ORDER:
        raise ValueError("Private key out of range")

    return _point_to_bytes(secp256k1.privtopub(private_key))


# =============================================================================
# Digital Signatures (ECDSA, recoverable)
# =============================================================================


def sign_recoverable(message_hash: bytes, private_key: bytes) -> bytes:
    """
    Sign a 32-byte hash and return a 65-byte recoverable signature.

    Args:
        message_hash: 32-byte digest to sign
        private_key: 32-byte private key

    Returns:
        r (32) || s (32) || v (1), v in {27, 28}

    Note: py_ecc derives k deterministically (RFC 6979 style) and returns
    a low-s signature, so signing the same digest twice is stable.
    """
    if len(message_hash) != 32:
        raise ValueError("Message hash must be 32 bytes")
    if len(private_key) != 32:
        raise ValueError("Private key must be 32 bytes")

    v, r, s = secp256k1.ecdsa_raw_sign(message_hash, private_key)

    return (
        r.to_bytes(32, byteorder="big")
        + s.to_bytes(32, byteorder="big")
        + bytes([v])
    )


def split_signature(signature: bytes) -> Optional[Tuple[int, int, int]]:
    """
    Split and sanity-check a 65-byte signature.

    Returns (v, r, s) with v normalized to 27/28, or None if the signature
    is malformed: wrong length, v outside {0, 1, 27, 28}, r or s outside
    [1, order-1], or s in the upper half of the curve order.
    """
    if len(signature) != SIGNATURE_LENGTH:
        return None

    r = int.from_bytes(signature[:32], byteorder="big")
    s = int.from_bytes(signature[32:64], byteorder="big")
    v = signature[64]

    if v < 27:
        v += 27
    if v not in (27, 28):
        return None

    if r < 1 or r >= SECP256K1_ORDER:
        return None
    if s < 1 or s > SECP256K1_HALF_ORDER:
        return None

    return v, r, s


def recover_public_key(message_hash: bytes, signature: bytes) -> Optional[bytes]:
    """
    Recover the signer's public key from a 65-byte signature.

    Args:
        message_hash: 32-byte hash
        signature: 65-byte signature (r || s || v)

    Returns:
        64-byte public key, or None if recovery fails
    """
    if len(message_hash) != 32:
        return None

    vrs = split_signature(signature)
    if vrs is None:
        return None

    try:
        recovered = secp256k1.ecdsa_raw_recover(message_hash, vrs)
    except ValueError:
        return None

    # py_ecc returns False when r is not the x coordinate of a curve point
    if not recovered:
        return None

    return _point_to_bytes(recovered)


def recover_address(message_hash: bytes, signature: bytes) -> Optional[bytes]:
    """Recover the 20-byte signer address, or None if recovery fails."""
    public_key = recover_public_key(message_hash, signature)
    if public_key is None:
        return None
    return address_from_public_key(public_key)


# =============================================================================
# Utility Functions
# =============================================================================


def bytes_to_hex(data: bytes) -> str:
    """Convert bytes to hex string with 0x prefix."""
    return "0x" + data.hex()


def hex_to_bytes(hex_str: str) -> bytes:
    """Convert hex string (with or without 0x prefix) to bytes."""
    if hex_str.startswith("0x") or hex_str.startswith("0X"):
        hex_str = hex_str[2:]
    return bytes.fromhex(hex_str)


def is_valid_address(address: str) -> bool:
    """Check if string is a valid address format."""
    if not address.startswith("0x"):
        return False
    if len(address) != 42:  # 0x + 40 hex chars
        return False
    try:
        return len(bytes.fromhex(address[2:])) == ADDRESS_LENGTH
    except ValueError:
        return False
