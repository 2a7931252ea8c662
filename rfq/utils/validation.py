"""
Input Validation - boundary checks for values entering the engine.

Every public engine operation validates its raw inputs here before any
state is touched, so malformed values surface as InvalidParameter rather
than as arithmetic or encoding errors deep inside digest construction.
"""

from typing import Any, Optional, Tuple

from rfq.crypto import ADDRESS_LENGTH, SIGNATURE_LENGTH

# =============================================================================
# Constants
# =============================================================================

MAX_UINT256 = 2**256 - 1
MAX_STRING_LENGTH = 1024


# =============================================================================
# Validation Functions
# =============================================================================


def validate_bytes(
    data: Any,
    name: str,
    expected_length: Optional[int] = None,
    max_length: Optional[int] = None,
) -> Tuple[bool, str]:
    """
    Validate bytes input.

    Args:
        data: Data to validate
        name: Field name for error messages
        expected_length: Exact expected length
        max_length: Maximum allowed length

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(data, (bytes, bytearray)):
        return False, f"{name} must be bytes, got {type(data).__name__}"

    if expected_length is not None and len(data) != expected_length:
        return False, f"{name} must be {expected_length} bytes, got {len(data)}"

    if max_length is not None and len(data) > max_length:
        return False, f"{name} exceeds max length {max_length}, got {len(data)}"

    return True, ""


def validate_address(address: Any, name: str = "address") -> Tuple[bool, str]:
    """Validate a 20-byte address."""
    return validate_bytes(address, name, expected_length=ADDRESS_LENGTH)


def validate_signature(signature: Any) -> Tuple[bool, str]:
    """
    Validate signature type only.

    Length and component ranges are judged by signature recovery, which
    reports them as an invalid signature rather than a bad parameter.
    """
    return validate_bytes(signature, "signature", max_length=SIGNATURE_LENGTH * 2)


def validate_uint256(value: Any, name: str) -> Tuple[bool, str]:
    """
    Validate an unsigned 256-bit integer.

    bool is rejected even though it subclasses int.
    """
    if not isinstance(value, int) or isinstance(value, bool):
        return False, f"{name} must be int, got {type(value).__name__}"

    if value < 0:
        return False, f"{name} must be >= 0, got {value}"

    if value > MAX_UINT256:
        return False, f"{name} exceeds uint256"

    return True, ""


def validate_string(
    value: Any,
    name: str,
    max_length: int = MAX_STRING_LENGTH,
) -> Tuple[bool, str]:
    """Validate string input."""
    if not isinstance(value, str):
        return False, f"{name} must be str, got {type(value).__name__}"

    if len(value) > max_length:
        return False, f"{name} exceeds max length {max_length}"

    return True, ""


def validate_hex_string(value: Any, name: str, expected_bytes: Optional[int] = None) -> Tuple[bool, str]:
    """
    Validate a hex string (with or without 0x prefix).

    Args:
        value: Value to validate
        name: Field name
        expected_bytes: Expected byte length when decoded

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(value, str):
        return False, f"{name} must be str, got {type(value).__name__}"

    hex_str = value[2:] if value.startswith(("0x", "0X")) else value

    if len(hex_str) % 2 != 0:
        return False, f"{name} has odd length, invalid hex"

    try:
        bytes.fromhex(hex_str)
    except ValueError:
        return False, f"{name} contains invalid hex characters"

    if expected_bytes is not None:
        actual_bytes = len(hex_str) // 2
        if actual_bytes != expected_bytes:
            return False, f"{name} must be {expected_bytes} bytes, got {actual_bytes}"

    return True, ""


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "MAX_UINT256",
    "validate_bytes",
    "validate_address",
    "validate_signature",
    "validate_uint256",
    "validate_string",
    "validate_hex_string",
]
