"""
Input Validation - checks on public (plaintext) contract arguments.

Encrypted arguments are validated by their input proofs. Everything else a
caller passes in the clear (addresses, token ids, deadlines, names, mint
amounts) goes through these helpers. Each returns (is_valid, error_message);
`require_valid` turns a failure into InvalidArgument for contract code.
"""

import re
from typing import Any, Optional, Tuple

from veil.core.errors import InvalidArgument
from veil.crypto import is_valid_address

# =============================================================================
# Constants
# =============================================================================

MAX_STRING_LENGTH = 64
MIN_AMOUNT = 0
MAX_AMOUNT = 2**64 - 1
MIN_BLOCK = 0
MAX_BLOCK = 2**32 - 1
MAX_TOKEN_ID = 2**256 - 1

SYMBOL_PATTERN = r"^[A-Za-z0-9]{1,11}$"


# =============================================================================
# Validation Functions
# =============================================================================


def validate_address(address: Any, name: str = "address") -> Tuple[bool, str]:
    """Validate a 0x-prefixed 20-byte hex address."""
    if not isinstance(address, str):
        return False, f"{name} must be str, got {type(address).__name__}"
    if not is_valid_address(address):
        return False, f"{name} is not a valid address: {address!r}"
    return True, ""


def validate_integer(
    value: Any,
    name: str,
    min_val: int = MIN_AMOUNT,
    max_val: int = MAX_AMOUNT,
) -> Tuple[bool, str]:
    """
    Validate integer within bounds.

    Args:
        value: Value to validate
        name: Field name for errors
        min_val: Minimum allowed value
        max_val: Maximum allowed value

    Returns:
        (is_valid, error_message)
    """
    if isinstance(value, bool) or not isinstance(value, int):
        return False, f"{name} must be int, got {type(value).__name__}"

    if value < min_val:
        return False, f"{name} must be >= {min_val}, got {value}"

    if value > max_val:
        return False, f"{name} must be <= {max_val}, got {value}"

    return True, ""


def validate_amount(amount: Any, max_val: int = MAX_AMOUNT) -> Tuple[bool, str]:
    """Validate a plaintext token amount."""
    return validate_integer(amount, "amount", MIN_AMOUNT, max_val)


def validate_block_number(block: Any, name: str = "block_number") -> Tuple[bool, str]:
    """Validate a block number."""
    return validate_integer(block, name, MIN_BLOCK, MAX_BLOCK)


def validate_token_id(token_id: Any) -> Tuple[bool, str]:
    """Validate an NFT token id."""
    return validate_integer(token_id, "token_id", 0, MAX_TOKEN_ID)


def validate_string(
    value: Any,
    name: str,
    max_length: int = MAX_STRING_LENGTH,
    pattern: Optional[str] = None,
) -> Tuple[bool, str]:
    """
    Validate string input.

    Args:
        value: Value to validate
        name: Field name for errors
        max_length: Maximum string length
        pattern: Optional regex pattern

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(value, str):
        return False, f"{name} must be str, got {type(value).__name__}"

    if not value:
        return False, f"{name} must not be empty"

    if len(value) > max_length:
        return False, f"{name} exceeds max length {max_length}"

    if pattern and not re.match(pattern, value):
        return False, f"{name} does not match required pattern"

    return True, ""


def validate_deadlines(
    current_block: int,
    start_block: int,
    bidding_deadline: int,
    settlement_deadline: int,
) -> Tuple[bool, str]:
    """Auction schedule: now <= start < bidding deadline < settlement deadline."""
    for name, block in (
        ("start_block", start_block),
        ("bidding_deadline", bidding_deadline),
        ("settlement_deadline", settlement_deadline),
    ):
        valid, err = validate_block_number(block, name)
        if not valid:
            return False, err

    if start_block < current_block:
        return False, "start_block is in the past"
    if bidding_deadline <= start_block:
        return False, "bidding_deadline must be after start_block"
    if settlement_deadline <= bidding_deadline:
        return False, "settlement_deadline must be after bidding_deadline"
    return True, ""


def require_valid(result: Tuple[bool, str]) -> None:
    """Raise InvalidArgument for a failed validation result."""
    valid, err = result
    if not valid:
        raise InvalidArgument(err)


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "validate_address",
    "validate_integer",
    "validate_amount",
    "validate_block_number",
    "validate_token_id",
    "validate_string",
    "validate_deadlines",
    "require_valid",
    "MAX_AMOUNT",
    "MAX_BLOCK",
    "SYMBOL_PATTERN",
]
