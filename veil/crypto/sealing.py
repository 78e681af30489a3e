"""
Ciphertext sealing for the coprocessor.

Every encrypted integer held by the coprocessor is stored as an AES-256-GCM
blob under the network key:

    blob = key_id (8) || nonce (12) || tag (16) || ciphertext

The plaintext is the big-endian value padded to 8 bytes, prefixed with one
byte carrying the bit width, so a blob cannot be reinterpreted under a
different type. Fresh nonces make two encryptions of the same value
unlinkable.
"""

from dataclasses import dataclass, field
from typing import Tuple

from Crypto.Cipher import AES
from Crypto.Random import get_random_bytes

KEY_ID_SIZE = 8
NONCE_SIZE = 12
TAG_SIZE = 16
VALUE_SIZE = 8


class SealingError(Exception):
    """Raised when a blob cannot be opened under the given key."""


@dataclass
class NetworkKey:
    """
    Symmetric network key of a coprocessor domain.

    Attributes:
        key_id: 8-byte identifier embedded in every blob (security domain)
        secret: 32-byte AES key, never leaves the coprocessor
    """
    key_id: bytes = field(default_factory=lambda: get_random_bytes(KEY_ID_SIZE))
    secret: bytes = field(default_factory=lambda: get_random_bytes(32), repr=False)

    @property
    def key_id_hex(self) -> str:
        return self.key_id.hex()


def seal(value: int, bits: int, key: NetworkKey) -> bytes:
    """
    Encrypt an unsigned integer of the given bit width.

    Raises:
        ValueError: If value does not fit in `bits` bits
    """
    if value < 0 or value >= (1 << bits):
        raise ValueError(f"Value out of range for {bits}-bit type")

    nonce = get_random_bytes(NONCE_SIZE)
    cipher = AES.new(key.secret, AES.MODE_GCM, nonce=nonce)
    cipher.update(key.key_id)
    plaintext = bytes([bits]) + value.to_bytes(VALUE_SIZE, byteorder="big")
    ciphertext, tag = cipher.encrypt_and_digest(plaintext)
    return key.key_id + nonce + tag + ciphertext


def unseal(blob: bytes, key: NetworkKey) -> Tuple[int, int]:
    """
    Decrypt a blob.

    Returns:
        (value, bits)

    Raises:
        SealingError: Wrong key domain, truncated blob or failed authentication
    """
    header = KEY_ID_SIZE + NONCE_SIZE + TAG_SIZE
    if len(blob) != header + 1 + VALUE_SIZE:
        raise SealingError("Malformed ciphertext blob")

    key_id = blob[:KEY_ID_SIZE]
    if key_id != key.key_id:
        raise SealingError("Ciphertext sealed under a different network key")

    nonce = blob[KEY_ID_SIZE:KEY_ID_SIZE + NONCE_SIZE]
    tag = blob[KEY_ID_SIZE + NONCE_SIZE:header]
    cipher = AES.new(key.secret, AES.MODE_GCM, nonce=nonce)
    cipher.update(key_id)
    try:
        plaintext = cipher.decrypt_and_verify(blob[header:], tag)
    except ValueError as e:
        raise SealingError("Ciphertext authentication failed") from e

    bits = plaintext[0]
    value = int.from_bytes(plaintext[1:], byteorder="big")
    return value, bits
