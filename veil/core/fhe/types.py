"""
Encrypted value types.

An EncryptedValue is a handle: a 32-byte reference to a ciphertext held by
the coprocessor, together with its type and the id of the network key it
was sealed under. Handles are what contracts store and pass around; the
plaintext is only reachable through the decryption oracle.

Truth-testing a handle raises TypeError. Conditional logic over encrypted
data must go through `select`, never through a Python `if`.
"""

from dataclasses import dataclass
from enum import IntEnum


class FheType(IntEnum):
    """Encrypted integer types and their bit widths."""
    EBOOL = 0
    EUINT8 = 1
    EUINT16 = 2
    EUINT32 = 3
    EUINT64 = 4

    @property
    def bits(self) -> int:
        return FHE_BITS[self]

    @property
    def max_value(self) -> int:
        return (1 << self.bits) - 1

    @classmethod
    def for_bits(cls, bits: int) -> "FheType":
        for fhe_type, width in FHE_BITS.items():
            if width == bits and fhe_type != cls.EBOOL:
                return fhe_type
        raise ValueError(f"No encrypted integer type of {bits} bits")


FHE_BITS = {
    FheType.EBOOL: 1,
    FheType.EUINT8: 8,
    FheType.EUINT16: 16,
    FheType.EUINT32: 32,
    FheType.EUINT64: 64,
}


@dataclass(frozen=True)
class EncryptedValue:
    """
    Opaque reference to a ciphertext.

    Attributes:
        handle: 32-byte ciphertext handle
        fhe_type: Encrypted type (bit width)
        key_id: Network key the ciphertext is sealed under (security domain)
    """
    handle: bytes
    fhe_type: FheType
    key_id: bytes

    def __bool__(self):
        raise TypeError("Cannot branch on an encrypted value; use select()")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.fhe_type.name}, 0x{self.handle[:6].hex()}...)"


@dataclass(frozen=True, repr=False)
class EncryptedBool(EncryptedValue):
    """Encrypted boolean (EBOOL)."""

    def __post_init__(self):
        if self.fhe_type != FheType.EBOOL:
            raise ValueError("EncryptedBool must have type EBOOL")


@dataclass(frozen=True)
class EncryptedInput:
    """
    A client-submitted ciphertext and its input proof.

    The proof binds the handle to the contract that will consume it, the
    user submitting it and the declared type.
    """
    handle: bytes
    proof: bytes
    fhe_type: FheType


def wrap(handle: bytes, fhe_type: FheType, key_id: bytes) -> EncryptedValue:
    """Build the right EncryptedValue subclass for a type."""
    if fhe_type == FheType.EBOOL:
        return EncryptedBool(handle=handle, fhe_type=fhe_type, key_id=key_id)
    return EncryptedValue(handle=handle, fhe_type=fhe_type, key_id=key_id)
