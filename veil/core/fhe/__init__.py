"""
Ciphertext Arithmetic Layer.

This module provides:
- Encrypted value handles and types
- The coprocessor evaluating operations under encryption
- Access tags (ACL) gating operand use and decryption
- The two-phase, audited decryption oracle
"""

from veil.core.fhe.types import (
    FheType,
    EncryptedValue,
    EncryptedBool,
    EncryptedInput,
)
from veil.core.fhe.acl import AccessControlList
from veil.core.fhe.coprocessor import Coprocessor
from veil.core.fhe.ops import FheOps
from veil.core.fhe.oracle import (
    DecryptionOracle,
    DecryptionTicket,
    DecryptionStatus,
    AuditRecord,
    user_decrypt_digest,
)

__all__ = [
    "FheType",
    "EncryptedValue",
    "EncryptedBool",
    "EncryptedInput",
    "AccessControlList",
    "Coprocessor",
    "FheOps",
    "DecryptionOracle",
    "DecryptionTicket",
    "DecryptionStatus",
    "AuditRecord",
    "user_decrypt_digest",
]
