"""
Coprocessor - confidential evaluation of operations on ciphertexts.

Conceptual Background:
---------------------
Contracts never see plaintext. They hold handles and ask the coprocessor to
evaluate operations on them. The coprocessor owns the network key: it opens
the operand blobs, computes the result and seals it again under a fresh
nonce, returning a new handle. Callers learn nothing beyond the handle.

Operation rules:
1. Every operand must be sealed under this coprocessor's network key
2. Every operand must carry the caller in its access tag
3. Operand types must match the operation (see each method)
4. The result is granted to the caller only

Any violation raises DomainMismatch. Arithmetic saturates: add clamps at
the type maximum and sub clamps at zero, so a result is never wrapped.

Inputs:
------
Clients encrypt values with `encrypt_input`, which returns a handle and an
input proof: a signature of the input verifier over
keccak(domain || handle || contract || user || type). `verify_input`
checks the proof and the plaintext range before a contract may use it.
"""

from typing import Callable, Dict, Optional, Tuple

from veil.core.errors import DomainMismatch, MalformedProof
from veil.core.fhe.acl import AccessControlList
from veil.core.fhe.types import (
    EncryptedBool,
    EncryptedInput,
    EncryptedValue,
    FheType,
    wrap,
)
from veil.crypto import (
    KeyPair,
    NetworkKey,
    SealingError,
    generate_keypair,
    hex_to_bytes,
    keccak256,
    seal,
    sign,
    unseal,
    verify,
)
from veil.utils.logger import get_logger

logger = get_logger("fhe")

DOMAIN_INPUT_PROOF = b"veil.input.v1"

COMPARISONS: Dict[str, Callable[[int, int], bool]] = {
    "lt": lambda a, b: a < b,
    "le": lambda a, b: a <= b,
    "gt": lambda a, b: a > b,
    "ge": lambda a, b: a >= b,
    "eq": lambda a, b: a == b,
    "ne": lambda a, b: a != b,
}


def input_digest(handle: bytes, contract: str, user: str, fhe_type: FheType) -> bytes:
    """Message signed by the input verifier for an encrypted input."""
    return keccak256(
        DOMAIN_INPUT_PROOF
        + handle
        + hex_to_bytes(contract)
        + hex_to_bytes(user)
        + bytes([int(fhe_type)])
    )


class Coprocessor:
    """
    Holder of the network key and of every ciphertext.

    Attributes:
        key: Network key (security domain)
        acl: Access tags of all handles
    """

    def __init__(
        self,
        key: Optional[NetworkKey] = None,
        verifier: Optional[KeyPair] = None,
    ):
        self.key = key or NetworkKey()
        self.acl = AccessControlList()
        self._verifier = verifier or generate_keypair()

        # handle -> sealed blob (append-only)
        self._ciphertexts: Dict[bytes, bytes] = {}
        self._types: Dict[bytes, FheType] = {}

    @property
    def key_id(self) -> bytes:
        return self.key.key_id

    @property
    def verifier_public_key(self) -> bytes:
        return self._verifier.public_key

    # =========================================================================
    # Storage
    # =========================================================================

    def _store(self, value: int, fhe_type: FheType) -> EncryptedValue:
        """Seal a plaintext and register a fresh handle for it."""
        blob = seal(value, fhe_type.bits, self.key)
        handle = keccak256(blob)
        self._ciphertexts[handle] = blob
        self._types[handle] = fhe_type
        return wrap(handle, fhe_type, self.key.key_id)

    def _open(self, value: EncryptedValue) -> int:
        blob = self._ciphertexts[value.handle]
        plaintext, _ = unseal(blob, self.key)
        return plaintext

    def has_handle(self, handle: bytes) -> bool:
        return handle in self._ciphertexts

    def ciphertext_count(self) -> int:
        return len(self._ciphertexts)

    # =========================================================================
    # Inputs
    # =========================================================================

    def encrypt_input(
        self,
        value: int,
        fhe_type: FheType,
        contract: str,
        user: str,
    ) -> EncryptedInput:
        """
        Client-side encryption of an input bound to (contract, user).

        Raises:
            ValueError: If value does not fit the type
        """
        if fhe_type == FheType.EBOOL:
            value = int(bool(value))
        encrypted = self._store(value, fhe_type)
        proof = sign(input_digest(encrypted.handle, contract, user, fhe_type), self._verifier.private_key)
        return EncryptedInput(handle=encrypted.handle, proof=proof, fhe_type=fhe_type)

    def verify_input(
        self,
        handle: bytes,
        proof: bytes,
        contract: str,
        user: str,
        fhe_type: FheType,
    ) -> EncryptedValue:
        """
        Verify an encrypted input and grant it to contract and user.

        Raises:
            MalformedProof: Unknown handle, wrong type, bad signature or
                binding, or plaintext out of range
        """
        if not isinstance(handle, bytes) or len(handle) != 32:
            raise MalformedProof("Input handle must be 32 bytes")
        if not isinstance(proof, bytes) or len(proof) != 65:
            raise MalformedProof("Input proof must be 65 bytes")
        if handle not in self._ciphertexts:
            raise MalformedProof("Unknown input ciphertext")
        if self._types[handle] != fhe_type:
            raise MalformedProof(
                f"Input type {self._types[handle].name} does not match expected {fhe_type.name}"
            )

        digest = input_digest(handle, contract, user, fhe_type)
        if not verify(digest, proof, self._verifier.public_key):
            raise MalformedProof("Input proof does not verify for this contract and user")

        try:
            plaintext, bits = unseal(self._ciphertexts[handle], self.key)
        except SealingError as e:
            raise MalformedProof(str(e)) from e
        if bits != fhe_type.bits or plaintext > fhe_type.max_value:
            raise MalformedProof("Input plaintext out of range")

        value = wrap(handle, fhe_type, self.key.key_id)
        self.acl.allow(handle, contract)
        self.acl.allow(handle, user)
        return value

    def trivial_encrypt(self, value: int, fhe_type: FheType, caller: str) -> EncryptedValue:
        """Encrypt a public constant on behalf of caller."""
        if fhe_type == FheType.EBOOL:
            value = int(bool(value))
        encrypted = self._store(value, fhe_type)
        self.acl.allow(encrypted.handle, caller)
        return encrypted

    # =========================================================================
    # Operand checks
    # =========================================================================

    def check_operand(self, value: EncryptedValue, caller: str) -> None:
        if not isinstance(value, EncryptedValue):
            raise DomainMismatch(f"Operand is not an encrypted value: {type(value).__name__}")
        if value.key_id != self.key.key_id:
            raise DomainMismatch("Operand sealed under a different network key")
        if value.handle not in self._ciphertexts:
            raise DomainMismatch("Operand handle unknown to this coprocessor")
        if self._types[value.handle] != value.fhe_type:
            raise DomainMismatch("Operand type tag does not match its ciphertext")
        if not self.acl.is_allowed(value.handle, caller):
            raise DomainMismatch(f"Caller {caller} is not in the access tag of operand")

    def _check_same_type(self, a: EncryptedValue, b: EncryptedValue) -> None:
        if a.fhe_type != b.fhe_type:
            raise DomainMismatch(f"Operand types differ: {a.fhe_type.name} vs {b.fhe_type.name}")

    def _check_integer(self, a: EncryptedValue) -> None:
        if getattr(a, "fhe_type", None) == FheType.EBOOL:
            raise DomainMismatch("Arithmetic on an encrypted boolean")

    def _check_bool(self, a: EncryptedValue) -> None:
        fhe_type = getattr(a, "fhe_type", None)
        if fhe_type != FheType.EBOOL:
            raise DomainMismatch(f"Expected EBOOL, got {getattr(fhe_type, 'name', type(a).__name__)}")

    def _binary(self, a: EncryptedValue, b: EncryptedValue, caller: str) -> Tuple[int, int]:
        self.check_operand(a, caller)
        self.check_operand(b, caller)
        self._check_same_type(a, b)
        return self._open(a), self._open(b)

    def _result(self, value: int, fhe_type: FheType, caller: str) -> EncryptedValue:
        result = self._store(value, fhe_type)
        self.acl.allow(result.handle, caller)
        return result

    # =========================================================================
    # Arithmetic
    # =========================================================================

    def add(self, a: EncryptedValue, b: EncryptedValue, caller: str) -> EncryptedValue:
        """a + b, saturating at the type maximum."""
        self._check_integer(a)
        x, y = self._binary(a, b, caller)
        return self._result(min(x + y, a.fhe_type.max_value), a.fhe_type, caller)

    def sub(self, a: EncryptedValue, b: EncryptedValue, caller: str) -> EncryptedValue:
        """a - b, saturating at zero."""
        self._check_integer(a)
        x, y = self._binary(a, b, caller)
        return self._result(max(x - y, 0), a.fhe_type, caller)

    def sub_with_flag(
        self, a: EncryptedValue, b: EncryptedValue, caller: str
    ) -> Tuple[EncryptedValue, EncryptedBool]:
        """Saturating a - b plus an encrypted underflow flag (b > a)."""
        self._check_integer(a)
        x, y = self._binary(a, b, caller)
        diff = self._result(max(x - y, 0), a.fhe_type, caller)
        underflow = self._result(int(y > x), FheType.EBOOL, caller)
        return diff, underflow

    def min(self, a: EncryptedValue, b: EncryptedValue, caller: str) -> EncryptedValue:
        self._check_integer(a)
        x, y = self._binary(a, b, caller)
        return self._result(min(x, y), a.fhe_type, caller)

    def max(self, a: EncryptedValue, b: EncryptedValue, caller: str) -> EncryptedValue:
        self._check_integer(a)
        x, y = self._binary(a, b, caller)
        return self._result(max(x, y), a.fhe_type, caller)

    # =========================================================================
    # Comparison and selection
    # =========================================================================

    def compare(self, op: str, a: EncryptedValue, b: EncryptedValue, caller: str) -> EncryptedBool:
        """Encrypted comparison; op is one of lt, le, gt, ge, eq, ne."""
        if op not in COMPARISONS:
            raise ValueError(f"Unknown comparison: {op}")
        x, y = self._binary(a, b, caller)
        return self._result(int(COMPARISONS[op](x, y)), FheType.EBOOL, caller)

    def select(
        self,
        cond: EncryptedBool,
        a: EncryptedValue,
        b: EncryptedValue,
        caller: str,
    ) -> EncryptedValue:
        """cond ? a : b without revealing cond."""
        self.check_operand(cond, caller)
        self._check_bool(cond)
        x, y = self._binary(a, b, caller)
        return self._result(x if self._open(cond) else y, a.fhe_type, caller)

    def logical(self, op: str, a: EncryptedBool, b: EncryptedBool, caller: str) -> EncryptedBool:
        """Boolean and/or on encrypted booleans."""
        self._check_bool(a)
        x, y = self._binary(a, b, caller)
        if op == "and":
            value = x & y
        elif op == "or":
            value = x | y
        else:
            raise ValueError(f"Unknown logical operation: {op}")
        return self._result(value, FheType.EBOOL, caller)

    def not_(self, a: EncryptedBool, caller: str) -> EncryptedBool:
        self.check_operand(a, caller)
        self._check_bool(a)
        return self._result(1 - self._open(a), FheType.EBOOL, caller)

    # =========================================================================
    # Decryption (oracle only)
    # =========================================================================

    def decrypt(self, value: EncryptedValue) -> int:
        """
        Open a ciphertext.

        Only the decryption oracle calls this, after its own access checks.
        """
        if value.key_id != self.key.key_id or value.handle not in self._ciphertexts:
            raise DomainMismatch("Cannot decrypt a handle from another domain")
        return self._open(value)
