"""
FheOps - the ciphertext arithmetic interface seen by a contract.

Each contract gets an FheOps bound to its own address, so every operation
runs with the contract as the caller whose access tags are checked. Plain
integers are accepted as right-hand operands and trivially encrypted in the
type of the left operand.
"""

from typing import Tuple, Union

from veil.core.fhe.coprocessor import Coprocessor
from veil.core.fhe.types import EncryptedBool, EncryptedValue, FheType

Operand = Union[EncryptedValue, int]


class FheOps:
    """Ciphertext operations on behalf of one principal."""

    def __init__(self, coprocessor: Coprocessor, caller: str):
        self.coprocessor = coprocessor
        self.caller = caller

    def _coerce(self, other: Operand, like: EncryptedValue) -> EncryptedValue:
        if isinstance(other, EncryptedValue):
            return other
        if isinstance(other, bool) or not isinstance(other, int):
            raise TypeError(f"Scalar operand must be int, got {type(other).__name__}")
        return self.as_encrypted(other, like.fhe_type)

    # =========================================================================
    # Construction
    # =========================================================================

    def as_encrypted(self, value: int, fhe_type: FheType) -> EncryptedValue:
        """Trivial encryption of a public constant."""
        return self.coprocessor.trivial_encrypt(value, fhe_type, self.caller)

    def from_input(
        self,
        handle: bytes,
        proof: bytes,
        user: str,
        fhe_type: FheType,
    ) -> EncryptedValue:
        """Verify a user's encrypted input addressed to this contract."""
        return self.coprocessor.verify_input(handle, proof, self.caller, user, fhe_type)

    # =========================================================================
    # Arithmetic
    # =========================================================================

    def add(self, a: EncryptedValue, b: Operand) -> EncryptedValue:
        return self.coprocessor.add(a, self._coerce(b, a), self.caller)

    def sub(self, a: EncryptedValue, b: Operand) -> EncryptedValue:
        return self.coprocessor.sub(a, self._coerce(b, a), self.caller)

    def sub_with_flag(self, a: EncryptedValue, b: Operand) -> Tuple[EncryptedValue, EncryptedBool]:
        return self.coprocessor.sub_with_flag(a, self._coerce(b, a), self.caller)

    def min(self, a: EncryptedValue, b: Operand) -> EncryptedValue:
        return self.coprocessor.min(a, self._coerce(b, a), self.caller)

    def max(self, a: EncryptedValue, b: Operand) -> EncryptedValue:
        return self.coprocessor.max(a, self._coerce(b, a), self.caller)

    # =========================================================================
    # Comparison
    # =========================================================================

    def lt(self, a: EncryptedValue, b: Operand) -> EncryptedBool:
        return self.coprocessor.compare("lt", a, self._coerce(b, a), self.caller)

    def le(self, a: EncryptedValue, b: Operand) -> EncryptedBool:
        return self.coprocessor.compare("le", a, self._coerce(b, a), self.caller)

    def gt(self, a: EncryptedValue, b: Operand) -> EncryptedBool:
        return self.coprocessor.compare("gt", a, self._coerce(b, a), self.caller)

    def ge(self, a: EncryptedValue, b: Operand) -> EncryptedBool:
        return self.coprocessor.compare("ge", a, self._coerce(b, a), self.caller)

    def eq(self, a: EncryptedValue, b: Operand) -> EncryptedBool:
        return self.coprocessor.compare("eq", a, self._coerce(b, a), self.caller)

    def ne(self, a: EncryptedValue, b: Operand) -> EncryptedBool:
        return self.coprocessor.compare("ne", a, self._coerce(b, a), self.caller)

    # =========================================================================
    # Selection and boolean logic
    # =========================================================================

    def select(self, cond: EncryptedBool, a: EncryptedValue, b: Operand) -> EncryptedValue:
        return self.coprocessor.select(cond, a, self._coerce(b, a), self.caller)

    def and_(self, a: EncryptedBool, b: EncryptedBool) -> EncryptedBool:
        return self.coprocessor.logical("and", a, b, self.caller)

    def or_(self, a: EncryptedBool, b: EncryptedBool) -> EncryptedBool:
        return self.coprocessor.logical("or", a, b, self.caller)

    def not_(self, a: EncryptedBool) -> EncryptedBool:
        return self.coprocessor.not_(a, self.caller)

    # =========================================================================
    # Access control
    # =========================================================================

    def allow(self, value: EncryptedValue, principal: str) -> None:
        """
        Grant `principal` access to `value`.

        Only a principal already holding access may extend it.
        """
        self.coprocessor.check_operand(value, self.caller)
        self.coprocessor.acl.allow(value.handle, principal)

    def allow_this(self, value: EncryptedValue) -> None:
        self.allow(value, self.caller)

    def is_allowed(self, value: EncryptedValue, principal: str) -> bool:
        return self.coprocessor.acl.is_allowed(value.handle, principal)
