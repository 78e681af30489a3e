"""
Error taxonomy for Veil.

Every error below is a hard failure: raised inside `Chain.transact` it
reverts the whole transaction, leaving no partial state behind.

Soft failures over encrypted data (insufficient balance, insufficient
allowance, a bid that could not be escrowed) are never raised. They are
resolved with `select` and only show up in encrypted results.
"""


class VeilError(Exception):
    """Base class for all reverting errors."""


class DomainMismatch(VeilError):
    """Operands from incompatible security domains (type, key or access tag)."""


class MalformedProof(VeilError):
    """An encrypted input failed its well-formedness / binding proof."""


class Unauthorized(VeilError):
    """Caller is not permitted to decrypt a value or perform an action."""


class InvalidStateTransition(VeilError):
    """Operation not allowed in the current lifecycle state."""


class InvalidArgument(VeilError):
    """A public (plaintext) argument is malformed or out of bounds."""


__all__ = [
    "VeilError",
    "DomainMismatch",
    "MalformedProof",
    "Unauthorized",
    "InvalidStateTransition",
    "InvalidArgument",
]
