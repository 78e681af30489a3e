"""
Contract base class.

A contract is a plain Python object whose mutable state lives in the
attributes listed in `_state_fields`. The chain snapshots exactly those
attributes before each transaction and restores them on revert, so a
contract must keep all its state there.
"""

import copy
from typing import Any, Dict, Tuple, TYPE_CHECKING

from veil.core.errors import VeilError
from veil.core.fhe.ops import FheOps

if TYPE_CHECKING:
    from veil.core.runtime.chain import Chain


class Contract:
    """
    Base class for contracts deployed on a Chain.

    Attributes:
        chain: Chain the contract is deployed on
        address: Contract address
        owner: Deployer address
        fhe: Ciphertext operations with this contract as caller
    """

    _state_fields: Tuple[str, ...] = ()

    def __init__(self, chain: "Chain", address: str, owner: str):
        self.chain = chain
        self.address = address
        self.owner = owner
        self.fhe = FheOps(chain.coprocessor, address)

    # =========================================================================
    # Execution context
    # =========================================================================

    @property
    def msg_sender(self) -> str:
        """Immediate caller of the current method."""
        return self.chain.msg_sender

    @property
    def block_height(self) -> int:
        return self.chain.block_height

    def call(self, method, *args, **kwargs) -> Any:
        """Call another contract's method with this contract as sender."""
        return self.chain.call(self.address, method, *args, **kwargs)

    def emit(self, name: str, **args) -> None:
        self.chain.emit(self.address, name, **args)

    @staticmethod
    def require(condition: bool, error: VeilError) -> None:
        """Revert with `error` unless condition holds."""
        if not condition:
            raise error

    # =========================================================================
    # Transaction support
    # =========================================================================

    def snapshot(self) -> Dict[str, Any]:
        return {name: copy.deepcopy(getattr(self, name)) for name in self._state_fields}

    def restore(self, snapshot: Dict[str, Any]) -> None:
        for name, value in snapshot.items():
            setattr(self, name, value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.address})"
