"""
Access Control List - access tags of ciphertext handles.

Each handle maps to the set of principals (account or contract addresses)
allowed to use it as an operand or request its decryption. Grants only
ever extend the set; nothing here changes a ciphertext.
"""

import copy
from typing import Dict, FrozenSet, Set

from veil.utils.logger import get_logger

logger = get_logger("fhe.acl")


class AccessControlList:
    """Mapping of ciphertext handle -> allowed principals."""

    def __init__(self):
        self._allowed: Dict[bytes, Set[str]] = {}

    def allow(self, handle: bytes, principal: str) -> None:
        """Extend the access tag of `handle` with `principal`."""
        self._allowed.setdefault(handle, set()).add(principal)
        logger.debug(f"ACL allow 0x{handle[:6].hex()}... -> {principal[:10]}")

    def is_allowed(self, handle: bytes, principal: str) -> bool:
        return principal in self._allowed.get(handle, ())

    def allowed_principals(self, handle: bytes) -> FrozenSet[str]:
        """Current access tag of a handle."""
        return frozenset(self._allowed.get(handle, ()))

    def __len__(self) -> int:
        return len(self._allowed)

    # =========================================================================
    # Transaction support
    # =========================================================================

    def snapshot(self) -> Dict[bytes, Set[str]]:
        return copy.deepcopy(self._allowed)

    def restore(self, snapshot: Dict[bytes, Set[str]]) -> None:
        self._allowed = snapshot
