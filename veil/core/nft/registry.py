"""
NFTRegistry - non-fungible tokens with public ownership.

Ownership of an NFT is public, as is any transfer of it. The auction uses
this registry to hold the auctioned asset in escrow: the seller approves the
auction contract, which then pulls the token to its own address.
"""

from typing import Dict, Optional, Set, Tuple

from veil.core.errors import InvalidArgument, Unauthorized
from veil.core.runtime.contract import Contract
from veil.crypto import ZERO_ADDRESS
from veil.utils.logger import get_logger
from veil.utils.validation import (
    SYMBOL_PATTERN,
    require_valid,
    validate_address,
    validate_string,
    validate_token_id,
)

logger = get_logger("nft")


class NFTRegistry(Contract):
    """ERC721-style registry of token id -> owner."""

    _state_fields = ("owners", "token_approvals", "operator_approvals")

    def __init__(self, chain, address: str, owner: str, name: str, symbol: str):
        super().__init__(chain, address, owner)
        require_valid(validate_string(name, "name"))
        require_valid(validate_string(symbol, "symbol", pattern=SYMBOL_PATTERN))
        self.name = name
        self.symbol = symbol

        self.owners: Dict[int, str] = {}
        self.token_approvals: Dict[int, str] = {}
        self.operator_approvals: Set[Tuple[str, str]] = set()  # (owner, operator)

    # =========================================================================
    # Views
    # =========================================================================

    def owner_of(self, token_id: int) -> str:
        owner = self.owners.get(token_id)
        if owner is None:
            raise InvalidArgument(f"Token {token_id} does not exist")
        return owner

    def balance_of(self, account: str) -> int:
        return sum(1 for owner in self.owners.values() if owner == account)

    def get_approved(self, token_id: int) -> Optional[str]:
        self.owner_of(token_id)
        return self.token_approvals.get(token_id)

    def is_approved_for_all(self, owner: str, operator: str) -> bool:
        return (owner, operator) in self.operator_approvals

    # =========================================================================
    # Mutations
    # =========================================================================

    def mint(self, to: str, token_id: int) -> None:
        """Mint a new token (registry owner only)."""
        self.require(self.msg_sender == self.owner, Unauthorized("Only the owner can mint"))
        require_valid(validate_address(to, "to"))
        require_valid(validate_token_id(token_id))
        if token_id in self.owners:
            raise InvalidArgument(f"Token {token_id} already exists")

        self.owners[token_id] = to
        self.emit("Transfer", from_=ZERO_ADDRESS, to=to, token_id=token_id)

    def approve(self, to: str, token_id: int) -> None:
        """Approve `to` to transfer a single token."""
        owner = self.owner_of(token_id)
        sender = self.msg_sender
        self.require(
            sender == owner or self.is_approved_for_all(owner, sender),
            Unauthorized("Only the owner or an operator can approve"),
        )
        require_valid(validate_address(to, "to"))
        self.token_approvals[token_id] = to
        self.emit("Approval", owner=owner, approved=to, token_id=token_id)

    def set_approval_for_all(self, operator: str, approved: bool) -> None:
        require_valid(validate_address(operator, "operator"))
        key = (self.msg_sender, operator)
        if approved:
            self.operator_approvals.add(key)
        else:
            self.operator_approvals.discard(key)
        self.emit("ApprovalForAll", owner=self.msg_sender, operator=operator, approved=approved)

    def transfer_from(self, from_: str, to: str, token_id: int) -> None:
        """Move a token; the sender must be its owner, approved or an operator."""
        owner = self.owner_of(token_id)
        if owner != from_:
            raise InvalidArgument(f"Token {token_id} is not owned by {from_}")
        require_valid(validate_address(to, "to"))

        sender = self.msg_sender
        self.require(
            sender == owner
            or self.token_approvals.get(token_id) == sender
            or self.is_approved_for_all(owner, sender),
            Unauthorized(f"{sender} may not transfer token {token_id}"),
        )

        self.owners[token_id] = to
        self.token_approvals.pop(token_id, None)
        self.emit("Transfer", from_=from_, to=to, token_id=token_id)
        logger.debug(f"{self.symbol} #{token_id}: {from_[:10]} -> {to[:10]}")
