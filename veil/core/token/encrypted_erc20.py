"""
EncryptedERC20 - confidential fungible token.

Balances, allowances and transfer amounts are ciphertext handles. Nobody,
including the chain operator, learns an amount unless the access tag of
its handle names them.

Transfer Processing:
-------------------
1. Verify the encrypted amount's input proof (MalformedProof reverts)
2. can_pay   = amount <= balance[from]            (encrypted)
3. (transfer_from only) allowed = amount <= allowance[from, spender]
4. ok        = can_pay [and allowed]              (encrypted)
5. moved     = select(ok, amount, 0)
6. balance[from] -= moved; balance[to] += moved;  allowance -= moved
7. Return ok, readable by the sender

Insufficient funds or allowance never revert: the transaction succeeds and
moves zero, so a failed payment is indistinguishable from a successful one
to everyone but the parties holding the flag.

Total supply is public and minted in the clear by the owner, as only the
owner can create tokens and the supply bound keeps every balance in range.
"""

from typing import Dict, Optional, Tuple

from veil.core.errors import DomainMismatch, InvalidArgument, Unauthorized
from veil.core.fhe.types import EncryptedBool, EncryptedValue, FheType
from veil.core.runtime.contract import Contract
from veil.crypto import ZERO_ADDRESS
from veil.utils.logger import get_logger
from veil.utils.validation import (
    SYMBOL_PATTERN,
    require_valid,
    validate_address,
    validate_amount,
    validate_string,
)

logger = get_logger("token")


class EncryptedERC20(Contract):
    """
    Confidential ERC20-style token.

    Attributes:
        name: Token name
        symbol: Token symbol
        decimals: Display decimals
        total_supply: Public total supply
        balances: account -> encrypted balance
        allowances: (owner, spender) -> encrypted allowance
    """

    _state_fields = ("total_supply", "balances", "allowances")

    def __init__(self, chain, address: str, owner: str, name: str, symbol: str):
        super().__init__(chain, address, owner)
        require_valid(validate_string(name, "name"))
        require_valid(validate_string(symbol, "symbol", pattern=SYMBOL_PATTERN))

        self.name = name
        self.symbol = symbol
        self.decimals = chain.config.token_decimals
        self.fhe_type = FheType.for_bits(chain.config.token_bits)

        self.total_supply = 0
        self.balances: Dict[str, EncryptedValue] = {}
        self.allowances: Dict[Tuple[str, str], EncryptedValue] = {}

    # =========================================================================
    # Views
    # =========================================================================

    def balance_of(self, account: str) -> Optional[EncryptedValue]:
        """Encrypted balance of an account; None if it never held tokens."""
        return self.balances.get(account)

    def allowance(self, owner: str, spender: str) -> Optional[EncryptedValue]:
        """Encrypted allowance; None if never approved."""
        return self.allowances.get((owner, spender))

    # =========================================================================
    # Minting
    # =========================================================================

    def mint(self, amount: int) -> None:
        """Mint `amount` (public) to the owner."""
        self.require(self.msg_sender == self.owner, Unauthorized("Only the owner can mint"))
        require_valid(validate_amount(amount, self.fhe_type.max_value))
        if self.total_supply + amount > self.fhe_type.max_value:
            raise InvalidArgument("Mint would exceed the maximum total supply")

        balance = self._balance_or_zero(self.owner)
        new_balance = self.fhe.add(balance, amount)
        self._set_balance(self.owner, new_balance)
        self.total_supply += amount

        self.emit("Mint", to=self.owner, amount=amount)
        self.emit("Transfer", from_=ZERO_ADDRESS, to=self.owner)
        logger.info(f"{self.symbol}: minted {amount}, total supply {self.total_supply}")

    # =========================================================================
    # Transfers
    # =========================================================================

    def transfer(self, to: str, encrypted_amount: bytes, proof: bytes) -> EncryptedBool:
        """Transfer an encrypted input amount from the sender to `to`."""
        amount = self.fhe.from_input(encrypted_amount, proof, self.msg_sender, self.fhe_type)
        return self.transfer_encrypted(to, amount)

    def transfer_encrypted(self, to: str, amount: EncryptedValue) -> EncryptedBool:
        """
        Transfer an amount the sender already holds a handle to.

        Used by contracts (e.g. auction refunds) moving their own tokens.
        """
        require_valid(validate_address(to, "to"))
        sender = self.msg_sender
        self._require_access(amount, sender)

        can_pay = self.fhe.le(amount, self._balance_or_zero(sender))
        self._transfer(sender, to, amount, can_pay)
        self.fhe.allow(can_pay, sender)
        return can_pay

    def approve(self, spender: str, encrypted_amount: bytes, proof: bytes) -> None:
        """Set the sender's allowance for `spender` (overwrites)."""
        amount = self.fhe.from_input(encrypted_amount, proof, self.msg_sender, self.fhe_type)
        self.approve_encrypted(spender, amount)

    def approve_encrypted(self, spender: str, amount: EncryptedValue) -> None:
        require_valid(validate_address(spender, "spender"))
        owner = self.msg_sender
        self._require_access(amount, owner)
        self._set_allowance(owner, spender, amount)
        self.emit("Approval", owner=owner, spender=spender)

    def transfer_from(self, from_: str, to: str, encrypted_amount: bytes, proof: bytes) -> EncryptedBool:
        """Spend `from_`'s tokens as the sender, within the allowance."""
        amount = self.fhe.from_input(encrypted_amount, proof, self.msg_sender, self.fhe_type)
        return self.transfer_from_encrypted(from_, to, amount)

    def transfer_from_encrypted(self, from_: str, to: str, amount: EncryptedValue) -> EncryptedBool:
        require_valid(validate_address(from_, "from"))
        require_valid(validate_address(to, "to"))
        spender = self.msg_sender
        self._require_access(amount, spender)

        ok = self._update_allowance(from_, spender, amount)
        self._transfer(from_, to, amount, ok)
        self.fhe.allow(ok, spender)
        return ok

    # =========================================================================
    # Internals
    # =========================================================================

    def _require_access(self, amount: EncryptedValue, principal: str) -> None:
        """The caller must hold the handle, and so must this contract."""
        if not isinstance(amount, EncryptedValue):
            raise InvalidArgument(f"Amount must be an encrypted value, got {type(amount).__name__}")
        if amount.fhe_type != self.fhe_type:
            raise DomainMismatch(f"Amount must be {self.fhe_type.name}, got {amount.fhe_type.name}")
        self.require(
            self.fhe.is_allowed(amount, principal),
            DomainMismatch(f"{principal} is not in the access tag of this amount"),
        )
        self.require(
            self.fhe.is_allowed(amount, self.address),
            DomainMismatch("Token contract is not in the access tag of this amount"),
        )

    def _balance_or_zero(self, account: str) -> EncryptedValue:
        balance = self.balances.get(account)
        if balance is None:
            return self.fhe.as_encrypted(0, self.fhe_type)
        return balance

    def _set_balance(self, account: str, value: EncryptedValue) -> None:
        self.balances[account] = value
        self.fhe.allow_this(value)
        self.fhe.allow(value, account)

    def _set_allowance(self, owner: str, spender: str, value: EncryptedValue) -> None:
        self.allowances[(owner, spender)] = value
        self.fhe.allow_this(value)
        self.fhe.allow(value, owner)
        self.fhe.allow(value, spender)

    def _update_allowance(self, owner: str, spender: str, amount: EncryptedValue) -> EncryptedBool:
        """
        Decrement the allowance if both allowance and balance cover amount.

        Returns the encrypted flag gating the transfer.
        """
        current = self.allowances.get((owner, spender))
        if current is None:
            current = self.fhe.as_encrypted(0, self.fhe_type)

        allowed = self.fhe.le(amount, current)
        can_pay = self.fhe.le(amount, self._balance_or_zero(owner))
        ok = self.fhe.and_(allowed, can_pay)

        remaining = self.fhe.select(ok, self.fhe.sub(current, amount), current)
        self._set_allowance(owner, spender, remaining)
        return ok

    def _transfer(self, from_: str, to: str, amount: EncryptedValue, ok: EncryptedBool) -> None:
        moved = self.fhe.select(ok, amount, 0)

        new_from = self.fhe.sub(self._balance_or_zero(from_), moved)
        self._set_balance(from_, new_from)
        new_to = self.fhe.add(self._balance_or_zero(to), moved)
        self._set_balance(to, new_to)

        self.emit("Transfer", from_=from_, to=to)
        logger.debug(f"{self.symbol}: transfer {from_[:10]} -> {to[:10]}")
