"""
Decryption Oracle - the only place where confidentiality is broken.

Two-phase protocol:
------------------
1. **Request**: a principal in the access tag of every requested handle
   calls `request_decryption`. The oracle records an audit entry and returns
   a ticket whose `request_id` is the correlation id. Nothing is decrypted
   yet and the requesting transaction continues without waiting.
2. **Fulfil**: out of band (a relayer calling `fulfill`), the oracle opens
   the ciphertexts, signs keccak(domain || request_id || plaintexts) with its
   ECDSA key and delivers the result in a separate transaction sent from the
   oracle's address. If the ticket names a callback, the callback runs in
   that transaction and must verify the signature before trusting the
   plaintexts.

Tickets expire. An expired ticket can no longer be fulfilled; the consumer
decides how to retry (see NFTVickreyAuction.settle).

Access tags name principals by address. `user_decrypt_signed` additionally
requires the principal to sign (handle, nonce) with the key behind that
address, for callers outside the trusted in-process sender model.

All ticket and audit state changes happen under the chain's single-writer
lock, so the oracle may be driven from several threads alongside `transact`.

Every request, fulfilment, expiry and user decryption is appended to the
audit log (who, what, when) and logged on the `veil.audit` logger.
"""

import copy
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from veil.core.errors import InvalidArgument, InvalidStateTransition, Unauthorized
from veil.core.fhe.types import EncryptedValue
from veil.crypto import (
    KeyPair,
    address_from_public_key,
    generate_keypair,
    hex_to_bytes,
    is_valid_address,
    keccak256,
    recover_public_key,
    sign,
    verify,
)
from veil.utils.logger import get_logger

if TYPE_CHECKING:
    from veil.core.runtime.chain import Chain

logger = get_logger("oracle")
audit_logger = get_logger("audit")

DOMAIN_DECRYPTION_RESULT = b"veil.decryption.v1"
DOMAIN_USER_DECRYPT = b"veil.user-decrypt.v1"


# =============================================================================
# Data Structures
# =============================================================================


class DecryptionStatus(IntEnum):
    """Lifecycle of a decryption request."""
    PENDING = 0
    FULFILLED = 1
    EXPIRED = 2


@dataclass
class DecryptionTicket:
    """
    A decryption request.

    The callback is stored as (contract address, method name) so tickets
    stay plain data.
    """
    request_id: int
    values: List[EncryptedValue]
    requester: str
    issued_block: int
    expires_at_block: int
    callback: Optional[Tuple[str, str]] = None
    status: DecryptionStatus = DecryptionStatus.PENDING
    result: Optional[List[int]] = None

    @property
    def handles(self) -> List[bytes]:
        return [v.handle for v in self.values]


@dataclass
class AuditRecord:
    """One entry of the decryption audit trail."""
    request_id: int
    action: str          # requested | fulfilled | expired | user_decrypt
    principal: str
    handles: List[bytes]
    block_height: int
    timestamp: float = field(default_factory=time.time)


def result_digest(request_id: int, plaintexts: Sequence[int]) -> bytes:
    """Message signed by the oracle for a decryption result."""
    data = DOMAIN_DECRYPTION_RESULT + request_id.to_bytes(8, "big")
    for value in plaintexts:
        data += int(value).to_bytes(32, "big")
    return keccak256(data)


def user_decrypt_digest(handle: bytes, principal: str, nonce: int) -> bytes:
    """Message a principal signs to decrypt one handle off-chain."""
    data = DOMAIN_USER_DECRYPT + handle + hex_to_bytes(principal) + nonce.to_bytes(8, "big")
    return keccak256(data)


# =============================================================================
# Oracle
# =============================================================================


class DecryptionOracle:
    """
    Asynchronous, audited decryption service.

    Attributes:
        address: Principal the oracle sends callbacks from
        public_key: Key consumers verify result signatures against
        audit_log: Chronological audit trail
    """

    def __init__(self, chain: "Chain", keypair: Optional[KeyPair] = None):
        self.chain = chain
        self._keypair = keypair or generate_keypair()

        self.tickets: Dict[int, DecryptionTicket] = {}
        self.audit_log: List[AuditRecord] = []
        self._next_request_id = 1
        self._user_nonces: Dict[str, int] = {}

    @property
    def address(self) -> str:
        return self._keypair.address

    @property
    def public_key(self) -> bytes:
        return self._keypair.public_key

    # =========================================================================
    # Phase 1: request
    # =========================================================================

    def request_decryption(
        self,
        values: Sequence[EncryptedValue],
        requester: str,
        callback: Optional[Tuple[str, str]] = None,
        expires_at_block: Optional[int] = None,
    ) -> DecryptionTicket:
        """
        Issue a decryption request.

        Args:
            values: Ciphertexts to decrypt
            requester: Principal asking; must be in every access tag
            callback: Optional (contract address, method name) to deliver to
            expires_at_block: Last block at which the request may be fulfilled

        Raises:
            Unauthorized: Requester not allowed on some value
        """
        if not values:
            raise InvalidArgument("Nothing to decrypt")

        with self.chain.exclusive():
            return self._issue(values, requester, callback, expires_at_block)

    def _issue(
        self,
        values: Sequence[EncryptedValue],
        requester: str,
        callback: Optional[Tuple[str, str]],
        expires_at_block: Optional[int],
    ) -> DecryptionTicket:
        acl = self.chain.coprocessor.acl
        for value in values:
            if not isinstance(value, EncryptedValue):
                raise InvalidArgument(f"Cannot decrypt {type(value).__name__}")
            if not acl.is_allowed(value.handle, requester):
                audit_logger.warning(
                    f"Denied decryption of 0x{value.handle[:6].hex()}... to {requester}"
                )
                raise Unauthorized(f"{requester} may not decrypt this value")

        if expires_at_block is None:
            expires_at_block = self.chain.block_height + self.chain.config.decryption_timeout_blocks

        ticket = DecryptionTicket(
            request_id=self._next_request_id,
            values=list(values),
            requester=requester,
            issued_block=self.chain.block_height,
            expires_at_block=expires_at_block,
            callback=callback,
        )
        self._next_request_id += 1
        self.tickets[ticket.request_id] = ticket

        self._audit(ticket.request_id, "requested", requester, ticket.handles)
        logger.debug(
            f"Decryption request {ticket.request_id} by {requester[:10]}: "
            f"{len(values)} values, expires at block {expires_at_block}"
        )
        return ticket

    # =========================================================================
    # Phase 2: fulfil
    # =========================================================================

    def fulfill(self, request_id: int) -> List[int]:
        """
        Decrypt a pending request and deliver the signed result.

        Runs as its own transaction from the oracle's address.

        Raises:
            InvalidStateTransition: Unknown, already fulfilled or expired ticket
        """
        with self.chain.exclusive():
            ticket = self.get_ticket(request_id)
            if ticket.status != DecryptionStatus.PENDING:
                raise InvalidStateTransition(
                    f"Request {request_id} is {ticket.status.name}, not PENDING"
                )
            if self.chain.block_height > ticket.expires_at_block:
                self._expire(ticket)
                raise InvalidStateTransition(f"Request {request_id} expired at block {ticket.expires_at_block}")

            plaintexts = [self.chain.coprocessor.decrypt(v) for v in ticket.values]
            signature = sign(result_digest(request_id, plaintexts), self._keypair.private_key)

            self.chain.transact(self.address, self._deliver, request_id, plaintexts, signature)
            return plaintexts

    def _deliver(self, request_id: int, plaintexts: List[int], signature: bytes) -> None:
        ticket = self.tickets[request_id]
        ticket.status = DecryptionStatus.FULFILLED
        ticket.result = list(plaintexts)
        self._audit(request_id, "fulfilled", ticket.requester, ticket.handles)

        if ticket.callback is not None:
            address, method_name = ticket.callback
            contract = self.chain.get_contract(address)
            getattr(contract, method_name)(request_id, list(plaintexts), signature)

    def expire_stale(self) -> List[int]:
        """Mark every pending ticket past its expiry as EXPIRED."""
        expired = []
        with self.chain.exclusive():
            for ticket in self.tickets.values():
                if ticket.status == DecryptionStatus.PENDING and self.chain.block_height > ticket.expires_at_block:
                    self._expire(ticket)
                    expired.append(ticket.request_id)
        return expired

    def _expire(self, ticket: DecryptionTicket) -> None:
        ticket.status = DecryptionStatus.EXPIRED
        self._audit(ticket.request_id, "expired", ticket.requester, ticket.handles)
        logger.warning(f"Decryption request {ticket.request_id} expired unfulfilled")

    # =========================================================================
    # Results
    # =========================================================================

    def verify_result(self, request_id: int, plaintexts: Sequence[int], signature: bytes) -> bool:
        """Check that a result was signed by this oracle."""
        return verify(result_digest(request_id, plaintexts), signature, self.public_key)

    def read_result(self, request_id: int, principal: str) -> List[int]:
        """
        Plaintexts of a fulfilled request, for its requester only.

        Raises:
            Unauthorized: principal is not the requester
            InvalidStateTransition: request not fulfilled
        """
        with self.chain.exclusive():
            ticket = self.get_ticket(request_id)
            if principal != ticket.requester:
                raise Unauthorized(f"{principal} did not request decryption {request_id}")
            if ticket.status != DecryptionStatus.FULFILLED:
                raise InvalidStateTransition(f"Request {request_id} is {ticket.status.name}")
            return list(ticket.result)

    def user_decrypt(self, value: EncryptedValue, principal: str) -> int:
        """
        Off-chain decryption of a value for a principal in its access tag.

        Request and fulfilment in one step, audited like any other request.
        """
        with self.chain.exclusive():
            ticket = self.request_decryption([value], principal)
            self._audit(ticket.request_id, "user_decrypt", principal, ticket.handles)
            return self.fulfill(ticket.request_id)[0]

    def user_decrypt_nonce(self, principal: str) -> int:
        """Nonce the principal's next signed decryption must cover."""
        with self.chain.exclusive():
            return self._user_nonces.get(principal, 0)

    def user_decrypt_signed(self, value: EncryptedValue, principal: str, signature: bytes) -> int:
        """
        `user_decrypt` for a principal that proves it holds its key.

        The signature covers user_decrypt_digest(handle, principal, nonce) with
        the principal's current nonce. The nonce advances on success, so each
        signature is good for one decryption only.

        Raises:
            Unauthorized: Signature missing, stale or from another key
        """
        if not isinstance(value, EncryptedValue):
            raise InvalidArgument(f"Cannot decrypt {type(value).__name__}")
        if not is_valid_address(principal):
            raise InvalidArgument(f"Invalid principal address: {principal!r}")

        with self.chain.exclusive():
            nonce = self._user_nonces.get(principal, 0)
            digest = user_decrypt_digest(value.handle, principal, nonce)
            public_key = recover_public_key(digest, signature) if isinstance(signature, bytes) else None
            if public_key is None or address_from_public_key(public_key) != principal:
                audit_logger.warning(f"Rejected signed decryption for {principal}: bad signature")
                raise Unauthorized(f"Signature does not authorize {principal}")

            plaintext = self.user_decrypt(value, principal)
            self._user_nonces[principal] = nonce + 1
            return plaintext

    # =========================================================================
    # Queries
    # =========================================================================

    def get_ticket(self, request_id: int) -> DecryptionTicket:
        ticket = self.tickets.get(request_id)
        if ticket is None:
            raise InvalidArgument(f"Unknown decryption request {request_id}")
        return ticket

    def pending(self) -> List[DecryptionTicket]:
        with self.chain.exclusive():
            return [t for t in self.tickets.values() if t.status == DecryptionStatus.PENDING]

    def audit_for(self, handle: bytes) -> List[AuditRecord]:
        """Audit trail entries touching a handle."""
        with self.chain.exclusive():
            return [r for r in self.audit_log if handle in r.handles]

    def _audit(self, request_id: int, action: str, principal: str, handles: List[bytes]) -> None:
        record = AuditRecord(
            request_id=request_id,
            action=action,
            principal=principal,
            handles=list(handles),
            block_height=self.chain.block_height,
        )
        self.audit_log.append(record)
        audit_logger.info(f"{action} request={request_id} principal={principal} handles={len(handles)}")
        if not self.chain.in_transaction:
            self.chain.flush()

    # =========================================================================
    # Transaction support
    # =========================================================================

    def snapshot(self) -> dict:
        return {
            "tickets": copy.deepcopy(self.tickets),
            "audit_len": len(self.audit_log),
            "next_request_id": self._next_request_id,
            "user_nonces": dict(self._user_nonces),
        }

    def restore(self, snapshot: dict) -> None:
        self.tickets = snapshot["tickets"]
        del self.audit_log[snapshot["audit_len"]:]
        self._next_request_id = snapshot["next_request_id"]
        self._user_nonces = snapshot["user_nonces"]
