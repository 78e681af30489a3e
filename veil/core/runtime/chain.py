"""
Chain - single-writer sequential execution runtime.

Conceptual Background:
---------------------
The contracts in Veil assume the semantics of a global sequential ledger:

1. **Total order**: state-changing calls run one at a time, never interleaved
2. **Atomicity**: a call either commits all its effects or none of them
3. **Caller context**: every method sees who called it (`msg_sender`)

`Chain.transact` provides all three. A single re-entrant lock serializes
transactions (one writer). Before running a transaction the chain takes a
snapshot of every stateful component (contract state, access tags, oracle
tickets, event log, deployment nonces); any exception restores that
snapshot before propagating, so a revert leaves no partial update.

Nested calls (a contract calling another contract) push a call frame so the
callee sees the calling contract as its sender.

Time:
----
Block height is the clock. Nothing advances it except `mine()`, so
deadlines are deterministic in tests and simulations.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type, TypeVar

from veil.core.config import ChainConfig
from veil.core.errors import InvalidArgument
from veil.core.fhe.coprocessor import Coprocessor
from veil.core.fhe.oracle import DecryptionOracle
from veil.core.runtime.contract import Contract
from veil.core.storage.storage_manager import StorageManager
from veil.crypto import derive_contract_address, is_valid_address
from veil.utils.logger import get_logger

logger = get_logger("chain")

C = TypeVar("C", bound=Contract)


# =============================================================================
# Data Structures
# =============================================================================


@dataclass
class CallFrame:
    """One level of the call stack."""
    sender: str
    target: Optional[str] = None


@dataclass
class Event:
    """A log entry emitted by a contract."""
    contract: str
    name: str
    args: Dict[str, Any]
    block_height: int
    tx_index: int


@dataclass
class Receipt:
    """Result of a committed transaction."""
    tx_index: int
    sender: str
    block_height: int
    return_value: Any = None
    events: List[Event] = field(default_factory=list)


# =============================================================================
# Chain
# =============================================================================


class Chain:
    """
    In-process ledger hosting contracts, the coprocessor and the oracle.

    Attributes:
        config: Chain configuration
        block_height: Current block height
        coprocessor: Ciphertext store and evaluator
        oracle: Two-phase decryption oracle
        contracts: Deployed contracts by address
        events: Committed event log
    """

    def __init__(
        self,
        config: Optional[ChainConfig] = None,
        storage_manager: Optional[StorageManager] = None,
        coprocessor: Optional[Coprocessor] = None,
    ):
        self.config = config or ChainConfig()
        self.block_height = 0
        self.tx_count = 0

        self.coprocessor = coprocessor or Coprocessor()
        self.oracle = DecryptionOracle(self)

        self.contracts: Dict[str, Contract] = {}
        self.events: List[Event] = []
        self._nonces: Dict[str, int] = {}

        self._frames: List[CallFrame] = []
        self._lock = threading.RLock()

        # Persistence
        self.storage_manager = storage_manager
        self._persisted_events = 0
        self._persisted_audit = 0
        if storage_manager:
            tip = storage_manager.get_tip()
            if tip:
                self.block_height = tip

    # =========================================================================
    # Execution context
    # =========================================================================

    def exclusive(self):
        """
        The single-writer lock, for state changes made outside `transact`.

        Re-entrant, so a holder may still call `transact`.
        """
        return self._lock

    @property
    def in_transaction(self) -> bool:
        return bool(self._frames)

    @property
    def msg_sender(self) -> str:
        """Sender of the innermost active call."""
        if not self._frames:
            raise RuntimeError("No active call: state-changing methods must run via Chain.transact")
        return self._frames[-1].sender

    # =========================================================================
    # Transactions
    # =========================================================================

    def transact(self, sender: str, method, *args, **kwargs) -> Receipt:
        """
        Execute `method(*args, **kwargs)` atomically as `sender`.

        Raises:
            VeilError: Any hard failure; all state is rolled back first
        """
        if not is_valid_address(sender):
            raise InvalidArgument(f"Invalid sender address: {sender!r}")

        with self._lock:
            outermost = not self._frames
            snapshot = self._snapshot()
            first_event = len(self.events)
            tx_index = self.tx_count

            try:
                result = self.call(sender, method, *args, **kwargs)
            except Exception as e:
                self._restore(snapshot)
                logger.debug(f"Tx {tx_index} from {sender[:10]} reverted: {type(e).__name__}: {e}")
                raise

            self.tx_count += 1
            receipt = Receipt(
                tx_index=tx_index,
                sender=sender,
                block_height=self.block_height,
                return_value=result,
                events=self.events[first_event:],
            )
            if outermost:
                self.flush()
            return receipt

    def call(self, sender: str, method, *args, **kwargs) -> Any:
        """Invoke a method with a new call frame (used for nested calls)."""
        target = getattr(getattr(method, "__self__", None), "address", None)
        self._frames.append(CallFrame(sender=sender, target=target))
        try:
            return method(*args, **kwargs)
        finally:
            self._frames.pop()

    def deploy(self, deployer: str, contract_cls: Type[C], *args, **kwargs) -> C:
        """Deploy a contract; constructor arguments follow the class."""
        receipt = self.transact(deployer, self._create, deployer, contract_cls, args, kwargs)
        return receipt.return_value

    def _create(self, deployer: str, contract_cls: Type[C], args: tuple, kwargs: dict) -> C:
        nonce = self._nonces.get(deployer, 0)
        self._nonces[deployer] = nonce + 1
        address = derive_contract_address(deployer, nonce)

        contract = contract_cls(self, address, deployer, *args, **kwargs)
        self.contracts[address] = contract
        self.emit(address, "Deployed", deployer=deployer, kind=contract_cls.__name__)

        logger.info(f"Deployed {contract_cls.__name__} at {address}")
        return contract

    def get_contract(self, address: str) -> Contract:
        contract = self.contracts.get(address)
        if contract is None:
            raise InvalidArgument(f"No contract at {address}")
        return contract

    def emit(self, contract: str, name: str, **args) -> None:
        self.events.append(Event(
            contract=contract,
            name=name,
            args=args,
            block_height=self.block_height,
            tx_index=self.tx_count,
        ))

    def get_events(self, name: Optional[str] = None, contract: Optional[str] = None) -> List[Event]:
        with self._lock:
            return [
                e for e in self.events
                if (name is None or e.name == name) and (contract is None or e.contract == contract)
            ]

    # =========================================================================
    # Blocks
    # =========================================================================

    def mine(self, blocks: int = 1) -> int:
        """Advance the block height."""
        if blocks < 1:
            raise InvalidArgument("Must mine at least one block")
        with self._lock:
            self.block_height += blocks
            if self.storage_manager:
                self.storage_manager.save_tip(self.block_height)
        return self.block_height

    # =========================================================================
    # Snapshot / Rollback
    # =========================================================================

    def _snapshot(self) -> dict:
        return {
            "contracts": dict(self.contracts),
            "contract_states": {addr: c.snapshot() for addr, c in self.contracts.items()},
            "nonces": dict(self._nonces),
            "events": len(self.events),
            "acl": self.coprocessor.acl.snapshot(),
            "oracle": self.oracle.snapshot(),
        }

    def _restore(self, snapshot: dict) -> None:
        self.contracts = snapshot["contracts"]
        for addr, state in snapshot["contract_states"].items():
            self.contracts[addr].restore(state)
        self._nonces = snapshot["nonces"]
        del self.events[snapshot["events"]:]
        self.coprocessor.acl.restore(snapshot["acl"])
        self.oracle.restore(snapshot["oracle"])

    # =========================================================================
    # Persistence
    # =========================================================================

    def flush(self) -> None:
        """Persist committed events and audit records not yet stored."""
        if not self.storage_manager:
            return

        for event in self.events[self._persisted_events:]:
            self.storage_manager.persist_event(
                event.tx_index, event.block_height, event.contract, event.name, event.args
            )
        self._persisted_events = len(self.events)

        if self.config.persist_audit:
            records = self.oracle.audit_log[self._persisted_audit:]
            for record in records:
                self.storage_manager.persist_audit_record(record)
            self._persisted_audit = len(self.oracle.audit_log)

    def __repr__(self) -> str:
        return f"Chain(height={self.block_height}, contracts={len(self.contracts)}, txs={self.tx_count})"

    def stats(self) -> dict:
        """Get chain statistics."""
        with self._lock:
            return {
                "block_height": self.block_height,
                "tx_count": self.tx_count,
                "contracts": len(self.contracts),
                "events": len(self.events),
                "ciphertexts": self.coprocessor.ciphertext_count(),
                "pending_decryptions": len(self.oracle.pending()),
            }
