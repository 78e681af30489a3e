from pathlib import Path
from typing import Any, Dict, List, Optional

from veil.core.storage.sqlite_adapter import SQLiteAdapter
from veil.utils.logger import get_logger

logger = get_logger("storage.manager")


class StorageManager:
    """
    Manages persistent storage for a chain.

    Coordinates data persistence using SQLite adapter.
    Handles:
    - Metadata (block height)
    - Committed events
    - Decryption audit trail
    """

    def __init__(self, data_dir: Path, db_name: str = "veil.db"):
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.adapter = SQLiteAdapter(self.db_path)

        logger.info(f"StorageManager initialized at {self.db_path}")

    # =========================================================================
    # Chain State (Metadata)
    # =========================================================================

    def save_tip(self, height: int):
        """Save the latest block height."""
        self.adapter.set_chain_meta("latest_block_height", str(height))

    def get_tip(self) -> Optional[int]:
        """Get the latest block height."""
        n = self.adapter.get_chain_meta("latest_block_height")
        return int(n) if n else None

    # =========================================================================
    # Events
    # =========================================================================

    def persist_event(self, tx_index: int, block_height: int, contract: str, name: str, args: Dict[str, Any]):
        self.adapter.save_event(tx_index, block_height, contract, name, args)

    def load_events(self, contract: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.adapter.get_events(contract)

    # =========================================================================
    # Audit Trail
    # =========================================================================

    def persist_audit_record(self, record) -> None:
        """Persist an AuditRecord from the decryption oracle."""
        self.adapter.save_audit_record(
            record.request_id,
            record.action,
            record.principal,
            record.handles,
            record.block_height,
            record.timestamp,
        )

    def load_audit_trail(self, principal: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.adapter.get_audit_records(principal)

    def close(self):
        self.adapter.close()
