import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from veil.utils.logger import get_logger

logger = get_logger("storage.sqlite")


class SQLiteAdapter:
    """
    SQLite backend for persistent storage.

    Provides:
    1. Chain metadata (block height)
    2. Committed event log
    3. Decryption audit trail (who requested which handles, when)
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn_local = threading.local()

        if not db_path.parent.exists():
            db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create connection for current thread."""
        if not hasattr(self._conn_local, "conn"):
            self._conn_local.conn = sqlite3.connect(
                self.db_path,
                timeout=30.0,
                check_same_thread=False
            )
            self._conn_local.conn.row_factory = sqlite3.Row
            self._conn_local.conn.execute("PRAGMA journal_mode=WAL;")
            self._conn_local.conn.execute("PRAGMA synchronous=NORMAL;")
        return self._conn_local.conn

    def _init_schema(self):
        """Initialize database schema."""
        conn = self._get_conn()
        with conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS chain_state (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    tx_index INTEGER NOT NULL,
                    block_height INTEGER NOT NULL,
                    contract TEXT NOT NULL,
                    name TEXT NOT NULL,
                    args TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_contract ON events(contract);")

            # One row per audit action; handles stored as a JSON list of hex strings
            conn.execute("""
                CREATE TABLE IF NOT EXISTS decryption_audit (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    request_id INTEGER NOT NULL,
                    action TEXT NOT NULL,
                    principal TEXT NOT NULL,
                    handles TEXT NOT NULL,
                    block_height INTEGER NOT NULL,
                    timestamp REAL NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_principal ON decryption_audit(principal);")

    def close(self):
        if hasattr(self._conn_local, "conn"):
            self._conn_local.conn.close()
            del self._conn_local.conn

    # =========================================================================
    # Chain State Operations
    # =========================================================================

    def set_chain_meta(self, key: str, value: str):
        conn = self._get_conn()
        with conn:
            conn.execute("INSERT OR REPLACE INTO chain_state (key, value) VALUES (?, ?)", (key, value))

    def get_chain_meta(self, key: str) -> Optional[str]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT value FROM chain_state WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row['value'] if row else None

    # =========================================================================
    # Event Log
    # =========================================================================

    def save_event(self, tx_index: int, block_height: int, contract: str, name: str, args: Dict[str, Any]):
        conn = self._get_conn()
        with conn:
            conn.execute(
                "INSERT INTO events (tx_index, block_height, contract, name, args) VALUES (?, ?, ?, ?, ?)",
                (tx_index, block_height, contract, name, json.dumps(args, sort_keys=True, default=str))
            )

    def get_events(self, contract: Optional[str] = None) -> List[Dict[str, Any]]:
        """Get events in commit order, optionally for one contract."""
        conn = self._get_conn()
        if contract:
            cursor = conn.execute("SELECT * FROM events WHERE contract = ? ORDER BY seq ASC", (contract,))
        else:
            cursor = conn.execute("SELECT * FROM events ORDER BY seq ASC")
        return [
            {
                "tx_index": row['tx_index'],
                "block_height": row['block_height'],
                "contract": row['contract'],
                "name": row['name'],
                "args": json.loads(row['args']),
            }
            for row in cursor
        ]

    # =========================================================================
    # Decryption Audit Trail
    # =========================================================================

    def save_audit_record(
        self,
        request_id: int,
        action: str,
        principal: str,
        handles: List[bytes],
        block_height: int,
        timestamp: float,
    ):
        conn = self._get_conn()
        with conn:
            conn.execute(
                "INSERT INTO decryption_audit (request_id, action, principal, handles, block_height, timestamp) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (request_id, action, principal, json.dumps([h.hex() for h in handles]), block_height, timestamp)
            )

    def get_audit_records(self, principal: Optional[str] = None) -> List[Dict[str, Any]]:
        """Get audit rows in order, optionally for one principal."""
        conn = self._get_conn()
        if principal:
            cursor = conn.execute(
                "SELECT * FROM decryption_audit WHERE principal = ? ORDER BY seq ASC", (principal,)
            )
        else:
            cursor = conn.execute("SELECT * FROM decryption_audit ORDER BY seq ASC")
        return [
            {
                "request_id": row['request_id'],
                "action": row['action'],
                "principal": row['principal'],
                "handles": [bytes.fromhex(h) for h in json.loads(row['handles'])],
                "block_height": row['block_height'],
                "timestamp": row['timestamp'],
            }
            for row in cursor
        ]
