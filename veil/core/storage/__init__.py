"""
Persistent Storage Module.

Provides SQLite-backed persistence for:
- Chain Metadata
- Committed Events
- Decryption Audit Trail
"""

from veil.core.storage.sqlite_adapter import SQLiteAdapter
from veil.core.storage.storage_manager import StorageManager

__all__ = ["SQLiteAdapter", "StorageManager"]
