"""
Capability stores — versioned key-value storage with compare-and-swap.

Behavioral Contract:
- get() returns the current value and its version, or None
- compare_and_swap() writes only if the stored version still equals the
  expected one (None meaning "key absent"); returns False otherwise
- delete() removes a key only if its version still equals the expected one
- keys() preserves first-insertion order
- Locks guard only the store's own state, never a caller's I/O
"""

import sqlite3
import threading
from typing import Dict, List, Optional, Protocol

from portal_forge.models.capability import StoredValue


class CapabilityStore(Protocol):
    """Protocol for registry persistence with a pluggable backend."""

    def get(self, key: str) -> Optional[StoredValue]: ...

    def compare_and_swap(self, key: str, expected_version: Optional[int], value: str) -> bool: ...

    def delete(self, key: str, expected_version: int) -> bool: ...

    def keys(self) -> List[str]: ...


class InMemoryCapabilityStore:
    """Dict-backed store. Insertion order comes from dict ordering."""

    def __init__(self):
        self._data: Dict[str, StoredValue] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[StoredValue]:
        with self._lock:
            return self._data.get(key)

    def compare_and_swap(self, key: str, expected_version: Optional[int], value: str) -> bool:
        with self._lock:
            current = self._data.get(key)
            current_version = current.version if current else None
            if current_version != expected_version:
                return False
            self._data[key] = StoredValue(
                key=key,
                value=value,
                version=(current_version or 0) + 1,
            )
            return True

    def delete(self, key: str, expected_version: int) -> bool:
        with self._lock:
            current = self._data.get(key)
            if current is None or current.version != expected_version:
                return False
            del self._data[key]
            return True

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data.keys())


class SqliteCapabilityStore:
    """
    SQLite-backed store.
    Versioned rows; the CAS is a conditional UPDATE (or INSERT OR IGNORE
    for the first write), so it also holds across processes.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the capabilities table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS capabilities (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                key TEXT NOT NULL UNIQUE,
                value TEXT NOT NULL,
                version INTEGER NOT NULL,
                updated_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
        """)
        self._conn.commit()

    def get(self, key: str) -> Optional[StoredValue]:
        with self._lock:
            row = self._conn.execute(
                "SELECT key, value, version FROM capabilities WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        return StoredValue(key=row["key"], value=row["value"], version=row["version"])

    def compare_and_swap(self, key: str, expected_version: Optional[int], value: str) -> bool:
        with self._lock:
            if expected_version is None:
                cursor = self._conn.execute(
                    "INSERT OR IGNORE INTO capabilities (key, value, version) VALUES (?, ?, 1)",
                    (key, value),
                )
            else:
                cursor = self._conn.execute(
                    """
                    UPDATE capabilities
                    SET value = ?, version = version + 1, updated_at = datetime('now')
                    WHERE key = ? AND version = ?
                    """,
                    (value, key, expected_version),
                )
            self._conn.commit()
            return cursor.rowcount == 1

    def delete(self, key: str, expected_version: int) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM capabilities WHERE key = ? AND version = ?",
                (key, expected_version),
            )
            self._conn.commit()
            return cursor.rowcount == 1

    def keys(self) -> List[str]:
        with self._lock:
            rows = self._conn.execute("SELECT key FROM capabilities ORDER BY seq").fetchall()
        return [r["key"] for r in rows]

    def close(self) -> None:
        self._conn.close()
