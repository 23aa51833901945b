import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from pydantic import ValidationError

from smart_break.services.errors import PersistenceError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
SCHEMA_VERSION_KEY = "schema_version"

MIGRATIONS = [
    """
    CREATE TABLE IF NOT EXISTS kv_store (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMP NOT NULL
    );
    """
]


class StoreDecodeError(PersistenceError):
    """Raised when a stored value is not valid JSON"""
    pass


class KeyValueStore:
    """Process-wide JSON key-value store backed by SQLite"""

    def __init__(self, db_path=None):
        self.db_path = str(db_path) if db_path is not None else ":memory:"
        self._lock = threading.Lock()
        self._shared_conn: Optional[sqlite3.Connection] = None
        logger.info(f"Initialized KeyValueStore with db_path: {self.db_path}")
        self.initialize()

    def initialize(self):
        """Create tables and stamp the schema version"""
        try:
            with self._connection() as conn:
                for migration in MIGRATIONS:
                    conn.executescript(migration)
                conn.execute(
                    "INSERT OR IGNORE INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)",
                    (SCHEMA_VERSION_KEY, json.dumps(SCHEMA_VERSION), datetime.now().isoformat())
                )
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize store: {e}")
            raise PersistenceError(f"Failed to initialize store: {e}")

    def get_connection(self) -> sqlite3.Connection:
        """New connection per call for files, one shared connection for :memory:"""
        if self.db_path == ":memory:":
            if self._shared_conn is None:
                self._shared_conn = sqlite3.connect(":memory:", check_same_thread=False)
            return self._shared_conn

        db_path = Path(self.db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path))
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def _connection(self):
        return _ConnectionScope(self)

    @property
    def schema_version(self) -> int:
        return int(self.get(SCHEMA_VERSION_KEY, 0))

    def get(self, key: str, default: Any = None) -> Any:
        """Decoded value for ``key``; raises StoreDecodeError on corrupt JSON"""
        try:
            with self._connection() as conn:
                row = conn.execute(
                    "SELECT value FROM kv_store WHERE key = ?", (key,)
                ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read {key}: {e}")

        if row is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            raise StoreDecodeError(f"Corrupt value stored under {key}: {e}")

    def load(self, key: str, parse: Callable[[Any], Any]) -> Any:
        """Decode and parse ``key``; corrupt entries are discarded and read as None"""
        try:
            raw = self.get(key)
        except StoreDecodeError as e:
            logger.warning(f"{e}; discarding")
            self._discard(key)
            return None
        except PersistenceError as e:
            logger.error(f"Could not read {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return parse(raw)
        except (ValidationError, ValueError, TypeError, KeyError, AttributeError) as e:
            logger.warning(f"Stored {key} is malformed, discarding: {e}")
            self._discard(key)
            return None

    def _discard(self, key: str):
        try:
            self.delete(key)
        except PersistenceError as e:
            logger.error(f"Failed to discard {key}: {e}")

    def set(self, key: str, value: Any) -> None:
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Value for {key} is not serializable: {e}")
        try:
            with self._connection() as conn:
                conn.execute(
                    """
                    INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, payload, datetime.now().isoformat())
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to write {key}: {e}")

    def set_raw(self, key: str, raw: str) -> None:
        """Store an undecoded payload as-is"""
        try:
            with self._connection() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)",
                    (key, raw, datetime.now().isoformat())
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to write {key}: {e}")

    def delete(self, key: str) -> None:
        try:
            with self._connection() as conn:
                conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to delete {key}: {e}")

    def keys(self) -> List[str]:
        try:
            with self._connection() as conn:
                rows = conn.execute("SELECT key FROM kv_store ORDER BY key").fetchall()
            return [row[0] for row in rows]
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to list keys: {e}")

    def clear(self) -> None:
        """Remove everything except the schema version"""
        try:
            with self._connection() as conn:
                conn.execute("DELETE FROM kv_store WHERE key != ?", (SCHEMA_VERSION_KEY,))
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to clear store: {e}")

    def get_database_stats(self) -> Dict[str, Any]:
        """Get store statistics"""
        try:
            with self._connection() as conn:
                count, last_update = conn.execute(
                    "SELECT COUNT(*), MAX(updated_at) FROM kv_store"
                ).fetchone()
            size = 0
            if self.db_path != ":memory:" and Path(self.db_path).exists():
                size = Path(self.db_path).stat().st_size
            return {
                "db_path": self.db_path,
                "schema_version": self.schema_version,
                "keys": count,
                "last_update": last_update,
                "size_bytes": size,
            }
        except sqlite3.Error as e:
            logger.error(f"Failed to get store stats: {e}")
            raise PersistenceError(f"Failed to get store stats: {e}")

    def close(self):
        """Close the shared in-memory connection, if any"""
        with self._lock:
            if self._shared_conn is not None:
                self._shared_conn.close()
                self._shared_conn = None


class _ConnectionScope:
    """Commit on success, roll back on error, close file connections"""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self.conn: Optional[sqlite3.Connection] = None

    def __enter__(self) -> sqlite3.Connection:
        self.store._lock.acquire()
        try:
            self.conn = self.store.get_connection()
        except Exception:
            self.store._lock.release()
            raise
        return self.conn

    def __exit__(self, exc_type, exc, tb):
        try:
            if exc_type is None:
                self.conn.commit()
            else:
                self.conn.rollback()
            if self.store.db_path != ":memory:":
                self.conn.close()
        finally:
            self.store._lock.release()
        return False
