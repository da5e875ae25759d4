"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.

A unit of work opened with ``atomic()`` is all-or-nothing: either every write in
it becomes visible or none does. Nested ``atomic()`` blocks join the outermost
unit.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import date, datetime, timezone
from enum import Enum
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _copy(record: Dict[str, Any]) -> Dict[str, Any]:
    # Deep copy through JSON to prevent external mutation
    return json.loads(json.dumps(record, default=_json_default))


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, (datetime, date)):
                result[key] = value.isoformat()
            elif isinstance(value, Decimal):
                result[key] = str(value)
            elif isinstance(value, Enum):
                result[key] = value.value
        return result


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    def _unit_state(self) -> threading.local:
        state = self.__dict__.get('_unit_local')
        if state is None:
            state = self.__dict__.setdefault('_unit_local', threading.local())
        return state

    def in_unit(self) -> bool:
        """True when the calling thread is inside an ``atomic()`` block"""
        return getattr(self._unit_state(), 'depth', 0) > 0

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        state = self._unit_state()
        depth = getattr(state, 'depth', 0)
        if depth:
            # Join the enclosing unit
            state.depth = depth + 1
            try:
                yield
            finally:
                state.depth = depth
            return

        self.begin_transaction()
        state.depth = 1
        try:
            yield
        except BaseException:
            self.rollback()
            raise
        else:
            self.commit()
        finally:
            state.depth = 0


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing

    Writes made inside a unit are buffered per thread and applied under the
    table lock on commit, so readers never see a half-applied unit.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._local = threading.local()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def _pending(self) -> Optional[Dict[str, Dict[str, Optional[Dict[str, Any]]]]]:
        return getattr(self._local, 'pending', None)

    def _view(self, table: str) -> Dict[str, Dict[str, Any]]:
        """Committed rows overlaid with this thread's uncommitted writes"""
        with self._lock:
            self._ensure_table(table)
            rows = dict(self._data[table])
        pending = self._pending()
        if pending and table in pending:
            for record_id, record in pending[table].items():
                if record is None:
                    rows.pop(record_id, None)
                else:
                    rows[record_id] = record
        return rows

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        record = _copy(data)
        pending = self._pending()
        if pending is not None:
            pending.setdefault(table, {})[record_id] = record
            return
        with self._lock:
            self._ensure_table(table)
            self._data[table][record_id] = record

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        pending = self._pending()
        if pending and record_id in pending.get(table, {}):
            record = pending[table][record_id]
            return _copy(record) if record is not None else None
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            return _copy(record) if record else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        return [_copy(record) for record in self._view(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        pending = self._pending()
        if pending is not None:
            existed = record_id in self._view(table)
            pending.setdefault(table, {})[record_id] = None
            return existed
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        return self.load(table, record_id) is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        results = []
        for record in self._view(table).values():
            if all(key in record and record[key] == value for key, value in filters.items()):
                results.append(_copy(record))
        return results

    def count(self, table: str) -> int:
        """Count records in table"""
        return len(self._view(table))

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pending = self._pending()
        if pending is not None:
            for record_id in self._view(table):
                pending.setdefault(table, {})[record_id] = None
            return
        with self._lock:
            self._data[table] = {}

    def begin_transaction(self) -> None:
        """Start buffering this thread's writes"""
        if self._pending() is None:
            self._local.pending = {}

    def commit(self) -> None:
        """Apply this thread's buffered writes in one step"""
        pending = self._pending()
        if pending is None:
            return
        with self._lock:
            for table, rows in pending.items():
                self._ensure_table(table)
                for record_id, record in rows.items():
                    if record is None:
                        self._data[table].pop(record_id, None)
                    else:
                        self._data[table][record_id] = record
        self._local.pending = None

    def rollback(self) -> None:
        """Discard this thread's buffered writes"""
        self._local.pending = None

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite storage implementation for persistence

    The connection lock is held from ``begin_transaction`` to ``commit`` or
    ``rollback``, making each unit the single writer.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # Set isolation_level to 'DEFERRED' to enable manual transaction control
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._in_transaction = False
        self._tables = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        with self._lock:
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            if not self._in_transaction:
                self._connection.commit()
            self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=_json_default)

            # Use INSERT OR REPLACE to handle updates
            self._connection.execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, data_json, record_id, now, now))

            # Only commit if not in transaction
            if not self._in_transaction:
                self._connection.commit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at, rowid
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))

            if not self._in_transaction:
                self._connection.commit()
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        results = []
        for record in self.load_all(table):
            if all(key in record and record[key] == value for key, value in filters.items()):
                results.append(record)
        return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")

            if not self._in_transaction:
                self._connection.commit()

    def begin_transaction(self) -> None:
        """Start a database transaction and take the writer lock"""
        self._lock.acquire()
        # SQLite with isolation_level='DEFERRED' starts the transaction on first write
        self._in_transaction = True

    def commit(self) -> None:
        """Commit current transaction, rolling back if the commit itself fails"""
        try:
            if self._in_transaction:
                try:
                    self._connection.commit()
                except sqlite3.Error:
                    self._connection.rollback()
                    self._tables.clear()
                    raise
        finally:
            self._in_transaction = False
            self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction"""
        try:
            if self._in_transaction:
                self._connection.rollback()
        finally:
            # Tables created inside the unit may have been rolled back too
            self._tables.clear()
            self._in_transaction = False
            self._lock.release()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a database URL

    Supported forms: ``memory://``, ``sqlite://`` (in-memory SQLite) and
    ``sqlite:///path/to/file.db``.
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
        return SQLiteStorage(path or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
