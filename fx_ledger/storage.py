"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values and rates are stored as Decimal
strings. Readers that need one consistent view of several tables use
``read_snapshot()``.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Type, Union
from decimal import Decimal
from datetime import date, datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


class StorageError(Exception):
    """Raised when a storage backend cannot serve a request"""


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
            elif isinstance(value, date):
                result[key] = value.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])

        return cls(**data)


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
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
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

    @property
    def in_transaction(self) -> bool:
        """True while a transaction opened by begin_transaction() is pending"""
        return False

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations; joins an enclosing transaction"""
        if self.in_transaction:
            yield
            return
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise

    @contextmanager
    def read_snapshot(self):
        """
        Context manager pinning one consistent view for several reads.
        Backends override this with their own isolation mechanism.
        """
        with self.atomic():
            yield


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._closed = False

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if self._closed:
            raise StorageError("In-memory storage is closed")
        if table not in self._data:
            self._data[table] = {}

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            # Deep copy to prevent external mutation
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return json.loads(json.dumps(record))
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table in insertion order"""
        with self._lock:
            self._ensure_table(table)
            return [json.loads(json.dumps(record)) for record in self._data[table].values()]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            results = []
            for record in self._data[table].values():
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(json.loads(json.dumps(record)))
            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    @contextmanager
    def read_snapshot(self):
        """Hold the store lock so no writer interleaves with the reads"""
        with self._lock:
            if self._closed:
                raise StorageError("In-memory storage is closed")
            yield

    def close(self) -> None:
        """Close storage; further access raises StorageError"""
        with self._lock:
            self._closed = True


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # Set isolation_level to 'DEFERRED' to enable manual transaction control
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._in_transaction = False
        self._in_snapshot = False
        self._known_tables = set()

        # Enable WAL mode so snapshot readers do not block writers
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    def _conn(self) -> sqlite3.Connection:
        if self._connection is None:
            raise StorageError(f"SQLite storage at {self.db_path} is closed")
        return self._connection

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._known_tables:
            return
        conn = self._conn()
        with self._lock:
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE NOT NULL,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            # A rollback would undo DDL issued inside an open transaction
            if not self._in_transaction:
                conn.commit()
                self._known_tables.add(table)

    def _readable(self, table: str) -> bool:
        """
        Make the table available for reading.

        Inside a read snapshot no DDL is issued, since CREATE takes the write
        lock for the rest of the snapshot; a table that does not exist yet
        reads as empty.
        """
        if table in self._known_tables:
            return True
        if not self._in_snapshot:
            self._ensure_table(table)
            return True
        row = self._conn().execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
        ).fetchone()
        if row is None:
            return False
        self._known_tables.add(table)
        return True

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite, keeping the original insertion position"""
        with self._lock:
            self._ensure_table(table)
            conn = self._conn()

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            try:
                conn.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        data = excluded.data,
                        updated_at = excluded.updated_at
                """, (record_id, data_json, now, now))
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to save {table}/{record_id}: {exc}") from exc

            # Only commit if not in transaction
            if not self._in_transaction:
                conn.commit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            if not self._readable(table):
                return None
            cursor = self._conn().execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table in insertion order"""
        with self._lock:
            if not self._readable(table):
                return []
            cursor = self._conn().execute(f"""
                SELECT data FROM {table} ORDER BY seq
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

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
            if not self._readable(table):
                return 0
            cursor = self._conn().execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        with self._lock:
            if not self._in_transaction:
                self._in_transaction = True

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._in_transaction:
                self._conn().commit()
                self._in_transaction = False

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if self._in_transaction:
                self._conn().rollback()
                self._in_transaction = False

    @contextmanager
    def read_snapshot(self):
        """
        Run the enclosed reads inside one explicit read transaction.

        In WAL mode SQLite pins the snapshot at the first read after BEGIN, so
        every query in the block sees the same committed state.
        """
        with self._lock:
            conn = self._conn()
            if self._in_transaction or conn.in_transaction:
                # Already inside a transaction; it provides the isolation.
                yield
                return
            try:
                conn.execute("BEGIN DEFERRED")
            except sqlite3.Error as exc:
                raise StorageError(f"Cannot open read snapshot: {exc}") from exc
            self._in_transaction = True
            self._in_snapshot = True
            try:
                yield
            finally:
                self._in_transaction = False
                self._in_snapshot = False
                if self._connection is not None and self._connection.in_transaction:
                    self._connection.rollback()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class StorageManager:
    """Typed record access on top of a storage backend"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def save_record(self, record: StorageRecord, table: str) -> None:
        """Save a StorageRecord to storage"""
        self.storage.save(table, record.id, record.to_dict())

    def load_record(self, record_type: Type[StorageRecord], table: str, record_id: str) -> Optional[StorageRecord]:
        """Load and convert to StorageRecord"""
        data = self.storage.load(table, record_id)
        if data:
            return record_type.from_dict(data)
        return None

    def load_all_records(self, record_type: Type[StorageRecord], table: str) -> List[StorageRecord]:
        """Load all records and convert to StorageRecord objects"""
        return [record_type.from_dict(data) for data in self.storage.load_all(table)]

    def find_records(self, record_type: Type[StorageRecord], table: str, filters: Dict[str, Any]) -> List[StorageRecord]:
        """Find records and convert to StorageRecord objects"""
        return [record_type.from_dict(data) for data in self.storage.find(table, filters)]

    def close(self) -> None:
        """Close storage backend"""
        self.storage.close()


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a URL.

    Supported forms: ``memory://`` and ``sqlite:///path/to/file.db``
    (``sqlite://`` alone opens an in-memory SQLite database).
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
        return SQLiteStorage(path or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
