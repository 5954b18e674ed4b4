"""
Storage Backend Module

Provides the transactional store interface consumed by the retry executor and
implementations for in-memory (testing), SQLite (persistence) and PostgreSQL
(production). Records are JSON documents keyed by table and id; all monetary
values are stored as Decimal strings.

Every backend reports lost races as SerializationConflictError so the executor
can restart the unit of work.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Any, Tuple, Union
from datetime import datetime, timezone
from pathlib import Path
from contextlib import contextmanager
import sqlite3
import json
import logging
import threading
import uuid

from .errors import (
    StoreError, SerializationConflictError, TransactionClosedError,
    RETRIABLE_SQLSTATES, is_retriable_conflict
)


logger = logging.getLogger("ledger.storage")


def _copy(data: Dict[str, Any]) -> Dict[str, Any]:
    """Deep copy through JSON to prevent external mutation"""
    return json.loads(json.dumps(data, default=str))


class TransactionHandle(ABC):
    """An open transaction against a store"""

    def __init__(self):
        self._closed = False

    @property
    def closed(self) -> bool:
        """True once the transaction has been committed or rolled back"""
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise TransactionClosedError("Transaction is no longer active")

    @abstractmethod
    def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Read a record inside the transaction"""
        pass

    @abstractmethod
    def put(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a record inside the transaction"""
        pass

    @abstractmethod
    def commit(self) -> None:
        """Commit; raises SerializationConflictError if the store aborts it"""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Discard all changes. Safe to call on a closed transaction."""
        pass


class StorageInterface(ABC):
    """Abstract interface for transactional storage backends"""

    @abstractmethod
    def begin_transaction(self) -> TransactionHandle:
        """Start a new transaction"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for a single, non-retried atomic operation"""
        tx = self.begin_transaction()
        try:
            yield tx
            tx.commit()
        except Exception:
            tx.rollback()
            raise


class InMemoryTransaction(TransactionHandle):
    """
    Optimistic transaction over InMemoryStorage.

    Reads record the version they saw; writes are buffered until commit,
    where the read set is validated against the committed versions.
    """

    def __init__(self, storage: 'InMemoryStorage'):
        super().__init__()
        self._storage = storage
        self._read_versions: Dict[Tuple[str, str], int] = {}
        self._writes: Dict[Tuple[str, str], Dict[str, Any]] = {}

    def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        self._check_open()
        key = (table, record_id)
        if key in self._writes:
            return _copy(self._writes[key])

        version, data = self._storage._read_committed(table, record_id)
        # First read wins: a later re-read must not hide an earlier stale view
        self._read_versions.setdefault(key, version)
        return data

    def put(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        self._check_open()
        self._writes[(table, record_id)] = _copy(data)

    def commit(self) -> None:
        self._check_open()
        try:
            self._storage._apply(self._read_versions, self._writes)
        finally:
            self._closed = True

    def rollback(self) -> None:
        self._writes.clear()
        self._closed = True


class InMemoryStorage(StorageInterface):
    """In-memory storage with optimistic concurrency control, for testing"""

    def __init__(self):
        # table -> record id -> (version, data)
        self._data: Dict[str, Dict[str, Tuple[int, Dict[str, Any]]]] = {}
        self._lock = threading.RLock()

    def begin_transaction(self) -> InMemoryTransaction:
        return InMemoryTransaction(self)

    def _read_committed(self, table: str, record_id: str) -> Tuple[int, Optional[Dict[str, Any]]]:
        with self._lock:
            entry = self._data.get(table, {}).get(record_id)
            if entry is None:
                return 0, None
            version, data = entry
            return version, _copy(data)

    def _apply(self, read_versions: Dict[Tuple[str, str], int],
               writes: Dict[Tuple[str, str], Dict[str, Any]]) -> None:
        with self._lock:
            for (table, record_id), seen in read_versions.items():
                entry = self._data.get(table, {}).get(record_id)
                current = entry[0] if entry else 0
                if current != seen:
                    logger.debug(f"Conflict on {table}:{record_id} (read v{seen}, now v{current})")
                    raise SerializationConflictError(
                        f"restart transaction: {table}:{record_id} changed since it was read"
                    )

            for (table, record_id), data in writes.items():
                rows = self._data.setdefault(table, {})
                entry = rows.get(record_id)
                rows[record_id] = ((entry[0] if entry else 0) + 1, data)

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    def get_all_data(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Get all committed data for debugging/inspection"""
        with self._lock:
            return {
                table: {record_id: _copy(data) for record_id, (_, data) in rows.items()}
                for table, rows in self._data.items()
            }


def _translate_sqlite_error(error: sqlite3.Error) -> StoreError:
    if is_retriable_conflict(error):
        return SerializationConflictError(f"restart transaction: {error}")
    return StoreError(str(error))


class SQLiteTransaction(TransactionHandle):
    """SQLite transaction on its own connection"""

    def __init__(self, storage: 'SQLiteStorage', connection: sqlite3.Connection):
        super().__init__()
        self._storage = storage
        self._connection = connection

    def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        self._check_open()
        self._storage._ensure_table(table)
        try:
            row = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,)).fetchone()
        except sqlite3.Error as e:
            raise _translate_sqlite_error(e) from e
        if row:
            return json.loads(row[0])
        return None

    def put(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        self._check_open()
        self._storage._ensure_table(table)

        now = datetime.now(timezone.utc).isoformat()
        data_json = json.dumps(data, default=str)
        try:
            self._connection.execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, data_json, record_id, now, now))
        except sqlite3.Error as e:
            raise _translate_sqlite_error(e) from e

    def commit(self) -> None:
        self._check_open()
        try:
            self._connection.execute("COMMIT")
        except sqlite3.Error as e:
            # Still open: the caller is expected to roll back
            raise _translate_sqlite_error(e) from e
        self._finish()

    def rollback(self) -> None:
        if self._closed:
            return
        try:
            if self._connection.in_transaction:
                self._connection.execute("ROLLBACK")
        finally:
            self._finish()

    def _finish(self) -> None:
        self._closed = True
        self._connection.close()


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", busy_timeout: float = 5.0):
        self.db_path = str(db_path)
        self.busy_timeout = busy_timeout
        self._lock = threading.RLock()
        self._tables = set()

        if self.db_path == ":memory:":
            # Shared cache so every transaction connection sees the same database
            self._uri = f"file:ledger-{uuid.uuid4().hex}?mode=memory&cache=shared"
        else:
            self._uri = Path(self.db_path).resolve().as_uri()

        # Held open for DDL and to keep a shared in-memory database alive
        self._connection = self._connect()

        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(
            self._uri,
            uri=True,
            timeout=self.busy_timeout,
            isolation_level=None,  # explicit BEGIN/COMMIT
            check_same_thread=False
        )

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        with self._lock:
            if table in self._tables:
                return
            try:
                self._connection.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id TEXT PRIMARY KEY,
                        data TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                """)
            except sqlite3.Error as e:
                raise _translate_sqlite_error(e) from e
            self._tables.add(table)

    def begin_transaction(self) -> SQLiteTransaction:
        connection = self._connect()
        try:
            connection.execute("BEGIN")
        except sqlite3.Error as e:
            connection.close()
            raise _translate_sqlite_error(e) from e
        return SQLiteTransaction(self, connection)

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLTransaction(TransactionHandle):
    """PostgreSQL transaction on its own SERIALIZABLE connection"""

    def __init__(self, storage: 'PostgreSQLStorage', connection):
        super().__init__()
        self._storage = storage
        self._connection = connection

    def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        self._check_open()
        self._storage._ensure_table(table)
        with self._storage._translated():
            cursor = self._connection.cursor()
            try:
                cursor.execute(f"""
                    SELECT data FROM {table} WHERE id = %s
                """, (record_id,))
                row = cursor.fetchone()
                if row:
                    return dict(row['data'])
                return None
            finally:
                cursor.close()

    def put(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        self._check_open()
        self._storage._ensure_table(table)

        now = datetime.now(timezone.utc)
        data_json = json.dumps(data, default=str)
        with self._storage._translated():
            cursor = self._connection.cursor()
            try:
                cursor.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                        data = EXCLUDED.data,
                        updated_at = EXCLUDED.updated_at
                """, (record_id, data_json, now, now))
            finally:
                cursor.close()

    def commit(self) -> None:
        self._check_open()
        with self._storage._translated():
            self._connection.commit()
        self._finish()

    def rollback(self) -> None:
        if self._closed:
            return
        try:
            self._connection.rollback()
        finally:
            self._finish()

    def _finish(self) -> None:
        self._closed = True
        self._connection.close()


class PostgreSQLStorage(StorageInterface):
    """PostgreSQL storage backend with SERIALIZABLE transactions"""

    def __init__(self, connection_string: str, isolation_level: str = "SERIALIZABLE"):
        try:
            import psycopg2
            import psycopg2.extras
            self.psycopg2 = psycopg2
            self.extras = psycopg2.extras
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.connection_string = connection_string
        self.isolation_level = isolation_level
        self._lock = threading.RLock()
        self._tables = set()

    def _connect(self, autocommit: bool = False):
        """Open a new database connection"""
        with self._translated():
            connection = self.psycopg2.connect(
                self.connection_string,
                cursor_factory=self.extras.RealDictCursor
            )
            connection.set_session(isolation_level=self.isolation_level, autocommit=autocommit)
        return connection

    @contextmanager
    def _translated(self):
        """Re-raise driver errors as ledger store errors"""
        try:
            yield
        except self.psycopg2.Error as e:
            pgcode = getattr(e, 'pgcode', None)
            message = str(e).strip() or type(e).__name__
            if pgcode in RETRIABLE_SQLSTATES:
                raise SerializationConflictError(f"restart transaction: {message}", sqlstate=pgcode) from e
            raise StoreError(message, sqlstate=pgcode) from e

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        with self._lock:
            if table in self._tables:
                return
            connection = self._connect(autocommit=True)
            try:
                with self._translated():
                    cursor = connection.cursor()
                    try:
                        cursor.execute(f"""
                            CREATE TABLE IF NOT EXISTS {table} (
                                id TEXT PRIMARY KEY,
                                data JSONB NOT NULL,
                                created_at TIMESTAMP DEFAULT NOW(),
                                updated_at TIMESTAMP DEFAULT NOW()
                            )
                        """)
                    finally:
                        cursor.close()
            finally:
                connection.close()
            self._tables.add(table)

    def begin_transaction(self) -> PostgreSQLTransaction:
        # psycopg2 opens the transaction implicitly on the first statement
        return PostgreSQLTransaction(self, self._connect())

    def close(self) -> None:
        """Nothing to release: connections are per transaction"""
        pass


def create_storage(database_url: str, sqlite_busy_timeout: float = 5.0) -> StorageInterface:
    """
    Build a storage backend from a database URL.

    Supported schemes: ``memory://``, ``sqlite:///<path>`` (``sqlite://`` or
    ``sqlite:///:memory:`` for an in-memory SQLite database) and
    ``postgresql://...`` / ``postgres://...``.
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite:///"):] if database_url.startswith("sqlite:///") else ""
        return SQLiteStorage(path or ":memory:", busy_timeout=sqlite_busy_timeout)
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLStorage(database_url)
    raise ValueError(f"Unsupported database URL: {database_url}")
