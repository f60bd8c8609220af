"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Set, Tuple, Union
from decimal import Decimal
from datetime import datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


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
    
    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


def _copy(record: Any) -> Any:
    return json.loads(json.dumps(record, default=str))


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing.
    
    Transactions keep a per-thread undo journal: rollback restores the prior
    value of every record the calling thread touched, leaving writes made by
    other threads alone.
    """
    
    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._local = threading.local()
    
    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}
    
    def _journal(self) -> Optional[Dict[Tuple[str, str], Optional[Dict[str, Any]]]]:
        return getattr(self._local, 'journal', None)
    
    def _remember(self, table: str, record_id: str) -> None:
        journal = self._journal()
        if journal is not None and (table, record_id) not in journal:
            prior = self._data[table].get(record_id)
            journal[(table, record_id)] = _copy(prior) if prior is not None else None
    
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            self._remember(table, record_id)
            # Deep copy to prevent external mutation
            self._data[table][record_id] = _copy(data)
    
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return _copy(record)
            return None
    
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [_copy(record) for record in self._data[table].values()]
    
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                self._remember(table, record_id)
                del self._data[table][record_id]
                return True
            return False
    
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]
    
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
                    results.append(_copy(record))
            return results
    
    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])
    
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}
    
    def begin_transaction(self) -> None:
        """Start journaling writes made by the calling thread"""
        depth = getattr(self._local, 'depth', 0)
        if depth == 0:
            self._local.journal = {}
        self._local.depth = depth + 1
    
    def commit(self) -> None:
        """Keep the journaled writes"""
        depth = getattr(self._local, 'depth', 0)
        if depth <= 1:
            self._local.journal = None
            self._local.depth = 0
        else:
            self._local.depth = depth - 1
    
    def rollback(self) -> None:
        """Undo every write journaled by the calling thread"""
        journal = self._journal()
        if journal is None:
            return
        with self._lock:
            for (table, record_id), prior in journal.items():
                self._ensure_table(table)
                if prior is None:
                    self._data[table].pop(record_id, None)
                else:
                    self._data[table][record_id] = prior
        self._local.journal = None
        self._local.depth = 0
    
    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite storage implementation for persistence.
    
    The connection lock is only held per statement. Inside a transaction the
    calling thread's writes are buffered and overlaid on its own reads, then
    applied in a single SQL transaction on commit, so a transaction that is
    still reading or computing never blocks other threads.
    """
    
    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._local = threading.local()
        self._tables: Set[str] = set()
        
        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()
    
    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        with self._lock:
            if table in self._tables:
                return
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
            self._connection.commit()
            self._tables.add(table)
    
    def _pending(self) -> Optional[Dict[Tuple[str, str], Optional[str]]]:
        """Buffered writes of the calling thread; None outside a transaction"""
        return getattr(self._local, 'pending', None)
    
    def _overlay(self, table: str, rows: List[Tuple[str, Dict[str, Any]]]) -> List[Dict[str, Any]]:
        """Apply the calling thread's buffered writes to committed rows"""
        pending = self._pending()
        if not pending:
            return [record for _, record in rows]
        changes = {record_id: data for (t, record_id), data in pending.items() if t == table}
        results = []
        for record_id, record in rows:
            if record_id in changes:
                data = changes.pop(record_id)
                if data is not None:
                    results.append(json.loads(data))
            else:
                results.append(record)
        results.extend(json.loads(data) for data in changes.values() if data is not None)
        return results
    
    def _write(self, table: str, record_id: str, data_json: Optional[str]) -> int:
        """Execute one upsert or delete; caller holds the lock"""
        if data_json is None:
            cursor = self._connection.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            return cursor.rowcount
        
        now = datetime.now(timezone.utc).isoformat()
        # Use INSERT OR REPLACE to handle updates
        cursor = self._connection.execute(f"""
            INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
            VALUES (?, ?, 
                COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                ?)
        """, (record_id, data_json, record_id, now, now))
        return cursor.rowcount
    
    def _rows(self, table: str) -> List[Tuple[str, Dict[str, Any]]]:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT id, data FROM {table} ORDER BY created_at
            """)
            return [(row['id'], json.loads(row['data'])) for row in cursor.fetchall()]
    
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        data_json = json.dumps(data, default=str)
        pending = self._pending()
        if pending is not None:
            pending[(table, record_id)] = data_json
            return
        
        with self._lock:
            self._ensure_table(table)
            self._write(table, record_id, data_json)
            self._connection.commit()
    
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        pending = self._pending()
        if pending and (table, record_id) in pending:
            data = pending[(table, record_id)]
            return json.loads(data) if data is not None else None
        
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
        return self._overlay(table, self._rows(table))
    
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        pending = self._pending()
        if pending is not None:
            existed = self.exists(table, record_id)
            if existed:
                pending[(table, record_id)] = None
            return existed
        
        with self._lock:
            self._ensure_table(table)
            deleted = self._write(table, record_id, None)
            self._connection.commit()
            return deleted > 0
    
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        return self.load(table, record_id) is not None
    
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        results = []
        for record in self.load_all(table):
            match = True
            for key, value in filters.items():
                if key not in record or record[key] != value:
                    match = False
                    break
            if match:
                results.append(record)
        return results
    
    def count(self, table: str) -> int:
        """Count records in table"""
        pending = self._pending()
        if pending and any(t == table for t, _ in pending):
            return len(self.load_all(table))
        
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
            self._connection.commit()
    
    def begin_transaction(self) -> None:
        """Start buffering writes made by the calling thread"""
        depth = getattr(self._local, 'depth', 0)
        if depth == 0:
            self._local.pending = {}
        self._local.depth = depth + 1
    
    def commit(self) -> None:
        """Apply the buffered writes in one SQL transaction once the outermost block ends"""
        depth = getattr(self._local, 'depth', 0)
        if depth > 1:
            self._local.depth = depth - 1
            return
        pending = self._pending() or {}
        self._local.pending = None
        self._local.depth = 0
        if not pending:
            return
        
        with self._lock:
            for table, _ in pending:
                self._ensure_table(table)
            try:
                for (table, record_id), data_json in pending.items():
                    self._write(table, record_id, data_json)
                self._connection.commit()
            except sqlite3.Error:
                self._connection.rollback()
                raise
    
    def rollback(self) -> None:
        """Discard every write buffered by the calling thread"""
        self._local.pending = None
        self._local.depth = 0
    
    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Create a storage backend from a URL.
    
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
