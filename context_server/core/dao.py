"""
Record store for context entries.

A single connection is shared behind a re-entrant lock. The lock is held from
begin_transaction() until commit() or rollback(), so other threads never
observe a half-applied transaction.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, Optional

from .db import TIMESTAMP_DEFAULT, health_check, init_db, open_db
from .errors import StorageError
from .schema import ContextRecord
from ..util.logging import logger


def _parse_timestamp(raw: str) -> datetime:
    return datetime.fromisoformat(raw)


def _row_to_record(row) -> ContextRecord:
    key, value, metadata, created_at, updated_at = row
    return ContextRecord(
        key=key,
        value=json.loads(value),
        metadata=json.loads(metadata) if metadata is not None else None,
        created_at=_parse_timestamp(created_at),
        updated_at=_parse_timestamp(updated_at),
    )


class ContextStore:
    """Durable key -> (value, metadata) table with transactional grouping."""

    def __init__(self, db_path: str = None):
        try:
            self._conn = open_db(db_path)
            init_db(self._conn)
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Failed to open context store at '{db_path}': {e}")
            raise StorageError("Failed to open context store", {"db_path": db_path}) from e

        self.db_path = db_path
        self._lock = threading.RLock()
        self._in_transaction = False

    # Transactions

    def begin_transaction(self):
        """Open a transaction and hold the store lock until commit/rollback."""
        self._lock.acquire()
        try:
            if self._in_transaction:
                raise StorageError("Transaction already open")
            self._conn.execute("BEGIN IMMEDIATE")
            self._in_transaction = True
        except sqlite3.Error as e:
            self._lock.release()
            raise StorageError("Failed to begin transaction", {"reason": str(e)}) from e
        except StorageError:
            self._lock.release()
            raise

    def commit(self):
        """Commit the open transaction and release the store lock."""
        if not self._in_transaction:
            raise StorageError("No transaction to commit")
        try:
            self._conn.execute("COMMIT")
        except sqlite3.Error as e:
            # Transaction is still open; the caller is expected to roll back.
            raise StorageError("Failed to commit transaction", {"reason": str(e)}) from e
        self._in_transaction = False
        self._lock.release()

    def rollback(self):
        """Undo the open transaction and release the store lock."""
        if not self._in_transaction:
            return
        try:
            self._conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error(f"Rollback failed: {e}")
        finally:
            self._in_transaction = False
            self._lock.release()

    @contextmanager
    def transaction(self) -> Iterator["ContextStore"]:
        """Run the enclosed block as one all-or-nothing unit."""
        self.begin_transaction()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        try:
            self.commit()
        except StorageError:
            self.rollback()
            raise

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    # Records

    def upsert(self, key: str, value: Any, metadata: Optional[Dict[str, Any]] = None) -> bool:
        """Insert or replace a record. Returns True when the key was created."""
        try:
            value_text = json.dumps(value, allow_nan=False)
            metadata_text = json.dumps(metadata, allow_nan=False) if metadata is not None else None
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for key '{key}' is not JSON-serializable", {"key": key}) from e

        with self._lock:
            try:
                cursor = self._conn.cursor()
                cursor.execute("SELECT 1 FROM context WHERE key = ?", (key,))
                created = cursor.fetchone() is None
                cursor.execute(
                    f'''
                    INSERT INTO context (key, value, metadata) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        metadata = excluded.metadata,
                        updated_at = {TIMESTAMP_DEFAULT}
                    ''',
                    (key, value_text, metadata_text)
                )
            except sqlite3.Error as e:
                logger.error(f"Database error during upsert for key '{key}': {e}")
                raise StorageError(f"Failed to store context '{key}'", {"key": key, "reason": str(e)}) from e

        return created

    def get(self, key: str) -> Optional[ContextRecord]:
        """Get a record by key, or None when it does not exist."""
        with self._lock:
            try:
                cursor = self._conn.cursor()
                cursor.execute(
                    "SELECT key, value, metadata, created_at, updated_at FROM context WHERE key = ?",
                    (key,)
                )
                row = cursor.fetchone()
            except sqlite3.Error as e:
                logger.error(f"Failed to get key '{key}': {e}")
                raise StorageError(f"Failed to read context '{key}'", {"key": key, "reason": str(e)}) from e

        return _row_to_record(row) if row else None

    def exists(self, key: str) -> bool:
        with self._lock:
            try:
                cursor = self._conn.cursor()
                cursor.execute("SELECT 1 FROM context WHERE key = ?", (key,))
                return cursor.fetchone() is not None
            except sqlite3.Error as e:
                raise StorageError(f"Failed to read context '{key}'", {"key": key, "reason": str(e)}) from e

    def delete(self, key: str) -> bool:
        """Delete a record. Returns False when the key did not exist."""
        with self._lock:
            try:
                cursor = self._conn.cursor()
                cursor.execute("DELETE FROM context WHERE key = ?", (key,))
                return cursor.rowcount > 0
            except sqlite3.Error as e:
                logger.error(f"Failed to delete key '{key}': {e}")
                raise StorageError(f"Failed to delete context '{key}'", {"key": key, "reason": str(e)}) from e

    def count(self) -> int:
        """Count stored records."""
        with self._lock:
            try:
                cursor = self._conn.cursor()
                cursor.execute("SELECT COUNT(*) FROM context")
                return cursor.fetchone()[0]
            except sqlite3.Error as e:
                logger.error(f"Failed to count records: {e}")
                return 0

    def health_check(self) -> bool:
        with self._lock:
            return health_check(self._conn)

    def close(self):
        with self._lock:
            self._conn.close()
