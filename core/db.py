"""
Document store backed by SQLite.

Stores flat JSON documents in named collections (users, organizations,
quotes, audits, rates, settings, transactions) and notifies registered
listeners after every write.
"""
import json
import re
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.config import get_settings
from core.exceptions import DataNotFoundError, PersistenceError
from core.logger import setup_logger

logger = setup_logger(__name__)

Listener = Callable[[Optional[Dict[str, Any]]], None]

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _json_path(field: str) -> str:
    if not _FIELD_RE.match(field):
        raise PersistenceError(f"Invalid field name: {field}", details={"field": field})
    return f"$.{field}"


def _query_value(value: Any) -> Any:
    # json_extract returns booleans as 0/1
    if isinstance(value, bool):
        return int(value)
    return value


class DocumentStore:
    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or get_settings().database_path
        self._listeners: Dict[Tuple[str, Optional[str]], List[Listener]] = {}
        self.init_db()

    def get_connection(self) -> sqlite3.Connection:
        """Create a database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Initialize database tables."""
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (collection, id)
                )
            """)
            conn.commit()
            logger.debug(f"Document store initialized at {self.db_path}")
        except Exception as e:
            logger.error(f"Database initialization failed: {e}")
            raise PersistenceError("Database initialization failed", details={"error": str(e)})
        finally:
            conn.close()

    @staticmethod
    def _decode(row: sqlite3.Row) -> Dict[str, Any]:
        data = json.loads(row["data"])
        data["id"] = row["id"]
        return data

    def _read(self, cursor: sqlite3.Cursor, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        cursor.execute(
            "SELECT id, data FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id)
        )
        row = cursor.fetchone()
        return self._decode(row) if row else None

    def _write(self, cursor: sqlite3.Cursor, collection: str, doc_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        body = {k: v for k, v in data.items() if k != "id"}
        cursor.execute(
            "INSERT OR REPLACE INTO documents (collection, id, data, updated_at) VALUES (?, ?, ?, ?)",
            (collection, doc_id, json.dumps(body, default=str), datetime.now(timezone.utc).isoformat())
        )
        return {**body, "id": doc_id}

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one document, or None when it does not exist."""
        conn = self.get_connection()
        try:
            return self._read(conn.cursor(), collection, doc_id)
        except Exception as e:
            logger.error(f"Failed to read {collection}/{doc_id}: {e}")
            raise PersistenceError(
                f"Failed to read {collection}/{doc_id}",
                details={"collection": collection, "id": doc_id, "error": str(e)}
            )
        finally:
            conn.close()

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> Dict[str, Any]:
        """
        Create or replace a document.

        Args:
            collection: Collection name
            doc_id: Document id
            data: Document fields
            merge: Merge into the existing document instead of replacing it

        Returns:
            The stored document including its id
        """
        conn = self.get_connection()
        cursor = conn.cursor()
        try:
            cursor.execute("BEGIN IMMEDIATE")
            if merge:
                existing = self._read(cursor, collection, doc_id) or {}
                data = {**existing, **data}
            stored = self._write(cursor, collection, doc_id, data)
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to write {collection}/{doc_id}: {e}")
            raise PersistenceError(
                f"Failed to write {collection}/{doc_id}",
                details={"collection": collection, "id": doc_id, "error": str(e)}
            )
        finally:
            conn.close()

        self._notify(collection, doc_id, stored)
        return stored

    def add(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a document under a generated id."""
        return self.set(collection, uuid.uuid4().hex, data)

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge fields into an existing document.

        Raises:
            DataNotFoundError: If the document does not exist
        """
        conn = self.get_connection()
        cursor = conn.cursor()
        try:
            cursor.execute("BEGIN IMMEDIATE")
            existing = self._read(cursor, collection, doc_id)
            if existing is None:
                raise DataNotFoundError(
                    f"Document not found: {collection}/{doc_id}",
                    details={"collection": collection, "id": doc_id}
                )
            stored = self._write(cursor, collection, doc_id, {**existing, **fields})
            conn.commit()
        except DataNotFoundError:
            conn.rollback()
            raise
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to update {collection}/{doc_id}: {e}")
            raise PersistenceError(
                f"Failed to update {collection}/{doc_id}",
                details={"collection": collection, "id": doc_id, "error": str(e)}
            )
        finally:
            conn.close()

        self._notify(collection, doc_id, stored)
        return stored

    def increment(
        self,
        collection: str,
        doc_id: str,
        field: str,
        amount: float = 1,
        floor: Optional[float] = None
    ) -> float:
        """
        Atomically add to a numeric field, optionally clamping at a floor.

        Returns:
            The new field value

        Raises:
            DataNotFoundError: If the document does not exist
        """
        conn = self.get_connection()
        cursor = conn.cursor()
        try:
            cursor.execute("BEGIN IMMEDIATE")
            existing = self._read(cursor, collection, doc_id)
            if existing is None:
                raise DataNotFoundError(
                    f"Document not found: {collection}/{doc_id}",
                    details={"collection": collection, "id": doc_id}
                )
            value = (existing.get(field) or 0) + amount
            if floor is not None:
                value = max(floor, value)
            existing[field] = value
            stored = self._write(cursor, collection, doc_id, existing)
            conn.commit()
        except DataNotFoundError:
            conn.rollback()
            raise
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to increment {collection}/{doc_id}.{field}: {e}")
            raise PersistenceError(
                f"Failed to increment {collection}/{doc_id}.{field}",
                details={"collection": collection, "id": doc_id, "field": field, "error": str(e)}
            )
        finally:
            conn.close()

        self._notify(collection, doc_id, stored)
        return value

    def query(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Query a collection by field equality.

        Args:
            collection: Collection name
            filters: Field -> value equality filters
            order_by: Field to order by
            descending: Reverse the order
            limit: Maximum number of documents

        Returns:
            Matching documents
        """
        sql = "SELECT id, data FROM documents WHERE collection = ?"
        params: List[Any] = [collection]
        for field, value in (filters or {}).items():
            sql += " AND json_extract(data, ?) = ?"
            params.extend([_json_path(field), _query_value(value)])
        if order_by:
            sql += f" ORDER BY json_extract(data, ?) {'DESC' if descending else 'ASC'}"
            params.append(_json_path(order_by))
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(sql, params)
            return [self._decode(row) for row in cursor.fetchall()]
        except Exception as e:
            logger.error(f"Failed to query {collection}: {e}")
            raise PersistenceError(
                f"Failed to query {collection}",
                details={"collection": collection, "error": str(e)}
            )
        finally:
            conn.close()

    def subscribe(self, collection: str, doc_id: Optional[str], callback: Listener) -> Callable[[], None]:
        """
        Register a listener for writes to one document (or a whole collection
        when doc_id is None). The current snapshot is delivered immediately.

        Returns:
            Unsubscribe handle; calling it more than once is harmless
        """
        key = (collection, doc_id)
        self._listeners.setdefault(key, []).append(callback)

        if doc_id is not None:
            self._deliver(callback, self.get(collection, doc_id))

        def unsubscribe() -> None:
            listeners = self._listeners.get(key, [])
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def _notify(self, collection: str, doc_id: str, snapshot: Dict[str, Any]) -> None:
        for key in ((collection, doc_id), (collection, None)):
            for callback in list(self._listeners.get(key, [])):
                self._deliver(callback, snapshot)

    @staticmethod
    def _deliver(callback: Listener, snapshot: Optional[Dict[str, Any]]) -> None:
        try:
            callback(snapshot)
        except Exception as e:
            logger.warning(f"Listener {getattr(callback, '__name__', callback)} failed: {e}")


# Global store instance
_store: Optional[DocumentStore] = None


def get_store() -> DocumentStore:
    global _store
    if _store is None:
        _store = DocumentStore()
    return _store


def reset_store() -> None:
    """Drop the store singleton (useful for testing)."""
    global _store
    _store = None
