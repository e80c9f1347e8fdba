"""SQLite-backed document store with WAL mode."""

import aiosqlite
import asyncio
import json
import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence
from uuid import uuid4

from pydantic import BaseModel

from .errors import DocumentNotFound, TransientRemoteError
from .models import META_FIELDS

logger = logging.getLogger(__name__)

_ATTRIBUTE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Query(BaseModel):
    """A single filter, ordering or limit clause for list_documents."""

    method: Literal["equal", "order_desc", "order_asc", "limit"]
    attribute: Optional[str] = None
    value: Any = None

    @classmethod
    def equal(cls, attribute: str, value: Any) -> "Query":
        return cls(method="equal", attribute=attribute, value=value)

    @classmethod
    def order_desc(cls, attribute: str) -> "Query":
        return cls(method="order_desc", attribute=attribute)

    @classmethod
    def order_asc(cls, attribute: str) -> "Query":
        return cls(method="order_asc", attribute=attribute)

    @classmethod
    def limit(cls, value: int) -> "Query":
        return cls(method="limit", value=value)


def _column(attribute: str) -> str:
    """SQL expression for a document attribute."""
    if not _ATTRIBUTE_RE.match(attribute):
        raise ValueError(f"Invalid attribute name: {attribute!r}")
    if attribute in META_FIELDS:
        return attribute
    return f"json_extract(body, '$.{attribute}')"


def build_select(collection: str, queries: Sequence[Query]) -> tuple:
    """Translate queries into a SELECT statement and its parameters."""
    where = ["collection = ?"]
    params: List[Any] = [collection]
    order = []
    limit = None

    for q in queries:
        if q.method == "equal":
            values = q.value if isinstance(q.value, (list, tuple, set)) else [q.value]
            placeholders = ", ".join("?" for _ in values)
            where.append(f"{_column(q.attribute)} IN ({placeholders})")
            params.extend(values)
        elif q.method == "order_desc":
            order.append(f"{_column(q.attribute)} DESC")
        elif q.method == "order_asc":
            order.append(f"{_column(q.attribute)} ASC")
        elif q.method == "limit":
            limit = int(q.value)

    # Insertion order is the final tie-break for every listing
    order.extend(["created_at ASC", "rowid ASC"])

    sql = (
        "SELECT id, body, created_at, updated_at FROM documents "
        f"WHERE {' AND '.join(where)} ORDER BY {', '.join(order)}"
    )
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)
    return sql, params


class DocumentStore:
    """Async SQLite document store.

    Documents are JSON bodies grouped by collection. The store assigns ``id``,
    ``created_at`` and ``updated_at``; every other key lives in the body.
    """

    def __init__(self, db_path: str, clock: Optional[Callable[[], datetime]] = None):
        self.db_path = db_path
        self._clock = clock or utcnow
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Initialize database connection and create tables."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(self.db_path)

        # Enable WAL mode for better concurrency
        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")

        await self._create_tables()
        logger.info(f"Document store connected: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("Document store connection closed")

    async def __aenter__(self) -> "DocumentStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _create_tables(self) -> None:
        async with self._lock:
            await self._connection.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    body TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (collection, id)
                )
            """)
            await self._connection.execute("""
                CREATE INDEX IF NOT EXISTS idx_documents_created
                ON documents(collection, created_at)
            """)
            await self._connection.commit()
            logger.info("Document tables created/verified")

    @asynccontextmanager
    async def _guarded(self, operation: str):
        """Serialize access and surface storage failures as transient errors."""
        if self._connection is None:
            raise RuntimeError("Document store is not connected")
        async with self._lock:
            try:
                yield self._connection
            except aiosqlite.Error as e:
                raise TransientRemoteError(f"{operation} failed: {e}") from e

    @staticmethod
    def _to_record(row: tuple) -> Dict[str, Any]:
        doc_id, body, created_at, updated_at = row
        record = json.loads(body)
        record.update({"id": doc_id, "created_at": created_at, "updated_at": updated_at})
        return record

    @staticmethod
    def _body(data: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in data.items() if k not in META_FIELDS}

    async def list_documents(
        self, collection: str, queries: Sequence[Query] = ()
    ) -> List[Dict[str, Any]]:
        """List documents in a collection matching the given queries."""
        sql, params = build_select(collection, queries)
        async with self._guarded(f"list {collection}") as conn:
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()
        return [self._to_record(row) for row in rows]

    async def get_document(self, collection: str, document_id: str) -> Dict[str, Any]:
        async with self._guarded(f"get {collection}/{document_id}") as conn:
            cursor = await conn.execute(
                "SELECT id, body, created_at, updated_at FROM documents "
                "WHERE collection = ? AND id = ?",
                (collection, document_id),
            )
            row = await cursor.fetchone()
        if row is None:
            raise DocumentNotFound(collection, document_id)
        return self._to_record(row)

    async def create_document(
        self, collection: str, data: Dict[str, Any], document_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Insert a document and return it with its store-assigned fields."""
        doc_id = document_id or uuid4().hex
        now = self._clock().isoformat()
        body = json.dumps(self._body(data))

        async with self._guarded(f"create {collection}") as conn:
            await conn.execute(
                """
                INSERT INTO documents (collection, id, body, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (collection, doc_id, body, now, now),
            )
            await conn.commit()

        logger.debug(f"Created document {collection}/{doc_id}")
        return self._to_record((doc_id, body, now, now))

    async def update_document(
        self, collection: str, document_id: str, patch: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Merge ``patch`` into a document body and refresh updated_at."""
        now = self._clock().isoformat()

        async with self._guarded(f"update {collection}/{document_id}") as conn:
            cursor = await conn.execute(
                "SELECT body, created_at FROM documents WHERE collection = ? AND id = ?",
                (collection, document_id),
            )
            row = await cursor.fetchone()
            if row is None:
                raise DocumentNotFound(collection, document_id)

            body = json.loads(row[0])
            body.update(self._body(patch))
            encoded = json.dumps(body)
            await conn.execute(
                "UPDATE documents SET body = ?, updated_at = ? WHERE collection = ? AND id = ?",
                (encoded, now, collection, document_id),
            )
            await conn.commit()

        return self._to_record((document_id, encoded, row[1], now))

    async def delete_document(self, collection: str, document_id: str) -> None:
        async with self._guarded(f"delete {collection}/{document_id}") as conn:
            cursor = await conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (collection, document_id),
            )
            await conn.commit()
            deleted = cursor.rowcount
        if deleted == 0:
            raise DocumentNotFound(collection, document_id)
        logger.debug(f"Deleted document {collection}/{document_id}")

    async def ping(self) -> bool:
        """Return True when the store answers a trivial query."""
        async with self._guarded("ping") as conn:
            cursor = await conn.execute("SELECT 1")
            await cursor.fetchone()
        return True

    async def get_stats(self) -> dict:
        """Get document counts per collection."""
        async with self._guarded("stats") as conn:
            cursor = await conn.execute(
                "SELECT collection, COUNT(*) FROM documents GROUP BY collection"
            )
            by_collection = dict(await cursor.fetchall())
        return {
            "total_documents": sum(by_collection.values()),
            "documents_by_collection": by_collection,
        }
