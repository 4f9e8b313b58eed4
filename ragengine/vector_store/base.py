"""Vector store interface, request types and the shared SQLite metadata layer."""

from __future__ import annotations

import json
import re
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np

from ragengine.config import config
from ragengine.errors import VectorStoreNotReadyError
from ragengine.models import DEFAULT_NAMESPACE, VectorMatch

if TYPE_CHECKING:
    from ragengine.models import DocumentChunk, QueryFilter

logger = config.get_logger(__name__)

NAMESPACE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass
class VectorRecord:
    """Vector plus the metadata and text stored alongside it."""

    id: str
    values: np.ndarray
    metadata: dict[str, Any] = field(default_factory=dict)
    content: str = ""


@dataclass
class QueryRequest:
    vector: np.ndarray
    top_k: int = 5
    namespace: str = DEFAULT_NAMESPACE
    filter: dict[str, Any] | None = None
    include_metadata: bool = True
    include_values: bool = False


@dataclass
class QueryResponse:
    matches: list[VectorMatch]
    namespace: str


@dataclass
class DeleteRequest:
    """Delete by ids, by metadata filter, or the whole namespace."""

    ids: list[str] | None = None
    namespace: str = DEFAULT_NAMESPACE
    delete_all: bool = False
    filter: dict[str, Any] | None = None


@dataclass
class IndexStats:
    total_vector_count: int = 0
    dimension: int | None = None
    namespaces: dict[str, int] = field(default_factory=dict)


def convert_filters(filters: QueryFilter) -> dict[str, Any]:
    """Translate a QueryFilter into a ``$eq``/``$in``/``$gte``/``$lte`` expression.

    Returns:
        Filter expression; empty when the QueryFilter constrains nothing.
    """
    expression: dict[str, Any] = {}
    if filters.domain:
        expression["domain"] = {"$eq": filters.domain}
    if filters.tags:
        expression["tags"] = {"$in": list(filters.tags)}
    if filters.source:
        expression["source"] = {"$eq": filters.source}
    if filters.content_type:
        expression["content_type"] = {"$eq": filters.content_type}
    if filters.date_range:
        expression["created_at"] = {
            "$gte": filters.date_range.start,
            "$lte": filters.date_range.end,
        }
    for key, value in filters.extra.items():
        expression[key] = {"$in": list(value)} if isinstance(value, list) else {
            "$eq": value
        }
    return expression


def _as_values(value: object) -> list[Any]:
    if isinstance(value, list | tuple | set):
        return list(value)
    return [value]


def _compare(actual: object, op: str, expected: object) -> bool:  # noqa: PLR0911
    if op == "$eq":
        return expected in _as_values(actual)
    if op == "$ne":
        return expected not in _as_values(actual)
    if op == "$in":
        return any(value in _as_values(expected) for value in _as_values(actual))
    if op == "$nin":
        return not any(value in _as_values(expected) for value in _as_values(actual))
    try:
        if op == "$gt":
            return actual > expected  # type: ignore[operator]
        if op == "$gte":
            return actual >= expected  # type: ignore[operator]
        if op == "$lt":
            return actual < expected  # type: ignore[operator]
        if op == "$lte":
            return actual <= expected  # type: ignore[operator]
    except TypeError:
        return False
    msg = f"Unsupported filter operator: {op}"
    raise ValueError(msg)


def matches_filter(metadata: dict[str, Any], expression: dict[str, Any] | None) -> bool:
    """Evaluate a filter expression against a metadata mapping.

    A bare value is shorthand for ``$eq``. List-valued metadata satisfies
    ``$eq`` and ``$in`` when any element does. Missing fields fail every
    operator except ``$ne`` and ``$nin``.

    Returns:
        True if every condition holds.

    Raises:
        ValueError: If the expression uses an unknown operator.
    """
    if not expression:
        return True

    for key, condition in expression.items():
        conditions = condition if isinstance(condition, dict) else {"$eq": condition}
        if key not in metadata:
            if all(op in {"$ne", "$nin"} for op in conditions):
                continue
            return False
        actual = metadata[key]
        for op, expected in conditions.items():
            if not _compare(actual, op, expected):
                return False
    return True


def chunk_to_vector_record(chunk: DocumentChunk) -> VectorRecord:
    """Build the stored record for an embedded chunk.

    Returns:
        VectorRecord carrying the chunk's lineage in its metadata.

    Raises:
        ValueError: If the chunk has no embedding.
    """
    if chunk.embedding is None:
        msg = f"Chunk {chunk.id} has no embedding"
        raise ValueError(msg)

    metadata = chunk.metadata.to_dict()
    metadata.update(
        {
            "document_id": chunk.document_id,
            "chunk_index": chunk.chunk_index,
            "total_chunks": chunk.total_chunks,
        }
    )
    return VectorRecord(
        id=chunk.id,
        values=np.asarray(chunk.embedding, dtype="float32"),
        metadata=metadata,
        content=chunk.content,
    )


def normalize_vector(vector: np.ndarray) -> np.ndarray:
    """L2-normalize a vector so inner product equals cosine similarity.

    Returns:
        Normalized float32 vector; zero vectors are returned unchanged.
    """
    values = np.asarray(vector, dtype="float32").reshape(-1)
    norm = np.linalg.norm(values)
    if norm == 0:
        return values
    return values / norm


class VectorStore(ABC):
    """Namespaced vector storage with metadata-filtered similarity search."""

    backend: str = "base"

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    def is_ready(self) -> bool:
        pass

    @abstractmethod
    async def upsert(
        self, records: list[VectorRecord], namespace: str = DEFAULT_NAMESPACE
    ) -> None:
        pass

    @abstractmethod
    async def query(self, request: QueryRequest) -> QueryResponse:
        pass

    @abstractmethod
    async def delete(self, request: DeleteRequest) -> int:
        pass

    @abstractmethod
    async def get_stats(self) -> IndexStats:
        pass

    @abstractmethod
    async def create_namespace(self, namespace: str) -> None:
        pass

    @abstractmethod
    async def list_namespaces(self) -> list[str]:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    async def health_check(self) -> bool:
        """Check the store answers a stats request.

        Returns:
            True if the store is ready and reachable.
        """
        if not self.is_ready():
            return False
        try:
            await self.get_stats()
        except Exception:
            logger.exception("Vector store health check failed")
            return False
        return True


class BaseSQLiteStore(VectorStore):
    """Common schema management and helpers for vector stores using SQLite metadata.

    Records are keyed by ``(namespace, id)``. The autoincrement ``row_id`` of a
    record is its vector id in the backend index and its position in insertion
    order, which breaks ties between equal scores. Normalized vectors are kept
    as float32 BLOBs next to their metadata; subclasses provide the search
    structure through the ``_store_vectors``, ``_remove_vectors`` and
    ``_score`` hooks.
    """

    def __init__(self, db_path: Path) -> None:
        """Configure the metadata database location."""
        self.db_path = Path(db_path)
        self._ready = False

    async def initialize(self) -> None:
        """Create the schema and load backend state."""
        self.db_path.parent.mkdir(exist_ok=True, parents=True)
        try:
            self._create_tables()
            self._load()
        except Exception:
            logger.exception("Failed to initialize %s vector store", self.backend)
            raise
        self._ready = True
        logger.info("Initialized %s vector store at %s", self.backend, self.db_path)

    def is_ready(self) -> bool:
        return self._ready

    async def close(self) -> None:
        self._ready = False

    def _create_tables(self) -> None:
        """Create namespace and record tables if they don't exist."""
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS namespaces (
                    name TEXT PRIMARY KEY,
                    dimension INTEGER,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS records (
                    row_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    namespace TEXT NOT NULL,
                    id TEXT NOT NULL,
                    content TEXT NOT NULL DEFAULT '',
                    metadata TEXT NOT NULL DEFAULT '{}',
                    vector BLOB,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (namespace, id),
                    FOREIGN KEY (namespace) REFERENCES namespaces (name)
                )
            """)

            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_records_namespace "
                "ON records(namespace, row_id)"
            )
            conn.commit()

    def _load(self) -> None:
        """Load backend state after the schema exists."""

    def _require_ready(self) -> None:
        if not self._ready:
            msg = f"{self.backend} vector store used before initialize()"
            raise VectorStoreNotReadyError(msg)

    @staticmethod
    def _validate_namespace(namespace: str) -> str:
        """Reject namespace names unsafe for file and table use.

        Returns:
            The namespace unchanged.

        Raises:
            ValueError: If the name has characters outside ``[A-Za-z0-9_-]``.
        """
        if not NAMESPACE_PATTERN.match(namespace or ""):
            msg = f"Invalid namespace name: {namespace!r}"
            raise ValueError(msg)
        return namespace

    @staticmethod
    def _ensure_namespace(
        cursor: sqlite3.Cursor,
        namespace: str,
        dimension: int | None = None,
    ) -> None:
        """Register a namespace and pin its dimension on first write.

        Raises:
            ValueError: If ``dimension`` differs from the namespace's dimension.
        """
        cursor.execute(
            "INSERT OR IGNORE INTO namespaces (name, dimension) VALUES (?, ?)",
            (namespace, dimension),
        )
        if dimension is None:
            return
        cursor.execute("SELECT dimension FROM namespaces WHERE name = ?", (namespace,))
        row = cursor.fetchone()
        existing = row[0] if row else None
        if existing is None:
            cursor.execute(
                "UPDATE namespaces SET dimension = ? WHERE name = ?",
                (dimension, namespace),
            )
        elif int(existing) != dimension:
            msg = (
                f"Embedding dimension {dimension} does not match namespace "
                f"'{namespace}' dimension {existing}"
            )
            raise ValueError(msg)

    @staticmethod
    def _namespace_dimension(cursor: sqlite3.Cursor, namespace: str) -> int | None:
        cursor.execute("SELECT dimension FROM namespaces WHERE name = ?", (namespace,))
        row = cursor.fetchone()
        return int(row[0]) if row and row[0] is not None else None

    async def create_namespace(self, namespace: str) -> None:
        """Register an empty namespace."""
        self._require_ready()
        self._validate_namespace(namespace)
        with sqlite3.connect(str(self.db_path)) as conn:
            self._ensure_namespace(conn.cursor(), namespace)
            conn.commit()

    async def list_namespaces(self) -> list[str]:
        """List registered namespaces.

        Returns:
            Namespace names in alphabetical order.
        """
        self._require_ready()
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM namespaces ORDER BY name")
            return [row[0] for row in cursor.fetchall()]

    async def get_stats(self) -> IndexStats:
        """Count vectors per namespace.

        Returns:
            IndexStats over all namespaces.
        """
        self._require_ready()
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT n.name, n.dimension, COUNT(r.row_id)
                FROM namespaces n
                LEFT JOIN records r ON r.namespace = n.name
                GROUP BY n.name
                ORDER BY n.name
            """)
            rows = cursor.fetchall()

        namespaces = {name: int(count) for name, _dimension, count in rows}
        dimensions = {int(dim) for _name, dim, _count in rows if dim is not None}
        return IndexStats(
            total_vector_count=sum(namespaces.values()),
            dimension=dimensions.pop() if len(dimensions) == 1 else None,
            namespaces=namespaces,
        )

    async def upsert(
        self,
        records: list[VectorRecord],
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        """Insert records, replacing any existing record with the same id.

        Raises:
            ValueError: If records in one call, or the namespace, disagree on
                dimension.
        """
        self._require_ready()
        self._validate_namespace(namespace)
        if not records:
            return

        vectors = [normalize_vector(record.values) for record in records]
        dimensions = {vector.shape[0] for vector in vectors}
        if len(dimensions) != 1:
            msg = f"Records have mixed embedding dimensions: {sorted(dimensions)}"
            raise ValueError(msg)
        dimension = dimensions.pop()

        try:
            with sqlite3.connect(str(self.db_path)) as conn:
                cursor = conn.cursor()
                self._ensure_namespace(cursor, namespace, dimension)

                row_ids: list[int] = []
                for record, vector in zip(records, vectors, strict=True):
                    cursor.execute(
                        """
                        INSERT INTO records (namespace, id, content, metadata, vector)
                        VALUES (?, ?, ?, ?, ?)
                        ON CONFLICT (namespace, id) DO UPDATE SET
                            content = excluded.content,
                            metadata = excluded.metadata,
                            vector = excluded.vector,
                            updated_at = CURRENT_TIMESTAMP
                        """,
                        (
                            namespace,
                            record.id,
                            record.content,
                            json.dumps(record.metadata, default=str),
                            vector.tobytes(),
                        ),
                    )
                    cursor.execute(
                        "SELECT row_id FROM records WHERE namespace = ? AND id = ?",
                        (namespace, record.id),
                    )
                    row_ids.append(int(cursor.fetchone()[0]))

                # A repeated id within one call keeps its last vector.
                latest = dict(zip(row_ids, vectors, strict=True))
                self._store_vectors(
                    namespace, list(latest), np.vstack(list(latest.values()))
                )
                conn.commit()
        except Exception:
            logger.exception(
                "Error upserting %d records into %s", len(records), namespace
            )
            raise

        logger.info("Upserted %d records into namespace %s", len(records), namespace)

    async def query(self, request: QueryRequest) -> QueryResponse:
        """Return the nearest records that satisfy the request's filter.

        Returns:
            Matches sorted by descending score; equal scores keep insertion
            order.
        """
        self._require_ready()
        namespace = self._validate_namespace(request.namespace)
        if request.top_k <= 0:
            return QueryResponse(matches=[], namespace=namespace)

        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            dimension = self._namespace_dimension(cursor, namespace)
            if dimension is None:
                return QueryResponse(matches=[], namespace=namespace)

            vector = normalize_vector(request.vector)
            if vector.shape[0] != dimension:
                msg = (
                    f"Query dimension {vector.shape[0]} does not match namespace "
                    f"'{namespace}' dimension {dimension}"
                )
                raise ValueError(msg)

            candidates = self._score(cursor, namespace, vector, request.top_k)
            rows = self._fetch_rows(cursor, namespace, [row for row, _ in candidates])

            scored: list[tuple[float, int, VectorMatch]] = []
            for row_id, score in candidates:
                row = rows.get(row_id)
                if row is None:
                    continue
                record_id, content, metadata = row
                if not matches_filter(metadata, request.filter):
                    continue
                values = (
                    self._load_values(cursor, namespace, row_id)
                    if request.include_values
                    else None
                )
                scored.append(
                    (
                        score,
                        row_id,
                        VectorMatch(
                            id=record_id,
                            score=score,
                            content=content,
                            metadata=metadata if request.include_metadata else {},
                            values=values,
                        ),
                    )
                )

        scored.sort(key=lambda item: (-item[0], item[1]))
        return QueryResponse(
            matches=[match for _, _, match in scored[: request.top_k]],
            namespace=namespace,
        )

    async def delete(self, request: DeleteRequest) -> int:
        """Delete records by ids, filter, or the whole namespace.

        Returns:
            Number of records removed.

        Raises:
            ValueError: If the request names no ids, filter or delete_all.
        """
        self._require_ready()
        namespace = self._validate_namespace(request.namespace)
        if not (request.delete_all or request.ids or request.filter):
            msg = "Delete request needs ids, a filter, or delete_all"
            raise ValueError(msg)

        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT row_id, id, metadata FROM records WHERE namespace = ?",
                (namespace,),
            )
            wanted_ids = set(request.ids or [])
            row_ids = [
                int(row_id)
                for row_id, record_id, metadata in cursor.fetchall()
                if request.delete_all
                or record_id in wanted_ids
                or (
                    bool(request.filter)
                    and matches_filter(json.loads(metadata), request.filter)
                )
            ]

            if row_ids:
                cursor.executemany(
                    "DELETE FROM records WHERE row_id = ?",
                    [(row_id,) for row_id in row_ids],
                )
                self._remove_vectors(namespace, row_ids)
            if request.delete_all:
                cursor.execute("DELETE FROM namespaces WHERE name = ?", (namespace,))
            conn.commit()

        logger.info("Deleted %d records from namespace %s", len(row_ids), namespace)
        return len(row_ids)

    @staticmethod
    def _fetch_rows(
        cursor: sqlite3.Cursor,
        namespace: str,
        row_ids: Iterable[int],
    ) -> dict[int, tuple[str, str, dict[str, Any]]]:
        """Fetch id, content and metadata for the given rows.

        Returns:
            Mapping of row id to ``(id, content, metadata)``.
        """
        rows: dict[int, tuple[str, str, dict[str, Any]]] = {}
        for row_id in row_ids:
            cursor.execute(
                "SELECT id, content, metadata FROM records "
                "WHERE row_id = ? AND namespace = ?",
                (int(row_id), namespace),
            )
            row = cursor.fetchone()
            if row is not None:
                rows[int(row_id)] = (row[0], row[1], json.loads(row[2]))
        return rows

    @abstractmethod
    def _store_vectors(
        self, namespace: str, row_ids: list[int], vectors: np.ndarray
    ) -> None:
        pass

    @abstractmethod
    def _remove_vectors(self, namespace: str, row_ids: list[int]) -> None:
        pass

    @abstractmethod
    def _score(
        self,
        cursor: sqlite3.Cursor,
        namespace: str,
        vector: np.ndarray,
        top_k: int,
    ) -> list[tuple[int, float]]:
        """Rank stored vectors against a normalized query vector.

        Candidates may exceed ``top_k`` so that metadata filters applied
        afterwards still leave enough matches.

        Returns:
            ``(row_id, score)`` pairs.
        """

    @staticmethod
    def _load_values(
        cursor: sqlite3.Cursor, namespace: str, row_id: int
    ) -> np.ndarray | None:
        cursor.execute(
            "SELECT vector FROM records WHERE row_id = ? AND namespace = ?",
            (int(row_id), namespace),
        )
        row = cursor.fetchone()
        if row is None or row[0] is None:
            return None
        return np.frombuffer(row[0], dtype="float32").copy()

    @staticmethod
    def _namespace_vectors(
        cursor: sqlite3.Cursor,
        namespace: str,
    ) -> tuple[list[int], np.ndarray | None]:
        """Load every stored vector of a namespace in insertion order.

        Returns:
            Row ids and the matching ``(n, dimension)`` matrix, or None when
            the namespace holds no vectors.
        """
        cursor.execute(
            "SELECT row_id, vector FROM records "
            "WHERE namespace = ? AND vector IS NOT NULL ORDER BY row_id",
            (namespace,),
        )
        rows = cursor.fetchall()
        if not rows:
            return [], None
        row_ids = [int(row_id) for row_id, _ in rows]
        matrix = np.vstack([np.frombuffer(blob, dtype="float32") for _, blob in rows])
        return row_ids, matrix
