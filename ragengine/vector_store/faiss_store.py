"""FAISS-backed vector storage with SQLite metadata."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import faiss
import numpy as np

from ragengine.config import config
from ragengine.vector_store.base import BaseSQLiteStore

logger = config.get_logger(__name__)


class FaissVectorStore(BaseSQLiteStore):
    """Vector storage using one FAISS index per namespace and SQLite for metadata."""

    backend = "faiss"

    def __init__(
        self,
        db_path: Path = Path("data/vector_store.db"),
        index_dir: Path = Path("data/faiss"),
        raw_top_k_multiplier: int = 2,
    ) -> None:
        """Configure FAISS-backed vector store.

        Args:
            db_path: Path to the SQLite metadata database.
            index_dir: Directory holding one ``<namespace>.faiss`` file per
                namespace.
            raw_top_k_multiplier: How many times ``top_k`` candidates to pull
                from FAISS before metadata filtering.
        """
        self.index_dir = Path(index_dir)
        self.raw_top_k_multiplier = max(1, raw_top_k_multiplier)
        self.indexes: dict[str, faiss.IndexIDMap2] = {}

        super().__init__(db_path)

    def _index_path(self, namespace: str) -> Path:
        return self.index_dir / f"{namespace}.faiss"

    @staticmethod
    def _new_index(dimension: int) -> faiss.IndexIDMap2:
        """Create an inner-product index addressable by row id.

        Returns:
            Empty IndexIDMap2 over a flat inner-product index.
        """
        index = faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))
        logger.info("Initialized FAISS IndexIDMap2 with dimension %d", dimension)
        return index

    def _read_index(self, namespace: str) -> faiss.IndexIDMap2 | None:
        index_path = self._index_path(namespace)
        if not index_path.exists():
            return None

        index = faiss.read_index(str(index_path))
        if not isinstance(index, faiss.IndexIDMap2):
            logger.warning(
                "FAISS index %s is %s, not IndexIDMap2; rebuilding",
                index_path,
                type(index).__name__,
            )
            return None
        return index

    def _save(self, namespace: str, index: faiss.IndexIDMap2) -> None:
        """Persist a namespace index to disk."""
        self.index_dir.mkdir(exist_ok=True, parents=True)
        faiss.write_index(index, str(self._index_path(namespace)))
        logger.debug("Saved FAISS index for %s (%d vectors)", namespace, index.ntotal)

    def _load(self) -> None:
        """Load namespace indexes, rebuilding any that disagree with SQLite.

        Raises:
            sqlite3.Error: If metadata read fails.
        """
        self.index_dir.mkdir(exist_ok=True, parents=True)
        self.indexes = {}

        try:
            with sqlite3.connect(str(self.db_path)) as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "SELECT name, dimension FROM namespaces "
                    "WHERE dimension IS NOT NULL ORDER BY name"
                )
                for namespace, dimension in cursor.fetchall():
                    row_ids, matrix = self._namespace_vectors(cursor, namespace)
                    index = self._read_index(namespace)
                    if (
                        index is not None
                        and index.d == int(dimension)
                        and index.ntotal == len(row_ids)
                    ):
                        self.indexes[namespace] = index
                        continue

                    logger.warning(
                        "Rebuilding FAISS index for namespace %s from %d stored "
                        "vectors",
                        namespace,
                        len(row_ids),
                    )
                    index = self._new_index(int(dimension))
                    if matrix is not None:
                        ids_array = np.asarray(row_ids, dtype="int64")
                        index.add_with_ids(matrix, ids_array)  # pyright: ignore[reportCallIssue]
                    self._save(namespace, index)
                    self.indexes[namespace] = index
        except sqlite3.Error:
            logger.exception("Error loading metadata for FAISS vector store")
            raise

        logger.info(
            "Loaded %d FAISS namespace indexes from %s",
            len(self.indexes),
            self.index_dir,
        )

    def _store_vectors(
        self,
        namespace: str,
        row_ids: list[int],
        vectors: np.ndarray,
    ) -> None:
        """Add vectors under their row ids, replacing existing entries.

        Raises:
            RuntimeError: If the FAISS index cannot store provided ids.
        """
        index = self.indexes.get(namespace)
        if index is None:
            index = self._new_index(vectors.shape[1])
            self.indexes[namespace] = index

        ids_array = np.asarray(row_ids, dtype="int64")
        index.remove_ids(ids_array)
        try:
            index.add_with_ids(
                np.ascontiguousarray(vectors, dtype="float32"), ids_array
            )  # pyright: ignore[reportCallIssue]
        except RuntimeError:
            logger.exception("FAISS index rejected vectors for namespace %s", namespace)
            raise
        self._save(namespace, index)
        logger.info("Stored %d vectors in FAISS namespace %s", len(row_ids), namespace)

    def _remove_vectors(self, namespace: str, row_ids: list[int]) -> None:
        index = self.indexes.get(namespace)
        if index is None:
            return

        index.remove_ids(np.asarray(row_ids, dtype="int64"))
        if index.ntotal == 0:
            del self.indexes[namespace]
            self._index_path(namespace).unlink(missing_ok=True)
            logger.info("Dropped empty FAISS index for namespace %s", namespace)
            return
        self._save(namespace, index)

    def _score(
        self,
        cursor: sqlite3.Cursor,  # noqa: ARG002
        namespace: str,
        vector: np.ndarray,
        top_k: int,
    ) -> list[tuple[int, float]]:
        """Search the namespace index, over-fetching for filters and ties.

        Returns:
            ``(row_id, score)`` pairs in FAISS rank order.
        """
        index = self.indexes.get(namespace)
        if index is None or index.ntotal == 0:
            return []

        raw_top_k = min(self.raw_top_k_multiplier * top_k, index.ntotal)
        scores, vector_ids = index.search(
            vector.reshape(1, -1),
            raw_top_k,
        )  # pyright: ignore[reportCallIssue]

        return [
            (int(vector_id), float(score))
            for score, vector_id in zip(scores[0], vector_ids[0], strict=True)
            if int(vector_id) != -1  # faiss returns -1 for empty results
        ]

    async def close(self) -> None:
        """Flush every namespace index and release them."""
        for namespace, index in self.indexes.items():
            self._save(namespace, index)
        self.indexes = {}
        await super().close()
