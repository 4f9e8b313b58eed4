"""SQLite-based vector storage with exact numpy search."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import numpy as np

from ragengine.config import config
from ragengine.vector_store.base import BaseSQLiteStore

logger = config.get_logger(__name__)


class SQLiteVectorStore(BaseSQLiteStore):
    """Vector storage keeping vectors as SQLite BLOBs and scoring them with numpy."""

    backend = "sqlite"

    def __init__(self, db_path: Path = Path("data/vector_store.db")) -> None:
        """Initialize the SQLiteVectorStore.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._matrices: dict[str, tuple[list[int], np.ndarray]] = {}
        super().__init__(db_path)

    def _load(self) -> None:
        self._matrices = {}

    def _store_vectors(
        self,
        namespace: str,
        row_ids: list[int],  # noqa: ARG002
        vectors: np.ndarray,  # noqa: ARG002
    ) -> None:
        # Vectors are already in the records table; drop the stale matrix.
        self._matrices.pop(namespace, None)

    def _remove_vectors(
        self,
        namespace: str,
        row_ids: list[int],  # noqa: ARG002
    ) -> None:
        self._matrices.pop(namespace, None)

    def _embeddings_matrix(
        self,
        cursor: sqlite3.Cursor,
        namespace: str,
    ) -> tuple[list[int], np.ndarray] | None:
        """Return the cached embeddings matrix, rebuilding it after writes.

        Returns:
            Row ids and matrix in insertion order, or None for no vectors.
        """
        cached = self._matrices.get(namespace)
        if cached is not None:
            return cached

        row_ids, matrix = self._namespace_vectors(cursor, namespace)
        if matrix is None:
            return None
        self._matrices[namespace] = (row_ids, matrix)
        logger.info(
            "Rebuilt embeddings matrix for %s with %d vectors", namespace, len(row_ids)
        )
        return row_ids, matrix

    def _score(
        self,
        cursor: sqlite3.Cursor,
        namespace: str,
        vector: np.ndarray,
        top_k: int,  # noqa: ARG002
    ) -> list[tuple[int, float]]:
        """Score every vector in the namespace.

        Returns:
            All ``(row_id, score)`` pairs by descending score, ties in
            insertion order.
        """
        loaded = self._embeddings_matrix(cursor, namespace)
        if loaded is None:
            return []

        row_ids, matrix = loaded
        scores = matrix @ vector
        order = np.argsort(-scores, kind="stable")
        return [(row_ids[i], float(scores[i])) for i in order]

    async def close(self) -> None:
        self._matrices = {}
        await super().close()
