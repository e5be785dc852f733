"""Vector index: float32 embeddings stored as BLOBs, searched with numpy."""

import logging
import sqlite3
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from squad_memory.indexer.database import Database

logger = logging.getLogger(__name__)

VECTOR_TABLE = "vectors"

VECTOR_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS {VECTOR_TABLE} (
    chunk_id   TEXT PRIMARY KEY,
    dims       INTEGER NOT NULL,
    embedding  BLOB NOT NULL
)
"""


def to_blob(vector: np.ndarray) -> bytes:
    """Convert a vector to float32 bytes for storage."""
    return np.asarray(vector, dtype=np.float32).tobytes()


def from_blob(blob: bytes) -> np.ndarray:
    """Convert stored bytes back to a numpy array."""
    return np.frombuffer(blob, dtype=np.float32)


def batch_cosine_similarity(query_vec: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """
    Compute cosine similarity between query_vec and all rows in matrix.

    query_vec: (d,)
    matrix: (n, d)
    Returns: (n,) scores
    """
    norm_q = np.linalg.norm(query_vec)
    norm_m = np.linalg.norm(matrix, axis=1)

    norm_product = norm_q * norm_m
    norm_product[norm_product == 0] = 1e-9

    return np.dot(matrix, query_vec) / norm_product


class VectorIndex:
    """
    Embedding storage and cosine-similarity search for one project index.

    Only handed out by Database once the table exists and holds at least one
    vector; its absence means keyword-only mode.
    """

    def __init__(self, db: "Database"):
        self.db = db

    @staticmethod
    def create(cursor: sqlite3.Cursor) -> None:
        cursor.execute(VECTOR_TABLE_SQL)

    def upsert(
        self,
        items: list[tuple[str, np.ndarray]],
        cursor: sqlite3.Cursor | None = None,
    ) -> None:
        """Insert or replace vectors keyed by chunk id."""
        rows = [(chunk_id, int(len(vec)), to_blob(vec)) for chunk_id, vec in items]
        sql = f"INSERT OR REPLACE INTO {VECTOR_TABLE} (chunk_id, dims, embedding) VALUES (?, ?, ?)"
        if cursor is not None:
            cursor.executemany(sql, rows)
            return
        with self.db._write_cursor() as cur:
            cur.executemany(sql, rows)

    def remove(self, chunk_ids: list[str], cursor: sqlite3.Cursor | None = None) -> int:
        """Delete vectors for the given chunk ids, returning the row count."""
        if not chunk_ids:
            return 0
        placeholders = ",".join("?" * len(chunk_ids))
        sql = f"DELETE FROM {VECTOR_TABLE} WHERE chunk_id IN ({placeholders})"
        if cursor is not None:
            cursor.execute(sql, list(chunk_ids))
            return cursor.rowcount
        with self.db._write_cursor() as cur:
            cur.execute(sql, list(chunk_ids))
            return cur.rowcount

    def count(self) -> int:
        with self.db._read_cursor() as cursor:
            cursor.execute(f"SELECT COUNT(*) AS c FROM {VECTOR_TABLE}")
            return cursor.fetchone()["c"]

    def get(self, chunk_ids: list[str]) -> dict[str, np.ndarray]:
        """Fetch stored vectors by chunk id."""
        if not chunk_ids:
            return {}
        placeholders = ",".join("?" * len(chunk_ids))
        with self.db._read_cursor() as cursor:
            cursor.execute(
                f"SELECT chunk_id, embedding FROM {VECTOR_TABLE} WHERE chunk_id IN ({placeholders})",
                list(chunk_ids),
            )
            return {row["chunk_id"]: from_blob(row["embedding"]) for row in cursor.fetchall()}

    def search(self, query_embedding: np.ndarray, limit: int = 20) -> list[tuple[str, float]]:
        """
        Return up to limit (chunk_id, cosine similarity) pairs, best first.

        Vectors whose dimension differs from the query are ignored.
        """
        query_vec = np.asarray(query_embedding, dtype=np.float32)
        with self.db._read_cursor() as cursor:
            cursor.execute(
                f"SELECT chunk_id, embedding FROM {VECTOR_TABLE} WHERE dims = ? ORDER BY chunk_id",
                (int(query_vec.shape[0]),),
            )
            rows = cursor.fetchall()

        if not rows:
            return []

        ids = [row["chunk_id"] for row in rows]
        matrix = np.vstack([from_blob(row["embedding"]) for row in rows])
        scores = batch_cosine_similarity(query_vec, matrix)

        # Stable sort keeps chunk_id order among equal scores
        top_indices = np.argsort(-scores, kind="stable")[:limit]
        return [(ids[i], float(scores[i])) for i in top_indices]
