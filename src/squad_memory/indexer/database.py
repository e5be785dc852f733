"""SQLite database management for a project's memory index."""

import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from squad_memory.errors import IndexCorruption
from squad_memory.indexer.models import (
    Chunk,
    FileMeta,
    IndexStats,
    MemoryDocument,
    SectionId,
)
from squad_memory.indexer.vectors import VECTOR_TABLE, VectorIndex

SCHEMA_VERSION = "1.0"

SCHEMA_SQL = """
-- squad-memory Index Schema v1.0
-- This index is disposable: it regenerates from .squad/memory/*.md

PRAGMA journal_mode = WAL;

-- Chunks table
CREATE TABLE IF NOT EXISTS chunks (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    chunk_id     TEXT NOT NULL UNIQUE,
    path         TEXT NOT NULL,
    task_id      TEXT NOT NULL,
    section      TEXT NOT NULL,
    seq          INTEGER NOT NULL,
    start_line   INTEGER NOT NULL,
    end_line     INTEGER NOT NULL,
    content      TEXT NOT NULL,
    token_count  INTEGER NOT NULL DEFAULT 0,
    created_at   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_chunks_path ON chunks(path);
CREATE INDEX IF NOT EXISTS idx_chunks_task ON chunks(task_id);
CREATE INDEX IF NOT EXISTS idx_chunks_section ON chunks(section);

-- FTS5 virtual table (BM25 keyword index)
CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(
    content,
    section,
    task_id UNINDEXED,
    content='chunks',
    content_rowid='id',
    tokenize='porter unicode61'
);

-- Triggers to keep FTS5 synchronized
CREATE TRIGGER IF NOT EXISTS chunks_ai AFTER INSERT ON chunks BEGIN
    INSERT INTO chunks_fts(rowid, content, section, task_id)
    VALUES (NEW.id, NEW.content, NEW.section, NEW.task_id);
END;

CREATE TRIGGER IF NOT EXISTS chunks_ad AFTER DELETE ON chunks BEGIN
    INSERT INTO chunks_fts(chunks_fts, rowid, content, section, task_id)
    VALUES ('delete', OLD.id, OLD.content, OLD.section, OLD.task_id);
END;

CREATE TRIGGER IF NOT EXISTS chunks_au AFTER UPDATE ON chunks BEGIN
    INSERT INTO chunks_fts(chunks_fts, rowid, content, section, task_id)
    VALUES ('delete', OLD.id, OLD.content, OLD.section, OLD.task_id);
    INSERT INTO chunks_fts(rowid, content, section, task_id)
    VALUES (NEW.id, NEW.content, NEW.section, NEW.task_id);
END;

-- Per-file bookkeeping for incremental sync
CREATE TABLE IF NOT EXISTS file_meta (
    path          TEXT PRIMARY KEY,
    task_id       TEXT NOT NULL,
    project       TEXT NOT NULL,
    agent         TEXT,
    completed_at  TEXT,
    file_hash     TEXT NOT NULL,
    chunk_ids     TEXT NOT NULL DEFAULT '[]',
    indexed_at    TEXT NOT NULL,
    tags          TEXT NOT NULL DEFAULT '[]',
    labels        TEXT NOT NULL DEFAULT '[]',
    files_touched TEXT NOT NULL DEFAULT '[]',
    priority      INTEGER,
    issue_type    TEXT,
    risk          TEXT
);

CREATE INDEX IF NOT EXISTS idx_meta_task ON file_meta(task_id);
CREATE INDEX IF NOT EXISTS idx_meta_completed ON file_meta(completed_at);

-- Index settings (embedding provider, chunk sizes)
CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT
);

INSERT OR REPLACE INTO meta (key, value) VALUES ('schema_version', '1.0');
"""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _placeholders(values) -> str:
    return ",".join("?" * len(values))


class Database:
    """SQLite database for one project's memory index.

    Reads use thread-local connections and need no coordination; writes are
    serialized through a lock and committed per call.
    """

    # Snippet configuration for FTS5 search results
    SNIPPET_COLUMN_INDEX = 0  # content is the first column in chunks_fts
    SNIPPET_HIGHLIGHT_START = ">>>"
    SNIPPET_HIGHLIGHT_END = "<<<"
    SNIPPET_ELLIPSIS = "..."
    SNIPPET_MAX_TOKENS = 64

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        self._local = threading.local()
        self._write_lock = threading.Lock()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), timeout=30.0, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return self._local.conn

    @contextmanager
    def _read_cursor(self) -> Iterator[sqlite3.Cursor]:
        """Get a cursor for read operations."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
        finally:
            cursor.close()

    @contextmanager
    def _write_cursor(self) -> Iterator[sqlite3.Cursor]:
        """Get a cursor for write operations with locking."""
        with self._write_lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    def initialize(self) -> None:
        """Initialize the database schema."""
        with self._write_cursor() as cursor:
            cursor.executescript(SCHEMA_SQL)

    def close(self) -> None:
        """Close every connection opened by this database."""
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()

    # Settings

    def get_meta(self, key: str) -> str | None:
        with self._read_cursor() as cursor:
            cursor.execute("SELECT value FROM meta WHERE key = ?", (key,))
            row = cursor.fetchone()
            return row["value"] if row else None

    def set_meta(self, values: dict[str, str | None]) -> None:
        """Set several settings at once; None values delete the key."""
        with self._write_cursor() as cursor:
            for key, value in values.items():
                if value is None:
                    cursor.execute("DELETE FROM meta WHERE key = ?", (key,))
                else:
                    cursor.execute(
                        "INSERT INTO meta (key, value) VALUES (?, ?) "
                        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                        (key, str(value)),
                    )

    # Vector index

    def _has_vector_table(self, cursor: sqlite3.Cursor) -> bool:
        cursor.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
            (VECTOR_TABLE,),
        )
        return cursor.fetchone() is not None

    def vector_index(self) -> VectorIndex | None:
        """Return the vector index if at least one embedded chunk exists."""
        with self._read_cursor() as cursor:
            if not self._has_vector_table(cursor):
                return None
            cursor.execute(f"SELECT 1 FROM {VECTOR_TABLE} LIMIT 1")
            if cursor.fetchone() is None:
                return None
        return VectorIndex(self)

    def drop_vectors(self) -> None:
        """Discard every stored embedding (e.g. after a provider change)."""
        with self._write_cursor() as cursor:
            cursor.execute(f"DROP TABLE IF EXISTS {VECTOR_TABLE}")

    # File metadata

    def get_file_meta(self, path: str) -> FileMeta | None:
        with self._read_cursor() as cursor:
            cursor.execute("SELECT * FROM file_meta WHERE path = ?", (path,))
            row = cursor.fetchone()
            return self._row_to_file_meta(row) if row else None

    def list_file_meta(self) -> dict[str, FileMeta]:
        """All file metadata keyed by path."""
        with self._read_cursor() as cursor:
            cursor.execute("SELECT * FROM file_meta ORDER BY path")
            return {row["path"]: self._row_to_file_meta(row) for row in cursor.fetchall()}

    def _row_to_file_meta(self, row: sqlite3.Row) -> FileMeta:
        return FileMeta(
            path=row["path"],
            file_hash=row["file_hash"],
            last_indexed_at=datetime.fromisoformat(row["indexed_at"]),
            chunk_ids=json.loads(row["chunk_ids"]),
            task_id=row["task_id"],
            project=row["project"],
            agent=row["agent"] or "",
            completed_at=_from_iso(row["completed_at"]),
        )

    # Per-file writes (each call is one transaction)

    def _chunk_ids_for_path(self, cursor: sqlite3.Cursor, path: str) -> set[str]:
        cursor.execute("SELECT chunk_id FROM chunks WHERE path = ?", (path,))
        return {row["chunk_id"] for row in cursor.fetchall()}

    def _delete_chunks(self, cursor: sqlite3.Cursor, chunk_ids: list[str]) -> int:
        if not chunk_ids:
            return 0
        if self._has_vector_table(cursor):
            VectorIndex(self).remove(chunk_ids, cursor=cursor)
        cursor.execute(
            f"DELETE FROM chunks WHERE chunk_id IN ({_placeholders(chunk_ids)})",
            chunk_ids,
        )
        return cursor.rowcount

    def _stale_chunk_ids(
        self,
        cursor: sqlite3.Cursor,
        path: str,
        previous: FileMeta | None,
        force: bool,
    ) -> list[str]:
        """Chunk ids to delete for path, checking them against file metadata."""
        expected = set(previous.chunk_ids) if previous else set()
        actual = self._chunk_ids_for_path(cursor, path)
        if actual != expected and not force:
            raise IndexCorruption(path, expected, actual)
        return sorted(expected | actual)

    def replace_file(
        self,
        document: MemoryDocument,
        chunks: list[Chunk],
        previous: FileMeta | None,
        force: bool = False,
    ) -> int:
        """
        Atomically swap a document's chunks, vectors and metadata.

        Returns:
            Number of previous chunk rows removed.

        Raises:
            IndexCorruption: If stored chunk rows disagree with previous and
                force is False.
        """
        now = _now().isoformat()
        with self._write_cursor() as cursor:
            stale = self._stale_chunk_ids(cursor, document.path, previous, force)
            removed = self._delete_chunks(cursor, stale)

            cursor.executemany(
                """INSERT INTO chunks
                (chunk_id, path, task_id, section, seq, start_line, end_line, content, token_count, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    (
                        chunk.id,
                        chunk.document_path,
                        document.task_id,
                        chunk.section_id.value,
                        chunk.sequence,
                        chunk.start_line,
                        chunk.end_line,
                        chunk.text,
                        chunk.token_count,
                        now,
                    )
                    for chunk in chunks
                ],
            )

            embedded = [(c.id, c.embedding) for c in chunks if c.embedding is not None]
            if embedded:
                VectorIndex.create(cursor)
                VectorIndex(self).upsert(embedded, cursor=cursor)

            cursor.execute(
                """INSERT INTO file_meta
                (path, task_id, project, agent, completed_at, file_hash, chunk_ids, indexed_at,
                 tags, labels, files_touched, priority, issue_type, risk)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    task_id = excluded.task_id,
                    project = excluded.project,
                    agent = excluded.agent,
                    completed_at = excluded.completed_at,
                    file_hash = excluded.file_hash,
                    chunk_ids = excluded.chunk_ids,
                    indexed_at = excluded.indexed_at,
                    tags = excluded.tags,
                    labels = excluded.labels,
                    files_touched = excluded.files_touched,
                    priority = excluded.priority,
                    issue_type = excluded.issue_type,
                    risk = excluded.risk
                """,
                (
                    document.path,
                    document.task_id,
                    document.project,
                    document.agent,
                    _to_iso(document.completed_at),
                    document.content_hash,
                    json.dumps([c.id for c in chunks]),
                    now,
                    json.dumps(sorted(document.tags)),
                    json.dumps(sorted(document.labels)),
                    json.dumps(document.files),
                    document.priority,
                    document.type.value if document.type else None,
                    document.risk.value if document.risk else None,
                ),
            )
            return removed

    def remove_file(self, path: str, previous: FileMeta | None, force: bool = False) -> int:
        """Remove a deleted document's chunks and metadata atomically."""
        with self._write_cursor() as cursor:
            stale = self._stale_chunk_ids(cursor, path, previous, force)
            removed = self._delete_chunks(cursor, stale)
            cursor.execute("DELETE FROM file_meta WHERE path = ?", (path,))
            return removed

    def purge_orphan_chunks(self) -> int:
        """Delete chunks whose path has no file metadata row."""
        with self._write_cursor() as cursor:
            cursor.execute(
                "SELECT chunk_id FROM chunks WHERE path NOT IN (SELECT path FROM file_meta)"
            )
            orphans = [row["chunk_id"] for row in cursor.fetchall()]
            return self._delete_chunks(cursor, orphans)

    # Chunk reads

    def _row_to_chunk(self, row: sqlite3.Row) -> Chunk:
        return Chunk(
            id=row["chunk_id"],
            document_path=row["path"],
            section_id=SectionId(row["section"]),
            sequence=row["seq"],
            text=row["content"],
            token_count=row["token_count"],
            start_line=row["start_line"],
            end_line=row["end_line"],
            task_id=row["task_id"],
        )

    def get_chunks_for_path(self, path: str) -> list[Chunk]:
        """Chunks of one document in chunking order, embeddings attached."""
        with self._read_cursor() as cursor:
            cursor.execute("SELECT * FROM chunks WHERE path = ? ORDER BY id", (path,))
            chunks = [self._row_to_chunk(row) for row in cursor.fetchall()]

        vector_index = self.vector_index()
        if vector_index is not None:
            vectors = vector_index.get([c.id for c in chunks])
            for chunk in chunks:
                chunk.embedding = vectors.get(chunk.id)
        return chunks

    def get_chunks(self, chunk_ids: list[str]) -> dict[str, tuple[Chunk, datetime | None]]:
        """Chunks by id, each paired with its document's completion time."""
        if not chunk_ids:
            return {}
        with self._read_cursor() as cursor:
            cursor.execute(
                f"""SELECT c.*, m.completed_at FROM chunks c
                LEFT JOIN file_meta m ON m.path = c.path
                WHERE c.chunk_id IN ({_placeholders(chunk_ids)})""",
                list(chunk_ids),
            )
            return {
                row["chunk_id"]: (self._row_to_chunk(row), _from_iso(row["completed_at"]))
                for row in cursor.fetchall()
            }

    # Search operations

    def keyword_search(self, match_query: str, limit: int = 20) -> list[tuple[str, str, float]]:
        """
        BM25 search over chunk content.

        Returns (chunk_id, snippet, bm25) tuples best first. FTS5 bm25() is
        negative, lower is better.
        """
        snippet_func = (
            f"snippet(chunks_fts, {self.SNIPPET_COLUMN_INDEX}, "
            f"'{self.SNIPPET_HIGHLIGHT_START}', '{self.SNIPPET_HIGHLIGHT_END}', "
            f"'{self.SNIPPET_ELLIPSIS}', {self.SNIPPET_MAX_TOKENS})"
        )
        with self._read_cursor() as cursor:
            cursor.execute(
                f"""SELECT c.chunk_id, {snippet_func} AS snippet, bm25(chunks_fts) AS score
                FROM chunks_fts
                JOIN chunks c ON chunks_fts.rowid = c.id
                WHERE chunks_fts MATCH ?
                ORDER BY score, c.chunk_id
                LIMIT ?""",
                (match_query, limit),
            )
            return [(row["chunk_id"], row["snippet"], row["score"]) for row in cursor.fetchall()]

    def get_stats(self) -> IndexStats:
        """Counts and settings describing the index."""
        with self._read_cursor() as cursor:
            cursor.execute("SELECT COUNT(*) AS c, MAX(indexed_at) AS last FROM file_meta")
            row = cursor.fetchone()
            document_count, last_indexed = row["c"], row["last"]

            cursor.execute("SELECT COUNT(*) AS c FROM chunks")
            chunk_count = cursor.fetchone()["c"]

            embedded = 0
            if self._has_vector_table(cursor):
                cursor.execute(
                    f"SELECT COUNT(*) AS c FROM {VECTOR_TABLE} v "
                    "JOIN chunks c ON c.chunk_id = v.chunk_id"
                )
                embedded = cursor.fetchone()["c"]

        dimension = self.get_meta("embedding_dimension")
        return IndexStats(
            document_count=document_count,
            chunk_count=chunk_count,
            embedded_chunk_count=embedded,
            last_indexed_at=_from_iso(last_indexed),
            embedding_provider=self.get_meta("embedding_provider"),
            embedding_model=self.get_meta("embedding_model"),
            embedding_dimension=int(dimension) if dimension else None,
        )
