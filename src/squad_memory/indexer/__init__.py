"""
Indexer package for squad-memory.

Keeps a project's markdown memory documents searchable through a BM25
keyword index (SQLite FTS5) and an optional vector index, synchronized
incrementally by content hash.
"""

from squad_memory.indexer.chunker import Chunker, chunk_document, count_tokens
from squad_memory.indexer.database import Database
from squad_memory.indexer.indexer import Indexer
from squad_memory.indexer.models import (
    Chunk,
    FileMeta,
    IndexStats,
    MemoryDocument,
    ResultSource,
    SearchResult,
    Section,
    SectionId,
    SyncResult,
    SyncStats,
)
from squad_memory.indexer.parser import DocumentStore, parse_document
from squad_memory.indexer.search import SearchEngine, reciprocal_rank_fusion
from squad_memory.indexer.vectors import VectorIndex
from squad_memory.indexer.walker import FileInfo, walk_memory_dir

__all__ = [
    "Chunk",
    "Chunker",
    "Database",
    "DocumentStore",
    "FileInfo",
    "FileMeta",
    "IndexStats",
    "Indexer",
    "MemoryDocument",
    "ResultSource",
    "SearchEngine",
    "SearchResult",
    "Section",
    "SectionId",
    "SyncResult",
    "SyncStats",
    "VectorIndex",
    "chunk_document",
    "count_tokens",
    "parse_document",
    "reciprocal_rank_fusion",
    "walk_memory_dir",
]
