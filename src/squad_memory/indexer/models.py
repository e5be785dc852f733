"""Data models for the memory index."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

import numpy as np


class SectionId(str, Enum):
    """Known sections of a memory document, in canonical order."""

    SUMMARY = "summary"
    APPROACH = "approach"
    DECISIONS = "decisions"
    KEY_FILES = "key_files"
    LESSONS = "lessons"
    CROSS_AGENT_INTEL = "cross_agent_intel"


REQUIRED_SECTIONS = (SectionId.SUMMARY, SectionId.APPROACH)


class IssueType(str, Enum):
    BUG = "bug"
    FEATURE = "feature"
    TASK = "task"
    CHORE = "chore"


class Risk(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ResultSource(str, Enum):
    """Which retrieval method(s) produced a search result."""

    BM25 = "bm25"
    VECTOR = "vector"
    HYBRID = "hybrid"


@dataclass
class Section:
    """A named region of a memory document.

    start_line is the 1-based line of the heading, end_line the last line
    before the next heading. text_line is the line the stripped text starts on.
    """

    section_id: SectionId
    text: str
    start_line: int
    end_line: int
    text_line: int = 0


@dataclass
class MemoryDocument:
    """One parsed memory file."""

    path: str  # Relative to the memory directory
    task_id: str
    agent: str = ""
    project: str = ""
    completed_at: datetime | None = None
    files: list[str] = field(default_factory=list)
    tags: set[str] = field(default_factory=set)
    labels: set[str] = field(default_factory=set)
    priority: int | None = None
    type: IssueType | None = None
    risk: Risk | None = None
    content_hash: str = ""
    sections: list[Section] = field(default_factory=list)

    def get_section(self, section_id: SectionId) -> Section | None:
        for section in self.sections:
            if section.section_id == section_id:
                return section
        return None


@dataclass
class Chunk:
    """Unit of retrieval: a token-bounded slice of one section."""

    id: str
    document_path: str
    section_id: SectionId
    sequence: int
    text: str
    token_count: int
    start_line: int
    end_line: int
    task_id: str = ""
    embedding: np.ndarray | None = None


@dataclass
class FileMeta:
    """Incremental-sync bookkeeping for one document path."""

    path: str
    file_hash: str
    last_indexed_at: datetime
    chunk_ids: list[str] = field(default_factory=list)
    task_id: str = ""
    project: str = ""
    agent: str = ""
    completed_at: datetime | None = None


@dataclass
class SearchResult:
    """A ranked hit returned to callers. Not persisted."""

    chunk_id: str
    path: str
    task_id: str
    section: str
    snippet: str
    score: float
    start_line: int
    end_line: int
    source: ResultSource
    completed_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "chunk_id": self.chunk_id,
            "path": self.path,
            "task_id": self.task_id,
            "section": self.section,
            "snippet": self.snippet,
            "score": round(self.score, 4),
            "start_line": self.start_line,
            "end_line": self.end_line,
            "source": self.source.value,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class SyncStats:
    """Aggregate counters for one sync run."""

    files_scanned: int = 0
    files_changed: int = 0
    files_skipped: int = 0
    files_removed: int = 0
    chunks_added: int = 0
    chunks_removed: int = 0


@dataclass
class SyncResult:
    """Stats plus the per-file warnings collected during a sync."""

    stats: SyncStats = field(default_factory=SyncStats)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "files_scanned": self.stats.files_scanned,
            "files_changed": self.stats.files_changed,
            "files_skipped": self.stats.files_skipped,
            "files_removed": self.stats.files_removed,
            "chunks_added": self.stats.chunks_added,
            "chunks_removed": self.stats.chunks_removed,
            "warnings": list(self.warnings),
        }


@dataclass
class IndexStats:
    """Summary of what a project's index currently holds."""

    document_count: int = 0
    chunk_count: int = 0
    embedded_chunk_count: int = 0
    last_indexed_at: datetime | None = None
    embedding_provider: str | None = None
    embedding_model: str | None = None
    embedding_dimension: int | None = None

    def to_dict(self) -> dict:
        return {
            "document_count": self.document_count,
            "chunk_count": self.chunk_count,
            "embedded_chunk_count": self.embedded_chunk_count,
            "last_indexed_at": (
                self.last_indexed_at.isoformat() if self.last_indexed_at else None
            ),
            "embedding_provider": self.embedding_provider,
            "embedding_model": self.embedding_model,
            "embedding_dimension": self.embedding_dimension,
        }
