"""Per-project memory index handle and the public index/search/stats API."""

import logging
from pathlib import Path

from squad_memory.config import Config, get_config
from squad_memory.embeddings import EmbeddingProvider, create_provider
from squad_memory.indexer import (
    Chunker,
    Database,
    DocumentStore,
    Indexer,
    IndexStats,
    SearchEngine,
    SearchResult,
    SyncResult,
)
from squad_memory.indexer.walker import index_path_for, lock_path_for, memory_dir_for

logger = logging.getLogger(__name__)

# Sentinel: pick the provider from configuration
AUTO = object()


class MemoryIndex:
    """
    Explicit handle on one project's memory index.

    Owns the database connection(s), document store, chunker, embedding
    provider, indexer and search engine. Handles for different projects
    share nothing.
    """

    def __init__(
        self,
        project_path: Path | str,
        config: Config | None = None,
        provider: EmbeddingProvider | None | object = AUTO,
    ):
        self.project_path = Path(project_path).expanduser().resolve()
        self.config = config or get_config()
        self.provider: EmbeddingProvider | None = (
            create_provider(self.config) if provider is AUTO else provider
        )

        self.memory_dir = memory_dir_for(self.project_path)
        self.db = Database(index_path_for(self.project_path))
        self.db.initialize()

        self.store = DocumentStore(self.memory_dir, project_name=self.project_path.name)
        self.chunker = Chunker(self.config.chunk_tokens, self.config.overlap_tokens)
        self.indexer = Indexer(
            memory_dir=self.memory_dir,
            db=self.db,
            store=self.store,
            chunker=self.chunker,
            provider=self.provider,
            lock_file=lock_path_for(self.project_path),
            config=self.config,
        )
        self.engine = SearchEngine(
            self.db,
            self.provider,
            candidates=self.config.candidates,
            rrf_k=self.config.rrf_k,
            default_limit=self.config.result_limit,
        )

    @property
    def name(self) -> str:
        return self.project_path.name

    def index(self, force: bool = False, skip_embeddings: bool = False) -> SyncResult:
        """Incrementally (or with force, fully) re-index the project."""
        logger.info("Indexing %s (force=%s)", self.project_path, force)
        return self.indexer.sync(force=force, skip_embeddings=skip_embeddings)

    def search(
        self,
        query: str,
        limit: int | None = None,
        min_score: float = 0.0,
    ) -> list[SearchResult]:
        return self.engine.search(query, limit=limit, min_score=min_score)

    def stats(self) -> IndexStats:
        return self.db.get_stats()

    def close(self) -> None:
        """Close database connections and worker threads."""
        self.engine.close()
        self.db.close()

    def __enter__(self) -> "MemoryIndex":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def index(
    project_path: Path | str,
    force: bool = False,
    skip_embeddings: bool = False,
    config: Config | None = None,
) -> SyncResult:
    """Index a project's memory files."""
    with MemoryIndex(project_path, config=config) as memory:
        return memory.index(force=force, skip_embeddings=skip_embeddings)


def search(
    project_path: Path | str,
    query: str,
    limit: int | None = None,
    config: Config | None = None,
) -> list[SearchResult]:
    """Search a project's memory index."""
    with MemoryIndex(project_path, config=config) as memory:
        return memory.search(query, limit=limit)


def stats(project_path: Path | str, config: Config | None = None) -> IndexStats:
    """Report what a project's memory index holds."""
    with MemoryIndex(project_path, config=config, provider=None) as memory:
        return memory.stats()
