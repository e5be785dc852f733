"""Hybrid search: BM25 keyword hits and vector hits merged with RRF."""

import logging
import math
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime

from squad_memory.embeddings import EmbeddingProvider
from squad_memory.errors import InvalidQuery, ProviderUnavailable
from squad_memory.indexer.database import Database
from squad_memory.indexer.models import ResultSource, SearchResult

logger = logging.getLogger(__name__)

# Constant from the RRF paper (Cormack et al., 2009)
RRF_K = 60

DEFAULT_CANDIDATES = 20
DEFAULT_LIMIT = 5

# Characters of leading chunk text used as the snippet of vector-only hits
LEADING_SNIPPET_CHARS = 240


@dataclass
class FusedHit:
    """A chunk's combined RRF score and the lists it appeared in."""

    chunk_id: str
    score: float = 0.0
    sources: set[ResultSource] = field(default_factory=set)

    @property
    def source(self) -> ResultSource:
        if len(self.sources) > 1:
            return ResultSource.HYBRID
        return next(iter(self.sources))


def build_match_query(query: str) -> str:
    """
    Turn free text into a safe FTS5 MATCH expression.

    Every token is quoted so punctuation never reaches the FTS5 parser, and
    tokens are OR-ed so partial matches still rank.
    """
    tokens = query.split()
    return " OR ".join('"' + token.replace('"', '""') + '"' for token in tokens)


def reciprocal_rank_fusion(
    ranked_lists: dict[ResultSource, list[str]],
    k: int = RRF_K,
) -> list[FusedHit]:
    """
    Merge ranked lists of chunk ids.

    Each list contributes 1 / (k + rank) per chunk, rank being the 1-based
    position in that list. Returns hits in descending score order.
    """
    hits: dict[str, FusedHit] = {}
    for source, chunk_ids in ranked_lists.items():
        for rank, chunk_id in enumerate(chunk_ids, start=1):
            hit = hits.setdefault(chunk_id, FusedHit(chunk_id))
            hit.score += 1 / (k + rank)
            hit.sources.add(source)
    return sorted(hits.values(), key=lambda h: -h.score)


def leading_snippet(text: str, max_chars: int = LEADING_SNIPPET_CHARS) -> str:
    """First max_chars characters of text, with an ellipsis when cut."""
    text = text.strip()
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    space = cut.rfind(" ")
    if space > max_chars // 2:
        cut = cut[:space]
    return cut.rstrip() + "..."


def _recency_key(completed_at: datetime | None) -> float:
    # Most recent first, undated documents last
    return -completed_at.timestamp() if completed_at else math.inf


class SearchEngine:
    """
    Read-only query side of a project index.

    Any number of searches may run concurrently; they never take the
    indexer's write lock.
    """

    def __init__(
        self,
        db: Database,
        provider: EmbeddingProvider | None,
        candidates: int = DEFAULT_CANDIDATES,
        rrf_k: int = RRF_K,
        default_limit: int = DEFAULT_LIMIT,
    ):
        self.db = db
        self.provider = provider
        self.candidates = candidates
        self.rrf_k = rrf_k
        self.default_limit = default_limit
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="memory-search")

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def search(
        self,
        query: str,
        limit: int | None = None,
        min_score: float = 0.0,
    ) -> list[SearchResult]:
        """
        Search the project's memory.

        Args:
            query: Free-text query
            limit: Maximum number of results (default from config)
            min_score: Drop results whose fused score is below this

        Returns:
            Results best first; empty when nothing matches.

        Raises:
            InvalidQuery: If query is empty or whitespace.
        """
        if query is None or not query.strip():
            raise InvalidQuery("Search query must not be empty")
        limit = self.default_limit if limit is None else limit
        if limit <= 0:
            return []

        vector_future = self._executor.submit(self.vector_candidates, query)
        keyword_hits = self.keyword_candidates(query)
        vector_hits = vector_future.result()
        logger.debug(
            "Query %r: %d keyword, %d vector candidates",
            query,
            len(keyword_hits),
            len(vector_hits),
        )

        snippets = dict(keyword_hits)
        ranked: dict[ResultSource, list[str]] = {
            ResultSource.BM25: [chunk_id for chunk_id, _ in keyword_hits]
        }
        if vector_hits:
            ranked[ResultSource.VECTOR] = vector_hits

        fused = [h for h in reciprocal_rank_fusion(ranked, self.rrf_k) if h.score >= min_score]
        chunks = self.db.get_chunks([h.chunk_id for h in fused])

        def order(hit: FusedHit):
            completed_at = chunks[hit.chunk_id][1] if hit.chunk_id in chunks else None
            return (-hit.score, _recency_key(completed_at), hit.chunk_id)

        results: list[SearchResult] = []
        for hit in sorted(fused, key=order):
            if hit.chunk_id not in chunks:
                continue
            chunk, completed_at = chunks[hit.chunk_id]
            snippet = snippets.get(hit.chunk_id) or leading_snippet(chunk.text)
            results.append(
                SearchResult(
                    chunk_id=chunk.id,
                    path=chunk.document_path,
                    task_id=chunk.task_id,
                    section=chunk.section_id.value,
                    snippet=snippet,
                    score=hit.score,
                    start_line=chunk.start_line,
                    end_line=chunk.end_line,
                    source=hit.source,
                    completed_at=completed_at,
                )
            )
            if len(results) >= limit:
                break
        return results

    def keyword_candidates(self, query: str) -> list[tuple[str, str]]:
        """BM25 candidates as (chunk_id, snippet), best first."""
        match_query = build_match_query(query)
        if not match_query:
            return []
        try:
            rows = self.db.keyword_search(match_query, limit=self.candidates)
        except sqlite3.OperationalError as e:
            logger.warning("Keyword search failed for %r: %s", query, e)
            return []
        return [(chunk_id, snippet) for chunk_id, snippet, _ in rows]

    def vector_candidates(self, query: str) -> list[str]:
        """Cosine-similarity candidates, best first; empty in keyword-only mode."""
        if self.provider is None:
            return []
        vector_index = self.db.vector_index()
        if vector_index is None:
            return []

        provider, model, dimension = self.provider.identity
        stored = (
            self.db.get_meta("embedding_provider"),
            self.db.get_meta("embedding_model"),
            self.db.get_meta("embedding_dimension"),
        )
        if stored != (provider, model, str(dimension)):
            logger.warning(
                "Skipping vector search: index was embedded with %s/%s, provider is %s/%s",
                stored[0],
                stored[1],
                provider,
                model,
            )
            return []

        try:
            query_vec = self.provider.embed_query(query)
        except ProviderUnavailable as e:
            logger.warning("Skipping vector search: %s", e)
            return []

        return [chunk_id for chunk_id, _ in vector_index.search(query_vec, self.candidates)]
