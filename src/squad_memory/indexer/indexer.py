"""Main indexer that keeps a project's memory index in sync with its files."""

import fcntl
import logging
import threading
from collections.abc import Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from pathlib import Path

from squad_memory.config import Config
from squad_memory.embeddings import EmbeddingProvider
from squad_memory.errors import ParseError, ProviderUnavailable
from squad_memory.indexer.chunker import Chunker
from squad_memory.indexer.database import Database
from squad_memory.indexer.models import Chunk, SyncResult
from squad_memory.indexer.parser import DocumentStore
from squad_memory.indexer.walker import compute_hash, walk_memory_dir

logger = logging.getLogger(__name__)


@contextmanager
def project_lock(lock_file: Path) -> Iterator[None]:
    """Advisory lock so only one process writes a project's index at a time."""
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    with lock_file.open("w") as fh:
        fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)


class Indexer:
    """
    Incrementally syncs a project's memory files into the keyword and vector
    indexes.

    The markdown files are always the source of truth. Each file is committed
    as its own transaction, so an interrupted run leaves every completed file
    correctly indexed.

    Thread Safety:
        sync() is serialized by an in-process lock plus an advisory file lock
        shared with other processes. Searches never take either lock.
    """

    def __init__(
        self,
        memory_dir: Path,
        db: Database,
        store: DocumentStore,
        chunker: Chunker,
        provider: EmbeddingProvider | None,
        lock_file: Path,
        config: Config | None = None,
    ):
        self.memory_dir = memory_dir
        self.db = db
        self.store = store
        self.chunker = chunker
        self.provider = provider
        self.lock_file = lock_file
        self.config = config or Config()
        self._write_lock = threading.Lock()

    def sync(self, force: bool = False, skip_embeddings: bool = False) -> SyncResult:
        """
        Bring the index up to date with the memory directory.

        Args:
            force: Re-index every file even if its hash is unchanged
            skip_embeddings: Index keyword-only for this run

        Returns:
            SyncResult with aggregate stats and per-file warnings.
        """
        with self._write_lock, project_lock(self.lock_file):
            result = SyncResult()
            stats = result.stats
            embed = self.provider is not None and not skip_embeddings
            if embed:
                self._check_provider_identity(result)

            self.memory_dir.mkdir(parents=True, exist_ok=True)
            indexed = self.db.list_file_meta()
            seen: set[str] = set()

            executor = (
                ThreadPoolExecutor(
                    max_workers=self.config.embed_concurrency,
                    thread_name_prefix="memory-embed",
                )
                if embed
                else None
            )
            try:
                for file_info in walk_memory_dir(self.memory_dir):
                    path = file_info.relative_path
                    seen.add(path)
                    stats.files_scanned += 1

                    try:
                        raw = file_info.path.read_bytes()
                    except OSError as e:
                        self._warn(result, f"Cannot read {path}: {e}")
                        continue

                    previous = indexed.get(path)
                    if previous and previous.file_hash == compute_hash(raw) and not force:
                        stats.files_skipped += 1
                        continue

                    try:
                        document = self.store.parse(raw, path)
                    except ParseError as e:
                        self._warn(result, f"Skipping {e}")
                        continue

                    chunks = self.chunker.chunk(document)
                    if executor is not None:
                        self._embed_chunks(executor, chunks, result)

                    removed = self.db.replace_file(document, chunks, previous, force=force)
                    stats.files_changed += 1
                    stats.chunks_added += len(chunks)
                    stats.chunks_removed += removed
                    logger.debug(
                        "Indexed %s: %d chunk(s), %d removed", path, len(chunks), removed
                    )
            finally:
                if executor is not None:
                    executor.shutdown(wait=False, cancel_futures=True)

            for path, previous in indexed.items():
                if path in seen:
                    continue
                stats.chunks_removed += self.db.remove_file(path, previous, force=force)
                stats.files_removed += 1
                logger.debug("Removed %s from index", path)

            if force:
                stats.chunks_removed += self.db.purge_orphan_chunks()

            self.db.set_meta(
                {
                    "chunk_target_tokens": str(self.chunker.target_tokens),
                    "chunk_overlap_tokens": str(self.chunker.overlap_tokens),
                }
            )

            logger.info(
                "Sync complete: %d scanned, %d changed, %d skipped, %d removed "
                "(%d chunks added, %d removed, %d warnings)",
                stats.files_scanned,
                stats.files_changed,
                stats.files_skipped,
                stats.files_removed,
                stats.chunks_added,
                stats.chunks_removed,
                len(result.warnings),
            )
            return result

    def _warn(self, result: SyncResult, message: str) -> None:
        logger.warning(message)
        result.warnings.append(message)

    def _check_provider_identity(self, result: SyncResult) -> None:
        """Drop stored vectors built by a different provider, model or dimension."""
        provider, model, dimension = self.provider.identity
        stored = (
            self.db.get_meta("embedding_provider"),
            self.db.get_meta("embedding_model"),
            self.db.get_meta("embedding_dimension"),
        )
        current = (provider, model, str(dimension))
        if stored[0] is not None and stored != current:
            self.db.drop_vectors()
            self._warn(
                result,
                f"Embedding provider changed from {stored[0]}/{stored[1]} to "
                f"{provider}/{model}; stored vectors dropped, reindex with force to re-embed",
            )
        self.db.set_meta(
            {
                "embedding_provider": provider,
                "embedding_model": model,
                "embedding_dimension": str(dimension),
            }
        )

    def _embed_chunks(
        self,
        executor: ThreadPoolExecutor,
        chunks: list[Chunk],
        result: SyncResult,
    ) -> None:
        """
        Fill in chunk embeddings in bounded batches.

        A failed or timed-out batch leaves its chunks with embedding None.
        """
        batch_size = min(self.config.embed_batch_size, self.provider.max_batch_size)
        batches = [chunks[i : i + batch_size] for i in range(0, len(chunks), batch_size)]
        futures: list[Future] = [
            executor.submit(self.provider.embed, [c.text for c in batch]) for batch in batches
        ]

        for batch, future in zip(batches, futures):
            path = batch[0].document_path
            try:
                vectors = future.result(timeout=self.config.embed_timeout)
            except FutureTimeoutError:
                future.cancel()
                self._warn(result, f"Embedding timed out for {len(batch)} chunk(s) of {path}")
                continue
            except ProviderUnavailable as e:
                self._warn(result, f"Embedding failed for {len(batch)} chunk(s) of {path}: {e}")
                continue

            for chunk, vector in zip(batch, vectors):
                chunk.embedding = vector
