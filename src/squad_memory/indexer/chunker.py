"""Chunking logic: token windows that never cross a section boundary."""

import hashlib
import re
from collections import defaultdict

from squad_memory.indexer.models import Chunk, MemoryDocument, Section, SectionId

# Target tokens per chunk
CHUNK_TARGET_TOKENS = 500

# Tokens shared by adjacent chunks of the same section
CHUNK_OVERLAP_TOKENS = 50

# Sections below this size are always a single chunk
MIN_SPLIT_TOKENS = 100

TOKEN_PATTERN = re.compile(r"\S+")


def count_tokens(text: str) -> int:
    """Count whitespace-delimited tokens."""
    return sum(1 for _ in TOKEN_PATTERN.finditer(text))


def token_spans(text: str) -> list[tuple[int, int]]:
    """Return (start, end) character offsets of every token in text."""
    return [m.span() for m in TOKEN_PATTERN.finditer(text)]


def make_chunk_id(document_path: str, section_id: SectionId, sequence: int) -> str:
    """Stable chunk id derived from path, section and sequence index."""
    key = f"{document_path}|{section_id.value}|{sequence}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]


def window_bounds(n_tokens: int, target: int, overlap: int) -> list[tuple[int, int]]:
    """
    Compute [start, end) token windows over n_tokens.

    Windows advance by target - overlap and the last window ends exactly at
    n_tokens.
    """
    if n_tokens <= target:
        return [(0, n_tokens)]

    stride = target - overlap
    bounds: list[tuple[int, int]] = []
    start = 0
    while True:
        end = min(start + target, n_tokens)
        bounds.append((start, end))
        if end == n_tokens:
            break
        start += stride
    return bounds


class Chunker:
    """Splits parsed documents into ordered, deterministic chunks."""

    def __init__(
        self,
        target_tokens: int = CHUNK_TARGET_TOKENS,
        overlap_tokens: int = CHUNK_OVERLAP_TOKENS,
        min_split_tokens: int = MIN_SPLIT_TOKENS,
    ):
        if target_tokens <= 0:
            raise ValueError(f"target_tokens must be positive, got {target_tokens}")
        if not 0 <= overlap_tokens < target_tokens:
            raise ValueError(
                f"overlap_tokens must be in [0, {target_tokens}), got {overlap_tokens}"
            )
        self.target_tokens = target_tokens
        self.overlap_tokens = overlap_tokens
        self.min_split_tokens = min_split_tokens

    def chunk(self, document: MemoryDocument) -> list[Chunk]:
        """Chunk every section of a document, in document order."""
        sequences: dict[SectionId, int] = defaultdict(int)
        chunks: list[Chunk] = []

        for section in document.sections:
            for text, n_tokens, start_char, end_char in self._split(section):
                sequence = sequences[section.section_id]
                sequences[section.section_id] += 1
                chunks.append(
                    Chunk(
                        id=make_chunk_id(document.path, section.section_id, sequence),
                        document_path=document.path,
                        section_id=section.section_id,
                        sequence=sequence,
                        text=text,
                        token_count=n_tokens,
                        start_line=section.text_line + section.text.count("\n", 0, start_char),
                        end_line=section.text_line + section.text.count("\n", 0, end_char),
                        task_id=document.task_id,
                    )
                )

        return chunks

    def _split(self, section: Section) -> list[tuple[str, int, int, int]]:
        """Return (text, token_count, start_char, end_char) per window."""
        spans = token_spans(section.text)
        if not spans:
            return []

        if len(spans) < self.min_split_tokens:
            return [(section.text, len(spans), 0, len(section.text))]

        windows = []
        for start, end in window_bounds(len(spans), self.target_tokens, self.overlap_tokens):
            start_char = spans[start][0]
            end_char = spans[end - 1][1]
            windows.append(
                (section.text[start_char:end_char], end - start, start_char, end_char)
            )
        return windows


def chunk_document(
    document: MemoryDocument,
    target_tokens: int = CHUNK_TARGET_TOKENS,
    overlap_tokens: int = CHUNK_OVERLAP_TOKENS,
) -> list[Chunk]:
    """Chunk a document with the given window settings."""
    return Chunker(target_tokens, overlap_tokens).chunk(document)
