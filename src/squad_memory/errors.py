"""Exceptions raised by the memory index."""


class MemoryIndexError(Exception):
    """Base class for memory index errors."""

    pass


class ParseError(MemoryIndexError):
    """Raised when a memory document cannot be parsed.

    Recoverable: the file is skipped and the sync continues.
    """

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class ProviderUnavailable(MemoryIndexError):
    """Raised when an embedding backend cannot produce vectors."""

    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__(f"{provider} embeddings unavailable: {reason}")


class InvalidQuery(MemoryIndexError):
    """Raised for an empty or whitespace-only search query."""

    pass


class IndexCorruption(MemoryIndexError):
    """Raised when stored chunk rows disagree with a file's metadata.

    Only a forced rebuild recovers from this.
    """

    def __init__(self, path: str, expected: set[str], actual: set[str]):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Chunk rows for {path} do not match file metadata "
            f"(expected {len(expected)}, found {len(actual)}); run a forced reindex"
        )
