"""Shared fixtures and fake embedding providers for squad-memory tests."""

import hashlib
import os
import re
import shutil
import threading
from pathlib import Path

import numpy as np
import pytest

from squad_memory.config import Config, reset_config
from squad_memory.embeddings import EmbeddingProvider, ProviderKind
from squad_memory.errors import ProviderUnavailable

FIXTURES_ROOT = Path(__file__).parent / "fixtures"

WORD_PATTERN = re.compile(r"[a-z0-9]+")


class HashingProvider(EmbeddingProvider):
    """Deterministic bag-of-words embeddings; texts sharing words are similar."""

    kind = ProviderKind.OPENAI

    def __init__(self, dimension: int = 256, model: str = "hashing-test"):
        self.model = model
        self.dimension = dimension
        self.max_batch_size = 16
        self.calls: list[list[str]] = []
        self._lock = threading.Lock()

    def embed(self, texts: list[str]) -> list[np.ndarray]:
        with self._lock:
            self.calls.append(list(texts))
        return [self._vector(text) for text in texts]

    def _vector(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for word in WORD_PATTERN.findall(text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        return vector


class FailingProvider(EmbeddingProvider):
    """Provider whose backend is always down."""

    kind = ProviderKind.VOYAGE
    model = "voyage-3"
    dimension = 1024

    def embed(self, texts: list[str]) -> list[np.ndarray]:
        raise ProviderUnavailable(self.name, "connection refused")


def write_memory(
    project: Path,
    filename: str,
    task: str,
    summary: str = "Short summary.",
    approach: str = "Short approach.",
    completed: str | None = "2026-02-10T12:00:00Z",
    extra: str = "",
) -> Path:
    """Write a memory document into <project>/.squad/memory/."""
    memory_dir = project / ".squad" / "memory"
    memory_dir.mkdir(parents=True, exist_ok=True)
    lines = ["---", f"task: {task}", "agent: test-agent"]
    if completed is not None:
        lines.append(f"completed: {completed}")
    lines += ["---", "## Summary", summary, "", "## Approach", approach, ""]
    if extra:
        lines.append(extra)
    path = memory_dir / filename
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep real API keys and settings out of every test."""
    for name in ("OPENAI_API_KEY", "GEMINI_API_KEY", "VOYAGE_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("SQUAD_MEMORY_"):
            monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config() -> Config:
    return Config()


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """An empty project with a .squad/memory directory."""
    root = tmp_path / "demo-api"
    (root / ".squad" / "memory").mkdir(parents=True)
    return root


@pytest.fixture
def fixture_project(tmp_path: Path) -> Path:
    """A project holding the three sample memory documents."""
    root = tmp_path / "demo-api"
    shutil.copytree(FIXTURES_ROOT / "memory", root / ".squad" / "memory")
    return root


@pytest.fixture
def hashing_provider() -> HashingProvider:
    return HashingProvider()


@pytest.fixture
def failing_provider() -> FailingProvider:
    return FailingProvider()


@pytest.fixture(name="write_memory")
def write_memory_fixture():
    return write_memory
