"""File walker for discovering memory documents in a project."""

import hashlib
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

SQUAD_DIR = ".squad"
MEMORY_DIR = "memory"
INDEX_FILENAME = "memory.db"
LOCK_FILENAME = "memory.lock"


@dataclass
class FileInfo:
    """Information about a discovered memory file."""

    path: Path  # Absolute path
    relative_path: str  # Relative to the memory directory
    mtime: float


def compute_hash(content: bytes) -> str:
    """Compute SHA-256 hash of content."""
    return hashlib.sha256(content).hexdigest()


def memory_dir_for(project_path: Path) -> Path:
    return project_path / SQUAD_DIR / MEMORY_DIR


def index_path_for(project_path: Path) -> Path:
    return project_path / SQUAD_DIR / INDEX_FILENAME


def lock_path_for(project_path: Path) -> Path:
    return project_path / SQUAD_DIR / LOCK_FILENAME


def walk_memory_dir(memory_dir: Path) -> Iterator[FileInfo]:
    """
    Yield FileInfo for each memory document, in filename order.

    Structure expected:
    <project>/
    └── .squad/
        ├── memory.db
        └── memory/
            ├── 2026-02-10-squad-abc-auth-timeout.md
            └── 2026-02-11-squad-def-css-animation.md

    Only top-level .md files are considered; hidden files are skipped.
    """
    if not memory_dir.is_dir():
        return

    for file_path in sorted(memory_dir.iterdir()):
        if file_path.name.startswith("."):
            continue
        if file_path.suffix != ".md" or not file_path.is_file():
            continue

        yield FileInfo(
            path=file_path,
            relative_path=file_path.name,
            mtime=file_path.stat().st_mtime,
        )
