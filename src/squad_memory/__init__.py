"""
squad-memory - hybrid search over agent memory documents.

Indexes the markdown session summaries agents leave in
<project>/.squad/memory/ and serves keyword (BM25) plus semantic (vector)
search over them, fused with reciprocal rank fusion.
"""

from squad_memory.memory import MemoryIndex, index, search, stats

__version__ = "0.1.0"

__all__ = ["MemoryIndex", "index", "search", "stats"]
