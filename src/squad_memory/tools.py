"""MCP tools for the squad-memory server.

This module defines the tools exposed by the MCP server:
- memory_search: Hybrid keyword + semantic search over a project's memory
- memory_index: Incrementally re-index a project's memory files
- memory_status: Report what a project's index holds
- memory_providers: List embedding providers and their key status
"""

import logging
import threading
from pathlib import Path

from fastmcp import FastMCP

from squad_memory.config import Config
from squad_memory.embeddings import list_providers
from squad_memory.errors import InvalidQuery
from squad_memory.memory import MemoryIndex

logger = logging.getLogger(__name__)


class ProjectRegistry:
    """
    The projects a server instance serves, addressed by directory name.

    Handles are opened lazily and kept for the life of the registry.
    """

    def __init__(self, project_paths: list[Path], config: Config):
        self.config = config
        self._paths: dict[str, Path] = {}
        for path in project_paths:
            path = Path(path).expanduser().resolve()
            if path.name in self._paths and self._paths[path.name] != path:
                raise ValueError(
                    f"Duplicate project name {path.name}: {self._paths[path.name]} and {path}"
                )
            self._paths[path.name] = path
        self._handles: dict[str, MemoryIndex] = {}
        self._lock = threading.Lock()

    def names(self) -> list[str]:
        return sorted(self._paths)

    def path(self, name: str) -> Path:
        if name not in self._paths:
            raise ValueError(
                f"Unknown project: {name}. Available: {', '.join(self.names()) or '(none)'}"
            )
        return self._paths[name]

    def get(self, name: str) -> MemoryIndex:
        """Return the open handle for a project, opening it on first use."""
        path = self.path(name)
        with self._lock:
            if name not in self._handles:
                logger.info("Opening memory index for %s at %s", name, path)
                self._handles[name] = MemoryIndex(path, config=self.config)
            return self._handles[name]

    def resolve(self, name: str | None) -> MemoryIndex:
        """Resolve an optional project name; a single project is the default."""
        if name is None:
            if len(self._paths) != 1:
                raise ValueError(
                    f"Project name required. Available: {', '.join(self.names()) or '(none)'}"
                )
            name = self.names()[0]
        return self.get(name)

    def close(self) -> None:
        with self._lock:
            for handle in self._handles.values():
                handle.close()
            self._handles.clear()


def register_tools(mcp: FastMCP, registry: ProjectRegistry) -> None:
    """Register all memory tools with the FastMCP server.

    Args:
        mcp: FastMCP server instance
        registry: Projects served by this instance
    """

    @mcp.tool()
    def memory_search(
        query: str,
        project: str | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        """Search a project's agent memory.

        Combines BM25 keyword ranking with semantic vector similarity (when
        an embedding provider is configured) using reciprocal rank fusion.

        Args:
            query: Free-text search query
            project: Project name (optional when only one project is served)
            limit: Maximum number of results to return (default: configured
                result limit)

        Returns:
            List of results with:
            - chunk_id, path, task_id, section
            - snippet: Matched text (>>>match<<< for keyword hits)
            - score: Fused relevance score (higher is better)
            - start_line, end_line: Location within the memory file
            - source: bm25, vector or hybrid
        """
        try:
            results = registry.resolve(project).search(query, limit=limit)
        except InvalidQuery as e:
            raise ValueError(str(e)) from e
        return [result.to_dict() for result in results]

    @mcp.tool()
    def memory_index(
        project: str | None = None,
        force: bool = False,
        skip_embeddings: bool = False,
    ) -> dict:
        """Re-index a project's memory files.

        Only files whose content changed since the last run are processed
        unless force is set.

        Args:
            project: Project name (optional when only one project is served)
            force: Re-index every file
            skip_embeddings: Build the keyword index only for this run

        Returns:
            Sync statistics and any per-file warnings.
        """
        memory = registry.resolve(project)
        result = memory.index(force=force, skip_embeddings=skip_embeddings)
        return {"project": memory.name, **result.to_dict()}

    @mcp.tool()
    def memory_status(project: str | None = None) -> dict:
        """Report document, chunk and embedding counts for a project.

        Args:
            project: Project name (optional when only one project is served)
        """
        memory = registry.resolve(project)
        return {
            "project": memory.name,
            "path": str(memory.project_path),
            **memory.stats().to_dict(),
        }

    @mcp.tool()
    def memory_providers() -> list[dict]:
        """List supported embedding providers and whether an API key is set."""
        return list_providers()
