"""Command line entry point and MCP server for squad-memory."""

import argparse
import json
import logging
import sys
from pathlib import Path

from fastmcp import FastMCP

from squad_memory.auth import get_auth_provider
from squad_memory.config import Config
from squad_memory.embeddings import list_providers
from squad_memory.errors import MemoryIndexError
from squad_memory.memory import MemoryIndex
from squad_memory.sync import SyncManager
from squad_memory.tools import ProjectRegistry, register_tools

logger = logging.getLogger(__name__)

SQUAD_DIR = ".squad"


def find_project_root(start: Path | None = None) -> Path | None:
    """Nearest ancestor of start (inclusive) that contains a .squad directory."""
    start = (start or Path.cwd()).resolve()
    for candidate in (start, *start.parents):
        if (candidate / SQUAD_DIR).is_dir():
            return candidate
    return None


def create_server(config: Config, registry: ProjectRegistry) -> FastMCP:
    """Create and configure the MCP server.

    Args:
        config: Configuration instance with all settings.
        registry: Projects to serve.
    """
    auth_provider = get_auth_provider(config)

    mcp = FastMCP(
        name="squad-memory",
        instructions=(
            "squad-memory searches the session summaries that coding agents leave "
            "in each project's .squad/memory directory. Use memory_search to find "
            "past decisions, approaches and lessons before starting related work."
        ),
        auth=auth_provider,
    )

    logger.info("Registering memory tools for %d project(s)...", len(registry.names()))
    register_tools(mcp, registry)

    logger.info("Server configured successfully")
    return mcp


def _resolve_project(arg: str | None) -> Path:
    if arg is not None:
        path = Path(arg).expanduser().resolve()
        if not path.is_dir():
            raise FileNotFoundError(f"Project directory not found: {path}")
        return path
    root = find_project_root()
    if root is None:
        raise FileNotFoundError(
            f"No {SQUAD_DIR} directory found in {Path.cwd()} or its parents; use --project"
        )
    return root


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_index(args, config: Config) -> int:
    with MemoryIndex(_resolve_project(args.project), config=config) as memory:
        result = memory.index(force=args.force, skip_embeddings=args.skip_embeddings)
    if args.json:
        _print_json(result.to_dict())
        return 0

    stats = result.stats
    print(
        f"Indexed {stats.files_changed} of {stats.files_scanned} file(s) "
        f"({stats.files_skipped} unchanged, {stats.files_removed} removed): "
        f"{stats.chunks_added} chunk(s) added, {stats.chunks_removed} removed"
    )
    for warning in result.warnings:
        print(f"warning: {warning}", file=sys.stderr)
    return 0


def cmd_search(args, config: Config) -> int:
    with MemoryIndex(_resolve_project(args.project), config=config) as memory:
        results = memory.search(args.query, limit=args.limit)
    if args.json:
        _print_json([r.to_dict() for r in results])
        return 0

    if not results:
        print("No results.")
    for i, result in enumerate(results, start=1):
        label = f"{result.task_id} " if result.task_id else ""
        print(
            f"{i}. {label}[{result.section}] {result.path}:{result.start_line}-{result.end_line} "
            f"({result.source.value}, {result.score:.4f})"
        )
        print(f"   {result.snippet}")
    return 0


def cmd_status(args, config: Config) -> int:
    project = _resolve_project(args.project)
    with MemoryIndex(project, config=config, provider=None) as memory:
        stats = memory.stats()
    if args.json:
        _print_json({"project": str(project), **stats.to_dict()})
        return 0

    print(f"Project:   {project}")
    print(f"Documents: {stats.document_count}")
    print(f"Chunks:    {stats.chunk_count} ({stats.embedded_chunk_count} embedded)")
    if stats.embedding_provider:
        print(
            f"Embedding: {stats.embedding_provider}/{stats.embedding_model} "
            f"(dim={stats.embedding_dimension})"
        )
    else:
        print("Embedding: none (keyword-only)")
    print(f"Indexed:   {stats.last_indexed_at.isoformat() if stats.last_indexed_at else 'never'}")
    return 0


def cmd_providers(args, config: Config) -> int:
    providers = list_providers()
    if args.json:
        _print_json(providers)
        return 0
    for p in providers:
        status = "available" if p["available"] else f"set {p['env_var']}"
        print(f"{p['id']:<8} {p['default_model']:<24} {status}")
    return 0


def cmd_serve(args, config: Config) -> int:
    paths = [_resolve_project(p) for p in args.project] if args.project else config.projects
    if not paths:
        root = find_project_root()
        if root is None:
            raise FileNotFoundError("No projects to serve; set SQUAD_MEMORY_PROJECTS or --project")
        paths = [root]

    registry = ProjectRegistry(paths, config)

    logger.info("=" * 50)
    logger.info("squad-memory starting...")
    logger.info("  PROJECTS: %s", ", ".join(registry.names()))
    logger.info("  PORT:     %s", config.port)
    logger.info("  AUTH:     %s", "enabled" if config.auth_token else "disabled")
    logger.info("  SYNC:     %s", f"{config.sync_interval}s" if config.sync_interval else "disabled")
    logger.info("=" * 50)

    # Bring every index up to date before accepting queries
    for name in registry.names():
        registry.get(name).index()

    sync_manager = SyncManager(registry, config.sync_interval) if config.sync_interval else None
    try:
        mcp = create_server(config, registry)
        if sync_manager is not None:
            sync_manager.start()
        logger.info("Starting MCP server on port %s...", config.port)
        mcp.run(transport="sse", host="0.0.0.0", port=config.port)
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    finally:
        if sync_manager is not None:
            sync_manager.stop()
        registry.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="squad-memory",
        description="squad-memory - hybrid search over agent memory documents",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("index", help="Index a project's memory files")
    p.add_argument("--project", help="Project directory (default: nearest with .squad/)")
    p.add_argument("--force", action="store_true", help="Re-index every file")
    p.add_argument(
        "--skip-embeddings", action="store_true", help="Build the keyword index only"
    )
    p.add_argument("--json", action="store_true", help="Print JSON")
    p.set_defaults(func=cmd_index)

    p = sub.add_parser("search", help="Search a project's memory")
    p.add_argument("query", help="Free-text query")
    p.add_argument("--project", help="Project directory (default: nearest with .squad/)")
    p.add_argument("--limit", type=int, default=None, help="Maximum number of results")
    p.add_argument("--json", action="store_true", help="Print JSON")
    p.set_defaults(func=cmd_search)

    p = sub.add_parser("status", help="Show index statistics")
    p.add_argument("--project", help="Project directory (default: nearest with .squad/)")
    p.add_argument("--json", action="store_true", help="Print JSON")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("providers", help="List embedding providers")
    p.add_argument("--json", action="store_true", help="Print JSON")
    p.set_defaults(func=cmd_providers)

    p = sub.add_parser("serve", help="Run the MCP server")
    p.add_argument(
        "--project", action="append", help="Project directory to serve (repeatable)"
    )
    p.set_defaults(func=cmd_serve)
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main function - runs one CLI command."""
    args = build_parser().parse_args(argv)

    # Configure logging here to avoid side effects on import
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = Config.from_env()
        code = args.func(args, config)
    except (FileNotFoundError, ValueError, MemoryIndexError) as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
