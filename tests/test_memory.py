"""Tests for the per-project MemoryIndex handle and module API."""

from pathlib import Path

import squad_memory
from squad_memory.config import Config
from squad_memory.memory import MemoryIndex


class TestMemoryIndex:
    def test_creates_index_under_squad_dir(self, project: Path):
        with MemoryIndex(project, config=Config(), provider=None) as memory:
            assert memory.name == "demo-api"
        assert (project / ".squad" / "memory.db").exists()

    def test_index_search_stats(self, fixture_project: Path, hashing_provider):
        with MemoryIndex(fixture_project, config=Config(), provider=hashing_provider) as memory:
            result = memory.index()
            assert result.stats.files_changed == 3

            stats = memory.stats()
            assert stats.document_count == 3
            assert stats.chunk_count == stats.embedded_chunk_count
            assert stats.last_indexed_at is not None

            assert memory.search("database migration")[0].task_id == "squad-c03"

    def test_provider_from_config(self, project: Path, monkeypatch):
        monkeypatch.setenv("VOYAGE_API_KEY", "pa-test")
        with MemoryIndex(project, config=Config()) as memory:
            assert memory.provider.kind.value == "voyage"

    def test_projects_are_isolated(self, tmp_path: Path, write_memory):
        write_memory(tmp_path / "one", "a.md", "t-1", approach="shared keyword")
        write_memory(tmp_path / "two", "b.md", "t-2", approach="other words")

        with MemoryIndex(tmp_path / "one", config=Config(), provider=None) as one:
            one.index()
        with MemoryIndex(tmp_path / "two", config=Config(), provider=None) as two:
            two.index()
            assert two.search("shared") == []

    def test_custom_chunk_settings_are_recorded(self, project: Path, write_memory):
        write_memory(project, "a.md", "t-1")
        config = Config(chunk_tokens=200, overlap_tokens=20)
        with MemoryIndex(project, config=config, provider=None) as memory:
            memory.index()
            assert memory.db.get_meta("chunk_target_tokens") == "200"
            assert memory.db.get_meta("chunk_overlap_tokens") == "20"


class TestModuleApi:
    def test_index_search_stats(self, fixture_project: Path):
        config = Config(provider="none")

        result = squad_memory.index(fixture_project, config=config)
        assert result.stats.files_changed == 3

        results = squad_memory.search(fixture_project, "oauth timeout", config=config)
        assert results[0].section == "approach"

        stats = squad_memory.stats(fixture_project, config=config)
        assert stats.document_count == 3
        assert stats.embedded_chunk_count == 0

    def test_second_index_is_incremental(self, fixture_project: Path):
        config = Config(provider="none")
        squad_memory.index(fixture_project, config=config)
        stats = squad_memory.index(fixture_project, config=config).stats
        assert stats.files_skipped == 3
        assert stats.chunks_added == 0
