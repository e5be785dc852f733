"""Tests for the MCP memory tools and project registry."""

from pathlib import Path

import pytest
from fastmcp import FastMCP

from squad_memory.config import Config
from squad_memory.tools import ProjectRegistry, register_tools


class CapturingMCP:
    """Stand-in for FastMCP that records the registered tool functions."""

    def __init__(self):
        self.tools = {}

    def tool(self):
        def decorator(fn):
            self.tools[fn.__name__] = fn
            return fn

        return decorator


@pytest.fixture
def registry(fixture_project: Path):
    reg = ProjectRegistry([fixture_project], Config(provider="none"))
    yield reg
    reg.close()


@pytest.fixture
def tools(registry: ProjectRegistry) -> dict:
    mcp = CapturingMCP()
    register_tools(mcp, registry)
    return mcp.tools


class TestProjectRegistry:
    def test_names_are_directory_names(self, registry: ProjectRegistry):
        assert registry.names() == ["demo-api"]

    def test_unknown_project(self, registry: ProjectRegistry):
        with pytest.raises(ValueError, match="Unknown project: other"):
            registry.get("other")

    def test_handles_are_reused(self, registry: ProjectRegistry):
        assert registry.get("demo-api") is registry.get("demo-api")

    def test_single_project_is_default(self, registry: ProjectRegistry):
        assert registry.resolve(None).name == "demo-api"

    def test_name_required_with_several_projects(self, tmp_path: Path):
        reg = ProjectRegistry([tmp_path / "a", tmp_path / "b"], Config(provider="none"))
        with pytest.raises(ValueError, match="Project name required"):
            reg.resolve(None)

    def test_duplicate_names_rejected(self, tmp_path: Path):
        with pytest.raises(ValueError, match="Duplicate project name"):
            ProjectRegistry([tmp_path / "x" / "api", tmp_path / "y" / "api"], Config())


class TestRegisterTools:
    def test_registers_memory_tools(self, tools: dict):
        assert set(tools) == {
            "memory_search",
            "memory_index",
            "memory_status",
            "memory_providers",
        }

    def test_registers_with_fastmcp(self, registry: ProjectRegistry):
        register_tools(FastMCP(name="test"), registry)


class TestMemoryTools:
    def test_index_then_search(self, tools: dict):
        result = tools["memory_index"]()
        assert result["project"] == "demo-api"
        assert result["files_changed"] == 3
        assert result["warnings"] == []

        hits = tools["memory_search"]("oauth timeout", project="demo-api")
        assert hits[0]["section"] == "approach"
        assert hits[0]["task_id"] == "squad-a1f"
        assert hits[0]["source"] == "bm25"

    def test_search_limit(self, tools: dict):
        tools["memory_index"]()
        assert len(tools["memory_search"]("the", limit=1)) <= 1

    def test_search_default_limit_from_config(self, fixture_project: Path):
        reg = ProjectRegistry([fixture_project], Config(provider="none", result_limit=1))
        mcp = CapturingMCP()
        register_tools(mcp, reg)
        try:
            mcp.tools["memory_index"]()
            assert len(mcp.tools["memory_search"]("the oauth css migration")) == 1
            assert len(mcp.tools["memory_search"]("the oauth css migration", limit=3)) == 3
        finally:
            reg.close()

    def test_empty_query_is_value_error(self, tools: dict):
        with pytest.raises(ValueError, match="empty"):
            tools["memory_search"]("  ")

    def test_status(self, tools: dict):
        tools["memory_index"]()
        status = tools["memory_status"]()
        assert status["project"] == "demo-api"
        assert status["document_count"] == 3
        assert status["embedded_chunk_count"] == 0

    def test_providers(self, tools: dict, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "key")
        providers = {p["id"]: p for p in tools["memory_providers"]()}
        assert providers["gemini"]["available"] is True
        assert providers["openai"]["available"] is False
