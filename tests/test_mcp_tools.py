"""Tests for MCP server tools using FastMCP in-memory testing."""

import json
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import FakeChatClient, FakeSearchClient
from fastmcp import Client

from mcp_server_deep_research.exceptions import ApiKeyError
from mcp_server_deep_research.observability import RunStatus, get_run_registry
from mcp_server_deep_research.research.models import DeepResearchResult, ResearchPlan


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def client(monkeypatch, tmp_path) -> AsyncGenerator[Client, None]:
    """Create an in-memory FastMCP client with settings taken from the environment only."""
    monkeypatch.setenv("OPENROUTER_API_KEY", "test-key")
    monkeypatch.setenv("EXA_API_KEY", "test-key")
    monkeypatch.setenv("MCP_LLM_MODEL_NAME", "main/model")
    monkeypatch.setenv("MCP_RESEARCH_PLAN_MIN_STEPS", "2")
    monkeypatch.setenv("MCP_SERVER_RESULTS_DIR", str(tmp_path / "results"))
    monkeypatch.delenv("MCP_RESEARCH_SAVE_DIRECTORY", raising=False)

    # Reload server module so its settings pick up the env vars
    import importlib

    import mcp_server_deep_research.config
    import mcp_server_deep_research.server

    monkeypatch.setattr(mcp_server_deep_research.config, "load_config_file", lambda: {})
    mcp_server_deep_research.config.get_settings.cache_clear()
    importlib.reload(mcp_server_deep_research.server)

    from mcp_server_deep_research.server import serve

    app = serve()

    async with Client(app) as client:
        yield client

    mcp_server_deep_research.config.get_settings.cache_clear()


@pytest.fixture
def clients():
    chat = FakeChatClient()
    search = FakeSearchClient()
    with (
        patch("mcp_server_deep_research.server.get_chat_client", return_value=chat),
        patch("mcp_server_deep_research.server.get_search_client", return_value=search),
    ):
        yield chat, search


def research_result(markdown: str = "# Research Report\n\nFindings here...") -> DeepResearchResult:
    return DeepResearchResult(markdown=markdown, plan=ResearchPlan(main_question="Q"))


class TestListTools:
    """Test that all expected tools are registered."""

    @pytest.mark.anyio
    async def test_list_tools(self, client: Client):
        tools = await client.list_tools()
        tool_names = [tool.name for tool in tools]

        assert "run_deep_research" in tool_names
        assert "plan_research" in tool_names
        assert "research_list_running" in tool_names
        assert "research_cancel" in tool_names
        assert len(tool_names) == 4

    @pytest.mark.anyio
    async def test_run_deep_research_tool_schema(self, client: Client):
        tools = await client.list_tools()
        tool = next(t for t in tools if t.name == "run_deep_research")

        assert tool.description is not None
        schema = str(tool.inputSchema)
        assert "question" in schema
        assert "max_followup_rounds" in schema
        assert "ctx" not in tool.inputSchema.get("properties", {})


class TestRunDeepResearch:
    """Test the run_deep_research tool."""

    @pytest.mark.anyio
    async def test_success(self, client: Client, clients, tmp_path):
        chat, search = clients
        mock_machine = MagicMock()
        mock_machine.run = AsyncMock(return_value=research_result())

        with patch("mcp_server_deep_research.server.ResearchMachine", return_value=mock_machine):
            result = await client.call_tool("run_deep_research", {"question": "AI safety"})

        assert "Research Report" in result.content[0].text
        mock_machine.run.assert_awaited_once_with("AI safety")
        assert chat.closed
        assert search.closed
        assert len(list((tmp_path / "results").glob("*.md"))) == 1

    @pytest.mark.anyio
    async def test_options_forwarded(self, client: Client, clients):
        mock_machine = MagicMock()
        mock_machine.run = AsyncMock(return_value=research_result("Report"))

        with patch("mcp_server_deep_research.server.ResearchMachine", return_value=mock_machine) as machine_class:
            await client.call_tool(
                "run_deep_research",
                {"question": "Machine learning", "max_search_rounds": 3, "max_followup_rounds": -1, "verify": False, "save_to_file": "/tmp/report.md"},
            )

        call_kwargs = machine_class.call_args[1]
        assert call_kwargs["guardrails"].max_search_rounds == 3
        assert call_kwargs["max_followup_rounds"] is None
        assert call_kwargs["verify"] is False
        assert call_kwargs["save_path"] == "/tmp/report.md"
        assert call_kwargs["run_id"]

    @pytest.mark.anyio
    async def test_run_recorded_as_completed(self, client: Client, clients):
        mock_machine = MagicMock()
        mock_machine.run = AsyncMock(return_value=research_result())

        with patch("mcp_server_deep_research.server.ResearchMachine", return_value=mock_machine) as machine_class:
            await client.call_tool("run_deep_research", {"question": "Tracked run"})

        record = get_run_registry().get(machine_class.call_args[1]["run_id"])
        assert record.status == RunStatus.COMPLETED
        assert record.completed_at is not None

    @pytest.mark.anyio
    async def test_end_to_end_with_fake_clients(self, client: Client, clients, monkeypatch):
        import mcp_server_deep_research.server

        chat, search = clients
        monkeypatch.setattr(mcp_server_deep_research.server.settings.research, "verify_claims", False)

        result = await client.call_tool(
            "run_deep_research", {"question": "How do solid-state batteries compare?", "max_followup_rounds": 0}
        )

        assert result.content[0].text == "# Report\n\nSolid-state cells are denser [1]."
        assert len(search.queries) >= 2

    @pytest.mark.anyio
    async def test_missing_key(self, client: Client):
        with patch("mcp_server_deep_research.server.get_chat_client", side_effect=ApiKeyError("OPENROUTER_API_KEY", "API key missing")):
            result = await client.call_tool("run_deep_research", {"question": "Test"})

        assert "Error" in result.content[0].text
        assert "API key missing" in result.content[0].text


    @pytest.mark.anyio
    async def test_missing_search_key_closes_chat_client(self, client: Client):
        chat = FakeChatClient()
        with (
            patch("mcp_server_deep_research.server.get_chat_client", return_value=chat),
            patch("mcp_server_deep_research.server.get_search_client", side_effect=ApiKeyError("EXA_API_KEY", "Exa key missing")),
        ):
            result = await client.call_tool("run_deep_research", {"question": "Test"})

        assert "Exa key missing" in result.content[0].text
        assert chat.closed


class TestPlanResearch:
    @pytest.mark.anyio
    async def test_returns_plan_json(self, client: Client, clients):
        chat, _ = clients

        result = await client.call_tool("plan_research", {"question": "How do solid-state batteries compare?"})

        plan = json.loads(result.content[0].text)
        assert len(plan["steps"]) == 2
        assert chat.calls[0][1] == "main/model"
        assert chat.closed

    @pytest.mark.anyio
    async def test_missing_key(self, client: Client):
        with patch("mcp_server_deep_research.server.get_chat_client", side_effect=ApiKeyError("OPENROUTER_API_KEY")):
            result = await client.call_tool("plan_research", {"question": "Q"})

        assert "error" in json.loads(result.content[0].text)


class TestRunManagement:
    @pytest.mark.anyio
    async def test_list_running_empty(self, client: Client):
        result = await client.call_tool("research_list_running", {})
        assert json.loads(result.content[0].text) == []

    @pytest.mark.anyio
    async def test_cancel_unknown(self, client: Client):
        result = await client.call_tool("research_cancel", {"run_id": "does-not-exist"})
        data = json.loads(result.content[0].text)
        assert data["success"] is False
        assert "not found" in data["error"]
