"""Pytest configuration and fakes for mcp-server-deep-research tests."""

import asyncio
import json
from collections.abc import AsyncIterator
from dataclasses import replace
from typing import Any

import pytest

from mcp_server_deep_research.clients.base import (
    ChatChoice,
    ChatOptions,
    ChatResponse,
    Message,
    ModelInfo,
    SearchContents,
    SearchResponse,
    StreamEvent,
)
from mcp_server_deep_research.research.models import SourceResult, normalize_query
from mcp_server_deep_research.research.prompts import (
    CLAIM_EXTRACTION_SYSTEM_PROMPT,
    CLAIM_VERIFICATION_SYSTEM_PROMPT,
    EXPANSION_SYSTEM_PROMPT,
    FOLLOWUP_QUERY_SYSTEM_PROMPT,
    GAP_EVALUATION_SYSTEM_PROMPT,
    REASONING_SUMMARY_SYSTEM_PROMPT,
    SUB_AGENT_SYSTEM_PROMPT,
    SUB_TOPIC_SYSTEM_PROMPT,
    SYNTHESIS_SYSTEM_PROMPT,
)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: Tests that take longer to run")


@pytest.fixture
def anyio_backend():
    return "asyncio"


PROMPT_KINDS = {
    SUB_AGENT_SYSTEM_PROMPT: "analysis",
    FOLLOWUP_QUERY_SYSTEM_PROMPT: "followup_query",
    EXPANSION_SYSTEM_PROMPT: "expansion",
    SUB_TOPIC_SYSTEM_PROMPT: "sub_topics",
    GAP_EVALUATION_SYSTEM_PROMPT: "gaps",
    SYNTHESIS_SYSTEM_PROMPT: "synthesis",
    CLAIM_EXTRACTION_SYSTEM_PROMPT: "claims",
    CLAIM_VERIFICATION_SYSTEM_PROMPT: "verify",
    REASONING_SUMMARY_SYSTEM_PROMPT: "summary",
}

DEFAULT_PLAN = {
    "mainQuestion": "How do solid-state batteries compare to lithium-ion?",
    "steps": [
        {"id": 1, "question": "What is the energy density of solid-state cells?", "searchQuery": "solid-state battery energy density", "purpose": "Compare capacity"},
        {"id": 2, "question": "What limits solid-state manufacturing?", "searchQuery": "solid-state battery manufacturing challenges", "purpose": "Assess feasibility"},
    ],
    "expectedInsights": ["Density comparison", "Manufacturing outlook"],
}

DEFAULT_RESPONSES: dict[str, Any] = {
    "planning": json.dumps(DEFAULT_PLAN),
    "analysis": "## Key Findings\n- Solid electrolytes raise density\n- Costs remain high\n\n## Details\nFindings [Source 1].",
    "followup_query": '{"query": null}',
    "expansion": "[]",
    "sub_topics": '{"subTopics": []}',
    "gaps": '{"needsMore": false, "gaps": []}',
    "synthesis": "# Report\n\nSolid-state cells are denser [1].",
    "claims": '{"claims": []}',
    "verify": '{"status": "unverified"}',
    "summary": "",
}


def prompt_kind(messages: list[Message]) -> str:
    """Classify a call by its system prompt; anything unknown is the planner."""
    return PROMPT_KINDS.get(messages[0].content, "planning")


class FakeChatClient:
    """Scripted ChatClient.

    A scripted response is a string, an exception to raise, a callable taking
    the messages, or a list of those consumed in order (the last one repeats).
    """

    def __init__(self, responses: dict[str, Any] | None = None, reasoning: dict[str, list[str]] | None = None):
        self.responses = {**DEFAULT_RESPONSES, **(responses or {})}
        self.reasoning = reasoning or {}
        self.models: list[ModelInfo] = []
        self.calls: list[tuple[str, str, list[Message], ChatOptions | None]] = []
        self.closed = False

    def calls_of(self, kind: str) -> list[list[Message]]:
        return [messages for k, _, messages, _ in self.calls if k == kind]

    def _next(self, kind: str, messages: list[Message]) -> str:
        scripted = self.responses[kind]
        if isinstance(scripted, list):
            scripted = scripted.pop(0) if len(scripted) > 1 else scripted[0]
        if isinstance(scripted, Exception):
            raise scripted
        if callable(scripted):
            return scripted(messages)
        return scripted

    async def chat(self, model: str, messages: list[Message], options: ChatOptions | None = None) -> ChatResponse:
        kind = prompt_kind(messages)
        self.calls.append((kind, model, messages, options))
        text = self._next(kind, messages)
        return ChatResponse(id="resp", choices=[ChatChoice(message=Message(role="assistant", content=text))])

    async def chat_stream_with_reasoning(
        self, model: str, messages: list[Message], options: ChatOptions | None = None
    ) -> AsyncIterator[StreamEvent]:
        kind = prompt_kind(messages)
        self.calls.append((kind, model, messages, options))
        for chunk in self.reasoning.get(kind, []):
            yield StreamEvent(type="reasoning", text=chunk)
        text = self._next(kind, messages)
        middle = len(text) // 2
        for chunk in (text[:middle], text[middle:]):
            if chunk:
                yield StreamEvent(type="content", text=chunk)

    async def list_models(self) -> list[ModelInfo]:
        return self.models

    async def aclose(self) -> None:
        self.closed = True


def source(url: str, score: float = 0.5, **fields: Any) -> SourceResult:
    fields.setdefault("title", url.rsplit("/", 1)[-1])
    fields.setdefault("highlights", [f"Highlight from {url}"])
    return SourceResult(url=url, score=score, **fields)


class FakeSearchClient:
    """Scripted SearchClient.

    Unknown queries return one source whose url is derived from the query.
    """

    def __init__(
        self,
        results: dict[str, list[SourceResult]] | None = None,
        contents: dict[str, SourceResult] | None = None,
        failures: dict[str, Exception] | None = None,
        delay: float = 0.0,
    ):
        self.results = results or {}
        self.contents = contents or {}
        self.failures = failures or {}
        self.contents_error: Exception | None = None
        self.delay = delay
        self.queries: list[str] = []
        self.search_contents: list[SearchContents | None] = []
        self.content_requests: list[list[str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def search(self, query: str, *, type: str = "deep", num_results: int = 10, contents: SearchContents | None = None) -> SearchResponse:
        self.queries.append(query)
        self.search_contents.append(contents)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if query in self.failures:
                raise self.failures[query]
            results = self.results.get(query)
            if results is None:
                results = [source(f"https://example.com/{normalize_query(query).replace(' ', '-')}")]
            return SearchResponse(results=[replace(r) for r in results], request_id="req")
        finally:
            self.in_flight -= 1

    async def get_contents(self, urls: list[str]) -> list[SourceResult]:
        self.content_requests.append(list(urls))
        if self.contents_error:
            raise self.contents_error
        return [replace(self.contents[u]) for u in urls if u in self.contents]

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def chat() -> FakeChatClient:
    return FakeChatClient()


@pytest.fixture
def search() -> FakeSearchClient:
    return FakeSearchClient()
