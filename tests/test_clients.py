"""Tests for the OpenRouter and Exa HTTP clients using httpx.MockTransport."""

import json
from unittest.mock import MagicMock

import httpx
import pytest

from mcp_server_deep_research.clients.base import ChatOptions, HighlightsOptions, SearchContents, system, user
from mcp_server_deep_research.clients.exa import ExaClient
from mcp_server_deep_research.clients.http import backoff_delay, is_retryable_status, raise_for_provider_status, send_with_retry
from mcp_server_deep_research.clients.openrouter import OpenRouterClient, parse_model, parse_sse_line
from mcp_server_deep_research.exceptions import ApiKeyError, ProviderError, ProviderTimeoutError, RateLimitError, SearchError


class Recorder:
    """MockTransport handler that replays scripted responses and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        scripted = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(scripted, Exception):
            raise scripted
        return scripted

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


def chat_completion(content: str) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "id": "gen-1",
            "choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
        },
    )


def sse(*payloads) -> bytes:
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode()


class TestRetryPolicy:
    def test_retryable_statuses(self):
        assert is_retryable_status(429)
        assert is_retryable_status(500)
        assert is_retryable_status(503)
        assert not is_retryable_status(400)
        assert not is_retryable_status(401)

    def test_backoff(self):
        assert backoff_delay(0, 500, 1.0) == 1.0
        assert backoff_delay(2, None, 1.0) == 4.0
        assert backoff_delay(0, 429, 1.0) == 2.0
        assert backoff_delay(1, 429, 0.5) == 2.0

    def test_backoff_honours_retry_after(self):
        assert backoff_delay(0, 429, 1.0, retry_after=7.0) == 7.0
        assert backoff_delay(0, 429, 1.0, retry_after=0.5) == 2.0
        assert backoff_delay(0, 503, 1.0, retry_after=3600) == 60.0

    @pytest.mark.anyio
    async def test_rate_limit_waits_for_retry_after(self, monkeypatch):
        delay = MagicMock(return_value=0)
        monkeypatch.setattr("mcp_server_deep_research.clients.http.backoff_delay", delay)
        recorder = Recorder(httpx.Response(429, headers={"retry-after": "7"}), httpx.Response(200, json={}))
        async with recorder.client() as client:
            request = client.build_request("GET", "https://api.test/x")
            response = await send_with_retry(client, request, service="Test", timeout=5, initial_delay=0)

        assert response.status_code == 200
        delay.assert_called_once_with(0, 429, 0, 7.0)

    @pytest.mark.anyio
    async def test_server_error_retried(self):
        recorder = Recorder(httpx.Response(500, text="oops"), httpx.Response(200, json={"ok": True}))
        async with recorder.client() as client:
            request = client.build_request("GET", "https://api.test/x")
            response = await send_with_retry(client, request, service="Test", timeout=5, initial_delay=0)

        assert response.status_code == 200
        assert len(recorder.requests) == 2

    @pytest.mark.anyio
    async def test_client_error_not_retried(self):
        recorder = Recorder(httpx.Response(400, json={"error": {"message": "bad"}}))
        async with recorder.client() as client:
            request = client.build_request("GET", "https://api.test/x")
            response = await send_with_retry(client, request, service="Test", timeout=5, initial_delay=0)

        assert response.status_code == 400
        assert len(recorder.requests) == 1

    @pytest.mark.anyio
    async def test_exhausted_retries_return_last_response(self):
        recorder = Recorder(httpx.Response(503, text="down"))
        async with recorder.client() as client:
            request = client.build_request("GET", "https://api.test/x")
            response = await send_with_retry(client, request, service="Test", timeout=5, retries=3, initial_delay=0)

        assert response.status_code == 503
        assert len(recorder.requests) == 3

    @pytest.mark.anyio
    async def test_timeout(self):
        recorder = Recorder(httpx.ReadTimeout("slow"))
        async with recorder.client() as client:
            request = client.build_request("GET", "https://api.test/x")
            with pytest.raises(ProviderTimeoutError, match="timed out after 5s"):
                await send_with_retry(client, request, service="Test", timeout=5, retries=2, initial_delay=0)

        assert len(recorder.requests) == 2

    @pytest.mark.anyio
    async def test_network_error(self):
        recorder = Recorder(httpx.ConnectError("refused"))
        async with recorder.client() as client:
            request = client.build_request("GET", "https://api.test/x")
            with pytest.raises(ProviderError, match="request failed"):
                await send_with_retry(client, request, service="Test", timeout=5, retries=1, initial_delay=0)

    @pytest.mark.anyio
    async def test_recovers_after_network_error(self):
        recorder = Recorder(httpx.ConnectError("refused"), httpx.Response(200, json={}))
        async with recorder.client() as client:
            request = client.build_request("GET", "https://api.test/x")
            response = await send_with_retry(client, request, service="Test", timeout=5, initial_delay=0)

        assert response.status_code == 200


class TestRaiseForProviderStatus:
    def test_success(self):
        raise_for_provider_status(httpx.Response(200), "Test", "TEST_API_KEY")

    def test_unauthorized(self):
        with pytest.raises(ApiKeyError) as exc_info:
            raise_for_provider_status(httpx.Response(401, text="nope"), "OpenRouter", "OPENROUTER_API_KEY")
        assert exc_info.value.key_name == "OPENROUTER_API_KEY"

    def test_forbidden(self):
        with pytest.raises(ApiKeyError) as exc_info:
            raise_for_provider_status(httpx.Response(403, text="forbidden"), "Exa", "EXA_API_KEY")
        assert exc_info.value.key_name == "EXA_API_KEY"

    def test_rate_limited_without_numeric_retry_after(self):
        with pytest.raises(RateLimitError) as exc_info:
            raise_for_provider_status(httpx.Response(429, headers={"retry-after": "soon"}), "Exa", "EXA_API_KEY")
        assert exc_info.value.retry_after is None

    def test_rate_limited(self):
        with pytest.raises(RateLimitError) as exc_info:
            raise_for_provider_status(httpx.Response(429, headers={"retry-after": "7"}), "Exa", "EXA_API_KEY")
        assert exc_info.value.retry_after == 7.0
        assert exc_info.value.status_code == 429

    def test_error_message_from_body(self):
        with pytest.raises(ProviderError) as exc_info:
            raise_for_provider_status(httpx.Response(400, json={"error": {"message": "model not found"}}), "OpenRouter", "K")
        assert "400 - model not found" in str(exc_info.value)
        assert exc_info.value.status_code == 400


class TestParsing:
    def test_sse_content(self):
        event = parse_sse_line('data: {"choices": [{"delta": {"content": "Hi"}}]}')
        assert (event.type, event.text) == ("content", "Hi")

    def test_sse_reasoning(self):
        assert parse_sse_line('data: {"choices": [{"delta": {"reasoning": "hmm"}}]}').type == "reasoning"
        assert parse_sse_line('data: {"choices": [{"delta": {"reasoning_content": "hmm"}}]}').text == "hmm"

    def test_sse_done_and_noise(self):
        assert parse_sse_line("data: [DONE]") is False
        assert parse_sse_line(": OPENROUTER PROCESSING") is None
        assert parse_sse_line("data: {not json") is None
        assert parse_sse_line('data: {"choices": []}') is None
        assert parse_sse_line("") is None

    def test_parse_model(self):
        info = parse_model(
            {
                "id": "a/b",
                "name": "A B",
                "context_length": 128000,
                "pricing": {"prompt": "0.000001", "completion": "0.000002"},
                "top_provider": {"max_completion_tokens": 4096},
            }
        )
        assert info.pricing.prompt == 1e-6
        assert info.pricing.completion == 2e-6
        assert info.max_completion_tokens == 4096

    def test_parse_model_bad_pricing(self):
        info = parse_model({"id": "a/b", "pricing": {"prompt": "-", "completion": None}})
        assert info.name == "a/b"
        assert info.pricing.prompt == 0.0


class TestOpenRouterClient:
    @pytest.mark.anyio
    async def test_chat(self):
        recorder = Recorder(chat_completion("  Hello there  "))
        client = OpenRouterClient("sk-test", http_client=recorder.client())

        response = await client.chat("a/b", [system("sys"), user("hi")], ChatOptions(temperature=0.2, reasoning_effort="high"))
        await client.aclose()

        assert response.content == "Hello there"
        assert response.usage.total_tokens == 15
        request = recorder.requests[0]
        assert str(request.url) == "https://openrouter.ai/api/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert request.headers["X-Title"] == "Deep Research"
        body = recorder.body()
        assert body["model"] == "a/b"
        assert body["stream"] is False
        assert body["messages"] == [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}]
        assert body["temperature"] == 0.2
        assert body["reasoning"] == {"effort": "high"}
        assert "top_p" not in body

    @pytest.mark.anyio
    async def test_custom_base_url(self):
        recorder = Recorder(chat_completion("ok"))
        client = OpenRouterClient("k", "http://localhost:8000/v1/", http_client=recorder.client())

        await client.chat("m", [user("hi")])

        assert str(recorder.requests[0].url) == "http://localhost:8000/v1/chat/completions"

    @pytest.mark.anyio
    async def test_chat_auth_error_uses_key_name(self):
        recorder = Recorder(httpx.Response(401, json={"error": {"message": "invalid key"}}))
        client = OpenRouterClient("bad", key_name="OPENAI_API_KEY", http_client=recorder.client())

        with pytest.raises(ApiKeyError) as exc_info:
            await client.chat("m", [user("hi")])
        assert exc_info.value.key_name == "OPENAI_API_KEY"

    @pytest.mark.anyio
    async def test_stream_with_reasoning(self):
        body = sse(
            {"choices": [{"delta": {"reasoning": "Let me think"}}]},
            {"choices": [{"delta": {"content": "# Title"}}]},
            {"choices": [{"delta": {}}]},
            {"choices": [{"delta": {"content": "\nBody"}}]},
            "[DONE]",
            {"choices": [{"delta": {"content": "after done"}}]},
        )
        recorder = Recorder(httpx.Response(200, content=body, headers={"content-type": "text/event-stream"}))
        client = OpenRouterClient("k", http_client=recorder.client())

        events = [e async for e in client.chat_stream_with_reasoning("m", [user("hi")])]

        assert [(e.type, e.text) for e in events] == [("reasoning", "Let me think"), ("content", "# Title"), ("content", "\nBody")]
        assert recorder.body()["stream"] is True

    @pytest.mark.anyio
    async def test_chat_stream_drops_reasoning(self):
        body = sse({"choices": [{"delta": {"reasoning": "x"}}]}, {"choices": [{"delta": {"content": "y"}}]}, "[DONE]")
        client = OpenRouterClient("k", http_client=Recorder(httpx.Response(200, content=body)).client())

        assert [c async for c in client.chat_stream("m", [user("hi")])] == ["y"]

    @pytest.mark.anyio
    async def test_stream_error_raises(self):
        recorder = Recorder(httpx.Response(400, json={"error": {"message": "context too long"}}))
        client = OpenRouterClient("k", max_retries=1, http_client=recorder.client())

        with pytest.raises(ProviderError, match="context too long"):
            async for _ in client.chat_stream_with_reasoning("m", [user("hi")]):
                pass

    @pytest.mark.anyio
    async def test_list_models(self):
        recorder = Recorder(
            httpx.Response(
                200,
                json={"data": [{"id": "a/b", "name": "AB", "context_length": 1000, "pricing": {"prompt": "0.000001", "completion": "0"}}]},
            )
        )
        client = OpenRouterClient("k", http_client=recorder.client())

        models = await client.list_models()

        assert [m.id for m in models] == ["a/b"]
        assert recorder.requests[0].method == "GET"
        assert str(recorder.requests[0].url).endswith("/models")


class TestExaClient:
    @pytest.mark.anyio
    async def test_search(self):
        recorder = Recorder(
            httpx.Response(
                200,
                json={
                    "requestId": "r1",
                    "resolvedSearchType": "deep",
                    "results": [{"url": "https://a", "title": "A", "score": 0.9, "text": "body", "highlights": ["h"], "summary": "s"}],
                },
            )
        )
        client = ExaClient("exa-key", http_client=recorder.client())

        response = await client.search(
            "solid-state batteries",
            num_results=5,
            contents=SearchContents(highlights=HighlightsOptions(num_sentences=4, highlights_per_url=4), summary_query="Why?"),
        )
        await client.aclose()

        assert response.request_id == "r1"
        assert response.resolved_search_type == "deep"
        assert response.results[0].url == "https://a"
        assert response.results[0].highlights == ["h"]
        request = recorder.requests[0]
        assert str(request.url) == "https://api.exa.ai/search"
        assert request.headers["x-api-key"] == "exa-key"
        assert recorder.body() == {
            "query": "solid-state batteries",
            "type": "deep",
            "numResults": 5,
            "contents": {"text": True, "highlights": {"numSentences": 4, "highlightsPerUrl": 4}, "summary": {"query": "Why?"}},
        }

    @pytest.mark.anyio
    async def test_search_error_is_search_error(self):
        recorder = Recorder(httpx.Response(400, json={"error": "invalid query"}))
        client = ExaClient("k", max_retries=1, http_client=recorder.client())

        with pytest.raises(SearchError) as exc_info:
            await client.search("bad query")
        assert exc_info.value.query == "bad query"
        assert exc_info.value.status_code == 400

    @pytest.mark.anyio
    async def test_search_auth_error(self):
        client = ExaClient("k", max_retries=1, http_client=Recorder(httpx.Response(401)).client())
        with pytest.raises(ApiKeyError):
            await client.search("q")

    @pytest.mark.anyio
    async def test_get_contents(self):
        recorder = Recorder(httpx.Response(200, json={"results": [{"url": "https://a", "text": "full page", "summary": "s"}]}))
        client = ExaClient("k", http_client=recorder.client())

        results = await client.get_contents(["https://a", "https://b"])

        assert [r.text for r in results] == ["full page"]
        assert str(recorder.requests[0].url) == "https://api.exa.ai/contents"
        assert recorder.body() == {"ids": ["https://a", "https://b"], "text": True, "summary": True}

    @pytest.mark.anyio
    async def test_get_contents_empty(self):
        recorder = Recorder(httpx.Response(200, json={"results": []}))
        client = ExaClient("k", http_client=recorder.client())

        assert await client.get_contents([]) == []
        assert recorder.requests == []
