"""OpenRouter (OpenAI-compatible) chat client built on httpx."""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from .base import ChatChoice, ChatOptions, ChatResponse, Message, ModelInfo, ModelPricing, StreamEvent, Usage
from .http import raise_for_provider_status, send_with_retry, streaming_response

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
APP_REFERER = "https://github.com/mcp-server-deep-research"
APP_TITLE = "Deep Research"
SERVICE = "OpenRouter"


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_model(data: dict[str, Any]) -> ModelInfo:
    """Map one entry of the /models listing to a ModelInfo."""
    pricing = data.get("pricing") or {}
    top_provider = data.get("top_provider") or {}
    return ModelInfo(
        id=data["id"],
        name=data.get("name") or data["id"],
        context_length=data.get("context_length") or top_provider.get("context_length") or 0,
        pricing=ModelPricing(prompt=_to_float(pricing.get("prompt")), completion=_to_float(pricing.get("completion"))),
        description=data.get("description"),
        max_completion_tokens=top_provider.get("max_completion_tokens"),
        supported_parameters=data.get("supported_parameters"),
    )


def parse_sse_line(line: str) -> StreamEvent | None | bool:
    """Parse one SSE line.

    Returns a StreamEvent for a content or reasoning delta, None for lines that
    carry nothing (keep-alives, malformed JSON, empty deltas) and False for the
    terminal `[DONE]` marker.
    """
    line = line.strip()
    if not line.startswith("data: "):
        return None
    data = line[len("data: ") :]
    if data == "[DONE]":
        return False
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        return None

    choices = payload.get("choices") or []
    if not choices:
        return None
    delta = choices[0].get("delta") or {}
    reasoning = delta.get("reasoning_content") or delta.get("reasoning")
    if reasoning:
        return StreamEvent(type="reasoning", text=reasoning)
    if delta.get("content"):
        return StreamEvent(type="content", text=delta["content"])
    return None


class OpenRouterClient:
    """Chat completions, streaming and model listing against an OpenAI-compatible API."""

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        *,
        chat_timeout: float = 300.0,
        stream_timeout: float = 900.0,
        list_timeout: float = 60.0,
        max_retries: int = 3,
        key_name: str = "OPENROUTER_API_KEY",
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = (base_url or OPENROUTER_BASE_URL).rstrip("/")
        self.chat_timeout = chat_timeout
        self.stream_timeout = stream_timeout
        self.list_timeout = list_timeout
        self.max_retries = max_retries
        self.key_name = key_name
        self._client = http_client or httpx.AsyncClient()

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": APP_REFERER,
            "X-Title": APP_TITLE,
        }

    def _chat_request(self, model: str, messages: list[Message], options: ChatOptions | None, stream: bool) -> httpx.Request:
        body: dict[str, Any] = {
            "model": model,
            "messages": [m.to_dict() for m in messages],
            "stream": stream,
            **(options or ChatOptions()).to_payload(),
        }
        return self._client.build_request("POST", f"{self.base_url}/chat/completions", headers=self._headers, json=body)

    async def chat(self, model: str, messages: list[Message], options: ChatOptions | None = None) -> ChatResponse:
        """Non-streaming chat completion."""
        request = self._chat_request(model, messages, options, stream=False)
        response = await send_with_retry(self._client, request, service=SERVICE, timeout=self.chat_timeout, retries=self.max_retries)
        raise_for_provider_status(response, SERVICE, self.key_name)

        data = response.json()
        choices = [
            ChatChoice(
                message=Message(role=c.get("message", {}).get("role", "assistant"), content=c.get("message", {}).get("content") or ""),
                finish_reason=c.get("finish_reason"),
            )
            for c in data.get("choices") or []
        ]
        usage = data.get("usage") or {}
        return ChatResponse(
            id=data.get("id", ""),
            choices=choices,
            usage=Usage(
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
            ),
        )

    async def chat_stream_with_reasoning(
        self, model: str, messages: list[Message], options: ChatOptions | None = None
    ) -> AsyncIterator[StreamEvent]:
        """Stream content and reasoning deltas as StreamEvents."""
        request = self._chat_request(model, messages, options, stream=True)
        async with streaming_response(
            self._client, request, service=SERVICE, timeout=self.stream_timeout, retries=self.max_retries
        ) as response:
            if not response.is_success:
                await response.aread()
            raise_for_provider_status(response, SERVICE, self.key_name)
            async for line in response.aiter_lines():
                event = parse_sse_line(line)
                if event is False:
                    return
                if event:
                    yield event

    async def chat_stream(self, model: str, messages: list[Message], options: ChatOptions | None = None) -> AsyncIterator[str]:
        """Stream only content text, dropping reasoning."""
        async for event in self.chat_stream_with_reasoning(model, messages, options):
            if event.type == "content":
                yield event.text

    async def list_models(self) -> list[ModelInfo]:
        """List models available to this key."""
        request = self._client.build_request("GET", f"{self.base_url}/models", headers=self._headers)
        response = await send_with_retry(self._client, request, service=SERVICE, timeout=self.list_timeout, retries=self.max_retries)
        raise_for_provider_status(response, SERVICE, self.key_name)
        return [parse_model(m) for m in response.json().get("data") or []]

    async def aclose(self) -> None:
        await self._client.aclose()
