"""Provider-neutral types and the client protocols the research engine depends on."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..research.models import SourceResult

Role = Literal["system", "user", "assistant"]
ReasoningEffort = Literal["low", "medium", "high"]
SearchType = Literal["auto", "neural", "deep", "fast"]


@dataclass
class Message:
    """A single chat message."""

    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


def system(content: str) -> Message:
    return Message(role="system", content=content)


def user(content: str) -> Message:
    return Message(role="user", content=content)


@dataclass
class ChatOptions:
    """Sampling and reasoning options for a chat request. None means provider default."""

    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    top_k: int | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    seed: int | None = None
    stop: list[str] | None = None
    reasoning_effort: ReasoningEffort | None = None
    include_reasoning: bool | None = None

    def merged(self, **overrides: Any) -> ChatOptions:
        """Return a copy with the given non-None fields replaced."""
        values = asdict(self)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return ChatOptions(**values)

    def to_payload(self) -> dict[str, Any]:
        """Translate to the OpenAI-compatible request body fields."""
        payload: dict[str, Any] = {
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "top_p": self.top_p,
            "top_k": self.top_k,
            "frequency_penalty": self.frequency_penalty,
            "presence_penalty": self.presence_penalty,
            "seed": self.seed,
            "stop": self.stop,
            "include_reasoning": self.include_reasoning,
        }
        if self.reasoning_effort:
            payload["reasoning"] = {"effort": self.reasoning_effort}
        return {k: v for k, v in payload.items() if v is not None}


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ChatChoice:
    message: Message
    finish_reason: str | None = None


@dataclass
class ChatResponse:
    """Non-streaming chat completion result."""

    id: str = ""
    choices: list[ChatChoice] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)

    @property
    def content(self) -> str:
        """Stripped text of the first choice, or an empty string."""
        if not self.choices:
            return ""
        return (self.choices[0].message.content or "").strip()


@dataclass
class StreamEvent:
    """One streamed token chunk, either answer content or model reasoning."""

    type: Literal["content", "reasoning"]
    text: str


@dataclass
class ModelPricing:
    prompt: float = 0.0  # USD per token
    completion: float = 0.0


@dataclass
class ModelInfo:
    """A model offered by the language model provider."""

    id: str
    name: str
    context_length: int = 0
    pricing: ModelPricing = field(default_factory=ModelPricing)
    description: str | None = None
    max_completion_tokens: int | None = None
    supported_parameters: list[str] | None = None


@dataclass
class HighlightsOptions:
    num_sentences: int = 3
    highlights_per_url: int = 3
    query: str | None = None


@dataclass
class SearchContents:
    """Which content fields the search provider should return per result."""

    text: bool = True
    highlights: HighlightsOptions | None = field(default_factory=HighlightsOptions)
    summary_query: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"text": self.text}
        if self.highlights:
            highlights: dict[str, Any] = {
                "numSentences": self.highlights.num_sentences,
                "highlightsPerUrl": self.highlights.highlights_per_url,
            }
            if self.highlights.query:
                highlights["query"] = self.highlights.query
            payload["highlights"] = highlights
        if self.summary_query is not None:
            payload["summary"] = {"query": self.summary_query}
        return payload


@dataclass
class SearchResponse:
    results: list[SourceResult] = field(default_factory=list)
    request_id: str = ""
    resolved_search_type: str = ""


@runtime_checkable
class ChatClient(Protocol):
    """Language model capability consumed by the research engine."""

    async def chat(self, model: str, messages: list[Message], options: ChatOptions | None = None) -> ChatResponse: ...

    def chat_stream_with_reasoning(
        self, model: str, messages: list[Message], options: ChatOptions | None = None
    ) -> AsyncIterator[StreamEvent]: ...

    async def list_models(self) -> list[ModelInfo]: ...


@runtime_checkable
class SearchClient(Protocol):
    """Search and content-expansion capability consumed by the research engine."""

    async def search(
        self,
        query: str,
        *,
        type: SearchType = "deep",
        num_results: int = 10,
        contents: SearchContents | None = None,
    ) -> SearchResponse: ...

    async def get_contents(self, urls: list[str]) -> list[SourceResult]: ...
