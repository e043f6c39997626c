"""Language model and search provider clients."""

from .base import (
    ChatClient,
    ChatOptions,
    ChatResponse,
    Message,
    ModelInfo,
    ModelPricing,
    SearchClient,
    SearchContents,
    SearchResponse,
    StreamEvent,
)

__all__ = [
    "ChatClient",
    "ChatOptions",
    "ChatResponse",
    "Message",
    "ModelInfo",
    "ModelPricing",
    "SearchClient",
    "SearchContents",
    "SearchResponse",
    "StreamEvent",
]
