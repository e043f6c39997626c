"""Short live descriptions of streamed model reasoning."""

import logging
import time
from collections.abc import Callable

from ..clients.base import ChatClient, ChatOptions, system, user
from .prompts import REASONING_SUMMARY_SYSTEM_PROMPT

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_THRESHOLD = 800
MIN_SUMMARIZE_CHARS = 100
FLUSH_MIN_CHARS = 200
CONTEXT_KEEP_CHARS = 200
SUMMARIZE_WINDOW_CHARS = 1200


class ReasoningSummarizer:
    """Buffers reasoning tokens and periodically asks a fast model what is being thought about.

    Limits are off by default; `max_summaries` caps summaries per phase and
    `min_gap_seconds` spaces them out.
    """

    def __init__(
        self,
        client: ChatClient,
        model: str,
        *,
        buffer_threshold: int = DEFAULT_BUFFER_THRESHOLD,
        max_summaries: int | None = None,
        min_gap_seconds: float | None = None,
        max_tokens: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.model = model
        self.buffer_threshold = buffer_threshold
        self.max_summaries = max_summaries
        self.min_gap_seconds = min_gap_seconds
        self.max_tokens = max_tokens
        self._clock = clock
        self.reset()

    def reset(self) -> None:
        """Clear state for a new phase."""
        self._buffer = ""
        self._last_summary = ""
        self._seen: set[str] = set()
        self._count = 0
        self._last_time: float | None = None

    def _limit_reached(self) -> bool:
        return self.max_summaries is not None and self._count >= self.max_summaries

    async def add_reasoning(self, text: str) -> str | None:
        """Buffer `text`; return a new summary when the threshold and throttles allow."""
        self._buffer += text
        if self._limit_reached() or len(self._buffer) < self.buffer_threshold:
            return None
        if self.min_gap_seconds is not None and self._last_time is not None:
            if self._clock() - self._last_time < self.min_gap_seconds:
                return None

        summary = await self._summarize()
        self._buffer = self._buffer[-CONTEXT_KEEP_CHARS:]
        if summary:
            self._last_time = self._clock()
            self._count += 1
        return summary

    async def flush(self) -> str | None:
        """Summarize whatever is left in the buffer and clear it."""
        if self._limit_reached() or len(self._buffer) <= FLUSH_MIN_CHARS:
            self._buffer = ""
            return None
        summary = await self._summarize()
        self._buffer = ""
        if summary:
            self._count += 1
        return summary

    async def _summarize(self) -> str | None:
        if len(self._buffer) < MIN_SUMMARIZE_CHARS:
            return None

        messages = [system(REASONING_SUMMARY_SYSTEM_PROMPT), user(self._buffer[-SUMMARIZE_WINDOW_CHARS:])]
        try:
            response = await self.client.chat(
                self.model, messages, ChatOptions(temperature=0.3, stop=["\n"], max_tokens=self.max_tokens)
            )
        except Exception as e:
            logger.debug(f"Reasoning summary failed: {e}")
            return None

        summary = response.content
        if len(summary) <= 5 or summary == self._last_summary:
            return None
        key = summary[:20].lower()
        if key in self._seen:
            return None
        self._seen.add(key)
        self._last_summary = summary
        return summary
