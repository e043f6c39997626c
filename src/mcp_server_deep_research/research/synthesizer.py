"""Synthesis of sub-agent reports into the final cited report."""

import logging
from collections.abc import AsyncIterator

from ..clients.base import ChatClient, ChatOptions, Message, StreamEvent, system, user
from .models import SubAgentReport
from .prompts import SYNTHESIS_SYSTEM_PROMPT, get_synthesis_prompt, get_synthesis_section

logger = logging.getLogger(__name__)


def build_synthesis_context(main_question: str, reports: list[SubAgentReport]) -> str:
    sections = [
        get_synthesis_section(i, report.step.question, report.step.purpose, report.summary)
        for i, report in enumerate(reports, start=1)
    ]
    return get_synthesis_prompt(main_question, sections)


class Synthesizer:
    """Streams the final report from the synthesis model."""

    def __init__(self, client: ChatClient, model: str, options: ChatOptions | None = None):
        self.client = client
        self.model = model
        self.options = options or ChatOptions()

    def _messages(self, main_question: str, reports: list[SubAgentReport]) -> list[Message]:
        return [system(SYNTHESIS_SYSTEM_PROMPT), user(build_synthesis_context(main_question, reports))]

    async def synthesize_with_reasoning(self, main_question: str, reports: list[SubAgentReport]) -> AsyncIterator[StreamEvent]:
        """Yield reasoning and content events as the report is generated."""
        logger.info(f"Synthesizing report from {len(reports)} sub-reports")
        async for event in self.client.chat_stream_with_reasoning(self.model, self._messages(main_question, reports), self.options):
            yield event

    async def synthesize(self, main_question: str, reports: list[SubAgentReport]) -> AsyncIterator[str]:
        """Yield report text chunks."""
        async for event in self.synthesize_with_reasoning(main_question, reports):
            if event.type == "content":
                yield event.text

    async def synthesize_text(self, main_question: str, reports: list[SubAgentReport]) -> str:
        """Generate the whole report with one non-streaming call."""
        logger.info(f"Synthesizing report from {len(reports)} sub-reports")
        response = await self.client.chat(self.model, self._messages(main_question, reports), self.options)
        return response.content
