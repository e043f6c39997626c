"""Sub-research agent: answers one research step from web sources.

The agent runs one or more search rounds, optionally reads the most promising
pages in full, asks the model for a structured summary under a fixed character
budget and may spawn child agents for sub-topics that need deeper research.
Only the primary search and the analysis call can raise; every optional
enhancement degrades to "do nothing" on failure.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import asdict, dataclass

from ..clients.base import ChatClient, ChatOptions, HighlightsOptions, SearchClient, SearchContents, system, user
from .guardrails import AgentGuardrails
from .models import ResearchStep, SourceResult, SubAgentReport, merge_sources, normalize_query
from .parsing import extract_json_array, extract_json_object
from .prompts import (
    EXPANSION_SYSTEM_PROMPT,
    FOLLOWUP_QUERY_SYSTEM_PROMPT,
    SUB_AGENT_SYSTEM_PROMPT,
    SUB_TOPIC_SYSTEM_PROMPT,
    get_expansion_prompt,
    get_followup_query_prompt,
    get_sub_agent_prompt,
    get_sub_topic_prompt,
)

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]

MAX_KEY_INSIGHTS = 5
MAX_TOTAL_INSIGHTS = 10
MAX_SUB_TOPICS = 2
HIGHLIGHT_SENTENCES = 4
HIGHLIGHTS_PER_URL = 4

_KEY_FINDINGS = re.compile(r"## Key Findings\n([\s\S]*?)(?=\n## |$)")
_BULLET = re.compile(r"^- .+$", re.MULTILINE)


@dataclass
class SubTopic:
    question: str
    search_query: str
    reason: str


def _brief(text: str | None, max_len: int) -> str:
    text = " ".join((text or "").split())
    if len(text) <= max_len:
        return text
    return text[: max_len - 1] + "…"


def extract_key_insights(summary: str) -> list[str]:
    """Bullets under the `## Key Findings` heading, at most five."""
    match = _KEY_FINDINGS.search(summary)
    if not match:
        return []
    return [bullet[2:].strip() for bullet in _BULLET.findall(match.group(1))][:MAX_KEY_INSIGHTS]


def build_source_context(sources: list[SourceResult], expanded_urls: set[str], guardrails: AgentGuardrails) -> str:
    """Render sources into the analysis context, honouring per-source and total caps.

    Expanded pages get the larger per-source cap. Once the total budget is
    exhausted no further sources are added.
    """
    remaining = guardrails.max_total_source_chars
    parts: list[str] = []
    for i, source in enumerate(sources, start=1):
        per_source = guardrails.expanded_text_chars if source.url in expanded_urls else guardrails.source_text_chars
        cap = per_source if remaining is None else min(per_source, remaining)
        content = source.raw_content()[: max(cap, 0)]
        parts.append(f"[Source {i}] {source.title}\nURL: {source.url}\n{content}")

        if remaining is not None:
            remaining = max(0, remaining - len(content))
            if remaining <= 0:
                break
    return "\n\n---\n\n".join(parts)


class SubResearchAgent:
    """Researches a single step. One instance can serve many steps concurrently."""

    def __init__(
        self,
        chat: ChatClient,
        search: SearchClient,
        model: str,
        guardrails: AgentGuardrails | None = None,
        *,
        options: ChatOptions | None = None,
        depth: int = 0,
    ):
        self.chat = chat
        self.search = search
        self.model = model
        self.guardrails = guardrails or AgentGuardrails()
        self.options = options or ChatOptions()
        self.depth = depth

    def _search_status(self, round_num: int) -> str:
        if self.guardrails.unlimited_rounds:
            return f"Searching (round {round_num})..."
        if self.guardrails.max_search_rounds > 1:
            return f"Searching ({round_num}/{self.guardrails.max_search_rounds})..."
        return "Searching..."

    async def research(
        self,
        step: ResearchStep,
        expand_sources: bool | None = None,
        on_status: StatusCallback | None = None,
    ) -> SubAgentReport:
        """Research one step and return its report.

        Raises:
            ProviderError: The primary search or the analysis call failed
        """
        report_status = on_status or (lambda _status: None)
        g = self.guardrails
        expand = g.expand_sources if expand_sources is None else expand_sources

        # 1. Search rounds
        merged: dict[str, SourceResult] = {}
        queries_used: list[str] = []
        used_keys: set[str] = set()
        query = step.search_query or step.question
        for round_num in range(1, g.max_search_rounds + 1):
            key = normalize_query(query)
            if not key or key in used_keys:
                break
            used_keys.add(key)
            queries_used.append(query)

            report_status(self._search_status(round_num))
            response = await self.search.search(
                query,
                type="deep",
                num_results=g.num_results,
                contents=SearchContents(
                    text=True,
                    highlights=HighlightsOptions(num_sentences=HIGHLIGHT_SENTENCES, highlights_per_url=HIGHLIGHTS_PER_URL),
                    summary_query=step.question,
                ),
            )
            step.results = response
            merge_sources(merged, response.results)

            if round_num >= g.max_search_rounds:
                break
            report_status("Checking for additional sources...")
            next_query = await self._suggest_followup_query(step, queries_used, list(merged.values()))
            if not next_query:
                break
            query = next_query

        search_results = sorted(merged.values(), key=lambda s: s.score, reverse=True)

        # 2. Expansion
        expanded: list[SourceResult] = []
        if expand and g.max_expanded_urls > 0 and search_results:
            report_status(f"Found {len(search_results)} sources, checking for deep reads...")
            urls = await self._select_urls_for_expansion(step, search_results)
            if urls:
                report_status(f"Reading {len(urls)} pages in depth...")
                expanded = await self._fetch_contents(urls)

        # 3. Analysis
        expanded_by_url = {s.url: s for s in expanded if s.url}
        search_urls = {s.url for s in search_results}
        analysis_sources = [expanded_by_url.get(s.url, s) for s in search_results]
        analysis_sources += [s for url, s in expanded_by_url.items() if url not in search_urls]

        report_status(f"Analyzing {len(analysis_sources)} sources...")
        summary = await self._analyze(step, analysis_sources, set(expanded_by_url))

        # 4. Insights
        report_status("Extracting insights...")
        insights = extract_key_insights(summary)

        # 5. Recursion
        sources = list(search_results)
        if self.depth < g.max_recursion_depth:
            report_status("Checking for complex sub-topics...")
            sub_topics = await self._identify_sub_topics(step, summary, search_results)
            if sub_topics:
                report_status(f"Found {len(sub_topics)} sub-topic(s) requiring deeper research...")
            for n, topic in enumerate(sub_topics, start=1):
                report_status(f"[Child] Researching: {topic.question[:40]}...")
                child_step = ResearchStep(
                    id=step.id * 100 + n,
                    question=topic.question,
                    search_query=topic.search_query,
                    purpose=topic.reason,
                )
                child = SubResearchAgent(
                    self.chat,
                    self.search,
                    self.model,
                    g.for_child(),
                    options=self.options,
                    depth=self.depth + 1,
                )
                try:
                    child_report = await child.research(
                        child_step,
                        expand_sources=expand,
                        on_status=lambda status: report_status(f"  [Child] {status}"),
                    )
                except Exception as e:
                    logger.warning(f"Sub-research for '{topic.question}' failed: {e}")
                    report_status("  [Child] Sub-research failed, continuing...")
                    continue

                summary += f"\n\n---\n\n### Sub-Research: {topic.question}\n\n{child_report.summary}"
                insights.extend(child_report.key_insights)
                by_url = {s.url: s for s in sources}
                merge_sources(by_url, child_report.sources)
                sources = list(by_url.values())

        report_status("Complete")
        return SubAgentReport(
            step=step,
            summary=summary,
            sources=sources,
            expanded_sources=expanded or None,
            key_insights=insights[:MAX_TOTAL_INSIGHTS],
        )

    async def _suggest_followup_query(self, step: ResearchStep, queries_used: list[str], sources: list[SourceResult]) -> str | None:
        """Ask the model for one more query; None means stop searching."""
        source_lines = []
        for i, s in enumerate(sources[:6], start=1):
            snippet = _brief(s.summary or (s.highlights or [""])[0] or s.text, 220)
            source_lines.append(f"{i}. {_brief(s.title, 90)} ({s.url})" + (f": {snippet}" if snippet else ""))
        messages = [
            system(FOLLOWUP_QUERY_SYSTEM_PROMPT),
            user(get_followup_query_prompt(step.question, queries_used, source_lines)),
        ]
        try:
            response = await self.chat.chat(self.model, messages, ChatOptions(temperature=0.2))
        except Exception as e:
            logger.debug(f"Follow-up query suggestion failed: {e}")
            return None

        content = response.content
        data = extract_json_object(content)
        if data is not None:
            q = data.get("query")
            return (q.strip() or None) if isinstance(q, str) else None
        # Plain-text answer is taken as the query unless it looks like broken JSON.
        if not content or content.startswith(("{", "[")):
            return None
        return content

    async def _select_urls_for_expansion(self, step: ResearchStep, sources: list[SourceResult]) -> list[str]:
        g = self.guardrails
        if g.max_expanded_urls <= 0 or g.expansion_candidates <= 0:
            return []
        candidates = [
            f"{i}. {s.title} ({s.url})\n   {s.summary or ' '.join(s.highlights or [])}"
            for i, s in enumerate(sources[: g.expansion_candidates], start=1)
        ]
        messages = [
            system(EXPANSION_SYSTEM_PROMPT),
            user(get_expansion_prompt(step.question, candidates, g.max_expanded_urls)),
        ]
        try:
            response = await self.chat.chat(self.model, messages, ChatOptions(temperature=0.2))
        except Exception as e:
            logger.debug(f"Expansion selection failed: {e}")
            return []

        urls = extract_json_array(response.content) or []
        selected: list[str] = []
        for url in urls:
            if isinstance(url, str) and url.strip() and url.strip() not in selected:
                selected.append(url.strip())
        return selected[: g.max_expanded_urls]

    async def _fetch_contents(self, urls: list[str]) -> list[SourceResult]:
        try:
            return await self.search.get_contents(urls)
        except Exception as e:
            logger.warning(f"Failed to read {len(urls)} pages in depth: {e}")
            return []

    async def _analyze(self, step: ResearchStep, sources: list[SourceResult], expanded_urls: set[str]) -> str:
        context = build_source_context(sources, expanded_urls, self.guardrails)
        messages = [
            system(SUB_AGENT_SYSTEM_PROMPT),
            user(get_sub_agent_prompt(step.question, step.purpose, context)),
        ]
        response = await self.chat.chat(self.model, messages, ChatOptions(temperature=0.4).merged(**asdict(self.options)))
        return response.content

    async def _identify_sub_topics(self, step: ResearchStep, summary: str, sources: list[SourceResult]) -> list[SubTopic]:
        titles = [f"{s.title} - {s.summary or (s.highlights or [''])[0]}"[:200] for s in sources[:6]]
        messages = [
            system(SUB_TOPIC_SYSTEM_PROMPT),
            user(get_sub_topic_prompt(step.question, summary[:1500], titles)),
        ]
        try:
            response = await self.chat.chat(self.model, messages, ChatOptions(temperature=0.3))
        except Exception as e:
            logger.debug(f"Sub-topic identification failed: {e}")
            return []

        data = extract_json_object(response.content) or {}
        raw_topics = data.get("subTopics")
        if not isinstance(raw_topics, list):
            return []

        topics: list[SubTopic] = []
        for raw in raw_topics:
            if not isinstance(raw, dict) or not isinstance(raw.get("question"), str) or not raw["question"].strip():
                continue
            question = raw["question"].strip()
            search_query = raw.get("searchQuery")
            reason = raw.get("reason")
            topics.append(
                SubTopic(
                    question=question,
                    search_query=search_query.strip() if isinstance(search_query, str) and search_query.strip() else question,
                    reason=reason.strip() if isinstance(reason, str) and reason.strip() else "Needs deeper research",
                )
            )
        return topics[:MAX_SUB_TOPICS]

