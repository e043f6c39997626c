"""Research coordinator: plan, parallel research, gap filling, synthesis and verification."""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from ..clients.base import ChatClient, ChatOptions, SearchClient
from ..config import LLMSettings, ResearchSettings
from ..observability.logging import bind_run_context, get_run_logger
from ..observability.models import RunStage
from ..observability.store import get_run_registry
from .cost import estimate_cost, format_cost_breakdown
from .fact_checker import FactChecker, format_as_markdown
from .gaps import GapAnalyzer
from .guardrails import UNSET, AgentGuardrails, resolve_followup_rounds, resolve_guardrails
from .models import (
    AgentStatus,
    CostBreakdown,
    DeepResearchResult,
    ResearchPlan,
    ResearchStep,
    SourceResult,
    SubAgentReport,
    VerificationResult,
    merge_sources,
)
from .planner import Planner
from .runner import run_parallel_research
from .sub_agent import SubResearchAgent
from .summarizer import ReasoningSummarizer
from .synthesizer import Synthesizer

if TYPE_CHECKING:
    from fastmcp.dependencies import Progress
    from fastmcp.server.context import Context

logger = logging.getLogger(__name__)

DEFAULT_EXPECTED_FOLLOWUPS = 2


@dataclass
class ResearchCallbacks:
    """Optional hooks for live progress. All are called synchronously."""

    on_status: Callable[[str], None] | None = None
    on_sub_agent_status: Callable[[list[AgentStatus]], None] | None = None
    on_reasoning: Callable[[str], None] | None = None
    on_stream_output: Callable[[str], None] | None = None


def chat_options_from_settings(llm: LLMSettings) -> ChatOptions:
    """Sampling and reasoning options for the main model."""
    return ChatOptions(
        temperature=llm.temperature,
        max_tokens=llm.max_tokens,
        top_p=llm.top_p,
        top_k=llm.top_k,
        seed=llm.seed,
        frequency_penalty=llm.frequency_penalty,
        presence_penalty=llm.presence_penalty,
        reasoning_effort=llm.reasoning_effort,
    )


def collect_sources(reports: list[SubAgentReport]) -> list[SourceResult]:
    """All sources across reports, merged by url, expanded copies included."""
    merged: dict[str, SourceResult] = {}
    for report in reports:
        merge_sources(merged, report.sources)
        merge_sources(merged, report.expanded_sources or [])
    return list(merged.values())


class ResearchMachine:
    """Owns one research run and reports progress through callbacks and MCP progress."""

    def __init__(
        self,
        chat: ChatClient,
        search: SearchClient,
        llm: LLMSettings,
        research: ResearchSettings,
        *,
        guardrails: AgentGuardrails | None = None,
        max_followup_rounds: int | None = UNSET,
        verify: bool | None = None,
        save_path: str | None = None,
        callbacks: ResearchCallbacks | None = None,
        progress: Optional["Progress"] = None,
        ctx: Optional["Context"] = None,
        run_id: str | None = None,
    ):
        self.chat = chat
        self.search = search
        self.llm = llm
        self.research = research
        self.guardrails = guardrails or resolve_guardrails(research)
        self.max_followup_rounds = resolve_followup_rounds(research, max_followup_rounds)
        self.verify = research.verify_claims if verify is None else verify
        self.save_path = save_path
        self.callbacks = callbacks or ResearchCallbacks()
        self.progress = progress
        self.ctx = ctx
        self.run_id = run_id or str(uuid.uuid4())
        self.options = chat_options_from_settings(llm)
        self.summarizer = ReasoningSummarizer(chat, llm.summarizer_model)
        self._progress_total = 0
        self._progress_done = 0
        self._stage: RunStage | None = None

    # --- progress plumbing ---

    async def _report_progress(self, message: str | None = None, increment: bool = False, total: int | None = None) -> None:
        """Report progress to the run registry and the MCP progress tracker if available."""
        if increment:
            self._progress_done += 1
        get_run_registry().update_progress(self.run_id, self._progress_done, self._progress_total, message, self._stage)
        if not self.progress:
            return
        if total is not None:
            await self.progress.set_total(total)
        if message:
            await self.progress.set_message(message)
        if increment:
            await self.progress.increment()

    async def _status(self, message: str) -> None:
        if self.callbacks.on_status:
            self.callbacks.on_status(message)
        if self.ctx:
            await self.ctx.info(message)
        await self._report_progress(message=message)

    async def _add_to_total(self, count: int) -> None:
        self._progress_total += count
        await self._report_progress(total=self._progress_total)

    def _phase(self, stage: RunStage) -> None:
        self._stage = stage
        bind_run_context(self.run_id, stage.value)

    async def _on_reasoning_token(self, text: str) -> None:
        summary = await self.summarizer.add_reasoning(text)
        if summary:
            await self._emit_reasoning(summary)

    async def _emit_reasoning(self, summary: str) -> None:
        if self.callbacks.on_reasoning:
            self.callbacks.on_reasoning(summary)
        await self._report_progress(message=summary)

    async def _flush_reasoning(self) -> None:
        summary = await self.summarizer.flush()
        if summary:
            await self._emit_reasoning(summary)
        self.summarizer.reset()

    # --- phases ---

    async def create_plan(self, question: str) -> ResearchPlan:
        """Stream the planning call, surfacing summarized reasoning as it arrives."""
        self._phase(RunStage.PLANNING)
        await self._add_to_total(1)
        await self._status("Planning research approach...")

        planner = Planner(
            self.chat,
            self.llm.model_name,
            min_steps=self.research.plan_min_steps,
            max_steps=self.research.plan_max_steps,
            options=self.options,
        )
        try:
            plan = await planner.create_plan_with_reasoning(question, self._on_reasoning_token)
        finally:
            await self._flush_reasoning()

        get_run_logger().info("plan_created", steps=len(plan.steps))
        await self._report_progress(increment=True)
        return plan

    async def _run_batch(self, steps: list[ResearchStep]) -> list[SubAgentReport]:
        await self._add_to_total(len(steps))
        agent = SubResearchAgent(self.chat, self.search, self.llm.sub_agent_model, self.guardrails)
        return await run_parallel_research(steps, agent, observer=self, concurrency=self.guardrails.concurrency)

    # ResearchObserver
    def on_status_update(self, statuses: list[AgentStatus]) -> None:
        if self.callbacks.on_sub_agent_status:
            self.callbacks.on_sub_agent_status(statuses)

    async def on_progress(self, completed: int, total: int, step: ResearchStep) -> None:
        await self._report_progress(message=f"Researched ({completed}/{total}): {step.question[:80]}", increment=True)

    async def execute_plan(self, plan: ResearchPlan) -> DeepResearchResult:
        """Run the plan through research, gap filling, synthesis and verification."""
        self._phase(RunStage.RESEARCHING)
        await self._status(f"Researching {len(plan.steps)} topics in parallel...")
        reports = await self._run_batch(plan.steps)

        if self.max_followup_rounds != 0:
            self._phase(RunStage.GAP_ANALYSIS)
            analyzer = GapAnalyzer(
                self.chat,
                self.llm.model_name,
                max_gaps=self.research.max_gaps_per_round,
                on_status=self.callbacks.on_status,
            )
            reports = await analyzer.run_followups(plan, reports, self._run_batch, self.max_followup_rounds)

        self._phase(RunStage.SYNTHESIZING)
        await self._add_to_total(2 if self.verify else 1)
        await self._status("Synthesizing report...")
        markdown = await self._synthesize(plan.main_question, reports)
        await self._report_progress(increment=True)

        verification: VerificationResult | None = None
        if self.verify:
            self._phase(RunStage.VERIFYING)
            await self._status("Verifying claims against sources...")
            verification = await FactChecker(self.chat, self.llm.fact_check_model).verify(markdown, collect_sources(reports))
            if verification.total_claims > 0:
                markdown += format_as_markdown(verification)
            await self._report_progress(increment=True)

        result = DeepResearchResult(markdown=markdown, plan=plan, reports=reports, verification=verification)
        if self.save_path:
            result.saved_path = self._save_report(markdown)

        get_run_logger().info("run_completed", reports=len(reports), sources=len(result.sources), report_length=len(markdown))
        await self._status("Research complete")
        return result

    async def _synthesize(self, main_question: str, reports: list[SubAgentReport]) -> str:
        synthesizer = Synthesizer(self.chat, self.llm.model_name, self.options)
        if not self.research.stream_output:
            return await synthesizer.synthesize_text(main_question, reports)

        chunks: list[str] = []
        try:
            async for event in synthesizer.synthesize_with_reasoning(main_question, reports):
                if event.type == "reasoning":
                    await self._on_reasoning_token(event.text)
                    continue
                chunks.append(event.text)
                if self.callbacks.on_stream_output:
                    self.callbacks.on_stream_output(event.text)
        finally:
            await self._flush_reasoning()
        return "".join(chunks).strip()

    async def run(self, question: str, dry_run: bool = False) -> DeepResearchResult:
        """Plan and execute research for `question`.

        With `dry_run` no research is done; the result carries only a cost estimate.
        """
        if dry_run:
            cost = await self.estimate_cost()
            return DeepResearchResult(markdown=format_cost_breakdown(cost), plan=ResearchPlan(main_question=question), cost_estimate=cost)

        logger.info(f"Starting research run {self.run_id}: {question}")
        plan = await self.create_plan(question)
        return await self.execute_plan(plan)

    async def estimate_cost(self, num_steps: int | None = None) -> CostBreakdown:
        """Estimate the run cost from current model pricing."""
        models = {m.id: m for m in await self.chat.list_models()}
        followups = DEFAULT_EXPECTED_FOLLOWUPS if self.max_followup_rounds is None else self.max_followup_rounds
        return estimate_cost(
            models.get(self.llm.model_name),
            sub_agent_model=models.get(self.llm.sub_agent_model),
            summarizer_model=models.get(self.llm.summarizer_model),
            num_steps=num_steps or self.research.plan_max_steps,
            num_followups=followups,
            results_per_search=self.guardrails.num_results,
        )

    def _save_report(self, report: str) -> str | None:
        """Save the report to a file."""
        try:
            path = Path(self.save_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(report, encoding="utf-8")
            logger.info(f"Report saved to {path}")
            return str(path)
        except OSError as e:
            logger.error(f"Failed to save report: {e}")
            return None
