"""Gap analysis: decides whether more research is needed and runs follow-up batches."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ..clients.base import ChatClient, ChatOptions, system, user
from .models import ResearchPlan, ResearchStep, SubAgentReport, normalize_query
from .parsing import extract_json_object
from .prompts import GAP_EVALUATION_SYSTEM_PROMPT, get_gap_evaluation_prompt
from .runner import is_failed_report

logger = logging.getLogger(__name__)

DEFAULT_MAX_GAPS = 5
GAP_PURPOSE = "Fill knowledge gap"

RunBatch = Callable[[list[ResearchStep]], Awaitable[list[SubAgentReport]]]
StatusSink = Callable[[str], None]


@dataclass
class GapEvaluation:
    needs_more: bool = False
    gaps: list[Any] = field(default_factory=list)


def build_digest(reports: list[SubAgentReport]) -> str:
    """Compact per-report summary fed to the gap evaluation model."""
    entries = []
    for i, report in enumerate(reports, start=1):
        insights = [x for x in report.key_insights[:3] if x]
        if is_failed_report(report):
            findings = "Status: FAILED (agent error)"
        elif insights:
            findings = f"Key findings: {'; '.join(insights)}"
        elif report.source_count == 0:
            findings = "Key findings: (no sources found)"
        else:
            findings = "Key findings: (no bullet insights extracted)"
        entries.append(
            f"Topic {i}: {report.step.question}\nQuery: {report.step.search_query}\nSources: {report.source_count}\n{findings}"
        )
    return "\n\n".join(entries)


def _gap_query(gap: Any) -> str:
    if not isinstance(gap, dict):
        return ""
    for key in ("query", "searchQuery"):
        value = gap.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


class GapAnalyzer:
    """Evaluates coverage and turns proposed gaps into new, non-duplicate steps."""

    def __init__(
        self,
        client: ChatClient,
        model: str,
        *,
        max_gaps: int = DEFAULT_MAX_GAPS,
        on_status: StatusSink | None = None,
    ):
        self.client = client
        self.model = model
        self.max_gaps = max(1, max_gaps)
        self.on_status = on_status or (lambda _status: None)

    async def evaluate(self, main_question: str, reports: list[SubAgentReport]) -> GapEvaluation:
        """Ask the model whether coverage is sufficient. Failures mean "no more research"."""
        messages = [
            system(GAP_EVALUATION_SYSTEM_PROMPT),
            user(get_gap_evaluation_prompt(main_question, build_digest(reports), self.max_gaps)),
        ]
        try:
            response = await self.client.chat(self.model, messages, ChatOptions(temperature=0.3))
        except Exception as e:
            logger.error(f"Gap analysis failed: {e}")
            return GapEvaluation()

        data = extract_json_object(response.content)
        if data is None:
            logger.warning("Gap analysis returned no parseable JSON")
            return GapEvaluation()
        gaps = data.get("gaps")
        return GapEvaluation(
            needs_more=bool(data.get("needsMore")),
            gaps=gaps[: self.max_gaps] if isinstance(gaps, list) else [],
        )

    def filter_gaps(self, gaps: list[Any], executed_queries: set[str], next_id: int) -> list[ResearchStep]:
        """Drop invalid and already-executed gaps and build steps for the rest.

        Does not mutate `executed_queries`; duplicates within `gaps` are also dropped.
        """
        steps: list[ResearchStep] = []
        seen = set(executed_queries)
        for gap in gaps:
            query = _gap_query(gap)
            key = normalize_query(query)
            if not key or key in seen:
                continue
            seen.add(key)
            question = gap.get("question")
            purpose = gap.get("purpose")
            steps.append(
                ResearchStep(
                    id=next_id + len(steps),
                    question=question.strip() if isinstance(question, str) and question.strip() else f"Follow-up: {query}",
                    search_query=query,
                    purpose=purpose.strip() if isinstance(purpose, str) and purpose.strip() else GAP_PURPOSE,
                )
            )
        return steps

    async def run_followups(
        self,
        plan: ResearchPlan,
        reports: list[SubAgentReport],
        run_batch: RunBatch,
        max_rounds: int | None,
    ) -> list[SubAgentReport]:
        """Run gap-filling rounds until coverage is sufficient or `max_rounds` is reached.

        New steps are appended to `plan.steps`. Returns all reports, the initial
        ones first. `max_rounds=None` means no round ceiling.
        """
        all_reports = list(reports)
        executed = {normalize_query(s.search_query) for s in plan.steps if normalize_query(s.search_query)}
        executed.update(normalize_query(r.step.search_query) for r in reports if normalize_query(r.step.search_query))

        rounds = 0
        while max_rounds is None or rounds < max_rounds:
            self.on_status("Evaluating research gaps...")
            evaluation = await self.evaluate(plan.main_question, all_reports)
            new_steps = self.filter_gaps(evaluation.gaps, executed, plan.next_step_id())
            if not evaluation.needs_more or not new_steps:
                logger.info(f"Gap analysis finished after {rounds} follow-up round(s)")
                break

            plan.steps.extend(new_steps)
            executed.update(normalize_query(s.search_query) for s in new_steps)
            self.on_status(f"Found {len(new_steps)} gaps. Researching...")
            logger.info(f"Follow-up round {rounds + 1}: researching {len(new_steps)} gaps")

            all_reports.extend(await run_batch(new_steps))
            rounds += 1
        return all_reports
