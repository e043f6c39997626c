"""Parallel execution of research steps with a bounded worker pool."""

import asyncio
import inspect
import logging
from collections.abc import Awaitable
from copy import copy
from typing import Protocol

from .models import AgentStatus, ResearchStep, StepStatus, SubAgentReport
from .sub_agent import SubResearchAgent

logger = logging.getLogger(__name__)

FAILED_MARKER = "Sub-agent failed to complete"


class ResearchObserver(Protocol):
    """Receives live status of a batch. Both hooks are optional; `on_progress` may be async."""

    def on_status_update(self, statuses: list[AgentStatus]) -> None: ...

    def on_progress(self, completed: int, total: int, step: ResearchStep) -> Awaitable[None] | None: ...


def failed_report(step: ResearchStep, error: BaseException) -> SubAgentReport:
    """Degraded report for a step whose agent raised."""
    summary = (
        f"## Key Findings\n- {FAILED_MARKER}\n\n"
        f"## Details\n{str(error) or type(error).__name__}\n\n"
        "## Sources Used\n- (none)\n\n"
        "## Gaps or Uncertainties\n- This sub-topic could not be completed due to an error."
    )
    return SubAgentReport(step=step, summary=summary, sources=[], key_insights=[])


def is_failed_report(report: SubAgentReport) -> bool:
    return FAILED_MARKER in report.summary


class _StatusBoard:
    """Per-slot statuses; every change pushes a fresh snapshot to the observer."""

    def __init__(self, steps: list[ResearchStep], observer: ResearchObserver | None):
        self.statuses = [AgentStatus(index=i, question=step.question) for i, step in enumerate(steps)]
        self.observer = observer

    def update(self, index: int, **changes) -> None:
        status = self.statuses[index]
        for name, value in changes.items():
            setattr(status, name, value)
        self.push()

    def push(self) -> None:
        hook = getattr(self.observer, "on_status_update", None)
        if hook is None:
            return
        try:
            hook([copy(s) for s in self.statuses])
        except Exception as e:
            logger.warning(f"Status observer failed: {e}")

    async def progress(self, completed: int, total: int, step: ResearchStep) -> None:
        hook = getattr(self.observer, "on_progress", None)
        if hook is None:
            return
        try:
            result = hook(completed, total, step)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Progress observer failed: {e}")


async def run_parallel_research(
    steps: list[ResearchStep],
    agent: SubResearchAgent,
    observer: ResearchObserver | None = None,
    expand_sources: bool | None = None,
    concurrency: int | None = None,
) -> list[SubAgentReport]:
    """Run `agent` over every step with at most `concurrency` in flight.

    Returns exactly one report per step, in input order. A step whose agent
    raises gets a degraded report instead of failing the batch.
    """
    if not steps:
        return []

    total = len(steps)
    pool_size = min(concurrency or total, total)
    results: list[SubAgentReport | None] = [None] * total
    board = _StatusBoard(steps, observer)
    board.push()

    next_index = 0
    completed = 0

    async def worker() -> None:
        nonlocal next_index, completed
        while next_index < total:
            index = next_index
            next_index += 1
            step = steps[index]
            step.status = StepStatus.IN_PROGRESS

            try:
                report = await agent.research(
                    step,
                    expand_sources=expand_sources,
                    on_status=lambda status, i=index: board.update(i, status=status),
                )
            except Exception as e:
                message = str(e) or type(e).__name__
                logger.error(f"Sub-agent for step {step.id} failed: {message}")
                step.status = StepStatus.ERROR
                results[index] = failed_report(step, e)
                board.update(index, status=f"Error: {message.splitlines()[0]}", complete=True, failed=True)
            else:
                step.status = StepStatus.COMPLETE
                results[index] = report
                board.update(index, status="Complete", complete=True, sources=report.source_count)

            completed += 1
            await board.progress(completed, total, step)

    logger.info(f"Running {total} research steps with {pool_size} workers")
    await asyncio.gather(*(worker() for _ in range(pool_size)))
    return [r for r in results if r is not None]
