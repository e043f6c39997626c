"""Planner: decomposes a research question into a ResearchPlan."""

import logging
from collections.abc import Awaitable, Callable

from ..clients.base import ChatClient, ChatOptions, system, user
from ..exceptions import PlanningError
from .models import ResearchPlan, ResearchStep, StepStatus
from .parsing import PlanPayload, parse_model_json
from .prompts import get_planning_prompt, get_planning_system_prompt

logger = logging.getLogger(__name__)

ReasoningSink = Callable[[str], Awaitable[None] | None]

DEFAULT_MAIN_QUESTION = "Research query"


def build_plan(payload: PlanPayload) -> ResearchPlan:
    """Normalize a validated payload into a plan with unique positive step ids."""
    steps: list[ResearchStep] = []
    used_ids: set[int] = set()
    for index, raw in enumerate(payload.steps):
        step_id = raw.id or index + 1
        if step_id in used_ids:
            step_id = max(used_ids) + 1
        used_ids.add(step_id)

        question = (raw.question or "").strip() or f"Step {index + 1}"
        steps.append(
            ResearchStep(
                id=step_id,
                question=question,
                search_query=(raw.search_query or "").strip() or question,
                purpose=raw.purpose or "",
                status=StepStatus.PENDING,
            )
        )

    return ResearchPlan(
        main_question=(payload.main_question or "").strip() or DEFAULT_MAIN_QUESTION,
        steps=steps,
        expected_insights=payload.expected_insights,
    )


def parse_plan(content: str) -> ResearchPlan:
    """Parse raw planning model output.

    Raises:
        PlanningError: Empty output, or no recovery strategy produced a valid plan
    """
    if not content or not content.strip():
        raise PlanningError("No response from planning model")

    payload = parse_model_json(content, PlanPayload)
    if payload is None:
        raise PlanningError(
            f"Failed to parse research plan: no valid JSON plan found\n\nRaw content:\n{content[:500]}",
            raw_content=content[:500],
        )
    return build_plan(payload)


class Planner:
    """Asks the planning model for a plan and parses it tolerantly."""

    def __init__(
        self,
        client: ChatClient,
        model: str,
        *,
        min_steps: int = 4,
        max_steps: int = 7,
        options: ChatOptions | None = None,
    ):
        self.client = client
        self.model = model
        self.min_steps, self.max_steps = sorted((max(1, min_steps), max(1, max_steps)))
        self.options = options or ChatOptions()

    def _messages(self, question: str):
        return [
            system(get_planning_system_prompt(self.min_steps, self.max_steps)),
            user(get_planning_prompt(question)),
        ]

    async def create_plan(self, question: str) -> ResearchPlan:
        """Create a plan with a single non-streaming call."""
        logger.info(f"Planning: {question}")
        response = await self.client.chat(self.model, self._messages(question), self.options)
        plan = parse_plan(response.content)
        logger.info(f"Plan created with {len(plan.steps)} steps")
        return plan

    async def create_plan_with_reasoning(self, question: str, on_reasoning: ReasoningSink | None = None) -> ResearchPlan:
        """Create a plan from a streamed call, forwarding reasoning tokens to `on_reasoning`.

        Only content tokens are parsed.
        """
        logger.info(f"Planning (streaming): {question}")
        content: list[str] = []
        async for event in self.client.chat_stream_with_reasoning(self.model, self._messages(question), self.options):
            if event.type == "reasoning":
                if on_reasoning:
                    result = on_reasoning(event.text)
                    if result is not None:
                        await result
            else:
                content.append(event.text)
        plan = parse_plan("".join(content))
        logger.info(f"Plan created with {len(plan.steps)} steps")
        return plan
