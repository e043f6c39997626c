"""Tests for research planning."""

import json

import pytest
from conftest import DEFAULT_PLAN, FakeChatClient

from mcp_server_deep_research.exceptions import PlanningError
from mcp_server_deep_research.research.models import StepStatus
from mcp_server_deep_research.research.planner import Planner, parse_plan


class TestParsePlan:
    def test_valid_plan(self):
        plan = parse_plan(json.dumps(DEFAULT_PLAN))
        assert plan.main_question == DEFAULT_PLAN["mainQuestion"]
        assert [s.id for s in plan.steps] == [1, 2]
        assert plan.steps[0].search_query == "solid-state battery energy density"
        assert all(s.status == StepStatus.PENDING for s in plan.steps)
        assert plan.expected_insights == ["Density comparison", "Manufacturing outlook"]

    def test_duplicate_ids_made_unique(self):
        content = json.dumps({"steps": [{"id": 1, "question": "a"}, {"id": 1, "question": "b"}, {"id": 2, "question": "c"}]})
        assert [s.id for s in parse_plan(content).steps] == [1, 2, 3]

    def test_missing_fields_get_defaults(self):
        plan = parse_plan(json.dumps({"steps": [{"question": "  "}, {"question": "b"}]}))
        assert plan.main_question == "Research query"
        assert [s.id for s in plan.steps] == [1, 2]
        assert plan.steps[0].question == "Step 1"
        assert plan.steps[1].search_query == "b"
        assert plan.steps[1].purpose == ""

    def test_fenced_almost_json(self):
        plan = parse_plan('```json\n{"mainQuestion": "Q", "steps": [{"question": "a",},]}\n```')
        assert plan.main_question == "Q"
        assert len(plan.steps) == 1

    def test_repaired_plan_matches_strict_plan(self):
        strict = json.dumps(
            {
                "mainQuestion": "Which vendor should we pick?",
                "steps": [{"id": 1, "question": "Who sells it?", "searchQuery": "vendors", "purpose": "Compare vendors, timeline: 2025"}],
                "expectedInsights": ["Shortlist, ranked: top 3"],
            }
        )
        almost = (
            '{mainQuestion: "Which vendor should we pick?", '
            'steps: [{id: 1, question: "Who sells it?", searchQuery: "vendors", purpose: "Compare vendors, timeline: 2025",},], '
            'expectedInsights: ["Shortlist, ranked: top 3",],}'
        )

        assert parse_plan(almost).to_dict() == parse_plan(strict).to_dict()

    def test_empty_response(self):
        with pytest.raises(PlanningError, match="No response from planning model"):
            parse_plan("   ")

    def test_unparseable_response(self):
        with pytest.raises(PlanningError) as exc_info:
            parse_plan("I am unable to plan this research." * 40)
        assert str(exc_info.value).startswith("Failed to parse research plan")
        assert "Raw content:" in str(exc_info.value)
        assert len(exc_info.value.raw_content) == 500


class TestPlanner:
    def test_step_bounds_sorted(self, chat):
        planner = Planner(chat, "m", min_steps=7, max_steps=3)
        assert (planner.min_steps, planner.max_steps) == (3, 7)

    @pytest.mark.anyio
    async def test_create_plan(self, chat):
        plan = await Planner(chat, "main-model", min_steps=2, max_steps=5).create_plan("Compare batteries")

        assert len(plan.steps) == 2
        (messages,) = chat.calls_of("planning")
        assert "into 2-5 focused sub-questions" in messages[0].content
        assert messages[1].content == 'Research query: "Compare batteries"'
        assert chat.calls[0][1] == "main-model"

    @pytest.mark.anyio
    async def test_create_plan_failure_propagates(self):
        chat = FakeChatClient({"planning": "not a plan"})
        with pytest.raises(PlanningError):
            await Planner(chat, "m").create_plan("Q")

    @pytest.mark.anyio
    async def test_reasoning_forwarded_to_sync_sink(self):
        chat = FakeChatClient(reasoning={"planning": ["thinking ", "harder"]})
        received: list[str] = []

        plan = await Planner(chat, "m").create_plan_with_reasoning("Q", received.append)

        assert received == ["thinking ", "harder"]
        assert len(plan.steps) == 2

    @pytest.mark.anyio
    async def test_reasoning_forwarded_to_async_sink(self):
        chat = FakeChatClient(reasoning={"planning": ["step one"]})
        received: list[str] = []

        async def sink(text: str) -> None:
            received.append(text)

        await Planner(chat, "m").create_plan_with_reasoning("Q", sink)
        assert received == ["step one"]

    @pytest.mark.anyio
    async def test_streamed_empty_content(self):
        chat = FakeChatClient({"planning": ""})
        with pytest.raises(PlanningError, match="No response"):
            await Planner(chat, "m").create_plan_with_reasoning("Q")
