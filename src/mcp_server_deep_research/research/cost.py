"""Up-front cost estimation for a research run."""

from ..clients.base import ModelInfo, ModelPricing
from .models import CostBreakdown

# Search provider pricing, USD per 1,000 requests/pages.
SEARCH_PER_1K = 5.0
CONTENT_TEXT_PER_1K = 1.0
CONTENT_HIGHLIGHTS_PER_1K = 1.0
CONTENT_SUMMARY_PER_1K = 1.0

# Used when the summarizer model is missing from the provider listing.
FALLBACK_SUMMARIZER_PRICING = ModelPricing(prompt=0.055 / 1_000_000, completion=0.055 / 1_000_000)

# (input, output) tokens per call, by phase.
TOKEN_ESTIMATES = {
    "planning": (500, 800),
    "sub_agent": (2000, 1500),
    "summarizer": (3000, 300),
    "synthesis": (8000, 4000),
}

SUMMARIES_PER_SEARCH = 5


def model_cost(pricing: ModelPricing | None, input_tokens: int, output_tokens: int) -> float:
    """Per-token pricing times token counts; unknown models cost nothing."""
    if pricing is None:
        return 0.0
    return input_tokens * pricing.prompt + output_tokens * pricing.completion


def _phase_cost(pricing: ModelPricing | None, phase: str, calls: int = 1) -> float:
    input_tokens, output_tokens = TOKEN_ESTIMATES[phase]
    return calls * model_cost(pricing, input_tokens, output_tokens)


def estimate_cost(
    main_model: ModelInfo | None,
    *,
    sub_agent_model: ModelInfo | None = None,
    summarizer_model: ModelInfo | None = None,
    num_steps: int = 4,
    num_followups: int = 2,
    num_sub_agents: int | None = None,
    results_per_search: int = 8,
) -> CostBreakdown:
    """Estimate the cost of a run before executing it.

    Args:
        main_model: Model used for planning and synthesis
        sub_agent_model: Model used by sub-agents (defaults to the main model)
        summarizer_model: Model used for reasoning summaries
        num_steps: Planned research steps
        num_followups: Expected follow-up searches
        num_sub_agents: Sub-agent invocations (defaults to one per step and follow-up)
        results_per_search: Results requested per search
    """
    main_pricing = main_model.pricing if main_model else None
    sub_pricing = sub_agent_model.pricing if sub_agent_model else main_pricing
    summarizer_pricing = summarizer_model.pricing if summarizer_model else FALLBACK_SUMMARIZER_PRICING

    num_searches = num_steps + num_followups
    num_pages = num_searches * results_per_search
    sub_agents = num_searches if num_sub_agents is None else num_sub_agents
    num_summaries = num_searches * min(results_per_search, SUMMARIES_PER_SEARCH)

    return CostBreakdown(
        planning=_phase_cost(main_pricing, "planning"),
        sub_agents=_phase_cost(sub_pricing, "sub_agent", sub_agents),
        summarizer=_phase_cost(summarizer_pricing, "summarizer", num_summaries),
        synthesis=_phase_cost(main_pricing, "synthesis"),
        searches=num_searches / 1000 * SEARCH_PER_1K,
        contents=num_pages / 1000 * (CONTENT_TEXT_PER_1K + CONTENT_HIGHLIGHTS_PER_1K + CONTENT_SUMMARY_PER_1K),
        num_searches=num_searches,
        num_pages=num_pages,
        num_sub_agents=sub_agents,
        main_model=main_model.id if main_model else "unknown",
    )


def format_cost_breakdown(cost: CostBreakdown) -> str:
    def fmt(value: float) -> str:
        return f"${value:.4f}"

    return "\n".join(
        [
            "Estimated cost breakdown:",
            f"  Planning:     {fmt(cost.planning)}",
            f"  Sub-agents:   {fmt(cost.sub_agents)} ({cost.num_sub_agents} agents)",
            f"  Summarizer:   {fmt(cost.summarizer)}",
            f"  Synthesis:    {fmt(cost.synthesis)}",
            f"  Searches:     {fmt(cost.searches)} ({cost.num_searches} searches)",
            f"  Contents:     {fmt(cost.contents)} ({cost.num_pages} pages)",
            f"  Total:        {fmt(cost.total)}",
            f"  Main model:   {cost.main_model}",
        ]
    )
