"""Per-run guardrails for sub-research agents.

Every tunable has a soft default (from settings), an optional per-call override
and a hard ceiling that overrides are clamped to. Guardrails are resolved once
per run and handed to each agent explicitly; child agents derive theirs with
`for_child()`.
"""

from dataclasses import dataclass, replace
from typing import Any

from ..config import ResearchSettings

DEFAULT_MAX_SEARCH_ROUNDS = 5
HARD_MAX_SEARCH_ROUNDS = 50
DEFAULT_MAX_EXPANDED_URLS = 5
HARD_MAX_EXPANDED_URLS = 50
DEFAULT_MAX_RECURSION_DEPTH = 2
HARD_MAX_RECURSION_DEPTH = 5
DEFAULT_EXPANSION_CANDIDATES = 8
DEFAULT_SOURCE_TEXT_CHARS = 2200
DEFAULT_EXPANDED_TEXT_CHARS = 4500
DEFAULT_MAX_TOTAL_SOURCE_CHARS = 65_000
DEFAULT_NUM_RESULTS = 10

UNSET: Any = object()


def clamp(value: int, minimum: int, maximum: int) -> int:
    return max(minimum, min(value, maximum))


@dataclass(frozen=True)
class AgentGuardrails:
    """Resolved, immutable limits for one sub-agent invocation."""

    num_results: int = DEFAULT_NUM_RESULTS
    expansion_candidates: int = DEFAULT_EXPANSION_CANDIDATES
    max_expanded_urls: int = DEFAULT_MAX_EXPANDED_URLS
    expand_sources: bool = True
    max_search_rounds: int = DEFAULT_MAX_SEARCH_ROUNDS
    unlimited_rounds: bool = False  # user asked for unlimited; rounds clamped to the ceiling
    source_text_chars: int = DEFAULT_SOURCE_TEXT_CHARS
    expanded_text_chars: int = DEFAULT_EXPANDED_TEXT_CHARS
    max_total_source_chars: int | None = DEFAULT_MAX_TOTAL_SOURCE_CHARS  # None = unlimited
    max_recursion_depth: int = DEFAULT_MAX_RECURSION_DEPTH
    concurrency: int | None = None  # None = full fan-out

    def __post_init__(self) -> None:
        object.__setattr__(self, "max_search_rounds", clamp(self.max_search_rounds, 1, HARD_MAX_SEARCH_ROUNDS))
        object.__setattr__(self, "max_expanded_urls", clamp(self.max_expanded_urls, 0, HARD_MAX_EXPANDED_URLS))
        object.__setattr__(self, "max_recursion_depth", clamp(self.max_recursion_depth, 0, HARD_MAX_RECURSION_DEPTH))
        object.__setattr__(self, "num_results", max(1, self.num_results))
        object.__setattr__(self, "expansion_candidates", max(0, self.expansion_candidates))
        object.__setattr__(self, "source_text_chars", max(0, self.source_text_chars))
        object.__setattr__(self, "expanded_text_chars", max(0, self.expanded_text_chars))
        if self.max_total_source_chars is not None:
            object.__setattr__(self, "max_total_source_chars", max(0, self.max_total_source_chars))
        if self.concurrency is not None:
            object.__setattr__(self, "concurrency", max(1, self.concurrency))

    @property
    def expansion_enabled(self) -> bool:
        return self.expand_sources and self.max_expanded_urls > 0

    def for_child(self) -> "AgentGuardrails":
        """Guardrails for a recursively spawned child: one fewer search round (floor 1)."""
        return replace(self, max_search_rounds=max(1, self.max_search_rounds - 1))


def resolve_guardrails(
    settings: ResearchSettings | None = None,
    *,
    max_search_rounds: int | None = UNSET,
    max_expanded_urls: int | None = UNSET,
    max_recursion_depth: int | None = UNSET,
    max_total_source_chars: int | None = UNSET,
    expand_sources: bool | None = None,
    concurrency: int | None = None,
    num_results: int | None = None,
) -> AgentGuardrails:
    """Resolve guardrails from settings plus per-call overrides.

    For the integer-or-unlimited overrides, passing None means "unlimited" and
    omitting the argument keeps the configured value.

    Args:
        settings: Research settings; defaults are used when omitted
        max_search_rounds: Override rounds per sub-agent (None = unlimited, clamped to the ceiling)
        max_expanded_urls: Override pages expanded per sub-agent (None = ceiling)
        max_recursion_depth: Override recursion depth (None = ceiling)
        max_total_source_chars: Override total context budget (None = unlimited)
        expand_sources: Enable or disable full-text expansion
        concurrency: Sub-agent pool size
        num_results: Search results per query

    Returns:
        Frozen AgentGuardrails with all ceilings applied
    """
    settings = settings or ResearchSettings.model_construct()

    rounds = settings.max_search_rounds if max_search_rounds is UNSET else max_search_rounds
    expanded = settings.max_expanded_urls if max_expanded_urls is UNSET else max_expanded_urls
    depth = settings.max_recursion_depth if max_recursion_depth is UNSET else max_recursion_depth
    budget = settings.max_total_source_chars if max_total_source_chars is UNSET else max_total_source_chars

    return AgentGuardrails(
        num_results=num_results or settings.num_results,
        expansion_candidates=settings.expansion_candidates,
        max_expanded_urls=HARD_MAX_EXPANDED_URLS if expanded is None else expanded,
        expand_sources=settings.expand_sources if expand_sources is None else expand_sources,
        max_search_rounds=HARD_MAX_SEARCH_ROUNDS if rounds is None else rounds,
        unlimited_rounds=rounds is None,
        source_text_chars=settings.source_text_chars,
        expanded_text_chars=settings.expanded_text_chars,
        max_total_source_chars=budget,
        max_recursion_depth=HARD_MAX_RECURSION_DEPTH if depth is None else depth,
        concurrency=concurrency or settings.concurrency,
    )


def resolve_followup_rounds(settings: ResearchSettings | None = None, override: int | None = UNSET) -> int | None:
    """Gap-filling round ceiling. None means unlimited.

    An explicit override wins; otherwise auto_followup=False forces 0.
    """
    settings = settings or ResearchSettings.model_construct()
    if override is UNSET:
        if not settings.auto_followup:
            return 0
        override = settings.max_followup_rounds
    return None if override is None else max(0, override)
