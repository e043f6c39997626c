"""Data models for deep research runs."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class StepStatus(str, Enum):
    """Lifecycle of a research step."""

    PENDING = "pending"
    IN_PROGRESS = "inProgress"
    COMPLETE = "complete"
    ERROR = "error"


def normalize_query(query: str) -> str:
    """Collapse whitespace and lowercase, used for duplicate-query detection."""
    return " ".join(query.split()).lower()


@dataclass
class ResearchStep:
    """One sub-question of a research plan."""

    id: int
    question: str
    search_query: str = ""
    purpose: str = ""
    status: StepStatus = StepStatus.PENDING
    results: Any = None

    def __post_init__(self) -> None:
        if not self.search_query:
            self.search_query = self.question

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "question": self.question,
            "searchQuery": self.search_query,
            "purpose": self.purpose,
            "status": self.status.value,
        }


@dataclass
class ResearchPlan:
    """Decomposition of a question into steps. Steps are only ever appended."""

    main_question: str
    steps: list[ResearchStep] = field(default_factory=list)
    expected_insights: list[str] = field(default_factory=list)

    def next_step_id(self) -> int:
        return max((s.id for s in self.steps), default=0) + 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "mainQuestion": self.main_question,
            "steps": [s.to_dict() for s in self.steps],
            "expectedInsights": list(self.expected_insights),
        }


@dataclass
class SourceResult:
    """A web source returned by search or content expansion. `url` is the identity."""

    url: str
    title: str = ""
    score: float = 0.0
    published_date: str | None = None
    author: str | None = None
    id: str | None = None
    text: str | None = None
    highlights: list[str] | None = None
    summary: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "SourceResult":
        """Build from a search provider result object (camelCase keys)."""
        highlights = data.get("highlights")
        return cls(
            url=data.get("url") or "",
            title=data.get("title") or "",
            score=float(data.get("score") or 0.0),
            published_date=data.get("publishedDate"),
            author=data.get("author"),
            id=data.get("id"),
            text=data.get("text"),
            highlights=[h for h in highlights if isinstance(h, str)] if isinstance(highlights, list) else None,
            summary=data.get("summary"),
        )

    @property
    def has_content(self) -> bool:
        return bool(self.text or self.summary or self.highlights)

    def raw_content(self) -> str:
        """Best available text: full text, else joined highlights, else summary."""
        if self.text:
            return self.text
        if self.highlights:
            return "\n".join(self.highlights)
        return self.summary or ""

    def merge(self, other: "SourceResult") -> "SourceResult":
        """Merge two records of the same url.

        Keeps the longer text, the longer summary, the larger highlight list and
        the maximum score; other fields keep the first non-empty value. Ties keep
        `self`, so merging a record with itself is a no-op.
        """
        return replace(
            self,
            title=self.title or other.title,
            score=max(self.score, other.score),
            published_date=self.published_date or other.published_date,
            author=self.author or other.author,
            id=self.id or other.id,
            text=_longer(self.text, other.text),
            summary=_longer(self.summary, other.summary),
            highlights=self.highlights if len(self.highlights or []) >= len(other.highlights or []) else other.highlights,
        )


def _longer(a: str | None, b: str | None) -> str | None:
    return a if len(a or "") >= len(b or "") else b


def merge_sources(existing: dict[str, SourceResult], incoming: list[SourceResult]) -> None:
    """Merge `incoming` into the url-keyed map in place."""
    for source in incoming:
        if not source.url:
            continue
        current = existing.get(source.url)
        existing[source.url] = current.merge(source) if current else source


@dataclass(frozen=True)
class SubAgentReport:
    """Findings of one sub-agent for one step."""

    step: ResearchStep
    summary: str
    sources: list[SourceResult] = field(default_factory=list)
    expanded_sources: list[SourceResult] | None = None
    key_insights: list[str] = field(default_factory=list)

    @property
    def source_count(self) -> int:
        return len(self.sources) + len(self.expanded_sources or [])


@dataclass
class AgentStatus:
    """Live status of one sub-agent slot in a batch."""

    index: int
    question: str
    status: str = "Waiting..."
    complete: bool = False
    sources: int = 0
    failed: bool = False


@dataclass
class ClaimVerification:
    claim: str
    status: str  # "verified" | "partially_verified" | "unverified"
    source_url: str | None = None
    evidence: str | None = None
    confidence: float = 0.0


@dataclass
class VerificationResult:
    total_claims: int = 0
    verified_count: int = 0
    partially_verified_count: int = 0
    unverified_count: int = 0
    claims: list[ClaimVerification] = field(default_factory=list)


@dataclass
class CostBreakdown:
    """Estimated USD cost of a research run, per phase."""

    planning: float = 0.0
    sub_agents: float = 0.0
    summarizer: float = 0.0
    synthesis: float = 0.0
    searches: float = 0.0
    contents: float = 0.0
    num_searches: int = 0
    num_pages: int = 0
    num_sub_agents: int = 0
    main_model: str = "unknown"

    @property
    def total(self) -> float:
        return self.planning + self.sub_agents + self.summarizer + self.synthesis + self.searches + self.contents

    def to_dict(self) -> dict[str, Any]:
        return {
            "planning": round(self.planning, 4),
            "subAgents": round(self.sub_agents, 4),
            "summarizer": round(self.summarizer, 4),
            "synthesis": round(self.synthesis, 4),
            "searches": round(self.searches, 4),
            "contents": round(self.contents, 4),
            "total": round(self.total, 4),
            "numSearches": self.num_searches,
            "numPages": self.num_pages,
            "numSubAgents": self.num_sub_agents,
            "mainModel": self.main_model,
        }


@dataclass
class DeepResearchResult:
    """Everything produced by one research run."""

    markdown: str
    plan: ResearchPlan
    reports: list[SubAgentReport] = field(default_factory=list)
    verification: VerificationResult | None = None
    cost_estimate: CostBreakdown | None = None
    saved_path: str | None = None

    @property
    def sources(self) -> list[str]:
        """Unique source URLs across all reports, in first-seen order."""
        seen: dict[str, None] = {}
        for report in self.reports:
            for source in [*report.sources, *(report.expanded_sources or [])]:
                if source.url:
                    seen.setdefault(source.url, None)
        return list(seen)
