"""Deep research engine: planning, parallel sub-research, gap filling, synthesis and verification."""

from .guardrails import AgentGuardrails, resolve_followup_rounds, resolve_guardrails
from .machine import ResearchCallbacks, ResearchMachine
from .models import (
    AgentStatus,
    ClaimVerification,
    CostBreakdown,
    DeepResearchResult,
    ResearchPlan,
    ResearchStep,
    SourceResult,
    StepStatus,
    SubAgentReport,
    VerificationResult,
)

__all__ = [
    "AgentGuardrails",
    "AgentStatus",
    "ClaimVerification",
    "CostBreakdown",
    "DeepResearchResult",
    "ResearchCallbacks",
    "ResearchMachine",
    "ResearchPlan",
    "ResearchStep",
    "SourceResult",
    "StepStatus",
    "SubAgentReport",
    "VerificationResult",
    "resolve_followup_rounds",
    "resolve_guardrails",
]
