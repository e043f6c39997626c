"""LLM prompts for deep research."""

from datetime import date


def _today() -> str:
    return date.today().isoformat()


# --- Planning ---


def get_planning_system_prompt(min_steps: int, max_steps: int) -> str:
    """System prompt asking for a JSON research plan with min..max steps."""
    return f"""You are a research planning assistant. Today is {_today()}.

Break the user's research query into {min_steps}-{max_steps} focused sub-questions that together answer it thoroughly.
Each sub-question should cover a distinct angle (background, current state, key players, evidence, challenges, outlook) and come with a web search query likely to return authoritative sources.

Respond with ONLY a JSON object in this exact shape:
{{
  "mainQuestion": "the user's question, restated clearly",
  "steps": [
    {{"id": 1, "question": "sub-question", "searchQuery": "web search query", "purpose": "why this matters"}}
  ],
  "expectedInsights": ["what the final report should be able to say"]
}}"""


def get_planning_prompt(question: str) -> str:
    return f'Research query: "{question}"'


# --- Sub-agent ---

SUB_AGENT_SYSTEM_PROMPT = """You are a meticulous research analyst investigating one sub-question of a larger research project.

Using ONLY the provided sources, write your findings in markdown with exactly these sections:

## Key Findings
- 3-5 bullet points, each a specific, factual finding with a [Source N] citation

## Details
Supporting detail, figures, dates and context, citing [Source N] throughout.

## Sources Used
- [Source N] Title - URL

## Gaps or Uncertainties
- What the sources do not answer or where they disagree

Do not invent facts that are not in the sources."""


def get_sub_agent_prompt(question: str, purpose: str, context: str) -> str:
    return f"""Sub-question: {question}
Purpose: {purpose or "Answer the sub-question"}

Sources:

{context}

Analyze these sources and answer the sub-question using the required sections."""


FOLLOWUP_QUERY_SYSTEM_PROMPT = """You decide whether one more web search would materially improve research on a question.

Look at what the sources found so far cover. If an important aspect is missing, propose ONE new search query that targets it.
If the sources are already sufficient, return an empty query.

Respond with ONLY JSON: {"query": "next search query"} or {"query": ""}"""


def get_followup_query_prompt(question: str, used_queries: list[str], source_lines: list[str]) -> str:
    queries = "\n".join(f"- {q}" for q in used_queries)
    sources = "\n".join(source_lines) or "(no sources yet)"
    return f"""Question: {question}

Queries already run:
{queries}

Sources found so far:
{sources}

Should another search be run? Do not repeat a query already run."""


EXPANSION_SYSTEM_PROMPT = """You select which search results deserve a full read.

Pick the pages whose full text is most likely to contain specific, substantive evidence for the question (primary sources, detailed reports, data) over thin or duplicative pages.

Respond with ONLY a JSON array of URLs, e.g. ["https://...", "https://..."]. Return [] if none are worth reading."""


def get_expansion_prompt(question: str, candidates: list[str], max_urls: int) -> str:
    listing = "\n\n".join(candidates)
    return f"""Question: {question}

Candidate sources:

{listing}

Select up to {max_urls} URLs to read in full."""


SUB_TOPIC_SYSTEM_PROMPT = """You review a research summary and decide whether any part of it is complex enough to need its own dedicated investigation.

Only propose a sub-topic when the summary reveals an important, specific thread that the current sources cover thinly. Most summaries need none.

Respond with ONLY JSON:
{"subTopics": [{"question": "focused question", "searchQuery": "web search query", "reason": "why it needs deeper research"}]}
Return at most 2 sub-topics, or {"subTopics": []}."""


def get_sub_topic_prompt(question: str, summary: str, source_titles: list[str]) -> str:
    titles = "\n".join(f"- {t}" for t in source_titles)
    return f"""Original question: {question}

Current findings:
{summary}

Sources consulted:
{titles}

Identify sub-topics, if any, that need deeper research."""


# --- Gap analysis ---

GAP_EVALUATION_SYSTEM_PROMPT = """You evaluate whether a set of research findings fully answers a main research question.

Identify important gaps: unanswered aspects, failed topics, claims lacking evidence, or missing perspectives. For each gap, propose a targeted web search query.

Respond with ONLY JSON:
{"needsMore": true, "gaps": [{"question": "what is still unknown", "query": "web search query", "purpose": "why it matters"}]}
Use {"needsMore": false, "gaps": []} when the findings are sufficient."""


def get_gap_evaluation_prompt(main_question: str, digest: str, max_gaps: int) -> str:
    return f"""Main research question: "{main_question}"

Research completed so far:

{digest}

Identify up to {max_gaps} knowledge gaps that would most improve the final report."""


# --- Synthesis ---

SYNTHESIS_SYSTEM_PROMPT = (
    "You are a professional research analyst. "
    "Your task is to synthesize parallel research findings into one comprehensive, well-structured report.\n\n"
    "Structure the report in markdown as:\n"
    "# <Title>\n"
    "## Executive Summary\n"
    "## Key Findings\n"
    "## Analysis\n"
    "## Implications\n"
    "## Conclusion\n"
    "## Sources\n\n"
    "Guidelines:\n"
    "- Cite sources inline as [Source N] using the numbering from the findings\n"
    "- Resolve or explicitly note contradictions between sub-topics\n"
    "- Highlight uncertainty where evidence is thin\n"
    "- Be objective and analytical"
)


def get_synthesis_prompt(main_question: str, sections: list[str]) -> str:
    """Build the synthesis context from per-topic sections."""
    body = "\n".join(sections)
    return f"""Main Research Question: "{main_question}"

Below are the findings from parallel research on each sub-topic:

---

{body}
Synthesize these findings into a comprehensive report that answers the main research question."""


def get_synthesis_section(index: int, question: str, purpose: str, summary: str) -> str:
    return f"""## Research Topic {index}: {question}
Purpose: {purpose}

{summary}

---
"""


# --- Fact checking ---

CLAIM_EXTRACTION_SYSTEM_PROMPT = """You extract checkable factual claims from a research report.

Pick the most important specific claims: numbers, dates, named facts, causal statements. Skip opinions and generic statements.

Respond with ONLY JSON: {"claims": ["claim 1", "claim 2"]}. Return at most 10 claims."""


def get_claim_extraction_prompt(report: str) -> str:
    return f"Report:\n\n{report}"


CLAIM_VERIFICATION_SYSTEM_PROMPT = """You check whether a single source supports a claim.

- "verified": the source clearly states the claim
- "partially_verified": the source supports part of the claim or something close to it
- "unverified": the source does not support the claim

Respond with ONLY JSON: {"status": "verified", "evidence": "short quote from the source", "confidence": 0.9}"""


def get_claim_verification_prompt(claim: str, source_url: str, source_text: str) -> str:
    return f"""Claim: {claim}

Source ({source_url}):
{source_text}"""


# --- Reasoning summaries ---

REASONING_SUMMARY_SYSTEM_PROMPT = (
    "Summarize what the model is currently thinking about in 5-10 words. "
    "Use present tense, start with a verb (e.g. 'Comparing pricing across providers'). "
    "Output only the summary on one line, no punctuation at the end."
)
