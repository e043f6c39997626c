"""Fact checking: verifies report claims against the collected sources."""

import logging

from ..clients.base import ChatClient, ChatOptions, system, user
from .models import ClaimVerification, SourceResult, VerificationResult
from .parsing import extract_json_object
from .prompts import (
    CLAIM_EXTRACTION_SYSTEM_PROMPT,
    CLAIM_VERIFICATION_SYSTEM_PROMPT,
    get_claim_extraction_prompt,
    get_claim_verification_prompt,
)

logger = logging.getLogger(__name__)

DEFAULT_FACT_CHECK_MODEL = "google/gemini-2.0-flash-001"
MAX_REPORT_CHARS = 8000
MAX_CLAIMS = 10
MAX_SOURCES = 10
MAX_SOURCE_CHARS = 3000
MAX_EVIDENCE_CHARS = 150
SUPPORTED = ("verified", "partially_verified")


class FactChecker:
    """Extracts key claims from a report and checks each against source text."""

    def __init__(self, client: ChatClient, model: str | None = None):
        self.client = client
        self.model = model or DEFAULT_FACT_CHECK_MODEL

    async def verify(self, report: str, sources: list[SourceResult]) -> VerificationResult:
        claims = await self.extract_claims(report)
        if not claims:
            return VerificationResult()

        candidates = [
            (s.url, (s.text or s.summary or " ".join(s.highlights or []))[:MAX_SOURCE_CHARS])
            for s in sources
            if s.has_content
        ][:MAX_SOURCES]

        verifications = [await self.verify_claim(claim, candidates) for claim in claims]
        result = VerificationResult(
            total_claims=len(claims),
            verified_count=sum(1 for v in verifications if v.status == "verified"),
            partially_verified_count=sum(1 for v in verifications if v.status == "partially_verified"),
            unverified_count=sum(1 for v in verifications if v.status == "unverified"),
            claims=verifications,
        )
        logger.info(f"Fact check: {result.verified_count}/{result.total_claims} claims verified")
        return result

    async def extract_claims(self, report: str) -> list[str]:
        """Up to ten claims from the head of the report; any failure yields none."""
        messages = [system(CLAIM_EXTRACTION_SYSTEM_PROMPT), user(get_claim_extraction_prompt(report[:MAX_REPORT_CHARS]))]
        try:
            response = await self.client.chat(self.model, messages, ChatOptions(temperature=0.2))
        except Exception as e:
            logger.warning(f"Claim extraction failed: {e}")
            return []

        data = extract_json_object(response.content) or {}
        claims = data.get("claims")
        if not isinstance(claims, list):
            return []
        return [c.strip() for c in claims if isinstance(c, str) and c.strip()][:MAX_CLAIMS]

    async def verify_claim(self, claim: str, sources: list[tuple[str, str]]) -> ClaimVerification:
        """Check sources in order; the first supporting source wins."""
        for url, text in sources:
            messages = [system(CLAIM_VERIFICATION_SYSTEM_PROMPT), user(get_claim_verification_prompt(claim, url, text))]
            try:
                response = await self.client.chat(self.model, messages, ChatOptions(temperature=0.1))
            except Exception as e:
                logger.debug(f"Verification call failed for {url}: {e}")
                continue

            data = extract_json_object(response.content)
            if not data or data.get("status") not in SUPPORTED:
                continue
            evidence = data.get("evidence")
            confidence = data.get("confidence")
            return ClaimVerification(
                claim=claim,
                status=data["status"],
                source_url=url,
                evidence=evidence[:MAX_EVIDENCE_CHARS] if isinstance(evidence, str) else None,
                confidence=float(confidence) if isinstance(confidence, (int, float)) and not isinstance(confidence, bool) else 0.5,
            )
        return ClaimVerification(claim=claim, status="unverified", confidence=0.0)


def format_as_markdown(result: VerificationResult) -> str:
    """Verification block to append to a report; empty when there were no claims."""
    if result.total_claims == 0:
        return ""

    rate = (result.verified_count + 0.5 * result.partially_verified_count) / result.total_claims * 100
    lines = [
        "\n\n---\n\n## Verification Summary\n",
        "> [!NOTE]",
        f"> **{result.verified_count}** of **{result.total_claims}** claims verified ({rate:.0f}% confidence)",
        "",
    ]
    if result.unverified_count > 0:
        lines += [
            "> [!CAUTION]",
            f"> **{result.unverified_count}** claim(s) could not be verified against sources.",
            "",
        ]

    unverified = [c for c in result.claims if c.status == "unverified"]
    if unverified:
        lines.append("### Unverified Claims\n")
        for i, c in enumerate(unverified[:5], start=1):
            suffix = "..." if len(c.claim) > 100 else ""
            lines.append(f'{i}. *"{c.claim[:100]}{suffix}"*')
        if len(unverified) > 5:
            lines.append(f"\n*...and {len(unverified) - 5} more*")
    return "\n".join(lines)
