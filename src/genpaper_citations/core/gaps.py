"""
Research gap analysis.

Synthesises gaps over a set of extracted claims: unstudied areas,
contradictions between papers and recurring limitations. Also checks
which gaps the user's own research addresses.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable

from .errors import GenerationError
from .llm import LLMClient
from .models import (
    AddressingStatus,
    ClaimType,
    ExtractedClaim,
    GapAddressing,
    GapAnalysisResult,
    GapEvidence,
    GapType,
    ResearchGap,
)

logger = logging.getLogger("genpaper-citation-server")

GAP_TEMPERATURE = 0.2
MAX_FINDINGS = 20
MAX_OTHER = 10
MAX_CONTRADICTION_FINDINGS = 30

GAP_SYSTEM = "You are a research analyst identifying gaps in academic literature. Respond with JSON only."

GAP_PROMPT = """Analyze the following claims extracted from research papers on "{topic}" and identify research gaps.

{context}

Identify gaps of three types:
- unstudied: areas or questions no paper addresses
- contradiction: papers that reach conflicting conclusions
- limitation: limitations that recur across papers and remain unresolved

For each gap cite the claims that reveal it (paper_id and claim_text), rate
your confidence and describe the research opportunity. Identify 3-10 gaps.

Return JSON: {{"gaps": [{{"gap_type": str, "description": str,
"evidence": [{{"paper_id": str, "claim_text": str, "relevance": str}}],
"confidence": float, "research_opportunity": str}}]}}"""

CONTRADICTION_PROMPT = """Review these findings from different papers and identify pairs that contradict each other.

{findings}

Only report genuine contradictions between different papers, not differences
in scope or method.

Return JSON: {{"contradictions": [{{"claim_a": str, "claim_b": str,
"paper_a_id": str, "paper_b_id": str, "explanation": str, "confidence": float}}]}}"""

ADDRESSING_PROMPT = """RESEARCH GAPS:
{gaps}

THE RESEARCHER'S CLAIMS:
{claims}

For each gap decide whether the researcher's work addresses it:
"fully_addressed", "partially_addressed" or "not_addressed". Name the claim
ids that address it and explain briefly.

Return JSON: {{"results": [{{"gap_id": str, "addressed_status": str,
"addressing_claim_ids": [str], "user_contribution": str}}]}}"""


def _confidence(value: Any, default: float = 0.5) -> float:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return default


def _new_gap_id() -> str:
    return f"gap-{uuid.uuid4().hex[:12]}"


def unique_paper_ids(evidence: Iterable[GapEvidence]) -> list[str]:
    """Distinct paper ids in first-seen order."""
    seen: list[str] = []
    for item in evidence:
        if item.paper_id and item.paper_id not in seen:
            seen.append(item.paper_id)
    return seen


def build_analysis_context(topic: str, claims: list[ExtractedClaim]) -> str:
    """
    Group claims by type for the gap prompt.

    Findings are capped at 20 lines, methods, limitations and future work
    at 10 each.
    """
    papers = {c.source for c in claims}
    lines = [
        f"TOPIC: {topic}",
        f"PAPERS ANALYZED: {len(papers)}",
        f"TOTAL CLAIMS: {len(claims)}",
    ]

    groups = (
        ("KEY FINDINGS", ClaimType.FINDING, MAX_FINDINGS),
        ("METHODS USED", ClaimType.METHOD, MAX_OTHER),
        ("STATED LIMITATIONS", ClaimType.LIMITATION, MAX_OTHER),
        ("SUGGESTED FUTURE WORK", ClaimType.FUTURE_WORK, MAX_OTHER),
    )
    for title, claim_type, cap in groups:
        selected = [c for c in claims if c.claim_type == claim_type][:cap]
        if not selected:
            continue
        lines.append("")
        lines.append(f"{title}:")
        lines.extend(f"- [Paper {c.source[:8]}] {c.claim_text}" for c in selected)

    return "\n".join(lines)


def parse_gaps(raw_gaps: Iterable[Any]) -> list[ResearchGap]:
    """Turn model output into gaps; entries without a description are dropped."""
    gaps = []
    for raw in raw_gaps:
        if not isinstance(raw, dict) or not str(raw.get("description") or "").strip():
            continue
        try:
            gap_type = GapType(str(raw.get("gap_type", "")).lower())
        except ValueError:
            gap_type = GapType.UNSTUDIED

        evidence = [
            GapEvidence(
                paper_id=str(e.get("paper_id") or ""),
                claim_text=str(e.get("claim_text") or ""),
                relevance=str(e.get("relevance") or ""),
            )
            for e in raw.get("evidence") or []
            if isinstance(e, dict)
        ]
        gaps.append(
            ResearchGap(
                gap_id=_new_gap_id(),
                gap_type=gap_type,
                description=str(raw["description"]).strip(),
                evidence=evidence,
                supporting_paper_ids=unique_paper_ids(evidence),
                confidence=_confidence(raw.get("confidence")),
                research_opportunity=str(raw.get("research_opportunity") or ""),
            )
        )
    return gaps


class GapFinder:
    """Identify gaps, contradictions and gap coverage from claims."""

    def __init__(self, llm: LLMClient):
        self.llm = llm

    async def find_gaps(self, topic: str, claims: list[ExtractedClaim]) -> GapAnalysisResult:
        """
        Identify research gaps for a topic.

        An empty claim set yields an empty result without a model call.
        """
        if not claims:
            return GapAnalysisResult(topic=topic)

        data = await self.llm.complete_json(
            GAP_SYSTEM,
            GAP_PROMPT.format(topic=topic, context=build_analysis_context(topic, claims)),
            temperature=GAP_TEMPERATURE,
        )
        gaps = parse_gaps(data.get("gaps") or [])
        logger.info(f"Identified {len(gaps)} gaps for topic '{topic}' from {len(claims)} claims")
        return GapAnalysisResult(topic=topic, gaps=gaps, analyzed_claim_count=len(claims))

    async def find_contradictions(self, claims: list[ExtractedClaim]) -> list[ResearchGap]:
        """
        Find contradicting findings across papers.

        Needs at least two findings from at least two papers; otherwise
        returns an empty list without a model call.
        """
        findings = [c for c in claims if c.claim_type == ClaimType.FINDING]
        if len(findings) < 2 or len({c.source for c in findings}) < 2:
            return []

        listing = "\n".join(
            f"- [Paper {c.source}] {c.claim_text}" for c in findings[:MAX_CONTRADICTION_FINDINGS]
        )
        data = await self.llm.complete_json(
            GAP_SYSTEM,
            CONTRADICTION_PROMPT.format(findings=listing),
            temperature=GAP_TEMPERATURE,
        )

        gaps = []
        for raw in data.get("contradictions") or []:
            if not isinstance(raw, dict):
                continue
            paper_a = str(raw.get("paper_a_id") or "")
            paper_b = str(raw.get("paper_b_id") or "")
            if not paper_a or not paper_b or paper_a == paper_b:
                continue
            evidence = [
                GapEvidence(paper_id=paper_a, claim_text=str(raw.get("claim_a") or ""), relevance="First claim"),
                GapEvidence(paper_id=paper_b, claim_text=str(raw.get("claim_b") or ""), relevance="Contradicting claim"),
            ]
            gaps.append(
                ResearchGap(
                    gap_id=_new_gap_id(),
                    gap_type=GapType.CONTRADICTION,
                    description=str(raw.get("explanation") or "Conflicting findings"),
                    evidence=evidence,
                    supporting_paper_ids=unique_paper_ids(evidence),
                    confidence=_confidence(raw.get("confidence")),
                    research_opportunity="Resolve the conflicting findings with a study designed to test both claims.",
                )
            )
        return gaps

    async def analyze_gap_addressing(
        self,
        gaps: list[ResearchGap],
        user_claims: list[ExtractedClaim],
    ) -> list[GapAddressing]:
        """
        Decide which gaps the user's claims address.

        Every gap gets an entry; gaps the model skips, and all gaps when the
        model call fails, are not_addressed.
        """
        def not_addressed(gap: ResearchGap, explanation: str) -> GapAddressing:
            return GapAddressing(gap_id=gap.gap_id, status=AddressingStatus.NOT, explanation=explanation)

        if not gaps or not user_claims:
            return [not_addressed(g, "No user claims to compare") for g in gaps]

        gap_listing = "\n".join(f"- [{g.gap_id}] ({g.gap_type.value}) {g.description}" for g in gaps)
        claim_listing = "\n".join(f"- [{c.id}] ({c.claim_type.value}) {c.claim_text}" for c in user_claims)

        try:
            data = await self.llm.complete_json(
                GAP_SYSTEM,
                ADDRESSING_PROMPT.format(gaps=gap_listing, claims=claim_listing),
                temperature=GAP_TEMPERATURE,
            )
        except GenerationError as e:
            logger.warning(f"Gap addressing analysis failed: {e}")
            return [not_addressed(g, "Analysis failed") for g in gaps]

        claim_ids = {c.id for c in user_claims}
        results: dict[str, GapAddressing] = {}
        for raw in data.get("results") or []:
            if not isinstance(raw, dict):
                continue
            gap_id = raw.get("gap_id")
            try:
                status = AddressingStatus(str(raw.get("addressed_status", "")).lower())
            except ValueError:
                status = AddressingStatus.NOT
            results[gap_id] = GapAddressing(
                gap_id=str(gap_id),
                status=status,
                addressing_claim_ids=[i for i in raw.get("addressing_claim_ids") or [] if i in claim_ids],
                explanation=str(raw.get("user_contribution") or ""),
            )

        return [results.get(g.gap_id) or not_addressed(g, "Not assessed") for g in gaps]
