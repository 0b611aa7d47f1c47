"""
Claim extraction.

Literature claims come from paper text; user claims come from the
researcher's own question and findings. The language model makes the
extraction judgement; this module owns the prompt contract (what goes
in, which JSON shape comes back) and the post-processing contract
(stable ids, deduplication, capping, confidence defaults).
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Iterable, Optional

from .errors import AnalysisError, GenerationError
from .llm import LLMClient
from .matcher import normalize_text
from .models import (
    ORIGINAL_RESEARCH,
    ClaimRelationship,
    ClaimType,
    ExtractedClaim,
    PaperRecord,
    RelationshipType,
    ResearchPositioning,
)

logger = logging.getLogger("genpaper-citation-server")

MAX_CONTENT_LENGTH = 15000
MIN_CONTENT_LENGTH = 100
DEFAULT_CONFIDENCE = 0.5
EXTRACTION_TEMPERATURE = 0.1

LITERATURE_CLAIM_TYPES = (
    ClaimType.FINDING,
    ClaimType.METHOD,
    ClaimType.LIMITATION,
    ClaimType.FUTURE_WORK,
    ClaimType.BACKGROUND,
)
USER_CLAIM_TYPES = (
    ClaimType.HYPOTHESIS,
    ClaimType.FINDING,
    ClaimType.CONTRIBUTION,
    ClaimType.IMPLICATION,
    ClaimType.LIMITATION,
)

CLAIM_EXTRACTION_SYSTEM = "You are a research assistant specializing in extracting key claims from academic papers. Respond with JSON only."

CLAIM_EXTRACTION_PROMPT = """Analyze the following paper and extract all significant claims. For each claim:
1. Identify the exact statement or finding
2. Quote the supporting evidence verbatim
3. Classify the claim type
4. Rate your confidence in the extraction

Paper Title: "{title}"

Paper Content:
{content}

Extract claims that are:
- finding: Key results, discoveries, or conclusions
- method: Methodological approaches or techniques used
- limitation: Stated limitations, weaknesses, or caveats
- future_work: Suggestions for future research
- background: Important context or prior work cited

Be precise and extract only clearly stated claims. Aim for 5-15 claims,
focusing on the most significant ones. Rate confidence by how clearly the
claim is stated (1.0 = very clear, 0.5 = somewhat ambiguous).

Return JSON: {{"claims": [{{"claim_text": str, "evidence_quote": str,
"section": str, "claim_type": str, "confidence": float}}]}}"""

USER_CLAIM_PROMPT = """Topic: "{topic}"

The researcher has provided the following inputs about their original research:

RESEARCH QUESTION:
{research_question}

KEY FINDINGS:
{key_findings}

Extract structured claims from these inputs:
1. From the RESEARCH QUESTION: the main hypothesis ("hypothesis") and any
   implied contributions ("contribution").
2. From the KEY FINDINGS: main results ("finding"), novel contributions
   ("contribution"), practical implications ("implication") and mentioned
   limitations ("limitation").

Write each claim as a clear, standalone statement, rate confidence by how
explicitly it is stated (1.0 = very clear, 0.5 = implied) and list 2-3 key
terms for matching. Extract 3-8 claims total.

Return JSON: {{"claims": [{{"claim_text": str, "claim_type": str,
"confidence": float, "key_terms": [str]}}]}}"""

RELATIONSHIP_PROMPT = """THE RESEARCHER'S CLAIMS (from their original research):
{user_claims}

LITERATURE CLAIMS TO ANALYZE:
{literature_claims}

For each literature claim, determine its relationship to the researcher's work:
- "supports": provides evidence that aligns with the researcher's findings
- "extends": the researcher's work builds upon or extends this claim
- "contradicts": conflicts with the researcher's findings
- "unrelated": not directly relevant to the researcher's findings

Give a brief explanation (1-2 sentences) for each. Focus on substantive
relationships, not superficial topic overlap.

Return JSON: {{"relationships": [{{"claim_id": str, "relationship": str,
"explanation": str}}]}}"""


def prepare_text(content: Optional[str], abstract: Optional[str] = None) -> str:
    """Abstract first, then content truncated to 15,000 characters."""
    text = ""
    if abstract:
        text += f"ABSTRACT:\n{abstract}\n\n"
    if content:
        text += content[:MAX_CONTENT_LENGTH]
        if len(content) > MAX_CONTENT_LENGTH:
            text += "\n[Content truncated...]"
    return text.strip()


def claim_id(source: str, claim_text: str) -> str:
    """Stable id from the claim source and its normalised text."""
    digest = hashlib.sha1(f"{source}|{normalize_text(claim_text)}".encode("utf-8")).hexdigest()
    return f"claim-{digest[:12]}"


def _coerce_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    return max(0.0, min(1.0, confidence))


def _coerce_type(value: Any, allowed: Iterable[ClaimType]) -> ClaimType:
    allowed = tuple(allowed)
    try:
        claim_type = ClaimType(str(value).strip().lower())
    except ValueError:
        return ClaimType.FINDING
    return claim_type if claim_type in allowed else ClaimType.FINDING


def normalize_claims(
    raw_claims: Iterable[Any],
    source: str,
    max_claims: int = 20,
    allowed_types: Iterable[ClaimType] = LITERATURE_CLAIM_TYPES,
) -> list[ExtractedClaim]:
    """
    Post-process model output into claims.

    Drops empty entries, deduplicates by normalised claim text, caps at
    max_claims, defaults missing confidence to 0.5 (clamped to [0, 1])
    and coerces unknown claim types to finding.
    """
    allowed = tuple(allowed_types)
    seen: set[str] = set()
    claims: list[ExtractedClaim] = []

    for raw in raw_claims:
        if not isinstance(raw, dict):
            continue
        text = str(raw.get("claim_text") or "").strip()
        key = normalize_text(text)
        if not key or key in seen:
            continue
        seen.add(key)

        terms = raw.get("key_terms") or []
        claims.append(
            ExtractedClaim(
                id=claim_id(source, text),
                claim_text=text,
                claim_type=_coerce_type(raw.get("claim_type"), allowed),
                confidence=_coerce_confidence(raw.get("confidence", DEFAULT_CONFIDENCE)),
                source=source,
                evidence_quote=(raw.get("evidence_quote") or None),
                section=(raw.get("section") or None),
                key_terms=[str(t) for t in terms if t] if isinstance(terms, list) else [],
            )
        )
        if len(claims) >= max_claims:
            break

    return claims


class ClaimExtractor:
    """Extract claims from a paper's text."""

    def __init__(self, llm: LLMClient, max_claims: int = 20):
        self.llm = llm
        self.max_claims = max_claims

    async def extract_claims(self, paper: PaperRecord, content: Optional[str] = None) -> list[ExtractedClaim]:
        """
        Extract claims from a paper.

        Args:
            paper: Paper record (title and abstract are used).
            content: Full text, if ingested.

        Raises:
            AnalysisError: If fewer than 100 characters are available.
            GenerationError: If the model call fails.
        """
        text = prepare_text(content, paper.abstract)
        if len(text) < MIN_CONTENT_LENGTH:
            raise AnalysisError(
                "Insufficient content for claim extraction",
                details={"paper_id": paper.id, "length": len(text)},
            )

        data = await self.llm.complete_json(
            CLAIM_EXTRACTION_SYSTEM,
            CLAIM_EXTRACTION_PROMPT.format(title=paper.title, content=text),
            temperature=EXTRACTION_TEMPERATURE,
        )
        claims = normalize_claims(data.get("claims") or [], paper.id, self.max_claims)
        logger.info(f"Extracted {len(claims)} claims from paper {paper.id}")
        return claims


class UserClaimExtractor:
    """
    Structure the researcher's own work into claims and relate them to
    literature claims.
    """

    def __init__(self, llm: LLMClient, batch_size: int = 10, max_claims: int = 20):
        self.llm = llm
        self.batch_size = max(1, batch_size)
        self.max_claims = max_claims

    async def extract_user_claims(
        self,
        topic: str,
        research_question: str = "",
        key_findings: str = "",
    ) -> list[ExtractedClaim]:
        """
        Extract claims from a research question and key findings.

        Raises:
            AnalysisError: If neither input is provided.
        """
        if not (research_question or "").strip() and not (key_findings or "").strip():
            raise AnalysisError("No research question or key findings provided")

        data = await self.llm.complete_json(
            "You are a research assistant helping to structure a researcher's original work. Respond with JSON only.",
            USER_CLAIM_PROMPT.format(
                topic=topic,
                research_question=research_question or "Not provided",
                key_findings=key_findings or "Not provided",
            ),
            temperature=EXTRACTION_TEMPERATURE,
        )
        return normalize_claims(
            data.get("claims") or [],
            ORIGINAL_RESEARCH,
            self.max_claims,
            allowed_types=USER_CLAIM_TYPES,
        )

    async def analyze_relationships(
        self,
        user_claims: list[ExtractedClaim],
        literature_claims: list[ExtractedClaim],
    ) -> list[ClaimRelationship]:
        """
        Classify each literature claim against the user's claims.

        Literature claims are sent in fixed-size batches with the full set
        of user claims. Claims in a failed batch, or omitted by the model,
        are marked not_analyzed. Output order follows literature_claims.
        """
        if not user_claims or not literature_claims:
            return [
                ClaimRelationship(
                    literature_claim_id=c.id,
                    relationship=RelationshipType.NOT_ANALYZED,
                    explanation="No user claims available for comparison",
                )
                for c in literature_claims
            ]

        summary = "\n".join(f"- [{c.claim_type.value}] {c.claim_text}" for c in user_claims)
        results: dict[str, ClaimRelationship] = {}

        for start in range(0, len(literature_claims), self.batch_size):
            batch = literature_claims[start:start + self.batch_size]
            listing = "\n\n".join(
                f"ID: {c.id}\nType: {c.claim_type.value}\nClaim: {c.claim_text}" for c in batch
            )
            batch_ids = {c.id for c in batch}

            try:
                data = await self.llm.complete_json(
                    "You are analyzing how literature claims relate to a researcher's original findings. Respond with JSON only.",
                    RELATIONSHIP_PROMPT.format(user_claims=summary, literature_claims=listing),
                    temperature=EXTRACTION_TEMPERATURE,
                )
            except GenerationError as e:
                logger.warning(f"Relationship batch {start // self.batch_size + 1} failed: {e}")
                continue

            for raw in data.get("relationships") or []:
                if not isinstance(raw, dict):
                    continue
                claim_ref = raw.get("claim_id")
                if not isinstance(claim_ref, str) or claim_ref not in batch_ids:
                    continue
                try:
                    relationship = RelationshipType(str(raw.get("relationship", "")).lower())
                except ValueError:
                    relationship = RelationshipType.UNRELATED
                results[claim_ref] = ClaimRelationship(
                    literature_claim_id=claim_ref,
                    relationship=relationship,
                    explanation=str(raw.get("explanation") or ""),
                )

        return [
            results.get(c.id)
            or ClaimRelationship(
                literature_claim_id=c.id,
                relationship=RelationshipType.NOT_ANALYZED,
                explanation="Analysis failed",
            )
            for c in literature_claims
        ]

    @staticmethod
    def generate_positioning(
        user_claims: list[ExtractedClaim],
        literature_claims: list[ExtractedClaim],
        relationships: list[ClaimRelationship],
    ) -> ResearchPositioning:
        """Summarise where the user's research sits relative to the literature."""
        by_id = {r.literature_claim_id: r for r in relationships}
        positioning = ResearchPositioning(
            novelty=[
                c.claim_text
                for c in user_claims
                if c.claim_type in (ClaimType.CONTRIBUTION, ClaimType.FINDING)
            ]
        )

        supporting = 0
        for claim in literature_claims:
            relation = by_id.get(claim.id)
            if relation is None:
                continue
            if relation.relationship == RelationshipType.SUPPORTS:
                supporting += 1
                positioning.alignments.append(f"{claim.claim_text} - {relation.explanation}")
            elif relation.relationship == RelationshipType.CONTRADICTS:
                positioning.divergences.append(f"{claim.claim_text} - {relation.explanation}")
                positioning.suggested_discussion_points.append(
                    f"Address the apparent contradiction with paper {claim.source} regarding: "
                    f"{claim.claim_text[:100]}"
                )
            elif relation.relationship == RelationshipType.EXTENDS:
                positioning.suggested_discussion_points.append(
                    f"Discuss how your findings extend paper {claim.source}: {relation.explanation}"
                )

        if supporting:
            positioning.suggested_discussion_points.append(
                f"Your findings are consistent with {supporting} prior claims, "
                "strengthening the evidence for your conclusions."
            )
        return positioning
