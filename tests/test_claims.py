"""
Tests for claim extraction and user research positioning.
"""

from unittest.mock import AsyncMock

import pytest

from genpaper_citations.core.claims import (
    ClaimExtractor,
    UserClaimExtractor,
    claim_id,
    normalize_claims,
    prepare_text,
)
from genpaper_citations.core.errors import AnalysisError, GenerationError
from genpaper_citations.core.models import (
    ORIGINAL_RESEARCH,
    ClaimRelationship,
    ClaimType,
    ExtractedClaim,
    PaperRecord,
    RelationshipType,
)

LONG_TEXT = "Residual connections improve accuracy on every benchmark we evaluated. " * 3


def user_claim(text: str, claim_type: ClaimType = ClaimType.FINDING) -> ExtractedClaim:
    return ExtractedClaim(
        id=claim_id(ORIGINAL_RESEARCH, text),
        claim_text=text,
        claim_type=claim_type,
        source=ORIGINAL_RESEARCH,
    )


class TestNormalizeClaims:
    """Tests for normalize_claims."""

    def test_defaults_and_coercion(self):
        """Test confidence defaults, clamping and type coercion."""
        claims = normalize_claims(
            [
                {"claim_text": "A holds.", "claim_type": "method", "confidence": 3},
                {"claim_text": "B holds.", "claim_type": "speculation"},
                {"claim_text": "C holds.", "claim_type": "hypothesis", "confidence": "high"},
            ],
            "p1",
        )

        assert [c.claim_type for c in claims] == [ClaimType.METHOD, ClaimType.FINDING, ClaimType.FINDING]
        assert [c.confidence for c in claims] == [1.0, 0.5, 0.5]
        assert all(c.source == "p1" for c in claims)

    def test_deduplicates_and_drops_empty(self):
        """Test that duplicate and empty claim texts are skipped."""
        claims = normalize_claims(
            [
                {"claim_text": "Accuracy improves."},
                {"claim_text": "accuracy improves"},
                {"claim_text": "   "},
                "not a dict",
            ],
            "p1",
        )

        assert len(claims) == 1

    def test_cap(self):
        """Test the claim cap."""
        raw = [{"claim_text": f"Claim number {i}."} for i in range(30)]
        assert len(normalize_claims(raw, "p1", max_claims=5)) == 5

    def test_stable_ids(self):
        """Test ids depend only on source and normalised text."""
        first = normalize_claims([{"claim_text": "Accuracy improves."}], "p1")[0]
        again = normalize_claims([{"claim_text": "  ACCURACY improves!"}], "p1")[0]
        other = normalize_claims([{"claim_text": "Accuracy improves."}], "p2")[0]

        assert first.id == again.id
        assert first.id != other.id
        assert first.id.startswith("claim-") and len(first.id) == len("claim-") + 12

    def test_prepare_text(self):
        """Test abstract placement and truncation."""
        text = prepare_text("x" * 15001, abstract="Summary.")

        assert text.startswith("ABSTRACT:\nSummary.\n\n")
        assert text.endswith("[Content truncated...]")


class TestClaimExtractor:
    """Tests for ClaimExtractor."""

    @pytest.mark.asyncio
    async def test_insufficient_content(self, mock_llm: AsyncMock):
        """Test that short text is rejected before any model call."""
        paper = PaperRecord(id="p1", title="Short", abstract="Too short.")

        with pytest.raises(AnalysisError):
            await ClaimExtractor(mock_llm).extract_claims(paper)
        mock_llm.complete_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_extract_claims(self, mock_llm: AsyncMock, sample_paper: PaperRecord):
        """Test extraction from paper text."""
        mock_llm.complete_json.return_value = {
            "claims": [
                {
                    "claim_text": "Residual connections improve accuracy.",
                    "evidence_quote": "accuracy rose by 4%",
                    "section": "Results",
                    "claim_type": "finding",
                    "confidence": 0.9,
                },
                {"claim_text": "Only ImageNet was used.", "claim_type": "limitation"},
            ]
        }

        claims = await ClaimExtractor(mock_llm).extract_claims(sample_paper, LONG_TEXT)

        assert [c.claim_type for c in claims] == [ClaimType.FINDING, ClaimType.LIMITATION]
        assert claims[0].evidence_quote == "accuracy rose by 4%"
        assert claims[0].source == sample_paper.id
        prompt = mock_llm.complete_json.await_args.args[1]
        assert sample_paper.title in prompt

    @pytest.mark.asyncio
    async def test_model_failure_propagates(self, mock_llm: AsyncMock, sample_paper: PaperRecord):
        """Test that generation errors reach the caller."""
        mock_llm.complete_json.side_effect = GenerationError("provider down")

        with pytest.raises(GenerationError):
            await ClaimExtractor(mock_llm).extract_claims(sample_paper, LONG_TEXT)


class TestUserClaimExtractor:
    """Tests for UserClaimExtractor."""

    @pytest.mark.asyncio
    async def test_requires_input(self, mock_llm: AsyncMock):
        """Test that both inputs empty is an error."""
        with pytest.raises(AnalysisError):
            await UserClaimExtractor(mock_llm).extract_user_claims("topic", "  ", "")
        mock_llm.complete_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_extract_user_claims(self, mock_llm: AsyncMock):
        """Test user claims are tagged as original research."""
        mock_llm.complete_json.return_value = {
            "claims": [
                {"claim_text": "Sparse attention suffices.", "claim_type": "hypothesis", "key_terms": ["sparse"]},
                {"claim_text": "Training is 2x faster.", "claim_type": "background"},
            ]
        }

        claims = await UserClaimExtractor(mock_llm).extract_user_claims(
            "efficient transformers", research_question="Is sparse attention enough?"
        )

        assert all(c.source == ORIGINAL_RESEARCH for c in claims)
        assert claims[0].claim_type == ClaimType.HYPOTHESIS
        assert claims[0].key_terms == ["sparse"]
        assert claims[1].claim_type == ClaimType.FINDING
        assert "Not provided" in mock_llm.complete_json.await_args.args[1]

    @pytest.mark.asyncio
    async def test_relationships_without_user_claims(self, mock_llm: AsyncMock, sample_claims):
        """Test that every literature claim is marked not analyzed."""
        relationships = await UserClaimExtractor(mock_llm).analyze_relationships([], sample_claims)

        assert [r.relationship for r in relationships] == [RelationshipType.NOT_ANALYZED] * 3
        assert relationships[0].explanation == "No user claims available for comparison"
        mock_llm.complete_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_relationships(self, mock_llm: AsyncMock, sample_claims):
        """Test classification, unknown labels and omitted claims."""
        mock_llm.complete_json.return_value = {
            "relationships": [
                {"claim_id": "claim-000000000001", "relationship": "SUPPORTS", "explanation": "Same result."},
                {"claim_id": "claim-000000000002", "relationship": "refutes", "explanation": "?"},
                {"claim_id": "claim-unknown", "relationship": "supports"},
            ]
        }

        relationships = await UserClaimExtractor(mock_llm).analyze_relationships(
            [user_claim("Residual connections help.")], sample_claims
        )

        assert [r.literature_claim_id for r in relationships] == [c.id for c in sample_claims]
        assert [r.relationship for r in relationships] == [
            RelationshipType.SUPPORTS,
            RelationshipType.UNRELATED,
            RelationshipType.NOT_ANALYZED,
        ]
        assert relationships[0].explanation == "Same result."

    @pytest.mark.asyncio
    async def test_failed_batch_only_affects_its_claims(self, mock_llm: AsyncMock, sample_claims):
        """Test that one failing batch leaves other batches intact."""
        mock_llm.complete_json.side_effect = [
            {"relationships": [
                {"claim_id": "claim-000000000001", "relationship": "extends", "explanation": "Builds on it."},
                {"claim_id": "claim-000000000002", "relationship": "contradicts", "explanation": "Opposite."},
            ]},
            GenerationError("timeout"),
        ]

        relationships = await UserClaimExtractor(mock_llm, batch_size=2).analyze_relationships(
            [user_claim("Residual connections help.")], sample_claims
        )

        assert mock_llm.complete_json.await_count == 2
        assert [r.relationship for r in relationships] == [
            RelationshipType.EXTENDS,
            RelationshipType.CONTRADICTS,
            RelationshipType.NOT_ANALYZED,
        ]
        assert relationships[2].explanation == "Analysis failed"

    @pytest.mark.asyncio
    async def test_relationships_ignore_non_string_ids(self, mock_llm: AsyncMock, sample_claims):
        """Test that malformed claim ids are skipped rather than raising."""
        mock_llm.complete_json.return_value = {
            "relationships": [
                {"claim_id": ["claim-000000000001"], "relationship": "supports"},
                {"claim_id": {"id": "x"}, "relationship": "supports"},
                {"claim_id": "claim-000000000002", "relationship": "extends", "explanation": "Adds data."},
            ]
        }

        relationships = await UserClaimExtractor(mock_llm).analyze_relationships(
            [user_claim("Residual connections help.")], sample_claims
        )

        assert [r.relationship for r in relationships] == [
            RelationshipType.NOT_ANALYZED,
            RelationshipType.EXTENDS,
            RelationshipType.NOT_ANALYZED,
        ]

    def test_generate_positioning(self, sample_claims):
        """Test novelty, alignments, divergences and discussion points."""
        user_claims = [
            user_claim("Our method doubles throughput.", ClaimType.CONTRIBUTION),
            user_claim("Sparse attention suffices.", ClaimType.HYPOTHESIS),
        ]
        relationships = [
            ClaimRelationship(
                literature_claim_id="claim-000000000001",
                relationship=RelationshipType.SUPPORTS,
                explanation="Consistent.",
            ),
            ClaimRelationship(
                literature_claim_id="claim-000000000002",
                relationship=RelationshipType.CONTRADICTS,
                explanation="Opposite result.",
            ),
            ClaimRelationship(
                literature_claim_id="claim-000000000003",
                relationship=RelationshipType.EXTENDS,
                explanation="We test more datasets.",
            ),
        ]

        positioning = UserClaimExtractor.generate_positioning(user_claims, sample_claims, relationships)

        assert positioning.novelty == ["Our method doubles throughput."]
        assert positioning.alignments == [
            "Residual connections improve image recognition accuracy. - Consistent."
        ]
        assert positioning.divergences == [
            "Residual connections do not help shallow networks. - Opposite result."
        ]
        points = positioning.suggested_discussion_points
        assert len(points) == 3
        assert "contradiction with paper d4e5f6" in points[0]
        assert "extend paper a1b2c3" in points[1]
        assert points[2].startswith("Your findings are consistent with 1 prior claims")
