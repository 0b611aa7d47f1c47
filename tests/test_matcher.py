"""
Tests for CitationMatcher.
"""

import pytest

from genpaper_citations.core.csl import paper_to_citation
from genpaper_citations.core.matcher import CitationMatcher, jaccard, normalize_text
from genpaper_citations.core.models import Citation, MatchType, PaperRecord


@pytest.fixture
def citations(sample_papers: list[PaperRecord]) -> list[Citation]:
    return [paper_to_citation(p) for p in sample_papers]


@pytest.fixture
def matcher(citations: list[Citation]) -> CitationMatcher:
    return CitationMatcher(citations)


class TestHelpers:
    """Tests for text helpers."""

    def test_normalize_text(self):
        """Test lower-casing and punctuation stripping."""
        assert normalize_text("Deep-Learning:  A Survey!") == "deep learning a survey"

    def test_jaccard(self):
        """Test word-set similarity ignoring short words."""
        assert jaccard("deep learning models", "deep learning models") == 1.0
        assert jaccard("", "anything") == 0.0
        assert jaccard("deep learning", "deep networks") == pytest.approx(1 / 3)


class TestCitationMatcher:
    """Tests for matching strategies."""

    def test_doi_match(self, matcher: CitationMatcher):
        """Test exact DOI matching, case-insensitive."""
        match = matcher.find_best_match("as reported in doi 10.1234/JMLR.2023.001.")

        assert match is not None
        assert match.match_type == MatchType.DOI
        assert match.citation.id == "a1b2c3"
        assert match.confidence == 0.95

    def test_author_year_forms(self, matcher: CitationMatcher):
        """Test the three author-year patterns."""
        for text in ("Smith (2023) showed", "as shown (Smith, 2023)", "Smith, 2023 found"):
            match = matcher.find_best_match(text)
            assert match is not None, text
            assert match.match_type == MatchType.AUTHOR_YEAR
            assert match.citation.id == "a1b2c3"
            assert match.confidence == 0.85

    def test_author_year_et_al(self, matcher: CitationMatcher):
        """Test 'et al.' forms match on the first author."""
        match = matcher.find_best_match("(Brown et al., 2020)")

        assert match is not None
        assert match.citation.id == "0789ab"

    def test_title_match(self, matcher: CitationMatcher):
        """Test normalized title matching."""
        match = matcher.find_best_match("scaling laws for language models")

        assert match is not None
        assert match.match_type == MatchType.TITLE
        assert match.citation.id == "0789ab"
        assert match.confidence == pytest.approx(0.8)

    def test_first_strategy_wins(self, matcher: CitationMatcher):
        """Test that a DOI match beats a title match in the same text."""
        text = "Scaling Laws for Language Models, doi 10.1234/jmlr.2023.001"
        match = matcher.find_best_match(text)

        assert match.match_type == MatchType.DOI
        assert match.citation.id == "a1b2c3"

    def test_no_match(self, matcher: CitationMatcher):
        """Test unrelated text."""
        assert matcher.find_best_match("quantum chromodynamics on lattices") is None

    def test_empty_inputs(self, citations: list[Citation]):
        """Test empty text and empty citation set."""
        assert CitationMatcher(citations).find_best_match("") is None
        assert CitationMatcher().find_best_match("Smith (2023)") is None
        assert CitationMatcher().find_all_matches("Smith (2023)") == []

    def test_find_all_matches(self, matcher: CitationMatcher):
        """Test union of strategies with threshold and ordering."""
        text = "Smith (2023) and Garcia (2021) agree."
        matches = matcher.find_all_matches(text, min_confidence=0.6)

        assert {m.citation.id for m in matches} == {"a1b2c3", "d4e5f6"}
        confidences = [m.confidence for m in matches]
        assert confidences == sorted(confidences, reverse=True)

    def test_find_all_matches_threshold(self, matcher: CitationMatcher):
        """Test that low-confidence matches are dropped."""
        assert matcher.find_all_matches("Smith (2023)", min_confidence=0.9) == []

    def test_update_citations_rebuilds_indexes(self, matcher: CitationMatcher):
        """Test replacing the citation set."""
        other = Citation(id="ff00", title="Another Paper", doi="10.9/other")
        matcher.update_citations([other])

        assert matcher.lookup_doi("10.9/OTHER").id == "ff00"
        assert matcher.lookup_doi("10.1234/jmlr.2023.001") is None
        assert matcher.get_stats()["total_citations"] == 1

    def test_lookup_title(self, matcher: CitationMatcher):
        """Test exact title lookup ignores case and punctuation."""
        citation = matcher.lookup_title("Attention mechanisms in neural translation.")

        assert citation is not None
        assert citation.id == "d4e5f6"
