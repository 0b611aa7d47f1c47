"""
Tests for core data models.
"""

import pytest
from pydantic import ValidationError

from genpaper_citations.core.models import (
    Citation,
    CitationType,
    CSLName,
    GenerationEvent,
    GenerationEventType,
    GenerationRequest,
    Marker,
    MarkerGrammar,
    PaperRecord,
    ReferenceType,
)


class TestPaperRecord:
    """Tests for PaperRecord model."""

    def test_create_minimal(self):
        """Test creating a paper with minimal fields."""
        paper = PaperRecord(id="a1b2c3", title="Test Paper")
        assert paper.authors == []
        assert paper.year is None
        assert paper.created_at is not None

    def test_serialization(self, sample_paper: PaperRecord):
        """Test JSON serialization roundtrip."""
        restored = PaperRecord.model_validate_json(sample_paper.model_dump_json())
        assert restored.id == sample_paper.id
        assert restored.authors == sample_paper.authors


class TestCitation:
    """Tests for Citation model."""

    def test_immutable(self, sample_citation: Citation):
        """Test that Citation is immutable (frozen)."""
        with pytest.raises(ValidationError):
            sample_citation.title = "Changed Title"

    def test_defaults(self):
        """Test default type and year text."""
        citation = Citation(id="x1")
        assert citation.type == CitationType.ARTICLE_JOURNAL
        assert citation.year_text == "n.d."

    def test_dedupe_key(self):
        """Test DOI first, normalised title otherwise."""
        assert Citation(id="a", title="T", doi="10.1/ABC").dedupe_key == "doi:10.1/abc"
        assert Citation(id="b", title="  Deep   Learning ").dedupe_key == "title:deep learning"

    def test_names_hashable(self):
        """Test that frozen names can be used in sets."""
        names = {CSLName(family="Smith", given="J."), CSLName(family="Smith", given="J.")}
        assert len(names) == 1


class TestMarker:
    """Tests for Marker model."""

    def test_cite_key(self):
        """Test the grouping key of a marker."""
        marker = Marker(
            grammar=MarkerGrammar.PLACEHOLDER,
            reference_type=ReferenceType.DOI,
            value="10.1/x",
            start=0,
            end=20,
            text="[[CITE:doi:10.1/x]]",
        )
        assert marker.cite_key == "doi:10.1/x"

    def test_negative_offset_rejected(self):
        """Test offsets must be non-negative."""
        with pytest.raises(ValidationError):
            Marker(grammar=MarkerGrammar.MODERN, value="abc", start=-1, end=5, text="[@abc]")


class TestGenerationModels:
    """Tests for generation request and event models."""

    def test_request_defaults(self):
        """Test default style and length."""
        request = GenerationRequest(topic="Vision", section_title="Introduction", paper_ids=["a1"])
        assert request.style == "apa"
        assert request.target_words == 600
        assert request.key_points == []

    def test_request_rejects_zero_length(self):
        """Test that target_words must be positive."""
        with pytest.raises(ValidationError):
            GenerationRequest(topic="Vision", section_title="Intro", target_words=0)

    def test_event_serialization(self):
        """Test events serialize with their type value."""
        event = GenerationEvent(type=GenerationEventType.STATUS, content="retrieving")
        data = event.model_dump(mode="json")
        assert data["type"] == "status"
        assert data["citations"] == []
