"""
Tests for citation post-processing (batch, async and streaming).
"""

from unittest.mock import AsyncMock

import pytest

from genpaper_citations.core.csl import paper_to_citation
from genpaper_citations.core.formatter import CitationFormatter
from genpaper_citations.core.models import Citation, PaperRecord
from genpaper_citations.core.postprocessor import (
    AsyncCitationProcessor,
    CitationPostProcessor,
    CitationStreamProcessor,
    clean_artifacts,
)
from genpaper_citations.core.styles import StyleRepository


@pytest.fixture
def processor() -> CitationPostProcessor:
    return CitationPostProcessor(CitationFormatter(StyleRepository()))


@pytest.fixture
def by_id(sample_papers: list[PaperRecord]) -> dict[str, Citation]:
    return {p.id: paper_to_citation(p) for p in sample_papers}


class TestCleanArtifacts:
    """Tests for artifact cleanup."""

    def test_removes_leaked_artifacts(self):
        """Test that model artifacts never reach the reader."""
        text = "Results improved [citation needed]. addCitation(x) CITATION_3 done [CONTEXT FROM: paper]."
        assert clean_artifacts(text) == "Results improved. done."

    def test_whitespace_normalization(self):
        """Test spacing before punctuation and blank lines."""
        assert clean_artifacts("A  B ,C\n\n\n\nD  ") == "A B,C\n\nD"

    def test_idempotent(self):
        """Test that cleaning twice changes nothing."""
        text = "x [cite] [@ZZ] , y\n\n\n z  ."
        once = clean_artifacts(text)
        assert clean_artifacts(once) == once

    def test_no_trim(self):
        """Test that stream segments keep edge whitespace."""
        assert clean_artifacts("Sentence one. ", trim=False) == "Sentence one. "


class TestCitationPostProcessor:
    """Tests for CitationPostProcessor.process."""

    def test_modern_marker_apa(self, processor: CitationPostProcessor, by_id):
        """Test rendering a modern marker in APA."""
        result = processor.process("Deep learning improved accuracy [@a1b2c3].", by_id, "apa")

        assert result.content == "Deep learning improved accuracy (Smith, 2023)."
        assert result.unresolved_references == []
        assert len(result.citations) == 1

    def test_unresolved_legacy_marker_removed(self, processor: CitationPostProcessor, by_id):
        """Test that an unknown reference is removed and reported."""
        result = processor.process("See [CITE: deadbeef] for details.", by_id, "apa")

        assert result.content == "See for details."
        assert result.unresolved_references == ["deadbeef"]
        assert result.citations == []

    def test_offsets(self, processor: CitationPostProcessor, by_id):
        """Test raw and display offsets of each rendered citation."""
        text = "First [@a1b2c3] then [@ffff] and [@d4e5f6]."
        result = processor.process(text, by_id, "apa")

        assert result.content == "First (Smith, 2023) then and (Garcia & Chen, 2021)."
        assert result.unresolved_references == ["ffff"]
        for citation in result.citations:
            assert text[citation.raw_start:citation.raw_end] == citation.marker
            assert result.content[citation.display_start:citation.display_end] == citation.rendered

    def test_offsets_after_cleanup(self, processor: CitationPostProcessor, by_id):
        """Test display offsets stay exact when cleanup removes text before a citation."""
        text = "Intro   [citation needed]   text ,  claim [@a1b2c3] end."
        result = processor.process(text, by_id, "apa")

        citation = result.citations[0]
        assert result.content[citation.display_start:citation.display_end] == "(Smith, 2023)"

    def test_repeated_marker(self, processor: CitationPostProcessor, by_id):
        """Test one FormattedCitation per occurrence."""
        result = processor.process("A [@a1b2c3]. B [@a1b2c3].", by_id, "apa")

        assert result.content == "A (Smith, 2023). B (Smith, 2023)."
        assert len(result.citations) == 2
        assert result.citations[0].display_start < result.citations[1].display_start

    def test_numeric_numbers_in_order_of_appearance(self, processor: CitationPostProcessor, by_id):
        """Test numbering for numeric styles without a number map."""
        result = processor.process("X [@d4e5f6]. Y [@a1b2c3]. Z [@d4e5f6].", by_id, "ieee")

        assert result.content == "X [1]. Y [2]. Z [1]."

    def test_numeric_with_given_numbers(self, processor: CitationPostProcessor, by_id):
        """Test that supplied numbers are used as-is."""
        result = processor.process("X [@a1b2c3].", by_id, "ieee", citation_numbers={"a1b2c3": 7})

        assert result.content == "X [7]."

    def test_placeholders_resolved_by_matcher(self, processor: CitationPostProcessor, by_id):
        """Test DOI, title and paperId placeholders."""
        text = (
            "A [[CITE:doi:10.1234/JMLR.2023.001]]. "
            "B [[CITE:title:Scaling Laws for Language Models|as shown]]. "
            "C [[CITE:paperId:D4E5F6]]."
        )
        result = processor.process(text, by_id, "apa")

        assert result.content == (
            "A (Smith, 2023). B (Brown et al., 2020). C (Garcia & Chen, 2021)."
        )
        assert result.unresolved_references == []

    def test_unresolved_placeholder_key(self, processor: CitationPostProcessor, by_id):
        """Test that unresolved placeholders report their cite key."""
        result = processor.process("A [[CITE:doi:10.9/none]].", by_id, "apa")

        assert result.content == "A."
        assert result.unresolved_references == ["doi:10.9/none"]

    def test_no_markers(self, processor: CitationPostProcessor):
        """Test text without markers is only cleaned."""
        result = processor.process("Plain  text .", {}, "apa")

        assert result.content == "Plain text."
        assert result.citations == []

    def test_uppercase_reference_keys(self, processor: CitationPostProcessor, sample_citation: Citation):
        """Test that the citation map is matched case-insensitively."""
        result = processor.process("Claim [CITE: A1B2C3].", {"A1B2C3": sample_citation}, "apa")

        assert result.content == "Claim (Smith, 2023)."


class TestAsyncCitationProcessor:
    """Tests for AsyncCitationProcessor."""

    @pytest.mark.asyncio
    async def test_resolves_each_reference_once(self, processor: CitationPostProcessor, sample_paper: PaperRecord):
        """Test concurrent resolution of unique ids."""
        resolver = AsyncMock(side_effect=lambda i: sample_paper if i == "a1b2c3" else None)
        async_processor = AsyncCitationProcessor(resolver, processor)

        result = await async_processor.process("A [@a1b2c3]. B [@a1b2c3]. C [@ffff].", "apa")

        assert result.content == "A (Smith, 2023). B (Smith, 2023). C."
        assert result.unresolved_references == ["ffff"]
        assert resolver.await_count == 2

    @pytest.mark.asyncio
    async def test_resolver_failure_is_unresolved(self, processor: CitationPostProcessor):
        """Test that a failing lookup leaves the reference unresolved."""
        resolver = AsyncMock(side_effect=RuntimeError("store offline"))
        async_processor = AsyncCitationProcessor(resolver, processor)

        result = await async_processor.process("A [@a1b2c3].", "apa")

        assert result.content == "A."
        assert result.unresolved_references == ["a1b2c3"]

    @pytest.mark.asyncio
    async def test_known_citations_used(self, processor: CitationPostProcessor, sample_citation: Citation):
        """Test that known citations are used when the resolver has none."""
        resolver = AsyncMock(return_value=None)
        async_processor = AsyncCitationProcessor(resolver, processor)

        result = await async_processor.process("A [@a1b2c3].", "apa", known={"a1b2c3": sample_citation})

        assert result.content == "A (Smith, 2023)."


class TestCitationStreamProcessor:
    """Tests for CitationStreamProcessor."""

    def test_holds_incomplete_sentence(self, processor: CitationPostProcessor, by_id):
        """Test nothing is released before a sentence ends."""
        stream = CitationStreamProcessor(processor, by_id, "apa")

        assert stream.push("Deep learning improved") is None
        assert stream.push(" accuracy [@a1b") is None

    def test_never_splits_a_marker(self, processor: CitationPostProcessor, by_id):
        """Test that a marker split across deltas renders whole."""
        stream = CitationStreamProcessor(processor, by_id, "apa")
        pieces = ["Deep learning improved accuracy [@a1", "b2c3]. ", "Next sentence"]

        released = [r for r in (stream.push(p) for p in pieces) if r is not None]
        final = stream.flush()

        assert released[0].content == "Deep learning improved accuracy (Smith, 2023). "
        assert final.content == "Next sentence"

    def test_stream_matches_batch(self, processor: CitationPostProcessor, by_id):
        """Test streamed output and offsets against whole-text processing."""
        text = "First claim [@a1b2c3]. Second claim [@d4e5f6]! Third [@ffff] ends here."
        stream = CitationStreamProcessor(processor, by_id, "apa")

        content = ""
        for i in range(0, len(text), 7):
            segment = stream.push(text[i:i + 7])
            if segment is not None:
                content += segment.content
        tail = stream.flush()
        if tail is not None:
            content += tail.content

        batch = processor.process(text, by_id, "apa")
        assert content.strip() == batch.content
        assert stream.unresolved_references == ["ffff"]
        assert len(stream.citations) == 2
        for citation in stream.citations:
            assert text[citation.raw_start:citation.raw_end] == citation.marker
            assert content[citation.display_start:citation.display_end] == citation.rendered

    def test_stream_unresolved_marker_after_sentence_break(self, processor: CitationPostProcessor, by_id):
        """Test no double space when a segment opens with a removed marker."""
        deltas = ["First sentence [@a1b2c3]. ", "[@deadbeef] and more text here. ", "End."]
        stream = CitationStreamProcessor(processor, by_id, "apa")

        content = ""
        for delta in deltas:
            segment = stream.push(delta)
            if segment is not None:
                content += segment.content
        tail = stream.flush()
        if tail is not None:
            content += tail.content

        batch = processor.process("".join(deltas), by_id, "apa")
        assert content == batch.content
        assert "  " not in content
        citation = stream.citations[0]
        assert content[citation.display_start:citation.display_end] == "(Smith, 2023)"

    def test_numeric_numbers_stable_across_segments(self, processor: CitationPostProcessor, by_id):
        """Test numbering continues across released segments."""
        stream = CitationStreamProcessor(processor, by_id, "ieee")

        first = stream.push("A [@d4e5f6]. ")
        second = stream.push("B [@a1b2c3]. C [@d4e5f6]. ")

        assert first.content == "A [1]. "
        assert second.content == "B [2]. C [1]. "

    def test_flush_empty(self, processor: CitationPostProcessor, by_id):
        """Test flushing with nothing buffered."""
        stream = CitationStreamProcessor(processor, by_id, "apa")
        assert stream.flush() is None
