"""
Tests for paper and project citation storage.
"""

from pathlib import Path

import pytest

from genpaper_citations.config import Settings
from genpaper_citations.core.csl import paper_to_citation
from genpaper_citations.core.errors import IngestionError
from genpaper_citations.core.models import GapAnalysisResult, PaperRecord
from genpaper_citations.core.postprocessor import CitationPostProcessor
from genpaper_citations.resources.citations import CitationManager
from genpaper_citations.resources.papers import PaperManager

PAPER_TEXT = "\n\n".join(
    [
        "Introduction\n" + " ".join(
            f"Deep networks are widely used for vision task number {i}." for i in range(8)
        ),
        "Results\n" + " ".join(
            f"Residual connections improved accuracy on benchmark {i} by 4%." for i in range(8)
        ),
    ]
)


@pytest.fixture
def papers(mock_settings: Settings) -> PaperManager:
    """Create a PaperManager with temp storage."""
    return PaperManager(settings=mock_settings)


@pytest.fixture
def manager(mock_settings: Settings) -> CitationManager:
    """Create a CitationManager with temp storage."""
    return CitationManager(settings=mock_settings)


class TestPaperManager:
    """Tests for PaperManager."""

    @pytest.mark.asyncio
    async def test_add_and_get_paper(self, papers: PaperManager, sample_paper: PaperRecord):
        """Test storing and loading a paper record."""
        await papers.add_paper(sample_paper)

        assert await papers.has_paper(sample_paper.id)
        loaded = await papers.get_paper(sample_paper.id)
        assert loaded.title == sample_paper.title
        assert loaded.authors == sample_paper.authors

    @pytest.mark.asyncio
    async def test_get_unknown_paper(self, papers: PaperManager):
        """Test loading a paper that was never stored."""
        assert await papers.get_paper("missing") is None
        assert await papers.get_papers(["missing"]) == []

    @pytest.mark.asyncio
    async def test_list_and_delete(self, papers: PaperManager, sample_papers: list[PaperRecord]):
        """Test listing and deleting papers."""
        for paper in sample_papers:
            await papers.add_paper(paper)

        assert {p.id for p in await papers.list_papers()} == {p.id for p in sample_papers}
        assert await papers.delete_paper("d4e5f6") is True
        assert await papers.delete_paper("d4e5f6") is False
        assert len(await papers.list_papers()) == 2

    @pytest.mark.asyncio
    async def test_unsafe_ids(self, papers: PaperManager):
        """Test ids with path separators stay inside storage."""
        paper = PaperRecord(id="doi:10.1000/xyz", title="Slashed")
        await papers.add_paper(paper)

        assert (await papers.get_paper(paper.id)).title == "Slashed"
        assert papers._get_paper_dir(paper.id).parent == papers.storage_path

    @pytest.mark.asyncio
    async def test_ingest_text(self, papers: PaperManager, sample_paper: PaperRecord):
        """Test text ingestion stores content and chunks."""
        await papers.add_paper(sample_paper)

        chunks = await papers.ingest_text(sample_paper.id, PAPER_TEXT)

        assert len(chunks) > 1
        assert await papers.get_paper_content(sample_paper.id) == PAPER_TEXT
        stored = await papers.get_chunks(sample_paper.id)
        assert [c.id for c in stored] == [c.id for c in chunks]
        assert stored[0].metadata.section_type is not None

    @pytest.mark.asyncio
    async def test_ingest_unknown_paper(self, papers: PaperManager):
        """Test that text cannot be ingested for an unknown paper."""
        with pytest.raises(IngestionError) as exc_info:
            await papers.ingest_text("missing", PAPER_TEXT)
        assert exc_info.value.paper_id == "missing"

    @pytest.mark.asyncio
    async def test_ingest_empty_text(self, papers: PaperManager, sample_paper: PaperRecord):
        """Test that empty text is rejected."""
        await papers.add_paper(sample_paper)

        with pytest.raises(IngestionError):
            await papers.ingest_text(sample_paper.id, "  \n ")

    @pytest.mark.asyncio
    async def test_ingest_missing_pdf(self, papers: PaperManager, sample_paper: PaperRecord, tmp_path: Path):
        """Test a missing PDF file."""
        await papers.add_paper(sample_paper)

        with pytest.raises(IngestionError):
            await papers.ingest_pdf(sample_paper.id, tmp_path / "missing.pdf")

    @pytest.mark.asyncio
    async def test_search_chunks(self, papers: PaperManager, sample_paper: PaperRecord):
        """Test chunks are ranked by query relevance."""
        await papers.add_paper(sample_paper)
        await papers.ingest_text(sample_paper.id, PAPER_TEXT)

        results = await papers.search_chunks("residual connections accuracy", [sample_paper.id], limit=2)

        assert len(results) <= 2
        assert "Residual connections" in results[0].content

    @pytest.mark.asyncio
    async def test_chunks_of_unknown_paper(self, papers: PaperManager):
        """Test that a paper without chunks returns none."""
        assert await papers.get_chunks("missing") == []
        assert await papers.get_paper_content("missing") is None


class TestCitationManager:
    """Tests for CitationManager."""

    @pytest.mark.asyncio
    async def test_numbers_in_first_cited_order(self, manager: CitationManager, sample_papers):
        """Test numbering is assigned once and kept."""
        citations = [paper_to_citation(p) for p in sample_papers]

        first = await manager.add_citations("proj", [citations[1], citations[0]])
        second = await manager.add_citations("proj", [citations[0], citations[2]])

        assert first == {"d4e5f6": 1, "a1b2c3": 2}
        assert second == {"d4e5f6": 1, "a1b2c3": 2, "0789ab": 3}
        assert await manager.get_citation_numbers("proj") == second
        assert [c.id for c in await manager.get_citations("proj")] == ["d4e5f6", "a1b2c3", "0789ab"]

    @pytest.mark.asyncio
    async def test_record_citations_in_text_order(self, manager: CitationManager, sample_papers):
        """Test recording processed markers by position."""
        by_id = {p.id: paper_to_citation(p) for p in sample_papers}
        result = CitationPostProcessor().process("A [@0789ab]. B [@a1b2c3]. C [@0789ab].", by_id, "apa")

        numbers = await manager.record_citations("proj", reversed(result.citations))

        assert numbers == {"0789ab": 1, "a1b2c3": 2}

    @pytest.mark.asyncio
    async def test_list_projects(self, manager: CitationManager, sample_citation):
        """Test listing projects with a library."""
        await manager.add_citations("alpha", [sample_citation])
        await manager.add_citations("beta", [sample_citation])

        assert sorted(await manager.list_projects()) == ["alpha", "beta"]

    @pytest.mark.asyncio
    async def test_empty_project(self, manager: CitationManager):
        """Test a project with no citations."""
        assert await manager.get_citations("none") == []
        assert await manager.get_citation_numbers("none") == {}
        assert await manager.get_bibliography_path("none") is None

    @pytest.mark.asyncio
    async def test_store_bibliography(self, manager: CitationManager):
        """Test storing a bibliography as markdown."""
        entries = ["Smith, J. (2023). Deep Learning.", "Garcia, M. (2021). Attention."]

        path = await manager.store_bibliography("proj", entries, "apa")

        assert path.exists()
        assert path.name == "bibliography.md"
        content = path.read_text()
        assert "# References: proj" in content
        assert "*Total: 2 entries*" in content
        assert entries[1] in content
        assert await manager.get_bibliography_path("proj") == path

    @pytest.mark.asyncio
    async def test_store_and_load_analysis(self, manager: CitationManager):
        """Test analysis results are stored as JSON."""
        await manager.store_analysis("proj", "gaps", GapAnalysisResult(topic="vision", analyzed_claim_count=4))

        data = await manager.load_analysis("proj", "gaps")

        assert data["topic"] == "vision"
        assert data["analyzed_claim_count"] == 4
        assert await manager.load_analysis("proj", "claims") is None
