"""
Shared test fixtures for genpaper-citation-server tests.
"""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from genpaper_citations.config import Settings
from genpaper_citations.core.csl import paper_to_citation
from genpaper_citations.core.llm import LLMClient
from genpaper_citations.core.models import Citation, ClaimType, ExtractedClaim, PaperRecord


CSL_STYLE_XML = """<?xml version="1.0" encoding="utf-8"?>
<style xmlns="http://purl.org/net/xbiblio/csl" class="in-text" version="1.0">
  <info>
    <title>Test Author-Date</title>
    <id>http://www.zotero.org/styles/test-author-date</id>
    <updated>2024-01-01T00:00:00+00:00</updated>
  </info>
  <citation>
    <layout prefix="(" suffix=")" delimiter="; ">
      <names variable="author">
        <name form="short"/>
      </names>
      <date variable="issued" prefix=" ">
        <date-part name="year"/>
      </date>
    </layout>
  </citation>
  <bibliography>
    <layout>
      <names variable="author" suffix=". "/>
      <text variable="title"/>
    </layout>
  </bibliography>
</style>
"""


@pytest.fixture
def csl_style_xml() -> str:
    """A minimal valid CSL author-date style."""
    return CSL_STYLE_XML


@pytest.fixture
def sample_paper() -> PaperRecord:
    """Create a sample paper for testing."""
    return PaperRecord(
        id="a1b2c3",
        title="Deep Learning for Image Recognition",
        authors=["John Smith"],
        year=2023,
        venue="Journal of Machine Learning Research",
        doi="10.1234/jmlr.2023.001",
        volume="24",
        issue="3",
        pages="1-20",
        abstract=(
            "We study deep convolutional networks for image recognition and show "
            "that residual connections improve accuracy on standard benchmarks."
        ),
    )


@pytest.fixture
def sample_papers(sample_paper: PaperRecord) -> list[PaperRecord]:
    """Three papers with distinct first authors."""
    return [
        sample_paper,
        PaperRecord(
            id="d4e5f6",
            title="Attention Mechanisms in Neural Translation",
            authors=["Maria Garcia", "Wei Chen"],
            year=2021,
            venue="Proceedings of ACL",
            abstract=(
                "Attention mechanisms let translation models focus on relevant source "
                "tokens and improve translation quality for long sentences."
            ),
        ),
        PaperRecord(
            id="0789ab",
            title="Scaling Laws for Language Models",
            authors=["Alice Brown", "Bob Jones", "Carol White"],
            year=2020,
            venue="arXiv preprint",
        ),
    ]


@pytest.fixture
def sample_citation(sample_paper: PaperRecord) -> Citation:
    """Citation derived from the sample paper."""
    return paper_to_citation(sample_paper)


@pytest.fixture
def sample_claims() -> list[ExtractedClaim]:
    """Literature claims from two papers."""
    return [
        ExtractedClaim(
            id="claim-000000000001",
            claim_text="Residual connections improve image recognition accuracy.",
            claim_type=ClaimType.FINDING,
            confidence=0.9,
            source="a1b2c3",
        ),
        ExtractedClaim(
            id="claim-000000000002",
            claim_text="Residual connections do not help shallow networks.",
            claim_type=ClaimType.FINDING,
            confidence=0.8,
            source="d4e5f6",
        ),
        ExtractedClaim(
            id="claim-000000000003",
            claim_text="Only ImageNet was evaluated.",
            claim_type=ClaimType.LIMITATION,
            confidence=0.7,
            source="a1b2c3",
        ),
    ]


@pytest.fixture
def temp_storage(tmp_path: Path) -> Path:
    """Create a temporary storage directory."""
    storage_path = tmp_path / "genpaper"
    storage_path.mkdir(parents=True)
    return storage_path


@pytest.fixture
def mock_settings(temp_storage: Path) -> Settings:
    """Create settings with temporary storage."""
    return Settings(
        STORAGE_PATH=temp_storage / "citations",
        PAPERS_PATH=temp_storage / "papers",
        ANALYSIS_PATH=temp_storage / "analyses",
        STYLES_PATH=temp_storage / "styles",
        OPENAI_API_KEY="test-key",
        CHUNK_SIZE=400,
        CHUNK_OVERLAP=50,
    )


@pytest.fixture
def mock_llm() -> AsyncMock:
    """Create a mock language model client."""
    llm = AsyncMock(spec=LLMClient)
    llm.complete_json.return_value = {}
    llm.complete.return_value = ""
    return llm
