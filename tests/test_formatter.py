"""
Tests for citation formatting and CSL conversion.
"""

import pytest

from genpaper_citations.core.csl import (
    citation_to_csl_json,
    determine_citation_type,
    paper_to_citation,
    parse_author_name,
)
from genpaper_citations.core.formatter import CitationFormatter, compress_numbers
from genpaper_citations.core.models import Citation, CitationType, CSLName, PaperRecord
from genpaper_citations.core.styles import StyleRepository


@pytest.fixture
def formatter() -> CitationFormatter:
    return CitationFormatter(StyleRepository())


@pytest.fixture
def citations(sample_papers: list[PaperRecord]) -> list[Citation]:
    return [paper_to_citation(p) for p in sample_papers]


def author(family: str, given: str = "") -> CSLName:
    return CSLName(family=family, given=given or None)


class TestCSLConversion:
    """Tests for paper record to CSL conversion."""

    def test_parse_author_name_forms(self):
        """Test the supported author string forms."""
        assert parse_author_name("John Smith") == CSLName(family="Smith", given="John")
        assert parse_author_name("Smith, John R.") == CSLName(family="Smith", given="John R.")
        assert parse_author_name("Ludwig van Beethoven") == CSLName(
            family="van Beethoven", given="Ludwig"
        )
        assert parse_author_name("Plato") == CSLName(literal="Plato")
        assert parse_author_name("  ") == CSLName(literal="Unknown")

    def test_determine_citation_type(self):
        """Test CSL type inference from venue and identifiers."""
        assert determine_citation_type("Proceedings of NeurIPS") == CitationType.PAPER_CONFERENCE
        assert determine_citation_type("ICML 2021") == CitationType.PAPER_CONFERENCE
        assert determine_citation_type("arXiv preprint") == CitationType.MANUSCRIPT
        assert determine_citation_type("PhD Thesis, MIT") == CitationType.THESIS
        assert determine_citation_type("Nature") == CitationType.ARTICLE_JOURNAL
        assert determine_citation_type(None, publisher="MIT Press") == CitationType.BOOK
        assert determine_citation_type(None, url="https://example.org") == CitationType.WEBPAGE
        assert determine_citation_type(None) == CitationType.ARTICLE_JOURNAL

    def test_paper_to_citation(self, sample_paper: PaperRecord):
        """Test deriving a Citation from a record."""
        citation = paper_to_citation(sample_paper)

        assert citation.id == "a1b2c3"
        assert citation.authors == [CSLName(family="Smith", given="John")]
        assert citation.container_title == "Journal of Machine Learning Research"
        assert citation.type == CitationType.ARTICLE_JOURNAL

    def test_csl_json(self, sample_citation: Citation):
        """Test the CSL-JSON rendering."""
        item = citation_to_csl_json(sample_citation.model_copy(update={"id": "ABC"}))

        assert item["id"] == "abc"
        assert item["author"] == [{"family": "Smith", "given": "John"}]
        assert item["issued"] == {"date-parts": [[2023]]}
        assert item["DOI"] == "10.1234/jmlr.2023.001"
        assert item["page"] == "1-20"


class TestInlineFormatting:
    """Tests for in-text citations."""

    @pytest.mark.parametrize(
        "style, expected",
        [
            ("apa", "(Smith, 2023)"),
            ("mla", "(Smith)"),
            ("chicago", "(Smith 2023)"),
            ("harvard", "(Smith 2023)"),
        ],
    )
    def test_builtin_author_date(self, formatter: CitationFormatter, sample_citation: Citation, style, expected):
        """Test each builtin author-date style."""
        assert formatter.format_inline(sample_citation, style) == expected

    def test_author_counts(self, formatter: CitationFormatter, citations: list[Citation]):
        """Test one, two and three-or-more author forms."""
        assert formatter.format_inline(citations[0], "apa") == "(Smith, 2023)"
        assert formatter.format_inline(citations[1], "apa") == "(Garcia & Chen, 2021)"
        assert formatter.format_inline(citations[2], "apa") == "(Brown et al., 2020)"
        assert formatter.format_inline(citations[1], "chicago") == "(Garcia and Chen 2021)"

    def test_anonymous_and_no_year(self, formatter: CitationFormatter):
        """Test missing authors and missing year."""
        citation = Citation(id="aa", title="Untitled Work", year=2020)
        undated = Citation(id="bb", title="Undated", authors=[author("Lee")])

        assert formatter.format_inline(citation, "apa") == "(Anonymous, 2020)"
        assert formatter.format_inline(undated, "apa") == "(Lee, n.d.)"

    def test_page_locator(self, formatter: CitationFormatter, sample_citation: Citation):
        """Test page locators for author-date styles."""
        assert formatter.format_inline(sample_citation, "apa", page="12") == "(Smith, 2023, p. 12)"

    def test_numeric_styles(self, formatter: CitationFormatter, sample_citation: Citation):
        """Test numeric rendering with and without an assigned number."""
        assert formatter.format_inline(sample_citation, "ieee", {"a1b2c3": 4}) == "[4]"
        assert formatter.format_inline(sample_citation, "vancouver") == "[?]"

    def test_accepts_paper_records(self, formatter: CitationFormatter, sample_paper: PaperRecord):
        """Test formatting straight from a stored record."""
        assert formatter.format_inline(sample_paper, "apa") == "(Smith, 2023)"

    def test_unloaded_external_style_falls_back(self, formatter: CitationFormatter, sample_citation: Citation):
        """Test that an external style not yet loaded renders as APA."""
        assert formatter.format_inline(sample_citation, "elsevier-harvard") == "(Smith, 2023)"

    def test_engine_style(self, csl_style_xml: str, sample_citation: Citation):
        """Test rendering through a registered CSL style."""
        repository = StyleRepository()
        repository.register_style("test-author-date", csl_style_xml)
        formatter = CitationFormatter(repository)

        rendered = formatter.format_inline(sample_citation, "test-author-date")

        assert "Smith" in rendered
        assert "2023" in rendered
        assert formatter.cache_stats()["engine_styles"] == 1

    def test_multiple_author_date(self, formatter: CitationFormatter, citations: list[Citation]):
        """Test several citations cited together."""
        assert (
            formatter.format_inline_multiple(citations[:2], "apa")
            == "(Smith, 2023; Garcia & Chen, 2021)"
        )

    def test_multiple_numeric(self, formatter: CitationFormatter, citations: list[Citation]):
        """Test ranges for consecutive numbers."""
        numbers = {"a1b2c3": 1, "d4e5f6": 2, "0789ab": 3}
        assert formatter.format_inline_multiple(citations, "ieee", numbers) == "[1-3]"

        sparse = {"a1b2c3": 1, "d4e5f6": 3, "0789ab": 5}
        assert formatter.format_inline_multiple(citations, "ieee", sparse) == "[1, 3, 5]"


class TestCompressNumbers:
    """Tests for numeric citation compression."""

    @pytest.mark.parametrize(
        "numbers, expected",
        [
            ([1, 2, 3], "[1-3]"),
            ([1, 3, 5], "[1, 3, 5]"),
            ([2, 1], "[1, 2]"),
            ([5, 1, 2, 3, 3], "[1-3, 5]"),
            ([], "[?]"),
            ([0], "[?]"),
        ],
    )
    def test_compress(self, numbers, expected):
        assert compress_numbers(numbers) == expected


class TestCache:
    """Tests for the formatter cache."""

    def test_inline_cache_hits(self, formatter: CitationFormatter, sample_citation: Citation):
        """Test that repeated renders hit the cache."""
        formatter.format_inline(sample_citation, "apa")
        formatter.format_inline(sample_citation, "apa")

        stats = formatter.cache_stats()
        assert stats["hits"] == 1
        assert stats["inline_entries"] == 1

    def test_clear_for_key(self, formatter: CitationFormatter, sample_paper: PaperRecord):
        """Test invalidating a single reference."""
        formatter.format_inline(sample_paper, "apa")
        formatter.format_inline(sample_paper, "mla")
        assert formatter.cache_stats()["citation_entries"] == 1

        formatter.clear_for_key("a1b2c3")

        stats = formatter.cache_stats()
        assert stats["inline_entries"] == 0
        assert stats["citation_entries"] == 0

    def test_updated_record_after_invalidation(self, formatter: CitationFormatter, sample_paper: PaperRecord):
        """Test that a changed record renders anew once invalidated."""
        assert formatter.format_inline(sample_paper, "apa") == "(Smith, 2023)"

        updated = sample_paper.model_copy(update={"year": 2024})
        formatter.clear_for_key(updated.id)

        assert formatter.format_inline(updated, "apa") == "(Smith, 2024)"

    def test_clear_caches(self, formatter: CitationFormatter, sample_citation: Citation):
        """Test clearing everything."""
        formatter.format_inline(sample_citation, "apa")
        formatter.clear_caches()

        assert formatter.cache_stats()["inline_entries"] == 0


class TestBibliography:
    """Tests for bibliography rendering."""

    def test_apa_entry(self, formatter: CitationFormatter, sample_citation: Citation):
        """Test a full APA journal entry."""
        assert formatter.format_bibliography_entry(sample_citation, "apa") == (
            "Smith, J. (2023). Deep Learning for Image Recognition. "
            "*Journal of Machine Learning Research*, *24*(3), 1-20. "
            "https://doi.org/10.1234/jmlr.2023.001"
        )

    def test_vancouver_entry(self, formatter: CitationFormatter, sample_citation: Citation):
        """Test a numbered Vancouver entry."""
        assert formatter.format_bibliography_entry(sample_citation, "vancouver", number=1) == (
            "1. Smith J. Deep Learning for Image Recognition. "
            "Journal of Machine Learning Research. 2023;24(3):1-20. "
            "doi:10.1234/jmlr.2023.001"
        )

    def test_dedupe_and_sort(self, formatter: CitationFormatter):
        """Test that duplicate records collapse and entries sort by surname."""
        lee = Citation(id="1a", title="Shared Findings", authors=[author("Lee", "Ann")], year=2020)
        lee_copy = Citation(id="2b", title="Shared findings.", authors=[author("Lee", "Ann")], year=2020)
        kim = Citation(id="3c", title="Other Work", authors=[author("Kim", "Min")], year=2019)

        entries = formatter.format_bibliography([lee, lee_copy, kim], "apa")

        assert len(entries) == 2
        assert entries[0].startswith("Kim")
        assert entries[1].startswith("Lee")

    def test_dedupe_by_doi(self, formatter: CitationFormatter, sample_citation: Citation):
        """Test that records sharing a DOI collapse."""
        copy = sample_citation.model_copy(update={"id": "ffff", "title": "Different Title"})

        assert len(formatter.format_bibliography([sample_citation, copy], "apa")) == 1

    def test_anonymous_sorted_last(self, formatter: CitationFormatter, citations: list[Citation]):
        """Test that entries without authors come last."""
        anonymous = Citation(id="aa", title="Untitled Work", year=2020)
        entries = formatter.format_bibliography([anonymous] + citations, "apa")

        assert entries[-1].startswith("Anonymous")
        assert entries[0].startswith("Brown")

    def test_mla_anonymous_keeps_year(self, formatter: CitationFormatter):
        """Test that an anonymous MLA entry still shows its year."""
        anonymous = Citation(id="aa", title="Untitled Work", year=2020)
        entry = formatter.format_bibliography([anonymous], "mla")[0]

        assert entry.startswith("Anonymous.")
        assert "2020" in entry

    def test_numeric_order_by_number(self, formatter: CitationFormatter, citations: list[Citation]):
        """Test that numeric bibliographies follow citation numbers."""
        numbers = {"a1b2c3": 3, "d4e5f6": 1, "0789ab": 2}
        entries = formatter.format_bibliography(citations, "ieee", numbers)

        assert [e[:3] for e in entries] == ["[1]", "[2]", "[3]"]
        assert "M. Garcia and W. Chen" in entries[0]

    def test_numeric_without_numbers(self, formatter: CitationFormatter, citations: list[Citation]):
        """Test numbering by order of appearance when no map is given."""
        entries = formatter.format_bibliography(citations, "ieee")

        assert entries[0].startswith("[1] J. Smith")
        assert entries[2].startswith("[3]")

    def test_unloaded_external_style_falls_back(self, formatter: CitationFormatter, sample_citation: Citation):
        """Test that an unavailable external style renders as APA."""
        entries = formatter.format_bibliography([sample_citation], "elsevier-harvard")

        assert entries[0].startswith("Smith, J. (2023).")
