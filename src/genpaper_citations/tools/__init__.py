"""
MCP Tools for citation, retrieval and analysis operations.

Provides tools for:
- Citation operations: process markers, format bibliography, match, validate, styles, cache
- Paper operations: add, ingest, list, chunk metadata
- Generation: build context, extract claims, find gaps, generate section
"""

# Citation tools
from .process_citations import process_citations_tool, handle_process_citations
from .format_bibliography import format_bibliography_tool, handle_format_bibliography
from .match_citation import match_citation_tool, handle_match_citation
from .validate_placeholders import validate_placeholders_tool, handle_validate_placeholders
from .resolve_style import resolve_style_tool, handle_resolve_style
from .clear_citation_cache import clear_citation_cache_tool, handle_clear_citation_cache

# Paper tools
from .add_paper import add_paper_tool, handle_add_paper
from .ingest_paper import ingest_paper_tool, handle_ingest_paper
from .list_papers import list_papers_tool, handle_list_papers
from .extract_chunk_metadata import extract_chunk_metadata_tool, handle_extract_chunk_metadata

# Generation and analysis tools
from .build_context import build_context_tool, handle_build_context
from .extract_claims import extract_claims_tool, handle_extract_claims
from .find_research_gaps import find_research_gaps_tool, handle_find_research_gaps
from .generate_section import generate_section_tool, handle_generate_section

__all__ = [
    # Citation tools
    "process_citations_tool",
    "handle_process_citations",
    "format_bibliography_tool",
    "handle_format_bibliography",
    "match_citation_tool",
    "handle_match_citation",
    "validate_placeholders_tool",
    "handle_validate_placeholders",
    "resolve_style_tool",
    "handle_resolve_style",
    "clear_citation_cache_tool",
    "handle_clear_citation_cache",
    # Paper tools
    "add_paper_tool",
    "handle_add_paper",
    "ingest_paper_tool",
    "handle_ingest_paper",
    "list_papers_tool",
    "handle_list_papers",
    "extract_chunk_metadata_tool",
    "handle_extract_chunk_metadata",
    # Generation and analysis tools
    "build_context_tool",
    "handle_build_context",
    "extract_claims_tool",
    "handle_extract_claims",
    "find_research_gaps_tool",
    "handle_find_research_gaps",
    "generate_section_tool",
    "handle_generate_section",
]
