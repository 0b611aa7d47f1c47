"""
Shared state for MCP tools.

All tools share one service so formatting caches and loaded styles are
common to every call (clear_citation_cache clears what process_citations
filled).
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Optional

import mcp.types as types

from ..config import Settings
from ..core import GenPaperError, GenPaperService, PaperRecord
from ..resources import CitationManager, PaperManager

logger = logging.getLogger("genpaper-citation-server")

# Lazy initialization
_settings: Optional[Settings] = None
_papers: Optional[PaperManager] = None
_citations: Optional[CitationManager] = None
_service: Optional[GenPaperService] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def get_paper_manager() -> PaperManager:
    """Get or create the paper manager."""
    global _papers
    if _papers is None:
        _papers = PaperManager(get_settings())
    return _papers


def get_citation_manager() -> CitationManager:
    """Get or create the citation manager."""
    global _citations
    if _citations is None:
        _citations = CitationManager(get_settings())
    return _citations


def get_service() -> GenPaperService:
    """Get or create the shared service, backed by the paper store."""
    global _service
    if _service is None:
        _service = GenPaperService(get_settings(), store=get_paper_manager())
    return _service


def reset() -> None:
    """Drop shared instances (used by tests)."""
    global _settings, _papers, _citations, _service
    _settings = _papers = _citations = _service = None


def parse_papers(items: Optional[Iterable[dict[str, Any]]]) -> list[PaperRecord]:
    """Paper records from tool arguments."""
    return [PaperRecord.model_validate(item) for item in items or []]


async def papers_for(arguments: dict[str, Any]) -> list[PaperRecord]:
    """Inline 'papers' plus stored records for 'paper_ids'."""
    papers = parse_papers(arguments.get("papers"))
    paper_ids = [p for p in arguments.get("paper_ids") or [] if p not in {x.id for x in papers}]
    if paper_ids:
        papers.extend(await get_paper_manager().get_papers(paper_ids))
    return papers


def text_response(data: Any) -> list[types.TextContent]:
    return [types.TextContent(type="text", text=json.dumps(data, indent=2, default=str))]


def error_response(e: Exception, context: str) -> list[types.TextContent]:
    """Log a tool failure and return it as a JSON error payload."""
    logger.error(f"{context}: {e}")
    if isinstance(e, GenPaperError):
        return text_response(e.to_dict())
    return text_response({"error": str(e)})
