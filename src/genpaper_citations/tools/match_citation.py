"""
MCP Tool: match_citation

Match a free-text reference against known papers.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from ..core.csl import paper_to_citation
from .common import error_response, get_paper_manager, get_service, papers_for, text_response

logger = logging.getLogger("genpaper-citation-server")


match_citation_tool = types.Tool(
    name="match_citation",
    description="""Find which known papers a piece of text refers to.

Strategies, in order: DOI, author-year ("Smith et al., 2023"), exact
title, fuzzy title word overlap. Each match carries a confidence and the
strategy that produced it.

Candidates come from paper_ids / papers, or from every stored paper when
neither is given.""",
    inputSchema={
        "type": "object",
        "properties": {
            "text": {
                "type": "string",
                "description": "Reference text, e.g. 'Smith et al. (2023)' or a DOI",
            },
            "paper_ids": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Stored papers to match against",
            },
            "papers": {
                "type": "array",
                "items": {"type": "object"},
                "description": "Inline paper records to match against",
            },
            "min_confidence": {
                "type": "number",
                "description": "Minimum confidence (default from settings, 0.6)",
                "minimum": 0,
                "maximum": 1,
            },
        },
        "required": ["text"],
    },
)


async def handle_match_citation(arguments: dict[str, Any]) -> list[types.TextContent]:
    """Handle the match_citation tool call."""
    try:
        service = get_service()
        text = arguments["text"]

        papers = await papers_for(arguments)
        if not papers and not arguments.get("paper_ids"):
            papers = await get_paper_manager().list_papers()

        matches = service.match_citation(
            text,
            [paper_to_citation(p) for p in papers],
            min_confidence=arguments.get("min_confidence"),
        )

        response = {
            "text": text,
            "candidates": len(papers),
            "matches": [
                {
                    "paper_id": m.citation.id,
                    "title": m.citation.title,
                    "confidence": round(m.confidence, 2),
                    "match_type": m.match_type.value,
                    "matched_span": m.matched_span,
                }
                for m in matches
            ],
        }
        return text_response(response)

    except Exception as e:
        return error_response(e, "Error matching citation")
