"""
MCP Tool: generate_section

Draft a cited section from stored papers.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from ..core import GenerationRequest
from .common import error_response, get_citation_manager, get_service, text_response

logger = logging.getLogger("genpaper-citation-server")


generate_section_tool = types.Tool(
    name="generate_section",
    description="""Generate one section of a paper with resolved citations.

Evidence is retrieved from the given papers, the model is instructed to
cite sources as [@paper_id], and its output is post-processed as it
streams: markers become formatted citations in the requested style and
references that cannot be resolved are dropped from the text and
reported.

Returns a distinct error when the papers have no usable content: add
papers or ingest their text first.""",
    inputSchema={
        "type": "object",
        "properties": {
            "topic": {
                "type": "string",
                "description": "Paper topic",
            },
            "section_title": {
                "type": "string",
                "description": "Section to write, e.g. 'Related Work'",
            },
            "paper_ids": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Papers to draw evidence from",
            },
            "key_points": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Points the section should cover",
            },
            "style": {
                "type": "string",
                "description": "Citation style id (default: apa)",
                "default": "apa",
            },
            "target_words": {
                "type": "integer",
                "description": "Approximate length in words (default: 600)",
                "default": 600,
                "minimum": 50,
                "maximum": 4000,
            },
            "project_id": {
                "type": "string",
                "description": "Record the section's citations in this project",
            },
        },
        "required": ["topic", "section_title", "paper_ids"],
    },
)


async def handle_generate_section(arguments: dict[str, Any]) -> list[types.TextContent]:
    """Handle the generate_section tool call."""
    try:
        request = GenerationRequest.model_validate(arguments)
        result = await get_service().generate_section(request)

        if request.project_id and result.citations:
            await get_citation_manager().record_citations(request.project_id, result.citations)

        return text_response({
            "section_title": request.section_title,
            "style": request.style,
            "content": result.content,
            "citations": [
                {
                    "citation_id": c.citation.id,
                    "rendered": c.rendered,
                    "display_span": [c.display_start, c.display_end],
                }
                for c in result.citations
            ],
            "unresolved_references": result.unresolved_references,
        })

    except Exception as e:
        return error_response(e, "Error generating section")
