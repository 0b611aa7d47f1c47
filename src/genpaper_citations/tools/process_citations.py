"""
MCP Tool: process_citations

Render citation markers in generated text.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from .common import error_response, get_citation_manager, get_service, parse_papers, text_response

logger = logging.getLogger("genpaper-citation-server")


process_citations_tool = types.Tool(
    name="process_citations",
    description="""Replace citation markers in text with formatted citations.

Recognizes every marker grammar:
- [@paper_id] (modern)
- [CITE: paper_id] (legacy)
- [[CITE:doi:10.1234/x]], [[CITE:title:Some Title]], [[CITE:url:...]], [[CITE:paperId:...]]
- [[CITE:type:value|context]]

Paper ids are looked up in the local paper store; pass 'papers' to supply
records inline. Markers that cannot be resolved are removed from the text
and listed in 'unresolved_references'. Leaked artifacts such as
[citation needed] are stripped.

With a project_id, numeric styles use the project's citation numbers and
the cited references are recorded in the project library.""",
    inputSchema={
        "type": "object",
        "properties": {
            "text": {
                "type": "string",
                "description": "Text containing citation markers",
            },
            "style": {
                "type": "string",
                "description": "Citation style id (apa, mla, chicago, harvard, ieee, vancouver or any CSL style id)",
                "default": "apa",
            },
            "papers": {
                "type": "array",
                "description": "Optional paper records: {id, title, authors, year, venue, doi, url, ...}",
                "items": {"type": "object"},
            },
            "project_id": {
                "type": "string",
                "description": "Optional project for citation numbering and library tracking",
            },
        },
        "required": ["text"],
    },
)


async def handle_process_citations(arguments: dict[str, Any]) -> list[types.TextContent]:
    """Handle the process_citations tool call."""
    try:
        service = get_service()
        text = arguments["text"]
        style = arguments.get("style")
        project_id = arguments.get("project_id")
        papers = parse_papers(arguments.get("papers"))

        numbers = None
        if project_id:
            numbers = await get_citation_manager().get_citation_numbers(project_id) or None

        result = await service.process_citations(text, papers, style=style, citation_numbers=numbers)

        if project_id and result.citations:
            await get_citation_manager().record_citations(project_id, result.citations)

        response = {
            "content": result.content,
            "citations": [
                {
                    "marker": c.marker,
                    "reference": c.reference,
                    "rendered": c.rendered,
                    "citation_id": c.citation.id,
                    "raw_span": [c.raw_start, c.raw_end],
                    "display_span": [c.display_start, c.display_end],
                }
                for c in result.citations
            ],
            "unresolved_references": result.unresolved_references,
        }
        return text_response(response)

    except Exception as e:
        return error_response(e, "Error processing citations")
