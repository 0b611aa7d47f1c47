"""
MCP Tool: ingest_paper

Chunk a paper's full text for retrieval.
"""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path
from typing import Any

import mcp.types as types

from .common import error_response, get_paper_manager, text_response

logger = logging.getLogger("genpaper-citation-server")


ingest_paper_tool = types.Tool(
    name="ingest_paper",
    description="""Ingest the full text of a stored paper.

Provide either raw text or a local PDF path (converted to markdown).
The text is split into overlapping, sentence-aware chunks, each tagged
with its detected section (abstract, methods, results, ...), citation,
figure and data flags, complexity and key terms.

Re-ingesting replaces the previous chunks.""",
    inputSchema={
        "type": "object",
        "properties": {
            "paper_id": {
                "type": "string",
                "description": "Id of a paper added with add_paper",
            },
            "text": {
                "type": "string",
                "description": "Full paper text",
            },
            "pdf_path": {
                "type": "string",
                "description": "Path to a local PDF file",
            },
        },
        "required": ["paper_id"],
    },
)


async def handle_ingest_paper(arguments: dict[str, Any]) -> list[types.TextContent]:
    """Handle the ingest_paper tool call."""
    try:
        manager = get_paper_manager()
        paper_id = arguments["paper_id"]
        text = arguments.get("text")
        pdf_path = arguments.get("pdf_path")

        if not text and not pdf_path:
            return text_response({
                "paper_id": paper_id,
                "error": "Provide either 'text' or 'pdf_path'",
            })

        if pdf_path:
            chunks = await manager.ingest_pdf(paper_id, Path(pdf_path).expanduser())
        else:
            chunks = await manager.ingest_text(paper_id, text)

        sections = Counter(
            c.metadata.section_type.value if c.metadata.section_type else "unknown" for c in chunks
        )
        return text_response({
            "paper_id": paper_id,
            "status": "ingested",
            "chunk_count": len(chunks),
            "sections": dict(sections),
        })

    except Exception as e:
        return error_response(e, "Error ingesting paper")
