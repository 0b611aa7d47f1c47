"""
MCP Tool: add_paper

Store a paper record.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from ..core import PaperRecord
from .common import error_response, get_paper_manager, text_response

logger = logging.getLogger("genpaper-citation-server")


add_paper_tool = types.Tool(
    name="add_paper",
    description="""Add a paper to the local library.

The record's id is what citation markers reference ([@id]). Authors are
free-form names ("Jane Smith", "Smith, J.", "Ludwig van Beethoven");
they are parsed into family/given parts when citations are formatted.

Add the paper's full text afterwards with ingest_paper to make it
available for retrieval.""",
    inputSchema={
        "type": "object",
        "properties": {
            "id": {"type": "string", "description": "Paper identifier"},
            "title": {"type": "string", "description": "Paper title"},
            "authors": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Author names in order",
            },
            "year": {"type": "integer", "description": "Publication year"},
            "venue": {"type": "string", "description": "Journal, conference or site"},
            "doi": {"type": "string", "description": "DOI"},
            "url": {"type": "string", "description": "Landing page URL"},
            "abstract": {"type": "string", "description": "Abstract"},
            "volume": {"type": "string"},
            "issue": {"type": "string"},
            "pages": {"type": "string"},
            "publisher": {"type": "string"},
        },
        "required": ["id", "title"],
    },
)


async def handle_add_paper(arguments: dict[str, Any]) -> list[types.TextContent]:
    """Handle the add_paper tool call."""
    try:
        paper = PaperRecord.model_validate(arguments)
        manager = get_paper_manager()
        existed = await manager.has_paper(paper.id)
        await manager.add_paper(paper)

        return text_response({
            "status": "updated" if existed else "added",
            "paper_id": paper.id,
            "title": paper.title,
            "message": f"Cite it with [@{paper.id}]. Use ingest_paper to add its full text.",
        })

    except Exception as e:
        return error_response(e, "Error adding paper")
