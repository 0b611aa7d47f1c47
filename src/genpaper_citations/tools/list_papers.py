"""
MCP Tool: list_papers

List all locally stored papers.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from .common import error_response, get_paper_manager, text_response

logger = logging.getLogger("genpaper-citation-server")


list_papers_tool = types.Tool(
    name="list_papers",
    description="""List all papers stored locally.

Shows each paper's id, title, authors and year, and whether its full
text has been ingested for retrieval.""",
    inputSchema={
        "type": "object",
        "properties": {
            "include_chunk_counts": {
                "type": "boolean",
                "description": "Count stored chunks per paper (reads chunk files)",
                "default": False,
            },
        },
    },
)


async def handle_list_papers(arguments: dict[str, Any]) -> list[types.TextContent]:
    """Handle the list_papers tool call."""
    try:
        manager = get_paper_manager()
        include_counts = arguments.get("include_chunk_counts", False)

        papers = await manager.list_papers()

        if not papers:
            return text_response({
                "total_papers": 0,
                "papers": [],
                "message": "No papers stored locally. Use add_paper to add papers.",
                "storage_path": str(manager.storage_path),
            })

        entries = []
        for paper in papers:
            entry: dict[str, Any] = {
                "id": paper.id,
                "title": paper.title,
                "authors": paper.authors[:3],
                "year": paper.year,
                "ingested": await manager.get_paper_content(paper.id) is not None,
            }
            if include_counts:
                entry["chunk_count"] = len(await manager.get_chunks(paper.id))
            entries.append(entry)

        return text_response({
            "total_papers": len(entries),
            "papers": entries,
            "storage_path": str(manager.storage_path),
        })

    except Exception as e:
        return error_response(e, "List papers error")
