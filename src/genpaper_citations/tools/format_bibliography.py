"""
MCP Tool: format_bibliography

Render a reference list in any citation style.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from .common import error_response, get_citation_manager, get_service, papers_for, text_response

logger = logging.getLogger("genpaper-citation-server")


format_bibliography_tool = types.Tool(
    name="format_bibliography",
    description="""Format a deduplicated, ordered bibliography.

Sources (any combination):
- project_id: every citation recorded for the project, numbered in first-cited order
- paper_ids: stored paper records
- papers: inline paper records

Numeric styles (ieee, vancouver, ...) are ordered by citation number;
author-date styles by first author surname. Duplicate references (same id,
same DOI, or same author/year/title) appear once.

Set save=true with a project_id to write the bibliography as markdown.""",
    inputSchema={
        "type": "object",
        "properties": {
            "style": {
                "type": "string",
                "description": "Citation style id",
                "default": "apa",
            },
            "project_id": {
                "type": "string",
                "description": "Project whose recorded citations to include",
            },
            "paper_ids": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Stored paper ids to include",
            },
            "papers": {
                "type": "array",
                "items": {"type": "object"},
                "description": "Inline paper records to include",
            },
            "save": {
                "type": "boolean",
                "description": "Store the rendered bibliography for the project",
                "default": False,
            },
        },
    },
)


async def handle_format_bibliography(arguments: dict[str, Any]) -> list[types.TextContent]:
    """Handle the format_bibliography tool call."""
    try:
        service = get_service()
        manager = get_citation_manager()
        style = arguments.get("style") or service.settings.DEFAULT_STYLE
        project_id = arguments.get("project_id")

        items: list = await papers_for(arguments)
        numbers = None
        if project_id:
            items = list(await manager.get_citations(project_id)) + items
            numbers = await manager.get_citation_numbers(project_id)

        if not items:
            return text_response({
                "style": style,
                "total_entries": 0,
                "entries": [],
                "message": "No references to format. Provide project_id, paper_ids or papers.",
            })

        entries = await service.format_bibliography(items, style, numbers)

        response: dict[str, Any] = {
            "style": style,
            "total_entries": len(entries),
            "entries": entries,
        }
        if project_id and arguments.get("save", False):
            path = await manager.store_bibliography(project_id, entries, style)
            response["saved_to"] = str(path)

        return text_response(response)

    except Exception as e:
        return error_response(e, "Error formatting bibliography")
