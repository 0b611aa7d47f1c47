"""
MCP Tool: clear_citation_cache

Invalidate cached citation renderings.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from .common import error_response, get_service, text_response

logger = logging.getLogger("genpaper-citation-server")


clear_citation_cache_tool = types.Tool(
    name="clear_citation_cache",
    description="""Clear cached in-text citation renderings.

Pass reference_id to invalidate a single reference (e.g. after editing
its metadata); omit it to clear everything.""",
    inputSchema={
        "type": "object",
        "properties": {
            "reference_id": {
                "type": "string",
                "description": "Reference to invalidate (default: all)",
            },
        },
    },
)


async def handle_clear_citation_cache(arguments: dict[str, Any]) -> list[types.TextContent]:
    """Handle the clear_citation_cache tool call."""
    try:
        reference_id = arguments.get("reference_id")
        stats = get_service().clear_caches(reference_id)
        return text_response({
            "cleared": reference_id or "all",
            "cache": stats,
        })

    except Exception as e:
        return error_response(e, "Error clearing citation cache")
