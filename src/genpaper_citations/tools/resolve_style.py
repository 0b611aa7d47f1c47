"""
MCP Tool: resolve_style

Resolve and load a citation style.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from .common import error_response, get_service, text_response

logger = logging.getLogger("genpaper-citation-server")


resolve_style_tool = types.Tool(
    name="resolve_style",
    description="""Resolve a citation style identifier.

Aliases are normalized (mla -> modern-language-association,
chicago -> chicago-author-date, harvard -> harvard1). Builtin styles
render without network access; any other CSL style id is fetched from
the CSL style repository and cached. If the style cannot be loaded,
formatting falls back to APA; 'effective' shows the style actually used.""",
    inputSchema={
        "type": "object",
        "properties": {
            "style": {
                "type": "string",
                "description": "Style identifier, e.g. 'apa', 'nature', 'american-medical-association'",
            },
            "fetch": {
                "type": "boolean",
                "description": "Load the style from the repository if needed (default: true)",
                "default": True,
            },
        },
        "required": ["style"],
    },
)


async def handle_resolve_style(arguments: dict[str, Any]) -> list[types.TextContent]:
    """Handle the resolve_style tool call."""
    try:
        result = await get_service().resolve_style(
            arguments["style"],
            fetch=arguments.get("fetch", True),
        )
        return text_response(result)

    except Exception as e:
        return error_response(e, "Error resolving style")
