"""
MCP Tool: validate_placeholders

Check citation marker syntax before processing.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from .common import error_response, get_service, text_response

logger = logging.getLogger("genpaper-citation-server")


validate_placeholders_tool = types.Tool(
    name="validate_placeholders",
    description="""Validate citation markers in text.

Reports malformed placeholders (e.g. '[[CITE:doi:' without a closing
bracket) and invalid reference types. When known_keys is given, also
reports markers whose reference is not among them: paper ids for
[@id] / [CITE: id] markers, 'type:value' keys for [[CITE:...]].

Malformed and unresolved counts are reported separately.""",
    inputSchema={
        "type": "object",
        "properties": {
            "text": {
                "type": "string",
                "description": "Text to validate",
            },
            "known_keys": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Resolvable reference ids / cite keys",
            },
        },
        "required": ["text"],
    },
)


async def handle_validate_placeholders(arguments: dict[str, Any]) -> list[types.TextContent]:
    """Handle the validate_placeholders tool call."""
    try:
        result = get_service().validate_placeholders(
            arguments["text"],
            arguments.get("known_keys"),
        )
        return text_response(result.model_dump())

    except Exception as e:
        return error_response(e, "Error validating placeholders")
