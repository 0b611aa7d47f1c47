"""
MCP Tool: build_context

Retrieve evidence and format it as generation context.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from ..core.models import ContextConfig, SectionType
from .common import error_response, get_service, text_response

logger = logging.getLogger("genpaper-citation-server")


build_context_tool = types.Tool(
    name="build_context",
    description="""Build retrieval-augmented context for a query.

Selects the most relevant chunks from the given papers (deduplicated,
balanced across papers, falling back to abstracts when no chunk is
relevant) and formats them under a token budget with
'[Author, year - paper_id]' source headers.

Returns a distinct error when no usable content exists: add papers or
ingest their text first.""",
    inputSchema={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Topic or section description",
            },
            "paper_ids": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Papers to draw evidence from",
            },
            "max_tokens": {
                "type": "integer",
                "description": "Token budget (default from settings, 8000)",
                "minimum": 100,
            },
            "enable_compression": {
                "type": "boolean",
                "description": "Keep only sentences relevant to the query",
                "default": False,
            },
            "group_by_paper": {
                "type": "boolean",
                "description": "Group chunks by paper",
                "default": False,
            },
            "sections": {
                "type": "array",
                "items": {"type": "string", "enum": [s.value for s in SectionType]},
                "description": "Only use chunks from these detected sections",
            },
        },
        "required": ["query", "paper_ids"],
    },
)


async def handle_build_context(arguments: dict[str, Any]) -> list[types.TextContent]:
    """Handle the build_context tool call."""
    try:
        service = get_service()
        config = ContextConfig(
            max_tokens=arguments.get("max_tokens", service.settings.MAX_CONTEXT_TOKENS),
            enable_compression=arguments.get("enable_compression", False),
            group_by_paper=arguments.get("group_by_paper", False),
        )
        sections = [SectionType(s) for s in arguments.get("sections") or []] or None

        context = await service.build_context(
            arguments["query"],
            arguments["paper_ids"],
            config=config,
            section_filter=sections,
        )

        return text_response({
            "context": context.formatted_context,
            "estimated_tokens": context.estimated_tokens,
            "was_compressed": context.was_compressed,
            "metrics": context.metrics.model_dump(),
            "chunks": [
                {
                    "id": c.id,
                    "paper_id": c.paper_id,
                    "score": round(c.score, 3),
                    "source": c.source,
                    "section_type": c.section_type.value if c.section_type else None,
                    "truncated": c.truncated,
                }
                for c in context.chunks
            ],
        })

    except Exception as e:
        return error_response(e, "Error building context")
