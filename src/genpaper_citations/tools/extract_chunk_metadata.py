"""
MCP Tool: extract_chunk_metadata

Inspect the retrieval metadata of chunks.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from ..core import split_into_chunks
from .common import error_response, get_paper_manager, text_response

logger = logging.getLogger("genpaper-citation-server")


extract_chunk_metadata_tool = types.Tool(
    name="extract_chunk_metadata",
    description="""Show chunk metadata used for retrieval.

For raw text, the text is chunked on the fly; for a paper_id, the stored
chunks are returned. Each chunk reports its detected section, flags for
citations / figures / data / concluding language, a complexity score in
[0, 1] and its key terms.""",
    inputSchema={
        "type": "object",
        "properties": {
            "text": {
                "type": "string",
                "description": "Text to chunk and analyze",
            },
            "paper_id": {
                "type": "string",
                "description": "Stored paper whose chunks to show",
            },
            "chunk_size": {
                "type": "integer",
                "description": "Characters per chunk when chunking text (default: 1000)",
                "default": 1000,
                "minimum": 100,
            },
            "overlap": {
                "type": "integer",
                "description": "Characters shared between chunks (default: 100)",
                "default": 100,
                "minimum": 0,
            },
        },
    },
)


async def handle_extract_chunk_metadata(arguments: dict[str, Any]) -> list[types.TextContent]:
    """Handle the extract_chunk_metadata tool call."""
    try:
        text = arguments.get("text")
        paper_id = arguments.get("paper_id")

        if text:
            chunks = split_into_chunks(
                text,
                paper_id or "text",
                chunk_size=arguments.get("chunk_size", 1000),
                overlap=arguments.get("overlap", 100),
            )
        elif paper_id:
            chunks = await get_paper_manager().get_chunks(paper_id)
        else:
            return text_response({"error": "Provide either 'text' or 'paper_id'"})

        return text_response({
            "chunk_count": len(chunks),
            "chunks": [
                {
                    "id": c.id,
                    "chunk_index": c.chunk_index,
                    "length": len(c.content),
                    "overlap_length": c.overlap_length,
                    "preview": c.content[:120],
                    "metadata": c.metadata.model_dump(mode="json"),
                }
                for c in chunks
            ],
        })

    except Exception as e:
        return error_response(e, "Error extracting chunk metadata")
