"""
GenPaper Citation MCP Server
============================

This module implements an MCP server for citation processing,
retrieval-augmented section generation and research gap analysis.
"""

import asyncio
import logging
import sys
from typing import Any, Dict, List

import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions
from mcp.server.stdio import stdio_server

from .config import Settings
from .prompts.handlers import get_prompt as handler_get_prompt
from .prompts.handlers import list_prompts as handler_list_prompts
from .tools import (
    # Citation tools
    process_citations_tool,
    handle_process_citations,
    format_bibliography_tool,
    handle_format_bibliography,
    match_citation_tool,
    handle_match_citation,
    validate_placeholders_tool,
    handle_validate_placeholders,
    resolve_style_tool,
    handle_resolve_style,
    clear_citation_cache_tool,
    handle_clear_citation_cache,
    # Paper tools
    add_paper_tool,
    handle_add_paper,
    ingest_paper_tool,
    handle_ingest_paper,
    list_papers_tool,
    handle_list_papers,
    extract_chunk_metadata_tool,
    handle_extract_chunk_metadata,
    # Generation and analysis tools
    build_context_tool,
    handle_build_context,
    extract_claims_tool,
    handle_extract_claims,
    find_research_gaps_tool,
    handle_find_research_gaps,
    generate_section_tool,
    handle_generate_section,
)

# Initialize settings and server
settings = Settings()

# Configure logging to stderr (stdout is reserved for MCP JSON-RPC)
logging.basicConfig(
    level=logging.WARNING,
    format="%(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger("genpaper-citation-server")

# Create MCP server
server = Server(settings.APP_NAME)

TOOLS = [
    # Citation tools
    process_citations_tool,
    format_bibliography_tool,
    match_citation_tool,
    validate_placeholders_tool,
    resolve_style_tool,
    clear_citation_cache_tool,
    # Paper tools
    add_paper_tool,
    ingest_paper_tool,
    list_papers_tool,
    extract_chunk_metadata_tool,
    # Generation and analysis tools
    build_context_tool,
    extract_claims_tool,
    find_research_gaps_tool,
    generate_section_tool,
]

HANDLERS = {
    "process_citations": handle_process_citations,
    "format_bibliography": handle_format_bibliography,
    "match_citation": handle_match_citation,
    "validate_placeholders": handle_validate_placeholders,
    "resolve_style": handle_resolve_style,
    "clear_citation_cache": handle_clear_citation_cache,
    "add_paper": handle_add_paper,
    "ingest_paper": handle_ingest_paper,
    "list_papers": handle_list_papers,
    "extract_chunk_metadata": handle_extract_chunk_metadata,
    "build_context": handle_build_context,
    "extract_claims": handle_extract_claims,
    "find_research_gaps": handle_find_research_gaps,
    "generate_section": handle_generate_section,
}


@server.list_prompts()
async def list_prompts() -> List[types.Prompt]:
    """List available drafting and citation prompts."""
    return await handler_list_prompts()


@server.get_prompt()
async def get_prompt(
    name: str,
    arguments: Dict[str, str] | None = None,
) -> types.GetPromptResult:
    """Get a specific prompt with arguments."""
    return await handler_get_prompt(name, arguments)


@server.list_tools()
async def list_tools() -> List[types.Tool]:
    """List available citation, paper and generation tools."""
    return TOOLS


@server.call_tool()
async def call_tool(
    name: str,
    arguments: Dict[str, Any],
) -> List[types.TextContent]:
    """Dispatch a tool call to its handler."""
    logger.debug(f"Calling tool {name} with arguments {arguments}")

    handler = HANDLERS.get(name)
    if handler is None:
        return [
            types.TextContent(
                type="text",
                text=f"Error: Unknown tool '{name}'",
            )
        ]

    try:
        return await handler(arguments or {})
    except Exception as e:
        logger.error(f"Tool error: {str(e)}")
        return [
            types.TextContent(
                type="text",
                text=f"Error: {str(e)}",
            )
        ]


async def _async_main():
    """Async entry point for the MCP server."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Papers path: {settings.PAPERS_PATH}")
    logger.info(f"Citations path: {settings.STORAGE_PATH}")

    async with stdio_server() as streams:
        await server.run(
            streams[0],
            streams[1],
            InitializationOptions(
                server_name=settings.APP_NAME,
                server_version=settings.APP_VERSION,
                capabilities=server.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={},
                ),
            ),
        )


def main():
    """Run the MCP server (synchronous entry point)."""
    asyncio.run(_async_main())
