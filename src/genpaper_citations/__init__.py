"""
GenPaper Citation Server
========================

Citation processing and retrieval-augmented generation for research papers.

This package provides:
- core: Pure Python citation, retrieval and analysis pipeline (no MCP dependencies)
- resources: Paper, chunk and citation library storage (local files)
- tools: MCP tools for citation, retrieval and analysis operations
- prompts: MCP prompts for guided drafting and citation checks
"""

from .server import main

__version__ = "0.1.0"
__all__ = ["main"]
