"""
MCP Prompts for guided drafting and citation workflows.

Prompts provide structured interactions for drafting cited sections,
analyzing research gaps and checking citations.
"""

from .prompts import PROMPTS
from .handlers import list_prompts, get_prompt

__all__ = ["PROMPTS", "list_prompts", "get_prompt"]
