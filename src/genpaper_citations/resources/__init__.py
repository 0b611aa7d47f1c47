"""
Resources layer for data management.

Handles storage of paper records, chunks, project citation libraries
and analyses on the local filesystem.
"""

from .citations import CitationManager
from .papers import PaperManager

__all__ = ["CitationManager", "PaperManager"]
