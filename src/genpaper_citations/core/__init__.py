"""
Core citation and generation module.

This module contains the pure Python business logic with NO MCP dependencies.
It can be used directly by web applications or other Python code.

Example usage:
    from genpaper_citations.core import GenPaperService

    service = GenPaperService()
    result = await service.process_citations(text, [paper], style="apa")
"""

from .errors import (
    AnalysisError,
    ChunkingError,
    ContentError,
    ContentQualityError,
    GenerationCancelledError,
    GenerationError,
    GenerationTimeoutError,
    GenPaperError,
    IngestionError,
    InvalidRequestError,
    InvalidStyleError,
    NoRelevantContentError,
)
from .models import (
    Citation,
    CitationType,
    CSLName,
    Chunk,
    ChunkMetadata,
    ExtractedClaim,
    FormattedCitation,
    GapAnalysisResult,
    GenerationEvent,
    GenerationRequest,
    Marker,
    PaperRecord,
    ProcessResult,
    ResearchGap,
    SectionType,
)
from .chunks import extract_metadata, split_into_chunks
from .context import ChunkRetriever, ContextBuilder
from .formatter import CitationFormatter
from .markers import extract_markers, validate_placeholders
from .matcher import CitationMatcher
from .postprocessor import CitationPostProcessor, CitationStreamProcessor
from .service import GenPaperService
from .styles import StyleRepository, resolve_style

__all__ = [
    # Errors
    "GenPaperError",
    "ContentError",
    "NoRelevantContentError",
    "ContentQualityError",
    "IngestionError",
    "ChunkingError",
    "GenerationError",
    "GenerationTimeoutError",
    "GenerationCancelledError",
    "InvalidRequestError",
    "AnalysisError",
    "InvalidStyleError",
    # Models
    "Citation",
    "CitationType",
    "CSLName",
    "Chunk",
    "ChunkMetadata",
    "ExtractedClaim",
    "FormattedCitation",
    "GapAnalysisResult",
    "GenerationEvent",
    "GenerationRequest",
    "Marker",
    "PaperRecord",
    "ProcessResult",
    "ResearchGap",
    "SectionType",
    # Citation pipeline
    "extract_markers",
    "validate_placeholders",
    "CitationMatcher",
    "CitationFormatter",
    "CitationPostProcessor",
    "CitationStreamProcessor",
    "StyleRepository",
    "resolve_style",
    # Retrieval
    "extract_metadata",
    "split_into_chunks",
    "ChunkRetriever",
    "ContextBuilder",
    # Service
    "GenPaperService",
]
