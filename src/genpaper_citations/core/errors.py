"""
Error types for the citation and generation pipeline.

Content errors let callers branch on why evidence was unavailable.
Citation resolution failures are NOT errors: they are reported as
unresolved references on the processing result.
"""

from __future__ import annotations

from typing import Any, Optional


class GenPaperError(Exception):
    """Base class for all pipeline errors."""

    code = "GENPAPER_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serializable form used by the tool layer."""
        data: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            data["details"] = self.details
        return data


# ==================== Content errors ====================


class ContentError(GenPaperError):
    """Evidence for generation could not be obtained."""

    code = "CONTENT_ERROR"


class NoRelevantContentError(ContentError):
    """No chunks or abstracts were usable for the request."""

    code = "NO_RELEVANT_CONTENT"

    def __init__(
        self,
        message: str = (
            "No relevant content found for the selected papers. "
            "Add papers to the project or process existing ones."
        ),
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details)


class ContentQualityError(ContentError):
    """Retrieved content is too weak to ground generation."""

    code = "CONTENT_QUALITY"


class IngestionError(ContentError):
    """Paper text could not be read or stored."""

    code = "INGESTION_FAILED"

    def __init__(self, message: str, paper_id: Optional[str] = None):
        super().__init__(message, {"paper_id": paper_id} if paper_id else None)
        self.paper_id = paper_id


class ChunkingError(ContentError):
    """Chunk creation or storage failed."""

    code = "CHUNKING_FAILED"


# ==================== Generation errors ====================


class GenerationError(GenPaperError):
    """The hosted language model call failed."""

    code = "GENERATION_FAILED"


class GenerationTimeoutError(GenerationError):
    """The model call exceeded its timeout and was aborted."""

    code = "GENERATION_TIMEOUT"


class GenerationCancelledError(GenerationError):
    """The caller aborted the request (e.g. client disconnected)."""

    code = "GENERATION_CANCELLED"


# ==================== Request / analysis errors ====================


class InvalidRequestError(GenPaperError):
    """Malformed request, rejected before any model call is issued."""

    code = "INVALID_REQUEST"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class AnalysisError(GenPaperError):
    """Claim or gap analysis could not run on the given input."""

    code = "ANALYSIS_FAILED"


class InvalidStyleError(GenPaperError, TypeError):
    """A citation style identifier of the wrong type or shape was supplied."""

    code = "INVALID_STYLE"
