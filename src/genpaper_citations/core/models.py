"""
Data models for citation processing and retrieval.

These models are pure Pydantic with no MCP dependencies,
making them usable by both MCP tools and web applications.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


# ==================== Bibliographic records ====================


class CitationType(str, Enum):
    """CSL item types the formatters know how to lay out."""

    ARTICLE_JOURNAL = "article-journal"
    BOOK = "book"
    CHAPTER = "chapter"
    PAPER_CONFERENCE = "paper-conference"
    THESIS = "thesis"
    WEBPAGE = "webpage"
    REPORT = "report"
    MANUSCRIPT = "manuscript"


class CSLName(BaseModel):
    """
    A single author name in CSL form.

    Either a parsed family/given pair or an unparsed literal.
    """

    family: Optional[str] = Field(default=None, description="Family name (surname)")
    given: Optional[str] = Field(default=None, description="Given names")
    literal: Optional[str] = Field(default=None, description="Unparsed name")

    class Config:
        frozen = True

    def display_family(self) -> str:
        """Surname for in-text use, never empty."""
        return (self.family or self.literal or "Unknown").strip() or "Unknown"

    def initials(self) -> str:
        """Given-name initials, e.g. 'J. R.'."""
        if not self.given:
            return ""
        parts = self.given.replace(".", " ").replace("-", " ").split()
        return " ".join(f"{p[0].upper()}." for p in parts if p)


class PaperRecord(BaseModel):
    """
    A source paper as stored in the library.

    Authors are free-form strings; they are parsed into CSL names
    when a Citation is derived from the record.
    """

    id: str = Field(..., description="Opaque paper identifier")
    title: str = Field(..., description="Paper title")
    authors: list[str] = Field(default_factory=list, description="Author names")
    year: Optional[int] = Field(default=None, description="Publication year")
    venue: Optional[str] = Field(default=None, description="Journal, conference or site")
    doi: Optional[str] = Field(default=None, description="DOI")
    url: Optional[str] = Field(default=None, description="Landing page URL")
    abstract: Optional[str] = Field(default=None, description="Paper abstract")
    volume: Optional[str] = Field(default=None, description="Volume")
    issue: Optional[str] = Field(default=None, description="Issue number")
    pages: Optional[str] = Field(default=None, description="Page range")
    publisher: Optional[str] = Field(default=None, description="Publisher or institution")

    # Metadata
    created_at: datetime = Field(
        default_factory=datetime.utcnow, description="When the record was stored"
    )


class Citation(BaseModel):
    """
    A bibliographic record ready for formatting.

    Derived from a PaperRecord, never mutated; re-derive it when
    the source record changes.
    """

    id: str = Field(..., description="Reference identifier (usually the paper id)")
    title: str = Field(default="", description="Title")
    authors: list[CSLName] = Field(default_factory=list, description="Ordered authors")
    year: Optional[int] = Field(default=None, description="Publication year")
    container_title: Optional[str] = Field(
        default=None, description="Journal, proceedings or website name"
    )
    doi: Optional[str] = Field(default=None, description="DOI")
    url: Optional[str] = Field(default=None, description="URL")
    volume: Optional[str] = Field(default=None, description="Volume")
    issue: Optional[str] = Field(default=None, description="Issue")
    pages: Optional[str] = Field(default=None, description="Page range")
    publisher: Optional[str] = Field(default=None, description="Publisher")
    institution: Optional[str] = Field(default=None, description="Degree-granting institution")
    type: CitationType = Field(
        default=CitationType.ARTICLE_JOURNAL, description="CSL item type"
    )
    abstract: Optional[str] = Field(default=None, description="Abstract, used for fuzzy matching")

    class Config:
        frozen = True

    @property
    def year_text(self) -> str:
        """Year as text, 'n.d.' when unknown."""
        return str(self.year) if self.year else "n.d."

    @property
    def dedupe_key(self) -> str:
        """Stable identity across duplicate records: DOI, else title."""
        if self.doi:
            return f"doi:{self.doi.lower()}"
        return f"title:{' '.join(self.title.lower().split())}"


# ==================== Markers ====================


class MarkerGrammar(str, Enum):
    """
    Textual citation marker formats recognised in model output.

    - MODERN: [@id], the only form the model is told to emit
    - LEGACY: [CITE: id], kept for previously generated content
    - PLACEHOLDER: [[CITE:type:value]], before a reference is bound
    - PLACEHOLDER_CONTEXT: [[CITE:type:value|context]]
    """

    MODERN = "modern"
    LEGACY = "legacy"
    PLACEHOLDER = "placeholder"
    PLACEHOLDER_CONTEXT = "placeholder_context"


class ReferenceType(str, Enum):
    """What a marker's value refers to."""

    PAPER_ID = "paperId"
    DOI = "doi"
    TITLE = "title"
    URL = "url"


class Marker(BaseModel):
    """A citation marker found in text, with exact offsets."""

    grammar: MarkerGrammar = Field(..., description="Grammar that matched")
    reference_type: ReferenceType = Field(
        default=ReferenceType.PAPER_ID, description="Kind of reference value"
    )
    value: str = Field(..., description="Reference value (id, DOI, title or URL)")
    context: Optional[str] = Field(default=None, description="Embedded disambiguation context")
    start: int = Field(..., ge=0, description="Start offset in the scanned text")
    end: int = Field(..., ge=0, description="End offset (exclusive)")
    text: str = Field(..., description="The exact matched span")

    @property
    def cite_key(self) -> str:
        """Stable key used to group markers referring to the same thing."""
        return f"{self.reference_type.value}:{self.value}"


class PlaceholderValidation(BaseModel):
    """Structured result of placeholder validation (never raised)."""

    is_valid: bool = Field(..., description="True when no errors were found")
    errors: list[str] = Field(default_factory=list, description="Human-readable problems")
    malformed_count: int = Field(default=0, description="Unparsable placeholders")
    unresolved_count: int = Field(default=0, description="Well-formed but unknown references")


# ==================== Matching ====================


class MatchType(str, Enum):
    """Strategy that produced a match, in priority order."""

    DOI = "doi"
    AUTHOR_YEAR = "author_year"
    TITLE = "title"
    FUZZY = "fuzzy"


class CitationMatch(BaseModel):
    """A candidate citation for a fragment of free text."""

    citation: Citation = Field(..., description="Matched citation")
    confidence: float = Field(..., ge=0, le=1, description="Match confidence")
    match_type: MatchType = Field(..., description="Strategy that matched")
    matched_span: str = Field(..., description="Text fragment that triggered the match")


# ==================== Post-processing ====================


class FormattedCitation(BaseModel):
    """
    A marker resolved and rendered in a style.

    raw_* offsets address the marker in the raw (marker-bearing) text,
    display_* offsets address the rendered string in the display text.
    """

    marker: str = Field(..., description="Original marker text")
    reference: str = Field(..., description="Referenced value")
    rendered: str = Field(..., description="Rendered in-text citation")
    citation: Citation = Field(..., description="Resolved citation")
    raw_start: int = Field(..., ge=0)
    raw_end: int = Field(..., ge=0)
    display_start: int = Field(..., ge=0)
    display_end: int = Field(..., ge=0)


class ProcessResult(BaseModel):
    """Output of citation post-processing."""

    content: str = Field(..., description="Display text with citations rendered")
    citations: list[FormattedCitation] = Field(
        default_factory=list, description="One entry per rendered marker occurrence"
    )
    unresolved_references: list[str] = Field(
        default_factory=list, description="Referenced values that could not be resolved"
    )


# ==================== Chunks ====================


class SectionType(str, Enum):
    """Structural section a chunk belongs to."""

    ABSTRACT = "abstract"
    INTRODUCTION = "introduction"
    BACKGROUND = "background"
    LITERATURE_REVIEW = "literature_review"
    METHODS = "methods"
    RESULTS = "results"
    DISCUSSION = "discussion"
    CONCLUSION = "conclusion"
    REFERENCES = "references"
    APPENDIX = "appendix"
    UNKNOWN = "unknown"


class ChunkMetadata(BaseModel):
    """Retrieval metadata derived from a chunk's text."""

    section_type: Optional[SectionType] = Field(
        default=None, description="Detected section, None if undetected"
    )
    has_citations: bool = Field(default=False, description="Citation-like patterns present")
    has_figures: bool = Field(default=False, description="Figure/table references present")
    has_data: bool = Field(default=False, description="Numeric/statistical data present")
    is_conclusion: bool = Field(default=False, description="Concluding phrasing present")
    complexity: float = Field(default=0.5, ge=0, le=1, description="Reading complexity score")
    key_terms: list[str] = Field(default_factory=list, description="Top content terms")


class Chunk(BaseModel):
    """A bounded span of a paper's text, with metadata."""

    id: str = Field(..., description="Chunk identifier")
    paper_id: str = Field(..., description="Owning paper")
    chunk_index: int = Field(..., ge=0, description="Position within the paper")
    content: str = Field(..., description="Chunk text, overlap prefix included")
    start_position: int = Field(default=0, ge=0, description="Start offset in the paper text")
    end_position: int = Field(default=0, ge=0, description="End offset in the paper text")
    overlap_length: int = Field(default=0, ge=0, description="Characters shared with previous chunk")
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)


class RetrievedChunk(BaseModel):
    """A chunk selected for a query, with its relevance score."""

    id: str = Field(..., description="Chunk identifier")
    paper_id: str = Field(..., description="Owning paper")
    content: str = Field(..., description="Chunk text")
    score: float = Field(default=0.0, description="Relevance score")
    chunk_index: Optional[int] = Field(default=None, description="Position within the paper")
    section_type: Optional[SectionType] = Field(default=None)
    source: str = Field(default="chunk", description="'chunk', 'abstract' or 'abstract-split'")
    truncated: bool = Field(default=False, description="Cut to fit the token budget")
    compressed: bool = Field(default=False, description="Sentences filtered by relevance")


class ContextConfig(BaseModel):
    """Options for building prompt context from retrieved chunks."""

    max_tokens: int = Field(default=8000, gt=0)
    sentence_min_score: float = Field(default=0.3, ge=0, le=1)
    enable_compression: bool = Field(default=False)
    include_citations: bool = Field(default=True)
    group_by_paper: bool = Field(default=False)
    tokens_per_char: float = Field(default=0.25, gt=0)


class ContextMetrics(BaseModel):
    original_chunks: int = 0
    included_chunks: int = 0
    original_sentences: int = 0
    included_sentences: int = 0
    compression_ratio: float = 1.0


class BuiltContext(BaseModel):
    """Formatted prompt context plus what went into it."""

    formatted_context: str
    chunks: list[RetrievedChunk] = Field(default_factory=list)
    estimated_tokens: int = 0
    was_compressed: bool = False
    metrics: ContextMetrics = Field(default_factory=ContextMetrics)


class SectionContext(BaseModel):
    section_key: str
    section_title: str
    key_points: list[str] = Field(default_factory=list)
    context: BuiltContext


# ==================== Claims and gaps ====================


class ClaimType(str, Enum):
    """Kinds of atomic assertion."""

    FINDING = "finding"
    METHOD = "method"
    LIMITATION = "limitation"
    HYPOTHESIS = "hypothesis"
    CONTRIBUTION = "contribution"
    IMPLICATION = "implication"
    FUTURE_WORK = "future_work"
    BACKGROUND = "background"


ORIGINAL_RESEARCH = "original_research"


class ExtractedClaim(BaseModel):
    """An atomic claim from a paper or from the user's own research."""

    id: str = Field(..., description="Claim identifier")
    claim_text: str = Field(..., description="The assertion")
    claim_type: ClaimType = Field(default=ClaimType.FINDING)
    confidence: float = Field(default=0.5, ge=0, le=1)
    source: str = Field(..., description="Paper id, or 'original_research'")
    evidence_quote: Optional[str] = Field(default=None, description="Supporting quote")
    section: Optional[str] = Field(default=None, description="Section the claim came from")
    key_terms: list[str] = Field(default_factory=list)


class ClaimSet(BaseModel):
    """Claims extracted from one source, as stored per project."""

    source: str = Field(..., description="Paper id, or 'original_research'")
    claims: list[ExtractedClaim] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class RelationshipType(str, Enum):
    SUPPORTS = "supports"
    EXTENDS = "extends"
    CONTRADICTS = "contradicts"
    UNRELATED = "unrelated"
    NOT_ANALYZED = "not_analyzed"


class ClaimRelationship(BaseModel):
    """How a literature claim relates to a user claim."""

    user_claim_id: Optional[str] = Field(default=None)
    literature_claim_id: str
    relationship: RelationshipType
    explanation: str = ""


class ResearchPositioning(BaseModel):
    """Where the user's research sits relative to the literature."""

    novelty: list[str] = Field(default_factory=list)
    alignments: list[str] = Field(default_factory=list)
    divergences: list[str] = Field(default_factory=list)
    suggested_discussion_points: list[str] = Field(default_factory=list)


class GapType(str, Enum):
    UNSTUDIED = "unstudied"
    CONTRADICTION = "contradiction"
    LIMITATION = "limitation"


class GapEvidence(BaseModel):
    paper_id: str
    claim_text: str
    relevance: str = ""


class ResearchGap(BaseModel):
    """A gap synthesized over a set of claims."""

    gap_id: str = Field(..., description="Unique gap identifier")
    gap_type: GapType = Field(...)
    description: str = Field(...)
    evidence: list[GapEvidence] = Field(default_factory=list)
    supporting_paper_ids: list[str] = Field(
        default_factory=list, description="Distinct papers behind the gap"
    )
    confidence: float = Field(default=0.5, ge=0, le=1)
    research_opportunity: str = ""


class GapAnalysisResult(BaseModel):
    topic: str
    gaps: list[ResearchGap] = Field(default_factory=list)
    analyzed_claim_count: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)


class AddressingStatus(str, Enum):
    FULLY = "fully_addressed"
    PARTIALLY = "partially_addressed"
    NOT = "not_addressed"


class GapAddressing(BaseModel):
    gap_id: str
    status: AddressingStatus
    addressing_claim_ids: list[str] = Field(default_factory=list)
    explanation: str = ""


# ==================== Generation ====================


class GenerationRequest(BaseModel):
    """A request to draft one section from a set of papers."""

    topic: str = Field(..., description="Paper topic")
    section_title: str = Field(..., description="Section to draft")
    paper_ids: list[str] = Field(default_factory=list, description="Papers to draw evidence from")
    key_points: list[str] = Field(default_factory=list, description="Points the section should cover")
    style: str = Field(default="apa", description="Citation style identifier")
    target_words: int = Field(default=600, gt=0, description="Approximate section length")
    project_id: Optional[str] = Field(default=None, description="Project to record citations in")


class GenerationEventType(str, Enum):
    STATUS = "status"
    TEXT = "text"
    COMPLETE = "complete"


class GenerationEvent(BaseModel):
    """One event of a section stream."""

    type: GenerationEventType
    content: str = Field(default="", description="Display text delta, or status message")
    raw_offset: int = Field(default=0, ge=0, description="Offset of this delta in the raw model output")
    display_offset: int = Field(default=0, ge=0, description="Offset of this delta in the display text")
    citations: list[FormattedCitation] = Field(default_factory=list)
    unresolved_references: list[str] = Field(default_factory=list)
