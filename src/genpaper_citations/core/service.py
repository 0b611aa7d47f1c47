"""
GenPaper service - main business logic.

This is the core service that can be used by both MCP tools
and web applications. It has NO MCP dependencies.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Iterable, Optional, Sequence

from ..config import Settings
from .claims import ClaimExtractor, UserClaimExtractor
from .context import ChunkRetriever, ChunkStore, ContextBuilder
from .formatter import CitationFormatter, CitationLike
from .gaps import GapFinder
from .generation import SectionGenerator
from .llm import LLMClient
from .markers import validate_placeholders
from .matcher import CitationMatcher
from .models import (
    BuiltContext,
    Citation,
    CitationMatch,
    ClaimRelationship,
    ContextConfig,
    ExtractedClaim,
    GapAddressing,
    GapAnalysisResult,
    GapType,
    GenerationEvent,
    GenerationRequest,
    PaperRecord,
    PlaceholderValidation,
    ProcessResult,
    ResearchGap,
    ResearchPositioning,
    SectionType,
)
from .postprocessor import AsyncCitationProcessor, CitationPostProcessor
from .styles import BuiltinStyle, StyleRepository, is_numeric_style, resolve_style, style_key

logger = logging.getLogger("genpaper-citation-server")


class GenPaperService:
    """
    Citation processing, retrieval and analysis service.

    This class provides all functionality without any MCP dependencies.
    It can be used directly by:
    - MCP tools (via the tools layer)
    - Web applications (import directly)
    - Jupyter notebooks

    Example usage:
        service = GenPaperService(store=PaperManager())
        result = await service.process_citations(
            "Deep learning improved accuracy [@a1b2c3].",
            [paper],
            style="apa",
        )
        print(result.content)  # Deep learning improved accuracy (Smith, 2023).
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[ChunkStore] = None,
        llm: Optional[LLMClient] = None,
        repository: Optional[StyleRepository] = None,
    ):
        """
        Initialize the service.

        Args:
            settings: Optional settings instance.
            store: Paper/chunk store for retrieval and reference lookup.
            llm: Language model client (built from settings if omitted).
            repository: CSL style repository (built from settings if omitted).
        """
        self.settings = settings or Settings()
        self.store = store

        self.repository = repository or StyleRepository(
            base_url=self.settings.STYLE_REPOSITORY_URL,
            cache_dir=self.settings.STYLES_PATH,
            timeout=self.settings.REQUEST_TIMEOUT,
        )
        self.formatter = CitationFormatter(self.repository)
        self.processor = CitationPostProcessor(self.formatter, CitationMatcher())
        self.builder = ContextBuilder(ContextConfig(max_tokens=self.settings.MAX_CONTEXT_TOKENS))

        self.llm = llm or LLMClient(
            api_key=self.settings.OPENAI_API_KEY,
            model=self.settings.LLM_MODEL,
            base_url=self.settings.LLM_BASE_URL,
            timeout=self.settings.GENERATION_TIMEOUT,
            max_retries=self.settings.LLM_MAX_RETRIES,
        )
        self.claim_extractor = ClaimExtractor(self.llm, max_claims=self.settings.MAX_CLAIMS)
        self.user_claim_extractor = UserClaimExtractor(
            self.llm,
            batch_size=self.settings.RELATIONSHIP_BATCH_SIZE,
            max_claims=self.settings.MAX_CLAIMS,
        )
        self.gap_finder = GapFinder(self.llm)

        self._retriever: Optional[ChunkRetriever] = None
        self._generator: Optional[SectionGenerator] = None

    def _require_store(self) -> ChunkStore:
        if self.store is None:
            raise RuntimeError("GenPaperService was created without a paper store")
        return self.store

    @property
    def retriever(self) -> ChunkRetriever:
        if self._retriever is None:
            self._retriever = ChunkRetriever(
                self._require_store(),
                max_chunks=self.settings.MAX_RETRIEVED_CHUNKS,
                max_chunks_per_paper=self.settings.MAX_CHUNKS_PER_PAPER,
            )
        return self._retriever

    @property
    def generator(self) -> SectionGenerator:
        if self._generator is None:
            self._generator = SectionGenerator(self.llm, self.retriever, self.builder, self.processor)
        return self._generator

    # ==================== Citations ====================

    async def _lookup_paper(self, paper_id: str) -> Optional[PaperRecord]:
        papers = await self._require_store().get_papers([paper_id])
        return papers[0] if papers else None

    async def process_citations(
        self,
        text: str,
        citations: Iterable[CitationLike] = (),
        style: Optional[str] = None,
        citation_numbers: Optional[dict[str, int]] = None,
    ) -> ProcessResult:
        """
        Render every citation marker in text.

        Known citations are used directly; with a store configured, other
        paper ids are looked up concurrently. Unresolvable markers are
        removed from the text and reported as unresolved references.
        """
        style = await self.formatter.ensure_style(style or self.settings.DEFAULT_STYLE)
        known = {c.id.lower(): c for c in citations}

        if self.store is None:
            return self.processor.process(text, known, style, citation_numbers)

        processor = AsyncCitationProcessor(self._lookup_paper, self.processor)
        return await processor.process(text, style, citation_numbers, known=known)

    async def format_inline(
        self,
        item: CitationLike,
        style: Optional[str] = None,
        citation_numbers: Optional[dict[str, int]] = None,
        page: Optional[str] = None,
    ) -> str:
        """Render one in-text citation."""
        style = await self.formatter.ensure_style(style or self.settings.DEFAULT_STYLE)
        return self.formatter.format_inline(item, style, citation_numbers, page)

    async def format_bibliography(
        self,
        items: Iterable[CitationLike],
        style: Optional[str] = None,
        citation_numbers: Optional[dict[str, int]] = None,
    ) -> list[str]:
        """Render a deduplicated, ordered bibliography."""
        style = await self.formatter.ensure_style(style or self.settings.DEFAULT_STYLE)
        return self.formatter.format_bibliography(items, style, citation_numbers)

    def match_citation(
        self,
        text: str,
        citations: Iterable[Citation],
        min_confidence: Optional[float] = None,
    ) -> list[CitationMatch]:
        """Match free text against a set of citations."""
        matcher = CitationMatcher(citations)
        threshold = self.settings.MIN_MATCH_CONFIDENCE if min_confidence is None else min_confidence
        return matcher.find_all_matches(text, min_confidence=threshold)

    def validate_placeholders(
        self,
        text: str,
        known_keys: Optional[Iterable[str]] = None,
    ) -> PlaceholderValidation:
        """Check marker syntax and, optionally, resolvability."""
        return validate_placeholders(text, known_keys)

    async def resolve_style(self, style: str, fetch: bool = True) -> dict:
        """
        Describe how a style identifier resolves.

        With fetch, external styles are loaded from the repository;
        the returned 'effective' id is what formatting will use.
        """
        resolved = resolve_style(style)
        effective = await self.formatter.ensure_style(style) if fetch else style_key(resolved)
        return {
            "requested": style,
            "style_id": style_key(resolved),
            "builtin": isinstance(resolved, BuiltinStyle),
            "numeric": is_numeric_style(resolved),
            "available": self.formatter.is_style_available(style),
            "effective": effective,
        }

    def clear_caches(self, reference_id: Optional[str] = None) -> dict[str, int]:
        """Clear formatting caches, for one reference or entirely."""
        if reference_id:
            self.formatter.clear_for_key(reference_id)
        else:
            self.formatter.clear_caches()
        return self.formatter.cache_stats()

    # ==================== Retrieval ====================

    async def build_context(
        self,
        query: str,
        paper_ids: Sequence[str],
        config: Optional[ContextConfig] = None,
        section_filter: Optional[Iterable[SectionType]] = None,
    ) -> BuiltContext:
        """Retrieve evidence for a query and format it as prompt context."""
        chunks = await self.retriever.retrieve(query, paper_ids, section_filter=section_filter)
        papers = await self._require_store().get_papers(list(paper_ids))
        return self.builder.build_context(chunks, query, {p.id: p for p in papers}, config)

    # ==================== Analysis ====================

    async def extract_claims(self, paper: PaperRecord, content: Optional[str] = None) -> list[ExtractedClaim]:
        return await self.claim_extractor.extract_claims(paper, content)

    async def extract_user_claims(
        self,
        topic: str,
        research_question: str = "",
        key_findings: str = "",
    ) -> list[ExtractedClaim]:
        return await self.user_claim_extractor.extract_user_claims(topic, research_question, key_findings)

    async def analyze_relationships(
        self,
        user_claims: list[ExtractedClaim],
        literature_claims: list[ExtractedClaim],
    ) -> list[ClaimRelationship]:
        return await self.user_claim_extractor.analyze_relationships(user_claims, literature_claims)

    def generate_positioning(
        self,
        user_claims: list[ExtractedClaim],
        literature_claims: list[ExtractedClaim],
        relationships: list[ClaimRelationship],
    ) -> ResearchPositioning:
        return self.user_claim_extractor.generate_positioning(user_claims, literature_claims, relationships)

    async def find_research_gaps(
        self,
        topic: str,
        claims: list[ExtractedClaim],
        include_contradictions: bool = True,
    ) -> GapAnalysisResult:
        """
        Identify gaps for a topic.

        Contradictions found by the dedicated pass are appended unless a
        synthesized contradiction already covers the same paper pair.
        """
        if include_contradictions:
            result, contradictions = await asyncio.gather(
                self.gap_finder.find_gaps(topic, claims),
                self.gap_finder.find_contradictions(claims),
            )
        else:
            result, contradictions = await self.gap_finder.find_gaps(topic, claims), []

        covered = {frozenset(g.supporting_paper_ids) for g in result.gaps if g.gap_type == GapType.CONTRADICTION}
        for gap in contradictions:
            if frozenset(gap.supporting_paper_ids) not in covered:
                result.gaps.append(gap)
        return result

    async def analyze_gap_addressing(
        self,
        gaps: list[ResearchGap],
        user_claims: list[ExtractedClaim],
    ) -> list[GapAddressing]:
        return await self.gap_finder.analyze_gap_addressing(gaps, user_claims)

    # ==================== Generation ====================

    def stream_section(
        self,
        request: GenerationRequest,
        abort: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[GenerationEvent]:
        """Stream a cited section (see SectionGenerator.stream_section)."""
        return self.generator.stream_section(request, abort)

    async def generate_section(
        self,
        request: GenerationRequest,
        abort: Optional[asyncio.Event] = None,
    ) -> ProcessResult:
        return await self.generator.generate_section(request, abort)

    async def close(self) -> None:
        """Close network clients."""
        await self.repository.close()
        await self.llm.close()
