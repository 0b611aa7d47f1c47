"""
Section generation.

Drafts one section of a paper with in-band citation resolution:

1. Validate the request (before any model call).
2. Retrieve evidence chunks and build the prompt context.
3. Stream model output through the citation stream processor.
4. Emit text events as sentences complete, then a final event with
   every rendered citation and every unresolved reference.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional

from .context import ChunkRetriever, ContextBuilder
from .csl import paper_to_citation
from .errors import GenerationCancelledError, InvalidRequestError, InvalidStyleError
from .llm import LLMClient
from .models import (
    GenerationEvent,
    GenerationEventType,
    GenerationRequest,
    PaperRecord,
    ProcessResult,
)
from .postprocessor import CitationPostProcessor, CitationStreamProcessor
from .styles import resolve_style

logger = logging.getLogger("genpaper-citation-server")

GENERATION_TEMPERATURE = 0.7
TOKENS_PER_WORD = 2

SECTION_SYSTEM_PROMPT = """You are an expert academic writer drafting one section of a research paper.

Ground every factual claim in the provided sources. Cite a source by
writing its id in the marker [@id] right after the claim, for example
"Transformers outperform recurrent models [@a1b2c3]." Use only ids listed
under AVAILABLE SOURCES. Never invent sources, never write author names or
years yourself, and never leave placeholders such as [citation needed].
Write flowing academic prose without headings."""

SECTION_USER_PROMPT = """Topic: {topic}
Section: {section_title}
{key_points}
Target length: about {target_words} words.

AVAILABLE SOURCES:
{sources}

EVIDENCE:
{context}

Write the "{section_title}" section now."""


def validate_request(request: GenerationRequest) -> None:
    """
    Reject malformed requests.

    Raises:
        InvalidRequestError: Empty topic or section title, no paper ids,
            or an unusable style identifier.
    """
    if not request.topic.strip():
        raise InvalidRequestError("Topic is required", field="topic")
    if not request.section_title.strip():
        raise InvalidRequestError("Section title is required", field="section_title")
    if not [p for p in request.paper_ids if p and p.strip()]:
        raise InvalidRequestError("At least one paper id is required", field="paper_ids")
    try:
        resolve_style(request.style)
    except InvalidStyleError as e:
        raise InvalidRequestError(str(e), field="style") from e


def build_prompt(request: GenerationRequest, papers: list[PaperRecord], context: str) -> str:
    """User prompt listing sources by id with the evidence context."""
    sources = "\n".join(
        f"- [@{p.id}] {p.title}" + (f" ({p.year})" if p.year else "") for p in papers
    )
    key_points = ""
    if request.key_points:
        key_points = "Key points:\n" + "\n".join(f"- {point}" for point in request.key_points)

    return SECTION_USER_PROMPT.format(
        topic=request.topic.strip(),
        section_title=request.section_title.strip(),
        key_points=key_points,
        target_words=request.target_words,
        sources=sources or "- (none)",
        context=context,
    )


class SectionGenerator:
    """
    Stream a cited section.

    Example usage:
        generator = SectionGenerator(llm, retriever, ContextBuilder(), processor)
        async for event in generator.stream_section(request, abort=event):
            if event.type == GenerationEventType.TEXT:
                print(event.content, end="")
    """

    def __init__(
        self,
        llm: LLMClient,
        retriever: ChunkRetriever,
        builder: Optional[ContextBuilder] = None,
        processor: Optional[CitationPostProcessor] = None,
    ):
        self.llm = llm
        self.retriever = retriever
        self.builder = builder or ContextBuilder()
        self.processor = processor or CitationPostProcessor()

    @staticmethod
    def _check_abort(abort: Optional[asyncio.Event]) -> None:
        if abort is not None and abort.is_set():
            raise GenerationCancelledError("Generation cancelled by client")

    async def stream_section(
        self,
        request: GenerationRequest,
        abort: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[GenerationEvent]:
        """
        Generate a section as a stream of events.

        Raises:
            InvalidRequestError: Before any retrieval or model call.
            NoRelevantContentError / ContentQualityError: From retrieval.
            GenerationCancelledError: When abort is set.
            GenerationTimeoutError / GenerationError: From the model call.
        """
        validate_request(request)
        paper_ids = [p.strip() for p in request.paper_ids if p and p.strip()]
        query = f"{request.topic}: {request.section_title}"
        if request.key_points:
            query += ". " + ". ".join(request.key_points)

        yield GenerationEvent(type=GenerationEventType.STATUS, content="retrieving")
        chunks = await self.retriever.retrieve(query, paper_ids)
        papers = await self.retriever.store.get_papers(paper_ids)
        self._check_abort(abort)

        papers_by_id = {p.id: p for p in papers}
        context = self.builder.build_context(chunks, query, papers_by_id)
        citations = {p.id.lower(): paper_to_citation(p) for p in papers}
        style = await self.processor.formatter.ensure_style(request.style)

        logger.info(
            f"Generating section '{request.section_title}' from {len(chunks)} chunks "
            f"across {len(papers)} papers ({context.estimated_tokens} context tokens)"
        )

        stream = CitationStreamProcessor(self.processor, citations, style)
        yield GenerationEvent(type=GenerationEventType.STATUS, content="generating")

        deltas = self.llm.stream(
            SECTION_SYSTEM_PROMPT,
            build_prompt(request, papers, context.formatted_context),
            temperature=GENERATION_TEMPERATURE,
            max_tokens=request.target_words * TOKENS_PER_WORD,
            abort=abort,
        )
        try:
            async for delta in deltas:
                raw_offset, display_offset = stream.raw_offset, stream.display_offset
                segment = stream.push(delta)
                if segment is not None:
                    yield self._text_event(segment, raw_offset, display_offset)
        finally:
            await deltas.aclose()

        raw_offset, display_offset = stream.raw_offset, stream.display_offset
        segment = stream.flush()
        if segment is not None and segment.content:
            yield self._text_event(segment, raw_offset, display_offset)

        if stream.unresolved_references:
            logger.warning(
                f"Section '{request.section_title}' has unresolved references: "
                f"{', '.join(stream.unresolved_references)}"
            )
        yield GenerationEvent(
            type=GenerationEventType.COMPLETE,
            raw_offset=stream.raw_offset,
            display_offset=stream.display_offset,
            citations=stream.citations,
            unresolved_references=stream.unresolved_references,
        )

    @staticmethod
    def _text_event(segment: ProcessResult, raw_offset: int, display_offset: int) -> GenerationEvent:
        return GenerationEvent(
            type=GenerationEventType.TEXT,
            content=segment.content,
            raw_offset=raw_offset,
            display_offset=display_offset,
            citations=segment.citations,
            unresolved_references=segment.unresolved_references,
        )

    async def generate_section(
        self,
        request: GenerationRequest,
        abort: Optional[asyncio.Event] = None,
    ) -> ProcessResult:
        """Run stream_section to completion and return the whole section."""
        parts: list[str] = []
        result = ProcessResult(content="")
        async for event in self.stream_section(request, abort):
            if event.type == GenerationEventType.TEXT:
                parts.append(event.content)
            elif event.type == GenerationEventType.COMPLETE:
                result = ProcessResult(
                    content="".join(parts).strip(),
                    citations=event.citations,
                    unresolved_references=event.unresolved_references,
                )
        return result
