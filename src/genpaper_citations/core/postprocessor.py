"""
Citation post-processing.

Turns marker-bearing model output into display text:

1. Extract markers (every grammar).
2. Resolve each unique reference once: the citation map for paper ids,
   the CitationMatcher for DOI/title/URL placeholders.
3. Render each resolved reference in the requested style.
4. Replace markers in descending offset order; unresolved markers are
   removed and reported.
5. Strip leaked artifacts and normalise whitespace.

The core processor is synchronous over already-resolved data. Async
resolution and streaming are layered on top.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Awaitable, Callable, Mapping, Optional, Union

from .formatter import CitationFormatter, CitationLike
from .markers import extract_markers
from .matcher import CitationMatcher
from .models import (
    Citation,
    FormattedCitation,
    Marker,
    MarkerGrammar,
    ProcessResult,
    ReferenceType,
)
from .styles import ResolvedStyle, is_numeric_style, resolve_style

logger = logging.getLogger("genpaper-citation-server")

# Text a model may leak that must never reach the reader
ARTIFACT_PATTERNS = (
    re.compile(r"\[CONTEXT\s+FROM:\s*[^\]]+\]", re.IGNORECASE),
    re.compile(r"addCitation\s*\([^)]*\)"),
    re.compile(r"\bCITATION_\d+\b"),
    re.compile(r"\[(?:citation\s+needed|cite|citation|ref|source\s+needed)\]", re.IGNORECASE),
    re.compile(r"\[\[CITE:[^\]]*\]\]", re.IGNORECASE),
    re.compile(r"\[CITE:[^\]]*\]", re.IGNORECASE),
    re.compile(r"\[@[^\]\s]*\]"),
)

_MULTI_SPACE = re.compile(r"[ \t]{2,}")
_SPACE_BEFORE_PUNCT = re.compile(r"[ \t]+([.,;:!?])")
_TRAILING_LINE_SPACE = re.compile(r"[ \t]+(?=\n)")
_BLANK_LINES = re.compile(r"\n{3,}")

# Released stream text ends after a sentence terminator and its whitespace
_SENTENCE_END = re.compile(r"[.!?]+\s+")

# One private-use character stands in for each rendered citation during
# cleanup so that display offsets are computed on the final text
_SENTINEL_BASE = 0xF0000
_SENTINEL = re.compile("[\U000F0000-\U000FFFFD]")


def _clean_once(text: str, trim: bool) -> str:
    for pattern in ARTIFACT_PATTERNS:
        text = pattern.sub("", text)
    text = _MULTI_SPACE.sub(" ", text)
    text = _SPACE_BEFORE_PUNCT.sub(r"\1", text)
    text = _TRAILING_LINE_SPACE.sub("", text)
    text = _BLANK_LINES.sub("\n\n", text)
    return text.strip() if trim else text


def clean_artifacts(text: str, trim: bool = True) -> str:
    """
    Remove leaked artifacts and normalise whitespace.

    Idempotent: every rule only deletes characters, so the rules are
    applied until the text stops changing.

    Args:
        text: Text to clean.
        trim: Strip leading/trailing whitespace (off for stream segments).
    """
    previous = None
    while text != previous:
        previous = text
        text = _clean_once(text, trim)
    return text


def reference_of(marker: Marker) -> str:
    """Lookup key of a marker: the id for [@id]/[CITE: id], else 'type:value'."""
    if marker.grammar in (MarkerGrammar.MODERN, MarkerGrammar.LEGACY):
        return marker.value
    return marker.cite_key


class CitationPostProcessor:
    """
    Replace citation markers with rendered citations.

    Example usage:
        processor = CitationPostProcessor()
        result = processor.process(
            "Deep learning improved accuracy [@a1b2c3].",
            {"a1b2c3": citation},
            "apa",
        )
        result.content  # 'Deep learning improved accuracy (Smith, 2023).'
    """

    def __init__(
        self,
        formatter: Optional[CitationFormatter] = None,
        matcher: Optional[CitationMatcher] = None,
    ):
        self.formatter = formatter or CitationFormatter()
        self.matcher = matcher or CitationMatcher()

    def process(
        self,
        text: str,
        citations_by_reference: Mapping[str, CitationLike],
        style: Union[str, ResolvedStyle] = "apa",
        citation_numbers: Optional[dict[str, int]] = None,
        trim: bool = True,
    ) -> ProcessResult:
        """
        Render every marker in text.

        Args:
            text: Marker-bearing text.
            citations_by_reference: Reference id -> Citation or paper record.
            style: Citation style identifier.
            citation_numbers: Citation id -> number for numeric styles.
                              References without a number are numbered after
                              the highest one, in order of first appearance.
            trim: Strip surrounding whitespace from the result.

        Returns:
            ProcessResult with display text, one FormattedCitation per
            rendered occurrence and the unresolved reference keys.
        """
        resolved_style = style if not isinstance(style, str) else resolve_style(style)
        markers = extract_markers(text)
        if not markers:
            return ProcessResult(content=clean_artifacts(text, trim=trim))

        citations = self._resolve_all(markers, citations_by_reference)

        numbers = dict(citation_numbers or {})
        if is_numeric_style(resolved_style):
            for marker in markers:
                citation = citations.get(reference_of(marker))
                if citation is not None and citation.id not in numbers:
                    numbers[citation.id] = max(numbers.values(), default=0) + 1

        rendered: dict[str, str] = {}
        for reference, citation in citations.items():
            if citation is not None:
                rendered[reference] = self.formatter.format_inline(
                    citation, resolved_style, citation_numbers=numbers
                )

        # Replace in descending offset order; each resolved marker becomes
        # a sentinel that is expanded after cleanup
        content = text
        occurrences: list[tuple[Marker, str]] = []
        for marker in markers:
            if reference_of(marker) in rendered:
                occurrences.append((marker, rendered[reference_of(marker)]))
        sentinel_of = {id(m): chr(_SENTINEL_BASE + i) for i, (m, _) in enumerate(occurrences)}

        for marker in sorted(markers, key=lambda m: m.start, reverse=True):
            replacement = sentinel_of.get(id(marker), "")
            content = content[:marker.start] + replacement + content[marker.end:]

        content = clean_artifacts(content, trim=trim)
        content, formatted = self._expand(content, occurrences, citations)

        unresolved: list[str] = []
        for marker in markers:
            reference = reference_of(marker)
            if reference not in rendered and reference not in unresolved:
                unresolved.append(reference)

        if unresolved:
            logger.debug(f"Removed {len(unresolved)} unresolved citation references")

        return ProcessResult(
            content=content,
            citations=formatted,
            unresolved_references=unresolved,
        )

    def _expand(
        self,
        content: str,
        occurrences: list[tuple[Marker, str]],
        citations: dict[str, Optional[Citation]],
    ) -> tuple[str, list[FormattedCitation]]:
        """Single left-to-right pass building display text and offsets."""
        pieces: list[str] = []
        formatted: list[FormattedCitation] = []
        display_length = 0
        cursor = 0

        for found in _SENTINEL.finditer(content):
            index = ord(found.group(0)) - _SENTINEL_BASE
            if index >= len(occurrences):
                continue
            literal = content[cursor:found.start()]
            pieces.append(literal)
            display_length += len(literal)

            marker, text = occurrences[index]
            pieces.append(text)
            formatted.append(
                FormattedCitation(
                    marker=marker.text,
                    reference=reference_of(marker),
                    rendered=text,
                    citation=citations[reference_of(marker)],
                    raw_start=marker.start,
                    raw_end=marker.end,
                    display_start=display_length,
                    display_end=display_length + len(text),
                )
            )
            display_length += len(text)
            cursor = found.end()

        pieces.append(content[cursor:])
        return "".join(pieces), formatted

    def _resolve_all(
        self,
        markers: list[Marker],
        citations_by_reference: Mapping[str, CitationLike],
    ) -> dict[str, Optional[Citation]]:
        """Resolve each unique reference once."""
        by_id: dict[str, Citation] = {
            key.lower(): self.formatter.to_citation(value)
            for key, value in citations_by_reference.items()
            if value is not None
        }

        has_placeholders = any(
            m.grammar in (MarkerGrammar.PLACEHOLDER, MarkerGrammar.PLACEHOLDER_CONTEXT)
            for m in markers
        )
        if has_placeholders:
            self.matcher.update_citations(by_id.values())

        resolved: dict[str, Optional[Citation]] = {}
        for marker in markers:
            reference = reference_of(marker)
            if reference not in resolved:
                resolved[reference] = self._resolve(marker, by_id)
        return resolved

    def _resolve(self, marker: Marker, by_id: dict[str, Citation]) -> Optional[Citation]:
        if marker.grammar in (MarkerGrammar.MODERN, MarkerGrammar.LEGACY):
            return by_id.get(marker.value.lower())

        if marker.reference_type == ReferenceType.PAPER_ID:
            return by_id.get(marker.value.lower())
        if marker.reference_type == ReferenceType.DOI:
            return self.matcher.lookup_doi(marker.value)
        if marker.reference_type == ReferenceType.TITLE:
            return self.matcher.lookup_title(marker.value)
        if marker.reference_type == ReferenceType.URL:
            url = marker.value.strip().rstrip("/").lower()
            for citation in by_id.values():
                if citation.url and citation.url.strip().rstrip("/").lower() == url:
                    return citation
        return None


Resolver = Callable[[str], Awaitable[Optional[CitationLike]]]


class AsyncCitationProcessor:
    """
    Post-processing with asynchronous reference resolution.

    Unique paper ids are resolved concurrently through the resolver
    (e.g. a storage lookup); the replacement itself stays synchronous.
    """

    def __init__(self, resolver: Resolver, processor: Optional[CitationPostProcessor] = None):
        self.resolver = resolver
        self.processor = processor or CitationPostProcessor()

    async def resolve_references(self, text: str) -> dict[str, CitationLike]:
        """Resolve every paper id referenced in text; failures are skipped."""
        ids: list[str] = []
        for marker in extract_markers(text):
            if marker.grammar in (MarkerGrammar.MODERN, MarkerGrammar.LEGACY) or (
                marker.reference_type == ReferenceType.PAPER_ID
            ):
                value = marker.value.lower()
                if value not in ids:
                    ids.append(value)

        results = await asyncio.gather(*(self.resolver(i) for i in ids), return_exceptions=True)

        resolved: dict[str, CitationLike] = {}
        for reference_id, result in zip(ids, results):
            if isinstance(result, Exception):
                logger.warning(f"Failed to resolve reference {reference_id}: {result}")
                continue
            if result is not None:
                resolved[reference_id] = result
        return resolved

    async def process(
        self,
        text: str,
        style: Union[str, ResolvedStyle] = "apa",
        citation_numbers: Optional[dict[str, int]] = None,
        known: Optional[Mapping[str, CitationLike]] = None,
    ) -> ProcessResult:
        """
        Resolve then render.

        Args:
            text: Marker-bearing text.
            style: Citation style identifier.
            citation_numbers: Numbers for numeric styles.
            known: Citations already available; merged over resolved ones.
        """
        citations = await self.resolve_references(text)
        if known:
            citations.update({k.lower(): v for k, v in known.items()})
        return self.processor.process(text, citations, style, citation_numbers)


class CitationStreamProcessor:
    """
    Incremental post-processing of streamed model output.

    Text is buffered and released up to the last complete sentence, never
    splitting an open marker. Offsets in emitted citations are relative to
    the whole stream (raw and display).
    """

    def __init__(
        self,
        processor: CitationPostProcessor,
        citations_by_reference: Mapping[str, CitationLike],
        style: Union[str, ResolvedStyle] = "apa",
        citation_numbers: Optional[dict[str, int]] = None,
    ):
        self.processor = processor
        self.citations_by_reference = citations_by_reference
        self.style = style if not isinstance(style, str) else resolve_style(style)
        self.citation_numbers: dict[str, int] = dict(citation_numbers or {})
        self._assign_numbers = is_numeric_style(self.style)

        self._buffer = ""
        self.raw_offset = 0
        self.display_offset = 0
        self.citations: list[FormattedCitation] = []
        self.unresolved_references: list[str] = []
        self._last_emitted = ""

    @staticmethod
    def _has_open_marker(text: str) -> bool:
        return text.rfind("[") > text.rfind("]")

    def _release_point(self) -> int:
        for match in reversed(list(_SENTENCE_END.finditer(self._buffer))):
            if not self._has_open_marker(self._buffer[:match.end()]):
                return match.end()
        return 0

    def push(self, delta: str) -> Optional[ProcessResult]:
        """
        Add streamed text.

        Returns:
            The processed segment when a complete sentence is available,
            else None.
        """
        self._buffer += delta
        cut = self._release_point()
        if cut == 0:
            return None
        segment, self._buffer = self._buffer[:cut], self._buffer[cut:]
        return self._process_segment(segment)

    def flush(self) -> Optional[ProcessResult]:
        """Process whatever remains at the end of the stream."""
        if not self._buffer:
            return None
        segment, self._buffer = self._buffer, ""
        return self._process_segment(segment)

    def _numbers_for(self, segment: str) -> Optional[dict[str, int]]:
        if not self._assign_numbers:
            return self.citation_numbers or None
        for marker in extract_markers(segment):
            value = self.citations_by_reference.get(marker.value) or self.citations_by_reference.get(
                marker.value.lower()
            )
            if value is not None and value.id not in self.citation_numbers:
                self.citation_numbers[value.id] = max(self.citation_numbers.values(), default=0) + 1
        return self.citation_numbers

    def _process_segment(self, segment: str) -> ProcessResult:
        result = self.processor.process(
            segment,
            self.citations_by_reference,
            self.style,
            citation_numbers=self._numbers_for(segment),
            trim=False,
        )

        # whitespace across the segment boundary collapses as in one pass
        content = result.content
        if self._last_emitted in (" ", "\t"):
            content = content.lstrip(" \t")
        shift = self.display_offset - (len(result.content) - len(content))

        shifted = [
            citation.model_copy(
                update={
                    "raw_start": citation.raw_start + self.raw_offset,
                    "raw_end": citation.raw_end + self.raw_offset,
                    "display_start": citation.display_start + shift,
                    "display_end": citation.display_end + shift,
                }
            )
            for citation in result.citations
        ]

        self.raw_offset += len(segment)
        self.display_offset += len(content)
        if content:
            self._last_emitted = content[-1]
        self.citations.extend(shifted)
        for reference in result.unresolved_references:
            if reference not in self.unresolved_references:
                self.unresolved_references.append(reference)

        return ProcessResult(
            content=content,
            citations=shifted,
            unresolved_references=result.unresolved_references,
        )
