"""
Retrieval-augmented context.

ChunkRetriever selects evidence chunks for a query from a ChunkStore,
scoring them lexically, deduplicating, balancing across papers and
falling back to abstracts when no chunk qualifies.

ContextBuilder turns the selected chunks into a prompt-ready string
under a token budget, optionally compressing chunks to their most
relevant sentences and grouping them by paper.
"""

from __future__ import annotations

import logging
import math
import re
from collections import defaultdict
from typing import Iterable, Mapping, Optional, Protocol, Sequence

from .csl import parse_author_name
from .errors import ContentQualityError, NoRelevantContentError
from .models import (
    BuiltContext,
    Chunk,
    ContextConfig,
    ContextMetrics,
    PaperRecord,
    RetrievedChunk,
    SectionContext,
    SectionType,
)

logger = logging.getLogger("genpaper-citation-server")

# (label, minimum score); the first stage that yields chunks wins
RETRIEVAL_STAGES = (
    ("high-precision", 0.5),
    ("balanced", 0.3),
    ("high-recall", 0.15),
    ("ultra-recall", 0.05),
)
MIN_AVERAGE_SCORE = 0.08
DEDUPE_PREFIX_LENGTH = 100
KEY_TERM_BONUS = 0.1

MIN_ABSTRACT_LENGTH = 100
MAX_FALLBACK_ABSTRACTS = 10
ABSTRACT_SCORE = 0.5
SUPPLEMENT_SCORE = 0.4
SPLIT_ABSTRACT_LENGTH = 800
SUPPLEMENT_BELOW_CHUNKS = 30

TRUNCATION_MIN_TOKENS = 100
CHUNK_SEPARATOR = "\n\n---\n\n"
EMPTY_CONTEXT = "No relevant content found."

ABBREVIATIONS = ("Dr", "Mr", "Mrs", "Ms", "Prof", "vs", "etc", r"e\.g", r"i\.e", r"U\.S", "Fig", "No", "Vol", "pp", "al", "et")
_SENTENCE_SPLIT = re.compile(
    "".join(rf"(?<!\b{a})" for a in ABBREVIATIONS) + r"\.\s+|[!?]\s+"
)
MIN_SENTENCE_LENGTH = 10

_QUERY_STOP_WORDS = {
    "the", "and", "for", "with", "that", "this", "from", "are", "was", "were",
    "has", "have", "been", "into", "its", "their", "our", "about", "between",
    "which", "what", "how", "why", "when", "does", "using", "based", "can",
}


class ChunkStore(Protocol):
    """Read access to stored papers and their chunks."""

    async def search_chunks(self, query: str, paper_ids: list[str], limit: int) -> list[Chunk]:
        ...

    async def get_papers(self, paper_ids: list[str]) -> list[PaperRecord]:
        ...


def query_terms(text: str) -> set[str]:
    """Lower-cased content words of three or more characters."""
    words = re.findall(r"[a-z0-9][a-z0-9-]+", (text or "").lower())
    return {w for w in words if len(w) >= 3 and w not in _QUERY_STOP_WORDS}


def score_text(terms: set[str], text: str) -> float:
    """Fraction of query terms present in text."""
    if not terms:
        return 0.0
    return len(terms & query_terms(text)) / len(terms)


def score_chunk(query: str, chunk: Chunk) -> float:
    """Lexical relevance in [0, 1]: query-term coverage plus a key-term bonus."""
    terms = query_terms(query)
    if not terms:
        return 0.0
    coverage = score_text(terms, chunk.content)
    key_hits = len(terms & set(chunk.metadata.key_terms))
    return min(1.0, coverage + KEY_TERM_BONUS * key_hits)


def split_sentences(text: str) -> list[str]:
    """Split text into sentences, keeping abbreviations intact."""
    parts = (s.strip() for s in _SENTENCE_SPLIT.split(text or ""))
    return [s for s in parts if len(s) > MIN_SENTENCE_LENGTH]


def estimate_tokens(text: str, tokens_per_char: float = 0.25) -> int:
    return int(math.ceil(len(text) * tokens_per_char))


def first_author_surname(paper: Optional[PaperRecord]) -> str:
    if paper is None or not paper.authors:
        return "Unknown"
    return parse_author_name(paper.authors[0]).display_family()


class ChunkRetriever:
    """
    Select evidence chunks for a query.

    Example usage:
        retriever = ChunkRetriever(paper_manager)
        chunks = await retriever.retrieve("attention mechanisms", ["p1", "p2"])
    """

    def __init__(
        self,
        store: ChunkStore,
        max_chunks: int = 25,
        max_chunks_per_paper: int = 6,
    ):
        self.store = store
        self.max_chunks = max_chunks
        self.max_chunks_per_paper = max_chunks_per_paper

    async def retrieve(
        self,
        query: str,
        paper_ids: Sequence[str],
        section_filter: Optional[Iterable[SectionType]] = None,
        limit: Optional[int] = None,
    ) -> list[RetrievedChunk]:
        """
        Retrieve relevant chunks.

        Args:
            query: Search query (topic or section description).
            paper_ids: Papers to draw evidence from.
            section_filter: Only chunks detected in these sections.
            limit: Maximum chunks returned (default max_chunks).

        Returns:
            Chunks ordered by score, balanced across papers. Empty when
            the query or paper list is empty.

        Raises:
            NoRelevantContentError: No chunk qualifies and no paper has a
                usable abstract.
            ContentQualityError: Mean relevance below 0.08.
        """
        if not query or not query.strip() or not paper_ids:
            return []

        limit = limit or self.max_chunks
        ids = list(dict.fromkeys(paper_ids))
        sections = set(section_filter) if section_filter else None

        candidates = await self.store.search_chunks(query, ids, limit * 4)
        if sections is not None:
            candidates = [c for c in candidates if c.metadata.section_type in sections]

        scored = self._dedupe(
            sorted(
                (self._to_retrieved(c, score_chunk(query, c)) for c in candidates),
                key=lambda c: c.score,
                reverse=True,
            )
        )

        selected: list[RetrievedChunk] = []
        for label, min_score in RETRIEVAL_STAGES:
            selected = [c for c in scored if c.score >= min_score]
            if selected:
                logger.debug(f"Chunk retrieval stage {label} kept {len(selected)} chunks")
                break

        papers = await self.store.get_papers(ids)

        if not selected:
            logger.warning(f"No relevant chunks for query; using abstracts of {len(papers)} papers")
            return self._abstract_fallback(papers)

        average = sum(c.score for c in selected) / len(selected)
        if average < MIN_AVERAGE_SCORE:
            raise ContentQualityError(
                f"Content relevance scores too low for reliable generation (avg: {average:.3f})",
                details={"scores": [round(c.score, 3) for c in selected]},
            )

        if len(selected) < SUPPLEMENT_BELOW_CHUNKS:
            represented = {c.paper_id for c in selected}
            selected.extend(
                c for c in self._abstract_chunks(papers, SUPPLEMENT_SCORE) if c.paper_id not in represented
            )

        per_paper = max(self.max_chunks_per_paper, math.ceil(limit / max(1, len(ids))))
        return self._balance(selected, per_paper, limit)

    @staticmethod
    def _to_retrieved(chunk: Chunk, score: float) -> RetrievedChunk:
        return RetrievedChunk(
            id=chunk.id,
            paper_id=chunk.paper_id,
            content=chunk.content,
            score=score,
            chunk_index=chunk.chunk_index,
            section_type=chunk.metadata.section_type,
        )

    @staticmethod
    def _dedupe(chunks: Iterable[RetrievedChunk]) -> list[RetrievedChunk]:
        """Drop chunks whose first 100 characters repeat an earlier chunk."""
        seen: set[str] = set()
        unique = []
        for chunk in chunks:
            key = chunk.content.strip().lower()[:DEDUPE_PREFIX_LENGTH]
            if key in seen:
                continue
            seen.add(key)
            unique.append(chunk)
        return unique

    @staticmethod
    def _balance(chunks: list[RetrievedChunk], per_paper: int, limit: int) -> list[RetrievedChunk]:
        counts: dict[str, int] = defaultdict(int)
        balanced = []
        for chunk in sorted(chunks, key=lambda c: c.score, reverse=True):
            if counts[chunk.paper_id] >= per_paper:
                continue
            counts[chunk.paper_id] += 1
            balanced.append(chunk)
            if len(balanced) >= limit:
                break
        return balanced

    @staticmethod
    def _abstract_chunks(papers: Iterable[PaperRecord], score: float) -> list[RetrievedChunk]:
        """Abstracts as chunks; long ones split into sentence parts."""
        chunks = []
        for paper in papers:
            abstract = (paper.abstract or "").strip()
            if len(abstract) < MIN_ABSTRACT_LENGTH:
                continue

            if len(abstract) <= SPLIT_ABSTRACT_LENGTH:
                chunks.append(
                    RetrievedChunk(
                        id=f"abstract-{paper.id}",
                        paper_id=paper.id,
                        content=f"Title: {paper.title}\n\nAbstract: {abstract}",
                        score=score,
                        source="abstract",
                    )
                )
                continue

            parts = [s.strip() for s in re.split(r"[.!?]+", abstract) if len(s.strip()) > 50]
            for i, sentence in enumerate(parts):
                chunks.append(
                    RetrievedChunk(
                        id=f"abstract-split-{paper.id}-{i}",
                        paper_id=paper.id,
                        content=f"Title: {paper.title}\n\nAbstract (Part {i + 1}): {sentence}.",
                        score=SUPPLEMENT_SCORE,
                        source="abstract-split",
                    )
                )
        return chunks

    def _abstract_fallback(self, papers: list[PaperRecord]) -> list[RetrievedChunk]:
        usable = [p for p in papers if len((p.abstract or "").strip()) >= MIN_ABSTRACT_LENGTH]
        if not usable:
            raise NoRelevantContentError(
                details={"paper_ids": [p.id for p in papers]},
            )
        return self._abstract_chunks(usable[:MAX_FALLBACK_ABSTRACTS], ABSTRACT_SCORE)


class ContextBuilder:
    """
    Build prompt context from retrieved chunks.

    Steps: optional sentence compression, token budget, optional
    grouping by paper, then formatting with source headers.
    """

    def __init__(self, config: Optional[ContextConfig] = None):
        self.config = config or ContextConfig()

    def build_context(
        self,
        chunks: Sequence[RetrievedChunk],
        query: str,
        papers: Optional[Mapping[str, PaperRecord]] = None,
        config: Optional[ContextConfig] = None,
    ) -> BuiltContext:
        """
        Format chunks as context within the token budget.

        Args:
            chunks: Retrieved chunks, most relevant first.
            query: Query used for sentence scoring during compression.
            papers: Paper id -> record, for '[Author, year - id]' headers.
            config: Overrides the builder's default configuration.
        """
        config = config or self.config
        papers = papers or {}

        if not chunks:
            return BuiltContext(formatted_context=EMPTY_CONTEXT)

        working = list(chunks)
        original_sentences = included_sentences = 0
        if config.enable_compression:
            working, original_sentences, included_sentences = self._compress(working, query, config)

        budgeted = self._apply_budget(working, config)
        if config.group_by_paper:
            budgeted = self._group_by_paper(budgeted)

        formatted = self._format(budgeted, papers, config.include_citations)

        ratio = included_sentences / original_sentences if original_sentences else 1.0
        return BuiltContext(
            formatted_context=formatted,
            chunks=budgeted,
            estimated_tokens=estimate_tokens(formatted, config.tokens_per_char),
            was_compressed=config.enable_compression,
            metrics=ContextMetrics(
                original_chunks=len(chunks),
                included_chunks=len(budgeted),
                original_sentences=original_sentences,
                included_sentences=included_sentences,
                compression_ratio=ratio,
            ),
        )

    def build_section_contexts(
        self,
        sections: Sequence[Mapping],
        chunks: Sequence[RetrievedChunk],
        papers: Optional[Mapping[str, PaperRecord]] = None,
        total_tokens: Optional[int] = None,
        config: Optional[ContextConfig] = None,
    ) -> list[SectionContext]:
        """
        Build one context per section, splitting the token budget evenly.

        Each section mapping has 'key', 'title' and optional 'key_points';
        the section query is 'title: point. point'.
        """
        if not sections:
            return []

        config = config or self.config
        budget = max(1, (total_tokens or config.max_tokens) // len(sections))
        section_config = config.model_copy(update={"max_tokens": budget})

        contexts = []
        for section in sections:
            key_points = list(section.get("key_points") or [])
            title = section.get("title", "")
            query = f"{title}: {'. '.join(key_points)}"
            contexts.append(
                SectionContext(
                    section_key=section.get("key", title),
                    section_title=title,
                    key_points=key_points,
                    context=self.build_context(chunks, query, papers, section_config),
                )
            )
        return contexts

    # ==================== Steps ====================

    @staticmethod
    def _compress(
        chunks: list[RetrievedChunk],
        query: str,
        config: ContextConfig,
    ) -> tuple[list[RetrievedChunk], int, int]:
        terms = query_terms(query)
        original = included = 0
        compressed = []

        for chunk in chunks:
            sentences = split_sentences(chunk.content)
            original += len(sentences)

            if len(sentences) <= 2:
                compressed.append(chunk)
                included += len(sentences)
                continue

            scores = [score_text(terms, s) for s in sentences]
            kept = [s for s, score in zip(sentences, scores) if score >= config.sentence_min_score]
            if not kept:
                kept = [sentences[scores.index(max(scores))]]

            included += len(kept)
            compressed.append(chunk.model_copy(update={"content": " ".join(kept), "compressed": True}))

        return compressed, original, included

    @staticmethod
    def _apply_budget(chunks: list[RetrievedChunk], config: ContextConfig) -> list[RetrievedChunk]:
        used = 0
        result = []
        for chunk in chunks:
            tokens = estimate_tokens(chunk.content, config.tokens_per_char)
            if used + tokens <= config.max_tokens:
                result.append(chunk)
                used += tokens
                continue

            remaining = config.max_tokens - used
            if remaining > TRUNCATION_MIN_TOKENS:
                chars = int(remaining / config.tokens_per_char)
                result.append(
                    chunk.model_copy(update={"content": chunk.content[:chars] + "...", "truncated": True})
                )
            break
        return result

    @staticmethod
    def _group_by_paper(chunks: list[RetrievedChunk]) -> list[RetrievedChunk]:
        by_paper: dict[str, list[RetrievedChunk]] = defaultdict(list)
        for chunk in chunks:
            by_paper[chunk.paper_id].append(chunk)

        groups = sorted(by_paper.values(), key=lambda g: max(c.score for c in g), reverse=True)
        ordered = []
        for group in groups:
            ordered.extend(sorted(group, key=lambda c: c.chunk_index if c.chunk_index is not None else 0))
        return ordered

    @staticmethod
    def _format(
        chunks: list[RetrievedChunk],
        papers: Mapping[str, PaperRecord],
        include_citations: bool,
    ) -> str:
        blocks = []
        for i, chunk in enumerate(chunks, 1):
            paper = papers.get(chunk.paper_id)
            header = f"[Source {i}]"
            if include_citations and paper is not None:
                year = paper.year or "n.d."
                header = f"[{first_author_surname(paper)}, {year} - {paper.id}]"
            blocks.append(f"{header}\n{chunk.content.strip()}")
        return CHUNK_SEPARATOR.join(blocks)
