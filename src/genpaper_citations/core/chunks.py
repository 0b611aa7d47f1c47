"""
Chunk splitting and metadata extraction.

Paper text is split into overlapping, sentence-aware windows. Each chunk
gets retrieval metadata: detected section, presence flags for citations,
figures, data and concluding language, a complexity score and key terms.

Section detection only looks at the part of a chunk after its overlap
prefix, so text carried over from the previous section ("In conclusion,
...") does not mislabel the chunk.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Iterable, Optional

from .errors import ChunkingError
from .models import Chunk, ChunkMetadata, SectionType

logger = logging.getLogger("genpaper-citation-server")

HEADER_REGION_LENGTH = 200
MAX_KEY_TERMS = 5

# Checked in order; anchored at the start of the header region
_SECTION_HEADERS: dict[SectionType, list[str]] = {
    SectionType.ABSTRACT: [r"abstract\b", r"summary\b"],
    SectionType.INTRODUCTION: [r"introduction\b", r"\d+\.?\s*introduction\b"],
    SectionType.BACKGROUND: [r"background\b", r"theoretical\s+framework", r"context\b"],
    SectionType.LITERATURE_REVIEW: [
        r"literature\s+review",
        r"related\s+work",
        r"prior\s+work",
        r"review\s+of",
    ],
    SectionType.METHODS: [
        r"method(s|ology)?\b",
        r"materials?\s+(and|&)\s+methods?",
        r"experimental\s+(design|setup|methods?)",
        r"study\s+design",
        r"data\s+collection",
        r"participants?\b",
        r"procedure\b",
    ],
    SectionType.RESULTS: [r"results?\b", r"findings?\b", r"analysis\b", r"outcomes?\b"],
    SectionType.DISCUSSION: [r"discussion\b", r"interpretation\b", r"implications?\b"],
    SectionType.CONCLUSION: [
        r"conclusions?\b",
        r"concluding\s+remarks",
        r"summary\s+(and|&)\s+conclusion",
        r"future\s+(work|directions?|research)",
    ],
    SectionType.REFERENCES: [r"references?\b", r"bibliography\b", r"works?\s+cited"],
    SectionType.APPENDIX: [r"appendix", r"supplementary", r"supporting\s+information"],
}
SECTION_PATTERNS: dict[SectionType, list[re.Pattern]] = {
    section: [re.compile(r"^(?:#+\s*)?" + p, re.IGNORECASE) for p in patterns]
    for section, patterns in _SECTION_HEADERS.items()
}

CITATION_PATTERNS = [
    re.compile(r"\[\d+\]"),
    re.compile(r"\[\d+[-,]\d+\]"),
    re.compile(r"\([A-Z][a-z]+(?:\s+et\s+al\.?)?,?\s*\d{4}\)"),
    re.compile(r"[A-Z][a-z]+\s+(?:et\s+al\.?\s+)?\(\d{4}\)"),
]

FIGURE_PATTERNS = [
    re.compile(r"\bFig(?:ure)?\.?\s*\d+", re.IGNORECASE),
    re.compile(r"\bTable\s*\d+", re.IGNORECASE),
    re.compile(r"\bChart\s*\d+", re.IGNORECASE),
    re.compile(r"\bDiagram\s*\d+", re.IGNORECASE),
    re.compile(r"\bPlot\s*\d+", re.IGNORECASE),
    re.compile(r"\bScheme\s*\d+", re.IGNORECASE),
]

DATA_PATTERNS = [
    re.compile(r"\d+(?:\.\d+)?%"),
    re.compile(r"\bp\s*[<>=]\s*0?\.\d+", re.IGNORECASE),
    re.compile(r"\bCI\s*[:=]?\s*[\[(]?[\d.]+", re.IGNORECASE),
    re.compile(r"\bn\s*=\s*\d+", re.IGNORECASE),
    re.compile(r"\br\s*=\s*-?0?\.\d+", re.IGNORECASE),
    re.compile(r"\bM\s*=\s*[\d.]+", re.IGNORECASE),
    re.compile(r"\bSD\s*=\s*[\d.]+", re.IGNORECASE),
    re.compile(r"±\s*[\d.]+"),
    re.compile(r"\d+\s*(?:mg|ml|kg|cm|mm|μm|nm)\b", re.IGNORECASE),
]

CONCLUSION_PATTERNS = [
    re.compile(p)
    for p in (
        r"\bin\s+conclusion\b",
        r"\bto\s+summarize\b",
        r"\bin\s+summary\b",
        r"\bwe\s+conclude\s+that\b",
        r"\bthis\s+study\s+demonstrates?\b",
        r"\bour\s+findings?\s+suggest\b",
        r"\bfuture\s+research\s+should\b",
        r"\bfuture\s+work\b",
        r"\blimitations?\s+of\s+this\s+study\b",
    )
]

ABSTRACT_HINTS = ("abstract", "this paper", "this study", "we present", "we propose")
METHODS_HINTS = ("participants were", "we recruited", "data was collected", "the experiment", "the procedure")
RESULTS_HINTS = ("the results show", "we found that", "analysis revealed")
DISCUSSION_HINTS = (
    "these findings suggest",
    "this is consistent with",
    "in contrast to",
    "one possible explanation",
)

STOP_WORDS = {
    "this", "that", "these", "those", "which", "where", "when", "what", "while",
    "with", "from", "into", "have", "been", "were", "being", "would", "could",
    "should", "their", "there", "other", "about", "more", "most", "also", "such",
    "than", "then", "some", "only", "very", "just", "over", "under", "before",
    "after", "between", "through", "during", "each", "both", "however", "therefore",
    "thus", "hence", "because", "although", "though", "since", "until", "within",
}


def _any(patterns: Iterable[re.Pattern], text: str) -> bool:
    return any(p.search(text) for p in patterns)


def detect_section_type(
    content: str,
    chunk_index: int = 0,
    overlap_length: int = 0,
) -> Optional[SectionType]:
    """
    Detect the section a chunk belongs to.

    Only text after the overlap prefix is inspected. Header patterns are
    matched against its first 200 characters; content heuristics run when
    no header matches.
    """
    new_content = content[overlap_length:] if overlap_length > 0 else content
    header_region = new_content.lstrip()[:HEADER_REGION_LENGTH]

    for section, patterns in SECTION_PATTERNS.items():
        if _any(patterns, header_region):
            return section

    lower = new_content.lower()

    if chunk_index == 0 and any(h in lower for h in ABSTRACT_HINTS):
        return SectionType.ABSTRACT

    if any(h in lower for h in METHODS_HINTS) or re.search(r"\d+\s+participants", lower):
        return SectionType.METHODS

    data_hits = sum(1 for p in DATA_PATTERNS if p.search(new_content))
    if data_hits >= 2 or any(h in lower for h in RESULTS_HINTS):
        return SectionType.RESULTS

    if any(h in lower for h in DISCUSSION_HINTS):
        return SectionType.DISCUSSION

    return None


def calculate_complexity(content: str) -> float:
    """
    Reading complexity in [0, 1].

    0.6 x normalised words-per-sentence (35 words = 1.0) plus
    0.4 x normalised long-word ratio (40% words of 8+ letters = 1.0).
    """
    sentences = [s for s in re.split(r"[.!?]+", content) if s.strip()]
    if not sentences:
        return 0.5

    words = content.split()
    avg_words = len(words) / len(sentences)
    long_words = sum(1 for w in words if len(re.sub(r"[^a-zA-Z]", "", w)) >= 8)
    long_ratio = long_words / max(1, len(words))

    score = min(1.0, avg_words / 35) * 0.6 + min(1.0, long_ratio / 0.4) * 0.4
    return max(0.0, min(1.0, score))


def extract_key_terms(content: str, max_terms: int = MAX_KEY_TERMS) -> list[str]:
    """Most frequent content words (4+ characters, stop words removed)."""
    words = re.sub(r"[^a-z0-9\s-]", " ", content.lower()).split()
    counts = Counter(w for w in words if len(w) >= 4 and w not in STOP_WORDS)
    return [term for term, _ in counts.most_common(max_terms)]


def extract_metadata(
    content: str,
    chunk_index: int = 0,
    overlap_length: int = 0,
) -> ChunkMetadata:
    """
    Extract retrieval metadata from a chunk.

    Args:
        content: Chunk text, overlap prefix included.
        chunk_index: Position of the chunk in its paper.
        overlap_length: Characters at the start shared with the previous chunk.

    Returns:
        ChunkMetadata. Presence flags look at the full content; section
        detection skips the overlap.
    """
    return ChunkMetadata(
        section_type=detect_section_type(content, chunk_index, overlap_length),
        has_citations=_any(CITATION_PATTERNS, content),
        has_figures=_any(FIGURE_PATTERNS, content),
        has_data=_any(DATA_PATTERNS, content),
        is_conclusion=_any(CONCLUSION_PATTERNS, content.lower()),
        complexity=calculate_complexity(content.strip()),
        key_terms=extract_key_terms(content),
    )


def extract_metadata_for_chunks(chunks: Iterable[Chunk]) -> list[ChunkMetadata]:
    """Metadata for each chunk, in order."""
    return [extract_metadata(c.content, c.chunk_index, c.overlap_length) for c in chunks]


def normalize_paper_text(text: str) -> str:
    """Normalise line endings and whitespace before chunking."""
    text = text.replace("\r\n", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    return text.strip()


def split_into_chunks(
    text: str,
    paper_id: str,
    chunk_size: int = 1000,
    overlap: int = 100,
) -> list[Chunk]:
    """
    Split paper text into overlapping chunks with metadata.

    Windows of chunk_size characters break at the last sentence end
    (". ", "! ", "? ") when it lies beyond 80% of the window. Each next
    window starts overlap characters before the previous one ended.

    Raises:
        ChunkingError: If chunk_size is not positive or overlap is
            negative or not smaller than chunk_size.
    """
    if chunk_size <= 0:
        raise ChunkingError(f"Chunk size must be positive, got {chunk_size}")
    if overlap < 0 or overlap >= chunk_size:
        raise ChunkingError(f"Overlap must be in [0, {chunk_size}), got {overlap}")

    if not text or not text.strip():
        return []

    chunks: list[Chunk] = []
    position = 0
    previous_end = 0

    while position < len(text):
        end = min(position + chunk_size, len(text))
        window = text[position:end]

        if end < len(text):
            boundary = max(window.rfind(". "), window.rfind("! "), window.rfind("? "))
            if boundary > len(window) * 0.8:
                window = window[:boundary + 1]

        index = len(chunks)
        overlap_length = max(0, previous_end - position) if index > 0 else 0
        chunks.append(
            Chunk(
                id=f"{paper_id}-chunk-{index}",
                paper_id=paper_id,
                chunk_index=index,
                content=window,
                start_position=position,
                end_position=position + len(window),
                overlap_length=overlap_length,
                metadata=extract_metadata(window, index, overlap_length),
            )
        )

        previous_end = position + len(window)
        if previous_end >= len(text):
            break

        step = len(window) - overlap
        position += step if step > 0 else len(window)

    logger.debug(f"Split paper {paper_id} into {len(chunks)} chunks")
    return chunks
