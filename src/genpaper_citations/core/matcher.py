"""
Citation matching.

Finds which known citation a fragment of free text refers to.
Strategies are tried in priority order:

1. DOI: exact DOI lookup (confidence 0.95)
2. Author-year: "Smith (2020)", "(Smith et al., 2020)", "Smith, 2020" (0.85)
3. Title: normalized containment + word Jaccard > 0.7 (score x 0.8)
4. Fuzzy: word Jaccard > 0.5 against title/authors/venue/abstract (score x 0.6)
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from typing import Callable, Iterable, Optional

from .models import Citation, CitationMatch, MatchType

logger = logging.getLogger("genpaper-citation-server")

DOI_PATTERN = re.compile(r"10\.\d{4,}/[-._;()/:a-zA-Z0-9]+")

AUTHOR_YEAR_PATTERNS = (
    # Smith (2020), Smith et al. (2020)
    re.compile(r"([A-Z][a-z]+)(?:\s+et\s+al\.?)?\s*\((\d{4})\)"),
    # (Smith, 2020), (Smith et al., 2020)
    re.compile(r"\(([A-Z][a-z]+)(?:\s+et\s+al\.?)?,?\s*(\d{4})\)"),
    # Smith, 2020, Smith et al. 2020
    re.compile(r"([A-Z][a-z]+)(?:\s+et\s+al\.?)?,?\s*(\d{4})"),
)

DOI_CONFIDENCE = 0.95
AUTHOR_YEAR_CONFIDENCE = 0.85
TITLE_THRESHOLD = 0.7
TITLE_WEIGHT = 0.8
FUZZY_THRESHOLD = 0.5
FUZZY_WEIGHT = 0.6


def normalize_text(text: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace."""
    text = re.sub(r"[^\w\s]", " ", (text or "").lower())
    return " ".join(text.split())


def _words(text: str) -> set[str]:
    return {w for w in normalize_text(text).split() if len(w) > 2}


def jaccard(a: str, b: str) -> float:
    """Word-set Jaccard similarity (words longer than two characters)."""
    words_a = _words(a)
    words_b = _words(b)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


class CitationMatcher:
    """
    Match free text against a known set of citations.

    Indexes (DOI, normalized title, author-year) are built once and
    rebuilt by update_citations without recreating the matcher.
    """

    def __init__(self, citations: Optional[Iterable[Citation]] = None):
        self.citations: list[Citation] = list(citations or [])
        # Ordered strategies sharing one signature: text -> matches
        self.strategies: tuple[Callable[[str], list[CitationMatch]], ...] = (
            self._match_doi,
            self._match_author_year,
            self._match_title,
            self._match_fuzzy,
        )
        self._build_indexes()

    def _build_indexes(self):
        """Pre-compute lookup tables for fast matching."""
        self.doi_index: dict[str, Citation] = {}
        self.title_index: dict[str, Citation] = {}
        self.author_year_index: dict[str, list[Citation]] = defaultdict(list)

        for citation in self.citations:
            if citation.doi:
                self.doi_index.setdefault(citation.doi.strip().lower(), citation)

            title = normalize_text(citation.title)
            if title:
                self.title_index.setdefault(title, citation)

            if citation.authors and citation.year:
                family = citation.authors[0].display_family().lower()
                if family != "unknown":
                    self.author_year_index[f"{family}_{citation.year}"].append(citation)

    def update_citations(self, citations: Iterable[Citation]) -> None:
        """Replace the citation set and rebuild every index."""
        self.citations = list(citations)
        self._build_indexes()
        logger.debug(f"Matcher indexes rebuilt for {len(self.citations)} citations")

    # ==================== Public API ====================

    def find_best_match(self, text: str) -> Optional[CitationMatch]:
        """
        Find the single most likely citation for text.

        The first strategy that yields any match wins; within that
        strategy the highest-confidence match is returned.
        """
        if not text or not self.citations:
            return None

        for strategy in self.strategies:
            matches = strategy(text)
            if matches:
                return max(matches, key=lambda m: m.confidence)
        return None

    def find_all_matches(
        self,
        text: str,
        min_confidence: float = 0.6,
    ) -> list[CitationMatch]:
        """
        Find every plausible citation for text.

        Unions all strategies, keeps one match per citation (by DOI,
        else title) with the highest confidence, drops matches below
        min_confidence, and sorts by confidence descending.
        """
        if not text or not self.citations:
            return []

        best: dict[str, CitationMatch] = {}
        for strategy in self.strategies:
            for match in strategy(text):
                key = match.citation.dedupe_key
                current = best.get(key)
                if current is None or match.confidence > current.confidence:
                    best[key] = match

        matches = [m for m in best.values() if m.confidence >= min_confidence]
        return sorted(matches, key=lambda m: m.confidence, reverse=True)

    def lookup_doi(self, doi: str) -> Optional[Citation]:
        """Exact, case-insensitive DOI lookup."""
        return self.doi_index.get(doi.strip().lower())

    def lookup_title(self, title: str) -> Optional[Citation]:
        """Exact normalized-title lookup, then title matching."""
        exact = self.title_index.get(normalize_text(title))
        if exact is not None:
            return exact
        matches = self._match_title(title)
        return max(matches, key=lambda m: m.confidence).citation if matches else None

    def get_stats(self) -> dict[str, int]:
        """Index sizes, for diagnostics."""
        return {
            "total_citations": len(self.citations),
            "doi_indexed": len(self.doi_index),
            "title_indexed": len(self.title_index),
            "author_year_indexed": len(self.author_year_index),
        }

    # ==================== Strategies ====================

    def _match_doi(self, text: str) -> list[CitationMatch]:
        matches = []
        seen = set()
        for raw in DOI_PATTERN.findall(text):
            doi = raw.rstrip(".,;:)").lower()
            if doi in seen:
                continue
            seen.add(doi)
            citation = self.doi_index.get(doi)
            if citation is not None:
                matches.append(
                    CitationMatch(
                        citation=citation,
                        confidence=DOI_CONFIDENCE,
                        match_type=MatchType.DOI,
                        matched_span=raw.rstrip(".,;:)"),
                    )
                )
        return matches

    def _match_author_year(self, text: str) -> list[CitationMatch]:
        matches = []
        seen = set()
        for pattern in AUTHOR_YEAR_PATTERNS:
            for found in pattern.finditer(text):
                key = f"{found.group(1).lower()}_{found.group(2)}"
                for citation in self.author_year_index.get(key, []):
                    if citation.id in seen:
                        continue
                    seen.add(citation.id)
                    matches.append(
                        CitationMatch(
                            citation=citation,
                            confidence=AUTHOR_YEAR_CONFIDENCE,
                            match_type=MatchType.AUTHOR_YEAR,
                            matched_span=found.group(0),
                        )
                    )
        return matches

    def _match_title(self, text: str) -> list[CitationMatch]:
        normalized = normalize_text(text)
        if not normalized:
            return []

        matches = []
        for title, citation in self.title_index.items():
            if title not in normalized and normalized not in title:
                continue
            score = jaccard(normalized, title)
            if score > TITLE_THRESHOLD:
                matches.append(
                    CitationMatch(
                        citation=citation,
                        confidence=score * TITLE_WEIGHT,
                        match_type=MatchType.TITLE,
                        matched_span=citation.title,
                    )
                )
        return matches

    def _match_fuzzy(self, text: str) -> list[CitationMatch]:
        best: Optional[CitationMatch] = None
        for citation in self.citations:
            score = jaccard(text, self._search_text(citation))
            if score > FUZZY_THRESHOLD and (best is None or score * FUZZY_WEIGHT > best.confidence):
                best = CitationMatch(
                    citation=citation,
                    confidence=score * FUZZY_WEIGHT,
                    match_type=MatchType.FUZZY,
                    matched_span=text,
                )
        return [best] if best else []

    @staticmethod
    def _search_text(citation: Citation) -> str:
        names = " ".join(
            " ".join(p for p in (a.given, a.family or a.literal) if p)
            for a in citation.authors
        )
        parts = [
            citation.title,
            names,
            citation.container_title or "",
            (citation.abstract or "")[:200],
        ]
        return " ".join(p for p in parts if p)
