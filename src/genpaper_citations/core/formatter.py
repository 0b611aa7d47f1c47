"""
Citation style formatting.

Two formatting paths:
- Builtin: pure functions for APA, MLA, Chicago (author-date), Harvard,
  IEEE and Vancouver. No external style data.
- Style engine: arbitrary CSL styles loaded through the StyleRepository
  and rendered with citeproc-py. Any engine failure falls back to APA.

The CitationFormatter service owns the caches (in-text strings and
paper -> Citation conversions) and exposes explicit invalidation.
"""

from __future__ import annotations

import io
import logging
from typing import Callable, Iterable, Optional, Union

from citeproc import Citation as EngineCitation
from citeproc import CitationItem, CitationStylesBibliography, CitationStylesStyle
from citeproc import formatter as engine_formatter
from citeproc.source.json import CiteProcJSON

from .csl import citation_to_csl_json, paper_to_citation
from .matcher import normalize_text
from .models import Citation, CitationType, CSLName, PaperRecord
from .styles import (
    FALLBACK_STYLE,
    BuiltinStyle,
    ExternalStyle,
    ResolvedStyle,
    StyleRepository,
    is_numeric_style,
    resolve_style,
    style_key,
)

logger = logging.getLogger("genpaper-citation-server")

ANONYMOUS = "Anonymous"
UNASSIGNED = "[?]"
# Rendered in-text strings that mean the engine produced nothing useful
EMPTY_RENDERINGS = {"", "()", "[]", "(, )", "(,)", "( )"}


# ==================== Name helpers ====================


def _family(name: CSLName) -> str:
    return name.display_family()


def _given_first(name: CSLName) -> str:
    """'Jane Smith'."""
    if name.family:
        return f"{name.given} {name.family}" if name.given else name.family
    return name.literal or "Unknown"


def _family_first(name: CSLName) -> str:
    """'Smith, Jane'."""
    if name.family:
        return f"{name.family}, {name.given}" if name.given else name.family
    return name.literal or "Unknown"


def _family_initials(name: CSLName, comma: bool = True) -> str:
    """'Smith, J.' (comma) or 'Smith J' (Vancouver)."""
    if not name.family:
        return name.literal or "Unknown"
    initials = name.initials()
    if not initials:
        return name.family
    if comma:
        return f"{name.family}, {initials}"
    return f"{name.family} {initials.replace('.', '').replace(' ', '')}"


def _initials_family(name: CSLName) -> str:
    """'J. Smith'."""
    if not name.family:
        return name.literal or "Unknown"
    initials = name.initials()
    return f"{initials} {name.family}" if initials else name.family


def in_text_names(authors: list[CSLName], joiner: str) -> str:
    """
    Author names for in-text citations.

    1 author: surname; 2: 'A{joiner}B'; 3+: 'A et al.'; none: 'Anonymous'.
    """
    families = [_family(a) for a in authors]
    if not families:
        return ANONYMOUS
    if len(families) == 1:
        return families[0]
    if len(families) == 2:
        return f"{families[0]}{joiner}{families[1]}"
    return f"{families[0]} et al."


def _end(text: str) -> str:
    """Terminate with a single period."""
    text = text.strip()
    if not text:
        return ""
    return text if text[-1] in ".?!" else f"{text}."


def _title(citation: Citation) -> str:
    return citation.title.strip().rstrip(".") or "Untitled"


def _link(citation: Citation) -> str:
    if citation.doi:
        return f"https://doi.org/{citation.doi}"
    return citation.url or ""


def _join(*parts: str) -> str:
    return " ".join(p for p in parts if p)


# ==================== In-text (builtin) ====================


def _apa_in_text(c: Citation, page: Optional[str]) -> str:
    suffix = f", p. {page}" if page else ""
    return f"({in_text_names(c.authors, ' & ')}, {c.year_text}{suffix})"


def _mla_in_text(c: Citation, page: Optional[str]) -> str:
    suffix = f" {page}" if page else ""
    return f"({in_text_names(c.authors, ' and ')}{suffix})"


def _chicago_in_text(c: Citation, page: Optional[str]) -> str:
    suffix = f", {page}" if page else ""
    return f"({in_text_names(c.authors, ' and ')} {c.year_text}{suffix})"


def _harvard_in_text(c: Citation, page: Optional[str]) -> str:
    suffix = f", p. {page}" if page else ""
    return f"({in_text_names(c.authors, ' and ')} {c.year_text}{suffix})"


AUTHOR_DATE_IN_TEXT: dict[BuiltinStyle, Callable[[Citation, Optional[str]], str]] = {
    BuiltinStyle.APA: _apa_in_text,
    BuiltinStyle.MLA: _mla_in_text,
    BuiltinStyle.CHICAGO: _chicago_in_text,
    BuiltinStyle.HARVARD: _harvard_in_text,
}


def format_fallback(citation: Citation, page: Optional[str] = None) -> str:
    """Author-date rendering used whenever a richer path fails."""
    return _apa_in_text(citation, page)


def format_builtin_in_text(
    citation: Citation,
    style: BuiltinStyle,
    number: Optional[int] = None,
    page: Optional[str] = None,
) -> str:
    """In-text citation for a builtin style; numeric styles use number."""
    if style in (BuiltinStyle.IEEE, BuiltinStyle.VANCOUVER):
        return f"[{number}]" if number else UNASSIGNED
    return AUTHOR_DATE_IN_TEXT[style](citation, page)


# ==================== Bibliography (builtin) ====================


def _apa_authors(authors: list[CSLName]) -> str:
    names = [_family_initials(a) for a in authors]
    if not names:
        return ANONYMOUS
    if len(names) == 1:
        return names[0]
    if len(names) > 20:
        return ", ".join(names[:19]) + ", ... " + names[-1]
    return ", ".join(names[:-1]) + ", & " + names[-1]


def _apa_bibliography(c: Citation) -> str:
    head = f"{_apa_authors(c.authors)} ({c.year_text})."
    title = _title(c)

    if c.type == CitationType.BOOK:
        body = _join(f"*{title}*.", _end(c.publisher or ""))
    elif c.type == CitationType.PAPER_CONFERENCE:
        venue = ""
        if c.container_title:
            pages = f" (pp. {c.pages})" if c.pages else ""
            venue = f"In *{c.container_title}*{pages}."
        body = _join(f"{title}.", venue)
    elif c.type == CitationType.WEBPAGE:
        body = _join(f"*{title}*.", _end(c.container_title or ""))
    elif c.type == CitationType.THESIS:
        where = f", {c.institution}" if c.institution else ""
        body = f"*{title}* [Doctoral dissertation{where}]."
    else:
        source = ""
        if c.container_title:
            source = f"*{c.container_title}*"
            if c.volume:
                source += f", *{c.volume}*"
                if c.issue:
                    source += f"({c.issue})"
            if c.pages:
                source += f", {c.pages}"
            source += "."
        body = _join(f"{title}.", source)

    return _join(head, body, _link(c))


def _mla_authors(authors: list[CSLName]) -> str:
    if not authors:
        return ANONYMOUS
    first = _family_first(authors[0])
    if len(authors) == 1:
        return first
    if len(authors) == 2:
        return f"{first}, and {_given_first(authors[1])}"
    return f"{first}, et al"


def _mla_bibliography(c: Citation) -> str:
    head = _end(_mla_authors(c.authors))
    title = _title(c)
    year = str(c.year) if c.year else "n.d."

    if c.type == CitationType.BOOK:
        publisher = f"{c.publisher}, " if c.publisher else ""
        return _join(head, f"*{title}*.", f"{publisher}{year}.")
    if c.type == CitationType.THESIS:
        where = f"{c.institution}, " if c.institution else ""
        return _join(head, f"*{title}*.", f"{year}. {where}PhD dissertation.")

    details = []
    if c.container_title:
        details.append(f"*{c.container_title}*")
    if c.volume:
        details.append(f"vol. {c.volume}")
    if c.issue:
        details.append(f"no. {c.issue}")
    details.append(year)
    if c.pages:
        details.append(f"pp. {c.pages}")
    if c.type == CitationType.WEBPAGE and c.url:
        details.append(c.url)
    return _join(head, f'"{title}."', ", ".join(details) + ".")


def _chicago_authors(authors: list[CSLName]) -> str:
    if not authors:
        return ANONYMOUS
    names = [_family_first(authors[0])] + [_given_first(a) for a in authors[1:]]
    if len(names) == 1:
        return names[0]
    if len(names) == 2:
        return f"{names[0]}, and {names[1]}"
    if len(names) > 10:
        return ", ".join(names[:7]) + ", et al"
    return ", ".join(names[:-1]) + ", and " + names[-1]


def _chicago_bibliography(c: Citation) -> str:
    head = f"{_end(_chicago_authors(c.authors))} {c.year_text}."
    title = _title(c)

    if c.type == CitationType.BOOK:
        body = _join(f"*{title}*.", _end(c.publisher or ""))
    elif c.type == CitationType.THESIS:
        where = f" {c.institution}." if c.institution else ""
        body = f'"{title}." PhD diss.,{where}' if where else f'"{title}." PhD diss.'
    else:
        source = ""
        if c.container_title:
            source = f"*{c.container_title}*"
            if c.volume:
                source += f" {c.volume}"
            if c.issue:
                source += f", no. {c.issue}"
            if c.pages:
                source += f": {c.pages}"
            source += "."
        body = _join(f'"{title}."', source)

    return _join(head, body, _link(c))


def _harvard_authors(authors: list[CSLName]) -> str:
    names = [_family_initials(a) for a in authors]
    if not names:
        return ANONYMOUS
    if len(names) == 1:
        return names[0]
    return ", ".join(names[:-1]) + " and " + names[-1]


def _harvard_bibliography(c: Citation) -> str:
    head = f"{_harvard_authors(c.authors)} ({c.year_text})"
    title = _title(c)

    if c.type in (CitationType.BOOK, CitationType.THESIS, CitationType.WEBPAGE):
        body = f"*{title}*."
        if c.publisher or c.institution:
            body += f" {c.publisher or c.institution}."
    else:
        source = f"'{title}'"
        if c.container_title:
            source += f", *{c.container_title}*"
            if c.volume:
                source += f", {c.volume}"
                if c.issue:
                    source += f"({c.issue})"
        if c.pages:
            source += f", pp. {c.pages}"
        body = source + "."

    link = f"doi:{c.doi}." if c.doi else (f"Available at: {c.url}." if c.url else "")
    return _join(head, body, link)


def _ieee_authors(authors: list[CSLName]) -> str:
    names = [_initials_family(a) for a in authors]
    if not names:
        return ANONYMOUS
    if len(names) > 6:
        return f"{names[0]} et al."
    if len(names) == 1:
        return names[0]
    if len(names) == 2:
        return f"{names[0]} and {names[1]}"
    return ", ".join(names[:-1]) + ", and " + names[-1]


def _ieee_bibliography(c: Citation, number: Optional[int]) -> str:
    label = f"[{number}]" if number else UNASSIGNED
    parts = [_ieee_authors(c.authors), f'"{_title(c)},"']
    details = []
    if c.container_title:
        details.append(f"*{c.container_title}*")
    if c.volume:
        details.append(f"vol. {c.volume}")
    if c.issue:
        details.append(f"no. {c.issue}")
    if c.pages:
        details.append(f"pp. {c.pages}")
    details.append(c.year_text)
    text = f"{parts[0]}, {parts[1]} " + ", ".join(details) + "."
    if c.doi:
        text += f" doi: {c.doi}."
    return f"{label} {text}"


def _vancouver_bibliography(c: Citation, number: Optional[int]) -> str:
    label = f"{number}." if number else UNASSIGNED
    names = [_family_initials(a, comma=False) for a in c.authors]
    if not names:
        authors = ANONYMOUS
    elif len(names) > 6:
        authors = ", ".join(names[:6]) + ", et al"
    else:
        authors = ", ".join(names)

    source = f" {c.container_title}." if c.container_title else ""
    issue = f"({c.issue})" if c.issue else ""
    volume = f";{c.volume}{issue}" if c.volume else ""
    pages = f":{c.pages}" if c.pages else ""
    text = f"{_end(authors)} {_title(c)}.{source} {c.year_text}{volume}{pages}."
    if c.doi:
        text += f" doi:{c.doi}"
    return f"{label} {text}"


AUTHOR_DATE_BIBLIOGRAPHY: dict[BuiltinStyle, Callable[[Citation], str]] = {
    BuiltinStyle.APA: _apa_bibliography,
    BuiltinStyle.MLA: _mla_bibliography,
    BuiltinStyle.CHICAGO: _chicago_bibliography,
    BuiltinStyle.HARVARD: _harvard_bibliography,
}


def format_builtin_bibliography_entry(
    citation: Citation,
    style: BuiltinStyle,
    number: Optional[int] = None,
) -> str:
    """Bibliography entry for a builtin style."""
    if style == BuiltinStyle.IEEE:
        return _ieee_bibliography(citation, number)
    if style == BuiltinStyle.VANCOUVER:
        return _vancouver_bibliography(citation, number)
    return AUTHOR_DATE_BIBLIOGRAPHY[style](citation)


def compress_numbers(numbers: Iterable[int]) -> str:
    """
    Render citation numbers as a numeric in-text citation.

    Runs of three or more consecutive numbers collapse to a range:
    {1,2,3} -> '[1-3]', {1,3,5} -> '[1, 3, 5]', {} -> '[?]'.
    """
    ordered = sorted(set(n for n in numbers if n))
    if not ordered:
        return UNASSIGNED

    groups: list[list[int]] = [[ordered[0]]]
    for n in ordered[1:]:
        if n == groups[-1][-1] + 1:
            groups[-1].append(n)
        else:
            groups.append([n])

    parts = []
    for group in groups:
        if len(group) > 2:
            parts.append(f"{group[0]}-{group[-1]}")
        else:
            parts.extend(str(n) for n in group)
    return f"[{', '.join(parts)}]"


# ==================== Caches ====================


class CitationCache:
    """
    In-process caches owned by one formatter.

    - inline: (reference id, style id) -> rendered in-text string
    - citations: paper id -> Citation derived from the paper record
    """

    def __init__(self):
        self.inline: dict[tuple[str, str], str] = {}
        self.citations: dict[str, Citation] = {}
        self.hits = 0
        self.misses = 0

    def get_inline(self, reference_id: str, style_id: str) -> Optional[str]:
        value = self.inline.get((reference_id, style_id))
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
        return value

    def set_inline(self, reference_id: str, style_id: str, value: str) -> None:
        self.inline[(reference_id, style_id)] = value

    def clear(self) -> None:
        """Drop every rendered in-text string (e.g. the active style changed)."""
        self.inline.clear()

    def clear_for_key(self, reference_id: str) -> None:
        """Forget everything derived from one reference."""
        self.citations.pop(reference_id, None)
        for key in [k for k in self.inline if k[0] == reference_id]:
            del self.inline[key]

    def stats(self) -> dict[str, int]:
        return {
            "inline_entries": len(self.inline),
            "citation_entries": len(self.citations),
            "hits": self.hits,
            "misses": self.misses,
        }


# ==================== Formatter service ====================


CitationLike = Union[Citation, PaperRecord]


class CitationFormatter:
    """
    Formats citations in any supported style.

    Builtin styles render directly. External CSL styles render through
    the style engine once the StyleRepository has loaded them; until then
    (or when the engine fails) output falls back to APA.

    Example usage:
        formatter = CitationFormatter()
        formatter.format_inline(citation, "apa")          # '(Smith, 2023)'
        formatter.format_inline_multiple(cits, "ieee", {"a": 1, "b": 2, "c": 3})  # '[1-3]'
    """

    def __init__(
        self,
        repository: Optional[StyleRepository] = None,
        cache: Optional[CitationCache] = None,
    ):
        self.repository = repository or StyleRepository()
        self.cache = cache or CitationCache()
        self._engine_styles: dict[str, CitationStylesStyle] = {}

    # ==================== Conversion ====================

    def to_citation(self, item: CitationLike) -> Citation:
        """Citation for a paper record, cached by paper id."""
        if isinstance(item, Citation):
            return item
        cached = self.cache.citations.get(item.id)
        if cached is None:
            cached = paper_to_citation(item)
            self.cache.citations[item.id] = cached
        return cached

    def _resolve(self, style: Union[str, ResolvedStyle]) -> ResolvedStyle:
        if isinstance(style, (BuiltinStyle, ExternalStyle)):
            return style
        return resolve_style(style)

    async def ensure_style(self, style: str) -> str:
        """Fetch-or-fallback; returns the style id usable for formatting."""
        return await self.repository.ensure_style(style)

    def is_style_available(self, style: str) -> bool:
        return self.repository.is_style_available(style)

    # ==================== In-text ====================

    def format_inline(
        self,
        item: CitationLike,
        style: Union[str, ResolvedStyle] = "apa",
        citation_numbers: Optional[dict[str, int]] = None,
        page: Optional[str] = None,
    ) -> str:
        """
        Render one in-text citation.

        Args:
            item: Citation or paper record.
            style: Style identifier or resolved style.
            citation_numbers: reference id -> number, for numeric styles.
            page: Optional page locator (author-date styles).

        Returns:
            The rendered string; never empty.
        """
        citation = self.to_citation(item)
        resolved = self._resolve(style)

        if is_numeric_style(resolved):
            number = (citation_numbers or {}).get(citation.id)
            return f"[{number}]" if number else UNASSIGNED

        key = style_key(resolved)
        if page is None:
            cached = self.cache.get_inline(citation.id, key)
            if cached is not None:
                return cached

        if isinstance(resolved, BuiltinStyle):
            rendered = format_builtin_in_text(citation, resolved, page=page)
        else:
            rendered = self._engine_in_text(citation, resolved.style_id)
            if rendered is None or rendered.strip() in EMPTY_RENDERINGS:
                rendered = format_fallback(citation, page)

        if page is None:
            self.cache.set_inline(citation.id, key, rendered)
        return rendered

    def format_inline_multiple(
        self,
        items: Iterable[CitationLike],
        style: Union[str, ResolvedStyle] = "apa",
        citation_numbers: Optional[dict[str, int]] = None,
    ) -> str:
        """
        Render several citations cited together.

        Numeric styles: sorted numbers with ranges ('[1-3]', '[1, 3, 5]').
        Author-date styles: '(Smith, 2020; Lee, 2021)'.
        """
        citations = [self.to_citation(i) for i in items]
        resolved = self._resolve(style)

        if is_numeric_style(resolved):
            numbers = citation_numbers or {}
            return compress_numbers(numbers.get(c.id, 0) for c in citations)

        if not citations:
            return ""

        inner = []
        for citation in citations:
            rendered = self.format_inline(citation, resolved)
            if rendered.startswith("(") and rendered.endswith(")"):
                rendered = rendered[1:-1]
            inner.append(rendered)
        return f"({'; '.join(inner)})"

    # ==================== Bibliography ====================

    def format_bibliography_entry(
        self,
        item: CitationLike,
        style: Union[str, ResolvedStyle] = "apa",
        number: Optional[int] = None,
    ) -> str:
        citation = self.to_citation(item)
        resolved = self._resolve(style)
        if isinstance(resolved, ExternalStyle):
            entries = self._engine_bibliography([citation], resolved.style_id)
            if entries:
                return entries[0]
            resolved = resolve_style(FALLBACK_STYLE)
        return format_builtin_bibliography_entry(citation, resolved, number)

    def format_bibliography(
        self,
        items: Iterable[CitationLike],
        style: Union[str, ResolvedStyle] = "apa",
        citation_numbers: Optional[dict[str, int]] = None,
    ) -> list[str]:
        """
        Render a deduplicated, ordered bibliography.

        Numeric styles sort by citation number (unnumbered last, then
        numbered in order of appearance when no map is given). Author-date
        styles sort by first author surname, entries without authors last.
        """
        resolved = self._resolve(style)
        citations = self._dedupe(self.to_citation(i) for i in items)
        numeric = is_numeric_style(resolved)

        if numeric:
            numbers = dict(citation_numbers or {})
            if not numbers:
                numbers = {c.id: i for i, c in enumerate(citations, 1)}
            citations.sort(key=lambda c: numbers.get(c.id, 999))
        else:
            numbers = citation_numbers or {}
            citations.sort(key=self._author_sort_key)

        entries: list[str] = []
        if isinstance(resolved, ExternalStyle):
            rendered = self._engine_bibliography(citations, resolved.style_id)
            if rendered:
                entries = rendered
            else:
                resolved = resolve_style(FALLBACK_STYLE)

        if not entries:
            entries = [
                format_builtin_bibliography_entry(c, resolved, numbers.get(c.id))
                for c in citations
            ]

        unique: list[str] = []
        for entry in entries:
            if entry not in unique:
                unique.append(entry)
        return unique

    @staticmethod
    def _bibliography_key(citation: Citation) -> str:
        if citation.doi:
            return f"doi:{citation.doi.lower()}"
        family = citation.authors[0].display_family().lower() if citation.authors else ""
        return f"{family}|{citation.year or ''}|{normalize_text(citation.title)}"

    def _dedupe(self, citations: Iterable[Citation]) -> list[Citation]:
        seen_ids: set[str] = set()
        seen_keys: set[str] = set()
        unique = []
        for citation in citations:
            key = self._bibliography_key(citation)
            if citation.id in seen_ids or key in seen_keys:
                continue
            seen_ids.add(citation.id)
            seen_keys.add(key)
            unique.append(citation)
        return unique

    @staticmethod
    def _author_sort_key(citation: Citation) -> tuple:
        if citation.authors:
            return (0, citation.authors[0].display_family().lower(), citation.year or 0, citation.title.lower())
        return (1, "", citation.year or 0, citation.title.lower())

    # ==================== Style engine ====================

    def _engine_style(self, style_id: str) -> Optional[CitationStylesStyle]:
        style = self._engine_styles.get(style_id)
        if style is not None:
            return style
        xml = self.repository.get_style_xml(style_id)
        if xml is None:
            logger.debug(f"Style {style_id} not loaded, using builtin fallback")
            return None
        style = CitationStylesStyle(io.BytesIO(xml.encode("utf-8")), validate=False)
        self._engine_styles[style_id] = style
        return style

    def _engine_render(self, citations: list[Citation], style_id: str, in_text: bool) -> Optional[list[str]]:
        try:
            style = self._engine_style(style_id)
            if style is None:
                return None

            source = CiteProcJSON([citation_to_csl_json(c) for c in citations])
            bibliography = CitationStylesBibliography(style, source, engine_formatter.plain)
            cites = [EngineCitation([CitationItem(c.id.lower())]) for c in citations]
            for cite in cites:
                bibliography.register(cite)

            if in_text:
                return [str(bibliography.cite(cite, self._warn_missing)) for cite in cites]
            return [str(entry) for entry in bibliography.bibliography()]

        except Exception as e:
            logger.warning(f"Style engine failed for {style_id}, falling back to {FALLBACK_STYLE}: {e}")
            return None

    def _engine_in_text(self, citation: Citation, style_id: str) -> Optional[str]:
        rendered = self._engine_render([citation], style_id, in_text=True)
        return rendered[0] if rendered else None

    def _engine_bibliography(self, citations: list[Citation], style_id: str) -> Optional[list[str]]:
        if not citations:
            return []
        return self._engine_render(citations, style_id, in_text=False)

    @staticmethod
    def _warn_missing(citation_item) -> None:
        logger.warning(f"Style engine could not find reference: {citation_item.key}")

    # ==================== Cache control ====================

    def clear_caches(self) -> None:
        """Clear rendered in-text strings, e.g. when the active style changes."""
        self.cache.clear()
        self._engine_styles.clear()

    def clear_for_key(self, reference_id: str) -> None:
        """Invalidate everything cached for one reference."""
        self.cache.clear_for_key(reference_id)

    def cache_stats(self) -> dict[str, int]:
        stats = self.cache.stats()
        stats["engine_styles"] = len(self._engine_styles)
        return stats
