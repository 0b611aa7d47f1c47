"""
Paper record to CSL conversion.

Parses free-form author strings into CSL names, infers the CSL item
type from the venue, and renders CSL-JSON for the style engine.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from .models import Citation, CitationType, CSLName, PaperRecord

CONFERENCE_VENUES = {
    "icml", "iclr", "nips", "neurips", "siggraph", "cvpr", "iccv", "eccv",
    "aaai", "ijcai", "acl", "emnlp", "naacl", "icdm", "kdd", "www",
}
CONFERENCE_KEYWORDS = ("proceedings", "conference", "workshop", "symposium", "summit", "meeting")
PREPRINT_KEYWORDS = ("arxiv", "biorxiv", "medrxiv", "preprint", "prepub")
THESIS_KEYWORDS = ("thesis", "dissertation")
BOOK_KEYWORDS = ("press", "publishing", "publishers", "books")
REPORT_KEYWORDS = ("technical report", "working paper", "white paper")

# Lower-case particles that belong to the family name ("van der Berg")
NAME_PARTICLES = {
    "van", "der", "de", "la", "del", "della", "von", "di", "du", "le", "da", "dos", "das",
    "el", "al", "bin", "ibn",
}


def parse_author_name(name: str) -> CSLName:
    """
    Parse an author string into a CSL name.

    Handles "Last, First", "First Last", particles ("Ludwig van Beethoven"
    -> family "van Beethoven") and single names (kept as literal).
    """
    trimmed = " ".join((name or "").split())
    if not trimmed:
        return CSLName(literal="Unknown")

    if "," in trimmed:
        family, given = trimmed.split(",", 1)
        family = family.strip()
        if family:
            return CSLName(family=family, given=given.strip() or None)

    parts = trimmed.split(" ")
    if len(parts) == 1:
        return CSLName(literal=trimmed)

    family_start = len(parts) - 1
    for i in range(len(parts) - 2, 0, -1):
        if parts[i].lower() in NAME_PARTICLES:
            family_start = i
        else:
            break

    return CSLName(
        family=" ".join(parts[family_start:]),
        given=" ".join(parts[:family_start]),
    )


def _has_word(text: str, words) -> bool:
    return any(re.search(rf"\b{re.escape(w)}\b", text) for w in words)


def determine_citation_type(
    venue: Optional[str],
    url: Optional[str] = None,
    doi: Optional[str] = None,
    publisher: Optional[str] = None,
) -> CitationType:
    """Infer a CSL item type from venue and identifiers."""
    lower = (venue or "").lower()

    if lower:
        if _has_word(lower, CONFERENCE_VENUES) or any(k in lower for k in CONFERENCE_KEYWORDS):
            return CitationType.PAPER_CONFERENCE
        if any(k in lower for k in THESIS_KEYWORDS):
            return CitationType.THESIS
        if any(k in lower for k in PREPRINT_KEYWORDS):
            return CitationType.MANUSCRIPT
        if any(k in lower for k in REPORT_KEYWORDS):
            return CitationType.REPORT
        return CitationType.ARTICLE_JOURNAL

    if publisher and any(k in publisher.lower() for k in BOOK_KEYWORDS):
        return CitationType.BOOK
    if url and not doi:
        return CitationType.WEBPAGE
    return CitationType.ARTICLE_JOURNAL


def paper_to_citation(paper: PaperRecord) -> Citation:
    """Derive an immutable Citation from a stored paper record."""
    ctype = determine_citation_type(paper.venue, paper.url, paper.doi, paper.publisher)
    authors = [parse_author_name(a) for a in paper.authors if a and a.strip()]

    return Citation(
        id=paper.id,
        title=(paper.title or "").strip(),
        authors=authors,
        year=paper.year,
        container_title=paper.venue if ctype != CitationType.THESIS else None,
        doi=paper.doi,
        url=paper.url,
        volume=paper.volume,
        issue=paper.issue,
        pages=paper.pages,
        publisher=paper.publisher,
        institution=paper.publisher if ctype == CitationType.THESIS else None,
        type=ctype,
        abstract=paper.abstract,
    )


def citation_to_csl_json(citation: Citation) -> dict[str, Any]:
    """
    Render a Citation as a CSL-JSON item.

    The id is lower-cased since the style engine matches keys
    case-insensitively.
    """
    item: dict[str, Any] = {
        "id": citation.id.lower(),
        "type": citation.type.value,
        "title": citation.title,
    }

    authors = []
    for name in citation.authors:
        if name.family:
            entry = {"family": name.family}
            if name.given:
                entry["given"] = name.given
            authors.append(entry)
        elif name.literal:
            authors.append({"literal": name.literal})
    if authors:
        item["author"] = authors

    if citation.year:
        item["issued"] = {"date-parts": [[citation.year]]}
    if citation.container_title:
        item["container-title"] = citation.container_title
    if citation.doi:
        item["DOI"] = citation.doi
    if citation.url:
        item["URL"] = citation.url
    if citation.volume:
        item["volume"] = citation.volume
    if citation.issue:
        item["issue"] = citation.issue
    if citation.pages:
        item["page"] = citation.pages
    if citation.publisher:
        item["publisher"] = citation.publisher

    return item
