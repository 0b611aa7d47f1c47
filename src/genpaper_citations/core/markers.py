"""
Citation marker protocol.

Markers are the textual placeholders a language model emits to indicate
a citation inside generated prose:

- Modern:   [@a1b2c3]                 (the only form we instruct models to emit)
- Legacy:   [CITE: a1b2c3]            (previously generated content)
- Placeholder: [[CITE:doi:10.1000/x]] or [[CITE:title:Some Title|context]]
  (before a reference is bound to a specific paper)

Each grammar lives in one table entry; extraction runs every entry and
merges the results, so adding a grammar never touches the scan logic.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Iterable, Optional, Union

from .models import Marker, MarkerGrammar, PlaceholderValidation, ReferenceType

logger = logging.getLogger("genpaper-citation-server")

REFERENCE_ID_PATTERN = r"[a-f0-9-]+"

MODERN_PATTERN = re.compile(r"\[@(" + REFERENCE_ID_PATTERN + r")\]")
LEGACY_PATTERN = re.compile(r"(?<!\[)\[CITE:\s*(" + REFERENCE_ID_PATTERN + r")\]", re.IGNORECASE)
PLACEHOLDER_PATTERN = re.compile(r"\[\[CITE:([^:\]|]+):([^\]|]+)\]\]")
PLACEHOLDER_CONTEXT_PATTERN = re.compile(r"\[\[CITE:([^:\]|]+):([^\]|]+)\|([^\]]+)\]\]")

# Anything that opens like a marker, used to count malformed ones
_ANY_PLACEHOLDER = re.compile(r"\[\[CITE:[^\]]*\]\]")
_ANY_LEGACY = re.compile(r"(?<!\[)\[CITE:[^\]]*\]", re.IGNORECASE)
_ANY_MODERN = re.compile(r"\[@[^\]\s]*\]")

_REFERENCE_ID = re.compile(r"^" + REFERENCE_ID_PATTERN + r"$")

# Lower-cased lookup for placeholder type names
_REFERENCE_TYPES = {t.value.lower(): t for t in ReferenceType}


def _parse_reference_type(raw: str) -> Optional[ReferenceType]:
    return _REFERENCE_TYPES.get(raw.strip().lower())


def _modern(match: re.Match) -> Optional[Marker]:
    return Marker(
        grammar=MarkerGrammar.MODERN,
        value=match.group(1),
        start=match.start(),
        end=match.end(),
        text=match.group(0),
    )


def _legacy(match: re.Match) -> Optional[Marker]:
    return Marker(
        grammar=MarkerGrammar.LEGACY,
        value=match.group(1).lower(),
        start=match.start(),
        end=match.end(),
        text=match.group(0),
    )


def _placeholder(match: re.Match) -> Optional[Marker]:
    ref_type = _parse_reference_type(match.group(1))
    if ref_type is None:
        return None
    return Marker(
        grammar=MarkerGrammar.PLACEHOLDER,
        reference_type=ref_type,
        value=match.group(2).strip(),
        start=match.start(),
        end=match.end(),
        text=match.group(0),
    )


def _placeholder_context(match: re.Match) -> Optional[Marker]:
    ref_type = _parse_reference_type(match.group(1))
    if ref_type is None:
        return None
    return Marker(
        grammar=MarkerGrammar.PLACEHOLDER_CONTEXT,
        reference_type=ref_type,
        value=match.group(2).strip(),
        context=match.group(3).strip(),
        start=match.start(),
        end=match.end(),
        text=match.group(0),
    )


# (grammar, pattern, parser); earlier entries win ties on overlapping spans
GRAMMARS: tuple[tuple[MarkerGrammar, re.Pattern, Callable[[re.Match], Optional[Marker]]], ...] = (
    (MarkerGrammar.PLACEHOLDER_CONTEXT, PLACEHOLDER_CONTEXT_PATTERN, _placeholder_context),
    (MarkerGrammar.PLACEHOLDER, PLACEHOLDER_PATTERN, _placeholder),
    (MarkerGrammar.LEGACY, LEGACY_PATTERN, _legacy),
    (MarkerGrammar.MODERN, MODERN_PATTERN, _modern),
)

_PRIORITY = {grammar: rank for rank, (grammar, _, _) in enumerate(GRAMMARS)}


def extract_markers(
    text: str,
    grammars: Optional[Iterable[MarkerGrammar]] = None,
) -> list[Marker]:
    """
    Find every citation marker in text.

    Args:
        text: Text to scan.
        grammars: Restrict the scan to these grammars (default: all).

    Returns:
        Markers sorted by start offset. Where two matches overlap, the
        context-bearing (then longer) one is kept.
    """
    if not text:
        return []

    wanted = set(grammars) if grammars is not None else None
    found: list[Marker] = []
    for grammar, pattern, parse in GRAMMARS:
        if wanted is not None and grammar not in wanted:
            continue
        for match in pattern.finditer(text):
            marker = parse(match)
            if marker is not None:
                found.append(marker)

    found.sort(key=lambda m: (m.start, _PRIORITY[m.grammar], -(m.end - m.start)))

    markers: list[Marker] = []
    for marker in found:
        if markers and marker.start < markers[-1].end:
            continue
        markers.append(marker)
    return markers


def has_markers(text: str) -> bool:
    """Cheap existence check for any well-formed marker."""
    if not text:
        return False
    return any(pattern.search(text) for _, pattern, _ in GRAMMARS)


_UNCARRIABLE = re.compile(r"[\[\]|]")


def _sanitize(value: str) -> str:
    return (
        value.replace("[", "(")
        .replace("]", ")")
        .replace("|", "/")
        .strip()
    )


def build_marker(
    reference_type: Union[ReferenceType, str],
    value: str,
    context: Optional[str] = None,
) -> str:
    """
    Build a pre-resolution placeholder marker.

    Args:
        reference_type: One of doi, paperId, title, url.
        value: Reference value. Must not contain brackets or pipes.
        context: Optional snippet for later disambiguation. Brackets and
                 pipes are replaced so the marker always parses back.

    Returns:
        '[[CITE:type:value]]' or '[[CITE:type:value|context]]'.

    Raises:
        ValueError: If the type is unknown, the value is empty, or the
            value contains characters the placeholder grammar cannot carry.
    """
    if isinstance(reference_type, ReferenceType):
        ref_type = reference_type
    else:
        ref_type = _parse_reference_type(str(reference_type))
        if ref_type is None:
            raise ValueError(f"Unknown reference type: {reference_type}")

    clean_value = (value or "").strip()
    if not clean_value:
        raise ValueError("Marker value must not be empty")
    if _UNCARRIABLE.search(clean_value):
        raise ValueError(f"Marker value cannot contain brackets or pipes: {value!r}")

    if context:
        clean_context = _sanitize(context)
        if clean_context:
            return f"[[CITE:{ref_type.value}:{clean_value}|{clean_context}]]"
    return f"[[CITE:{ref_type.value}:{clean_value}]]"


def build_reference_marker(reference_id: str) -> str:
    """Build the modern '[@id]' marker for a bound reference id."""
    ref = reference_id.strip().lower()
    if not _REFERENCE_ID.match(ref):
        raise ValueError(f"Invalid reference id for marker: {reference_id!r}")
    return f"[@{ref}]"


def generate_cite_key(reference_type: Union[ReferenceType, str], value: str) -> str:
    """Stable 'type:value' key for a placeholder."""
    type_value = reference_type.value if isinstance(reference_type, ReferenceType) else reference_type
    return f"{type_value}:{value.strip()}"


def extract_placeholders(text: str) -> list[Marker]:
    """Only the pre-resolution [[CITE:...]] markers, in order."""
    return extract_markers(
        text,
        grammars=(MarkerGrammar.PLACEHOLDER, MarkerGrammar.PLACEHOLDER_CONTEXT),
    )


def extract_unique_placeholders(text: str) -> list[Marker]:
    """First occurrence of each distinct placeholder reference."""
    seen: set[str] = set()
    unique = []
    for marker in extract_placeholders(text):
        if marker.cite_key in seen:
            continue
        seen.add(marker.cite_key)
        unique.append(marker)
    return unique


def bind_placeholders(text: str, resolved_ids: dict[str, str]) -> tuple[str, int]:
    """
    Rewrite placeholders whose cite key is resolved into modern markers.

    Args:
        text: Text containing [[CITE:...]] placeholders.
        resolved_ids: cite key ('type:value') -> reference id.

    Returns:
        (rewritten text, number of placeholders left unresolved)
    """
    unresolved = 0
    pieces = []
    cursor = 0
    for marker in extract_placeholders(text):
        pieces.append(text[cursor:marker.start])
        reference_id = resolved_ids.get(marker.cite_key)
        if reference_id:
            pieces.append(build_reference_marker(reference_id))
        else:
            pieces.append(marker.text)
            unresolved += 1
        cursor = marker.end
    pieces.append(text[cursor:])
    return "".join(pieces), unresolved


def count_malformed(text: str) -> int:
    """
    Count spans that open like a marker but do not parse.

    Well-formed markers whose reference cannot be resolved are NOT
    counted here.
    """
    if not text:
        return 0

    markers = extract_markers(text)
    by_grammar = {grammar: 0 for grammar in MarkerGrammar}
    for marker in markers:
        by_grammar[marker.grammar] += 1

    placeholders = by_grammar[MarkerGrammar.PLACEHOLDER] + by_grammar[MarkerGrammar.PLACEHOLDER_CONTEXT]
    malformed = max(0, len(_ANY_PLACEHOLDER.findall(text)) - placeholders)
    malformed += max(0, len(_ANY_LEGACY.findall(text)) - by_grammar[MarkerGrammar.LEGACY])
    malformed += max(0, len(_ANY_MODERN.findall(text)) - by_grammar[MarkerGrammar.MODERN])
    return malformed


def validate_placeholders(
    text: str,
    known_keys: Optional[Iterable[str]] = None,
) -> PlaceholderValidation:
    """
    Validate marker syntax in text.

    Args:
        text: Text to check.
        known_keys: Resolvable references. Reference ids for modern and
                    legacy markers, 'type:value' cite keys for placeholders.
                    When omitted, resolution is not checked.

    Returns:
        PlaceholderValidation; malformed and unresolved counts are
        reported separately.
    """
    errors: list[str] = []

    for match in _ANY_PLACEHOLDER.finditer(text or ""):
        type_match = re.match(r"\[\[CITE:([^:\]|]+):", match.group(0))
        if type_match and _parse_reference_type(type_match.group(1)) is None:
            errors.append(f"Invalid citation type: {type_match.group(1)}")

    malformed = count_malformed(text or "")
    if malformed:
        errors.append(f"Found {malformed} malformed citation placeholders")

    unresolved = 0
    if known_keys is not None:
        known = set(known_keys)
        missing: list[str] = []
        for marker in extract_markers(text or ""):
            if marker.grammar in (MarkerGrammar.MODERN, MarkerGrammar.LEGACY):
                key = marker.value
            else:
                key = marker.cite_key
            if key not in known and key not in missing:
                missing.append(key)
        unresolved = len(missing)
        if unresolved:
            errors.append(f"{unresolved} references not found: {', '.join(missing)}")

    logger.debug(f"Validated markers: {malformed} malformed, {unresolved} unresolved")
    return PlaceholderValidation(
        is_valid=not errors,
        errors=errors,
        malformed_count=malformed,
        unresolved_count=unresolved,
    )
