"""
Citation style identifiers and the remote style repository.

A style identifier is validated, de-aliased, and resolved to either a
builtin style (rendered by our own formatters) or an external CSL style
that must be fetched from the style repository, validated, and registered
with the style engine before use.
"""

from __future__ import annotations

import asyncio
import logging
import re
from enum import Enum
from pathlib import Path
from typing import Optional, Union

import aiofiles
import httpx
from lxml import etree
from pydantic import BaseModel

from .errors import InvalidStyleError

logger = logging.getLogger("genpaper-citation-server")

DEFAULT_REPOSITORY_URL = "https://raw.githubusercontent.com/citation-style-language/styles/master"
CSL_NAMESPACE = "http://purl.org/net/xbiblio/csl"
MAX_STYLE_ID_LENGTH = 100
FALLBACK_STYLE = "apa"

STYLE_ALIASES = {
    "harvard": "harvard1",
    "mla": "modern-language-association",
    "chicago": "chicago-author-date",
    "apa-7": "apa",
    "apa-7th": "apa",
    "apa7": "apa",
    "apa-6": "apa-6th-edition",
    "ieee-numeric": "ieee",
}

# Ids outside this alphabet are never requested from the repository
_FETCHABLE_STYLE_ID = re.compile(r"^[a-z0-9][a-z0-9._-]*$")

# Substrings that mark an external style as numeric ([1], [2-4])
NUMERIC_STYLE_HINTS = ("ieee", "vancouver", "nature", "science", "numbered", "elsevier-with-titles")


class BuiltinStyle(str, Enum):
    """Styles rendered without external style data."""

    APA = "apa"
    MLA = "modern-language-association"
    CHICAGO = "chicago-author-date"
    HARVARD = "harvard1"
    IEEE = "ieee"
    VANCOUVER = "vancouver"


class ExternalStyle(BaseModel):
    """A CSL style that must come from the style repository."""

    style_id: str

    class Config:
        frozen = True


ResolvedStyle = Union[BuiltinStyle, ExternalStyle]

_BUILTIN_IDS = {style.value: style for style in BuiltinStyle}


def normalize_style_id(raw: object) -> str:
    """
    Validate and canonicalise a style identifier.

    Raises:
        InvalidStyleError: If raw is not a string, or is empty or longer
            than 100 characters after lower-casing and turning whitespace
            into hyphens.
    """
    if not isinstance(raw, str):
        raise InvalidStyleError(f"Style identifier must be a string, got {type(raw).__name__}")

    style_id = "-".join(raw.strip().lower().split())
    if not style_id:
        raise InvalidStyleError("Style identifier must not be empty")
    if len(style_id) > MAX_STYLE_ID_LENGTH:
        raise InvalidStyleError(f"Style identifier longer than {MAX_STYLE_ID_LENGTH} characters")

    return STYLE_ALIASES.get(style_id, style_id)


def resolve_style(raw: object) -> ResolvedStyle:
    """Resolve an identifier to a builtin style or an external one."""
    style_id = normalize_style_id(raw)
    builtin = _BUILTIN_IDS.get(style_id)
    if builtin is not None:
        return builtin
    return ExternalStyle(style_id=style_id)


def style_key(style: ResolvedStyle) -> str:
    """The canonical id string of a resolved style."""
    if isinstance(style, BuiltinStyle):
        return style.value
    return style.style_id


def is_numeric_style(style: Union[ResolvedStyle, str]) -> bool:
    """True for styles that cite by number rather than author/year."""
    if isinstance(style, str):
        style = resolve_style(style)
    if isinstance(style, BuiltinStyle):
        return style in (BuiltinStyle.IEEE, BuiltinStyle.VANCOUVER)
    return any(hint in style.style_id for hint in NUMERIC_STYLE_HINTS)


def validate_style_xml(xml: Union[str, bytes]) -> bool:
    """
    Check that a document is a well-formed CSL style.

    The root element must be <style> in the CSL namespace.
    """
    if not xml:
        return False
    data = xml.encode("utf-8") if isinstance(xml, str) else xml
    try:
        root = etree.fromstring(data, parser=etree.XMLParser(resolve_entities=False, no_network=True))
    except etree.XMLSyntaxError:
        return False
    return root.tag == f"{{{CSL_NAMESPACE}}}style"


class StyleRepository:
    """
    Fetches, validates and caches CSL styles.

    Styles are kept for the lifetime of the repository object and
    mirrored to disk so restarts do not refetch them. Concurrent loads
    of the same style share one fetch.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_REPOSITORY_URL,
        cache_dir: Optional[Path] = None,
        timeout: int = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the style repository.

        Args:
            base_url: Root URL serving '{style_id}.csl' documents.
            cache_dir: Directory for on-disk style copies (None disables it).
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.cache_dir = cache_dir
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._styles: dict[str, str] = {}
        self._inflight: dict[str, asyncio.Task] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def is_loaded(self, style_id: str) -> bool:
        return style_id in self._styles

    def get_style_xml(self, style_id: str) -> Optional[str]:
        """Registered CSL document for style_id, if any."""
        return self._styles.get(style_id)

    def register_style(self, style_id: str, xml: str) -> bool:
        """Register a CSL document directly. Returns False if invalid."""
        if not validate_style_xml(xml):
            logger.warning(f"Refusing to register invalid CSL style: {style_id}")
            return False
        self._styles[style_id] = xml
        return True

    def is_style_available(self, raw: object) -> bool:
        """True if the style can be rendered right now without fetching."""
        style = resolve_style(raw)
        if isinstance(style, BuiltinStyle):
            return True
        return self.is_loaded(style.style_id)

    async def load_style(self, style_id: str) -> Optional[str]:
        """
        Load a style, fetching it if needed.

        Returns:
            The CSL document, or None if unavailable (404, network error,
            invalid XML or an id that cannot be requested).
        """
        if style_id in self._styles:
            return self._styles[style_id]
        if not _FETCHABLE_STYLE_ID.match(style_id):
            logger.warning(f"Style id cannot be requested from the repository: {style_id!r}")
            return None

        task = self._inflight.get(style_id)
        if task is None:
            task = asyncio.ensure_future(self._fetch_style(style_id))
            self._inflight[style_id] = task
            task.add_done_callback(lambda _t, key=style_id: self._inflight.pop(key, None))

        xml = await asyncio.shield(task)
        if xml is not None:
            self._styles[style_id] = xml
        return xml

    async def ensure_style(self, raw: object) -> str:
        """
        Make a style usable, falling back to APA.

        Returns:
            The style id that should actually be used for formatting.
        """
        style = resolve_style(raw)
        if isinstance(style, BuiltinStyle):
            return style.value

        xml = await self.load_style(style.style_id)
        if xml is None:
            logger.warning(f"Style '{style.style_id}' unavailable, falling back to {FALLBACK_STYLE}")
            return FALLBACK_STYLE
        return style.style_id

    async def _fetch_style(self, style_id: str) -> Optional[str]:
        cached = await self._read_cached(style_id)
        if cached is not None:
            return cached

        client = await self._get_client()
        try:
            response = await client.get(f"/{style_id}.csl")

            if response.status_code == 404:
                logger.warning(f"Style not found in repository: {style_id}")
                return None

            response.raise_for_status()
            xml = response.text

        except httpx.HTTPError as e:
            logger.error(f"Failed to fetch style {style_id}: {e}")
            return None

        if not validate_style_xml(xml):
            logger.warning(f"Fetched style {style_id} is not valid CSL")
            return None

        await self._write_cached(style_id, xml)
        logger.info(f"Loaded CSL style: {style_id}")
        return xml

    def _cache_path(self, style_id: str) -> Optional[Path]:
        if self.cache_dir is None:
            return None
        return self.cache_dir / f"{style_id}.csl"

    async def _read_cached(self, style_id: str) -> Optional[str]:
        path = self._cache_path(style_id)
        if path is None or not path.exists():
            return None
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            xml = await f.read()
        if not validate_style_xml(xml):
            logger.warning(f"Discarding invalid cached style: {path}")
            path.unlink()
            return None
        return xml

    async def _write_cached(self, style_id: str, xml: str) -> None:
        path = self._cache_path(style_id)
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(xml)

    def clear(self) -> None:
        """Forget every registered external style."""
        self._styles.clear()

    async def close(self) -> None:
        """Close the client and release resources."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
