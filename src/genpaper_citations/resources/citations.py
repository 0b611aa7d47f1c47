"""
Project citation storage.

Each project keeps a citation library numbered in first-cited order,
a rendered bibliography as human-readable markdown, and stored
claim/gap analyses.

Storage structure:
    ~/.genpaper/citations/{project_id}/
    ├── library.json        # Citations and their numbers
    └── bibliography.md     # Last rendered bibliography
    ~/.genpaper/analyses/{project_id}/
    └── {name}.json         # Claim / gap analysis results
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

import aiofiles
from pydantic import BaseModel, ValidationError

from ..config import Settings
from ..core.models import Citation, FormattedCitation

logger = logging.getLogger("genpaper-citation-server")


class CitationManager:
    """
    Manages per-project citation libraries and analyses.

    Citation numbers are assigned once, in the order references are first
    cited, and never change afterwards.
    """

    def __init__(self, settings: Optional[Settings] = None):
        """
        Initialize the citation manager.

        Args:
            settings: Optional settings instance. If not provided,
                     creates default settings.
        """
        self.settings = settings or Settings()
        self.storage_path = self.settings.STORAGE_PATH
        self.analysis_path = self.settings.ANALYSIS_PATH
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self.analysis_path.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _safe(value: str) -> str:
        return value.replace("/", "_").replace(":", "_")

    def _get_project_dir(self, project_id: str) -> Path:
        """Get the directory for a project's citation data."""
        return self.storage_path / self._safe(project_id)

    # ==================== Library ====================

    async def _load_library(self, project_id: str) -> dict[str, Any]:
        path = self._get_project_dir(project_id) / "library.json"
        if not path.exists():
            return {"order": [], "citations": {}}
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return json.loads(await f.read())

    async def _save_library(self, project_id: str, library: dict[str, Any]) -> None:
        project_dir = self._get_project_dir(project_id)
        project_dir.mkdir(parents=True, exist_ok=True)
        library["updated_at"] = datetime.utcnow().isoformat()
        async with aiofiles.open(project_dir / "library.json", "w", encoding="utf-8") as f:
            await f.write(json.dumps(library, indent=2))

    async def add_citations(self, project_id: str, citations: Iterable[Citation]) -> dict[str, int]:
        """
        Add citations to a project in first-cited order.

        Known citations keep their number; their stored data is refreshed.

        Returns:
            Citation id -> number for the whole project.
        """
        library = await self._load_library(project_id)
        added = 0
        for citation in citations:
            if citation.id not in library["citations"]:
                library["order"].append(citation.id)
                added += 1
            library["citations"][citation.id] = citation.model_dump(mode="json")

        await self._save_library(project_id, library)
        if added:
            logger.info(f"Added {added} citations to project {project_id}")
        return {cid: i for i, cid in enumerate(library["order"], 1)}

    async def record_citations(
        self,
        project_id: str,
        formatted: Iterable[FormattedCitation],
    ) -> dict[str, int]:
        """Add the citations behind processed markers, in text order."""
        ordered = sorted(formatted, key=lambda f: f.raw_start)
        return await self.add_citations(project_id, (f.citation for f in ordered))

    async def get_citation_numbers(self, project_id: str) -> dict[str, int]:
        """Citation id -> number (1-based, first-cited order)."""
        library = await self._load_library(project_id)
        return {cid: i for i, cid in enumerate(library["order"], 1)}

    async def get_citations(self, project_id: str) -> list[Citation]:
        """Project citations in number order."""
        library = await self._load_library(project_id)
        citations = []
        for cid in library["order"]:
            try:
                citations.append(Citation.model_validate(library["citations"][cid]))
            except (KeyError, ValidationError) as e:
                logger.warning(f"Skipping corrupt citation {cid} in project {project_id}: {e}")
        return citations

    async def list_projects(self) -> list[str]:
        """List all project ids with a citation library."""
        return [p.name for p in self.storage_path.iterdir() if (p / "library.json").exists()]

    # ==================== Bibliography ====================

    async def store_bibliography(self, project_id: str, entries: list[str], style: str) -> Path:
        """
        Store a rendered bibliography as markdown.

        Returns:
            Path to the created markdown file.
        """
        project_dir = self._get_project_dir(project_id)
        project_dir.mkdir(parents=True, exist_ok=True)
        md_path = project_dir / "bibliography.md"

        async with aiofiles.open(md_path, "w", encoding="utf-8") as f:
            await f.write(self._format_bibliography_markdown(project_id, entries, style))

        logger.info(f"Stored bibliography ({len(entries)} entries): {md_path}")
        return md_path

    def _format_bibliography_markdown(self, project_id: str, entries: list[str], style: str) -> str:
        lines = [
            f"# References: {project_id}",
            "",
            f"*Style: {style}*",
            f"*Generated: {datetime.utcnow().isoformat()}*",
            f"*Total: {len(entries)} entries*",
            "",
            "---",
            "",
        ]
        for entry in entries:
            lines.extend([entry, ""])
        return "\n".join(lines)

    async def get_bibliography_path(self, project_id: str) -> Optional[Path]:
        """Get path to the bibliography file if it exists."""
        path = self._get_project_dir(project_id) / "bibliography.md"
        return path if path.exists() else None

    # ==================== Analyses ====================

    async def store_analysis(self, project_id: str, name: str, result: BaseModel) -> Path:
        """Persist a claim or gap analysis result as JSON."""
        analysis_dir = self.analysis_path / self._safe(project_id)
        analysis_dir.mkdir(parents=True, exist_ok=True)
        path = analysis_dir / f"{self._safe(name)}.json"

        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(result.model_dump_json(indent=2))

        logger.info(f"Stored analysis '{name}' for project {project_id}")
        return path

    async def load_analysis(self, project_id: str, name: str) -> Optional[dict[str, Any]]:
        """Load a stored analysis, or None."""
        path = self.analysis_path / self._safe(project_id) / f"{self._safe(name)}.json"
        if not path.exists():
            return None
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return json.loads(await f.read())
