"""
Paper storage management.

Stores paper records, their full text and their chunks on disk, and
serves chunk search for retrieval.

Storage structure:
    ~/.genpaper/papers/{paper_id}/
    ├── paper.json      # PaperRecord
    ├── content.md      # Full text (markdown when ingested from PDF)
    └── chunks.jsonl    # One Chunk per line
"""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Optional

import aiofiles
import pymupdf4llm
from pydantic import ValidationError

from ..config import Settings
from ..core.chunks import normalize_paper_text, split_into_chunks
from ..core.context import score_chunk
from ..core.errors import ChunkingError, IngestionError
from ..core.models import Chunk, PaperRecord

logger = logging.getLogger("genpaper-citation-server")


class PaperManager:
    """
    Manages paper records, full text and chunks.

    Implements the ChunkStore protocol used by the retriever.
    """

    def __init__(self, settings: Optional[Settings] = None):
        """
        Initialize the paper manager.

        Args:
            settings: Optional settings instance.
        """
        self.settings = settings or Settings()
        self.storage_path = self.settings.PAPERS_PATH
        self.storage_path.mkdir(parents=True, exist_ok=True)

    def _get_paper_dir(self, paper_id: str) -> Path:
        """Get the directory for a paper's data."""
        safe_id = paper_id.replace("/", "_").replace(":", "_")
        return self.storage_path / safe_id

    # ==================== Records ====================

    async def add_paper(self, paper: PaperRecord) -> PaperRecord:
        """Store (or replace) a paper record."""
        paper_dir = self._get_paper_dir(paper.id)
        paper_dir.mkdir(parents=True, exist_ok=True)

        async with aiofiles.open(paper_dir / "paper.json", "w", encoding="utf-8") as f:
            await f.write(paper.model_dump_json(indent=2))

        logger.info(f"Stored paper record {paper.id}: {paper.title}")
        return paper

    async def has_paper(self, paper_id: str) -> bool:
        """Check if a paper record is stored."""
        return (self._get_paper_dir(paper_id) / "paper.json").exists()

    async def get_paper(self, paper_id: str) -> Optional[PaperRecord]:
        """Load a paper record, or None if not stored."""
        path = self._get_paper_dir(paper_id) / "paper.json"
        if not path.exists():
            return None

        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            data = await f.read()
        try:
            return PaperRecord.model_validate_json(data)
        except ValidationError as e:
            logger.error(f"Corrupt paper record {paper_id}: {e}")
            return None

    async def get_papers(self, paper_ids: list[str]) -> list[PaperRecord]:
        """Load records for the given ids, skipping unknown ones."""
        papers = []
        for paper_id in paper_ids:
            paper = await self.get_paper(paper_id)
            if paper is not None:
                papers.append(paper)
        return papers

    async def list_papers(self) -> list[PaperRecord]:
        """List all stored paper records."""
        papers = []
        for paper_dir in sorted(self.storage_path.iterdir()):
            if not paper_dir.is_dir():
                continue
            paper = await self.get_paper(paper_dir.name)
            if paper is not None:
                papers.append(paper)
        logger.info(f"Found {len(papers)} stored papers")
        return papers

    async def delete_paper(self, paper_id: str) -> bool:
        """
        Delete a paper with its content and chunks.

        Returns:
            True if deleted, False if not found.
        """
        paper_dir = self._get_paper_dir(paper_id)
        if paper_dir.exists():
            shutil.rmtree(paper_dir)
            logger.info(f"Deleted paper {paper_id}")
            return True
        return False

    # ==================== Ingestion ====================

    async def ingest_text(self, paper_id: str, text: str) -> list[Chunk]:
        """
        Store full text for a paper and rebuild its chunks.

        Raises:
            IngestionError: If the paper is unknown or the text is empty.
            ChunkingError: If the chunks cannot be created or stored.
        """
        if not await self.has_paper(paper_id):
            raise IngestionError(f"Paper {paper_id} not found. Add it first.", paper_id=paper_id)

        content = normalize_paper_text(text or "")
        if not content:
            raise IngestionError(f"No text content for paper {paper_id}", paper_id=paper_id)

        chunks = split_into_chunks(
            content,
            paper_id,
            chunk_size=self.settings.CHUNK_SIZE,
            overlap=self.settings.CHUNK_OVERLAP,
        )

        paper_dir = self._get_paper_dir(paper_id)
        async with aiofiles.open(paper_dir / "content.md", "w", encoding="utf-8") as f:
            await f.write(content)

        try:
            async with aiofiles.open(paper_dir / "chunks.jsonl", "w", encoding="utf-8") as f:
                for chunk in chunks:
                    await f.write(chunk.model_dump_json() + "\n")
        except OSError as e:
            raise ChunkingError(f"Failed to store chunks for {paper_id}: {e}") from e

        logger.info(f"Ingested paper {paper_id}: {len(content)} chars, {len(chunks)} chunks")
        return chunks

    async def ingest_pdf(self, paper_id: str, pdf_path: Path) -> list[Chunk]:
        """
        Convert a PDF to markdown and ingest it.

        Raises:
            IngestionError: If the file is missing or cannot be converted.
        """
        pdf_path = Path(pdf_path)
        if not pdf_path.exists():
            raise IngestionError(f"PDF not found: {pdf_path}", paper_id=paper_id)

        logger.info(f"Converting {pdf_path.name} to markdown...")
        try:
            markdown = pymupdf4llm.to_markdown(str(pdf_path), show_progress=False)
        except Exception as e:
            raise IngestionError(f"Could not read PDF {pdf_path.name}: {e}", paper_id=paper_id) from e

        return await self.ingest_text(paper_id, markdown)

    async def get_paper_content(self, paper_id: str) -> Optional[str]:
        """Full text of an ingested paper, or None."""
        path = self._get_paper_dir(paper_id) / "content.md"
        if not path.exists():
            return None
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return await f.read()

    async def get_chunks(self, paper_id: str) -> list[Chunk]:
        """Stored chunks of a paper, in order."""
        path = self._get_paper_dir(paper_id) / "chunks.jsonl"
        if not path.exists():
            return []

        chunks = []
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            async for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    chunks.append(Chunk.model_validate(json.loads(line)))
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.warning(f"Skipping corrupt chunk line for {paper_id}: {e}")
        return chunks

    # ==================== Search ====================

    async def search_chunks(self, query: str, paper_ids: list[str], limit: int) -> list[Chunk]:
        """Chunks of the given papers ranked by lexical relevance."""
        ranked: list[tuple[float, Chunk]] = []
        for paper_id in paper_ids:
            for chunk in await self.get_chunks(paper_id):
                ranked.append((score_chunk(query, chunk), chunk))

        ranked.sort(key=lambda item: item[0], reverse=True)
        return [chunk for _, chunk in ranked[:limit]]
