"""
MCP Tool: extract_claims

Extract structured claims from papers or from the user's own research.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import mcp.types as types

from ..core import ExtractedClaim, PaperRecord
from ..core.models import ClaimSet
from .common import (
    error_response,
    get_citation_manager,
    get_paper_manager,
    get_service,
    text_response,
)

logger = logging.getLogger("genpaper-citation-server")


extract_claims_tool = types.Tool(
    name="extract_claims",
    description="""Extract atomic claims.

Two modes:
- Literature: pass paper_ids. Claims (findings, methods, limitations,
  future work, background) are extracted from each paper's ingested text,
  or its abstract when no text is ingested.
- Original research: pass topic plus research_question and/or
  key_findings. Claims (hypotheses, findings, contributions,
  implications, limitations) describe the user's own work.

Each claim has a type, a confidence in [0, 1] and, for papers, a
supporting quote. With a project_id, claims are stored and reused.""",
    inputSchema={
        "type": "object",
        "properties": {
            "paper_ids": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Papers to extract claims from",
            },
            "topic": {
                "type": "string",
                "description": "Research topic (original research mode)",
            },
            "research_question": {
                "type": "string",
                "description": "The user's research question",
            },
            "key_findings": {
                "type": "string",
                "description": "The user's key findings",
            },
            "project_id": {
                "type": "string",
                "description": "Store claims for this project",
            },
            "refresh": {
                "type": "boolean",
                "description": "Re-extract even if stored claims exist",
                "default": False,
            },
        },
    },
)


def _claim_dict(claim: ExtractedClaim) -> dict[str, Any]:
    return claim.model_dump(mode="json", exclude_none=True)


async def claims_for_paper(
    paper: PaperRecord,
    project_id: Optional[str] = None,
    refresh: bool = False,
) -> list[ExtractedClaim]:
    """Stored claims for a paper, extracting (and storing) them if needed."""
    manager = get_citation_manager()
    name = f"claims-{paper.id}"

    if project_id and not refresh:
        stored = await manager.load_analysis(project_id, name)
        if stored is not None:
            return ClaimSet.model_validate(stored).claims

    content = await get_paper_manager().get_paper_content(paper.id)
    claims = await get_service().extract_claims(paper, content)

    if project_id:
        await manager.store_analysis(project_id, name, ClaimSet(source=paper.id, claims=claims))
    return claims


async def handle_extract_claims(arguments: dict[str, Any]) -> list[types.TextContent]:
    """Handle the extract_claims tool call."""
    try:
        paper_ids = arguments.get("paper_ids") or []
        project_id = arguments.get("project_id")
        refresh = arguments.get("refresh", False)

        if not paper_ids:
            topic = arguments.get("topic", "")
            claims = await get_service().extract_user_claims(
                topic,
                arguments.get("research_question", ""),
                arguments.get("key_findings", ""),
            )
            if project_id:
                await get_citation_manager().store_analysis(
                    project_id, "user-claims", ClaimSet(source="original_research", claims=claims)
                )
            return text_response({
                "mode": "original_research",
                "topic": topic,
                "claim_count": len(claims),
                "claims": [_claim_dict(c) for c in claims],
            })

        papers = await get_paper_manager().get_papers(paper_ids)
        missing = sorted(set(paper_ids) - {p.id for p in papers})

        results = []
        errors = {pid: "Paper not found" for pid in missing}
        for paper in papers:
            try:
                claims = await claims_for_paper(paper, project_id, refresh)
            except Exception as e:
                logger.warning(f"Claim extraction failed for {paper.id}: {e}")
                errors[paper.id] = str(e)
                continue
            results.append({
                "paper_id": paper.id,
                "title": paper.title,
                "claim_count": len(claims),
                "claims": [_claim_dict(c) for c in claims],
            })

        response: dict[str, Any] = {"mode": "literature", "papers": results}
        if errors:
            response["errors"] = errors
        return text_response(response)

    except Exception as e:
        return error_response(e, "Error extracting claims")
