"""
MCP Tool: find_research_gaps

Identify research gaps across a set of papers.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from ..core import ExtractedClaim
from .common import (
    error_response,
    get_citation_manager,
    get_paper_manager,
    get_service,
    text_response,
)
from .extract_claims import claims_for_paper

logger = logging.getLogger("genpaper-citation-server")


find_research_gaps_tool = types.Tool(
    name="find_research_gaps",
    description="""Identify research gaps from the claims of several papers.

Claims are extracted from each paper (or reused from the project), then
synthesized into gaps:
- unstudied: questions no paper addresses
- contradiction: papers reaching conflicting conclusions
- limitation: limitations that recur across papers

Pass research_question and/or key_findings to also see which gaps the
user's own research addresses, how the literature relates to it, and
suggested discussion points.""",
    inputSchema={
        "type": "object",
        "properties": {
            "topic": {
                "type": "string",
                "description": "Research topic",
            },
            "paper_ids": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Papers to analyze",
            },
            "research_question": {
                "type": "string",
                "description": "Optional: the user's research question",
            },
            "key_findings": {
                "type": "string",
                "description": "Optional: the user's key findings",
            },
            "project_id": {
                "type": "string",
                "description": "Store claims and gaps for this project",
            },
        },
        "required": ["topic", "paper_ids"],
    },
)


async def handle_find_research_gaps(arguments: dict[str, Any]) -> list[types.TextContent]:
    """Handle the find_research_gaps tool call."""
    try:
        service = get_service()
        topic = arguments["topic"]
        project_id = arguments.get("project_id")

        papers = await get_paper_manager().get_papers(arguments["paper_ids"])
        logger.info(f"Finding research gaps for '{topic}' across {len(papers)} papers")

        claims: list[ExtractedClaim] = []
        skipped = {}
        for paper in papers:
            try:
                claims.extend(await claims_for_paper(paper, project_id))
            except Exception as e:
                logger.warning(f"Skipping {paper.id} in gap analysis: {e}")
                skipped[paper.id] = str(e)

        result = await service.find_research_gaps(topic, claims)
        if project_id:
            await get_citation_manager().store_analysis(project_id, "gaps", result)

        response: dict[str, Any] = {
            "topic": topic,
            "analyzed_papers": len(papers) - len(skipped),
            "analyzed_claims": result.analyzed_claim_count,
            "gaps_found": len(result.gaps),
            "gaps": [
                {
                    "gap_id": g.gap_id,
                    "type": g.gap_type.value,
                    "description": g.description,
                    "confidence": round(g.confidence, 2),
                    "supporting_paper_ids": g.supporting_paper_ids,
                    "research_opportunity": g.research_opportunity,
                    "evidence": [e.model_dump() for e in g.evidence],
                }
                for g in result.gaps
            ],
        }
        if skipped:
            response["skipped_papers"] = skipped

        if arguments.get("research_question") or arguments.get("key_findings"):
            user_claims = await service.extract_user_claims(
                topic,
                arguments.get("research_question", ""),
                arguments.get("key_findings", ""),
            )
            relationships = await service.analyze_relationships(user_claims, claims)
            positioning = service.generate_positioning(user_claims, claims, relationships)
            addressing = await service.analyze_gap_addressing(result.gaps, user_claims)

            response["user_claims"] = [c.claim_text for c in user_claims]
            response["gap_addressing"] = [a.model_dump(mode="json") for a in addressing]
            response["positioning"] = positioning.model_dump()

        return text_response(response)

    except Exception as e:
        return error_response(e, "Error finding research gaps")
