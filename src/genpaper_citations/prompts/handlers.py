"""
Handlers for prompt-related requests.

These handlers process prompt requests and generate appropriate
responses for drafting and citation workflows.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from mcp.types import (
    GetPromptResult,
    Prompt,
    PromptMessage,
    TextContent,
)

from .prompts import PROMPTS


DRAFT_SECTION_GUIDANCE = """
## Draft "{section_title}" for: {topic}

### Citation style: {style}

1. **Check sources**
   {paper_step}

2. **Review evidence**
   Use `build_context` with:
   - query: "{topic}: {section_title}"
   - paper_ids: {paper_ids}
   If it reports no relevant content, add papers (`add_paper`) or ingest
   their full text (`ingest_paper`) before continuing.

3. **Generate**
   Use `generate_section` with:
   - topic: "{topic}"
   - section_title: "{section_title}"
   - paper_ids: {paper_ids}
   - style: "{style}"

4. **Verify**
   - If `unresolved_references` is not empty, those sources were cited
     but are not in the library. Add them or remove the claims.
   - Render the reference list with `format_bibliography`.

Present the final section followed by its reference list.
"""

GAP_ANALYSIS_GUIDANCE = """
## Research Gap Analysis: {topic}

Use `find_research_gaps` with:
- topic: "{topic}"
- paper_ids: {paper_ids}
{user_arguments}

Then summarize:

1. **Unstudied areas** - questions none of the papers address
2. **Contradictions** - which papers disagree, and on what
3. **Recurring limitations** - weaknesses several papers share
{positioning_section}

For each gap cite the supporting papers by id and rate how promising
the research opportunity is.
"""

POSITIONING_SECTION = """4. **Positioning** - which gaps the user's research addresses, where it
   aligns with or diverges from the literature, and the suggested
   discussion points"""

CITATION_CHECK_GUIDANCE = """
## Citation Check

### Citation style: {style}

Paste the draft, then:

1. Use `validate_placeholders` on the draft. Fix malformed markers first;
   valid forms are [@paper_id], [CITE: paper_id] and [[CITE:type:value]]
   with type one of doi, paperId, title, url.

2. For references written as free text ("Smith et al., 2023"), use
   `match_citation` and replace them with [@paper_id] markers when a match
   has high confidence.

3. Use `process_citations` with style "{style}"{project_argument} to render
   the draft. Report any `unresolved_references`.

4. Use `format_bibliography` with style "{style}"{project_argument} for the
   reference list.
"""


async def list_prompts() -> List[Prompt]:
    """List all available prompts."""
    return list(PROMPTS.values())


async def get_prompt(
    name: str,
    arguments: Optional[Dict[str, str]] = None,
) -> GetPromptResult:
    """
    Get a specific prompt with arguments.

    Args:
        name: The name of the prompt to get.
        arguments: Arguments for the prompt.

    Returns:
        GetPromptResult with the prompt messages.

    Raises:
        ValueError: If prompt not found or required arguments missing.
    """
    if name not in PROMPTS:
        raise ValueError(f"Prompt not found: {name}")

    prompt = PROMPTS[name]
    arguments = arguments or {}

    # Validate required arguments
    for arg in prompt.arguments or []:
        if arg.required and arg.name not in arguments:
            raise ValueError(f"Missing required argument: {arg.name}")

    if name == "draft-section":
        content = _generate_draft_section_prompt(arguments)
    elif name == "gap-analysis":
        content = _generate_gap_analysis_prompt(arguments)
    elif name == "citation-check":
        content = _generate_citation_check_prompt(arguments)
    else:
        raise ValueError(f"No handler for prompt: {name}")

    return GetPromptResult(
        messages=[
            PromptMessage(
                role="user",
                content=TextContent(type="text", text=content),
            )
        ]
    )


def _paper_id_list(raw: Optional[str]) -> list[str]:
    return [p.strip() for p in (raw or "").split(",") if p.strip()]


def _generate_draft_section_prompt(arguments: Dict[str, str]) -> str:
    """Generate section drafting prompt content."""
    paper_ids = _paper_id_list(arguments.get("paper_ids"))
    if paper_ids:
        paper_step = f"Confirm these papers are stored with `list_papers`: {', '.join(paper_ids)}"
    else:
        paper_step = "Use `list_papers` and choose the papers relevant to the section."

    return DRAFT_SECTION_GUIDANCE.format(
        topic=arguments["topic"],
        section_title=arguments["section_title"],
        style=arguments.get("style") or "apa",
        paper_step=paper_step,
        paper_ids=paper_ids or "[the chosen paper ids]",
    )


def _generate_gap_analysis_prompt(arguments: Dict[str, str]) -> str:
    """Generate gap analysis prompt content."""
    research_question = arguments.get("research_question")
    user_arguments = f'- research_question: "{research_question}"' if research_question else ""

    return GAP_ANALYSIS_GUIDANCE.format(
        topic=arguments["topic"],
        paper_ids=_paper_id_list(arguments.get("paper_ids")),
        user_arguments=user_arguments,
        positioning_section=POSITIONING_SECTION if research_question else "",
    )


def _generate_citation_check_prompt(arguments: Dict[str, str]) -> str:
    """Generate citation check prompt content."""
    project_id = arguments.get("project_id")
    return CITATION_CHECK_GUIDANCE.format(
        style=arguments.get("style") or "apa",
        project_argument=f' and project_id "{project_id}"' if project_id else "",
    )
