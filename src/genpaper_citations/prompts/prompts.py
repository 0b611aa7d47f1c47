"""
Prompt definitions for drafting and citation workflows.

These prompts guide users through common paper-writing workflows.
"""

import mcp.types as types

# Prompt definitions
PROMPTS = {
    "draft-section": types.Prompt(
        name="draft-section",
        description="""Draft a cited section of a research paper from stored papers.

This prompt walks through:
- Checking which papers are available and ingested
- Reviewing the evidence that retrieval selects
- Generating the section with resolved citations
- Checking for unresolved references and rendering the bibliography""",
        arguments=[
            types.PromptArgument(
                name="topic",
                description="Paper topic",
                required=True,
            ),
            types.PromptArgument(
                name="section_title",
                description="Section to draft (e.g., 'Introduction', 'Related Work')",
                required=True,
            ),
            types.PromptArgument(
                name="paper_ids",
                description="Comma-separated paper ids to draw evidence from",
                required=False,
            ),
            types.PromptArgument(
                name="style",
                description="Citation style (default: apa)",
                required=False,
            ),
        ],
    ),

    "gap-analysis": types.Prompt(
        name="gap-analysis",
        description="""Identify research gaps and position the user's own work.

This prompt helps:
- Extract claims from a set of papers
- Find unstudied areas, contradictions and recurring limitations
- Relate the user's research question and findings to the literature""",
        arguments=[
            types.PromptArgument(
                name="topic",
                description="Research topic",
                required=True,
            ),
            types.PromptArgument(
                name="paper_ids",
                description="Comma-separated paper ids to analyze",
                required=True,
            ),
            types.PromptArgument(
                name="research_question",
                description="The user's research question, if any",
                required=False,
            ),
        ],
    ),

    "citation-check": types.Prompt(
        name="citation-check",
        description="""Check and repair the citations in a draft.

This prompt helps:
- Validate marker syntax
- Match free-text references to stored papers
- Render the draft and its bibliography in a chosen style""",
        arguments=[
            types.PromptArgument(
                name="project_id",
                description="Project the draft belongs to",
                required=False,
            ),
            types.PromptArgument(
                name="style",
                description="Citation style (default: apa)",
                required=False,
            ),
        ],
    ),
}
