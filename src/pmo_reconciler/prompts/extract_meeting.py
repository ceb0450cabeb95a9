"""
Meeting extraction prompt.

The model is asked for a single JSON object in the pmo_tool.v1 contract.
Open project items are listed by id so the model can reference them with
update / close / supersede instead of creating duplicates.
"""

from ..models.contract import SCHEMA_VERSION
from ..models.entities import Decision, TrackedEntity
from ..models.enums import (
    DecisionCategory,
    DecisionImpactArea,
    EntityKind,
    MeetingCategory,
)

CATEGORY_INSTRUCTIONS: dict[MeetingCategory, str] = {
    MeetingCategory.PROJECT: """This is a PROJECT meeting (status update, working session).
Focus on:
- Detailed recap of discussion points
- Action items with clear owners and due dates
- Risks and issues identified
- Progress updates on existing items""",
    MeetingCategory.GOVERNANCE: """This is a GOVERNANCE meeting (steering committee, board review).
Focus on:
- Executive-level recap
- Strategic decisions with clear outcomes
- High-level risks and their business impact
- Every decision MUST have an outcome specified""",
    MeetingCategory.DISCOVERY: """This is a DISCOVERY meeting (requirements gathering, interviews).
Focus on:
- Comprehensive recap capturing all insights
- Action items for follow-up research
- Preliminary decisions and assumptions""",
    MeetingCategory.ALIGNMENT: """This is an ALIGNMENT meeting (stakeholder alignment, retrospective).
Focus on:
- Recap of alignment topics discussed
- Tone analysis is CRITICAL: assess each participant's happiness and buy-in (Low/Med/High)
- Note any concerns or resistance expressed""",
    MeetingCategory.REMEDIATION: """This is a REMEDIATION meeting (incident review, root cause analysis).
Focus on:
- Detailed recap of the incident
- A fishbone root-cause outline IS REQUIRED
- Corrective and preventive actions""",
}

EXTRACTION_SYSTEM_PROMPT = f"""You are a PMO (Project Management Office) assistant analyzing meeting transcripts.

You return ONE JSON object and nothing else. The object must follow schema_version "{SCHEMA_VERSION}":

{{
  "schema_version": "{SCHEMA_VERSION}",
  "meeting": {{"category": "...", "title": "...", "date": "YYYY-MM-DD",
              "attendees": [{{"name": "...", "email": "... or null"}}]}},
  "recap": {{"summary": "...", "highlights": ["..."],
            "key_topics": [{{"topic": "...", "discussion": "...", "participants": ["..."], "outcome": "... or null"}}],
            "action_items_summary": [{{"title": "...", "owner": "...", "due_date": "YYYY-MM-DD or null", "status": "Open|In Progress|Closed"}}],
            "outstanding_topics": [{{"topic": "...", "context": "...", "blockers": ["..."], "suggested_next_steps": ["..."]}}]}},
  "tone": {{"overall": "...", "participants": [{{"name": "...", "tone": "...", "happiness": "Low|Med|High", "buy_in": "Low|Med|High"}}]}},
  "action_items": [{{"operation": "create|update|close", "external_id": "existing id, or your own stable id, or null",
                    "title": "...", "description": "...", "status": "Open|In Progress|Closed",
                    "owner": {{"name": "...", "email": "... or null"}}, "due_date": "YYYY-MM-DD or null",
                    "evidence": [{{"quote": "...", "speaker": "... or null", "timestamp": "HH:MM:SS or null"}}]}}],
  "decisions": [{{"operation": "create|update|supersede", "external_id": "...", "title": "...", "rationale": "...",
                 "impact": "...", "category": "{'|'.join(c.value for c in DecisionCategory)}",
                 "impact_areas": ["{'|'.join(a.value for a in DecisionImpactArea)}"],
                 "status": "PROPOSED|APPROVED|REJECTED", "decision_maker": {{"name": "...", "email": "... or null"}},
                 "outcome": "...", "supersedes": "id of the replaced decision (supersede only) or null",
                 "evidence": [...]}}],
  "risks": [{{"operation": "create|update|close", "external_id": "...", "title": "...", "description": "...",
             "probability": "Low|Med|High", "impact": "Low|Med|High", "mitigation": "...",
             "owner": {{"name": "...", "email": "... or null"}}, "status": "Open|In Progress|Closed",
             "evidence": [...]}}],
  "fishbone": {{"enabled": true|false, "outline": {{"problem_statement": "...",
               "categories": [{{"name": "People", "causes": ["..."]}}]}} or null}}
}}

Critical rules:
1. EVIDENCE IS REQUIRED: every created or updated action item, decision and risk has at least one exact quote.
2. PREFER UPDATE/CLOSE: when an existing item is discussed, reference it by its id in external_id.
3. A decision is never created as SUPERSEDED; use operation "supersede" and name the replaced decision.
4. Dates are YYYY-MM-DD, timestamps HH:MM:SS.
5. The fishbone is enabled with a populated outline ONLY for Remediation meetings; otherwise enabled is false.
"""

EXTRACTION_USER_PROMPT_TEMPLATE = """{category_instructions}

## Existing Open Items (prefer update/close/supersede over create for these)
{existing_items}

## Meeting Transcript
{transcript_text}

Return ONLY the JSON object."""


def _describe_entity(entity: TrackedEntity) -> str:
    status = getattr(entity, 'status', None)
    line = f"- [ID: {entity.id}] {entity.title}"
    if status is not None:
        line += f" ({status.value})"
    if entity.kind != EntityKind.DECISION:
        owner = getattr(entity, 'owner', None)
        line += f" - Owner: {owner.name if owner and owner.name else 'Unassigned'}"
    elif isinstance(entity, Decision):
        line += f" - Category: {entity.category.value}"
    return line


def format_existing_items(entities: dict[EntityKind, list[TrackedEntity]] | None) -> str:
    """Render open items per kind, or a placeholder when there are none."""
    if not entities:
        return 'None'
    headings = {
        EntityKind.ACTION_ITEM: '### Action Items',
        EntityKind.DECISION: '### Decisions',
        EntityKind.RISK: '### Risks',
    }
    sections = []
    for kind, heading in headings.items():
        live = [e for e in entities.get(kind, []) if e.is_open and not e.is_deleted]
        if live:
            sections.append('\n'.join([heading] + [_describe_entity(e) for e in live]))
    return '\n\n'.join(sections) if sections else 'None'


def build_extraction_prompt(
    transcript_text: str,
    category: MeetingCategory,
    existing: dict[EntityKind, list[TrackedEntity]] | None = None,
) -> list[dict[str, str]]:
    """
    Build the extraction prompt messages for OpenAI.

    Args:
        transcript_text: The transcript text to extract from
        category: Meeting category (drives focus and the fishbone rule)
        existing: Open project items the model may reference

    Returns:
        List of message dicts for OpenAI chat completion
    """
    user_prompt = EXTRACTION_USER_PROMPT_TEMPLATE.format(
        category_instructions=CATEGORY_INSTRUCTIONS[category],
        existing_items=format_existing_items(existing),
        transcript_text=transcript_text,
    )
    return [
        {'role': 'system', 'content': EXTRACTION_SYSTEM_PROMPT},
        {'role': 'user', 'content': user_prompt},
    ]
