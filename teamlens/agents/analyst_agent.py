# teamlens/agents/analyst_agent.py

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from teamlens.agents.planner_agent import PlannerAgent
from teamlens.agents.viz_agent import safe_json
from teamlens.llm.response_parser import parse_response
from teamlens.utils.conversation import ConversationState, DeveloperAnalysis

logger = logging.getLogger(__name__)

PROFILE_METRICS = ("total_commits", "total_prs", "total_tickets")
NAME_KEYS = ("developer", "name", "developer_name")
ANALYSIS_FIELDS = ("performance_summary", "strengths", "improvements")

ANALYSIS_SYSTEM = (
    "You are a performance analyst. Generate valid JSON only. "
    "Write in natural paragraph form without bullet points or numbered lists."
)
ANALYSIS_TEMPERATURE = 0.2
ANALYSIS_MAX_TOKENS = 2000


def profile_developer(rows: List[Dict[str, Any]]) -> Optional[str]:
    """Developer name when the result is a single profile row, else None."""
    if len(rows) != 1 or not isinstance(rows[0], dict):
        return None
    row = rows[0]
    if sum(1 for m in PROFILE_METRICS if m in row) < 2:
        return None
    for key in NAME_KEYS:
        value = row.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def filter_transcripts(chunks: List[Dict[str, Any]], developer: str) -> List[Dict[str, Any]]:
    parts = developer.lower().split()
    variations = [v for v in dict.fromkeys([developer.lower()] + parts[:1] + parts[-1:]) if v]
    filtered = [c for c in chunks if any(v in str(c.get("text", "")).lower() for v in variations)]
    logger.info("Transcript filter: %d -> %d chunks for %r", len(chunks), len(filtered), developer)
    return filtered


def _metric(metrics: Dict[str, Any], key: str) -> int:
    try:
        return int(float(metrics.get(key) or 0))
    except (TypeError, ValueError):
        return 0


def generic_summary(developer: str, metrics: Dict[str, Any]) -> str:
    commits = _metric(metrics, "total_commits")
    prs = _metric(metrics, "total_prs")
    tickets = _metric(metrics, "total_tickets")
    level = "strong" if commits > 10 else "moderate"
    return (
        f"Based on recent metrics, {developer} has contributed {commits} commits, {prs} pull requests, "
        f"and worked on {tickets} tickets. This shows {level} development activity and engagement with the project."
    )


def generic_strengths(developer: str) -> str:
    return (
        f"{developer} demonstrates consistent contributions to the codebase and shows reliability in "
        f"completing assigned tasks. They take an active part in the development process and contribute "
        f"to team deliverables."
    )


def generic_improvements(developer: str) -> str:
    return (
        f"{developer} could increase their impact by taking part in more code reviews and giving thoughtful "
        f"feedback to teammates. Setting aside time to deepen expertise in the current stack would lift "
        f"productivity and code quality. Clearer commit messages and documentation would also make their "
        f"work easier for others to build on."
    )


class AnalystAgent:
    """
    Three-part developer analysis (summary, strengths, improvements), generated
    once per profile result and cached on the conversation so pronoun follow-ups
    ("what should they improve on") are answered without another model call.
    """

    def __init__(self, llm):
        self.llm = llm

    def _build_prompt(self, developer: str, rows: List[Dict[str, Any]], transcripts: List[Dict[str, Any]]) -> str:
        relevant = filter_transcripts(transcripts or [], developer)
        if relevant:
            meeting = "\n\n".join(
                f"Transcript {i + 1}"
                + (f" on {c['meeting_date']}" if c.get("meeting_date") else "")
                + f":\n{str(c.get('text', ''))[:600]}"
                for i, c in enumerate(relevant[:5])
            )
        else:
            meeting = f"No meeting transcripts available for {developer}"

        return f"""You are analyzing {developer}'s individual performance as a software developer.

Performance Metrics:
{json.dumps(safe_json(rows))}

Meeting Context:
{meeting}

Generate an analysis with THREE distinct sections. Output ONLY valid JSON in this exact format:
{{
  "performance_summary": "2-3 sentences summarizing {developer}'s recent performance and activity level",
  "strengths": "4-5 sentences describing {developer}'s key strengths and positive behaviors",
  "improvements": "4-5 sentences on specific areas where {developer} can improve, with concrete steps"
}}

RULES:
1. Natural paragraph form (NO bullet points, NO numbered lists)
2. Focus ONLY on {developer} as an individual
3. Use {developer}'s name naturally in the text
4. Return ONLY the JSON object
"""

    def analyze(
        self,
        developer: str,
        rows: List[Dict[str, Any]],
        transcripts: Optional[List[Dict[str, Any]]] = None,
    ) -> DeveloperAnalysis:
        metrics = safe_json(rows[0]) if rows else {}
        fields: Dict[str, Any] = {}
        try:
            raw = self.llm.complete(
                self._build_prompt(developer, rows, transcripts or []),
                system=ANALYSIS_SYSTEM,
                temperature=ANALYSIS_TEMPERATURE,
                max_tokens=ANALYSIS_MAX_TOKENS,
            )
            outcome = parse_response(raw, fields=ANALYSIS_FIELDS)
            if outcome.ok:
                fields = outcome.fields
            else:
                logger.error("Failed to parse developer analysis for %s", developer)
        except Exception as e:
            logger.error("Developer analysis error for %s: %s", developer, e)

        def pick(name, default):
            value = fields.get(name)
            return value.strip() if isinstance(value, str) and value.strip() else default

        return DeveloperAnalysis(
            developer=developer,
            summary=pick("performance_summary", generic_summary(developer, metrics)),
            strengths=pick("strengths", generic_strengths(developer)),
            improvements=pick("improvements", generic_improvements(developer)),
            metrics=metrics,
        )

    @staticmethod
    def answer_followup(question: str, state: ConversationState) -> Optional[Tuple[str, str, str]]:
        """(developer, kind, text) from the cache, or None to fall through to normal handling."""
        kind = PlannerAgent.followup_kind(question)
        if kind is None:
            return None
        developer = state.resolve_pronoun(question)
        if not developer:
            logger.warning("Follow-up question but no developer in context")
            return None
        analysis = state.get_developer_analysis(developer)
        if analysis is None:
            logger.info("No stored analysis for %s", developer)
            return None
        logger.info("Retrieved %s analysis for %s from storage", kind, developer)
        return developer, kind, getattr(analysis, kind)
