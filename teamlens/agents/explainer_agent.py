# teamlens/agents/explainer_agent.py

import logging
import re
from typing import Any, Dict, List, Optional

import pandas as pd

from teamlens.agents.viz_agent import humanize, is_number, safe_json
from teamlens.llm.response_parser import parse_response
from teamlens.tenancy import AppScope, profile_for

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM = (
    "You generate concise, business-friendly summaries for team analytics data. "
    "Always respond with valid JSON only."
)
SUMMARY_TEMPERATURE = 0.1
SUMMARY_MAX_TOKENS = 300

# (pattern over the description, singular, plural)
_ENTITY_WORDS = (
    (r"developer", "developer", "developers"),
    (r"repositor|repo", "repository", "repositories"),
    (r"ticket", "ticket", "tickets"),
    (r"commit", "commit", "commits"),
    (r"pull request|\bprs?\b", "pull request", "pull requests"),
)


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(round(value, 1))


def analyze_results(rows: List[Dict[str, Any]]) -> str:
    """Local statistics that ground the summary prompt: per numeric column count/range/average."""
    if not rows:
        return "No data"

    df = pd.DataFrame(rows)
    insights = []
    for column in df.columns:
        if not is_number(rows[0].get(column)):
            continue
        values = pd.to_numeric(df[column], errors="coerce").dropna()
        if values.empty:
            continue
        if len(values) > 1:
            insights.append(
                f"{humanize(column)}: average {_fmt(values.mean())}, "
                f"range {_fmt(values.min())}-{_fmt(values.max())}"
            )
        else:
            insights.append(f"{humanize(column)}: {_fmt(values.iloc[0])}")

    insights.append(f"{len(df)} {'record' if len(df) == 1 else 'records'} found")
    if "name" in df.columns:
        people = len(df)
        insights.append(f"{people} {'person' if people == 1 else 'people'} analyzed")
    return "; ".join(insights)


def fallback_summary(rows: List[Dict[str, Any]], description: str) -> str:
    count = len(rows)
    desc = description or ""
    entity = "result" if count == 1 else "results"
    for pattern, singular, plural in _ENTITY_WORDS:
        if re.search(pattern, desc, re.IGNORECASE):
            entity = singular if count == 1 else plural
            break
    return f"Found {count} {entity}. {desc}".strip()


class ExplainerAgent:
    """
    Turns a result set into a short narrative for managers.
    Never blocks the data: any failure yields a templated sentence instead.
    """

    def __init__(self, llm):
        self.llm = llm

    def _build_prompt(
        self,
        user_query: str,
        rows: List[Dict[str, Any]],
        description: str,
        app_scope: AppScope,
        transcripts: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        sample = "\n".join(
            ", ".join(f"{k}: {v}" for k, v in row.items()) for row in safe_json(rows[:2])
        )
        meeting = ""
        if transcripts:
            snippets = [
                f"- ({t.get('meeting_date') or 'undated'}) {str(t.get('text', ''))[:300]}"
                for t in transcripts[:3]
            ]
            meeting = "\nRelated meeting notes:\n" + "\n".join(snippets) + "\n"

        return f"""You are analyzing {profile_for(app_scope).display_name} team performance data for: "{user_query}"

Query: {description}
Results: {len(rows)} records found

Key Data Insights: {analyze_results(rows)}

Sample data (first 2 records):
{sample}
{meeting}
Create a business-friendly summary that:
1. Explains what the data shows in simple terms (avoid technical jargon)
2. Highlights the key findings that matter to team management
3. Ends with one actionable suggestion based on the data
4. Is 2-4 sentences of plain English, written for a non-technical manager

Respond with JSON only: {{"summary": "your business summary"}}
"""

    def summarize(
        self,
        user_query: str,
        rows: List[Dict[str, Any]],
        description: str,
        app_scope: AppScope,
        transcripts: Optional[List[Dict[str, Any]]] = None,
    ) -> Optional[str]:
        if not rows:
            return None
        try:
            raw = self.llm.complete(
                self._build_prompt(user_query, rows, description, app_scope, transcripts),
                system=SUMMARY_SYSTEM,
                temperature=SUMMARY_TEMPERATURE,
                max_tokens=SUMMARY_MAX_TOKENS,
            )
        except Exception as e:
            logger.error("Business summary generation error: %s", e)
            return fallback_summary(rows, description)

        outcome = parse_response(raw, fields=("summary",))
        summary = outcome.fields.get("summary") if outcome.ok else None
        if not isinstance(summary, str) or not summary.strip():
            logger.warning("Summary reply had no usable summary field")
            return fallback_summary(rows, description)
        return summary.strip()
