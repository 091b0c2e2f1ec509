# teamlens/agents/sql_agent.py

import logging
from typing import Optional

from teamlens.errors import QueryPipelineError
from teamlens.executors.schema import prompt_schema_lines
from teamlens.llm.response_parser import GeneratedQuery, parse_response
from teamlens.tenancy import AppScope, profile_for

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 30
SQL_TEMPERATURE = 0.0

RESPONSE_FORMAT = (
    '{"sql": "SELECT ...", "description": "Human description", "chart_type": "bar", '
    '"transcript_search_terms": "optional keywords for meeting notes"}'
)


class SQLAgent:
    """
    Generates read-only SQL for the GitHub/Jira read model.
    - Builds the system prompt (schema, tenancy predicate, look-back, limits, status vocabulary)
    - One LLM call per generation, near-zero temperature
    - Never executes SQL itself
    """

    def __init__(self, llm, variant: str = "simple"):
        self.llm = llm
        self.variant = variant if variant in ("simple", "extended") else "simple"

    def _shared_rules(self, app_scope: AppScope):
        scope = app_scope.value
        profile = profile_for(app_scope)
        return [
            "Database Tables:",
            *prompt_schema_lines(),
            "",
            "CRITICAL FILTERING RULE:",
            f"- ALWAYS add app_type = '{scope}' for EVERY table referenced (including joined tables).",
            f"- This ensures you only query {profile.display_name} app data.",
            "",
            "TIME WINDOW:",
            f"- Unless the user names a different window, only include the last {DEFAULT_LOOKBACK_DAYS} days, e.g.",
            f"  committed_at >= CURRENT_DATE - INTERVAL '{DEFAULT_LOOKBACK_DAYS} days'",
            "- Use committed_at for commits, opened_at for pull requests, created_at_jira for tickets.",
            "- If the user asks for \"all time\" or \"ever\", do not filter by date (still filter by app_type).",
            "",
            "ROW LIMITS:",
            "- LIMIT 1 for singular superlatives (\"the most\", \"highest\", \"top developer\", \"best\").",
            "- Use the number the user gives (\"top 5\" -> LIMIT 5).",
            "- LIMIT 10 for other lists.",
            "- No LIMIT for a pure aggregate that returns one value (e.g. a total count).",
            "- Order results meaningfully, typically descending by counts or dates.",
            "",
            "JOINS:",
            "- Always JOIN developers to show names (alias the column as name), never bare IDs.",
            "- Alias repository names as repository_name.",
            "",
            "TICKET STATUS MAPPING (use these exact IN lists, never a single guessed status):",
            *profile.status_mapping_lines(),
            "",
            "Chart types:",
            "- \"bar\" for counts/numbers across multiple categories",
            "- \"pie\" for categorical distributions",
            "- \"table\" for lists or single-value aggregates",
        ]

    def _simple_rules(self, app_scope: AppScope):
        scope = app_scope.value
        days = DEFAULT_LOOKBACK_DAYS
        return [
            "SQL CONSTRAINTS:",
            "- FORBIDDEN: WITH clauses, CTEs, window functions (OVER), nested subqueries, UNION.",
            "- ONLY use: SELECT, FROM, JOIN, LEFT JOIN, WHERE, GROUP BY, HAVING, ORDER BY, LIMIT.",
            "- Exactly one statement, no trailing semicolon.",
            "",
            "FOR AN INDIVIDUAL DEVELOPER PROFILE:",
            "SELECT d.name AS developer,",
            "  COUNT(DISTINCT c.id) AS total_commits,",
            "  COUNT(DISTINCT p.id) AS total_prs,",
            "  COUNT(DISTINCT t.id) AS total_tickets",
            "FROM developers d",
            f"LEFT JOIN commits c ON c.developer_id = d.id AND c.app_type = '{scope}' "
            f"AND c.committed_at >= CURRENT_DATE - INTERVAL '{days} days'",
            f"LEFT JOIN pull_requests p ON p.developer_id = d.id AND p.app_type = '{scope}' "
            f"AND p.opened_at >= CURRENT_DATE - INTERVAL '{days} days'",
            f"LEFT JOIN tickets t ON t.developer_id = d.id AND t.app_type = '{scope}' "
            f"AND t.created_at_jira >= CURRENT_DATE - INTERVAL '{days} days'",
            f"WHERE d.app_type = '{scope}' AND (d.name ILIKE '%Name%' OR d.github_username ILIKE '%name%')",
            "GROUP BY d.name",
        ]

    def _extended_rules(self):
        return [
            "CAPABILITIES: handle simple and complex questions.",
            "- Use HAVING for aggregate conditions (e.g. COUNT(*) > 5).",
            "- Use LEFT JOIN for \"has X but not Y\" questions.",
            "- CTEs (WITH), subqueries and window functions are allowed when the logic needs them.",
            "- Exactly one statement, no trailing semicolon.",
        ]

    def build_system_prompt(
        self,
        app_scope: AppScope,
        schema_context: str = "",
        conversation_context: str = "",
    ) -> str:
        profile = profile_for(app_scope)
        parts = []
        if conversation_context:
            parts += [conversation_context, ""]
        parts += [
            f"You are a SQL query generator for a GitHub and Jira analytics dashboard ({profile.display_name} app).",
            "",
            "IMPORTANT: Respond with ONE JSON object only. Nothing before {, nothing after }.",
            f"Response format: {RESPONSE_FORMAT}",
            "Generate SELECT queries only. Never INSERT/UPDATE/DELETE/DROP/ALTER/CREATE/TRUNCATE.",
            'If the request asks for data modification or data not in these tables, return {"error": "Please rephrase your query"}.',
            "",
        ]
        if schema_context:
            parts += [schema_context, ""]
        parts += self._shared_rules(app_scope)
        parts.append("")
        parts += self._simple_rules(app_scope) if self.variant == "simple" else self._extended_rules()
        parts += ["", f"Remember: EVERY table must be filtered by app_type = '{app_scope.value}'."]
        return "\n".join(parts)

    def generate(
        self,
        user_query: str,
        app_scope: AppScope,
        schema_context: str = "",
        conversation_context: str = "",
    ) -> str:
        system = self.build_system_prompt(app_scope, schema_context, conversation_context)
        raw = self.llm.complete(user_query, system=system, temperature=SQL_TEMPERATURE)
        logger.info("SQL generation reply: %r", raw)
        return raw

    def _refinement_prompt(self, user_query: str, failed_sql: str, schema_context: str) -> str:
        return f"""The following SQL query returned no results:
{failed_sql}

Original user query: "{user_query}"

{schema_context}

Analyze what might be wrong and provide a refined SQL query that is more likely to return data.
Common issues:
- Incorrect status values or field names (use the status values listed in the context)
- Too restrictive date ranges
- Wrong table relationships or join direction
- Missing data in the requested time period

Respond with JSON only: {{"sql": "refined query", "description": "what was fixed", "chart_type": "bar|pie|table"}}
"""

    def refine(
        self,
        user_query: str,
        failed_sql: str,
        app_scope: AppScope,
        schema_context: str = "",
    ) -> Optional[GeneratedQuery]:
        """One refinement attempt for a query that ran but returned zero rows."""
        system = self.build_system_prompt(app_scope, schema_context)
        try:
            raw = self.llm.complete(
                self._refinement_prompt(user_query, failed_sql, schema_context),
                system=system,
                temperature=SQL_TEMPERATURE,
            )
        except QueryPipelineError as e:
            logger.error("Query refinement error: %s", e.detail)
            return None
        outcome = parse_response(raw)
        if not outcome.ok:
            logger.error("Query refinement reply could not be parsed")
            return None
        refined = outcome.query
        return refined if refined.sql else None
