# teamlens/agents/context_provider.py

import logging

from teamlens.errors import ExecutionError
from teamlens.tenancy import AppScope, profile_for

logger = logging.getLogger(__name__)

# (label, table, timestamp column)
ACTIVITY_TABLES = (
    ("Total Commits", "commits", "committed_at"),
    ("Total Pull Requests", "pull_requests", "opened_at"),
    ("Total Tickets", "tickets", "created_at_jira"),
)


class ContextProvider:
    """
    Builds the live data-context block for the SQL prompt: row counts and the
    latest timestamp per activity table, active developers, and the ticket
    statuses actually present for the app.
    """

    def __init__(self, runner):
        self.runner = runner

    def _one(self, sql: str, params):
        cols, rows = self.runner.query(sql, params)
        return dict(zip(cols, rows[0])) if rows else {}

    def build_context(self, app_scope: AppScope) -> str:
        p = self.runner.placeholder
        scope = app_scope.value
        try:
            lines = ["=== CURRENT DATA CONTEXT ===", f"App: {profile_for(app_scope).display_name}"]

            devs = self._one(f"SELECT COUNT(DISTINCT id) AS total FROM developers WHERE app_type = {p}", (scope,))
            lines.append(f"Active Developers: {devs.get('total', 0)}")

            for label, table, ts_col in ACTIVITY_TABLES:
                row = self._one(
                    f"SELECT COUNT(*) AS total, MAX({ts_col}) AS latest FROM {table} WHERE app_type = {p}",
                    (scope,),
                )
                lines.append(f"{label}: {row.get('total', 0)} (latest: {row.get('latest')})")

            _, status_rows = self.runner.query(
                f"SELECT DISTINCT status FROM tickets WHERE app_type = {p} ORDER BY status",
                (scope,),
            )
            statuses = [str(r[0]) for r in status_rows if r[0] is not None]
            lines.append(f"Available Ticket Statuses: {', '.join(statuses)}")
            lines.append("=== END CONTEXT ===")
            return "\n".join(lines)
        except ExecutionError as e:
            logger.error("Error getting database context: %s", e.detail)
            return ""
