# teamlens/executors/sandbox.py

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from teamlens.errors import ExecutionError, RejectedQueryError

logger = logging.getLogger(__name__)

ALLOWED_PREFIXES = ("select", "with")
DANGEROUS_VERBS = ("drop", "delete", "insert", "alter", "create", "truncate")

_VERBS = "|".join(DANGEROUS_VERBS)
DANGEROUS_PATTERNS = [
    # keyword ban: the verb as a whole word in any clause position
    re.compile(r"\b(%s)\b" % _VERBS, re.IGNORECASE),
    # statement-separator ban
    re.compile(r";\s*(%s)\b" % _VERBS, re.IGNORECASE),
    # structural bans
    re.compile(r"\bupdate\b[\s\S]*?\bset\b", re.IGNORECASE),
    re.compile(r"\binto\s+\w+\s*\(", re.IGNORECASE),
]


@dataclass
class QueryResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def empty(self) -> bool:
        return not self.rows


def validate_sql(sql: Optional[str]) -> str:
    """
    Fail-closed gate for model-generated SQL. Returns the normalized statement
    or raises RejectedQueryError; nothing reaches the database on rejection.
    """
    text = (sql or "").strip()
    normalized = text.lower()
    if not normalized.startswith(ALLOWED_PREFIXES):
        logger.warning("Sandbox rejected non-SELECT SQL: %r", text)
        raise RejectedQueryError("Only SELECT queries are allowed")

    for pattern in DANGEROUS_PATTERNS:
        if pattern.search(text):
            logger.warning("Sandbox rejected SQL matching %s: %r", pattern.pattern, text)
            raise RejectedQueryError("Query contains prohibited SQL commands")

    # A second statement of any kind is never allowed
    body = text.rstrip().rstrip(";")
    if ";" in body:
        logger.warning("Sandbox rejected multi-statement SQL: %r", text)
        raise RejectedQueryError("Multiple statements are not allowed")
    return body


class QuerySandbox:
    """Validates generated SQL, then runs it through the runner with the statement timeout."""

    def __init__(self, runner, max_rows: int = 400):
        self.runner = runner
        self.max_rows = max_rows

    def execute(self, sql: str) -> QueryResult:
        statement = validate_sql(sql)
        try:
            cols, rows = self.runner.query(statement, max_rows=self.max_rows)
        except ExecutionError as e:
            logger.error("Sandboxed query failed: %s | sql=%r", e.detail, statement)
            raise
        return QueryResult(rows=[dict(zip(cols, r)) for r in rows], columns=list(cols))
