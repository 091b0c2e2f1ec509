# teamlens/llm/response_parser.py

"""
Turns raw model text into structured fields.

Model output is not guaranteed to be well-formed JSON, so parsing runs in
two tiers: a strict ``json.loads`` over the cleaned text, then field-level
regex extraction that tolerates escaped and even unescaped inner quotes.
The outcome is tagged (STRICT / FALLBACK / FAILED) so callers branch on a
value instead of catching exceptions.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

CHART_TYPES = ("bar", "pie", "table")
QUERY_FIELDS = ("sql", "description", "chart_type", "summary", "transcript_search_terms", "error")

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*(.*?)\s*```$", re.DOTALL)


class ParseStatus(str, Enum):
    STRICT = "strict"
    FALLBACK = "fallback"
    FAILED = "failed"


@dataclass(frozen=True)
class GeneratedQuery:
    sql: str = ""
    description: str = "Query Results"
    chart_type: str = "table"
    transcript_search_terms: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_fields(cls, fields: Dict[str, Any]) -> "GeneratedQuery":
        chart_type = str(fields.get("chart_type") or "table").strip().lower()
        if chart_type not in CHART_TYPES:
            chart_type = "table"
        terms = fields.get("transcript_search_terms")
        if isinstance(terms, (list, tuple)):
            terms = " ".join(str(t) for t in terms)
        error = fields.get("error")
        return cls(
            sql=str(fields.get("sql") or "").strip(),
            description=str(fields.get("description") or "Query Results").strip(),
            chart_type=chart_type,
            transcript_search_terms=str(terms).strip() if terms else None,
            error=str(error) if error else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sql": self.sql,
            "description": self.description,
            "chart_type": self.chart_type,
            "transcript_search_terms": self.transcript_search_terms,
        }


@dataclass
class ParseOutcome:
    status: ParseStatus
    fields: Dict[str, Any] = field(default_factory=dict)
    raw_text: str = ""

    @property
    def ok(self) -> bool:
        return self.status is not ParseStatus.FAILED

    @property
    def query(self) -> Optional[GeneratedQuery]:
        if not self.ok:
            return None
        return GeneratedQuery.from_fields(self.fields)


def _strip_wrapping(text: str) -> str:
    cleaned = text.strip()
    m = _FENCE_RE.match(cleaned)
    if m:
        cleaned = m.group(1).strip()
    if len(cleaned) >= 2 and cleaned.startswith('"') and cleaned.endswith('"'):
        cleaned = cleaned[1:-1]
    return cleaned


def _unescape(text: str) -> str:
    return (
        text.replace("\\n", "\n")
        .replace("\\r", "\r")
        .replace("\\t", "\t")
        .replace('\\"', '"')
        .replace("\\\\", "\\")
    )


def _strict(candidates: Iterable[str]) -> Optional[Dict[str, Any]]:
    for candidate in candidates:
        try:
            parsed = json.loads(candidate, strict=False)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _field_patterns(name: str):
    key = re.escape(name)
    # Properly escaped value, then a lenient value that runs up to the next key or closing brace.
    return (
        re.compile(r'"%s"\s*:\s*"((?:[^"\\]|\\.)*)"\s*(?=,|\}|$)' % key, re.DOTALL),
        re.compile(r'"%s"\s*:\s*"(.*?)"\s*(?=,\s*"[A-Za-z_]+"\s*:|\}|$)' % key, re.DOTALL),
    )


def _regex_fields(candidates: Iterable[str], names: Iterable[str]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for candidate in candidates:
        for name in names:
            if name in result:
                continue
            for pattern in _field_patterns(name):
                m = pattern.search(candidate)
                if m:
                    result[name] = m.group(1).replace('\\"', '"').replace("\\\\", "\\")
                    break
        if result:
            break
    return result


def parse_response(raw_text: Optional[str], fields: Iterable[str] = QUERY_FIELDS) -> ParseOutcome:
    """Parse a model reply into a field mapping, strict first, regex second."""
    raw = raw_text or ""
    if not raw.strip():
        return ParseOutcome(ParseStatus.FAILED, raw_text=raw)

    stripped = _strip_wrapping(raw)
    unescaped = _unescape(stripped)
    candidates = [stripped, unescaped]

    start, end = stripped.find("{"), stripped.rfind("}")
    embedded = [stripped[start:end + 1]] if 0 <= start < end else []
    parsed = _strict(candidates + embedded)
    if parsed is not None:
        return ParseOutcome(ParseStatus.STRICT, parsed, raw)

    names = tuple(fields)
    recovered = _regex_fields(candidates, names)
    if recovered:
        logger.info("Recovered fields from malformed model output: %s", ", ".join(sorted(recovered)))
        return ParseOutcome(ParseStatus.FALLBACK, recovered, raw)

    logger.error("Could not parse model output: %r", raw)
    return ParseOutcome(ParseStatus.FAILED, raw_text=raw)
