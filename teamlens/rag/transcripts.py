# teamlens/rag/transcripts.py

import logging
import re
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from teamlens.errors import ExecutionError

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_DAYS = 30
MAX_CHUNKS = 30
MAX_TERMS = 8

_UNIT_DAYS = {"day": 1, "week": 7, "month": 30, "year": 365}
_ALL_TIME = re.compile(r"\b(all[\s-]time|ever|since the beginning|of all time)\b", re.IGNORECASE)
_LAST_N = re.compile(r"\b(?:last|past|previous)\s+(\d+)\s+(day|week|month|year)s?\b", re.IGNORECASE)
_LAST_UNIT = re.compile(r"\b(?:last|past|this|previous)\s+(day|week|month|quarter|year)\b", re.IGNORECASE)
_TODAY = re.compile(r"\b(today|yesterday)\b", re.IGNORECASE)

STOPWORDS = {
    "about", "after", "also", "been", "does", "from", "have", "into", "last", "many", "more",
    "most", "much", "over", "past", "show", "since", "some", "than", "that", "their", "them",
    "they", "this", "what", "when", "which", "with", "were", "will", "would", "should", "could",
    "days", "week", "weeks", "month", "months", "year", "years", "time", "there", "these",
    "those", "list", "give", "tell", "team", "top",
}


def extract_period_days(text: str) -> Optional[int]:
    """
    Look-back window in days named by the utterance.
    None means no limit ("all time"); unnamed windows default to 30 days.
    """
    q = text or ""
    if _ALL_TIME.search(q):
        return None
    m = _LAST_N.search(q)
    if m:
        return max(1, int(m.group(1)) * _UNIT_DAYS[m.group(2).lower()])
    m = _LAST_UNIT.search(q)
    if m:
        unit = m.group(1).lower()
        return 90 if unit == "quarter" else _UNIT_DAYS[unit]
    if _TODAY.search(q):
        return 1
    return DEFAULT_PERIOD_DAYS


def search_terms(text: str) -> List[str]:
    words = re.findall(r"[A-Za-z][A-Za-z0-9_'-]{3,}", text or "")
    terms = []
    for w in words:
        lw = w.lower()
        if lw not in STOPWORDS and lw not in terms:
            terms.append(lw)
    return terms[:MAX_TERMS]


class TranscriptSearch:
    """Keyword search over meeting transcript chunks stored beside the read model."""

    def __init__(self, runner, source: Optional[str] = "github_jira"):
        self.runner = runner
        self.source = source

    def search(
        self,
        query: str,
        limit: int = MAX_CHUNKS,
        date_from: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        terms = search_terms(query)
        if not terms:
            return []

        p = self.runner.placeholder
        where = ["(" + " OR ".join([f"text ILIKE {p}"] * len(terms)) + ")"]
        params: List[Any] = [f"%{t}%" for t in terms]
        if self.source:
            where.append(f"source = {p}")
            params.append(self.source)
        if date_from is not None:
            where.append(f"meeting_date >= {p}")
            params.append(date_from)

        sql = (
            "SELECT meeting_date, text FROM meeting_transcripts "
            f"WHERE {' AND '.join(where)} "
            f"ORDER BY meeting_date DESC LIMIT {int(min(limit, MAX_CHUNKS))}"
        )
        try:
            cols, rows = self.runner.query(sql, params)
        except ExecutionError as e:
            logger.error("Transcript search failed: %s", e.detail)
            return []
        return [dict(zip(cols, r)) for r in rows]

    def search_recent(self, query: str, extra_terms: Optional[str] = None) -> List[Dict[str, Any]]:
        """Search using the window named in the question (30 days by default)."""
        days = extract_period_days(query)
        date_from = date.today() - timedelta(days=days) if days else None
        chunks = self.search(" ".join(filter(None, [query, extra_terms])), date_from=date_from)
        logger.info("Found %d transcript chunks since %s", len(chunks), date_from or "the beginning")
        return chunks
