# teamlens/utils/conversation.py

import logging
import re
import threading
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

FOCUS_CATEGORIES = ("developers", "repositories", "tickets", "pull_requests")
FOCUS_LIMIT = 5
SNAPSHOT_FOCUS_LIMIT = 3
SNAPSHOT_ANALYSIS_LIMIT = 3
SNAPSHOT_RESPONSE_CHARS = 500

PERSONAL_PRONOUNS = re.compile(r"\b(he|she|they|them|him|his|her|hers|their|theirs)\b", re.IGNORECASE)
IMPERSONAL_PRONOUNS = re.compile(r"\b(it|its)\b", re.IGNORECASE)

_CONTEXT_LABELS = {
    "developers": "Developers in focus",
    "repositories": "Repositories in focus",
    "tickets": "Recent tickets",
    "pull_requests": "Recent pull requests",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_name(name: str) -> str:
    return " ".join(str(name).split()).lower()


@dataclass(frozen=True)
class Exchange:
    user_query: str
    ai_response: str
    timestamp: str
    type: str = "data_query"


@dataclass
class DeveloperAnalysis:
    developer: str
    summary: str
    strengths: str
    improvements: str
    generated_at: str = field(default_factory=_now)
    metrics: Dict[str, Any] = field(default_factory=dict)


def _first_present(row: Dict[str, Any], keys: Iterable[str]):
    for k in keys:
        v = row.get(k)
        if v is not None and str(v).strip():
            return v
    return None


def extract_focus_entities(rows: List[Dict[str, Any]]) -> Dict[str, List[str]]:
    """Pull developer / repository / ticket / PR identifiers out of result rows by key name."""
    if not rows or not isinstance(rows[0], dict):
        return {}
    first = rows[0]
    found: Dict[str, List[str]] = {}

    def collect(category, keys, fmt=str):
        if not any(k in first for k in keys):
            return
        values: List[str] = []
        for row in rows:
            v = _first_present(row, keys)
            if v is None:
                continue
            item = fmt(v)
            if item not in values:
                values.append(item)
        if values:
            found[category] = values[:FOCUS_LIMIT]

    collect("developers", ("name", "developer_name", "developer"))
    collect("repositories", ("repository_name", "full_name", "repository"))
    collect("tickets", ("key", "ticket_key", "title"))
    collect("pull_requests", ("number", "pr_number"), fmt=lambda v: f"PR #{v}")
    return found


class ConversationState:
    """
    Bounded per-session memory: the last N exchanges, entities in focus, and
    cached developer analyses. Passed into and returned from the pipeline;
    persisted between requests only as a size-bounded snapshot.
    """

    def __init__(self, history_limit: int = 5):
        self.history_limit = history_limit
        self.history: List[Exchange] = []
        self.focus_entities: Dict[str, List[str]] = {}
        self.developer_analyses: Dict[str, DeveloperAnalysis] = {}
        self.last_focus_category: Optional[str] = None

    # -------------------------------
    # Mutation
    # -------------------------------
    def _append(self, exchange: Exchange) -> None:
        self.history.append(exchange)
        if len(self.history) > self.history_limit:
            self.history = self.history[-self.history_limit:]

    def add_exchange(self, user_query: str, ai_response: str, rows: Optional[List[Dict[str, Any]]] = None) -> None:
        if rows:
            self.update_focus(rows)
        self._append(Exchange(user_query, str(ai_response or ""), _now(), "data_query"))

    def add_conversational_exchange(self, user_query: str, ai_response: str) -> None:
        self._append(Exchange(user_query, str(ai_response or ""), _now(), "conversational"))

    def update_focus(self, rows: List[Dict[str, Any]]) -> None:
        found = extract_focus_entities(rows)
        for category, items in found.items():
            previous = [i for i in self.focus_entities.get(category, []) if i not in items]
            self.focus_entities[category] = (items + previous)[:FOCUS_LIMIT]
        if found:
            others = [c for c in FOCUS_CATEGORIES if c in found and c != "developers"]
            self.last_focus_category = others[0] if others else "developers"

    def store_developer_analysis(self, analysis: DeveloperAnalysis) -> None:
        self.developer_analyses[normalize_name(analysis.developer)] = analysis

    def clear(self) -> None:
        self.history = []
        self.focus_entities = {}
        self.developer_analyses = {}
        self.last_focus_category = None

    # -------------------------------
    # Queries
    # -------------------------------
    @property
    def has_context(self) -> bool:
        return bool(self.history or self.focus_entities)

    def has_analysis_for(self, developer: Optional[str]) -> bool:
        return bool(developer) and normalize_name(developer) in self.developer_analyses

    def get_developer_analysis(self, developer: str) -> Optional[DeveloperAnalysis]:
        return self.developer_analyses.get(normalize_name(developer))

    def resolve_pronoun(self, utterance: str) -> Optional[str]:
        """
        Personal pronouns resolve to the first developer in focus; "it"/"its"
        resolve to the most recently updated non-developer category.
        """
        text = utterance or ""
        if PERSONAL_PRONOUNS.search(text):
            devs = self.focus_entities.get("developers") or []
            if devs:
                return devs[0]
        if IMPERSONAL_PRONOUNS.search(text):
            order = [c for c in FOCUS_CATEGORIES if c != "developers"]
            if self.last_focus_category in order:
                order.remove(self.last_focus_category)
                order.insert(0, self.last_focus_category)
            for category in order:
                items = self.focus_entities.get(category) or []
                if items:
                    return items[0]
            devs = self.focus_entities.get("developers") or []
            if devs:
                return devs[0]
        return None

    def build_context(self, app_type: str, user_query: Optional[str] = None) -> str:
        if not self.has_context:
            return ""

        parts = ["=== CONVERSATION CONTEXT ===", f"App Type: {app_type}", ""]
        if self.history:
            parts.append("Recent conversation:")
            for exchange in self.history[-3:]:
                parts.append(f"User: {exchange.user_query}")
                parts.append(f"Assistant: {exchange.ai_response[:150]}...")
                parts.append("")

        for category in FOCUS_CATEGORIES:
            items = self.focus_entities.get(category)
            if items:
                parts.append(f"{_CONTEXT_LABELS[category]}: {', '.join(items)}")

        parts.append("")
        parts.append("When the user uses pronouns (he/she/they/their), they likely refer to the entities above.")
        if user_query:
            resolved = self.resolve_pronoun(user_query)
            if resolved:
                parts.append(f"Resolved reference: the pronoun in the current question refers to {resolved}.")
        parts.append("=== END CONTEXT ===")
        return "\n".join(parts)

    # -------------------------------
    # Snapshot boundary
    # -------------------------------
    def to_snapshot(self) -> Dict[str, Any]:
        analyses = sorted(self.developer_analyses.items(), key=lambda kv: kv[1].generated_at, reverse=True)
        return {
            "history": [
                {**asdict(e), "ai_response": e.ai_response[:SNAPSHOT_RESPONSE_CHARS]}
                for e in self.history[-self.history_limit:]
            ],
            "focus_entities": {k: list(v[:SNAPSHOT_FOCUS_LIMIT]) for k, v in self.focus_entities.items() if v},
            "developer_analyses": {k: asdict(v) for k, v in analyses[:SNAPSHOT_ANALYSIS_LIMIT]},
            "last_focus_category": self.last_focus_category,
        }

    @classmethod
    def from_snapshot(cls, snapshot: Optional[Dict[str, Any]], history_limit: int = 5) -> "ConversationState":
        state = cls(history_limit=history_limit)
        if not isinstance(snapshot, dict):
            return state
        try:
            state.history = [Exchange(**e) for e in snapshot.get("history", [])][-history_limit:]
            state.focus_entities = {
                k: [str(i) for i in v][:SNAPSHOT_FOCUS_LIMIT]
                for k, v in (snapshot.get("focus_entities") or {}).items()
                if k in FOCUS_CATEGORIES
            }
            state.developer_analyses = {
                k: DeveloperAnalysis(**v) for k, v in (snapshot.get("developer_analyses") or {}).items()
            }
            state.last_focus_category = snapshot.get("last_focus_category")
        except (TypeError, ValueError) as e:
            logger.warning("Discarding unreadable conversation snapshot: %s", e)
            return cls(history_limit=history_limit)
        logger.debug(
            "Restored conversation: %d exchanges, %d focus categories",
            len(state.history),
            len(state.focus_entities),
        )
        return state


class ConversationStore:
    """In-process map of session id -> bounded snapshot, with a lock per session."""

    def __init__(self, history_limit: int = 5, max_sessions: int = 1000):
        self.history_limit = history_limit
        self.max_sessions = max_sessions
        self._snapshots: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock(self, session_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(session_id, threading.Lock())

    def get(self, session_id: str) -> ConversationState:
        with self._guard:
            snapshot = self._snapshots.get(session_id)
            if snapshot is not None:
                self._snapshots.move_to_end(session_id)
        return ConversationState.from_snapshot(snapshot, history_limit=self.history_limit)

    def put(self, session_id: str, state: ConversationState) -> None:
        snapshot = state.to_snapshot()
        with self._guard:
            self._snapshots[session_id] = snapshot
            self._snapshots.move_to_end(session_id)
            while len(self._snapshots) > self.max_sessions:
                evicted, _ = self._snapshots.popitem(last=False)
                self._locks.pop(evicted, None)

    def reset(self, session_id: str) -> None:
        with self._guard:
            self._snapshots.pop(session_id, None)

    def has_context(self, session_id: str) -> bool:
        return self.get(session_id).has_context
