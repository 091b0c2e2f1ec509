# teamlens/agents/planner_agent.py

import re
from typing import Optional

DATA_QUERY = "data_query"
CONVERSATIONAL = "conversational"

# Substring keywords; anything matching is routed to SQL generation.
DATA_KEYWORDS = (
    "show", "list", "count", "how many", "number of", "total", "top ", "most", "least",
    "highest", "lowest", "average", "compare", "trend", "breakdown", "distribution",
    "commit", "pull request", "prs", "merged", "ticket", "repositor", "repos", "developer",
    "status", "contribution", "activity",
    "today", "yesterday", "days", "week", "month", "quarter", "year", "all time",
)

FOLLOWUP_IMPROVEMENT = re.compile(r"improve|better|enhance|develop(?!er)|grow|work on|focus on", re.IGNORECASE)
FOLLOWUP_STRENGTH = re.compile(r"strength|strong|good at|excel|best at|strong point", re.IGNORECASE)
FOLLOWUP_PRONOUN = re.compile(r"\b(he|she|they|his|her|their|him|them)\b", re.IGNORECASE)


class PlannerAgent:
    """
    Lightweight router deciding how a user utterance is handled.
    - data_query: needs SQL against the store
    - conversational: advice / small talk, answered by the LLM directly
    """

    def __init__(self, keywords=DATA_KEYWORDS):
        self.keywords = tuple(k.lower() for k in keywords)

    def classify(self, question: str) -> str:
        q = f"{(question or '').lower()} "
        if any(word in q for word in self.keywords):
            return DATA_QUERY
        return CONVERSATIONAL

    @staticmethod
    def followup_kind(question: str) -> Optional[str]:
        """
        'improvements' / 'strengths' when the utterance is a pronoun follow-up
        about a developer already analysed, else None.
        """
        q = question or ""
        if not FOLLOWUP_PRONOUN.search(q):
            return None
        if FOLLOWUP_IMPROVEMENT.search(q):
            return "improvements"
        if FOLLOWUP_STRENGTH.search(q):
            return "strengths"
        return None
