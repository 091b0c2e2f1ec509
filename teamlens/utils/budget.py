# teamlens/utils/budget.py

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from teamlens.errors import BudgetExceededError

logger = logging.getLogger(__name__)


@dataclass
class CallBudget:
    """Per-request ceiling on external calls: LLM invocations and sandboxed executions."""

    max_llm_calls: int = 3
    max_db_executions: int = 2
    llm_calls: int = 0
    db_executions: int = 0

    def spend_llm(self, purpose: str) -> None:
        if self.llm_calls >= self.max_llm_calls:
            logger.warning("LLM call budget exhausted (%d) before %s", self.max_llm_calls, purpose)
            raise BudgetExceededError(f"LLM call budget of {self.max_llm_calls} exhausted before {purpose}")
        self.llm_calls += 1

    def spend_db(self, purpose: str) -> None:
        if self.db_executions >= self.max_db_executions:
            logger.warning("Execution budget exhausted (%d) before %s", self.max_db_executions, purpose)
            raise BudgetExceededError(f"execution budget of {self.max_db_executions} exhausted before {purpose}")
        self.db_executions += 1

    @property
    def llm_remaining(self) -> int:
        return max(0, self.max_llm_calls - self.llm_calls)

    def to_dict(self) -> Dict[str, int]:
        return {
            "llm_calls": self.llm_calls,
            "max_llm_calls": self.max_llm_calls,
            "db_executions": self.db_executions,
            "max_db_executions": self.max_db_executions,
        }


class BudgetedLLM:
    """LLM wrapper that charges every completion against a CallBudget."""

    def __init__(self, llm, budget: CallBudget):
        self.llm = llm
        self.budget = budget
        self.model = getattr(llm, "model", "unknown")

    def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        self.budget.spend_llm("completion")
        return self.llm.complete(prompt, system=system, temperature=temperature, max_tokens=max_tokens)
