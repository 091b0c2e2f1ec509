# teamlens/tenancy.py

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

from teamlens.errors import InputError


class AppScope(str, Enum):
    """Tenancy discriminator. Every generated predicate carries ``app_type = '<value>'``."""

    LEGACY = "legacy"
    PIONEER = "pioneer"

    @classmethod
    def parse(cls, value: Optional[str], default: str = "pioneer") -> "AppScope":
        raw = (value or default or "").strip().lower()
        try:
            return cls(raw)
        except ValueError:
            raise InputError(
                f"unknown app_type {value!r}",
                user_message="app_type must be 'legacy' or 'pioneer'.",
            )


# Ticket status literals as they appear in the Jira exports of both apps.
CLOSED_STATUSES = (
    "Done", "Deployed", "Deoployed To Demo", "Deployed To Demo", "Deployed to Demo",
    "Ready For Deploy", "Ready For Release", "Ready for Release",
)
OPEN_STATUSES = (
    "To Do", "Design To Do", "BLOCKED", "Blocked", "PUSHED BACK", "Pushed Back",
    "Need More Info", "No Response",
)
IN_PROGRESS_STATUSES = (
    "In Progress", "Code Review", "READY FOR REVIEW", "Ready for Review", "TESTING",
    "Testing", "APPROVED BY QA", "Approved by QA", "PRODUCT CHECK", "Product Check", "FEEDBACK",
)


@dataclass(frozen=True)
class TenantProfile:
    scope: AppScope
    display_name: str
    status_vocabulary: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    def status_mapping_lines(self):
        """Prompt lines mapping colloquial ticket states to the literal IN lists."""
        labels = {
            "closed": '"closed" or "completed" or "done"',
            "open": '"open" or "todo" or "pending"',
            "in_progress": '"in progress" or "active" or "working"',
        }
        lines = []
        for key, statuses in self.status_vocabulary.items():
            quoted = ", ".join(f"'{s}'" for s in statuses)
            lines.append(f"- {labels.get(key, key)} tickets = status IN ({quoted})")
        return lines


_DEFAULT_VOCABULARY = {
    "closed": CLOSED_STATUSES,
    "open": OPEN_STATUSES,
    "in_progress": IN_PROGRESS_STATUSES,
}

TENANT_PROFILES: Dict[AppScope, TenantProfile] = {
    AppScope.LEGACY: TenantProfile(AppScope.LEGACY, "Legacy", dict(_DEFAULT_VOCABULARY)),
    AppScope.PIONEER: TenantProfile(AppScope.PIONEER, "Pioneer", dict(_DEFAULT_VOCABULARY)),
}


def profile_for(scope: AppScope) -> TenantProfile:
    return TENANT_PROFILES[scope]
