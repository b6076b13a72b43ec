"""
Issue Management

Issue models, persistence, lifecycle validation and priority scoring.
"""

from .models import (
    EventRefs,
    Issue,
    IssueCounts,
    IssueInput,
    IssuePatch,
    IssueRouting,
    IssueStatus,
    IssueTimestamps,
    IssueType,
    ReportedBy,
    Severity,
)
from .store import IssueStore, Store
from .status import ALLOWED_TRANSITIONS, StatusMachine
from .priority import PriorityScore, rank_by_priority, score
from .manager import IssueManager

__all__ = [
    "ALLOWED_TRANSITIONS",
    "EventRefs",
    "Issue",
    "IssueCounts",
    "IssueInput",
    "IssueManager",
    "IssuePatch",
    "IssueRouting",
    "IssueStatus",
    "IssueStore",
    "IssueTimestamps",
    "IssueType",
    "PriorityScore",
    "ReportedBy",
    "Severity",
    "StatusMachine",
    "Store",
    "rank_by_priority",
    "score",
]
