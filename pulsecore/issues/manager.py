"""
Issue Manager - Console Operations

Status changes, severity changes, reassignment and ranked listing for
issues already created by the pipeline.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from pulsecore.errors import IssueNotFoundError, PolicyViolation

from .models import Issue, IssuePatch, IssueStatus, Severity
from .priority import rank_by_priority, score
from .status import StatusMachine
from .store import IssueStore

logger = logging.getLogger(__name__)


class IssueManager:
    """
    Applies human-initiated changes to issues.

    Responsibilities:
    - Validate status changes through the StatusMachine
    - Change severity and assignment
    - List issues ranked by priority score
    - Provide issue statistics for the dashboard

    Every mutating call requires a non-empty reason, which is logged for
    the audit trail.

    Example:
        manager = IssueManager(store)

        manager.change_status(issue.id, IssueStatus.TRIAGED, reason="confirmed")
        manager.assign(issue.id, "dev@example.com", reason="owns checkout")

        ranked = manager.list_issues(app_id="app-1")
    """

    def __init__(self, store: IssueStore, machine: Optional[StatusMachine] = None):
        self.store = store
        self.machine = machine or StatusMachine()
        logger.info("IssueManager initialized")

    def get_issue(self, issue_id: str) -> Issue:
        issue = self.store.get_issue(issue_id)
        if issue is None:
            raise IssueNotFoundError(issue_id)
        return issue

    def change_status(
        self,
        issue_id: str,
        status: Union[IssueStatus, str],
        reason: str,
    ) -> Issue:
        """
        Move an issue to a new status.

        Raises:
            IssueNotFoundError: unknown issue
            InvalidTransitionError: the transition is not allowed; the stored
                issue is left unchanged
        """
        self._require_reason(reason)
        with self.store.transaction():
            issue = self.get_issue(issue_id)
            updated = self.machine.transition(issue, status)
            self.store.update_issue(issue_id, IssuePatch(status=updated.status))

        logger.info(
            f"Issue {issue_id} status {issue.status.value} -> {updated.status.value} ({reason})"
        )
        return self.get_issue(issue_id)

    def set_severity(self, issue_id: str, severity: Union[Severity, str], reason: str) -> Issue:
        self._require_reason(reason)
        severity = Severity(severity) if isinstance(severity, str) else severity
        with self.store.transaction():
            issue = self.get_issue(issue_id)
            self.store.update_issue(issue_id, IssuePatch(severity=severity))

        logger.info(
            f"Issue {issue_id} severity {issue.severity.value} -> {severity.value} ({reason})"
        )
        return self.get_issue(issue_id)

    def assign(self, issue_id: str, assignee: str, reason: str) -> Issue:
        """Manually reassign an issue."""
        self._require_reason(reason)
        if not assignee or not assignee.strip():
            raise PolicyViolation("Assignee must not be empty")

        with self.store.transaction():
            self.get_issue(issue_id)
            self.store.update_issue(issue_id, IssuePatch(assigned_to=assignee.strip()))

        logger.info(f"Issue {issue_id} assigned to {assignee} ({reason})")
        return self.get_issue(issue_id)

    def list_issues(
        self,
        app_id: Optional[str] = None,
        environment: Optional[str] = None,
        status: Optional[Union[IssueStatus, str]] = None,
        severity: Optional[Union[Severity, str]] = None,
        assigned_to: Optional[str] = None,
        sort: str = "priority",
        baselines: Optional[Mapping[str, int]] = None,
        limit: int = 100,
    ) -> List[Issue]:
        """
        List issues with optional filters.

        Args:
            sort: "priority" (score, highest first) or "last_seen"
            baselines: issue_id -> previous 24h count for the trend term
        """
        if sort not in ("priority", "last_seen"):
            raise ValueError(f"Unknown sort: {sort}")

        # Ranking needs every match; the limit applies after sorting.
        issues = self.store.list_issues(
            app_id=app_id,
            environment=environment,
            status=IssueStatus(status) if isinstance(status, str) else status,
            severity=Severity(severity) if isinstance(severity, str) else severity,
            assigned_to=assigned_to,
            limit=None if sort == "priority" else limit,
        )
        if sort == "priority":
            return rank_by_priority(issues, baselines)[:limit]
        return issues

    def get_dashboard_data(self) -> Dict[str, Any]:
        """
        Get data for the issue console.

        Returns:
            Dashboard data dict with:
            - stats: Overall statistics
            - top_issues: Open issues ranked by priority, with score breakdown
            - unassigned: Open issues without an assignee
        """
        ranked = rank_by_priority(self.store.list_issues(exclude_resolved=True, limit=None))

        return {
            "stats": self.store.get_stats(),
            "top_issues": [
                {**issue.to_dict(), "priority": score(issue).to_dict()}
                for issue in ranked[:20]
            ],
            "unassigned": [issue.to_dict() for issue in ranked if issue.routing is None],
        }

    def _require_reason(self, reason: str) -> None:
        if not reason or not reason.strip():
            raise PolicyViolation("A reason is required for issue changes")
