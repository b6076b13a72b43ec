"""
Issue Status Machine

Validates lifecycle transitions. There is no terminal state: a resolved
issue can be reopened when the problem recurs.
"""

import logging
from dataclasses import replace
from typing import Dict, FrozenSet, List, Union

from pulsecore.errors import InvalidTransitionError

from .models import Issue, IssueStatus

logger = logging.getLogger(__name__)

S = IssueStatus

ALLOWED_TRANSITIONS: Dict[IssueStatus, FrozenSet[IssueStatus]] = {
    S.NEW: frozenset({S.TRIAGED, S.IN_PROGRESS, S.RESOLVED}),
    S.TRIAGED: frozenset({S.IN_PROGRESS, S.BLOCKED, S.SNOOZED, S.RESOLVED}),
    S.IN_PROGRESS: frozenset({S.BLOCKED, S.SNOOZED, S.RESOLVED}),
    S.BLOCKED: frozenset({S.IN_PROGRESS, S.RESOLVED}),
    S.SNOOZED: frozenset({S.TRIAGED, S.IN_PROGRESS, S.RESOLVED}),
    S.RESOLVED: frozenset({S.TRIAGED, S.IN_PROGRESS}),  # reopen
}

INITIAL_STATUS = S.NEW


def _coerce(status: Union[IssueStatus, str]) -> IssueStatus:
    return status if isinstance(status, IssueStatus) else IssueStatus(status)


class StatusMachine:
    """
    Directed graph of legal issue status changes.

    Example:
        machine = StatusMachine()
        machine.can_transition("resolved", "triaged")   # True (reopen)
        machine.transition(issue, IssueStatus.BLOCKED)  # raises if illegal
    """

    def __init__(self, transitions: Dict[IssueStatus, FrozenSet[IssueStatus]] = None):
        self.transitions = transitions or ALLOWED_TRANSITIONS

    def allowed_transitions(self, current: Union[IssueStatus, str]) -> List[IssueStatus]:
        """Targets reachable from ``current``, in declaration order of IssueStatus."""
        targets = self.transitions.get(_coerce(current), frozenset())
        return [status for status in IssueStatus if status in targets]

    def can_transition(
        self, current: Union[IssueStatus, str], target: Union[IssueStatus, str]
    ) -> bool:
        return _coerce(target) in self.transitions.get(_coerce(current), frozenset())

    def validate(self, current: Union[IssueStatus, str], target: Union[IssueStatus, str]) -> None:
        """
        Raise unless ``current -> target`` is an edge of the graph.

        Raises:
            InvalidTransitionError: the edge does not exist
        """
        current, target = _coerce(current), _coerce(target)
        if not self.can_transition(current, target):
            raise InvalidTransitionError(
                current.value,
                target.value,
                [status.value for status in self.allowed_transitions(current)],
            )

    def transition(self, issue: Issue, target: Union[IssueStatus, str]) -> Issue:
        """
        Return a copy of ``issue`` in the target status.

        The passed issue is never modified; on rejection the caller still
        holds the unchanged issue.
        """
        target = _coerce(target)
        self.validate(issue.status, target)
        logger.debug(f"Issue {issue.id}: {issue.status.value} -> {target.value}")
        return replace(issue, status=target)
