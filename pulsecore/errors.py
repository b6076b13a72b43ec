"""
Error Types

Failures raised by the correlation core. Every error is scoped to a single
event or issue operation; the caller decides whether to retry.
"""

from typing import List, Optional


class PulseError(Exception):
    """Base class for all pulsecore errors."""


class StoreError(PulseError):
    """A persistence call failed. Aborts the surrounding operation."""


class FingerprintConflictError(StoreError):
    """
    Another open issue already owns this fingerprint.

    Raised by Store.create_issue when the (app_id, environment, fingerprint)
    slot is taken. The correlator recovers by attaching instead.
    """

    def __init__(self, app_id: str, environment: str, fingerprint: str):
        self.app_id = app_id
        self.environment = environment
        self.fingerprint = fingerprint
        super().__init__(
            f"Open issue already exists for {app_id}/{environment} fingerprint={fingerprint}"
        )


class IssueNotFoundError(PulseError):
    """Referenced issue does not exist."""

    def __init__(self, issue_id: str):
        self.issue_id = issue_id
        super().__init__(f"Issue {issue_id} not found")


class PolicyViolation(PulseError):
    """A requested change is not allowed by issue policy."""


class InvalidTransitionError(PolicyViolation):
    """Requested status transition is not an edge of the status graph."""

    def __init__(self, current: str, target: str, allowed: Optional[List[str]] = None):
        self.current = current
        self.target = target
        self.allowed = list(allowed or [])
        allowed_str = ", ".join(self.allowed) or "none"
        super().__init__(
            f"Cannot transition from {current} to {target}. Allowed: {allowed_str}"
        )


class CorrelationError(PulseError):
    """The create-or-attach decision could not be completed."""
