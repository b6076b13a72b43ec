"""
Correlator - Create-or-Attach Decision Engine

Redacts an inbound event, fingerprints it, and either attaches it to the
open issue that already owns the fingerprint or creates a new issue.

Design Decisions:
- One store transaction per event: the event and the issue change commit
  together or not at all
- A lost create race (FingerprintConflictError) is retried as an attach
- Feedback is never grouped; every feedback event opens its own issue
- Attaching never changes severity, status or routing
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional, Sequence, Tuple

from pulsecore.apps import App
from pulsecore.errors import (
    CorrelationError,
    FingerprintConflictError,
    IssueNotFoundError,
    PulseError,
)
from pulsecore.events.models import (
    BackendErrorPayload,
    Event,
    EventInput,
    FeedbackPayload,
    FrontendErrorPayload,
)
from pulsecore.issues.models import (
    Issue,
    IssueInput,
    IssuePatch,
    IssueType,
    ReportedBy,
    Severity,
)
from pulsecore.utils.time import window_start

from .context import PipelineContext
from .fingerprint import extract_fingerprint_input, generate_fingerprint
from .router import compute_initial_routing

logger = logging.getLogger(__name__)

TITLE_MAX = 60
FEEDBACK_TITLE_MAX = 50
DESCRIPTION_STACK_LINES = 10


@dataclass
class CorrelationResult:
    """Outcome of processing one event."""
    issue: Issue
    created: bool
    event: Event
    fingerprint: Optional[str]
    redactions_applied: int


@dataclass
class BatchResult:
    results: List[CorrelationResult] = field(default_factory=list)
    failures: List[Tuple[int, PulseError]] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return sum(1 for r in self.results if r.created)

    @property
    def attached_count(self) -> int:
        return sum(1 for r in self.results if not r.created)


# =============================================================================
# Issue attributes derived from the first event
# =============================================================================

def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit - 3] + "..."


def generate_issue_title(event: Event) -> str:
    payload = event.payload
    if isinstance(payload, FeedbackPayload):
        category = (payload.category or "feedback").capitalize()
        return f"{category}: {_truncate(payload.description or '', FEEDBACK_TITLE_MAX)}"
    if isinstance(payload, (FrontendErrorPayload, BackendErrorPayload)):
        error_type = payload.error_type or "Error"
        return f"{error_type}: {_truncate(payload.message or 'Unknown error', TITLE_MAX)}"
    raise TypeError(f"Unsupported payload type: {type(payload).__name__}")


def generate_issue_description(event: Event) -> str:
    payload = event.payload
    parts = [
        f"Route: {event.route_or_url}",
        f"Version: {event.version}",
        f"Environment: {event.environment}",
    ]

    if isinstance(payload, FeedbackPayload):
        parts.append(f"\nDescription: {payload.description or 'N/A'}")
        if payload.reproduction_steps:
            parts.append(f"\nReproduction Steps: {payload.reproduction_steps}")
    elif isinstance(payload, (FrontendErrorPayload, BackendErrorPayload)):
        parts.append(f"\nError: {payload.message or 'Unknown'}")
        if payload.stack:
            stack = "\n".join(payload.stack.splitlines()[:DESCRIPTION_STACK_LINES])
            parts.append(f"\nStack Trace:\n{stack}")
    else:
        raise TypeError(f"Unsupported payload type: {type(payload).__name__}")

    return "\n".join(parts)


def map_issue_type(event: Event) -> IssueType:
    payload = event.payload
    if isinstance(payload, (FrontendErrorPayload, BackendErrorPayload)):
        return IssueType.BUG
    if isinstance(payload, FeedbackPayload):
        if payload.category == "feature":
            return IssueType.FEATURE
        return IssueType.FEEDBACK
    raise TypeError(f"Unsupported payload type: {type(payload).__name__}")


def infer_severity(event: Event) -> Severity:
    """Starting severity for a new issue; humans adjust it afterwards."""
    payload = event.payload
    prod = event.environment == "prod"

    if isinstance(payload, BackendErrorPayload):
        if not prod:
            return Severity.P3
        error_type = (payload.error_type or "").lower()
        status = payload.http_status if isinstance(payload.http_status, int) else 0
        if "critical" in error_type or "fatal" in error_type or status >= 500:
            return Severity.P1
        return Severity.P2
    if isinstance(payload, FrontendErrorPayload):
        return Severity.P2 if prod else Severity.P3
    if isinstance(payload, FeedbackPayload):
        if payload.category == "bug" and prod:
            return Severity.P2
        return Severity.P3
    raise TypeError(f"Unsupported payload type: {type(payload).__name__}")


# =============================================================================
# Correlator
# =============================================================================

class Correlator:
    """
    Owns the at-most-one-open-issue-per-fingerprint decision.

    Example:
        context = PipelineContext.from_settings()
        correlator = Correlator(context)

        result = correlator.process_event(event_input)
        if result.created:
            print(f"New issue {result.issue.id}")
    """

    def __init__(self, context: PipelineContext):
        self.context = context
        self.store = context.store
        self.settings = context.settings

    def process_event(self, data: EventInput, profile: Optional[str] = None) -> CorrelationResult:
        """
        Run one event through redaction, fingerprinting and grouping.

        Args:
            data: Validated inbound event
            profile: Redaction profile; defaults to the app's profile, then
                the configured default

        Raises:
            StoreError: persistence failed; nothing was committed
            CorrelationError: create/attach retries exhausted
        """
        with self.store.transaction():
            app = self.store.get_app(data.app_id)
            profile_name = profile or (app.redaction_profile if app else None) \
                or self.settings.redaction_profile

            payload, redactions = self.context.redactor.redact(data.payload, profile_name)
            redacted = replace(data, payload=payload)

            fingerprint_input = extract_fingerprint_input(
                redacted,
                top_n=self.settings.fingerprint_top_frames,
                include_route=self.settings.fingerprint_include_route,
            )
            fingerprint = generate_fingerprint(fingerprint_input) if fingerprint_input else None

            event = self.store.create_event(redacted, fingerprint=fingerprint)

            if fingerprint is None:
                issue = self._create_issue(event, None, app)
                created = True
            else:
                issue, created = self._create_or_attach(event, fingerprint, app)

        if created:
            logger.info(
                f"Created issue {issue.id} for event {event.id} "
                f"({event.event_type.value}, fingerprint={fingerprint})"
            )
        else:
            logger.info(
                f"Attached event {event.id} to issue {issue.id} "
                f"(occurrences_total={issue.counts.occurrences_total})"
            )

        return CorrelationResult(
            issue=issue,
            created=created,
            event=event,
            fingerprint=fingerprint,
            redactions_applied=redactions,
        )

    def process_batch(
        self, events: Iterable[EventInput], profile: Optional[str] = None
    ) -> BatchResult:
        """
        Process events one by one. A failed event is recorded and skipped;
        it does not affect the others.
        """
        batch = BatchResult()
        for index, data in enumerate(events):
            try:
                batch.results.append(self.process_event(data, profile))
            except PulseError as e:
                logger.error(f"Failed to process event #{index} for app {data.app_id}: {e}")
                batch.failures.append((index, e))

        logger.info(
            f"Batch done: {batch.created_count} created, {batch.attached_count} attached, "
            f"{len(batch.failures)} failed"
        )
        return batch

    def _create_or_attach(
        self, event: Event, fingerprint: str, app: Optional[App]
    ) -> Tuple[Issue, bool]:
        attempts = max(self.settings.correlator_max_retries, 0) + 1
        for attempt in range(1, attempts + 1):
            existing = self.store.find_issue_by_fingerprint(
                event.app_id, event.environment, fingerprint
            )
            if existing is not None:
                return self._attach(existing, event), False

            try:
                return self._create_issue(event, fingerprint, app), True
            except FingerprintConflictError:
                logger.info(
                    f"Fingerprint {fingerprint} claimed concurrently; "
                    f"retrying as attach (attempt {attempt}/{attempts})"
                )

        raise CorrelationError(
            f"Could not create or attach event {event.id} for fingerprint {fingerprint} "
            f"after {attempts} attempts"
        )

    def _attach(self, issue: Issue, event: Event) -> Issue:
        self.store.add_event_to_issue(issue.id, event.id)

        current = self.store.get_issue(issue.id)
        if current is None:
            raise IssueNotFoundError(issue.id)

        occurrences_24h, users_24h = self._window_counts(
            self.store.get_events(current.event_refs)
        )
        self.store.update_issue(issue.id, IssuePatch(
            occurrences_24h=occurrences_24h,
            unique_users_24h_est=users_24h,
            last_seen_at=event.timestamp,
        ))

        updated = self.store.get_issue(issue.id)
        if updated is None:
            raise IssueNotFoundError(issue.id)
        return updated

    def _create_issue(self, event: Event, fingerprint: Optional[str], app: Optional[App]) -> Issue:
        occurrences_24h, users_24h = self._window_counts([event])
        reported_by = None
        if not event.user.is_anonymous:
            reported_by = ReportedBy(user_id=event.user.user_id, email=event.user.email)

        return self.store.create_issue(IssueInput(
            app_id=event.app_id,
            environment=event.environment,
            title=generate_issue_title(event),
            description=generate_issue_description(event),
            issue_type=map_issue_type(event),
            severity=infer_severity(event),
            primary_fingerprint=fingerprint,
            initial_event_id=event.id,
            created_at=self.context.clock(),
            last_seen_at=event.timestamp,
            occurrences_24h=occurrences_24h,
            unique_users_24h_est=users_24h,
            routing=compute_initial_routing(app),
            reported_by=reported_by,
        ))

    def _window_counts(self, events: Sequence[Event]) -> Tuple[int, int]:
        """Occurrences and distinct non-anonymous users in the trailing window."""
        start = window_start(self.context.clock(), self.settings.occurrence_window_hours)
        recent = [e for e in events if e.timestamp >= start]
        users = {e.user.user_id for e in recent if not e.user.is_anonymous}
        return len(recent), len(users)
