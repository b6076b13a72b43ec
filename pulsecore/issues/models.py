"""
Issue Data Models

Defines the core data structures for issue tracking.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional
import uuid

from pulsecore.utils.time import ensure_aware, to_iso, utcnow


class Severity(Enum):
    """Issue severity (P0 = most urgent)."""
    P0 = "P0"
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"


class IssueStatus(Enum):
    """Issue lifecycle status."""
    NEW = "new"                     # Just created by the pipeline
    TRIAGED = "triaged"             # Reviewed, accepted
    IN_PROGRESS = "in_progress"     # Someone is working on it
    BLOCKED = "blocked"             # Waiting on something external
    SNOOZED = "snoozed"             # Deferred
    RESOLVED = "resolved"           # Fixed (can be reopened)


class IssueType(Enum):
    """Issue classification."""
    BUG = "bug"
    FEATURE = "feature"
    FEEDBACK = "feedback"
    QUESTION = "question"


@dataclass
class IssueCounts:
    occurrences_total: int = 1
    occurrences_24h: int = 1
    unique_users_24h_est: int = 0


@dataclass
class IssueTimestamps:
    created_at: datetime = field(default_factory=utcnow)
    last_seen_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class IssueRouting:
    """Assignment. Absent routing is None on the issue, never an empty object."""
    assigned_to: str


@dataclass(frozen=True)
class ReportedBy:
    user_id: str
    email: Optional[str] = None


class EventRefs(Sequence):
    """
    Append-only ordered list of event ids.

    Supports reading and ``append``; there is no way to reorder or remove
    entries. Appending an id that is already present raises ValueError.
    """

    def __init__(self, event_ids: Iterable[str] = ()):
        self._ids: List[str] = []
        for event_id in event_ids:
            self.append(event_id)

    def append(self, event_id: str) -> None:
        if event_id in self._ids:
            raise ValueError(f"Event {event_id} already referenced")
        self._ids.append(event_id)

    def __getitem__(self, index):
        return self._ids[index]

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._ids

    def __eq__(self, other: object) -> bool:
        if isinstance(other, EventRefs):
            return self._ids == other._ids
        if isinstance(other, (list, tuple)):
            return self._ids == list(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"EventRefs({self._ids!r})"

    def to_list(self) -> List[str]:
        return list(self._ids)


@dataclass
class Issue:
    """
    A deduplicated, grouped unit representing one underlying problem or
    feedback item.

    Attributes:
        id: Unique issue identifier
        app_id: Owning application
        environment: prod/stage/dev or custom
        severity: P0..P3
        title: Human-readable title
        issue_type: bug/feature/feedback/question
        primary_fingerprint: Grouping key, None for non-groupable issues
        event_refs: Ids of every event attached to this issue, in order
        counts: Occurrence metrics
        timestamps: created_at / last_seen_at
        status: Current lifecycle status
        routing: Assignment, None when unassigned
    """

    app_id: str
    environment: str
    title: str
    severity: Severity = Severity.P2
    issue_type: IssueType = IssueType.BUG
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: IssueStatus = IssueStatus.NEW
    description: str = ""
    primary_fingerprint: Optional[str] = None
    event_refs: EventRefs = field(default_factory=EventRefs)
    counts: IssueCounts = field(default_factory=IssueCounts)
    timestamps: IssueTimestamps = field(default_factory=IssueTimestamps)
    routing: Optional[IssueRouting] = None
    tags: List[str] = field(default_factory=list)
    reported_by: Optional[ReportedBy] = None

    def is_resolved(self) -> bool:
        return self.status == IssueStatus.RESOLVED

    def is_grouped(self) -> bool:
        return self.primary_fingerprint is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "app_id": self.app_id,
            "environment": self.environment,
            "status": self.status.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "issue_type": self.issue_type.value,
            "primary_fingerprint": self.primary_fingerprint,
            "event_refs": self.event_refs.to_list(),
            "counts": {
                "occurrences_total": self.counts.occurrences_total,
                "occurrences_24h": self.counts.occurrences_24h,
                "unique_users_24h_est": self.counts.unique_users_24h_est,
            },
            "timestamps": {
                "created_at": to_iso(self.timestamps.created_at),
                "last_seen_at": to_iso(self.timestamps.last_seen_at),
            },
            "routing": {"assigned_to": self.routing.assigned_to} if self.routing else None,
            "tags": list(self.tags),
            "reported_by": (
                {"user_id": self.reported_by.user_id, "email": self.reported_by.email}
                if self.reported_by else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Issue":
        """Create Issue from dictionary."""
        counts = data.get("counts") or {}
        timestamps = data.get("timestamps") or {}
        routing = data.get("routing") or {}
        reported_by = data.get("reported_by")
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            app_id=data["app_id"],
            environment=data["environment"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            status=IssueStatus(data.get("status", "new")),
            severity=Severity(data.get("severity", "P2")),
            issue_type=IssueType(data.get("issue_type", "bug")),
            primary_fingerprint=data.get("primary_fingerprint"),
            event_refs=EventRefs(data.get("event_refs") or []),
            counts=IssueCounts(
                occurrences_total=counts.get("occurrences_total", 1),
                occurrences_24h=counts.get("occurrences_24h", 1),
                unique_users_24h_est=counts.get("unique_users_24h_est", 0),
            ),
            timestamps=IssueTimestamps(
                created_at=ensure_aware(timestamps.get("created_at")),
                last_seen_at=ensure_aware(timestamps.get("last_seen_at")),
            ),
            routing=IssueRouting(routing["assigned_to"]) if routing.get("assigned_to") else None,
            tags=list(data.get("tags") or []),
            reported_by=(
                ReportedBy(reported_by["user_id"], reported_by.get("email"))
                if reported_by else None
            ),
        )


@dataclass(frozen=True)
class IssueInput:
    """Everything Store.create_issue needs to build a new issue."""

    app_id: str
    environment: str
    title: str
    initial_event_id: str
    last_seen_at: datetime
    description: str = ""
    issue_type: IssueType = IssueType.BUG
    severity: Severity = Severity.P2
    primary_fingerprint: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    occurrences_24h: int = 1
    unique_users_24h_est: int = 0
    routing: Optional[IssueRouting] = None
    tags: List[str] = field(default_factory=list)
    reported_by: Optional[ReportedBy] = None

    def build(self, issue_id: Optional[str] = None) -> Issue:
        """Materialize the new issue in status ``new`` with one occurrence."""
        return Issue(
            id=issue_id or str(uuid.uuid4()),
            app_id=self.app_id,
            environment=self.environment,
            title=self.title,
            description=self.description,
            issue_type=self.issue_type,
            severity=self.severity,
            status=IssueStatus.NEW,
            primary_fingerprint=self.primary_fingerprint,
            event_refs=EventRefs([self.initial_event_id]),
            counts=IssueCounts(
                occurrences_total=1,
                occurrences_24h=self.occurrences_24h,
                unique_users_24h_est=self.unique_users_24h_est,
            ),
            timestamps=IssueTimestamps(
                created_at=ensure_aware(self.created_at),
                last_seen_at=ensure_aware(self.last_seen_at),
            ),
            routing=self.routing,
            tags=list(self.tags),
            reported_by=self.reported_by,
        )


@dataclass(frozen=True)
class IssuePatch:
    """
    Partial update to an issue.

    Each field left as None is untouched. Set fields overwrite the current
    value (last write wins), except last_seen_at which never moves backwards.
    Occurrence totals and event_refs are not patchable; they only change via
    Store.add_event_to_issue.
    """

    status: Optional[IssueStatus] = None
    severity: Optional[Severity] = None
    title: Optional[str] = None
    description: Optional[str] = None
    assigned_to: Optional[str] = None
    tags: Optional[List[str]] = None
    occurrences_24h: Optional[int] = None
    unique_users_24h_est: Optional[int] = None
    last_seen_at: Optional[datetime] = None

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in self.__dataclass_fields__)

    def apply_to(self, issue: Issue) -> Issue:
        """Return a copy of ``issue`` with this patch merged in."""
        counts = replace(issue.counts)
        timestamps = replace(issue.timestamps)
        updated = replace(
            issue,
            counts=counts,
            timestamps=timestamps,
            event_refs=EventRefs(issue.event_refs),
            tags=list(issue.tags),
        )

        if self.status is not None:
            updated.status = self.status
        if self.severity is not None:
            updated.severity = self.severity
        if self.title is not None:
            updated.title = self.title
        if self.description is not None:
            updated.description = self.description
        if self.assigned_to is not None:
            updated.routing = IssueRouting(self.assigned_to)
        if self.tags is not None:
            updated.tags = list(self.tags)
        if self.occurrences_24h is not None:
            counts.occurrences_24h = self.occurrences_24h
        if self.unique_users_24h_est is not None:
            counts.unique_users_24h_est = self.unique_users_24h_est
        if self.last_seen_at is not None:
            seen = ensure_aware(self.last_seen_at)
            if seen > timestamps.last_seen_at:
                timestamps.last_seen_at = seen

        return updated
