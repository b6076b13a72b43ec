"""
Event Data Models

An Event is a single captured input: user feedback or a frontend/backend
error. Events are immutable once persisted. The payload is a tagged variant
selected by the event type.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from pulsecore.utils.time import ensure_aware, to_iso

ANONYMOUS_USER_ID = "unknown"


class EventType(Enum):
    """Kinds of events captured by client SDKs."""
    FEEDBACK = "feedback"
    FRONTEND_ERROR = "frontend_error"
    BACKEND_ERROR = "backend_error"

    @property
    def is_error(self) -> bool:
        return self in (EventType.FRONTEND_ERROR, EventType.BACKEND_ERROR)


@dataclass(frozen=True)
class FeedbackPayload:
    """User-submitted feedback."""
    category: str = "feedback"          # bug, feature, feedback
    description: str = ""
    reproduction_steps: Optional[str] = None
    allow_contact: Optional[bool] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FrontendErrorPayload:
    """Uncaught error reported by a browser SDK."""
    error_type: str = ""
    message: str = ""
    stack: Optional[str] = None
    component_stack: Optional[str] = None
    source_file: Optional[str] = None
    line_number: Optional[int] = None
    column_number: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BackendErrorPayload:
    """Error reported by a server-side integration."""
    error_type: str = ""
    message: str = ""
    stack: Optional[str] = None
    service_name: str = ""
    revision: Optional[str] = None
    endpoint: Optional[str] = None
    http_method: Optional[str] = None
    http_status: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)


EventPayload = Union[FeedbackPayload, FrontendErrorPayload, BackendErrorPayload]

_PAYLOAD_CLASSES = {
    EventType.FEEDBACK: FeedbackPayload,
    EventType.FRONTEND_ERROR: FrontendErrorPayload,
    EventType.BACKEND_ERROR: BackendErrorPayload,
}


def payload_from_dict(event_type: EventType, data: Optional[Dict[str, Any]]) -> EventPayload:
    """
    Build the payload variant for an event type.

    Known fields land on the dataclass; everything else is kept in ``extra``
    so it round-trips untouched.
    """
    cls = _PAYLOAD_CLASSES[event_type]
    data = dict(data or {})
    known = {name for name in cls.__dataclass_fields__ if name != "extra"}
    kwargs = {key: data.pop(key) for key in list(data) if key in known}
    return cls(extra=data, **kwargs)


def payload_to_dict(payload: EventPayload) -> Dict[str, Any]:
    """Flatten a payload variant back into a plain mapping (None fields dropped)."""
    if not isinstance(payload, (FeedbackPayload, FrontendErrorPayload, BackendErrorPayload)):
        raise TypeError(f"Unsupported payload type: {type(payload).__name__}")

    result: Dict[str, Any] = {}
    for name in payload.__dataclass_fields__:
        if name == "extra":
            continue
        value = getattr(payload, name)
        if value is not None:
            result[name] = value
    result.update(payload.extra)
    return result


def event_type_of(payload: EventPayload) -> EventType:
    """Return the tag for a payload variant."""
    if isinstance(payload, FeedbackPayload):
        return EventType.FEEDBACK
    if isinstance(payload, FrontendErrorPayload):
        return EventType.FRONTEND_ERROR
    if isinstance(payload, BackendErrorPayload):
        return EventType.BACKEND_ERROR
    raise TypeError(f"Unsupported payload type: {type(payload).__name__}")


@dataclass(frozen=True)
class EventUser:
    """Sanitized user reference. ``user_id`` is "unknown" for anonymous users."""
    user_id: str = ANONYMOUS_USER_ID
    role: str = "unknown"
    email: Optional[str] = None

    @property
    def is_anonymous(self) -> bool:
        return not self.user_id or self.user_id == ANONYMOUS_USER_ID


@dataclass(frozen=True)
class EventInput:
    """
    An event as handed to the pipeline, before it has an id.

    Attributes:
        app_id: Reporting application
        environment: prod, stage, dev or any custom name
        payload: Type-tagged payload; its variant determines event_type
        timestamp: When the client observed the event
        route_or_url: Page route or request URL
    """

    app_id: str
    environment: str
    payload: EventPayload
    timestamp: datetime = field(default_factory=lambda: ensure_aware(None))
    route_or_url: str = ""
    version: str = "unknown"
    user: EventUser = field(default_factory=EventUser)
    session_id: Optional[str] = None
    trace_id: Optional[str] = None
    attachment_refs: Tuple[str, ...] = ()
    request_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def event_type(self) -> EventType:
        return event_type_of(self.payload)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EventInput":
        """Build from the JSON shape sent by client SDKs."""
        event_type = EventType(data.get("event_type", "feedback"))
        user = data.get("user") or {}
        return cls(
            app_id=data["app_id"],
            environment=data.get("environment", "prod"),
            payload=payload_from_dict(event_type, data.get("payload")),
            timestamp=ensure_aware(data.get("timestamp")),
            route_or_url=data.get("route_or_url", ""),
            version=data.get("version") or "unknown",
            user=EventUser(
                user_id=user.get("user_id") or ANONYMOUS_USER_ID,
                role=user.get("role") or "unknown",
                email=user.get("email"),
            ),
            session_id=data.get("session_id"),
            trace_id=data.get("trace_id"),
            attachment_refs=tuple(data.get("attachment_refs") or ()),
            request_metadata=dict(data.get("request_metadata") or {}),
        )


@dataclass(frozen=True)
class Event:
    """A persisted event. Owned by at most one issue."""

    id: str
    app_id: str
    environment: str
    payload: EventPayload
    timestamp: datetime
    route_or_url: str = ""
    version: str = "unknown"
    user: EventUser = field(default_factory=EventUser)
    session_id: Optional[str] = None
    trace_id: Optional[str] = None
    fingerprint: Optional[str] = None
    attachment_refs: Tuple[str, ...] = ()
    request_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def event_type(self) -> EventType:
        return event_type_of(self.payload)

    @classmethod
    def from_input(cls, event_id: str, data: EventInput, fingerprint: Optional[str] = None) -> "Event":
        return cls(
            id=event_id,
            app_id=data.app_id,
            environment=data.environment,
            payload=data.payload,
            timestamp=ensure_aware(data.timestamp),
            route_or_url=data.route_or_url,
            version=data.version,
            user=data.user,
            session_id=data.session_id,
            trace_id=data.trace_id,
            fingerprint=fingerprint,
            attachment_refs=tuple(data.attachment_refs),
            request_metadata=dict(data.request_metadata),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "app_id": self.app_id,
            "environment": self.environment,
            "event_type": self.event_type.value,
            "timestamp": to_iso(self.timestamp),
            "route_or_url": self.route_or_url,
            "version": self.version,
            "user": {
                "user_id": self.user.user_id,
                "role": self.user.role,
                "email": self.user.email,
            },
            "payload": payload_to_dict(self.payload),
            "session_id": self.session_id,
            "trace_id": self.trace_id,
            "fingerprint": self.fingerprint,
            "attachment_refs": list(self.attachment_refs),
            "request_metadata": self.request_metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        """Create Event from dictionary."""
        base = EventInput.from_dict(data)
        return cls.from_input(data["id"], base, fingerprint=data.get("fingerprint"))
