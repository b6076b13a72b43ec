"""
Event Models

Typed events and their tagged payload variants.
"""

from .models import (
    ANONYMOUS_USER_ID,
    BackendErrorPayload,
    Event,
    EventInput,
    EventPayload,
    EventType,
    EventUser,
    FeedbackPayload,
    FrontendErrorPayload,
    event_type_of,
    payload_from_dict,
    payload_to_dict,
)

__all__ = [
    "ANONYMOUS_USER_ID",
    "BackendErrorPayload",
    "Event",
    "EventInput",
    "EventPayload",
    "EventType",
    "EventUser",
    "FeedbackPayload",
    "FrontendErrorPayload",
    "event_type_of",
    "payload_from_dict",
    "payload_to_dict",
]
