"""
Tests for pulsecore/events/models.py
"""

from datetime import datetime, timezone

import pytest

from pulsecore.events import (
    BackendErrorPayload,
    Event,
    EventInput,
    EventType,
    FeedbackPayload,
    FrontendErrorPayload,
    event_type_of,
    payload_from_dict,
    payload_to_dict,
)


class TestPayloads:
    """Tagged payload variants."""

    def test_unknown_fields_kept_in_extra(self):
        payload = payload_from_dict(EventType.BACKEND_ERROR, {
            "error_type": "ValueError",
            "message": "boom",
            "http_status": 500,
            "region": "eu-west-1",
        })

        assert isinstance(payload, BackendErrorPayload)
        assert payload.http_status == 500
        assert payload.extra == {"region": "eu-west-1"}
        assert payload_to_dict(payload) == {
            "error_type": "ValueError",
            "message": "boom",
            "service_name": "",
            "http_status": 500,
            "region": "eu-west-1",
        }

    def test_event_type_of(self):
        assert event_type_of(FeedbackPayload()) == EventType.FEEDBACK
        assert event_type_of(FrontendErrorPayload()) == EventType.FRONTEND_ERROR
        assert event_type_of(BackendErrorPayload()) == EventType.BACKEND_ERROR
        assert EventType.BACKEND_ERROR.is_error
        assert not EventType.FEEDBACK.is_error

    def test_unsupported_payload(self):
        with pytest.raises(TypeError):
            payload_to_dict({"message": "x"})
        with pytest.raises(TypeError):
            event_type_of("x")


class TestEventInput:
    """Parsing of SDK-shaped events."""

    def test_from_dict(self):
        data = EventInput.from_dict({
            "app_id": "shop",
            "environment": "stage",
            "event_type": "frontend_error",
            "timestamp": "2026-03-01T12:00:00Z",
            "route_or_url": "/cart",
            "user": {"user_id": "user-1", "role": "buyer"},
            "payload": {"error_type": "TypeError", "message": "x is undefined", "line_number": 3},
            "attachment_refs": ["shot-1"],
        })

        assert data.event_type == EventType.FRONTEND_ERROR
        assert data.timestamp == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert data.payload.line_number == 3
        assert data.user.user_id == "user-1"
        assert not data.user.is_anonymous
        assert data.attachment_refs == ("shot-1",)

    def test_defaults(self):
        data = EventInput.from_dict({"app_id": "shop", "payload": {"description": "hi"}})

        assert data.event_type == EventType.FEEDBACK
        assert data.environment == "prod"
        assert data.version == "unknown"
        assert data.user.user_id == "unknown"
        assert data.user.is_anonymous
        assert data.timestamp.tzinfo is not None

    def test_unknown_event_type(self):
        with pytest.raises(ValueError):
            EventInput.from_dict({"app_id": "shop", "event_type": "metric"})


class TestEvent:
    """Persisted events."""

    def test_round_trip(self):
        data = EventInput.from_dict({
            "app_id": "shop",
            "event_type": "backend_error",
            "timestamp": "2026-03-01T12:00:00+02:00",
            "payload": {"error_type": "KeyError", "message": "'sku'", "service_name": "cart"},
            "request_metadata": {"method": "POST"},
        })

        event = Event.from_input("evt-1", data, fingerprint="abc")
        restored = Event.from_dict(event.to_dict())

        assert restored == event
        assert restored.timestamp == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
        assert restored.to_dict()["event_type"] == "backend_error"
