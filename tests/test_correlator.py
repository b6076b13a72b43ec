"""
Tests for pulsecore/pipeline/correlator.py

Runs the full pipeline against a temporary SQLite store with a fixed clock.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest import mock

import pytest

from pulsecore.apps import App, AppOwners
from pulsecore.config import Settings
from pulsecore.errors import CorrelationError, FingerprintConflictError, StoreError
from pulsecore.events.models import (
    BackendErrorPayload,
    Event,
    EventInput,
    EventUser,
    FeedbackPayload,
    FrontendErrorPayload,
)
from pulsecore.issues.manager import IssueManager
from pulsecore.issues.models import IssueStatus, IssueType, Severity
from pulsecore.issues.store import IssueStore
from pulsecore.pipeline.context import PipelineContext
from pulsecore.pipeline.correlator import (
    Correlator,
    generate_issue_description,
    generate_issue_title,
    infer_severity,
    map_issue_type,
)


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def frontend_error(message="Cannot read property 'total' of undefined", line=10,
                   user_id="user-1", minutes_ago=0, app_id="shop", environment="prod"):
    return EventInput(
        app_id=app_id,
        environment=environment,
        payload=FrontendErrorPayload(
            error_type="TypeError",
            message=message,
            stack=(
                f"at renderCart (https://shop.example.com/static/app.js:{line}:5)\n"
                f"at onClick (https://shop.example.com/static/app.js:{line + 30}:9)"
            ),
        ),
        timestamp=NOW - timedelta(minutes=minutes_ago),
        route_or_url="/cart",
        version="1.4.2",
        user=EventUser(user_id=user_id),
    )


def feedback(description="The pay button does nothing", category="bug", app_id="shop"):
    return EventInput(
        app_id=app_id,
        environment="prod",
        payload=FeedbackPayload(category=category, description=description),
        timestamp=NOW,
        route_or_url="/checkout",
        user=EventUser(user_id="user-9", email="nine@example.com"),
    )


def count_rows(store, table):
    return store._query(f"SELECT COUNT(*) AS n FROM {table}")[0]["n"]


@pytest.fixture
def store(tmp_path):
    store = IssueStore(str(tmp_path / "pulse.db"))
    store.save_app(App(
        app_id="shop",
        name="Shop",
        owners=AppOwners(po_emails=["po@shop.example.com", "backup@shop.example.com"]),
    ))
    yield store
    store.close()


def make_correlator(store, **settings):
    context = PipelineContext(
        store=store,
        settings=replace(Settings(), **settings),
        clock=lambda: NOW,
    )
    return Correlator(context)


@pytest.fixture
def correlator(store):
    return make_correlator(store)


class TestGrouping:
    """Create-or-attach decisions."""

    def test_first_error_creates_issue(self, correlator):
        result = correlator.process_event(frontend_error())

        assert result.created is True
        assert result.fingerprint is not None
        issue = result.issue
        assert issue.status == IssueStatus.NEW
        assert issue.primary_fingerprint == result.fingerprint
        assert issue.event_refs == [result.event.id]
        assert issue.counts.occurrences_total == 1
        assert issue.counts.occurrences_24h == 1
        assert issue.counts.unique_users_24h_est == 1
        assert issue.timestamps.created_at == NOW
        assert issue.issue_type == IssueType.BUG
        assert issue.severity == Severity.P2
        assert issue.title == "TypeError: Cannot read property 'total' of undefined"

    def test_same_error_shape_attaches(self, correlator):
        first = correlator.process_event(frontend_error(line=10, minutes_ago=5))
        second = correlator.process_event(frontend_error(
            message="Cannot read property 'items' of undefined", line=12, user_id="user-2",
        ))

        assert first.created is True
        assert second.created is False
        assert second.issue.id == first.issue.id
        assert second.issue.counts.occurrences_total == 2
        assert second.issue.counts.occurrences_24h == 2
        assert second.issue.counts.unique_users_24h_est == 2
        assert second.issue.event_refs == [first.event.id, second.event.id]
        assert second.issue.timestamps.last_seen_at == NOW

    def test_attach_keeps_severity_status_and_routing(self, store, correlator):
        first = correlator.process_event(frontend_error())
        manager = IssueManager(store)
        manager.change_status(first.issue.id, "triaged", reason="confirmed")
        manager.set_severity(first.issue.id, "P0", reason="checkout down")
        manager.assign(first.issue.id, "dev@shop.example.com", reason="owns cart")

        second = correlator.process_event(frontend_error(user_id="user-2"))

        assert second.issue.status == IssueStatus.TRIAGED
        assert second.issue.severity == Severity.P0
        assert second.issue.routing.assigned_to == "dev@shop.example.com"

    def test_last_seen_never_moves_back(self, correlator):
        first = correlator.process_event(frontend_error(minutes_ago=0))
        second = correlator.process_event(frontend_error(minutes_ago=30))

        assert second.issue.id == first.issue.id
        assert second.issue.timestamps.last_seen_at == NOW

    def test_monotonic_counts(self, correlator):
        first = correlator.process_event(frontend_error())

        for i in range(5):
            result = correlator.process_event(frontend_error(user_id=f"user-{i}"))

        assert result.issue.id == first.issue.id
        assert result.issue.counts.occurrences_total == 6
        assert len(result.issue.event_refs) == 6

    def test_different_errors_create_separate_issues(self, correlator):
        a = correlator.process_event(frontend_error("Cannot read property 'x' of undefined"))
        b = correlator.process_event(frontend_error("Network request failed"))

        assert a.issue.id != b.issue.id
        assert b.created is True

    def test_scoped_by_environment(self, correlator):
        prod = correlator.process_event(frontend_error(environment="prod"))
        stage = correlator.process_event(frontend_error(environment="stage"))

        assert prod.fingerprint == stage.fingerprint
        assert prod.issue.id != stage.issue.id

    def test_resolved_issue_not_reused(self, store, correlator):
        first = correlator.process_event(frontend_error())
        IssueManager(store).change_status(first.issue.id, "resolved", reason="fixed in 1.4.3")

        second = correlator.process_event(frontend_error())

        assert second.created is True
        assert second.issue.id != first.issue.id
        assert second.issue.counts.occurrences_total == 1

    def test_feedback_never_grouped(self, correlator):
        a = correlator.process_event(feedback())
        b = correlator.process_event(feedback())

        assert a.created is True and b.created is True
        assert a.issue.id != b.issue.id
        assert a.fingerprint is None
        assert a.issue.primary_fingerprint is None
        assert a.issue.issue_type == IssueType.FEEDBACK
        assert a.issue.reported_by.user_id == "user-9"


class TestWindowCounts:
    """24h occurrence and user estimates."""

    def test_old_events_excluded_from_24h(self, correlator):
        correlator.process_event(frontend_error(minutes_ago=30 * 60))
        result = correlator.process_event(frontend_error(user_id="user-2"))

        assert result.issue.counts.occurrences_total == 2
        assert result.issue.counts.occurrences_24h == 1
        assert result.issue.counts.unique_users_24h_est == 1

    def test_old_first_event_counts_zero(self, correlator):
        result = correlator.process_event(frontend_error(minutes_ago=30 * 60))

        assert result.issue.counts.occurrences_total == 1
        assert result.issue.counts.occurrences_24h == 0

    def test_anonymous_users_not_counted(self, correlator):
        correlator.process_event(frontend_error(user_id="unknown"))
        result = correlator.process_event(frontend_error(user_id="unknown"))

        assert result.issue.counts.occurrences_24h == 2
        assert result.issue.counts.unique_users_24h_est == 0
        assert result.issue.reported_by is None

    def test_repeat_user_counted_once(self, correlator):
        for _ in range(3):
            result = correlator.process_event(frontend_error(user_id="user-1"))

        assert result.issue.counts.unique_users_24h_est == 1

    def test_custom_window(self, store):
        correlator = make_correlator(store, occurrence_window_hours=1)
        correlator.process_event(frontend_error(minutes_ago=90))
        result = correlator.process_event(frontend_error(minutes_ago=10))

        assert result.issue.counts.occurrences_24h == 1


class TestRouting:
    """Initial assignment on creation."""

    def test_first_po_assigned(self, correlator):
        result = correlator.process_event(frontend_error())

        assert result.issue.routing.assigned_to == "po@shop.example.com"

    def test_unknown_app_unassigned(self, correlator):
        result = correlator.process_event(frontend_error(app_id="unregistered"))

        assert result.created is True
        assert result.issue.routing is None

    def test_app_without_pos_unassigned(self, store, correlator):
        store.save_app(App(app_id="blog"))

        result = correlator.process_event(frontend_error(app_id="blog"))

        assert result.issue.routing is None


class TestRedaction:
    """Redaction happens before anything is stored."""

    def test_event_stored_redacted(self, store, correlator):
        result = correlator.process_event(frontend_error(
            message="Cannot charge card for jane@example.com"
        ))

        stored = store.get_event(result.event.id)
        assert stored.payload.message == "Cannot charge card for [REDACTED_EMAIL]"
        assert result.redactions_applied == 1
        assert "jane@example.com" not in result.issue.title

    def test_app_profile_used(self, store, correlator):
        store.save_app(App(app_id="bank", redaction_profile="strict"))

        result = correlator.process_event(feedback("my email is jane@example.com", app_id="bank"))

        assert result.event.payload.description == "[REDACTED_TEXT]"
        assert result.issue.title == "Bug: [REDACTED_TEXT]"

    def test_explicit_profile_wins(self, store, correlator):
        store.save_app(App(app_id="bank", redaction_profile="strict"))

        result = correlator.process_event(
            feedback("my email is jane@example.com", app_id="bank"), profile="relaxed"
        )

        assert result.event.payload.description == "my email is jane@example.com"
        assert result.redactions_applied == 0

    def test_redacted_values_group_together(self, correlator):
        a = correlator.process_event(frontend_error("No account for a@example.com"))
        b = correlator.process_event(frontend_error("No account for b@example.org"))

        assert b.issue.id == a.issue.id


class TestAtomicity:
    """Store failures leave nothing behind."""

    def test_failure_on_create_rolls_back_event(self, store, correlator):
        with mock.patch.object(store, "create_issue", side_effect=StoreError("disk full")):
            with pytest.raises(StoreError):
                correlator.process_event(frontend_error())

        assert count_rows(store, "events") == 0
        assert count_rows(store, "issues") == 0

    def test_failure_on_attach_rolls_back(self, store, correlator):
        first = correlator.process_event(frontend_error())

        with mock.patch.object(store, "update_issue", side_effect=StoreError("disk full")):
            with pytest.raises(StoreError):
                correlator.process_event(frontend_error(user_id="user-2"))

        issue = store.get_issue(first.issue.id)
        assert issue.counts.occurrences_total == 1
        assert issue.event_refs == [first.event.id]
        assert count_rows(store, "events") == 1
        assert count_rows(store, "issue_events") == 1


class TestConflicts:
    """Lost create races are recovered as attaches."""

    def test_conflict_retried_as_attach(self, store, correlator):
        first = correlator.process_event(frontend_error())
        real_find = store.find_issue_by_fingerprint
        calls = []

        def racy_find(*args):
            calls.append(args)
            # The first lookup misses the issue, as if it were created concurrently
            if len(calls) == 1:
                return None
            return real_find(*args)

        with mock.patch.object(store, "find_issue_by_fingerprint", side_effect=racy_find):
            second = correlator.process_event(frontend_error(user_id="user-2"))

        assert len(calls) == 2
        assert second.created is False
        assert second.issue.id == first.issue.id
        assert second.issue.counts.occurrences_total == 2
        assert count_rows(store, "issues") == 1

    def test_retries_exhausted(self, store):
        correlator = make_correlator(store, correlator_max_retries=2)
        conflict = FingerprintConflictError("shop", "prod", "abc")

        with mock.patch.object(store, "find_issue_by_fingerprint", return_value=None), \
                mock.patch.object(store, "create_issue", side_effect=conflict) as create:
            with pytest.raises(CorrelationError):
                correlator.process_event(frontend_error())

        assert create.call_count == 3
        assert count_rows(store, "events") == 0

    def test_concurrent_events_share_one_issue(self, store, correlator):
        inputs = [frontend_error(user_id=f"user-{i}") for i in range(8)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(correlator.process_event, inputs))

        issues = store.list_issues()
        assert len(issues) == 1
        assert sum(1 for r in results if r.created) == 1
        issue = issues[0]
        assert issue.counts.occurrences_total == 8
        assert sorted(issue.event_refs) == sorted(r.event.id for r in results)
        assert len(set(issue.event_refs)) == 8


class TestBatch:
    """Batch processing isolates failures."""

    def test_batch_counts(self, correlator):
        batch = correlator.process_batch([
            frontend_error(),
            frontend_error(user_id="user-2"),
            feedback(),
        ])

        assert batch.created_count == 2
        assert batch.attached_count == 1
        assert batch.failures == []

    def test_failure_does_not_abort_batch(self, store, correlator):
        real_create = store.create_event
        calls = []

        def flaky_create(data, fingerprint=None):
            calls.append(data)
            if len(calls) == 2:
                raise StoreError("disk full")
            return real_create(data, fingerprint=fingerprint)

        with mock.patch.object(store, "create_event", side_effect=flaky_create):
            batch = correlator.process_batch([
                frontend_error(),
                feedback(),
                frontend_error(user_id="user-2"),
            ])

        assert len(batch.results) == 2
        assert len(batch.failures) == 1
        index, error = batch.failures[0]
        assert index == 1
        assert isinstance(error, StoreError)
        assert count_rows(store, "events") == 2


class TestIssueAttributes:
    """Title, description, type and severity derived from the first event."""

    def _event(self, payload, environment="prod"):
        return Event(
            id="evt-1",
            app_id="shop",
            environment=environment,
            payload=payload,
            timestamp=NOW,
            route_or_url="/api/orders",
            version="2.0.0",
        )

    def test_error_title_truncated(self):
        event = self._event(FrontendErrorPayload(error_type="TypeError", message="x" * 100))

        title = generate_issue_title(event)

        assert title == "TypeError: " + "x" * 57 + "..."

    def test_feedback_title(self):
        event = self._event(FeedbackPayload(category="feature", description="Dark mode please"))

        assert generate_issue_title(event) == "Feature: Dark mode please"

    def test_description_includes_context_and_stack(self):
        stack = "\n".join(f"line {i}" for i in range(20))
        event = self._event(BackendErrorPayload(error_type="ValueError", message="boom", stack=stack))

        description = generate_issue_description(event)

        assert "Route: /api/orders" in description
        assert "Version: 2.0.0" in description
        assert "Error: boom" in description
        assert "line 9" in description
        assert "line 10" not in description

    def test_issue_type_mapping(self):
        assert map_issue_type(self._event(BackendErrorPayload())) == IssueType.BUG
        assert map_issue_type(self._event(FeedbackPayload(category="feature"))) == IssueType.FEATURE
        assert map_issue_type(self._event(FeedbackPayload(category="bug"))) == IssueType.FEEDBACK

    @pytest.mark.parametrize("payload,environment,expected", [
        (BackendErrorPayload(error_type="FatalError"), "prod", Severity.P1),
        (BackendErrorPayload(error_type="ValueError", http_status=503), "prod", Severity.P1),
        (BackendErrorPayload(error_type="ValueError", http_status=404), "prod", Severity.P2),
        (BackendErrorPayload(error_type="FatalError"), "stage", Severity.P3),
        (FrontendErrorPayload(error_type="TypeError"), "prod", Severity.P2),
        (FrontendErrorPayload(error_type="TypeError"), "dev", Severity.P3),
        (FeedbackPayload(category="bug"), "prod", Severity.P2),
        (FeedbackPayload(category="feature"), "prod", Severity.P3),
    ])
    def test_infer_severity(self, payload, environment, expected):
        assert infer_severity(self._event(payload, environment)) == expected
