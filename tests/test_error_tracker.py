"""
Unit tests for ErrorTracker.
"""

from datetime import timedelta

import pytest

from docgate.services.error_tracker import (
    ErrorContext,
    ErrorFilter,
    ErrorTracker,
    Severity,
    TimeRange,
    determine_severity,
    generate_fingerprint,
)


def ctx(service="orders", operation="findById", **kwargs):
    return ErrorContext(service=service, operation=operation, **kwargs)


class TestFingerprint:
    def test_strips_non_alphanumerics(self):
        fingerprint = generate_fingerprint("network timeout!", ctx())

        assert fingerprint == "orders:findById:networktimeout"

    def test_empty_message_uses_placeholder(self):
        assert generate_fingerprint("", ctx()) == "orders:findById:Unknownerror"


class TestSeverity:
    @pytest.mark.parametrize(
        "message,operation,expected",
        [
            ("database unavailable", "findById", Severity.CRITICAL),
            ("Connection reset", "findMany", Severity.CRITICAL),
            ("request timeout", "create", Severity.CRITICAL),
            ("permission denied", "findById", Severity.HIGH),
            ("Forbidden", "findMany", Severity.HIGH),
            ("bad value", "update", Severity.MEDIUM),
            ("bad value", "findById", Severity.LOW),
        ],
    )
    def test_classification(self, message, operation, expected):
        assert determine_severity(message, operation) == expected


class TestErrorTracker:
    """Test cases for ErrorTracker."""

    def test_same_fingerprint_deduplicates(self, tracker, clock):
        first = tracker.track_error(ConnectionError("network timeout"), ctx())
        clock.advance(seconds=5)
        second = tracker.track_error(ConnectionError("network timeout"), ctx(user_id="u2"))

        assert first is second
        assert second.occurrences == 2
        assert second.last_seen_at > second.first_seen_at
        assert second.context.user_id == "u2"
        assert len(tracker.get_all_errors()) == 1

    def test_distinct_operations_are_separate(self, tracker):
        tracker.track_error(RuntimeError("boom"), ctx(operation="findById"))
        tracker.track_error(RuntimeError("boom"), ctx(operation="findMany"))

        assert len(tracker.get_all_errors()) == 2

    def test_record_fields(self, tracker):
        class CodedError(Exception):
            code = "permission-denied"

        tracked = tracker.track_error(
            CodedError("permission denied for user"),
            ctx(operation="update", user_id="u1", user_role="viewer"),
        )

        assert tracked.severity == Severity.HIGH
        assert tracked.code == "permission-denied"
        assert "permission" in tracked.tags
        assert "service:orders" in tracked.tags
        assert "operation:update" in tracked.tags
        assert "role:viewer" in tracked.tags
        assert tracked.resolved is False

    def test_message_falls_back_to_type_name(self, tracker):
        tracked = tracker.track_error(KeyError(), ctx())

        assert tracked.message == "KeyError"

    def test_stack_trace_captured_for_raised_errors(self, tracker):
        try:
            raise RuntimeError("raised")
        except RuntimeError as e:
            tracked = tracker.track_error(e, ctx())

        assert "RuntimeError: raised" in tracked.stack_trace

    def test_metrics_total_is_sum_of_occurrences(self, tracker):
        for _ in range(3):
            tracker.track_error(RuntimeError("a"), ctx(user_id="u1"))
        tracker.track_error(RuntimeError("b"), ctx(service="users"))

        metrics = tracker.get_metrics()

        assert metrics.total_errors == 4
        assert metrics.errors_by_service == {"orders": 3, "users": 1}
        assert metrics.errors_by_user == {"u1": 3}
        assert metrics.top_errors[0].message == "a"
        assert metrics.error_rate == pytest.approx(4 / 24)

    def test_metrics_respect_time_range(self, tracker, clock):
        tracker.track_error(RuntimeError("old"), ctx())
        clock.advance(hours=3)
        tracker.track_error(RuntimeError("new"), ctx())

        metrics = tracker.get_metrics(tracker.last_hours(1))

        assert metrics.total_errors == 1
        assert metrics.error_rate == pytest.approx(1.0)

    def test_eviction_drops_oldest_tenth(self, clock):
        tracker = ErrorTracker(max_errors=10, clock=clock)
        for i in range(11):
            clock.advance(seconds=1)
            tracker.track_error(RuntimeError(f"error {i}"), ctx())

        messages = {e.message for e in tracker.get_all_errors()}
        assert len(messages) == 10
        assert "error 0" not in messages
        assert "error 10" in messages

    def test_filter(self, tracker, clock):
        tracker.track_error(RuntimeError("database down"), ctx(service="orders"))
        clock.advance(seconds=1)
        low = tracker.track_error(RuntimeError("bad"), ctx(service="users", user_id="u9"))
        clock.advance(seconds=1)
        tracker.track_error(RuntimeError("bad again"), ctx(service="users"))

        by_service = tracker.get_errors_by_filter(ErrorFilter(service="users"))
        assert [e.message for e in by_service] == ["bad again", "bad"]

        assert tracker.get_errors_by_filter(ErrorFilter(severity="critical"))[0].message == (
            "database down"
        )
        assert tracker.get_errors_by_filter(ErrorFilter(user_id="u9")) == [low]
        assert tracker.get_errors_by_filter(ErrorFilter(tags=["service:orders"]))[0].message == (
            "database down"
        )

    def test_filter_by_time_range(self, tracker, clock):
        start = clock()
        tracker.track_error(RuntimeError("early"), ctx())
        clock.advance(hours=2)
        tracker.track_error(RuntimeError("late"), ctx())

        window = TimeRange(start=start, end=start + timedelta(hours=1))
        assert [e.message for e in tracker.get_errors_by_filter(ErrorFilter(time_range=window))] == [
            "early"
        ]

    def test_resolve(self, tracker):
        tracked = tracker.track_error(RuntimeError("boom"), ctx())

        assert tracker.resolve_error(tracked.id) is True
        assert tracker.resolve_error("unknown") is False
        assert tracker.get_errors_by_filter(ErrorFilter(resolved=True)) == [tracked]
        assert tracker.get_errors_by_filter(ErrorFilter(resolved=False)) == []

    def test_callbacks_notified_and_failures_swallowed(self, tracker):
        seen = []

        def broken(_):
            raise RuntimeError("observer failed")

        tracker.on_error(broken)
        unsubscribe = tracker.on_error(seen.append)

        tracked = tracker.track_error(RuntimeError("boom"), ctx())
        assert seen == [tracked]

        unsubscribe()
        tracker.track_error(RuntimeError("boom"), ctx())
        assert seen == [tracked]

    def test_clear_and_export(self, tracker):
        tracker.track_error(RuntimeError("boom"), ctx())

        exported = tracker.export_errors()
        assert exported[0]["message"] == "boom"
        assert exported[0]["severity"] == "low"

        tracker.clear_errors()
        assert tracker.get_all_errors() == []
