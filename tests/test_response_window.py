"""Unit tests for the response-window arithmetic."""
from datetime import datetime, timedelta, timezone

import pytest

from app.services.response_window import compute_deadline, format_window, is_due, seconds_left

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class TestSecondsLeft:

    def test_full_window_at_creation(self):
        deadline = compute_deadline(T0, 86400)
        assert seconds_left(deadline, None, T0) == 86400

    def test_partial_second_rounds_up(self):
        deadline = compute_deadline(T0, 10)
        now = T0 + timedelta(seconds=9, milliseconds=1)
        assert seconds_left(deadline, None, now) == 1

    def test_zero_exactly_at_deadline(self):
        deadline = compute_deadline(T0, 10)
        assert seconds_left(deadline, None, deadline) == 0

    def test_never_negative(self):
        deadline = compute_deadline(T0, 10)
        assert seconds_left(deadline, None, deadline + timedelta(hours=5)) == 0

    def test_tenant_reply_stops_clock(self):
        deadline = compute_deadline(T0, 86400)
        assert seconds_left(deadline, T0 + timedelta(minutes=1), T0) == 0

    def test_no_deadline(self):
        assert seconds_left(None, None, T0) == 0


class TestIsDue:

    def test_not_due_inside_window(self):
        deadline = compute_deadline(T0, 60)
        assert not is_due(deadline, None, T0 + timedelta(seconds=59, microseconds=999999))

    def test_due_at_deadline(self):
        deadline = compute_deadline(T0, 60)
        assert is_due(deadline, None, deadline)

    def test_never_due_after_reply(self):
        deadline = compute_deadline(T0, 60)
        assert not is_due(deadline, T0, deadline + timedelta(days=3))

    def test_no_deadline_is_not_due(self):
        assert not is_due(None, None, T0)


class TestFormatWindow:

    @pytest.mark.parametrize(
        "seconds,expected",
        [
            (86400, "24h"),
            (5400, "1h 30min"),
            (2700, "45min"),
            (90, "1min 30s"),
            (30, "30s"),
        ],
    )
    def test_renders_sub_hour_windows(self, seconds, expected):
        assert format_window(seconds) == expected
