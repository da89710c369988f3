"""
Tests for phase-based session timing, keep-alive and the expiry monitor.
"""

from datetime import timedelta

import pytest

from mbti_assess.utils.kv_store import InMemoryKeyValueStore, SqlKeyValueStore, cleanup_expired_sessions
from mbti_assess.utils.session_lifecycle import ExpirationMonitor, SessionLifecycle, format_time_remaining


@pytest.fixture
def lifecycle(clock, scheduler):
    return SessionLifecycle(InMemoryKeyValueStore(), clock=clock, scheduler=scheduler)


class TestPhases:
    def test_core_window_is_three_hours(self, lifecycle, clock):
        record = lifecycle.initialize("s-1")
        assert record.phase == "core"
        assert record.expires_at - clock() == timedelta(hours=3)
        assert record.extended_phase_started_at is None

    def test_transition_resets_window(self, lifecycle, clock):
        lifecycle.initialize("s-1")
        clock.advance(timedelta(hours=2))
        record = lifecycle.transition_to_extended("s-1")
        assert record.phase == "extended"
        assert record.extended_phase_started_at == clock()
        assert record.expires_at - clock() == timedelta(hours=48)

    def test_transition_is_one_way_and_idempotent(self, lifecycle, clock):
        lifecycle.initialize("s-1")
        first = lifecycle.transition_to_extended("s-1")
        clock.advance(timedelta(minutes=30))
        second = lifecycle.transition_to_extended("s-1")
        assert second.extended_phase_started_at == first.extended_phase_started_at
        assert second.expires_at == first.expires_at
        assert lifecycle.current_phase("s-1") == "extended"

    def test_transition_refused_for_missing_or_expired(self, lifecycle, clock):
        assert lifecycle.transition_to_extended("nope") is None
        lifecycle.initialize("s-1")
        clock.advance(timedelta(hours=3, seconds=1))
        assert lifecycle.transition_to_extended("s-1") is None

    def test_unknown_phase_rejected(self, lifecycle):
        with pytest.raises(ValueError):
            lifecycle.initialize("s-1", "bonus")


class TestExpiry:
    def test_expiry_is_a_predicate(self, lifecycle, clock):
        lifecycle.initialize("s-1")
        assert not lifecycle.is_expired(session_id="s-1")
        clock.advance(timedelta(hours=3))
        # now == expiresAt is not yet expired
        assert not lifecycle.is_expired(session_id="s-1")
        clock.advance(timedelta(seconds=1))
        assert lifecycle.is_expired(session_id="s-1")

    def test_missing_session_counts_as_expired(self, lifecycle):
        assert lifecycle.is_expired(session_id="ghost")
        assert lifecycle.is_expired()

    def test_time_remaining_and_summary(self, lifecycle, clock):
        lifecycle.initialize("s-1")
        clock.advance(timedelta(minutes=30))
        assert lifecycle.time_remaining("s-1") == timedelta(hours=2, minutes=30)
        summary = lifecycle.summary("s-1")
        assert summary["isActive"] is True
        assert summary["phase"] == "core"
        assert summary["timeRemaining"] == "2h 30m"

        clock.advance(timedelta(hours=3))
        assert lifecycle.time_remaining("s-1") == timedelta(0)
        assert lifecycle.summary("s-1")["isActive"] is False

    def test_cleanup_expired_session(self, lifecycle, clock):
        lifecycle.initialize("s-1")
        assert lifecycle.cleanup_expired_session("s-1") is False
        clock.advance(timedelta(hours=4))
        assert lifecycle.cleanup_expired_session("s-1") is True
        assert lifecycle.get("s-1") is None


class TestKeepAlive:
    def test_core_sessions_never_slide(self, lifecycle, clock):
        record = lifecycle.initialize("s-1")
        clock.advance(timedelta(minutes=1))
        updated = lifecycle.record_activity("s-1")
        assert updated.expires_at == record.expires_at

    def test_recent_activity_slides_extended_window(self, lifecycle, clock):
        lifecycle.initialize("s-1")
        lifecycle.transition_to_extended("s-1")
        clock.advance(timedelta(hours=10))
        updated = lifecycle.record_activity("s-1")
        assert updated.expires_at == clock() + timedelta(hours=48)

    def test_poll_without_recent_activity_does_not_slide(self, lifecycle, clock):
        lifecycle.initialize("s-1")
        record = lifecycle.transition_to_extended("s-1")
        clock.advance(timedelta(minutes=6))
        polled = lifecycle.update_activity("s-1")
        assert polled.expires_at == record.expires_at

    def test_poll_within_window_slides(self, lifecycle, clock):
        lifecycle.initialize("s-1")
        lifecycle.transition_to_extended("s-1")
        clock.advance(timedelta(minutes=4))
        polled = lifecycle.update_activity("s-1")
        assert polled.expires_at == clock() + timedelta(hours=48)

    def test_scheduled_poll_runs(self, lifecycle, clock, scheduler):
        lifecycle.initialize("s-1")
        lifecycle.transition_to_extended("s-1")
        assert scheduler.pending == 1
        scheduler.advance(timedelta(minutes=5))
        # Activity was exactly 5 minutes ago: outside the window, no slide
        assert lifecycle.get("s-1").expires_at == clock() - timedelta(minutes=5) + timedelta(hours=48)
        assert scheduler.pending == 1

    def test_clear_stops_poll(self, lifecycle, scheduler):
        lifecycle.initialize("s-1")
        assert lifecycle.clear("s-1") is True
        assert scheduler.pending == 0


class TestValidateState:
    def test_core_state_matches_core_session(self, lifecycle):
        lifecycle.initialize("s-1")
        assert lifecycle.validate_state({"sessionId": "s-1", "currentStep": "core-questions"})

    def test_format_state_needs_extended_session(self, lifecycle):
        lifecycle.initialize("s-1")
        state = {"sessionId": "s-1", "selectedFormat": "sais", "currentStep": "questions"}
        assert not lifecycle.validate_state(state)
        lifecycle.transition_to_extended("s-1")
        assert lifecycle.validate_state(state)

    def test_expired_or_unknown(self, lifecycle, clock):
        assert not lifecycle.validate_state({"sessionId": "ghost"})
        lifecycle.initialize("s-1")
        clock.advance(timedelta(hours=4))
        assert not lifecycle.validate_state({"sessionId": "s-1"})


class TestExpirationMonitor:
    def test_warning_then_expiration(self, clock, scheduler):
        monitor = ExpirationMonitor(scheduler, clock=clock)
        events = []
        monitor.monitor(
            "s-1",
            clock() + timedelta(minutes=30),
            on_warning=lambda: events.append(("warning", clock())),
            on_expiration=lambda: events.append(("expired", clock())),
        )
        start = clock()
        scheduler.advance(timedelta(minutes=30))
        assert events == [
            ("warning", start + timedelta(minutes=20)),
            ("expired", start + timedelta(minutes=30)),
        ]

    def test_past_deadline_fires_immediately(self, clock, scheduler):
        monitor = ExpirationMonitor(scheduler, clock=clock)
        fired = []
        monitor.monitor("s-1", clock() - timedelta(seconds=1), on_expiration=lambda: fired.append(True))
        assert fired == [True]

    def test_clear_cancels(self, clock, scheduler):
        monitor = ExpirationMonitor(scheduler, clock=clock)
        fired = []
        monitor.monitor("s-1", clock() + timedelta(minutes=30), on_expiration=lambda: fired.append(True))
        monitor.clear("s-1")
        scheduler.advance(timedelta(hours=1))
        assert fired == []


@pytest.mark.parametrize("remaining,expected", [
    (timedelta(hours=2, minutes=5), "2h 5m"),
    (timedelta(minutes=3, seconds=7), "3m 7s"),
    (timedelta(seconds=42), "42s"),
    (timedelta(0), "Expired"),
    (timedelta(seconds=-5), "Expired"),
])
def test_format_time_remaining(remaining, expected):
    assert format_time_remaining(remaining) == expected


class TestKeyValueStores:
    def test_sql_store_round_trip_and_expiry(self, session_factory, clock):
        store = SqlKeyValueStore(session_factory, "lifecycle")
        other = SqlKeyValueStore(session_factory, "progress")
        store.set("a", {"v": 1}, expires_at=clock() + timedelta(hours=1), saved_at=clock())
        store.set("b", {"v": 2}, expires_at=clock() - timedelta(hours=1), saved_at=clock())
        other.set("b", {"v": 3}, expires_at=clock() - timedelta(hours=1), saved_at=clock())

        assert store.get("a").value == {"v": 1}
        assert store.list_expired(clock()) == ["b"]
        assert cleanup_expired_sessions(store, clock()) == 1
        assert store.get("b") is None
        # Namespaces are isolated
        assert other.get("b").value == {"v": 3}

    def test_memory_store_returns_copies(self, clock):
        store = InMemoryKeyValueStore()
        value = {"items": [1]}
        store.set("k", value)
        value["items"].append(2)
        assert store.get("k").value == {"items": [1]}
        assert store.delete("k") is True
        assert store.delete("k") is False
