"""
Tests for debounced autosave and the scoring result cache.
"""

from datetime import timedelta

from mbti_assess.utils.autosave import DebouncedSaver
from mbti_assess.utils.scoring_cache import ScoringCache, cache_key


class Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, session_id, state):
        self.calls.append((session_id, state))


class TestDebouncedSaver:
    def test_rapid_changes_coalesce_into_last_state(self, scheduler):
        save = Recorder()
        saver = DebouncedSaver(scheduler, save)
        for i in range(5):
            saver.request_save("s-1", {"step": i})
            scheduler.advance(timedelta(milliseconds=500))
        assert save.calls == []

        scheduler.advance(timedelta(seconds=2))
        assert save.calls == [("s-1", {"step": 4})]

    def test_sais_window_is_shorter(self, scheduler):
        save = Recorder()
        saver = DebouncedSaver(scheduler, save)
        saver.request_save("s-1", {"v": 1}, methodology="sais")
        scheduler.advance(timedelta(milliseconds=500))
        assert len(save.calls) == 1
        assert saver.delay_for("sais") == 0.5
        assert saver.delay_for("traits") == 2.0
        assert saver.delay_for(None) == 2.0

    def test_snapshot_is_taken_at_request_time(self, scheduler):
        save = Recorder()
        saver = DebouncedSaver(scheduler, save)
        state = {"responses": [1]}
        saver.request_save("s-1", state)
        state["responses"].append(2)
        saver.flush("s-1")
        assert save.calls == [("s-1", {"responses": [1]})]

    def test_sessions_are_independent(self, scheduler):
        save = Recorder()
        saver = DebouncedSaver(scheduler, save)
        saver.request_save("a", {"v": "a"})
        saver.request_save("b", {"v": "b"})
        scheduler.advance(timedelta(seconds=2))
        assert sorted(save.calls, key=lambda c: c[0]) == [("a", {"v": "a"}), ("b", {"v": "b"})]

    def test_flush_and_discard(self, scheduler):
        save = Recorder()
        saver = DebouncedSaver(scheduler, save)
        saver.request_save("s-1", {"v": 1})
        assert saver.has_pending("s-1")
        assert saver.flush("s-1") is True
        assert saver.flush("s-1") is False

        saver.request_save("s-1", {"v": 2})
        saver.discard("s-1")
        scheduler.advance(timedelta(seconds=5))
        assert save.calls == [("s-1", {"v": 1})]
        assert scheduler.pending == 0

    def test_failed_save_is_logged_not_raised(self, scheduler):
        def explode(session_id, state):
            raise RuntimeError("disk on fire")

        saver = DebouncedSaver(scheduler, explode)
        saver.request_save("s-1", {})
        assert saver.flush("s-1") is False


class TestScoringCache:
    def test_key_covers_whole_request(self):
        responses = [{"questionId": "1", "selectedOption": "A"}]
        base = cache_key("s-1", "scenarios", False, responses)
        assert base == cache_key("s-1", "scenarios", False, [dict(r) for r in responses])
        assert base != cache_key("s-1", "scenarios", True, responses)
        assert base != cache_key("s-1", "traits", False, responses)
        assert base != cache_key("s-2", "scenarios", False, responses)
        assert base != cache_key("s-1", "scenarios", False, [{"questionId": "1", "selectedOption": "B"}])

    def test_ttl(self, clock):
        cache = ScoringCache(ttl_seconds=300, clock=clock)
        cache.set("k", "result")
        clock.advance(timedelta(seconds=299))
        assert cache.get("k") == "result"
        clock.advance(timedelta(seconds=1))
        assert cache.get("k") is None

    def test_purge_expired(self, clock):
        cache = ScoringCache(ttl_seconds=60, clock=clock)
        cache.set("old", 1)
        clock.advance(timedelta(seconds=30))
        cache.set("new", 2)
        clock.advance(timedelta(seconds=30))
        assert cache.purge_expired() == 1
        assert len(cache) == 1
