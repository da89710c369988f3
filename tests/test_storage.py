"""
Tests for the storage backends and the tiered orchestrator.
"""

import json

import pytest

from mbti_assess.errors import StorageQuotaExceeded, StorageUnavailable
from mbti_assess.utils.storage import FileBackend, MemoryBackend, SqlBackend, StorageBackend, TieredStorage


class BrokenBackend(StorageBackend):
    """Every call fails as if the tier were unreachable."""
    name = "broken"

    def get(self, key):
        raise StorageUnavailable("down")

    def set(self, key, value):
        raise StorageUnavailable("down")

    def remove(self, key):
        raise StorageUnavailable("down")

    def keys(self):
        raise StorageUnavailable("down")


class AlwaysFullBackend(MemoryBackend):
    name = "full"

    def set(self, key, value):
        raise StorageQuotaExceeded("full")


class TestBackends:
    def test_file_backend_round_trip(self, tmp_path):
        backend = FileBackend(tmp_path / "scratch")
        backend.set("session/1", '{"a": 1}')
        assert backend.get("session/1") == '{"a": 1}'
        assert backend.keys() == ["session/1"]
        backend.remove("session/1")
        assert backend.get("session/1") is None
        # No temp files left behind by the atomic write
        assert list((tmp_path / "scratch").glob("*.part")) == []

    def test_sql_backend_round_trip(self, session_factory):
        backend = SqlBackend(session_factory)
        backend.set("k", "v1")
        backend.set("k", "v2")
        assert backend.get("k") == "v2"
        assert backend.keys() == ["k"]
        backend.remove("k")
        assert backend.get("k") is None

    def test_memory_quota(self):
        backend = MemoryBackend(max_items=1)
        backend.set("a", "1")
        backend.set("a", "2")
        with pytest.raises(StorageQuotaExceeded):
            backend.set("b", "1")

    def test_health_check(self, tmp_path):
        assert MemoryBackend().health_check() is True
        assert FileBackend(tmp_path).health_check() is True
        assert BrokenBackend().health_check() is False


class TestTieredStorage:
    def test_requires_a_backend(self):
        with pytest.raises(ValueError):
            TieredStorage([])

    def test_write_reaches_every_tier(self):
        storage = TieredStorage([MemoryBackend(name="a"), MemoryBackend(name="b")])
        result = storage.set_item("k", {"x": 1})
        assert result.success
        assert result.data == {"savedTo": 2, "tiers": ["a", "b"], "layers": "all"}

    def test_partial_write_still_succeeds(self):
        storage = TieredStorage([BrokenBackend(), MemoryBackend()])
        result = storage.set_item("k", {"x": 1})
        assert result.success
        assert result.data["layers"] == "partial"
        assert result.errors and result.errors[0].startswith("broken")

    def test_all_tiers_failing(self):
        storage = TieredStorage([BrokenBackend()])
        result = storage.set_item("k", {"x": 1})
        assert not result.success
        assert "down" in result.error

    def test_read_reports_serving_tier(self):
        primary, fallback = MemoryBackend(name="primary"), MemoryBackend(name="fallback")
        storage = TieredStorage([primary, fallback])
        storage.set_item("k", {"x": 1})

        assert storage.get_item("k").layer == "primary"
        primary.remove("k")
        result = storage.get_item("k")
        assert result.success
        assert result.layer == "fallback"
        assert result.data == {"x": 1}

    def test_read_skips_broken_and_corrupt_tiers(self):
        corrupt, good = MemoryBackend(name="corrupt"), MemoryBackend(name="good")
        corrupt.set("k", "{not json")
        good.set("k", json.dumps({"ok": True}))
        storage = TieredStorage([BrokenBackend(), corrupt, good])
        result = storage.get_item("k")
        assert result.data == {"ok": True}
        assert result.layer == "good"

    def test_missing_key(self):
        result = TieredStorage([MemoryBackend()]).get_item("nope")
        assert not result.success
        assert result.error == "Item not found in any storage layer"

    def test_quota_evicts_oldest_half_then_retries(self):
        backend = MemoryBackend(max_items=4)
        storage = TieredStorage([backend])
        for key in ("k1", "k2", "k3", "k4"):
            storage.set_item(key, {"key": key})

        result = storage.set_item("k5", {"key": "k5"})
        assert result.success
        assert backend.keys() == ["k3", "k4", "k5"]

    def test_single_retry_only(self):
        storage = TieredStorage([AlwaysFullBackend(), MemoryBackend()])
        result = storage.set_item("k", 1)
        assert result.success
        assert result.data["tiers"] == ["memory"]
        assert "quota exceeded after cleanup" in result.errors[0]

    def test_remove_and_clear(self):
        a, b = MemoryBackend(name="a"), MemoryBackend(name="b")
        storage = TieredStorage([a, b])
        storage.set_item("k1", 1)
        storage.set_item("k2", 2)
        storage.remove_item("k1")
        assert storage.keys() == ["k2"]
        storage.clear()
        assert storage.keys() == []
        assert a.keys() == [] and b.keys() == []

    def test_health_per_tier(self):
        storage = TieredStorage([BrokenBackend(), MemoryBackend()])
        assert storage.check_health() == {"broken": False, "memory": True}
