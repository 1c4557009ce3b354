"""
Key-value store tests (in-memory backend and JSON helpers).
"""

from reelgate.lib.store import InMemoryStore, get_json, set_json, update_json


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestInMemoryStore:

    def test_put_get_delete(self):
        store = InMemoryStore()
        store.put("k", b"v")
        assert store.get("k") == b"v"
        store.delete("k")
        assert store.get("k") is None

    def test_expiry_on_read(self):
        clock = FakeClock()
        store = InMemoryStore(clock=clock)
        store.put("k", b"v", ttl=10)

        clock.now += 9.9
        assert store.get("k") == b"v"
        clock.now += 0.1
        assert store.get("k") is None

    def test_put_if_absent(self):
        clock = FakeClock()
        store = InMemoryStore(clock=clock)

        assert store.put_if_absent("lock", b"1", ttl=900) is True
        assert store.put_if_absent("lock", b"2", ttl=900) is False
        assert store.get("lock") == b"1"

        clock.now += 900
        assert store.put_if_absent("lock", b"3", ttl=900) is True

    def test_update_keeps_existing_expiry(self):
        clock = FakeClock()
        store = InMemoryStore(clock=clock)
        store.put("k", b"a", ttl=10)

        store.update("k", lambda current: (current + b"b", None))

        assert store.get("k") == b"ab"
        clock.now += 10
        assert store.get("k") is None

    def test_update_none_leaves_value(self):
        store = InMemoryStore()
        store.put("k", b"a")

        result = store.update("k", lambda current: (None, "kept"))

        assert result == "kept"
        assert store.get("k") == b"a"

    def test_keys_by_prefix(self):
        store = InMemoryStore()
        store.put("reelgate:a", b"1")
        store.put("reelgate:b", b"2")
        store.put("other", b"3")

        assert sorted(store.keys("reelgate:")) == ["reelgate:a", "reelgate:b"]


class TestJsonHelpers:

    def test_round_trip_and_fallback(self):
        store = InMemoryStore()
        assert get_json(store, "missing", []) == []
        set_json(store, "k", {"a": 1})
        assert get_json(store, "k") == {"a": 1}

    def test_malformed_json_returns_fallback(self):
        store = InMemoryStore()
        store.put("k", b"{not json")

        assert get_json(store, "k", {"default": True}) == {"default": True}

    def test_update_json(self):
        store = InMemoryStore()

        def append(items):
            return items + [len(items)], len(items) + 1

        assert update_json(store, "list", [], append) == 1
        assert update_json(store, "list", [], append) == 2
        assert get_json(store, "list") == [0, 1]
