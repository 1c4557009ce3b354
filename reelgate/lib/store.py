"""
Key-value store adapter.
Every service receives a KeyValueStore through its constructor; this module
holds the interface, the key namespace, JSON helpers and an in-memory store.
"""

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# mutate(current) -> (new value or None to keep current, result)
Mutator = Callable[[Optional[bytes]], Tuple[Optional[bytes], T]]


class KeyValueStore(Protocol):
    """Storage interface used for locks, reports, ledgers and config."""

    def get(self, key: str) -> Optional[bytes]:
        ...

    def put(self, key: str, value: bytes, ttl: Optional[float] = None) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def put_if_absent(self, key: str, value: bytes, ttl: Optional[float] = None) -> bool:
        """Atomically write value unless a live value exists. True if written."""
        ...

    def update(self, key: str, mutate: Mutator, ttl: Optional[float] = None) -> T:
        """Atomic read-modify-write of one key."""
        ...


class keys:
    """Key namespace shared by all services."""

    quotas = "reelgate:rhythm:quotas"
    audience_windows = "reelgate:rhythm:windows"
    quiet_hours = "reelgate:rhythm:quiet"
    trend_scores = "reelgate:trends:scores"
    trends_refreshed = "reelgate:trends:ts"

    @staticmethod
    def lock(asset_id: str) -> str:
        return f"reelgate:media:lock:{asset_id}"

    @staticmethod
    def report(asset_id: str) -> str:
        return f"reelgate:media:report:{asset_id}"

    @staticmethod
    def ledger(profile: str) -> str:
        return f"reelgate:post:ledger:{profile}"

    @staticmethod
    def trends_used(profile: str) -> str:
        return f"reelgate:trends:used:{profile}"

    @staticmethod
    def ab_test(test_id: str) -> str:
        return f"reelgate:ab:{test_id}"

    @staticmethod
    def drafts(profile: str) -> str:
        return f"reelgate:drafts:{profile}"


def encode_json(value: Any) -> bytes:
    return json.dumps(value, default=str).encode("utf-8")


def decode_json(raw: Optional[bytes], fallback: Any, key: str = "") -> Any:
    if raw is None:
        return fallback
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring malformed JSON under {key}: {e}")
        return fallback


def get_json(store: KeyValueStore, key: str, fallback: Any = None) -> Any:
    """Read a JSON value, returning fallback when missing or malformed."""
    return decode_json(store.get(key), fallback, key)


def set_json(store: KeyValueStore, key: str, value: Any, ttl: Optional[float] = None) -> None:
    store.put(key, encode_json(value), ttl=ttl)


def update_json(
    store: KeyValueStore,
    key: str,
    fallback: Any,
    mutate: Callable[[Any], Tuple[Any, T]],
    ttl: Optional[float] = None,
) -> T:
    """
    Atomic JSON read-modify-write.
    mutate(current) returns (new value or None to keep current, result).
    """
    def _mutate(raw: Optional[bytes]) -> Tuple[Optional[bytes], T]:
        current = decode_json(raw, fallback, key)
        new_value, result = mutate(current)
        return (encode_json(new_value) if new_value is not None else None, result)

    return store.update(key, _mutate, ttl=ttl)


class InMemoryStore:
    """
    Thread-safe in-process store with per-key expiry.
    Used by tests, dry runs and single-process deployments.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: Dict[str, Tuple[bytes, Optional[float]]] = {}
        self._lock = threading.RLock()

    def _live(self, key: str) -> Optional[bytes]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    def _expiry(self, ttl: Optional[float]) -> Optional[float]:
        return self._clock() + ttl if ttl else None

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._live(key)

    def put(self, key: str, value: bytes, ttl: Optional[float] = None) -> None:
        with self._lock:
            self._data[key] = (value, self._expiry(ttl))

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def put_if_absent(self, key: str, value: bytes, ttl: Optional[float] = None) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (value, self._expiry(ttl))
            return True

    def update(self, key: str, mutate: Mutator, ttl: Optional[float] = None) -> T:
        with self._lock:
            current = self._live(key)
            new_value, result = mutate(current)
            if new_value is not None:
                expires_at = self._expiry(ttl)
                if ttl is None and key in self._data:
                    expires_at = self._data[key][1]
                self._data[key] = (new_value, expires_at)
            return result

    def keys(self, prefix: str = "") -> list:
        with self._lock:
            return [k for k in list(self._data) if k.startswith(prefix) and self._live(k) is not None]
