import json
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional

import redis

from lumina.config import BIBLE_CACHE_EXPIRY_MS, CACHE_KEY_PREFIX, SELECTION_KEY_PREFIX
from lumina.events import log_store_event


class MemoryStore:
    """Process-local stand-in used when Redis is configured but unreachable."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class RedisStore:
    def __init__(self, client: redis.Redis):
        self._client = client

    def get(self, key: str) -> Optional[str]:
        return self._client.get(key)

    def set(self, key: str, value: str) -> None:
        self._client.set(key, value)

    def delete(self, key: str) -> None:
        self._client.delete(key)


def open_store(url: Optional[str]):
    """Build the key-value store for this process.

    An empty url means no persistent store; the cache and selection list
    then behave as no-ops.
    """
    if not url:
        return None
    client = redis.Redis.from_url(url, decode_responses=True)
    try:
        client.ping()
    except redis.RedisError:
        log_store_event("store_fallback", {"backend": "memory"})
        return MemoryStore()
    return RedisStore(client)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _read(store, key: str) -> Optional[str]:
    try:
        return store.get(key)
    except redis.RedisError:
        log_store_event("store_read_failed", {"key": key})
        return None


def _write(store, key: str, value: str) -> None:
    try:
        store.set(key, value)
    except redis.RedisError:
        log_store_event("store_write_failed", {"key": key})


def _delete(store, key: str) -> None:
    try:
        store.delete(key)
    except redis.RedisError:
        log_store_event("store_delete_failed", {"key": key})


class ExpiringCache:
    """Key-value cache whose entries expire a fixed time after being written.

    Entries are stored as ``{"data": ..., "timestamp": <ms>}`` JSON under
    ``<prefix>.<key>``. Expired entries are deleted on read; corrupt entries
    read as a miss and stay until the next write replaces them.
    """

    def __init__(
        self,
        store,
        prefix: str = CACHE_KEY_PREFIX,
        expiry_ms: int = BIBLE_CACHE_EXPIRY_MS,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.store = store
        self.prefix = prefix
        self.expiry_ms = expiry_ms
        self._clock = clock or _now_ms

    @property
    def available(self) -> bool:
        return self.store is not None

    def _key(self, key: str) -> str:
        return f"{self.prefix}.{key}"

    def get(self, key: str):
        if not self.available:
            return None
        full_key = self._key(key)
        cached = _read(self.store, full_key)
        if not cached:
            return None
        try:
            record = json.loads(cached)
            data = record["data"]
            timestamp = int(record["timestamp"])
        except (ValueError, TypeError, KeyError, OverflowError):
            return None
        if self._clock() - timestamp > self.expiry_ms:
            _delete(self.store, full_key)
            return None
        return data

    def set(self, key: str, data) -> None:
        if not self.available:
            return
        entry = {"data": data, "timestamp": self._clock()}
        _write(self.store, self._key(key), json.dumps(entry))


def _is_selected_verse(item) -> bool:
    return (
        isinstance(item, dict)
        and isinstance(item.get("id"), str)
        and isinstance(item.get("reference"), str)
    )


class SelectionStore:
    """The verses a user has added to their study context. Never expires.

    Add and remove are read-modify-write cycles serialized by a lock in this
    process only; writers in other processes sharing the Redis key can still
    overwrite each other.
    """

    def __init__(self, store, prefix: str = SELECTION_KEY_PREFIX):
        self.store = store
        self.prefix = prefix
        self._lock = threading.Lock()

    def _key(self, scope: str) -> str:
        return f"{self.prefix}.{scope}"

    def get_selected(self, scope: str) -> List[dict]:
        if self.store is None:
            return []
        stored = _read(self.store, self._key(scope))
        if not stored:
            return []
        try:
            verses = json.loads(stored)
        except ValueError:
            return []
        if not isinstance(verses, list) or not all(_is_selected_verse(v) for v in verses):
            return []
        return verses

    def save_selected(self, scope: str, verses: List[dict]) -> None:
        if self.store is None:
            return
        _write(self.store, self._key(scope), json.dumps(list(verses)))

    def add_verse(self, scope: str, verse: dict) -> List[dict]:
        with self._lock:
            verses = self.get_selected(scope)
            if not any(v["id"] == verse["id"] for v in verses):
                verses.append(verse)
                self.save_selected(scope, verses)
        return verses

    def remove_verse(self, scope: str, verse_id: str) -> List[dict]:
        return self.remove_verses(scope, [verse_id])

    def remove_verses(self, scope: str, verse_ids: Iterable[str]) -> List[dict]:
        ids = set(verse_ids)
        with self._lock:
            verses = [v for v in self.get_selected(scope) if v["id"] not in ids]
            self.save_selected(scope, verses)
        return verses

    def clear(self, scope: str) -> None:
        if self.store is None:
            return
        _delete(self.store, self._key(scope))
