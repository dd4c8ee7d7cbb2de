# kv.py
# Key-value backends with per-key expiry.
#   * RedisKV  -> used when REDIS_URL is set
#   * MemoryKV -> single-process fallback (dev / tests)
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis

from settings import settings


class MemoryKV:
    """In-process store. Entries past their TTL behave as if absent."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def _live(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def _expiry(self, ttl: Optional[int]) -> Optional[float]:
        return self._clock() + ttl if ttl else None

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._live(key)
            return value if isinstance(value, str) else None

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        with self._lock:
            self._data[key] = (value, self._expiry(ttl))

    def delete(self, key: str) -> bool:
        with self._lock:
            if self._live(key) is None:
                return False
            del self._data[key]
            return True

    def push_bounded(self, key: str, value: str, max_len: int, ttl: Optional[int] = None) -> None:
        with self._lock:
            items = self._live(key)
            items = [value] + (items if isinstance(items, list) else [])
            self._data[key] = (items[:max_len], self._expiry(ttl))

    def read_list(self, key: str) -> List[str]:
        with self._lock:
            items = self._live(key)
            return list(items) if isinstance(items, list) else []


class RedisKV:
    def __init__(self, client: redis.Redis):
        self._r = client

    @classmethod
    def from_url(cls, url: str) -> "RedisKV":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Optional[str]:
        return self._r.get(key)

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        if ttl:
            self._r.setex(key, ttl, value)
        else:
            self._r.set(key, value)

    def delete(self, key: str) -> bool:
        return bool(self._r.delete(key))

    def push_bounded(self, key: str, value: str, max_len: int, ttl: Optional[int] = None) -> None:
        # LPUSH + LTRIM in one MULTI so concurrent webhooks can't lose entries
        pipe = self._r.pipeline(transaction=True)
        pipe.lpush(key, value)
        pipe.ltrim(key, 0, max_len - 1)
        if ttl:
            pipe.expire(key, ttl)
        pipe.execute()

    def read_list(self, key: str) -> List[str]:
        return self._r.lrange(key, 0, -1)


def build_kv():
    if settings.redis_url:
        return RedisKV.from_url(settings.redis_url)
    return MemoryKV()

