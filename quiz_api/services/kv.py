"""
Backends clé-valeur avec TTL.

Le store de sessions ne connaît que ce contrat (get/set/delete/scan + CAS).
- RedisBackend : production, via redis-py.
- MemoryBackend : dev / tests, dictionnaire protégé par un verrou.
"""
import logging
import threading
import time
from typing import Callable, Dict, Iterator, Optional, Protocol, Tuple

import redis

logger = logging.getLogger(__name__)

Predicate = Callable[[Optional[str]], bool]


class KeyValueBackend(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> bool: ...

    def scan(self, prefix: str) -> Iterator[str]: ...

    def check_and_set(self, key: str, predicate: Predicate, value: str, ttl_seconds: int) -> bool: ...

    def ping(self) -> bool: ...


class RedisBackend:
    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str, timeout_seconds: float = 10.0) -> "RedisBackend":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client)

    def get(self, key: str) -> Optional[str]:
        return self._client.get(key)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._client.set(key, value, ex=ttl_seconds)

    def delete(self, key: str) -> bool:
        return bool(self._client.delete(key))

    def scan(self, prefix: str) -> Iterator[str]:
        # SCAN et non KEYS : ne bloque pas Redis sur un gros keyspace
        yield from self._client.scan_iter(match=f"{prefix}*", count=200)

    def check_and_set(self, key: str, predicate: Predicate, value: str, ttl_seconds: int) -> bool:
        with self._client.pipeline() as pipe:
            try:
                pipe.watch(key)
                current = pipe.get(key)
                if not predicate(current):
                    pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(key, value, ex=ttl_seconds)
                pipe.execute()
                return True
            except redis.WatchError:
                logger.debug("Concurrent write on %s, CAS aborted", key)
                return False

    def ping(self) -> bool:
        return bool(self._client.ping())


class MemoryBackend:
    """
    Backend en mémoire (processus unique). Expiration paresseuse à la lecture.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._data: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def _alive(self, key: str) -> Optional[str]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._alive(key)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + ttl_seconds)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def scan(self, prefix: str) -> Iterator[str]:
        with self._lock:
            keys = [k for k in list(self._data) if k.startswith(prefix) and self._alive(k) is not None]
        yield from keys

    def check_and_set(self, key: str, predicate: Predicate, value: str, ttl_seconds: int) -> bool:
        with self._lock:
            if not predicate(self._alive(key)):
                return False
            self._data[key] = (value, self._clock() + ttl_seconds)
            return True

    def ping(self) -> bool:
        return True
