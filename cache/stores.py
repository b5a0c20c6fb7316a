"""
Key-value stores backing the cache tiers.

Every store speaks the same small interface (get / set / delete /
delete_prefix / keys / increment) so the cache manager, circuit breaker and
error log don't care whether they sit on process memory, SQLite or Redis.

- MemoryStore: LRU with TTL, used for tier 1 ("hot") and in tests
- SQLiteStore: durable single-host store, default for tier 2 ("warm")
- RedisStore: shared store for multi-process deployments
"""

import json
import re
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import redis

# Backend failures callers degrade on instead of failing the request
STORE_ERRORS = (redis.RedisError, sqlite3.Error)

_GLOB_SPECIAL = re.compile(r"([\\*?\[\]])")


@dataclass
class StoreEntry:
    """Single store entry with value and expiration."""
    value: Any
    expires_at: float
    created_at: float = field(default_factory=time.time)


class KeyValueStore(ABC):
    """Abstract base class for cache tier storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the value for key, or None if missing or expired."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl: int) -> None:
        """Store a JSON-compatible value for ttl seconds."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete key if it exists."""
        pass

    @abstractmethod
    def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix. Returns number removed."""
        pass

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        """List live keys starting with prefix."""
        pass

    def increment(self, key: str, ttl: int) -> int:
        """
        Increment an integer counter, (re)setting its TTL.

        The default is a plain read-modify-write; stores with an atomic
        primitive override it.
        """
        current = self.get(key)
        value = (int(current) if current is not None else 0) + 1
        self.set(key, value, ttl)
        return value


class MemoryStore(KeyValueStore):
    """
    In-process LRU store with TTL support.

    Thread-safe; FastAPI runs sync endpoints on a worker pool.
    """

    def __init__(self, max_size: int = 10000, clock: Callable[[], float] = time.time):
        """
        Initialize memory store.

        Args:
            max_size: Maximum number of entries
            clock: Time source, injectable for tests
        """
        self._data: OrderedDict[str, StoreEntry] = OrderedDict()
        self._max_size = max_size
        self._clock = clock
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None

            if self._clock() >= entry.expires_at:
                del self._data[key]
                return None

            # Move to end (most recently used)
            self._data.move_to_end(key)
            return entry.value

    def set(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            if key in self._data:
                del self._data[key]

            # Evict oldest if at capacity
            while len(self._data) >= self._max_size:
                self._data.popitem(last=False)

            now = self._clock()
            self._data[key] = StoreEntry(value=value, expires_at=now + ttl, created_at=now)

    def delete(self, key: str) -> bool:
        with self._lock:
            if key in self._data:
                del self._data[key]
                return True
            return False

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._data if k.startswith(prefix)]
            for k in doomed:
                del self._data[k]
            return len(doomed)

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            now = self._clock()
            return [k for k, e in self._data.items() if k.startswith(prefix) and e.expires_at > now]

    def increment(self, key: str, ttl: int) -> int:
        with self._lock:
            return super().increment(key, ttl)

    def ttl(self, key: str) -> Optional[float]:
        """Seconds until key expires, or None if missing."""
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            return max(0.0, entry.expires_at - self._clock())

    def clear(self) -> None:
        """Clear all entries."""
        with self._lock:
            self._data.clear()

    def stats(self) -> dict:
        """Get store statistics."""
        with self._lock:
            now = self._clock()
            valid = sum(1 for e in self._data.values() if e.expires_at > now)
            return {
                'backend': 'memory',
                'total_entries': len(self._data),
                'valid_entries': valid,
                'expired_entries': len(self._data) - valid,
                'max_size': self._max_size,
            }


class SQLiteStore(KeyValueStore):
    """Durable store: one table of JSON values with an expiry column."""

    def __init__(self, path: str = ":memory:", clock: Callable[[], float] = time.time):
        self._path = path
        self._clock = clock
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS cache_entries (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                expires_at REAL NOT NULL
            )
            """
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_cache_expires ON cache_entries(expires_at)")

    @staticmethod
    def _like(prefix: str) -> str:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        return escaped + "%"

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            row = self._conn.execute(
                "SELECT value, expires_at FROM cache_entries WHERE key = ?", (key,)
            ).fetchone()
            if row is None:
                return None
            if self._clock() >= row[1]:
                self._conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
                return None
        return json.loads(row[0])

    def set(self, key: str, value: Any, ttl: int) -> None:
        encoded = json.dumps(value, separators=(",", ":"))
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO cache_entries (key, value, expires_at) VALUES (?, ?, ?)",
                (key, encoded, self._clock() + ttl),
            )

    def delete(self, key: str) -> bool:
        with self._lock:
            cur = self._conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
            return cur.rowcount > 0

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM cache_entries WHERE key LIKE ? ESCAPE '\\'", (self._like(prefix),)
            )
            return cur.rowcount

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT key FROM cache_entries WHERE key LIKE ? ESCAPE '\\' AND expires_at > ? ORDER BY key",
                (self._like(prefix), self._clock()),
            ).fetchall()
        return [r[0] for r in rows]

    def increment(self, key: str, ttl: int) -> int:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                row = self._conn.execute(
                    "SELECT value, expires_at FROM cache_entries WHERE key = ?", (key,)
                ).fetchone()
                now = self._clock()
                current = int(json.loads(row[0])) if row and row[1] > now else 0
                value = current + 1
                self._conn.execute(
                    "INSERT OR REPLACE INTO cache_entries (key, value, expires_at) VALUES (?, ?, ?)",
                    (key, json.dumps(value), now + ttl),
                )
                self._conn.execute("COMMIT")
            except sqlite3.Error:
                self._conn.execute("ROLLBACK")
                raise
        return value

    def purge_expired(self) -> int:
        """Remove expired rows. Returns number removed."""
        with self._lock:
            cur = self._conn.execute("DELETE FROM cache_entries WHERE expires_at <= ?", (self._clock(),))
            return cur.rowcount

    def stats(self) -> dict:
        with self._lock:
            total = self._conn.execute("SELECT COUNT(*) FROM cache_entries").fetchone()[0]
            valid = self._conn.execute(
                "SELECT COUNT(*) FROM cache_entries WHERE expires_at > ?", (self._clock(),)
            ).fetchone()[0]
        return {
            'backend': 'sqlite',
            'path': self._path,
            'total_entries': total,
            'valid_entries': valid,
            'expired_entries': total - valid,
        }

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class RedisStore(KeyValueStore):
    """Shared store on Redis. Expiry is delegated to Redis TTLs."""

    def __init__(self, client):
        """
        Args:
            client: a redis.Redis instance (decode_responses not required)
        """
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        pool = redis.ConnectionPool.from_url(url, max_connections=20, socket_timeout=2.0)
        return cls(redis.Redis(connection_pool=pool))

    @staticmethod
    def _decode(raw) -> str:
        return raw.decode("utf-8") if isinstance(raw, bytes) else raw

    def get(self, key: str) -> Optional[Any]:
        raw = self._client.get(key)
        if raw is None:
            return None
        return json.loads(self._decode(raw))

    def set(self, key: str, value: Any, ttl: int) -> None:
        self._client.setex(key, max(1, int(ttl)), json.dumps(value, separators=(",", ":")))

    def delete(self, key: str) -> bool:
        return bool(self._client.delete(key))

    def delete_prefix(self, prefix: str) -> int:
        doomed = self.keys(prefix)
        if not doomed:
            return 0
        return int(self._client.delete(*doomed))

    @staticmethod
    def _glob(prefix: str) -> str:
        # Redis MATCH is a glob; account names must not act as wildcards
        return _GLOB_SPECIAL.sub(r"\\\1", prefix) + "*"

    def keys(self, prefix: str = "") -> List[str]:
        return sorted(self._decode(k) for k in self._client.scan_iter(match=self._glob(prefix), count=500))

    def increment(self, key: str, ttl: int) -> int:
        pipe = self._client.pipeline()
        pipe.incr(key)
        pipe.expire(key, max(1, int(ttl)))
        value, _ = pipe.execute()
        return int(value)

    def stats(self) -> dict:
        return {'backend': 'redis', 'total_entries': int(self._client.dbsize())}
