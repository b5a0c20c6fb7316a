"""Cache module - Two-tier cloudcast caching."""

from .cache_manager import CloudcastCache, peak_hours_ttl
from .keys import cache_key, normalize_account
from .stores import STORE_ERRORS, KeyValueStore, MemoryStore, RedisStore, SQLiteStore

__all__ = [
    'CloudcastCache',
    'peak_hours_ttl',
    'cache_key',
    'normalize_account',
    'KeyValueStore',
    'MemoryStore',
    'RedisStore',
    'SQLiteStore',
    'STORE_ERRORS',
]
