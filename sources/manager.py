"""
Archive Manager - cache-aside access to Mixcloud archives.

The only component the presentation layer calls. Reads go to the cache
first; misses go to the API client; successes are written back. Errors are
passed through untouched - deciding whether to show fallback content is
the caller's job.
"""

import logging
from typing import Any, List, Mapping, Optional, Union

from cache import CloudcastCache, KeyValueStore, MemoryStore, RedisStore, SQLiteStore, peak_hours_ttl
from config import Config, config as default_config
from models import CloudcastRecord, FetchArgs, QueryResult, UserSummary

from .base import ApiResult
from .mixcloud import USERNAME_PATTERN, MixcloudClient

logger = logging.getLogger(__name__)


class ArchiveManager:
    """Composes the Mixcloud client and the two-tier cache."""

    def __init__(self, client: MixcloudClient, cache: CloudcastCache, cfg: Optional[Config] = None):
        self._client = client
        self._cache = cache
        self._config = cfg or default_config

    @property
    def client(self) -> MixcloudClient:
        return self._client

    @property
    def cache(self) -> CloudcastCache:
        return self._cache

    def _normalize_args(self, args: Union[FetchArgs, Mapping[str, Any], None]) -> FetchArgs:
        return FetchArgs.from_mapping(
            args, max_limit=self._config.max_cloudcasts_limit,
            default_limit=self._config.default_cloudcasts_limit,
        )

    def get_cloudcasts(self, account: str, args: Union[FetchArgs, Mapping[str, Any], None] = None) -> ApiResult[QueryResult]:
        """
        Fetch cloudcasts for an account, using cache if available.

        Args:
            account: Mixcloud username
            args: limit / offset / metadata (limit=0 fetches everything)

        Returns:
            ApiResult with a QueryResult, or the client's error unchanged
        """
        args = self._normalize_args(args)

        # Check cache first
        cached = self._cache.get(account, args)
        if cached is not None:
            return ApiResult.success(cached)

        result = self._client.fetch_cloudcasts(account, args)

        # Cache successful results
        if result.ok:
            self._cache.set(account, args, result.value)
        else:
            logger.warning(f"Fetching cloudcasts for {account} failed: {result.error.code}")

        return result

    def get_user_info(self, account: str) -> ApiResult[UserSummary]:
        """Fetch an account profile, cached in tier 2."""
        cached = self._cache.get_user(account)
        if cached is not None:
            return ApiResult.success(cached)

        result = self._client.fetch_user_info(account)
        if result.ok:
            self._cache.set_user(account, result.value)
        return result

    def get_fallback(self, account: str) -> List[CloudcastRecord]:
        if not USERNAME_PATTERN.match((account or '').strip()):
            return []
        return self._cache.get_fallback(account)

    def clear_cache(self, account: Optional[str] = None) -> int:
        """
        Clear one account's cache, or everything when account is empty.

        Raises ValueError for an account name that is not a valid Mixcloud
        username, so it can never widen into a key pattern.
        """
        if account and account.strip():
            if not USERNAME_PATTERN.match(account.strip()):
                raise ValueError(f"Invalid account name: {account!r}")
            return self._cache.clear_account(account)
        return self._cache.clear_all()

    # =========================================================================
    # Cache warming
    # =========================================================================

    def warm_account(self, account: str) -> bool:
        """Re-fetch an account's default listing into the cache."""
        if not account or not account.strip():
            return False

        args = self._normalize_args({'limit': self._config.default_cloudcasts_limit, 'metadata': True})
        result = self._client.fetch_cloudcasts(account, args)
        if result.ok:
            self._cache.set(account, args, result.value)
            return True

        logger.warning(f"Cache warming for {account} failed: {result.error.code}")
        return False

    def warm_cache(self) -> List[str]:
        """
        Warm the most recently cached accounts.

        Runs synchronously; there's no scheduler here. Returns the accounts
        that were warmed successfully.
        """
        warmed = []
        for account in self._cache.popular_accounts(self._config.warm_cache_accounts):
            if self.warm_account(account):
                warmed.append(account)
        return warmed

    def status(self) -> dict:
        state = self._client.breaker.state()
        return {
            'circuit_breaker': {
                'open': state.is_open,
                'consecutive_failures': state.consecutive_failures,
                'open_until': state.open_until,
                'threshold': self._client.breaker.failure_threshold,
            },
            'cache': self._cache.stats(),
        }


def create_warm_store(cfg: Config) -> KeyValueStore:
    """Build the tier-2 store named by cfg.cache_backend."""
    backend = cfg.cache_backend
    if backend == 'redis':
        if not cfg.redis_url:
            raise ValueError("REDIS_URL must be set for the redis cache backend")
        logger.info(f"Tier 2 cache: Redis at {cfg.redis_url}")
        return RedisStore.from_url(cfg.redis_url)
    if backend == 'memory':
        logger.info("Tier 2 cache: in-process memory")
        return MemoryStore(max_size=cfg.max_hot_cache_size * 4)
    if backend == 'sqlite':
        logger.info(f"Tier 2 cache: SQLite at {cfg.cache_db_path}")
        return SQLiteStore(cfg.cache_db_path)
    raise ValueError(f"Unknown cache backend: {backend}")


def create_archive_manager(cfg: Optional[Config] = None, warm: Optional[KeyValueStore] = None,
                           client: Optional[MixcloudClient] = None) -> ArchiveManager:
    """Wire stores, breaker, client and cache from configuration."""
    cfg = cfg or default_config
    hot = MemoryStore(max_size=cfg.max_hot_cache_size)
    warm = warm or create_warm_store(cfg)

    cache = CloudcastCache(hot, warm, cfg, ttl_hook=peak_hours_ttl if cfg.peak_hours_ttl_boost else None)
    client = client or MixcloudClient(warm, cfg)
    return ArchiveManager(client, cache, cfg)
