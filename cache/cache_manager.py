"""
Two-Tier Cloudcast Cache

Tier 1 ("hot"): in-process LRU, fixed 5 minute TTL
  - Serves repeat page views without touching storage

Tier 2 ("warm"): durable store, adaptive TTL
  - 30 min when the newest show is < 24h old
  - 1 hour by default
  - 2 hours when the newest show is > 7 days old

Fallback slot (tier 2, 7 days)
  - Newest 10 shows per account, served during extended outages

The cache is passive storage: it never calls the API.
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from config import Config, config as default_config
from models import CloudcastRecord, FetchArgs, QueryResult, UserSummary, parse_timestamp

from .keys import (
    KEY_PREFIX,
    TIER_HOT,
    TIER_WARM,
    account_prefix,
    cache_key,
    fallback_key,
    normalize_account,
    tier_prefix,
    user_key,
)
from .stores import STORE_ERRORS, KeyValueStore

logger = logging.getLogger(__name__)

TTLHook = Callable[[int], int]


def peak_hours_ttl(expiration: int, now: Optional[datetime] = None) -> int:
    """Double the expiration between 09:00 and 18:59 local time."""
    hour = (now or datetime.now()).hour
    if 9 <= hour <= 18:
        return expiration * 2
    return expiration


class CloudcastCache:
    """
    Two-tier cache for cloudcast listings, plus fallback and user info.

    Args:
        hot: tier 1 store
        warm: tier 2 store
        cfg: configuration (TTLs, fallback size)
        ttl_hook: final say on the tier-2 TTL, e.g. peak_hours_ttl
        clock: time source used for content age
    """

    def __init__(self, hot: KeyValueStore, warm: KeyValueStore, cfg: Optional[Config] = None,
                 ttl_hook: Optional[TTLHook] = None, clock: Callable[[], float] = time.time):
        self._hot = hot
        self._warm = warm
        self._config = cfg or default_config
        self._ttl_hook = ttl_hook
        self._clock = clock
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._accounts: Dict[str, dict] = {}

    @property
    def hot(self) -> KeyValueStore:
        return self._hot

    @property
    def warm(self) -> KeyValueStore:
        return self._warm

    # =========================================================================
    # Listings
    # =========================================================================

    def get(self, account: str, args: Union[FetchArgs, Mapping[str, Any], None] = None) -> Optional[QueryResult]:
        """
        Look up a listing: tier 1, then tier 2 (backfilling tier 1).

        A failing store is treated as a miss.
        """
        hot_key = cache_key(account, args, TIER_HOT)
        try:
            cached = self._hot.get(hot_key)
            if cached is not None:
                self._record_hit()
                return QueryResult.from_dict(cached)

            cached = self._warm.get(cache_key(account, args, TIER_WARM))
            if cached is not None:
                self._hot.set(hot_key, cached, self._config.hot_cache_ttl)
                self._record_hit()
                return QueryResult.from_dict(cached)
        except STORE_ERRORS as e:
            logger.warning(f"Cache read failed for {account}, treating as miss: {e}")

        self._record_miss()
        return None

    def set(self, account: str, args: Union[FetchArgs, Mapping[str, Any], None], result: Optional[QueryResult]) -> None:
        """Write a listing to both tiers and refresh the fallback slot."""
        if not isinstance(result, QueryResult) or not result.records:
            return

        payload = result.to_dict()
        expiration = self.adaptive_ttl(result)

        try:
            self._warm.set(cache_key(account, args, TIER_WARM), payload, expiration)
            self._hot.set(cache_key(account, args, TIER_HOT), payload, self._config.hot_cache_ttl)
            self._update_fallback(account, payload['records'], self._config.fallback_ttl)
        except STORE_ERRORS as e:
            logger.warning(f"Cache write failed for {account}: {e}")
            return

        with self._lock:
            self._accounts[normalize_account(account)] = {
                'last_cached': self._clock(),
                'expiration': expiration,
            }
        logger.debug(f"Cached {len(result)} cloudcasts for {account} (tier 2 TTL {expiration}s)")

    def adaptive_ttl(self, result: QueryResult) -> int:
        """Tier-2 TTL based on how recent the newest show is."""
        cfg = self._config
        expiration = cfg.warm_cache_ttl

        newest = result.newest_created_at
        if newest is not None:
            age_hours = (self._clock() - newest.timestamp()) / 3600
            if age_hours < cfg.fresh_content_hours:
                expiration = cfg.fresh_content_ttl
            elif age_hours > cfg.stale_content_hours:
                expiration = cfg.stale_content_ttl

        if self._ttl_hook is not None:
            expiration = int(self._ttl_hook(expiration))
        return expiration

    # =========================================================================
    # Fallback
    # =========================================================================

    def _update_fallback(self, account: str, records: List[dict], ttl: int) -> List[dict]:
        """Save the newest records as the account's fallback; returns what was saved."""
        newest = sorted(records, key=lambda r: parse_timestamp(r['created_at']), reverse=True)
        newest = newest[:self._config.fallback_max_records]
        if newest:
            self._warm.set(fallback_key(account), newest, ttl)
        return newest

    def get_fallback(self, account: str) -> List[CloudcastRecord]:
        """
        Degraded view for when the API and both tiers have nothing.

        Uses the fallback slot, else any tier-2 listing for the account
        (which is then saved as fallback for a day).
        """
        try:
            cached = self._warm.get(fallback_key(account))
            if cached is not None:
                return [CloudcastRecord.from_dict(r) for r in cached]

            for key in self._warm.keys(account_prefix(account, TIER_WARM)):
                listing = self._warm.get(key)
                if not listing or not listing.get('records'):
                    continue
                records = self._update_fallback(account, listing['records'], 86400)
                logger.info(f"Rebuilt fallback for {account} from {key}")
                return [CloudcastRecord.from_dict(r) for r in records]
        except STORE_ERRORS as e:
            logger.warning(f"Fallback read failed for {account}: {e}")

        return []

    # =========================================================================
    # User info
    # =========================================================================

    def get_user(self, account: str) -> Optional[UserSummary]:
        try:
            cached = self._warm.get(user_key(account))
        except STORE_ERRORS as e:
            logger.warning(f"User cache read failed for {account}: {e}")
            return None
        return UserSummary.from_dict(cached) if cached else None

    def set_user(self, account: str, user: UserSummary) -> None:
        try:
            self._warm.set(user_key(account), user.to_dict(), self._config.user_cache_ttl)
        except STORE_ERRORS as e:
            logger.warning(f"User cache write failed for {account}: {e}")

    # =========================================================================
    # Invalidation
    # =========================================================================

    def clear_account(self, account: str) -> int:
        """Remove every entry for one account from both tiers."""
        if not normalize_account(account):
            return 0

        removed = 0
        for store, tier in ((self._hot, TIER_HOT), (self._warm, TIER_WARM)):
            removed += store.delete_prefix(account_prefix(account, tier))
        removed += int(self._warm.delete(fallback_key(account)))
        removed += int(self._warm.delete(user_key(account)))

        with self._lock:
            self._accounts.pop(normalize_account(account), None)
        logger.info(f"Cleared {removed} cache entries for {account}")
        return removed

    def clear_all(self) -> int:
        """Remove every cache entry in both tiers."""
        removed = 0
        for store in (self._hot, self._warm):
            for prefix in (tier_prefix(TIER_HOT), tier_prefix(TIER_WARM),
                           f"{KEY_PREFIX}:fallback:", f"{KEY_PREFIX}:user:"):
                removed += store.delete_prefix(prefix)

        with self._lock:
            self._hits = 0
            self._misses = 0
            self._accounts.clear()
        logger.info(f"Cleared all caches ({removed} entries)")
        return removed

    # =========================================================================
    # Statistics
    # =========================================================================

    def _record_hit(self) -> None:
        with self._lock:
            self._hits += 1

    def _record_miss(self) -> None:
        with self._lock:
            self._misses += 1

    def popular_accounts(self, limit: int = 5) -> List[str]:
        """Most recently cached accounts, newest first."""
        with self._lock:
            ranked = sorted(self._accounts.items(), key=lambda kv: kv[1]['last_cached'], reverse=True)
        return [name for name, _ in ranked[:limit]]

    def stats(self) -> dict:
        """Get cache statistics for both tiers."""
        with self._lock:
            total = self._hits + self._misses
            summary = {
                'hits': self._hits,
                'misses': self._misses,
                'hit_ratio': (self._hits / total) * 100 if total else 0,
                'accounts': {
                    name: {
                        'last_cached': datetime.fromtimestamp(info['last_cached'], tz=timezone.utc).isoformat(),
                        'expiration': info['expiration'],
                    }
                    for name, info in self._accounts.items()
                },
            }
        for name, store in (('hot', self._hot), ('warm', self._warm)):
            stats_fn = getattr(store, 'stats', None)
            summary[name] = stats_fn() if callable(stats_fn) else {}
        return summary
