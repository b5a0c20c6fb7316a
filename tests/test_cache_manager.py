"""Tests for the two-tier cloudcast cache."""

import random
from datetime import datetime, timedelta

import pytest

from cache import CloudcastCache, MemoryStore, peak_hours_ttl
from cache.keys import TIER_HOT, TIER_WARM, cache_key, fallback_key, user_key
from models import QueryResult, UserSummary

from helpers import UnreachableStore, make_records

ARGS = {'limit': 0, 'metadata': True}


def listing(count, newest, **kwargs):
    return QueryResult.from_api({'data': make_records(count, newest, **kwargs), 'paging': {}})


class TestTieredLookup:

    def test_miss_on_empty_cache(self, cloudcast_cache):
        assert cloudcast_cache.get('nowwaveradio', ARGS) is None
        assert cloudcast_cache.stats()['misses'] == 1

    def test_set_then_get_from_hot_tier(self, cloudcast_cache, warm_store, clock):
        result = listing(5, clock.datetime)
        cloudcast_cache.set('nowwaveradio', ARGS, result)
        warm_store.gets.clear()

        cached = cloudcast_cache.get('nowwaveradio', ARGS)

        assert cached.records == result.records
        assert warm_store.gets == []

    def test_warm_hit_backfills_hot_tier(self, cloudcast_cache, hot_store, warm_store, clock, cfg):
        result = listing(5, clock.datetime)
        cloudcast_cache.set('nowwaveradio', ARGS, result)
        hot_store.clear()
        hot_key = cache_key('nowwaveradio', ARGS, TIER_HOT)

        cached = cloudcast_cache.get('nowwaveradio', ARGS)

        assert cached.records == result.records
        assert cache_key('nowwaveradio', ARGS, TIER_WARM) in warm_store.gets
        assert hot_store.ttl(hot_key) == cfg.hot_cache_ttl

        warm_store.gets.clear()
        assert cloudcast_cache.get('nowwaveradio', ARGS).records == result.records
        assert warm_store.gets == []

    def test_lookup_ignores_account_case(self, cloudcast_cache, clock):
        cloudcast_cache.set('NowWaveRadio', ARGS, listing(3, clock.datetime))
        assert cloudcast_cache.get(' nowwaveradio', ARGS) is not None

    def test_different_args_do_not_collide(self, cloudcast_cache, clock):
        cloudcast_cache.set('nowwaveradio', {'limit': 20}, listing(3, clock.datetime))
        assert cloudcast_cache.get('nowwaveradio', {'limit': 21}) is None

    def test_empty_result_is_not_cached(self, cloudcast_cache, warm_store, hot_store):
        cloudcast_cache.set('nowwaveradio', ARGS, QueryResult(records=[]))
        cloudcast_cache.set('nowwaveradio', ARGS, None)

        assert warm_store.sets == []
        assert hot_store.keys() == []

    def test_entries_expire_from_both_tiers(self, cloudcast_cache, clock):
        cloudcast_cache.set('nowwaveradio', ARGS, listing(3, clock.datetime))
        clock.advance(1801)
        assert cloudcast_cache.get('nowwaveradio', ARGS) is None

    def test_hot_tier_expires_first(self, cloudcast_cache, hot_store, clock):
        cloudcast_cache.set('nowwaveradio', ARGS, listing(3, clock.datetime - timedelta(days=2)))
        clock.advance(301)

        assert hot_store.get(cache_key('nowwaveradio', ARGS, TIER_HOT)) is None
        assert cloudcast_cache.get('nowwaveradio', ARGS) is not None


class TestAdaptiveTTL:

    @pytest.mark.parametrize('age_hours, expected', [
        (0, 1800),
        (23, 1800),
        (24, 3600),
        (100, 3600),
        (168, 3600),
        (169, 7200),
        (24 * 90, 7200),
    ])
    def test_ttl_by_newest_show_age(self, cloudcast_cache, clock, age_hours, expected):
        result = listing(3, clock.datetime - timedelta(hours=age_hours))
        assert cloudcast_cache.adaptive_ttl(result) == expected

    def test_newest_show_decides_regardless_of_order(self, cloudcast_cache, clock):
        result = listing(3, clock.datetime - timedelta(hours=200))
        result.records.append(listing(1, clock.datetime - timedelta(hours=2)).records[0])

        assert cloudcast_cache.adaptive_ttl(result) == 1800

    def test_ttl_written_to_warm_tier(self, cloudcast_cache, warm_store, clock):
        cloudcast_cache.set('nowwaveradio', ARGS, listing(3, clock.datetime - timedelta(hours=100)))
        assert warm_store.ttl_for(cache_key('nowwaveradio', ARGS, TIER_WARM)) == 3600

    def test_hook_has_final_say(self, hot_store, warm_store, cfg, clock):
        cache = CloudcastCache(hot_store, warm_store, cfg, ttl_hook=lambda ttl: ttl * 3, clock=clock)
        assert cache.adaptive_ttl(listing(3, clock.datetime - timedelta(hours=100))) == 10800

    @pytest.mark.parametrize('hour, expected', [(8, 3600), (9, 7200), (14, 7200), (18, 7200), (19, 3600)])
    def test_peak_hours_doubling(self, hour, expected):
        assert peak_hours_ttl(3600, datetime(2024, 6, 3, hour, 30)) == expected


class TestFallback:

    def test_fallback_keeps_newest_ten(self, cloudcast_cache, warm_store, clock, cfg):
        result = listing(15, clock.datetime)
        cloudcast_cache.set('nowwaveradio', ARGS, result)

        fallback = cloudcast_cache.get_fallback('nowwaveradio')

        assert [r.key for r in fallback] == [r.key for r in result.records[:10]]
        assert warm_store.ttl_for(fallback_key('nowwaveradio')) == cfg.fallback_ttl

    def test_fallback_is_newest_first_whatever_the_listing_order(self, cloudcast_cache, clock):
        records = make_records(15, clock.datetime)
        random.Random(7).shuffle(records)
        cloudcast_cache.set('nowwaveradio', ARGS, QueryResult.from_api({'data': records, 'paging': {}}))

        fallback = cloudcast_cache.get_fallback('nowwaveradio')

        assert [r.key for r in fallback] == [f'/nowwaveradio/show-{i}/' for i in range(10)]

    def test_fallback_rebuilt_from_warm_listing(self, cloudcast_cache, warm_store, clock):
        cloudcast_cache.set('nowwaveradio', ARGS, listing(12, clock.datetime))
        warm_store.delete(fallback_key('nowwaveradio'))

        fallback = cloudcast_cache.get_fallback('nowwaveradio')

        assert len(fallback) == 10
        assert warm_store.ttl_for(fallback_key('nowwaveradio')) == 86400

    def test_fallback_outlives_listing(self, cloudcast_cache, clock):
        cloudcast_cache.set('nowwaveradio', ARGS, listing(3, clock.datetime))
        clock.advance(86400)

        assert cloudcast_cache.get('nowwaveradio', ARGS) is None
        assert len(cloudcast_cache.get_fallback('nowwaveradio')) == 3

    def test_unknown_account_has_no_fallback(self, cloudcast_cache):
        assert cloudcast_cache.get_fallback('nobody') == []


class TestInvalidation:

    def setup_method(self):
        self.user = UserSummary(username='nowwaveradio', display_name='Now Wave Radio')

    def test_clear_account(self, cloudcast_cache, warm_store, clock):
        cloudcast_cache.set('nowwaveradio', ARGS, listing(3, clock.datetime))
        cloudcast_cache.set('nowwaveradio', {'limit': 20}, listing(3, clock.datetime))
        cloudcast_cache.set_user('nowwaveradio', self.user)
        cloudcast_cache.set('otherstation', ARGS, listing(3, clock.datetime))

        removed = cloudcast_cache.clear_account('NowWaveRadio')

        # 2 listings x 2 tiers + fallback + user
        assert removed == 6
        assert cloudcast_cache.get('nowwaveradio', ARGS) is None
        assert cloudcast_cache.get_fallback('nowwaveradio') == []
        assert warm_store.get(user_key('nowwaveradio')) is None
        assert cloudcast_cache.get('otherstation', ARGS) is not None

    def test_clear_account_is_idempotent(self, cloudcast_cache, clock):
        cloudcast_cache.set('nowwaveradio', ARGS, listing(3, clock.datetime))
        assert cloudcast_cache.clear_account('nowwaveradio') > 0
        assert cloudcast_cache.clear_account('nowwaveradio') == 0
        assert cloudcast_cache.clear_account('') == 0

    def test_clear_all_keeps_breaker_state(self, cloudcast_cache, warm_store, clock):
        cloudcast_cache.set('nowwaveradio', ARGS, listing(3, clock.datetime))
        cloudcast_cache.set_user('nowwaveradio', self.user)
        warm_store.set('mixcloud:breaker:failures', 3, 3600)

        assert cloudcast_cache.clear_all() > 0
        assert cloudcast_cache.get('nowwaveradio', ARGS) is None
        assert cloudcast_cache.get_user('nowwaveradio') is None
        assert warm_store.get('mixcloud:breaker:failures') == 3
        assert cloudcast_cache.clear_all() == 0


class TestStatsAndUsers:

    def test_hit_ratio(self, cloudcast_cache, clock):
        cloudcast_cache.set('nowwaveradio', ARGS, listing(3, clock.datetime))
        cloudcast_cache.get('nowwaveradio', ARGS)
        cloudcast_cache.get('nowwaveradio', {'limit': 5})

        stats = cloudcast_cache.stats()

        assert stats['hits'] == 1
        assert stats['misses'] == 1
        assert stats['hit_ratio'] == 50
        assert stats['accounts']['nowwaveradio']['expiration'] == 1800

    def test_popular_accounts_newest_first(self, cloudcast_cache, clock):
        for name in ('first', 'second', 'third'):
            cloudcast_cache.set(name, ARGS, listing(1, clock.datetime))
            clock.advance(10)

        assert cloudcast_cache.popular_accounts(2) == ['third', 'second']

    def test_user_round_trip(self, cloudcast_cache, warm_store, cfg):
        user = UserSummary(username='nowwaveradio', follower_count=12)
        cloudcast_cache.set_user('NowWaveRadio', user)

        assert cloudcast_cache.get_user('nowwaveradio') == user
        assert warm_store.ttl_for(user_key('nowwaveradio')) == cfg.user_cache_ttl


class TestStoreOutage:

    def setup_method(self):
        self.hot = MemoryStore()
        self.cache = CloudcastCache(self.hot, UnreachableStore())

    def test_get_is_a_miss(self):
        assert self.cache.get('nowwaveradio', ARGS) is None
        assert self.cache.stats()['misses'] == 1

    def test_set_is_a_no_op(self, clock):
        self.cache.set('nowwaveradio', ARGS, listing(3, clock.datetime))
        assert self.cache.popular_accounts() == []
        assert self.hot.keys() == []

    def test_fallback_and_user_degrade(self):
        self.cache.set_user('nowwaveradio', UserSummary(username='nowwaveradio'))

        assert self.cache.get_fallback('nowwaveradio') == []
        assert self.cache.get_user('nowwaveradio') is None
