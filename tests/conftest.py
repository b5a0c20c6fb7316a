"""
Shared fixtures: archive managers wired on in-memory stores, a fake clock
and an upstream stub behind httpx.MockTransport.
"""

from typing import Callable, List

import httpx
import pytest

from cache import CloudcastCache, MemoryStore
from config import Config
from sources import ArchiveManager, CircuitBreaker, MixcloudClient
from sources.mixcloud import create_http_client

from helpers import FakeClock, RecordingStore, UpstreamStub


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cfg() -> Config:
    return Config(cache_backend='memory', peak_hours_ttl_boost=False)


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def upstream() -> UpstreamStub:
    return UpstreamStub()


@pytest.fixture
def warm_store(clock) -> RecordingStore:
    return RecordingStore(clock=clock)


@pytest.fixture
def hot_store(clock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture
def make_client(cfg, clock, sleeps, warm_store) -> Callable[..., MixcloudClient]:
    def _make(stub: UpstreamStub, store=None) -> MixcloudClient:
        store = store if store is not None else warm_store
        http = create_http_client(cfg, transport=httpx.MockTransport(stub))
        breaker = CircuitBreaker(store, cfg, clock=clock)
        return MixcloudClient(store, cfg, breaker=breaker, http_client=http, sleep=sleeps.append, clock=clock)
    return _make


@pytest.fixture
def client(make_client, upstream) -> MixcloudClient:
    return make_client(upstream)


@pytest.fixture
def cloudcast_cache(hot_store, warm_store, cfg, clock) -> CloudcastCache:
    return CloudcastCache(hot_store, warm_store, cfg, clock=clock)


@pytest.fixture
def manager(client, cloudcast_cache, cfg) -> ArchiveManager:
    return ArchiveManager(client, cloudcast_cache, cfg)
