"""
Test helpers: a controllable clock, a recording store and an upstream stub
served through httpx.MockTransport.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import httpx
import redis

from cache import MemoryStore

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = NOW):
        self.now = start.timestamp()

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    @property
    def datetime(self) -> datetime:
        return datetime.fromtimestamp(self.now, tz=timezone.utc)


class RecordingStore(MemoryStore):
    """MemoryStore that remembers every get/set it served."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gets: List[str] = []
        self.sets: List[tuple] = []

    def get(self, key):
        self.gets.append(key)
        return super().get(key)

    def set(self, key, value, ttl):
        self.sets.append((key, ttl))
        super().set(key, value, ttl)

    def ttl_for(self, key) -> Optional[int]:
        for k, ttl in reversed(self.sets):
            if k == key:
                return ttl
        return None


def make_cloudcast(index: int, created_at: datetime, username: str = "nowwaveradio", **overrides) -> dict:
    """Upstream-shaped cloudcast payload."""
    payload = {
        'key': f'/{username}/show-{index}/',
        'name': f'Now Wave Show #{index}',
        'url': f'https://www.mixcloud.com/{username}/show-{index}/',
        'created_time': created_at.strftime('%Y-%m-%dT%H:%M:%SZ'),
        'play_count': 100 + index,
        'favorite_count': 10,
        'comment_count': 2,
        'audio_length': 3600,
        'pictures': {
            'small': f'https://thumbnailer.mixcloud.com/unsafe/25x25/{index}.jpg',
            'large': f'https://thumbnailer.mixcloud.com/unsafe/300x300/{index}.jpg',
        },
        'tags': [{'key': '/discover/house/', 'name': 'House', 'url': 'https://www.mixcloud.com/discover/house/'}],
        'user': {'username': username, 'name': 'Now Wave Radio', 'url': f'https://www.mixcloud.com/{username}/'},
    }
    payload.update(overrides)
    return payload


def make_records(count: int, newest: datetime, start_index: int = 0, spacing: timedelta = timedelta(hours=1)) -> List[dict]:
    return [make_cloudcast(start_index + i, newest - i * spacing) for i in range(count)]


def connect_error(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("Connection refused", request=request)


def timeout_error(request: httpx.Request) -> httpx.Response:
    raise httpx.ReadTimeout("timed out", request=request)


class UpstreamStub:
    """
    Fake Mixcloud API.

    Serves `pages` for /cloudcasts/ by offset // limit, with paging.next
    set on every page but the last. Queued `responses` (Response objects or
    callables taking the request) are served first, in order.
    """

    def __init__(self, pages: Optional[List[List[dict]]] = None, user: Optional[dict] = None):
        self.pages = pages if pages is not None else [[]]
        self.user = user
        self.responses: List[Any] = []
        self.requests: List[httpx.Request] = []

    def queue(self, *responses) -> "UpstreamStub":
        self.responses.extend(responses)
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            response = self.responses.pop(0)
            if callable(response):
                return response(request)
            return response

        path = request.url.path
        if path.endswith('/cloudcasts/'):
            limit = int(request.url.params.get('limit', 20))
            offset = int(request.url.params.get('offset', 0))
            index = offset // limit
            data = self.pages[index] if index < len(self.pages) else []
            paging = {}
            if index < len(self.pages) - 1:
                base = f"{request.url.scheme}://{request.url.host}{request.url.path}"
                paging['next'] = f"{base}?limit={limit}&offset={offset + limit}"
            return httpx.Response(200, json={'data': data, 'paging': paging})

        if self.user is not None:
            return httpx.Response(200, json=self.user)
        return httpx.Response(404, json={'error': {'type': 'NotFound'}})




class UnreachableStore(MemoryStore):
    """Store whose backend is down: every operation raises like a dead Redis."""

    def _down(self, *args, **kwargs):
        raise redis.ConnectionError("redis down")

    get = set = delete = keys = delete_prefix = increment = _down
