"""
Request-scoped dependencies.

The archive manager and rate limiter are built once per app and handed to
handlers through FastAPI's Depends, so tests can swap them with
app.dependency_overrides.
"""

import hashlib
import logging
import ipaddress
import threading
from typing import Optional

from fastapi import Request

from cache import STORE_ERRORS, KeyValueStore
from config import Config, config as default_config
from sources import ArchiveManager, create_archive_manager

logger = logging.getLogger(__name__)

_lock = threading.Lock()

CLIENT_IP_HEADERS = ('x-forwarded-for', 'x-real-ip', 'client-ip')


class RateLimiter:
    """Fixed-window request counter per client, kept in a shared store."""

    def __init__(self, store: KeyValueStore, max_requests: int = 30, window: int = 300):
        self._store = store
        self.max_requests = max_requests
        self.window = window

    def _key(self, client_id: str) -> str:
        return "mixcloud:ratelimit:" + hashlib.md5(client_id.encode()).hexdigest()

    def allow(self, client_id: str) -> bool:
        """Count a request; False once the client is over the limit."""
        key = self._key(client_id)
        try:
            current = self._store.get(key)
            if current is not None and int(current) >= self.max_requests:
                return False
            self._store.increment(key, self.window)
        except STORE_ERRORS as e:
            # No shared counter to check against; let the request through
            logger.warning(f"Rate limiter store unavailable: {e}")
        return True

    def reset(self, client_id: Optional[str] = None) -> int:
        if client_id:
            return int(self._store.delete(self._key(client_id)))
        return self._store.delete_prefix("mixcloud:ratelimit:")


def _public_ip(value: str) -> Optional[str]:
    candidate = value.split(',')[0].strip()
    try:
        ip = ipaddress.ip_address(candidate)
    except ValueError:
        return None
    if ip.is_private or ip.is_reserved or ip.is_loopback:
        return None
    return candidate


def client_ip(request: Request) -> str:
    """Best-effort client IP: proxy headers first, then the socket peer."""
    for header in CLIENT_IP_HEADERS:
        value = request.headers.get(header)
        if value:
            ip = _public_ip(value)
            if ip:
                return ip
    return request.client.host if request.client else '127.0.0.1'


def get_config(request: Request) -> Config:
    return getattr(request.app.state, 'config', None) or default_config


def get_archive_manager(request: Request) -> ArchiveManager:
    """Get or create the app's archive manager."""
    state = request.app.state
    manager = getattr(state, 'archive_manager', None)
    if manager is None:
        with _lock:
            manager = getattr(state, 'archive_manager', None)
            if manager is None:
                manager = create_archive_manager(get_config(request))
                state.archive_manager = manager
    return manager


def get_rate_limiter(request: Request) -> RateLimiter:
    state = request.app.state
    limiter = getattr(state, 'rate_limiter', None)
    if limiter is None:
        cfg = get_config(request)
        manager = get_archive_manager(request)
        with _lock:
            limiter = getattr(state, 'rate_limiter', None)
            if limiter is None:
                limiter = RateLimiter(manager.cache.warm, cfg.rate_limit_requests, cfg.rate_limit_window)
                state.rate_limiter = limiter
    return limiter
