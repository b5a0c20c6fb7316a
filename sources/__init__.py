"""Data sources module - Mixcloud client and cache-aside manager."""

from .base import ApiError, ApiResult, ErrorKind
from .circuit_breaker import CircuitBreaker, CircuitState
from .mixcloud import MixcloudClient, retry_wait
from .manager import ArchiveManager, create_archive_manager

__all__ = [
    'ApiError',
    'ApiResult',
    'ErrorKind',
    'CircuitBreaker',
    'CircuitState',
    'MixcloudClient',
    'retry_wait',
    'ArchiveManager',
    'create_archive_manager',
]
