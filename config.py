"""
Mixcloud Archives - Centralized Configuration

All environment variables, constants, and settings in one place.
Components take a Config instance; reloading settings means building new
instances rather than mutating this one.
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class Config:
    """Application configuration loaded from environment."""

    # Upstream API
    api_base_url: str = "https://api.mixcloud.com/"
    api_timeout: float = 15.0          # total request timeout
    api_connect_timeout: float = 5.0   # must stay below api_timeout
    user_agent: str = "Mixcloud-Archives/1.0 (+https://github.com/mixcloud-archives)"
    max_cloudcasts_limit: int = 100
    default_cloudcasts_limit: int = 20

    # Retry / backoff
    max_retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    retry_max_jitter: float = 1.0

    # Circuit breaker
    circuit_breaker_threshold: int = 5
    circuit_breaker_timeout: int = 300     # 5 minutes
    failure_count_ttl: int = 3600

    # Fetch-all pagination (limit=0)
    fetch_all_page_size: int = 50
    fetch_all_max_pages: int = 20

    # Cache settings
    cache_backend: str = "sqlite"          # sqlite | redis | memory
    cache_db_path: str = "mixcloud_cache.sqlite3"
    redis_url: Optional[str] = None
    max_hot_cache_size: int = 5000
    hot_cache_ttl: int = 300               # 5 minutes
    warm_cache_ttl: int = 3600             # 1 hour
    fresh_content_ttl: int = 1800          # newest show < 24h old
    stale_content_ttl: int = 7200          # newest show > 7 days old
    fresh_content_hours: int = 24
    stale_content_hours: int = 168
    peak_hours_ttl_boost: bool = False
    user_cache_ttl: int = 3600
    validator_ttl: int = 86400             # ETag / Last-Modified
    fallback_ttl: int = 604800             # 7 days
    fallback_max_records: int = 10
    error_log_ttl: int = 604800
    warm_cache_accounts: int = 5

    # Presentation
    rate_limit_requests: int = 30
    rate_limit_window: int = 300
    default_per_page: int = 10
    max_per_page: int = 50
    max_filter_days: int = 365

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls(
            api_base_url=os.environ.get('MIXCLOUD_API_BASE_URL', 'https://api.mixcloud.com/'),
            api_timeout=float(os.environ.get('API_TIMEOUT', 15)),
            api_connect_timeout=float(os.environ.get('API_CONNECT_TIMEOUT', 5)),

            max_retry_attempts=int(os.environ.get('MAX_RETRY_ATTEMPTS', 3)),
            retry_base_delay=float(os.environ.get('RETRY_BASE_DELAY', 1)),
            retry_max_delay=float(os.environ.get('RETRY_MAX_DELAY', 10)),

            circuit_breaker_threshold=int(os.environ.get('CIRCUIT_BREAKER_THRESHOLD', 5)),
            circuit_breaker_timeout=int(os.environ.get('CIRCUIT_BREAKER_TIMEOUT', 300)),

            fetch_all_page_size=int(os.environ.get('FETCH_ALL_PAGE_SIZE', 50)),
            fetch_all_max_pages=int(os.environ.get('FETCH_ALL_MAX_PAGES', 20)),

            # Allow override via env
            cache_backend=os.environ.get('CACHE_BACKEND', 'sqlite').lower(),
            cache_db_path=os.environ.get('CACHE_DB_PATH', 'mixcloud_cache.sqlite3'),
            redis_url=os.environ.get('REDIS_URL'),
            hot_cache_ttl=int(os.environ.get('HOT_CACHE_TTL', 300)),
            peak_hours_ttl_boost=os.environ.get('PEAK_HOURS_TTL_BOOST', '').lower() == 'true',

            rate_limit_requests=int(os.environ.get('RATE_LIMIT_REQUESTS', 30)),
            rate_limit_window=int(os.environ.get('RATE_LIMIT_WINDOW', 300)),

            log_level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
        )


# Global config instance
config = Config.from_env()


# Picture sizes kept from upstream payloads
PICTURE_SIZES = ('small', 'medium', 'large', 'extra_large')

# Hosts allowed to serve cover art
TRUSTED_PICTURE_HOSTS = {
    'thumbnails.mixcloud.com',
    'thumbnailer.mixcloud.com',
    'images.mixcloud.com',
    'is1-ssl.mzstatic.com',  # Apple CDN used by Mixcloud
    'is2-ssl.mzstatic.com',
    'is3-ssl.mzstatic.com',
    'is4-ssl.mzstatic.com',
    'is5-ssl.mzstatic.com',
}
