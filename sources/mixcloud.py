"""
Mixcloud Data Source - cloudcast archives and user profiles.

Every physical request goes through the same pipeline: circuit breaker
check, conditional headers, GET, status mapping. Retries with exponential
backoff are driven by tenacity. Failures come back as ApiResult errors;
nothing raises out of this module.
"""

import hashlib
import itertools
import logging
import random
import re
import time
from datetime import datetime, timezone
from typing import Any, Callable, List, Mapping, Optional, Union
from urllib.parse import quote

import httpx
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from cache.stores import STORE_ERRORS, KeyValueStore
from config import Config, config as default_config
from models import FetchArgs, QueryResult, UserSummary

from .base import ApiError, ApiResult, ErrorKind
from .circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r'^[A-Za-z0-9_-]+$')

VALIDATOR_PREFIX = "mixcloud:validators:"
ERROR_LOG_PREFIX = "mixcloud:errors:"

# Transport errors that a retry cannot fix
NON_RETRYABLE_TRANSPORT = (httpx.UnsupportedProtocol, httpx.LocalProtocolError)


def create_http_client(cfg: Config, transport: Optional[httpx.BaseTransport] = None) -> httpx.Client:
    """Shared sync HTTP client with connection pooling."""
    return httpx.Client(
        timeout=httpx.Timeout(cfg.api_timeout, connect=cfg.api_connect_timeout),
        limits=httpx.Limits(
            max_keepalive_connections=10,
            max_connections=20,
            keepalive_expiry=30.0
        ),
        headers={
            'Accept': 'application/json',
            'Accept-Encoding': 'gzip, deflate',
            'Cache-Control': 'max-age=0',
            'User-Agent': cfg.user_agent,
        },
        transport=transport,
    )


def retry_wait(cfg: Config):
    """base * 2^(attempt-1) capped at retry_max_delay, plus up to retry_max_jitter."""
    return (
        wait_exponential(multiplier=cfg.retry_base_delay, max=cfg.retry_max_delay)
        + wait_random(0, cfg.retry_max_jitter)
    )


def should_retry(result: ApiResult) -> bool:
    """Retry retryable failures, except an open circuit which ends the request."""
    return (
        not result.ok
        and result.error.retryable
        and result.error.kind is not ErrorKind.CIRCUIT_OPEN
    )


class MixcloudClient:
    """Client for the Mixcloud API v1."""

    def __init__(
        self,
        store: KeyValueStore,
        cfg: Optional[Config] = None,
        breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            store: shared store for validators and the error log
            cfg: configuration
            breaker: circuit breaker (built on `store` if omitted)
            http_client: httpx client, mainly for tests with MockTransport
            sleep: backoff sleep, injectable for tests
            clock: time source
        """
        self._config = cfg or default_config
        self._store = store
        self._breaker = breaker or CircuitBreaker(store, self._config, clock=clock)
        self._http = http_client or create_http_client(self._config)
        self._sleep = sleep
        self._clock = clock

    @property
    def name(self) -> str:
        return "Mixcloud"

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def close(self) -> None:
        self._http.close()

    # =========================================================================
    # Public API
    # =========================================================================

    def fetch_cloudcasts(self, username: str, args: Union[FetchArgs, Mapping[str, Any], None] = None) -> ApiResult[QueryResult]:
        """
        Fetch cloudcasts for an account.

        limit=0 walks upstream pages until paging.next is empty or the page
        cap is reached; any other limit is a single clamped request.
        """
        username = (username or '').strip()
        error = self._validate_username(username)
        if error:
            return ApiResult.failure(error)

        args = FetchArgs.from_mapping(
            args, max_limit=self._config.max_cloudcasts_limit,
            default_limit=self._config.default_cloudcasts_limit,
        )
        if args.fetch_all:
            return self._fetch_all_cloudcasts(username, args)

        return self._fetch_cloudcast_page(username, args)

    def fetch_user_info(self, username: str) -> ApiResult[UserSummary]:
        """Fetch an account profile."""
        username = (username or '').strip()
        error = self._validate_username(username)
        if error:
            return ApiResult.failure(error)

        url = self._build_url(username)
        result = self._request(url)
        if not result.ok:
            return ApiResult.failure(result.error)

        payload = result.value
        if not isinstance(payload, Mapping) or not payload.get('username'):
            return ApiResult.failure(self._invalid_response(url, 'Invalid user response from Mixcloud API.'))

        return ApiResult.success(UserSummary.from_api(payload))

    # =========================================================================
    # Listing helpers
    # =========================================================================

    def _fetch_cloudcast_page(self, username: str, args: FetchArgs) -> ApiResult[QueryResult]:
        url = self._build_url(username, 'cloudcasts', args)
        result = self._request(url)
        if not result.ok:
            return ApiResult.failure(result.error)

        payload = result.value
        if not isinstance(payload, Mapping) or not isinstance(payload.get('data'), list):
            return ApiResult.failure(self._invalid_response(url, 'Invalid response structure from Mixcloud API.'))

        parsed = QueryResult.from_api(payload)
        parsed.fetched_at = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        dropped = len(payload['data']) - len(parsed)
        if dropped:
            logger.warning(f"Dropped {dropped} malformed cloudcast(s) from {url}")
        return ApiResult.success(parsed)

    def _fetch_all_cloudcasts(self, username: str, args: FetchArgs) -> ApiResult[QueryResult]:
        page_size = self._config.fetch_all_page_size
        max_pages = self._config.fetch_all_max_pages

        records = []
        paging = {}
        offset = args.offset
        pages = 0

        while True:
            page_args = FetchArgs(limit=page_size, offset=offset, metadata=args.metadata)
            result = self._fetch_cloudcast_page(username, page_args)
            if not result.ok:
                return result

            records.extend(result.value.records)
            paging = result.value.paging
            offset += page_size
            pages += 1

            logger.debug(f"[{username}] page {pages}: {len(result.value)} shows, {len(records)} so far")
            if not result.value.next_page or pages >= max_pages:
                break

        if pages >= max_pages and paging.get('next'):
            logger.warning(f"[{username}] stopped after {pages} pages; upstream still reports more")

        return ApiResult.success(QueryResult(
            records=records,
            paging=paging,
            fetched_at=datetime.fromtimestamp(self._clock(), tz=timezone.utc),
        ))

    def _validate_username(self, username: str) -> Optional[ApiError]:
        if not username:
            return ApiError(kind=ErrorKind.INVALID_INPUT, message='Username cannot be empty.')
        if not USERNAME_PATTERN.match(username):
            return ApiError(
                kind=ErrorKind.INVALID_INPUT,
                message='Invalid account name. Only letters, numbers, underscores, and hyphens are allowed.',
            )
        return None

    def _build_url(self, username: str, endpoint: str = '', args: Optional[FetchArgs] = None) -> str:
        """Build API URL; query params are added in a fixed order so URLs stay stable."""
        url = f"{self._config.api_base_url.rstrip('/')}/{quote(username)}/"
        if endpoint:
            url += f"{endpoint}/"

        params = []
        if args is not None:
            if args.metadata:
                params.append('metadata=1')
            if args.limit:
                params.append(f'limit={args.limit}')
            if args.offset:
                params.append(f'offset={args.offset}')
        if params:
            url += '?' + '&'.join(params)
        return url

    def _invalid_response(self, url: str, message: str) -> ApiError:
        error = ApiError(kind=ErrorKind.INVALID_RESPONSE, message=message, url=url, attempt=1)
        self._log_api_error(error)
        return error

    # =========================================================================
    # HTTP pipeline
    # =========================================================================

    def _request(self, url: str) -> ApiResult[Any]:
        """GET a URL with circuit breaker, conditional headers and retries."""
        cfg = self._config
        attempts = itertools.count(1)
        retrying = Retrying(
            stop=stop_after_attempt(max(1, cfg.max_retry_attempts)),
            wait=retry_wait(cfg),
            retry=retry_if_result(should_retry),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            # Out of attempts: hand back the last failure instead of RetryError
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        )
        return retrying(lambda: self._attempt(url, next(attempts)))

    def _attempt(self, url: str, attempt: int) -> ApiResult[Any]:
        """One physical GET; the breaker is consulted before every attempt."""
        if self._breaker.is_open():
            return ApiResult.failure(ApiError(
                kind=ErrorKind.CIRCUIT_OPEN,
                message='API temporarily unavailable due to repeated failures. Please try again later.',
                retryable=True,
                url=url,
                attempt=attempt,
            ))

        validators = self._store_get(self._validator_key(url))
        headers = self._conditional_headers(validators)

        try:
            response = self._http.get(url, headers=headers)
        except (httpx.RequestError, httpx.InvalidURL) as e:
            error = ApiError(
                kind=ErrorKind.TRANSPORT,
                message=f'Failed to connect to Mixcloud API: {e}',
                retryable=isinstance(e, httpx.TransportError) and not isinstance(e, NON_RETRYABLE_TRANSPORT),
                url=url,
                attempt=attempt,
            )
            self._log_api_error(error)
            self._breaker.record_failure()
            return ApiResult.failure(error)

        if response.status_code == 304 and validators and 'body' in validators:
            self._breaker.record_success()
            logger.debug(f"Not modified: {url}")
            return ApiResult.success(validators['body'])

        if response.status_code != 200:
            error = ApiError.from_status(response.status_code, url=url, attempt=attempt)
            self._log_api_error(error)
            self._breaker.record_failure()
            return ApiResult.failure(error)

        try:
            data = response.json()
        except ValueError:
            error = ApiError(
                kind=ErrorKind.INVALID_RESPONSE,
                message='Invalid JSON response from Mixcloud API.',
                status_code=response.status_code,
                url=url,
                attempt=attempt,
            )
            self._log_api_error(error)
            return ApiResult.failure(error)

        self._store_validators(url, response, data)
        self._breaker.record_success()
        if attempt > 1:
            logger.info(f"API request succeeded after {attempt} attempts: {url}")
        return ApiResult.success(data)

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        logger.info(
            f"Retrying in {retry_state.next_action.sleep:.2f}s "
            f"(attempt {retry_state.attempt_number} failed)"
        )

    @staticmethod
    def _validator_key(url: str) -> str:
        return VALIDATOR_PREFIX + hashlib.md5(url.encode()).hexdigest()

    @staticmethod
    def _conditional_headers(validators: Optional[Mapping[str, Any]]) -> dict:
        headers = {}
        if validators:
            if validators.get('etag'):
                headers['If-None-Match'] = validators['etag']
            if validators.get('last_modified'):
                headers['If-Modified-Since'] = validators['last_modified']
        return headers

    def _store_validators(self, url: str, response: httpx.Response, data: Any) -> None:
        validators = {}
        if response.headers.get('etag'):
            validators['etag'] = response.headers['etag']
        if response.headers.get('last-modified'):
            validators['last_modified'] = response.headers['last-modified']

        if validators:
            # Keep the body so a later 304 can be answered
            validators['body'] = data
            self._store_set(self._validator_key(url), validators, self._config.validator_ttl)

    # =========================================================================
    # Shared store access (a failing store never fails a request)
    # =========================================================================

    def _store_get(self, key: str) -> Any:
        try:
            return self._store.get(key)
        except STORE_ERRORS as e:
            logger.warning(f"Store read failed for {key}: {e}")
            return None

    def _store_set(self, key: str, value: Any, ttl: int) -> None:
        try:
            self._store.set(key, value, ttl)
        except STORE_ERRORS as e:
            logger.warning(f"Store write failed for {key}: {e}")

    # =========================================================================
    # Error log
    # =========================================================================

    def _log_api_error(self, error: ApiError) -> None:
        logger.warning(
            f"Mixcloud API error {error.code} (attempt {error.attempt}) for {error.url}: {error.message}"
        )
        now = self._clock()
        entry = {
            'timestamp': datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
            'error_code': error.code,
            'error_message': error.message,
            'status_code': error.status_code,
            'url': error.url,
            'attempt': error.attempt,
        }
        key = f"{ERROR_LOG_PREFIX}{now:017.6f}_{random.randint(1000, 9999)}"
        self._store_set(key, entry, self._config.error_log_ttl)

    def get_error_logs(self, limit: int = 50) -> List[dict]:
        """Recent API errors, newest first."""
        try:
            keys = sorted(self._store.keys(ERROR_LOG_PREFIX), reverse=True)[:limit]
        except STORE_ERRORS as e:
            logger.warning(f"Error log unavailable: {e}")
            return []
        logs = []
        for key in keys:
            entry = self._store_get(key)
            if entry is not None:
                logs.append(entry)
        return logs

    def clear_error_logs(self) -> int:
        return self._store.delete_prefix(ERROR_LOG_PREFIX)
