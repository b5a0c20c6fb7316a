"""
Archive API Endpoints

JSON endpoints for the archive page and its AJAX date filter.
"""

import logging
import re
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import Config
from processing import apply_date_filters, paginate, parse_date
from sources import ApiError, ArchiveManager

from .deps import RateLimiter, client_ip, get_archive_manager, get_config, get_rate_limiter

logger = logging.getLogger(__name__)

archives_router = APIRouter()

ACCOUNT_PATTERN = re.compile(r'^[A-Za-z0-9_-]+$')


# =============================================================================
# PYDANTIC MODELS FOR JSON API
# =============================================================================

class CloudcastResponse(BaseModel):
    """Single show."""
    key: str
    name: str
    url: str
    created_at: str
    description: str = ''
    play_count: int = 0
    favorite_count: int = 0
    comment_count: int = 0
    audio_length: int = 0
    picture_urls: dict = {}
    tags: List[str] = []
    owner: Optional[dict] = None


class PaginationResponse(BaseModel):
    total_items: int
    total_pages: int
    current_page: int
    per_page: int
    has_prev: bool
    has_next: bool


class ArchiveResponse(BaseModel):
    """Filtered, paginated archive for one account."""
    account: str
    count: int
    cloudcasts: List[CloudcastResponse]
    pagination: PaginationResponse
    fetched_at: str
    message: str


def _error(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    content = {'success': False, 'error': {'code': code, 'message': message, **extra}}
    return JSONResponse(status_code=status_code, content=content)


def _upstream_error(account: str, error: ApiError, manager: ArchiveManager) -> JSONResponse:
    """Turn a client error into a response, attaching fallback shows on severe errors."""
    payload = {'success': False, 'account': account, 'error': error.to_dict()}
    if error.is_severe:
        fallback = manager.get_fallback(account)
        payload['fallback'] = [r.to_dict() for r in fallback]
        status_code = 503
    else:
        status_code = 404 if error.status_code == 404 else 502
    return JSONResponse(status_code=status_code, content=payload)


def _validate_account(account: str) -> Optional[JSONResponse]:
    if not account:
        return _error(400, 'missing_account', 'Account parameter is required.')
    if not ACCOUNT_PATTERN.match(account):
        return _error(
            400, 'invalid_account',
            'Invalid account name. Only letters, numbers, underscores, and hyphens are allowed.',
        )
    return None


# =============================================================================
# ENDPOINTS
# =============================================================================

@archives_router.get("/api/archives/{account}")
def get_archive(
    account: str,
    request: Request,
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD, inclusive"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD, inclusive"),
    days: int = Query(0, ge=0, le=365, description="Only shows from the last N days; 0 = all"),
    page: int = Query(1, ge=1),
    per_page: Optional[int] = Query(None, ge=1, le=50),
    limit: int = Query(0, ge=0, le=100, description="Upstream fetch size; 0 = whole archive"),
    manager: ArchiveManager = Depends(get_archive_manager),
    limiter: RateLimiter = Depends(get_rate_limiter),
    cfg: Config = Depends(get_config),
):
    """
    Archive listing with date filtering and pagination.

    An explicit start/end date takes priority over `days`.
    """
    account = account.strip()
    invalid = _validate_account(account)
    if invalid:
        return invalid

    try:
        start = parse_date(start_date)
        end = parse_date(end_date)
    except ValueError:
        return _error(400, 'invalid_date', 'Invalid date format. Use YYYY-MM-DD.')
    if start and end and start > end:
        return _error(400, 'invalid_date_range', 'End date must be after start date.')

    if not limiter.allow(client_ip(request)):
        return _error(429, 'rate_limited', 'Rate limit exceeded. Please wait before making more requests.')

    result = manager.get_cloudcasts(account, {'limit': limit, 'metadata': True})
    if not result.ok:
        return _upstream_error(account, result.error, manager)

    records = apply_date_filters(result.value.records, start, end, days)
    current = paginate(records, page, per_page or cfg.default_per_page)

    count = current.total_items
    if start or end:
        message = f"Found {count} cloudcast{'s' if count != 1 else ''} for the selected date range."
    else:
        message = f"Found {count} cloudcast{'s' if count != 1 else ''}."

    return ArchiveResponse(
        account=account,
        count=count,
        cloudcasts=[CloudcastResponse(**r.to_dict()) for r in current.items],
        pagination=PaginationResponse(**current.meta()),
        fetched_at=result.value.fetched_at.isoformat(),
        message=message,
    )


@archives_router.get("/api/archives/{account}/user")
def get_user(account: str, manager: ArchiveManager = Depends(get_archive_manager)):
    """Account profile."""
    account = account.strip()
    invalid = _validate_account(account)
    if invalid:
        return invalid

    result = manager.get_user_info(account)
    if not result.ok:
        status_code = 404 if result.error.status_code == 404 else (503 if result.error.is_severe else 502)
        return JSONResponse(status_code=status_code, content={'success': False, 'error': result.error.to_dict()})

    return JSONResponse({'success': True, 'user': result.value.to_dict()})


@archives_router.post("/api/cache/clear")
def clear_cache(account: Optional[str] = None, manager: ArchiveManager = Depends(get_archive_manager)):
    """Clear one account's cache, or all caches (admin endpoint)."""
    if account and account.strip():
        invalid = _validate_account(account.strip())
        if invalid:
            return invalid
    removed = manager.clear_cache(account)
    target = account.strip() if account and account.strip() else 'all accounts'
    logger.info(f"Cache cleared for {target}")
    return JSONResponse({
        "status": "success",
        "message": f"Cache cleared for {target}",
        "removed": removed,
    })


@archives_router.post("/api/cache/warm")
def warm_cache(manager: ArchiveManager = Depends(get_archive_manager)):
    """Re-fetch the most recently cached accounts."""
    warmed = manager.warm_cache()
    return JSONResponse({"status": "success", "warmed": warmed})
