"""
Health Check and Utility Endpoints
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from config import Config
from sources import ArchiveManager

from .deps import get_archive_manager, get_config

VERSION = "1.0.0"

health_router = APIRouter()


@health_router.get("/health")
def health_check():
    """Simple health check endpoint."""
    return JSONResponse({
        "status": "healthy",
        "version": VERSION
    })


@health_router.get("/api/status")
def api_status(manager: ArchiveManager = Depends(get_archive_manager), cfg: Config = Depends(get_config)):
    """Detailed status: circuit breaker, cache tiers, configuration."""
    status = manager.status()
    return JSONResponse({
        "status": "degraded" if status['circuit_breaker']['open'] else "healthy",
        "version": VERSION,
        "config": {
            "cache_backend": cfg.cache_backend,
            "hot_cache_ttl": cfg.hot_cache_ttl,
            "peak_hours_ttl_boost": cfg.peak_hours_ttl_boost,
            "max_retry_attempts": cfg.max_retry_attempts,
            "circuit_breaker_threshold": cfg.circuit_breaker_threshold,
            "circuit_breaker_timeout": cfg.circuit_breaker_timeout,
        },
        **status,
    })


@health_router.get("/api/errors")
def api_errors(limit: int = Query(50, ge=1, le=500), manager: ArchiveManager = Depends(get_archive_manager)):
    """Recent upstream API errors, newest first."""
    return JSONResponse({"errors": manager.client.get_error_logs(limit)})


@health_router.delete("/api/errors")
def clear_api_errors(manager: ArchiveManager = Depends(get_archive_manager)):
    removed = manager.client.clear_error_logs()
    return JSONResponse({"status": "success", "removed": removed})
