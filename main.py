"""
Mixcloud Archives - Show archive service for Mixcloud accounts

Serves an account's cloudcasts as JSON with date filtering and pagination,
shielding the site from upstream latency and outages.

Features:
- Two-tier cache (in-process + SQLite/Redis) with adaptive TTLs
- Retry with exponential backoff and a shared circuit breaker
- Conditional requests (ETag / Last-Modified)
- Fallback shows during extended upstream outages
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import config
from api import archives_router, health_router

logging.basicConfig(
    level=getattr(logging, config.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("mixcloud_archives")


# =============================================================================
# APP INITIALIZATION
# =============================================================================

app = FastAPI(
    title="Mixcloud Archives",
    description="Mixcloud show archives with caching and date filtering",
    version="1.0.0"
)
app.state.config = config

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)

# Include routers
app.include_router(archives_router)
app.include_router(health_router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": list(e["loc"]), "message": e["msg"]} for e in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": {"code": "invalid_parameter", "message": "Invalid request parameters.", "details": errors}}
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception on {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": type(exc).__name__}
    )


# =============================================================================
# STARTUP
# =============================================================================

@app.on_event("startup")
async def startup():
    """Initialize the application."""
    logger.info("=" * 60)
    logger.info("Mixcloud Archives Starting Up")
    logger.info("=" * 60)
    logger.info(f"  Upstream: {config.api_base_url}")
    logger.info(f"  Cache backend: {config.cache_backend}")
    logger.info(f"  Retries: {config.max_retry_attempts} attempts, breaker at {config.circuit_breaker_threshold} failures")
    logger.info(f"  Peak-hours TTL boost: {'ON' if config.peak_hours_ttl_boost else 'OFF'}")
    logger.info("=" * 60)


@app.on_event("shutdown")
async def shutdown():
    manager = getattr(app.state, 'archive_manager', None)
    if manager is not None:
        manager.client.close()


# =============================================================================
# RUN
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
