"""API module - FastAPI routers and endpoints."""

from .archives import archives_router
from .health import health_router

__all__ = ['archives_router', 'health_router']
