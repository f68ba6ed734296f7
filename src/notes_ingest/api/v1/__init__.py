"""Version 1 API endpoints."""

from .endpoints import (
    boundaries_router,
    gaps_router,
    resolve_router,
    system_router,
)

__all__ = [
    "resolve_router",
    "gaps_router",
    "boundaries_router",
    "system_router",
]
