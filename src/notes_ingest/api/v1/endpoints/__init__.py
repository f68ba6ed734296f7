"""API endpoint modules for version 1."""

from .boundaries import router as boundaries_router
from .gaps import router as gaps_router
from .resolve import router as resolve_router
from .system import router as system_router

__all__ = [
    "resolve_router",
    "gaps_router",
    "boundaries_router",
    "system_router",
]
