"""
API Routers Package

This package contains FastAPI routers that handle API endpoints.

Router Structure:
- auth.py: /api/v1/auth/* endpoints (registration, login, refresh,
  logout, OAuth)
- search.py: /api/v1/search endpoint (AI post search)

Each router is imported and registered in main.py.
"""

from bookshare.routers.auth import router as auth_router
from bookshare.routers.search import router as search_router

__all__ = [
    "auth_router",
    "search_router",
]
