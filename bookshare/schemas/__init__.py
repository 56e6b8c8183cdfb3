"""
Pydantic Schemas Package

Request/response validation, kept separate from the SQLAlchemy models
so we control exactly what the API exposes.

Schema Naming Convention:
- XxxCreate: Fields required when creating a record
- XxxResponse: Fields returned in API responses
"""

from bookshare.schemas.search import SearchPostItem, SearchResponse
from bookshare.schemas.user import (
    AuthResponse,
    LoginRequest,
    RefreshTokenRequest,
    TokenResponse,
    UserCreate,
    UserResponse,
)

__all__ = [
    # User schemas
    "UserCreate",
    "UserResponse",
    "LoginRequest",
    # Auth/Token schemas
    "AuthResponse",
    "TokenResponse",
    "RefreshTokenRequest",
    # Search schemas
    "SearchPostItem",
    "SearchResponse",
]
