"""
SQLAlchemy Models Package

Models:
- User: principals and their refresh-token fingerprint
- Post: user posts, the candidates for AI search

Import all models here so Alembic discovers them for migrations and the
rest of the app can write: from bookshare.models import User, Post
"""

from bookshare.models.user import AuthProvider, User
from bookshare.models.post import Post

__all__ = [
    "AuthProvider",
    "User",
    "Post",
]
