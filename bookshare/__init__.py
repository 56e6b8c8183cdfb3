"""
Bookshare API Application Package

Backend for a book-sharing social app: the session/token lifecycle
(password and federated login, single-use refresh tokens) and a
rate-limited AI search over recent posts.

Package Structure:
- config.py: Application configuration using Pydantic Settings
- database.py: SQLAlchemy database connection and session management
- exceptions.py: Domain error taxonomy
- main.py: FastAPI application factory and configuration
- dependencies.py: Dependency injection functions
- models/: SQLAlchemy ORM models
- schemas/: Pydantic request/response schemas
- routers/: API route handlers
- services/: Business logic (tokens, identity, rate limiting, search)
"""

__version__ = "0.1.0"
