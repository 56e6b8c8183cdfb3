"""
Services Package

Business logic, kept separate from HTTP handling (routers) so it can be
tested in isolation.

Current services:
- cache.py: Redis cache for AI search results
- credentials.py: Credential store (users table + refresh fingerprints)
- identity.py: Federated identity bridge (OAuth identity → local user)
- oauth.py: Google and GitHub OAuth adapters
- ranking.py: Client for the external LLM ranking service
- rate_limiter.py: slowapi IP limits and the per-user search limiter
- search.py: AI search proxy (prompt, parse, reorder)
- security.py: Password hashing and JWT primitives
- tokens.py: Token pair lifecycle (issue, rotate, revoke)
"""
