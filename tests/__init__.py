"""
Test Suite for Bookshare API

Test Organization:
- conftest.py: Shared fixtures (test database, client, sample data)
- fakes.py: In-memory credential store and ranking client
- test_user_auth.py: /api/v1/auth register, login, refresh, logout, me
- test_auth_social.py: Google and GitHub OAuth callbacks
- test_tokens.py: Token service lifecycle and refresh rotation
- test_federated.py: Federated identity bridge
- test_rate_limiter.py: Per-user fixed-window limiter
- test_search.py: AI search proxy, ranking client and /api/v1/search

Running Tests:
    # Run all tests
    pytest

    # Run specific file
    pytest tests/test_tokens.py

    # Run with verbose output
    pytest -v
"""
