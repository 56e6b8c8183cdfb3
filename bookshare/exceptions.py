"""
Domain Exceptions

Error taxonomy shared by the token lifecycle, identity bridge, rate
limiter and search proxy. Services raise these; main.py maps them to
HTTP responses.

Hierarchy:
    BookshareError
    ├── InvalidTokenError          (structurally invalid credential)
    │   ├── MalformedTokenError
    │   └── ExpiredTokenError
    ├── StaleTokenError            (superseded or revoked refresh token)
    ├── PrincipalNotFoundError
    ├── InactivePrincipalError     (deactivated account)
    ├── ConflictError              (uniqueness violation on create)
    ├── NoEmailError               (federated login without email)
    ├── RateLimitedError
    └── UpstreamError
        ├── UpstreamAuthError
        ├── UpstreamThrottledError
        └── UpstreamUnavailableError

Authentication errors carry no detail that would confirm whether an
account exists; the handlers render them all the same way.
"""


class BookshareError(Exception):
    """Base class for all domain errors."""

    code = "error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


# =============================================================================
# Token Errors
# =============================================================================


class InvalidTokenError(BookshareError):
    """Credential failed structural verification."""

    code = "invalid_token"


class MalformedTokenError(InvalidTokenError):
    """Bad signature, bad structure, or wrong token type."""

    code = "malformed"


class ExpiredTokenError(InvalidTokenError):
    """Credential is past its expiry."""

    code = "expired"


class StaleTokenError(BookshareError):
    """Refresh token is valid but no longer the stored one."""

    code = "stale"


# =============================================================================
# Principal Errors
# =============================================================================


class PrincipalNotFoundError(BookshareError):
    code = "not_found"


class InactivePrincipalError(BookshareError):
    """The principal exists but has been deactivated."""

    code = "inactive"


class ConflictError(BookshareError):
    """
    Uniqueness violation when creating a principal.

    Attributes:
        field: Name of the conflicting column, if known
    """

    code = "conflict"

    def __init__(self, message: str | None = None, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NoEmailError(BookshareError):
    """The identity provider did not supply a usable email address."""

    code = "no_email"


# =============================================================================
# Admission Errors
# =============================================================================


class RateLimitedError(BookshareError):
    """
    Admission denied by the per-user rate limiter.

    Attributes:
        retry_after: Seconds until the current window resets
    """

    code = "rate_limited"

    def __init__(self, message: str | None = None, retry_after: int | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


# =============================================================================
# Upstream Errors
# =============================================================================


class UpstreamError(BookshareError):
    """The external ranking service call failed."""

    code = "upstream_error"


class UpstreamAuthError(UpstreamError):
    """The ranking service rejected our credentials (bad API key)."""

    code = "upstream_auth"


class UpstreamThrottledError(UpstreamError):
    """The ranking service is throttling us."""

    code = "upstream_throttled"


class UpstreamUnavailableError(UpstreamError):
    """Any other upstream failure, including timeouts."""

    code = "upstream_unavailable"
