"""
FastAPI Dependencies Module

Dependencies are reusable components injected into route handlers.
FastAPI's Depends() function manages their lifecycle.

Provided here:
- Database sessions (per-request)
- Credential store, token service and identity bridge built on that session
- Access-token authentication (stateless principal id, or the full user)
- The AI search proxy
"""

from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from bookshare.config import get_settings
from bookshare.database import get_db
from bookshare.exceptions import InvalidTokenError, PrincipalNotFoundError
from bookshare.services.credentials import CredentialStore, SqlCredentialStore
from bookshare.services.identity import FederatedIdentityBridge
from bookshare.services.ranking import GeminiRankingClient
from bookshare.services.search import SearchProxy
from bookshare.services.tokens import TokenService

if TYPE_CHECKING:
    from bookshare.models.user import User

# =============================================================================
# Type Aliases with Annotated
# =============================================================================
# Instead of writing:
#   def register(db: Session = Depends(get_db)):
#
# You can write:
#   def register(db: DbSession):

DbSession = Annotated[Session, Depends(get_db)]


# =============================================================================
# Auth Services
# =============================================================================


def get_credential_store(db: DbSession) -> CredentialStore:
    return SqlCredentialStore(db)


Store = Annotated[CredentialStore, Depends(get_credential_store)]


def get_token_service(store: Store) -> TokenService:
    return TokenService.from_settings(store)


Tokens = Annotated[TokenService, Depends(get_token_service)]


def get_identity_bridge(store: Store, tokens: Tokens) -> FederatedIdentityBridge:
    return FederatedIdentityBridge(store, tokens)


Bridge = Annotated[FederatedIdentityBridge, Depends(get_identity_bridge)]


# =============================================================================
# JWT Authentication
# =============================================================================
# OAuth2PasswordBearer extracts the token from "Authorization: Bearer <token>"
# and adds the "Authorize" button to Swagger UI. A missing header yields None
# so it fails with the same 401 as a bad token.

oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="/api/v1/auth/login",
    auto_error=False,
)

CREDENTIALS_EXCEPTION_DETAIL = "Could not validate credentials"


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=CREDENTIALS_EXCEPTION_DETAIL,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_principal_id(
    tokens: Tokens,
    token: str | None = Depends(oauth2_scheme),
) -> int:
    """
    Authenticate a request by access token alone.

    No database lookup: a valid signature and unexpired token are
    sufficient. Used by endpoints that only need the caller's id.

    Raises:
        HTTPException: 401 for any invalid or expired token
    """
    if not token:
        raise _credentials_exception()

    try:
        return tokens.verify_access(token)
    except InvalidTokenError:
        raise _credentials_exception()


CurrentPrincipal = Annotated[int, Depends(get_current_principal_id)]


def get_current_user(principal_id: CurrentPrincipal, store: Store):
    """
    Load the authenticated user.

    Raises:
        HTTPException: 401 if the user no longer exists
    """
    try:
        return store.load_principal(principal_id)
    except PrincipalNotFoundError:
        raise _credentials_exception()


def get_current_active_user(current_user=Depends(get_current_user)):
    """
    Verify the current user is active.

    Raises:
        HTTPException: 403 if user is inactive
    """
    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )
    return current_user


CurrentUser = Annotated["User", Depends(get_current_user)]
ActiveUser = Annotated["User", Depends(get_current_active_user)]


# =============================================================================
# AI Search
# =============================================================================


def get_search_proxy() -> SearchProxy:
    settings = get_settings()
    return SearchProxy(
        client=GeminiRankingClient.from_settings(settings),
        max_output_tokens=settings.search_max_output_tokens,
        cache_ttl=settings.search_cache_ttl if settings.cache_enabled else None,
    )


Search = Annotated[SearchProxy, Depends(get_search_proxy)]
