"""
Authentication Router

Handles user authentication endpoints:
- Registration (email/password → user + token pair)
- Login (email/password → user + token pair)
- Token refresh (single-use refresh token → new pair)
- Logout (revoke the refresh token)
- Get current user (from access token)
- OAuth login via Google and GitHub

Security:
=========
- Passwords are hashed with bcrypt before storage
- Plain text passwords and tokens are never logged
- Access tokens are short-lived (15 min default) and stateless
- Refresh tokens last longer (7 days default) but each one works once;
  only its SHA-256 fingerprint is stored
"""

import logging

from fastapi import APIRouter, HTTPException, Request, Response, status
from starlette.responses import RedirectResponse

from bookshare.config import get_settings
from bookshare.dependencies import (
    CREDENTIALS_EXCEPTION_DETAIL,
    ActiveUser,
    Bridge,
    Store,
    Tokens,
)
from bookshare.exceptions import ConflictError, PrincipalNotFoundError
from bookshare.models.user import AuthProvider
from bookshare.schemas.user import (
    AuthResponse,
    LoginRequest,
    RefreshTokenRequest,
    TokenResponse,
    UserCreate,
    UserResponse,
)
from bookshare.services import oauth
from bookshare.services.identity import FederatedIdentity
from bookshare.services.rate_limiter import limiter
from bookshare.services.security import dummy_password_hash, hash_password, verify_password
from bookshare.services.tokens import TokenPair

logger = logging.getLogger(__name__)
settings = get_settings()

REFRESH_COOKIE = "refresh_token"

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"],
    responses={
        400: {"description": "Bad request"},
        401: {"description": "Unauthorized"},
        409: {"description": "Conflict (email/username already exists)"},
    },
)


# -------------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------------


def _token_response(pair: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=pair.expires_in,
    )


def _set_refresh_cookie(response: Response, refresh_token: str) -> None:
    """Mirror the refresh token into an httpOnly cookie for browser clients."""
    response.set_cookie(
        key=REFRESH_COOKIE,
        value=refresh_token,
        httponly=True,  # Not accessible via JavaScript
        secure=settings.is_production,  # HTTPS only in production
        samesite="lax",  # CSRF protection
        max_age=settings.refresh_token_expire_days * 24 * 60 * 60,
    )


def _clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=REFRESH_COOKIE,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


def _presented_refresh_token(request: Request, body: RefreshTokenRequest | None) -> str:
    """Refresh token from the body, else from the cookie."""
    token = body.refresh_token if body else None
    token = token or request.cookies.get(REFRESH_COOKIE)

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=CREDENTIALS_EXCEPTION_DETAIL,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


def _incorrect_credentials() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Incorrect email or password",
        headers={"WWW-Authenticate": "Bearer"},
    )


# -------------------------------------------------------------------------
# Registration Endpoint
# -------------------------------------------------------------------------
@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new user",
    description="""
    Create a new user account with email and password and log it in.

    **Password Requirements:**
    - 8-72 characters
    - At least 1 uppercase letter
    - At least 1 lowercase letter
    - At least 1 number

    **Username Requirements:**
    - 3-30 characters
    - Must start with a letter
    - Only letters, numbers, and underscores
    """,
)
@limiter.limit("5/minute")  # Strict rate limit to prevent spam registrations
def register(
    request: Request,
    response: Response,
    user_data: UserCreate,
    store: Store,
    tokens: Tokens,
) -> AuthResponse:
    """
    Register a new user with email and password.

    1. Validates email and password format (handled by Pydantic)
    2. Checks for duplicate email/username
    3. Hashes password with bcrypt
    4. Creates user record
    5. Issues a token pair and stores its refresh fingerprint
    """
    email = user_data.email.lower()

    try:
        store.load_principal_by_contact(email)
    except PrincipalNotFoundError:
        pass
    else:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    if store.handle_exists(user_data.username):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Username already taken",
        )

    try:
        user = store.create_principal(
            email=email,
            username=user_data.username,
            hashed_password=hash_password(user_data.password),
            full_name=user_data.full_name,
            auth_provider=AuthProvider.LOCAL.value,
            is_active=True,
        )
    except ConflictError:
        # Lost a race with a concurrent registration
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email or username already registered",
        ) from None

    pair = tokens.login(user.id)
    _set_refresh_cookie(response, pair.refresh_token)

    logger.info(f"New user registered: {user.id}")

    return AuthResponse(
        user=UserResponse.model_validate(user),
        tokens=_token_response(pair),
    )


# -------------------------------------------------------------------------
# Login Endpoint
# -------------------------------------------------------------------------
@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Login with email and password",
    description="""
    Authenticate with email and password to receive a token pair.

    **Returns:**
    - `user`: The authenticated user's profile
    - `tokens.access_token`: Short-lived token for API authentication
    - `tokens.refresh_token`: Single-use token for `/auth/refresh`
    - `tokens.expires_in`: Access token lifetime in seconds

    Logging in invalidates any refresh token issued earlier.

    **Usage:**
    ```
    Authorization: Bearer <access_token>
    ```
    """,
)
@limiter.limit("10/minute")  # Rate limit login attempts
def login(
    request: Request,
    response: Response,
    credentials: LoginRequest,
    store: Store,
    tokens: Tokens,
) -> AuthResponse:
    """
    Authenticate user and return a token pair.

    Unknown email and wrong password produce the same 401.
    """
    try:
        user = store.load_principal_by_contact(credentials.email.lower())
    except PrincipalNotFoundError:
        verify_password(credentials.password, dummy_password_hash())
        logger.warning("Login failed: unknown email")
        raise _incorrect_credentials() from None

    if not verify_password(credentials.password, user.hashed_password):
        logger.warning(f"Login failed: incorrect password for user {user.id}")
        raise _incorrect_credentials()

    if not user.is_active:
        logger.warning(f"Login failed: inactive account {user.id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )

    pair = tokens.login(user.id)
    _set_refresh_cookie(response, pair.refresh_token)

    logger.info(f"User logged in: {user.id}")

    return AuthResponse(
        user=UserResponse.model_validate(user),
        tokens=_token_response(pair),
    )


# -------------------------------------------------------------------------
# Token Refresh Endpoint
# -------------------------------------------------------------------------
@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Rotate the refresh token",
    description="""
    Exchange a refresh token for a new access/refresh pair.

    **Methods:**
    1. **Body**: Pass `refresh_token` in the request body
    2. **Cookie**: Refresh token from the httpOnly cookie

    The presented refresh token is consumed. Presenting it again (or any
    older token) is rejected with 401.
    """,
)
def refresh_token(
    request: Request,
    response: Response,
    tokens: Tokens,
    body: RefreshTokenRequest | None = None,
) -> TokenResponse:
    """Rotate the presented refresh token."""
    token = _presented_refresh_token(request, body)

    # InvalidTokenError / StaleTokenError render as 401 (see main.py)
    pair = tokens.rotate(token)
    _set_refresh_cookie(response, pair.refresh_token)

    return _token_response(pair)


# -------------------------------------------------------------------------
# Logout Endpoint
# -------------------------------------------------------------------------
@router.post(
    "/logout",
    summary="Logout user",
    description="""
    Revoke the refresh token (body or cookie) and clear the cookie.

    The access token remains valid until it expires (15 min default);
    no refresh token issued before logout can be rotated afterwards.
    """,
)
def logout(
    request: Request,
    response: Response,
    tokens: Tokens,
    body: RefreshTokenRequest | None = None,
) -> dict:
    """Logout by clearing the stored refresh-token fingerprint."""
    token = _presented_refresh_token(request, body)

    tokens.revoke(token)
    _clear_refresh_cookie(response)

    return {"message": "Logged out successfully"}


# -------------------------------------------------------------------------
# Get Current User Endpoint
# -------------------------------------------------------------------------
@router.get(
    "/me",
    response_model=UserResponse,
    summary="Get current user",
    description="""
    Get the currently authenticated user's profile.

    Requires a valid access token in the Authorization header:
    ```
    Authorization: Bearer <access_token>
    ```
    """,
)
def get_me(current_user: ActiveUser) -> UserResponse:
    return UserResponse.model_validate(current_user)


# =============================================================================
# OAuth Endpoints (Social Login)
# =============================================================================


def _oauth_callback_guard(provider: str, configured: bool, code: str | None, error: str | None) -> str:
    if not configured:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{provider} OAuth is not configured",
        )

    if error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"OAuth error: {error}",
        )

    if not code:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Authorization code required",
        )
    return code


def _complete_federated_login(
    bridge: Bridge,
    response: Response,
    identity: FederatedIdentity,
) -> AuthResponse:
    """Link or provision the user, log them in, set the refresh cookie."""
    result = bridge.exchange_federated(identity)
    _set_refresh_cookie(response, result.tokens.refresh_token)

    return AuthResponse(user=result.user, tokens=_token_response(result.tokens))


@router.get(
    "/google",
    summary="Login with Google",
    description="""
    Redirect to Google OAuth login page.

    After successful authentication, Google will redirect back to
    `/api/v1/auth/google/callback` with an authorization code.
    """,
    responses={
        302: {"description": "Redirect to Google OAuth"},
        400: {"description": "Google OAuth not configured"},
    },
)
def google_login() -> RedirectResponse:
    """Redirect to Google OAuth authorization page."""
    if not oauth.is_google_configured():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Google OAuth is not configured",
        )

    auth_url = oauth.get_google_auth_url(settings.google_redirect_uri)
    return RedirectResponse(url=auth_url)


@router.get(
    "/google/callback",
    response_model=AuthResponse,
    summary="Google OAuth callback",
    description="""
    Handle Google OAuth callback after user authorizes.

    This endpoint:
    1. Exchanges the authorization code for a Google access token
    2. Fetches user info from Google
    3. Links or creates the local account
    4. Returns the user and a token pair
    """,
)
async def google_callback(
    response: Response,
    bridge: Bridge,
    code: str | None = None,
    error: str | None = None,
) -> AuthResponse:
    code = _oauth_callback_guard("Google", oauth.is_google_configured(), code, error)

    try:
        identity = await oauth.handle_google_callback(code, settings.google_redirect_uri)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from None

    return _complete_federated_login(bridge, response, identity)


@router.get(
    "/github",
    summary="Login with GitHub",
    description="""
    Redirect to GitHub OAuth login page.

    After successful authentication, GitHub will redirect back to
    `/api/v1/auth/github/callback` with an authorization code.
    """,
    responses={
        302: {"description": "Redirect to GitHub OAuth"},
        400: {"description": "GitHub OAuth not configured"},
    },
)
def github_login() -> RedirectResponse:
    """Redirect to GitHub OAuth authorization page."""
    if not oauth.is_github_configured():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="GitHub OAuth is not configured",
        )

    auth_url = oauth.get_github_auth_url(settings.github_redirect_uri)
    return RedirectResponse(url=auth_url)


@router.get(
    "/github/callback",
    response_model=AuthResponse,
    summary="GitHub OAuth callback",
    description="""
    Handle GitHub OAuth callback after user authorizes.

    This endpoint:
    1. Exchanges the authorization code for a GitHub access token
    2. Fetches the profile, and a verified email if the profile hides it
    3. Links or creates the local account
    4. Returns the user and a token pair
    """,
)
async def github_callback(
    response: Response,
    bridge: Bridge,
    code: str | None = None,
    error: str | None = None,
) -> AuthResponse:
    code = _oauth_callback_guard("GitHub", oauth.is_github_configured(), code, error)

    try:
        identity = await oauth.handle_github_callback(code, settings.github_redirect_uri)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from None

    return _complete_federated_login(bridge, response, identity)
