"""
OAuth Provider Adapters

Talk to Google and GitHub over OAuth 2.0 and normalize what they return
into a FederatedIdentity for the identity bridge.

This module:
1. Builds authorization URLs for each provider
2. Exchanges the callback code for a provider access token
3. Fetches the user's profile (and, for GitHub, a verified email)

Provider failures raise ValueError (rendered as 400). A profile without
a usable email raises NoEmailError.
"""

import logging
from urllib.parse import urlencode

import httpx

from bookshare.config import get_settings
from bookshare.exceptions import NoEmailError
from bookshare.models.user import AuthProvider
from bookshare.services.identity import FederatedIdentity

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

GITHUB_AUTH_URL = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_API_URL = "https://api.github.com"

GITHUB_HEADERS = {"Accept": "application/vnd.github.v3+json"}


# =============================================================================
# Google
# =============================================================================


def get_google_auth_url(redirect_uri: str) -> str:
    """
    Generate the Google OAuth authorization URL.

    Raises:
        ValueError: Google OAuth is not configured
    """
    settings = get_settings()
    if not settings.google_client_id:
        raise ValueError("Google OAuth not configured")

    params = {
        "client_id": settings.google_client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": "openid email profile",
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


async def handle_google_callback(code: str, redirect_uri: str) -> FederatedIdentity:
    """
    Exchange a Google authorization code for the user's identity.

    Raises:
        ValueError: Token exchange or profile fetch failed
        NoEmailError: Profile has no email
    """
    settings = get_settings()
    if not settings.google_client_id:
        raise ValueError("Google OAuth not configured")

    async with httpx.AsyncClient() as client:
        token_response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": settings.google_client_id,
                "client_secret": settings.google_client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
            },
        )

        if token_response.status_code != 200:
            logger.error(f"Google token exchange failed: {token_response.text}")
            raise ValueError("Failed to exchange code for token")

        access_token = token_response.json()["access_token"]

        user_response = await client.get(
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )

        if user_response.status_code != 200:
            logger.error(f"Google user info failed: {user_response.text}")
            raise ValueError("Failed to fetch user info")

        profile = user_response.json()

    email = profile.get("email")
    if not email:
        raise NoEmailError("Google account has no email address")

    return FederatedIdentity(
        provider=AuthProvider.GOOGLE.value,
        external_id=str(profile["id"]),
        email=email,
        display_name=profile.get("name") or profile.get("given_name"),
        avatar_url=profile.get("picture"),
    )


# =============================================================================
# GitHub
# =============================================================================


def get_github_auth_url(redirect_uri: str) -> str:
    """
    Generate the GitHub OAuth authorization URL.

    Raises:
        ValueError: GitHub OAuth is not configured
    """
    settings = get_settings()
    if not settings.github_client_id:
        raise ValueError("GitHub OAuth not configured")

    params = {
        "client_id": settings.github_client_id,
        "redirect_uri": redirect_uri,
        "scope": "user:email",
    }
    return f"{GITHUB_AUTH_URL}?{urlencode(params)}"


def _pick_github_email(emails: list[dict]) -> str | None:
    """Primary verified email, else any verified email."""
    for entry in emails:
        if entry.get("primary") and entry.get("verified"):
            return entry.get("email")
    for entry in emails:
        if entry.get("verified"):
            return entry.get("email")
    return None


async def handle_github_callback(code: str, redirect_uri: str) -> FederatedIdentity:
    """
    Exchange a GitHub authorization code for the user's identity.

    GitHub may hide the profile email; in that case the emails endpoint
    is consulted for a verified address.

    Raises:
        ValueError: Token exchange or profile fetch failed
        NoEmailError: No verified email available
    """
    settings = get_settings()
    if not settings.github_client_id:
        raise ValueError("GitHub OAuth not configured")

    async with httpx.AsyncClient() as client:
        token_response = await client.post(
            GITHUB_TOKEN_URL,
            data={
                "client_id": settings.github_client_id,
                "client_secret": settings.github_client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
            headers={"Accept": "application/json"},
        )

        if token_response.status_code != 200:
            logger.error(f"GitHub token exchange failed: {token_response.text}")
            raise ValueError("Failed to exchange code for token")

        token_data = token_response.json()
        if "error" in token_data:
            logger.error(f"GitHub OAuth error: {token_data.get('error')}")
            raise ValueError(token_data.get("error_description", "OAuth failed"))

        auth_headers = {
            "Authorization": f"Bearer {token_data['access_token']}",
            **GITHUB_HEADERS,
        }

        user_response = await client.get(f"{GITHUB_API_URL}/user", headers=auth_headers)
        if user_response.status_code != 200:
            logger.error(f"GitHub user info failed: {user_response.text}")
            raise ValueError("Failed to fetch user info")

        profile = user_response.json()

        email = profile.get("email")
        if not email:
            emails_response = await client.get(
                f"{GITHUB_API_URL}/user/emails", headers=auth_headers
            )
            if emails_response.status_code == 200:
                email = _pick_github_email(emails_response.json())

    if not email:
        raise NoEmailError("GitHub account has no verified email address")

    return FederatedIdentity(
        provider=AuthProvider.GITHUB.value,
        external_id=str(profile["id"]),
        email=email,
        display_name=profile.get("name") or profile.get("login"),
        avatar_url=profile.get("avatar_url"),
    )


def is_google_configured() -> bool:
    settings = get_settings()
    return bool(settings.google_client_id and settings.google_client_secret)


def is_github_configured() -> bool:
    settings = get_settings()
    return bool(settings.github_client_id and settings.github_client_secret)
