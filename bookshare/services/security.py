"""
Security Service

Password hashing and low-level JWT operations.

Security Features:
==================
1. Password hashing with bcrypt (passlib)
2. JWT encoding/decoding with python-jose (HS256)
3. Refresh-token fingerprints (SHA-256) for server-side storage

Higher-level token lifecycle (issue, rotate, revoke) lives in
services/tokens.py; this module only knows how to sign and check.

Usage:
    from bookshare.services.security import hash_password, verify_password

    hashed = hash_password("SecurePass123")
    is_valid = verify_password("SecurePass123", hashed)
"""

import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from bookshare.exceptions import ExpiredTokenError, MalformedTokenError

logger = logging.getLogger(__name__)

# -------------------------------------------------------------------------
# Password Hashing Configuration
# -------------------------------------------------------------------------
# deprecated="auto" means old hashes are automatically upgraded
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def hash_password(password: str) -> str:
    """
    Hash a plain text password using bcrypt.

    Example:
        >>> hashed = hash_password("SecurePass123")
        >>> hashed.startswith("$2b$")
        True
    """
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against a bcrypt hash.

    Uses constant-time comparison to prevent timing attacks.
    """
    return pwd_context.verify(plain_password, hashed_password)


@lru_cache
def dummy_password_hash() -> str:
    """
    A bcrypt hash no password matches.

    Login verifies against it when the email is unknown, so a miss costs
    the same bcrypt work as a wrong password.
    """
    return pwd_context.hash(secrets.token_hex(32))


def generate_placeholder_password() -> str:
    """
    Random credential for principals that have no local password.

    The value is hashed and discarded; nobody ever sees it.
    """
    return secrets.token_hex(32)


def token_fingerprint(token: str) -> str:
    """
    SHA-256 fingerprint of a token, as stored on the user row.

    Returns:
        64 hex characters
    """
    return hashlib.sha256(token.encode()).hexdigest()


# -------------------------------------------------------------------------
# JWT Operations
# -------------------------------------------------------------------------


def encode_token(
    subject: str,
    token_type: str,
    secret: str,
    algorithm: str,
    issued_at: datetime,
    expires_delta: timedelta,
) -> str:
    """
    Create a signed JWT.

    Every token carries a random jti, so two tokens minted for the same
    user in the same second are still distinct.

    Args:
        subject: Principal id (stored in "sub")
        token_type: "access" or "refresh"
        secret: Signing key for this token type
        algorithm: JWT algorithm (HS256)
        issued_at: Issue time (timezone-aware)
        expires_delta: Lifetime

    Returns:
        Encoded JWT string
    """
    claims = {
        "sub": subject,
        "type": token_type,
        "iat": issued_at,
        "exp": issued_at + expires_delta,
        "jti": secrets.token_hex(16),
    }
    return jwt.encode(claims, secret, algorithm=algorithm)


def decode_token(
    token: str,
    expected_type: str,
    secret: str,
    algorithm: str,
) -> dict[str, Any]:
    """
    Decode and validate a JWT.

    Args:
        token: The JWT string
        expected_type: Required "type" claim
        secret: Signing key for this token type
        algorithm: JWT algorithm

    Returns:
        Decoded claims

    Raises:
        ExpiredTokenError: Token is past its "exp"
        MalformedTokenError: Bad signature, bad structure, wrong type
            or missing subject
    """
    if not token or not isinstance(token, str):
        raise MalformedTokenError("Token missing")

    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
    except ExpiredSignatureError as e:
        raise ExpiredTokenError("Token has expired") from e
    except JWTError as e:
        logger.debug(f"JWT decode error: {e}")
        raise MalformedTokenError("Token could not be decoded") from e

    if payload.get("type") != expected_type:
        logger.warning(f"Token type mismatch: expected {expected_type}")
        raise MalformedTokenError("Unexpected token type")

    if not payload.get("sub"):
        raise MalformedTokenError("Token has no subject")

    return payload
