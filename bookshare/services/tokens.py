"""
Token Service

Issues, verifies, rotates and revokes paired JWT credentials.

Token Pair:
===========
- Access token: short-lived (15 min default), signed with SECRET_KEY.
  Verified by signature alone; never stored, never looked up.
- Refresh token: long-lived (7 days default), signed with
  REFRESH_SECRET_KEY. Its SHA-256 fingerprint is stored on the user
  row; only the token matching that fingerprint can be rotated.

Rotation invariant:
===================
A refresh token is good for exactly one rotation. rotate() swaps the
stored fingerprint with a compare-and-swap before returning anything,
so a replayed (or concurrently presented) refresh token finds the
fingerprint already gone and is rejected as stale.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from bookshare.config import Settings, get_settings
from bookshare.exceptions import (
    MalformedTokenError,
    PrincipalNotFoundError,
    StaleTokenError,
)
from bookshare.services.credentials import CredentialStore
from bookshare.services.security import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    decode_token,
    encode_token,
    token_fingerprint,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class TokenPair:
    """A freshly minted access/refresh pair."""

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"


class TokenService:
    """
    Token lifecycle operations.

    Args:
        store: Credential store holding refresh fingerprints
        access_secret: Signing key for access tokens
        refresh_secret: Signing key for refresh tokens
        access_ttl: Access token lifetime
        refresh_ttl: Refresh token lifetime
        algorithm: JWT algorithm
        clock: Returns the current time; used as the issue time
    """

    def __init__(
        self,
        store: CredentialStore,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._algorithm = algorithm
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        store: CredentialStore,
        settings: Settings | None = None,
    ) -> "TokenService":
        """Build a service configured from application settings."""
        settings = settings or get_settings()
        return cls(
            store,
            access_secret=settings.secret_key,
            refresh_secret=settings.refresh_secret_key,
            access_ttl=timedelta(minutes=settings.access_token_expire_minutes),
            refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
            algorithm=settings.jwt_algorithm,
        )

    # -------------------------------------------------------------------------
    # Issue / Verify
    # -------------------------------------------------------------------------

    def issue(self, principal_id: int) -> TokenPair:
        """
        Mint a new token pair. Does not persist anything.

        The caller must store the refresh fingerprint (see login()).
        """
        now = self._clock()
        subject = str(principal_id)

        access_token = encode_token(
            subject,
            ACCESS_TOKEN_TYPE,
            self._access_secret,
            self._algorithm,
            now,
            self.access_ttl,
        )
        refresh_token = encode_token(
            subject,
            REFRESH_TOKEN_TYPE,
            self._refresh_secret,
            self._algorithm,
            now,
            self.refresh_ttl,
        )

        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self.access_ttl.total_seconds()),
        )

    def verify_access(self, token: str) -> int:
        """
        Verify an access token by signature and expiry only.

        Returns:
            The embedded principal id

        Raises:
            ExpiredTokenError: Past expiry
            MalformedTokenError: Bad signature or structure
        """
        payload = decode_token(
            token, ACCESS_TOKEN_TYPE, self._access_secret, self._algorithm
        )
        return self._principal_id(payload)

    def verify_refresh(self, token: str) -> int:
        """Structural check of a refresh token; does not consult the store."""
        payload = decode_token(
            token, REFRESH_TOKEN_TYPE, self._refresh_secret, self._algorithm
        )
        return self._principal_id(payload)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def login(self, principal_id: int) -> TokenPair:
        """
        Issue a pair and make its refresh token the only valid one.

        Used by registration, password login and federated login.
        """
        pair = self.issue(principal_id)
        self.store.save_fingerprint(principal_id, token_fingerprint(pair.refresh_token))
        return pair

    def rotate(self, refresh_token: str) -> TokenPair:
        """
        Exchange a refresh token for a new pair.

        Raises:
            MalformedTokenError / ExpiredTokenError: Structural failure
            StaleTokenError: Token is not the stored one (reused,
                revoked, superseded, or the user is gone)
        """
        principal_id = self.verify_refresh(refresh_token)

        pair = self.issue(principal_id)
        swapped = self.store.save_fingerprint_if_matches(
            principal_id,
            expected=token_fingerprint(refresh_token),
            new=token_fingerprint(pair.refresh_token),
        )

        if not swapped:
            logger.warning(f"Stale refresh token presented for user {principal_id}")
            raise StaleTokenError()

        logger.info(f"Refresh token rotated for user {principal_id}")
        return pair

    def revoke(self, refresh_token: str) -> None:
        """
        Clear the stored fingerprint (logout).

        Any structurally valid refresh token for the user ends the
        session. Idempotent: revoking twice, or for a user that no longer
        exists, is a no-op.

        Raises:
            InvalidTokenError: Token is structurally invalid
        """
        principal_id = self.verify_refresh(refresh_token)

        try:
            self.store.load_principal(principal_id)
        except PrincipalNotFoundError:
            logger.info(f"Revoke for unknown user {principal_id}; nothing to do")
            return

        self.store.save_fingerprint(principal_id, None)
        logger.info(f"Refresh token revoked for user {principal_id}")

    @staticmethod
    def _principal_id(payload: dict) -> int:
        try:
            return int(payload["sub"])
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedTokenError("Token subject is not a user id") from e
