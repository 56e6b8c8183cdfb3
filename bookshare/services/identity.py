"""
Federated Identity Bridge

Turns an identity asserted by an OAuth provider (Google, GitHub) into a
local user and a token pair, through the same lifecycle as password
login.

Flow:
=====
1. The provider adapter (services/oauth.py) produces a FederatedIdentity.
   No email means no login (NoEmailError).
2. Look up a user by linked identity OR email. Either match counts: a
   reader may register locally first and sign in with Google later.
3. Found and deactivated → refuse (InactivePrincipalError). Found, not
   yet linked → link. An existing different linkage is left alone.
4. Not found → provision with a handle derived from the display name,
   suffixed 1, 2, 3... until free, and a random placeholder password.
5. Either way: issue tokens, store the fingerprint, return a sanitized
   user view.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum

from bookshare.exceptions import (
    ConflictError,
    InactivePrincipalError,
    NoEmailError,
    PrincipalNotFoundError,
)
from bookshare.models.user import User
from bookshare.schemas.user import UserResponse
from bookshare.services.credentials import CredentialStore
from bookshare.services.security import generate_placeholder_password, hash_password
from bookshare.services.tokens import TokenPair, TokenService

logger = logging.getLogger(__name__)

MAX_HANDLE_BASE_LENGTH = 25
MAX_HANDLE_LENGTH = 30
FALLBACK_HANDLE = "user"
MAX_PROVISION_ATTEMPTS = 5


@dataclass(frozen=True)
class FederatedIdentity:
    """
    Normalized identity from an OAuth provider.

    Different providers return data in different formats; adapters map
    them onto this shape.
    """

    provider: str
    external_id: str
    email: str | None
    display_name: str | None = None
    avatar_url: str | None = None


class FederatedOutcome(str, Enum):
    LINKED_EXISTING = "linked_existing"
    PROVISIONED_NEW = "provisioned_new"


@dataclass(frozen=True)
class FederatedLoginResult:
    outcome: FederatedOutcome
    user: UserResponse
    tokens: TokenPair


def derive_handle(display_name: str | None, email: str) -> str:
    """
    Candidate username from a provider display name.

    Whitespace is stripped, the result lowercased and truncated.
    Falls back to the email local part, then to "user".

    Example:
        >>> derive_handle("Jane Q Doe", "jane@example.com")
        'janeqdoe'
    """
    source = display_name or email.split("@")[0]
    handle = re.sub(r"\s+", "", source).lower()[:MAX_HANDLE_BASE_LENGTH]
    return handle or FALLBACK_HANDLE


def find_free_handle(store: CredentialStore, base: str) -> str:
    """
    Return base, or base1, base2, ... whichever is not taken.

    The base is shortened when needed so the suffix always fits within
    MAX_HANDLE_LENGTH.
    """
    handle = base[:MAX_HANDLE_LENGTH]
    suffix = 0
    while store.handle_exists(handle):
        suffix += 1
        digits = str(suffix)
        handle = f"{base[:MAX_HANDLE_LENGTH - len(digits)]}{digits}"
    return handle


def _ensure_active(user: User) -> None:
    if not user.is_active:
        logger.warning(f"Federated login refused for inactive user {user.id}")
        raise InactivePrincipalError("Account is inactive")


class FederatedIdentityBridge:
    """
    Exchange a federated identity for a local session.

    Args:
        store: Credential store
        token_service: Token service sharing the same store
    """

    def __init__(self, store: CredentialStore, token_service: TokenService) -> None:
        self.store = store
        self.token_service = token_service

    def exchange_federated(self, identity: FederatedIdentity) -> FederatedLoginResult:
        """
        Link or provision a user for identity and log them in.

        Raises:
            NoEmailError: Provider supplied no usable email
            InactivePrincipalError: Matched account is deactivated
            ConflictError: Provisioning kept colliding
        """
        email = (identity.email or "").strip().lower()
        if not email:
            raise NoEmailError(f"{identity.provider} account has no email address")

        try:
            user = self.store.load_principal_by_external_or_contact(
                identity.provider, identity.external_id, email
            )
        except PrincipalNotFoundError:
            user, outcome = self._provision(identity, email)
        else:
            _ensure_active(user)
            self._link(user, identity)
            outcome = FederatedOutcome.LINKED_EXISTING

        tokens = self.token_service.login(user.id)
        # Re-read so the view reflects any linkage written above
        user = self.store.load_principal(user.id)

        logger.info(f"{identity.provider} login for user {user.id}: {outcome.value}")

        return FederatedLoginResult(
            outcome=outcome,
            user=UserResponse.model_validate(user),
            tokens=tokens,
        )

    def _link(self, user: User, identity: FederatedIdentity) -> None:
        if user.provider_user_id is None:
            self.store.link_external_identity(
                user.id, identity.provider, identity.external_id
            )
            logger.info(f"Linked {identity.provider} identity to user {user.id}")
        elif (user.auth_provider, user.provider_user_id) != (
            identity.provider,
            identity.external_id,
        ):
            logger.info(
                f"User {user.id} already linked to {user.auth_provider}; "
                f"keeping existing linkage"
            )

    def _provision(
        self,
        identity: FederatedIdentity,
        email: str,
    ) -> tuple[User, FederatedOutcome]:
        base = derive_handle(identity.display_name, email)

        for _ in range(MAX_PROVISION_ATTEMPTS):
            handle = find_free_handle(self.store, base)
            try:
                user = self.store.create_principal(
                    email=email,
                    username=handle,
                    hashed_password=hash_password(generate_placeholder_password()),
                    full_name=identity.display_name,
                    avatar_url=identity.avatar_url,
                    auth_provider=identity.provider,
                    provider_user_id=identity.external_id,
                    is_active=True,
                )
            except ConflictError:
                # Lost a race: either the same identity was provisioned
                # concurrently, or someone took the handle
                try:
                    existing = self.store.load_principal_by_external_or_contact(
                        identity.provider, identity.external_id, email
                    )
                except PrincipalNotFoundError:
                    continue
                _ensure_active(existing)
                self._link(existing, identity)
                return existing, FederatedOutcome.LINKED_EXISTING

            logger.info(f"Provisioned user {user.id} as '{handle}' from {identity.provider}")
            return user, FederatedOutcome.PROVISIONED_NEW

        raise ConflictError("Could not allocate a unique username", field="username")
