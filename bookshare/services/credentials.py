"""
Credential Store

Durable per-user record of the one refresh token currently valid for
that user, plus the principal lookups the token lifecycle and the
federated login bridge need.

The interface exposes a compare-and-swap operation,
save_fingerprint_if_matches(), so callers never do read-compare-write
themselves. The SQLAlchemy implementation backs it with a single
conditional UPDATE, which the database executes atomically:

    UPDATE users
       SET refresh_token_fingerprint = :new
     WHERE id = :id AND refresh_token_fingerprint = :expected

Two concurrent rotations presenting the same refresh token therefore
see exactly one row updated between them.
"""

import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bookshare.exceptions import ConflictError, PrincipalNotFoundError
from bookshare.models.user import User

logger = logging.getLogger(__name__)


class CredentialStore(ABC):
    """Interface consumed by the token service and identity bridge."""

    @abstractmethod
    def load_principal(self, principal_id: int) -> User:
        """
        Raises:
            PrincipalNotFoundError: No such user
        """

    @abstractmethod
    def load_principal_by_external_or_contact(
        self,
        provider: str,
        external_id: str,
        email: str,
    ) -> User:
        """
        Find a user linked to (provider, external_id) OR owning email.

        A linked identity wins over an email match.

        Raises:
            PrincipalNotFoundError: Neither matches
        """

    @abstractmethod
    def load_principal_by_contact(self, email: str) -> User:
        """
        Find a user by email (password login, registration checks).

        Raises:
            PrincipalNotFoundError: No such user
        """

    @abstractmethod
    def handle_exists(self, handle: str) -> bool:
        """Check whether a username is taken."""

    @abstractmethod
    def link_external_identity(
        self,
        principal_id: int,
        provider: str,
        external_id: str,
    ) -> bool:
        """
        Attach an external identity to a user that has none.

        Never overwrites an existing linkage.

        Returns:
            True if the linkage was written
        """

    @abstractmethod
    def save_fingerprint(self, principal_id: int, fingerprint: str | None) -> None:
        """Unconditionally store (or clear, with None) the fingerprint."""

    @abstractmethod
    def save_fingerprint_if_matches(
        self,
        principal_id: int,
        expected: str,
        new: str | None,
    ) -> bool:
        """
        Atomically replace the fingerprint only if it equals expected.

        Returns:
            True if the swap happened
        """

    @abstractmethod
    def create_principal(self, **fields) -> User:
        """
        Create a user.

        Raises:
            ConflictError: Email, username or external identity taken
        """


class SqlCredentialStore(CredentialStore):
    """
    CredentialStore on the users table.

    Args:
        db: Request-scoped SQLAlchemy session
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def load_principal(self, principal_id: int) -> User:
        user = self.db.get(User, principal_id)
        if user is None:
            raise PrincipalNotFoundError()
        return user

    def load_principal_by_external_or_contact(
        self,
        provider: str,
        external_id: str,
        email: str,
    ) -> User:
        stmt = select(User).where(
            or_(
                (User.auth_provider == provider)
                & (User.provider_user_id == external_id),
                User.email == email,
            )
        )
        matches = self.db.execute(stmt).scalars().all()

        if not matches:
            raise PrincipalNotFoundError()

        # Prefer the row that is actually linked to this identity
        for user in matches:
            if user.auth_provider == provider and user.provider_user_id == external_id:
                return user
        return matches[0]

    def load_principal_by_contact(self, email: str) -> User:
        stmt = select(User).where(User.email == email)
        user = self.db.execute(stmt).scalar_one_or_none()
        if user is None:
            raise PrincipalNotFoundError()
        return user

    def handle_exists(self, handle: str) -> bool:
        stmt = select(User.id).where(User.username == handle)
        return self.db.execute(stmt).first() is not None

    def link_external_identity(
        self,
        principal_id: int,
        provider: str,
        external_id: str,
    ) -> bool:
        stmt = (
            update(User)
            .where(User.id == principal_id, User.provider_user_id.is_(None))
            .values(auth_provider=provider, provider_user_id=external_id)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount == 1

    def save_fingerprint(self, principal_id: int, fingerprint: str | None) -> None:
        values: dict = {"refresh_token_fingerprint": fingerprint}
        if fingerprint is not None:
            values["last_login_at"] = datetime.now(UTC)

        stmt = update(User).where(User.id == principal_id).values(**values)
        self.db.execute(stmt)
        self.db.commit()

    def save_fingerprint_if_matches(
        self,
        principal_id: int,
        expected: str,
        new: str | None,
    ) -> bool:
        # Inactive accounts are treated as holding no valid refresh token
        stmt = (
            update(User)
            .where(
                User.id == principal_id,
                User.refresh_token_fingerprint == expected,
                User.is_active.is_(True),
            )
            .values(refresh_token_fingerprint=new)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount == 1

    def create_principal(self, **fields) -> User:
        user = User(**fields)
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.info(f"Principal create conflict: {e.orig}")
            raise ConflictError("Principal already exists") from e

        self.db.refresh(user)
        return user
