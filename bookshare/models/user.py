"""
User Model

Represents a principal: a locally registered or federated (Google,
GitHub) user of the book-sharing app.

The row also serves as the credential record for the token lifecycle:
refresh_token_fingerprint holds the SHA-256 of the one refresh token
currently valid for this user. Issuing a new pair overwrites it;
logout clears it.
"""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bookshare.database import Base

if TYPE_CHECKING:
    from bookshare.models.post import Post


class AuthProvider(str, Enum):
    """
    Authentication providers supported by the system.

    - LOCAL: Email/password registration
    - GOOGLE: Google OAuth
    - GITHUB: GitHub OAuth
    """
    LOCAL = "local"
    GOOGLE = "google"
    GITHUB = "github"


class User(Base):
    """
    User model.

    Table: users

    Federated users get a random, never-displayed password hash so every
    row has a credential; they sign in through their provider.

    Indexes:
    - email, username: unique
    - (auth_provider, provider_user_id): unique external identity linkage
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
        comment="User's email address (used for login)"
    )

    username: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        index=True,
        nullable=False,
        comment="Unique public handle"
    )

    hashed_password: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Bcrypt hash (random placeholder for federated users)"
    )

    full_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    avatar_url: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    # -------------------------------------------------------------------------
    # External Identity Linkage
    # -------------------------------------------------------------------------
    auth_provider: Mapped[str] = mapped_column(
        String(20),
        default=AuthProvider.LOCAL.value,
        nullable=False,
        comment="Provider of the linked external identity (local if none)"
    )

    provider_user_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="User ID at the OAuth provider"
    )

    # -------------------------------------------------------------------------
    # Session State
    # -------------------------------------------------------------------------
    refresh_token_fingerprint: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="SHA-256 of the currently valid refresh token"
    )

    # -------------------------------------------------------------------------
    # Timestamps
    # -------------------------------------------------------------------------
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    last_login_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    posts: Mapped[list["Post"]] = relationship(
        "Post",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint(
            "auth_provider",
            "provider_user_id",
            name="uq_users_external_identity",
        ),
    )

    @property
    def is_federated(self) -> bool:
        return self.provider_user_id is not None

    def __repr__(self) -> str:
        return f"User(id={self.id}, email='{self.email}', username='{self.username}')"
