"""
Post Model

A user's post about a book. Posts are the candidates handed to the AI
search ranking; only the fields search needs are modelled here.
"""

from datetime import UTC, datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bookshare.database import Base


class Post(Base):
    """
    Post model.

    Attributes:
        id: Primary key
        user_id: Foreign key to users table
        content: Post text (what search ranks against)
        image_path: Optional stored image reference
        created_at: When the post was created
    """

    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    image_path: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
        index=True,
    )

    user = relationship("User", back_populates="posts")

    def __repr__(self) -> str:
        return f"Post(id={self.id}, user_id={self.user_id})"
