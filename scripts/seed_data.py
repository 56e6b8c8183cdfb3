#!/usr/bin/env python3
"""
Database Seed Script

Populates the database with sample users and posts for development, so
AI search has something to rank.

USAGE:
    # Make sure you're in the project root with venv activated
    python scripts/seed_data.py

This script:
1. Connects to the database using app settings
2. Clears existing data (optional)
3. Creates sample users (password: SeedPass123)
4. Creates posts for each user, oldest first
"""

import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import delete
from sqlalchemy.orm import Session

from bookshare.database import SessionLocal, create_tables
from bookshare.models import AuthProvider, Post, User
from bookshare.services.security import hash_password

SEED_PASSWORD = "SeedPass123"


def clear_data(db: Session) -> None:
    """Clear all existing data from the database."""
    print("Clearing existing data...")
    db.execute(delete(Post))
    db.execute(delete(User))
    db.commit()
    print("Data cleared.")


def create_users(db: Session) -> dict[str, User]:
    """Create sample users."""
    print("Creating users...")
    users_data = [
        {"username": "bookworm", "email": "bookworm@example.com", "full_name": "Ada Reader"},
        {"username": "scifi_sam", "email": "sam@example.com", "full_name": "Sam Ortiz"},
        {"username": "mysterymeg", "email": "meg@example.com", "full_name": "Meg Lindqvist"},
    ]

    hashed = hash_password(SEED_PASSWORD)
    users = {}
    for data in users_data:
        user = User(
            **data,
            hashed_password=hashed,
            auth_provider=AuthProvider.LOCAL.value,
            is_active=True,
        )
        db.add(user)
        users[data["username"]] = user

    db.commit()
    for user in users.values():
        db.refresh(user)

    print(f"Created {len(users)} users.")
    return users


def create_posts(db: Session, users: dict[str, User]) -> list[Post]:
    """Create sample posts, spaced an hour apart."""
    print("Creating posts...")
    posts_data = [
        ("bookworm", "Just finished Pride and Prejudice again. Elizabeth Bennet never gets old."),
        ("scifi_sam", "Foundation is a masterclass in big ideas. Psychohistory still blows my mind."),
        ("mysterymeg", "Murder on the Orient Express: the ending made me throw the book across the room."),
        ("bookworm", "Anyone else cry at the end of The Return of the King? Asking for a friend."),
        ("scifi_sam", "1984 feels more relevant every year. Rereading it for book club."),
        ("mysterymeg", "Looking for cozy mysteries set in small English villages. Recommendations?"),
        ("bookworm", "The Old Man and the Sea is short but it hit me harder than most doorstoppers."),
        ("scifi_sam", "I, Robot's three laws are a great starting point for talking about AI ethics."),
    ]

    start = datetime.now(UTC) - timedelta(hours=len(posts_data))
    posts = []
    for offset, (username, content) in enumerate(posts_data):
        post = Post(
            user_id=users[username].id,
            content=content,
            created_at=start + timedelta(hours=offset),
        )
        db.add(post)
        posts.append(post)

    db.commit()

    print(f"Created {len(posts)} posts.")
    return posts


def seed_database(clear_existing: bool = True) -> None:
    """
    Main function to seed the database.

    Args:
        clear_existing: If True, clears existing data before seeding.
    """
    print("=" * 60)
    print("Starting database seed...")
    print("=" * 60)

    # Create tables if they don't exist
    create_tables()

    db = SessionLocal()

    try:
        if clear_existing:
            clear_data(db)

        users = create_users(db)
        posts = create_posts(db, users)

        print("=" * 60)
        print("Database seeding completed successfully!")
        print("=" * 60)
        print("\nSummary:")
        print(f"  - Users: {len(users)} (password: {SEED_PASSWORD})")
        print(f"  - Posts: {len(posts)}")
        print("\nYou can now access the API at http://localhost:8000")
        print("API documentation at http://localhost:8000/docs")

    except Exception as e:
        print(f"Error seeding database: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_database()
