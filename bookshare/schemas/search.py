"""
Search Pydantic Schemas

Response shapes for the AI post search endpoint.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class SearchPostItem(BaseModel):
    """A post that the ranking model judged relevant."""

    id: int
    content: str
    user_id: int
    username: str | None = None
    image_path: str | None = None
    created_at: datetime
    rank: int = Field(..., description="1-based relevance rank")
    search_reason: str = Field(
        ...,
        description="Short explanation of why the post matches",
    )


class SearchResponse(BaseModel):
    """AI search results, most relevant first."""

    query: str
    posts: list[SearchPostItem] = Field(default_factory=list)
