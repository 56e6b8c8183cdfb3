"""
AI Search Router

Semantic search over recent posts, ranked by an external LLM.

Each request:
1. Requires an access token (the principal id keys the rate limit)
2. Is admitted by the per-user rate limiter (10 searches/minute default)
3. Sends the most recent posts to the ranking service
4. Returns the matching posts, most relevant first, each with a short
   reason explaining the match
"""

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from bookshare.config import get_settings
from bookshare.dependencies import CurrentPrincipal, DbSession, Search
from bookshare.exceptions import RateLimitedError
from bookshare.schemas.search import SearchPostItem, SearchResponse
from bookshare.services.rate_limiter import RateLimiter, get_search_rate_limiter
from bookshare.services.search import fetch_recent_posts, to_candidates

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/search",
    tags=["Search"],
    responses={
        401: {"description": "Unauthorized"},
        429: {"description": "Search rate limit exceeded"},
        502: {"description": "Ranking service failed"},
        503: {"description": "AI search unavailable"},
    },
)

SearchLimiter = Annotated[RateLimiter, Depends(get_search_rate_limiter)]


@router.get(
    "",
    response_model=SearchResponse,
    summary="AI search over posts",
    description="""
    Find posts that are semantically relevant to a free-text query.

    The most recent posts are ranked by an LLM; only the posts it judges
    relevant are returned, best match first, each with a `search_reason`.

    **Rate limit:** 10 searches per minute per user (configurable).

    **Examples:**
    - `/search?q=cozy mysteries set in Scotland`
    - `/search?q=books that made someone cry`
    """,
)
async def ai_search(
    principal_id: CurrentPrincipal,
    db: DbSession,
    proxy: Search,
    rate_limiter: SearchLimiter,
    q: str | None = Query(
        default=None,
        max_length=500,
        description="Search query",
        examples=["space opera with found family"],
    ),
) -> SearchResponse:
    query = (q or "").strip()
    if not query:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Search query is required",
        )

    settings = get_settings()
    if not settings.ai_search_enabled:
        logger.error("AI search requested but GEMINI_API_KEY is not set")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="AI search is not configured",
        )

    if not rate_limiter.admit(principal_id):
        retry_after = rate_limiter.retry_after(principal_id)
        logger.warning(f"Search rate limit exceeded for user {principal_id}")
        raise RateLimitedError(
            "Too many searches. Please wait a minute.",
            retry_after=retry_after,
        )

    # Sync SQLAlchemy; keep it off the event loop
    posts = await asyncio.to_thread(fetch_recent_posts, db, settings.search_candidate_limit)
    posts_by_id = {str(post.id): post for post in posts}

    results = await proxy.search(query, to_candidates(posts))

    items = []
    for result in results:
        post = posts_by_id[result.id]
        items.append(
            SearchPostItem(
                id=post.id,
                content=post.content,
                user_id=post.user_id,
                username=post.user.username if post.user else None,
                image_path=post.image_path,
                created_at=post.created_at,
                rank=result.rank,
                search_reason=result.reason,
            )
        )

    return SearchResponse(query=query, posts=items)
