"""
AI Search Service

Semantic search over recent posts, delegated to an external ranking
model.

Pipeline:
1. No candidates → empty result, no upstream call
2. One prompt with the query and every candidate's id and text
3. Ranking call at temperature 0 with a bounded output size
4. Defensive parse: strip code fences, json.loads; anything that is not
   a JSON array counts as "no matches"
5. Keep entries with a string id; default a missing reason
6. Filter the candidates to the ranked ids, ordered by rank

The model's output is untrusted text. A malformed answer degrades to an
empty result, never to an exception or to unranked candidates.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from bookshare.models import Post
from bookshare.services.cache import cache_get, cache_set, make_cache_key
from bookshare.services.ranking import RankingClient

logger = logging.getLogger(__name__)

DEFAULT_REASON = "Relevant to search"

_CODE_FENCE = re.compile(r"```(?:json)?\s*|\s*```", re.IGNORECASE)


@dataclass(frozen=True)
class SearchCandidate:
    id: str
    text: str


@dataclass(frozen=True)
class RankedItem:
    id: str
    reason: str


@dataclass(frozen=True)
class ParsedRanking:
    """
    Tagged parse result.

    ok=False means the model's output could not be read; callers treat it
    exactly like an empty ranking.
    """

    ok: bool
    items: list[RankedItem] = field(default_factory=list)


@dataclass(frozen=True)
class SearchResult:
    candidate: SearchCandidate
    rank: int
    reason: str

    @property
    def id(self) -> str:
        return self.candidate.id


# =============================================================================
# Prompt / Parse / Reorder
# =============================================================================


def build_search_prompt(query: str, candidates: list[SearchCandidate]) -> str:
    """Prompt asking for a JSON array of {id, reason}, best match first."""
    posts_text = "\n\n".join(
        f"ID: {candidate.id}\nContent: {candidate.text}" for candidate in candidates
    )
    return f"""Given this search query: "{query}"

Find posts that are semantically relevant to the query. Return a JSON array of objects with "id" and "reason" fields, ordered by relevance (most relevant first). The reason should be a brief explanation (max 10 words) of why this post matches. If no posts match, return an empty array.

Example response format: [{{"id": "abc123", "reason": "Discusses the topic directly"}}]

Posts:
{posts_text}

Response (JSON array only):"""


def parse_search_results(raw: str | None) -> ParsedRanking:
    """
    Read the model's answer.

    Examples:
        >>> parse_search_results('[{"id": "p1", "reason": "x"}]').items
        [RankedItem(id='p1', reason='x')]
        >>> parse_search_results("not json").ok
        False
    """
    if not raw:
        return ParsedRanking(ok=False)

    cleaned = _CODE_FENCE.sub("", raw).strip()
    try:
        parsed: Any = json.loads(cleaned)
    except (json.JSONDecodeError, ValueError):
        logger.warning("Ranking response was not valid JSON; treating as no matches")
        return ParsedRanking(ok=False)

    if not isinstance(parsed, list):
        logger.warning("Ranking response was not a JSON array; treating as no matches")
        return ParsedRanking(ok=False)

    return ParsedRanking(ok=True, items=_ranked_items(parsed))


def _ranked_items(entries: list) -> list[RankedItem]:
    """Entries with a string id; a missing or non-string reason gets the default."""
    items = []
    for entry in entries:
        if not isinstance(entry, dict) or not isinstance(entry.get("id"), str):
            continue
        reason = entry.get("reason")
        items.append(
            RankedItem(
                id=entry["id"],
                reason=reason if isinstance(reason, str) else DEFAULT_REASON,
            )
        )
    return items


def reorder_candidates(
    candidates: list[SearchCandidate],
    ranking: ParsedRanking,
) -> list[SearchResult]:
    """
    Keep the ranked candidates, in ranked order, with their reasons.

    Ids the model invented are ignored; candidates it left out are
    dropped. A repeated id keeps its first position. Python's sort is
    stable, so equal positions keep candidate order.
    """
    positions: dict[str, int] = {}
    reasons: dict[str, str] = {}
    for position, item in enumerate(ranking.items):
        if item.id not in positions:
            positions[item.id] = position
            reasons[item.id] = item.reason

    matched = [candidate for candidate in candidates if candidate.id in positions]
    matched.sort(key=lambda candidate: positions[candidate.id])

    return [
        SearchResult(candidate=candidate, rank=rank, reason=reasons[candidate.id])
        for rank, candidate in enumerate(matched, start=1)
    ]


# =============================================================================
# Search Proxy
# =============================================================================


class SearchProxy:
    """
    Rank candidates with the external model.

    Identical searches within cache_ttl seconds are answered from Redis.
    Unreadable model output is never cached.

    Args:
        client: Ranking client
        max_output_tokens: Output budget per ranking call
        cache_ttl: Seconds to cache a successful ranking (None disables)
    """

    def __init__(
        self,
        client: RankingClient,
        max_output_tokens: int = 1024,
        cache_ttl: int | None = None,
    ) -> None:
        self.client = client
        self.max_output_tokens = max_output_tokens
        self.cache_ttl = cache_ttl

    async def search(
        self,
        query: str,
        candidates: list[SearchCandidate],
    ) -> list[SearchResult]:
        """
        Rank candidates for query.

        Returns:
            Matching candidates, most relevant first

        Raises:
            UpstreamAuthError, UpstreamThrottledError,
            UpstreamUnavailableError: The ranking call failed
        """
        if not candidates:
            return []

        cache_key = self._cache_key(query, candidates)
        if cache_key:
            cached = await asyncio.to_thread(cache_get, cache_key)
            # Anything but a list is a miss
            if isinstance(cached, list):
                ranking = ParsedRanking(ok=True, items=_ranked_items(cached))
                return reorder_candidates(candidates, ranking)

        prompt = build_search_prompt(query, candidates)
        raw = await self.client.complete(
            prompt,
            temperature=0.0,
            max_output_tokens=self.max_output_tokens,
        )

        ranking = parse_search_results(raw)
        results = reorder_candidates(candidates, ranking)

        logger.info(
            f"AI search ranked {len(results)} of {len(candidates)} candidates"
            f"{'' if ranking.ok else ' (unreadable response)'}"
        )

        if cache_key and ranking.ok:
            await asyncio.to_thread(
                cache_set,
                cache_key,
                [{"id": item.id, "reason": item.reason} for item in ranking.items],
                ttl=self.cache_ttl,
            )

        return results

    def _cache_key(self, query: str, candidates: list[SearchCandidate]) -> str | None:
        if not self.cache_ttl:
            return None
        return make_cache_key(
            "search",
            query.strip().lower(),
            *(f"{candidate.id}:{candidate.text}" for candidate in candidates),
        )


# =============================================================================
# Candidate Source
# =============================================================================


def fetch_recent_posts(db: Session, limit: int) -> list[Post]:
    """The most recent posts, newest first, with their authors loaded."""
    stmt = (
        select(Post)
        .options(selectinload(Post.user))
        .order_by(Post.created_at.desc(), Post.id.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def to_candidates(posts: list[Post]) -> list[SearchCandidate]:
    return [SearchCandidate(id=str(post.id), text=post.content) for post in posts]
