"""
Tests for AI Search

Tests cover:
- Parsing untrusted model output (code fences, garbage, missing reasons)
- Reordering candidates by the model's ranking
- SearchProxy: short-circuit, deterministic call, caching
- GeminiRankingClient error classification (httpx.MockTransport)
- GET /api/v1/search: auth, validation, configuration, rate limit,
  upstream failures, result shape
"""

import json
import threading
from unittest.mock import patch

import httpx
import pytest
from fastapi import status
from fastapi.testclient import TestClient

from bookshare.config import get_settings
from bookshare.dependencies import get_search_proxy
from bookshare.exceptions import (
    UpstreamAuthError,
    UpstreamThrottledError,
    UpstreamUnavailableError,
)
from bookshare.main import app
from bookshare.models import Post, User
from bookshare.services.ranking import GeminiRankingClient, _extract_text
from bookshare.services.search import (
    DEFAULT_REASON,
    ParsedRanking,
    RankedItem,
    SearchCandidate,
    SearchProxy,
    build_search_prompt,
    parse_search_results,
    reorder_candidates,
)
from tests.conftest import bearer, login
from tests.fakes import FakeRankingClient

CANDIDATES = [
    SearchCandidate(id="p1", text="Dune has the best desert ecology."),
    SearchCandidate(id="p2", text="Pride and Prejudice, again."),
    SearchCandidate(id="p3", text="Arrakis and the spice trade."),
]


# =============================================================================
# Parsing
# =============================================================================


class TestParseSearchResults:
    def test_plain_array(self):
        parsed = parse_search_results('[{"id": "p3", "reason": "Mentions Arrakis"}]')

        assert parsed.ok is True
        assert parsed.items == [RankedItem(id="p3", reason="Mentions Arrakis")]

    def test_code_fenced(self):
        raw = '```json\n[{"id": "p1", "reason": "Dune"}]\n```'

        parsed = parse_search_results(raw)

        assert parsed.ok is True
        assert [item.id for item in parsed.items] == ["p1"]

    def test_empty_array(self):
        parsed = parse_search_results("[]")

        assert parsed.ok is True
        assert parsed.items == []

    @pytest.mark.parametrize(
        "raw",
        ["", None, "I could not find anything", '{"id": "p1"}', "[{'id': 'p1'}]"],
    )
    def test_unreadable(self, raw):
        parsed = parse_search_results(raw)

        assert parsed.ok is False
        assert parsed.items == []

    def test_missing_reason_gets_default(self):
        parsed = parse_search_results('[{"id": "p1"}, {"id": "p2", "reason": 7}]')

        assert [item.reason for item in parsed.items] == [DEFAULT_REASON, DEFAULT_REASON]

    def test_entries_without_string_id_skipped(self):
        parsed = parse_search_results('[{"id": 1}, "p2", {"reason": "x"}, {"id": "p3"}]')

        assert [item.id for item in parsed.items] == ["p3"]


# =============================================================================
# Reordering
# =============================================================================


class TestReorderCandidates:
    def test_ranked_order_and_reasons(self):
        ranking = ParsedRanking(
            ok=True,
            items=[RankedItem("p3", "Mentions Arrakis"), RankedItem("p1", "About Dune")],
        )

        results = reorder_candidates(CANDIDATES, ranking)

        assert [r.id for r in results] == ["p3", "p1"]
        assert [r.rank for r in results] == [1, 2]
        assert [r.reason for r in results] == ["Mentions Arrakis", "About Dune"]

    def test_unknown_ids_ignored(self):
        ranking = ParsedRanking(ok=True, items=[RankedItem("p9", "x"), RankedItem("p2", "y")])

        results = reorder_candidates(CANDIDATES, ranking)

        assert [r.id for r in results] == ["p2"]
        assert results[0].rank == 1

    def test_duplicate_id_keeps_first_position(self):
        ranking = ParsedRanking(
            ok=True,
            items=[
                RankedItem("p2", "first"),
                RankedItem("p1", "second"),
                RankedItem("p2", "again"),
            ],
        )

        results = reorder_candidates(CANDIDATES, ranking)

        assert [r.id for r in results] == ["p2", "p1"]
        assert results[0].reason == "first"

    def test_unreadable_ranking_returns_nothing(self):
        assert reorder_candidates(CANDIDATES, ParsedRanking(ok=False)) == []


class TestBuildSearchPrompt:
    def test_includes_query_and_every_candidate(self):
        prompt = build_search_prompt("desert planets", CANDIDATES)

        assert '"desert planets"' in prompt
        for candidate in CANDIDATES:
            assert f"ID: {candidate.id}" in prompt
            assert candidate.text in prompt
        assert "JSON array" in prompt


# =============================================================================
# SearchProxy
# =============================================================================


class TestSearchProxy:
    @pytest.mark.asyncio
    async def test_no_candidates_skips_upstream(self):
        client = FakeRankingClient()

        results = await SearchProxy(client).search("anything", [])

        assert results == []
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_calls_with_temperature_zero(self):
        client = FakeRankingClient('[{"id": "p3", "reason": "Arrakis"}]')

        results = await SearchProxy(client, max_output_tokens=512).search("spice", CANDIDATES)

        assert [r.id for r in results] == ["p3"]
        assert len(client.calls) == 1
        assert client.calls[0]["temperature"] == 0.0
        assert client.calls[0]["max_output_tokens"] == 512

    @pytest.mark.asyncio
    async def test_garbage_response_is_empty(self):
        client = FakeRankingClient("Sorry, I can't help with that.")

        assert await SearchProxy(client).search("spice", CANDIDATES) == []

    @pytest.mark.asyncio
    async def test_upstream_error_propagates(self):
        client = FakeRankingClient(error=UpstreamThrottledError("slow down"))

        with pytest.raises(UpstreamThrottledError):
            await SearchProxy(client).search("spice", CANDIDATES)

    @pytest.mark.asyncio
    async def test_cache_hit_skips_upstream(self):
        store = {}

        def fake_set(key, value, ttl):
            store[key] = value
            return True

        client = FakeRankingClient('[{"id": "p1", "reason": "Dune"}]')
        proxy = SearchProxy(client, cache_ttl=120)

        with (
            patch("bookshare.services.search.cache_get", side_effect=store.get),
            patch("bookshare.services.search.cache_set", side_effect=fake_set),
        ):
            first = await proxy.search("Dune", CANDIDATES)
            second = await proxy.search("  dune ", CANDIDATES)

        assert len(client.calls) == 1
        assert [r.id for r in first] == [r.id for r in second] == ["p1"]

    @pytest.mark.asyncio
    async def test_malformed_cache_entries_skipped(self):
        cached = [{"id": "p3"}, {"reason": "no id"}, "p2", {"id": 1, "reason": "x"}]
        client = FakeRankingClient()
        proxy = SearchProxy(client, cache_ttl=120)

        with patch("bookshare.services.search.cache_get", return_value=cached):
            results = await proxy.search("spice", CANDIDATES)

        assert [(r.id, r.reason) for r in results] == [("p3", DEFAULT_REASON)]
        assert client.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cached", [{"id": "p1"}, "p1", 42])
    async def test_non_list_cache_value_is_a_miss(self, cached):
        client = FakeRankingClient('[{"id": "p1", "reason": "Dune"}]')
        proxy = SearchProxy(client, cache_ttl=120)

        with (
            patch("bookshare.services.search.cache_get", return_value=cached),
            patch("bookshare.services.search.cache_set"),
        ):
            results = await proxy.search("Dune", CANDIDATES)

        assert [r.id for r in results] == ["p1"]
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_cache_lookup_runs_off_event_loop(self):
        loop_thread = threading.get_ident()
        lookup_threads = []

        def fake_get(key):
            lookup_threads.append(threading.get_ident())
            return None

        proxy = SearchProxy(FakeRankingClient(), cache_ttl=120)

        with (
            patch("bookshare.services.search.cache_get", side_effect=fake_get),
            patch("bookshare.services.search.cache_set"),
        ):
            await proxy.search("Dune", CANDIDATES)

        assert len(lookup_threads) == 1
        assert lookup_threads[0] != loop_thread

    @pytest.mark.asyncio
    async def test_unreadable_response_not_cached(self):
        client = FakeRankingClient("not json")
        proxy = SearchProxy(client, cache_ttl=120)

        with (
            patch("bookshare.services.search.cache_get", return_value=None),
            patch("bookshare.services.search.cache_set") as cache_set,
        ):
            await proxy.search("Dune", CANDIDATES)

        cache_set.assert_not_called()


# =============================================================================
# GeminiRankingClient
# =============================================================================


def gemini_client(handler) -> GeminiRankingClient:
    return GeminiRankingClient(
        api_key="test-key",
        base_url="https://gemini.test/v1beta",
        transport=httpx.MockTransport(handler),
    )


def gemini_body(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class TestGeminiRankingClient:
    @pytest.mark.asyncio
    async def test_success(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers["x-goog-api-key"]
            seen["payload"] = json.loads(request.content)
            return httpx.Response(200, json=gemini_body("[]"))

        text = await gemini_client(handler).complete("prompt", temperature=0.0)

        assert text == "[]"
        assert seen["url"].endswith("/models/gemini-2.5-flash:generateContent")
        assert seen["key"] == "test-key"
        assert seen["payload"]["generationConfig"]["temperature"] == 0.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code, body, expected",
        [
            (401, "unauthorized", UpstreamAuthError),
            (403, "forbidden", UpstreamAuthError),
            (400, "API key not valid. Please pass a valid API key.", UpstreamAuthError),
            (400, "Invalid JSON payload", UpstreamUnavailableError),
            (429, "Resource exhausted", UpstreamThrottledError),
            (500, "Internal error", UpstreamUnavailableError),
            (503, "Overloaded", UpstreamUnavailableError),
        ],
    )
    async def test_error_classification(self, status_code, body, expected):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, text=body)

        with pytest.raises(expected):
            await gemini_client(handler).complete("prompt")

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(UpstreamUnavailableError):
            await gemini_client(handler).complete("prompt")

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamUnavailableError):
            await gemini_client(handler).complete("prompt")

    def test_extract_text_joins_parts(self):
        data = {"candidates": [{"content": {"parts": [{"text": "[{"}, {"text": "}]"}]}}]}

        assert _extract_text(data) == "[{}]"

    @pytest.mark.parametrize(
        "data",
        [
            {},
            {"candidates": []},
            {"candidates": [{}]},
            {"candidates": [{"content": {"parts": None}}]},
            {"candidates": [{"content": {"parts": [{"text": None}]}}]},
            {"candidates": [{"content": {"parts": [{"text": 42}, "stray"]}}]},
        ],
    )
    def test_extract_text_missing(self, data):
        assert _extract_text(data) == ""


# =============================================================================
# Endpoint
# =============================================================================


@pytest.fixture
def ranking_client(client: TestClient) -> FakeRankingClient:
    """Route the search endpoint to a fake ranking model."""
    fake = FakeRankingClient()
    app.dependency_overrides[get_search_proxy] = lambda: SearchProxy(fake)
    return fake


class TestSearchEndpoint:
    def test_requires_token(self, client: TestClient, ranking_client):
        response = client.get("/api/v1/search", params={"q": "dune"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == {"detail": "Could not validate credentials"}

    @pytest.mark.parametrize("params", [{}, {"q": ""}, {"q": "   "}])
    def test_blank_query(self, client, auth_headers, ranking_client, params):
        response = client.get("/api/v1/search", params=params, headers=auth_headers)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Search query is required"

    def test_query_too_long(self, client, auth_headers, ranking_client):
        response = client.get("/api/v1/search", params={"q": "x" * 501}, headers=auth_headers)

        assert response.status_code == 422

    def test_not_configured(self, client, auth_headers, ranking_client, sample_posts):
        unconfigured = get_settings().model_copy(update={"gemini_api_key": None})

        with patch("bookshare.routers.search.get_settings", return_value=unconfigured):
            response = client.get("/api/v1/search", params={"q": "dune"}, headers=auth_headers)

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert ranking_client.calls == []

    def test_ranked_results(
        self,
        client,
        auth_headers,
        ranking_client,
        sample_posts: list[Post],
    ):
        first, _, third = sample_posts
        ranking_client.response = json.dumps(
            [
                {"id": str(third.id), "reason": "Mentions Arrakis"},
                {"id": str(first.id)},
            ]
        )

        response = client.get("/api/v1/search", params={"q": "dune"}, headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["query"] == "dune"
        assert [p["id"] for p in data["posts"]] == [third.id, first.id]
        assert [p["rank"] for p in data["posts"]] == [1, 2]
        assert data["posts"][0]["search_reason"] == "Mentions Arrakis"
        assert data["posts"][1]["search_reason"] == DEFAULT_REASON
        assert data["posts"][0]["username"] == "testuser"

    def test_candidates_sent_newest_first(self, client, auth_headers, ranking_client, sample_posts):
        client.get("/api/v1/search", params={"q": "dune"}, headers=auth_headers)

        prompt = ranking_client.calls[0]["prompt"]
        positions = [prompt.index(f"ID: {post.id}\n") for post in sample_posts]
        assert positions == sorted(positions, reverse=True)

    def test_no_posts_no_upstream_call(self, client, auth_headers, ranking_client):
        response = client.get("/api/v1/search", params={"q": "dune"}, headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["posts"] == []
        assert ranking_client.calls == []

    def test_garbage_model_output(self, client, auth_headers, ranking_client, sample_posts):
        ranking_client.response = "Here are some posts you might like!"

        response = client.get("/api/v1/search", params={"q": "dune"}, headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["posts"] == []

    def test_rate_limit(self, client, auth_headers, ranking_client):
        for _ in range(10):
            response = client.get("/api/v1/search", params={"q": "dune"}, headers=auth_headers)
            assert response.status_code == status.HTTP_200_OK

        response = client.get("/api/v1/search", params={"q": "dune"}, headers=auth_headers)

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        data = response.json()
        assert data["error"] == "rate_limit_exceeded"
        assert 0 < data["retry_after"] <= 60
        assert response.headers["Retry-After"] == str(data["retry_after"])

    def test_rate_limit_is_per_user(
        self,
        client,
        auth_headers,
        ranking_client,
        second_user: User,
    ):
        for _ in range(11):
            client.get("/api/v1/search", params={"q": "dune"}, headers=auth_headers)

        other = login(client, second_user.email, "SecurePass456")
        response = client.get(
            "/api/v1/search",
            params={"q": "dune"},
            headers=bearer(other["access_token"]),
        )

        assert response.status_code == status.HTTP_200_OK

    def test_blank_query_not_counted(self, client, auth_headers, ranking_client):
        for _ in range(15):
            client.get("/api/v1/search", params={"q": " "}, headers=auth_headers)

        response = client.get("/api/v1/search", params={"q": "dune"}, headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK

    @pytest.mark.parametrize(
        "error, expected_status, expected_code",
        [
            (UpstreamAuthError("bad key"), 502, "upstream_auth"),
            (UpstreamThrottledError("slow down"), 503, "upstream_throttled"),
            (UpstreamUnavailableError("timed out"), 502, "upstream_unavailable"),
        ],
    )
    def test_upstream_failures(
        self,
        client,
        auth_headers,
        ranking_client,
        sample_posts,
        error,
        expected_status,
        expected_code,
    ):
        ranking_client.error = error

        response = client.get("/api/v1/search", params={"q": "dune"}, headers=auth_headers)

        assert response.status_code == expected_status
        assert response.json()["error"] == expected_code


class TestHealth:
    def test_health(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "healthy"
        assert data["ai_search"]["enabled"] is True
        assert data["rate_limiting"]["search_limit"] == "10/60s"

    def test_root(self, client: TestClient):
        response = client.get("/")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["docs"] == "/docs"
