"""
Ranking Service Client

Thin client for the external LLM that ranks search candidates. It takes
a prompt and returns whatever text the model produced; interpreting that
text is the search proxy's job.

Upstream failures are classified so operators can tell a bad API key
from load shedding:

- 401/403, or a 400 complaining about the API key → UpstreamAuthError
- 429                                             → UpstreamThrottledError
- anything else, timeouts and transport errors    → UpstreamUnavailableError

Nothing here retries.
"""

import logging
from abc import ABC, abstractmethod

import httpx

from bookshare.config import Settings, get_settings
from bookshare.exceptions import (
    UpstreamAuthError,
    UpstreamThrottledError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)


class RankingClient(ABC):
    """Anything that turns a prompt into model text."""

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        temperature: float = 0.0,
        max_output_tokens: int = 1024,
    ) -> str:
        """
        Run the prompt and return the raw text output.

        Raises:
            UpstreamError subclasses on failure
        """


class GeminiRankingClient(RankingClient):
    """
    Google Gemini over its REST generateContent endpoint.

    Args:
        api_key: Gemini API key
        model: Model name (e.g. gemini-2.5-flash)
        base_url: API base URL
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests use MockTransport)
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "GeminiRankingClient":
        settings = settings or get_settings()
        return cls(
            api_key=settings.gemini_api_key or "",
            model=settings.gemini_model,
            base_url=settings.gemini_api_url,
            timeout=settings.search_timeout_seconds,
        )

    async def complete(
        self,
        prompt: str,
        temperature: float = 0.0,
        max_output_tokens: int = 1024,
    ) -> str:
        url = f"{self._base_url}/models/{self.model}:generateContent"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_output_tokens,
                # Spend the whole output budget on the answer
                "thinkingConfig": {"thinkingBudget": 0},
            },
        }

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={"x-goog-api-key": self._api_key},
                )
        except httpx.TimeoutException as e:
            logger.error(f"Ranking call timed out after {self._timeout}s")
            raise UpstreamUnavailableError("Ranking service timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Ranking call failed: {e}")
            raise UpstreamUnavailableError("Ranking service unreachable") from e

        if response.status_code != 200:
            self._raise_for_status(response)

        try:
            data = response.json()
        except ValueError:
            logger.warning("Ranking service returned a non-JSON envelope")
            return ""

        return _extract_text(data)

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        status = response.status_code
        body = response.text

        if status in (401, 403) or (status == 400 and "API key" in body):
            logger.error(f"Ranking service rejected credentials ({status})")
            raise UpstreamAuthError("Ranking service authentication failed")

        if status == 429:
            logger.warning("Ranking service is throttling requests")
            raise UpstreamThrottledError("Ranking service rate limit exceeded")

        logger.error(f"Ranking service error {status}: {body[:200]}")
        raise UpstreamUnavailableError(f"Ranking service returned {status}")


def _extract_text(data: dict) -> str:
    """Concatenate the text parts of the first candidate, if any."""
    try:
        parts = data["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return ""
    if not isinstance(parts, list):
        return ""
    return "".join(
        part["text"]
        for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str)
    )
