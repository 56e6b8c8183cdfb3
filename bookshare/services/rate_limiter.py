"""
Rate Limiting Service

Two layers of rate limiting:

1. IP-based limits (slowapi) on unauthenticated endpoints such as
   /auth/login and /auth/register, to slow down credential stuffing.

2. Per-user admission control (RateLimiter) for operations that cost us
   money upstream, such as AI search. Fixed-window counter:

   - First call, or a call at/after the window's reset time: start a
     fresh window with count=1 and admit.
   - count already at the ceiling: deny, state untouched.
   - Otherwise: count += 1 and admit.

   Fixed windows allow a burst of up to 2x the ceiling across a window
   boundary; that is acceptable for protecting a metered third-party
   call.

The window map is shared by every request thread, so each
read-then-write runs under one lock.
"""

import logging
import math
import threading
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from functools import lru_cache

from fastapi import Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from bookshare.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


# =============================================================================
# IP-based Limits (slowapi)
# =============================================================================


def get_client_ip(request: Request) -> str:
    """
    Get client IP address for rate limiting.

    Honors X-Forwarded-For / X-Real-IP from a fronting proxy, falling
    back to the direct connection address.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


def create_limiter() -> Limiter:
    """
    Create and configure the IP rate limiter.

    Uses Redis as storage backend when enabled so limits hold across
    multiple API instances.
    """
    storage_uri = settings.redis_url if settings.rate_limit_enabled else None

    limiter = Limiter(
        key_func=get_client_ip,
        default_limits=[settings.rate_limit_default],
        storage_uri=storage_uri,
        strategy="fixed-window",
        enabled=settings.rate_limit_enabled,
    )

    logger.info(
        f"IP rate limiter initialized - enabled: {settings.rate_limit_enabled}, "
        f"default: {settings.rate_limit_default}"
    )

    return limiter


limiter = create_limiter()


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """
    Render a slowapi rejection as 429 with a Retry-After header.
    """
    limit_detail = str(exc.detail)

    response = JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": "Too many requests. Please slow down.",
            "detail": limit_detail,
        },
    )
    response.headers["Retry-After"] = str(60)
    response.headers["X-RateLimit-Limit"] = limit_detail

    logger.warning(f"Rate limit exceeded for {get_client_ip(request)}: {limit_detail}")

    return response


# =============================================================================
# Per-user Admission Control
# =============================================================================


@dataclass
class RateWindow:
    """Counter for one key within one fixed window."""

    count: int
    reset_at: float


class RateLimiter:
    """
    In-process fixed-window limiter keyed by user id.

    Windows are created lazily and dropped by sweep(), which also runs
    every sweep_interval admissions so the map does not grow without
    bound.

    Args:
        limit: Calls admitted per window
        window_seconds: Window length
        clock: Monotonic time source in seconds
        sweep_interval: Admissions between automatic sweeps (0 disables)
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: int = 1000,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._windows: dict[Hashable, RateWindow] = {}
        self._lock = threading.Lock()
        self._calls_since_sweep = 0

    def admit(self, key: Hashable) -> bool:
        """
        Count a call for key.

        Returns:
            True if the call is admitted, False if the ceiling is reached
        """
        with self._lock:
            now = self._clock()
            self._maybe_sweep(now)

            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                self._windows[key] = RateWindow(count=1, reset_at=now + self.window_seconds)
                return True

            if window.count >= self.limit:
                return False

            window.count += 1
            return True

    def retry_after(self, key: Hashable) -> int:
        """Whole seconds until key's window resets (0 if no live window)."""
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                return 0
            return max(0, math.ceil(window.reset_at - self._clock()))

    def sweep(self) -> int:
        """
        Drop expired windows.

        Returns:
            Number of windows removed
        """
        with self._lock:
            return self._sweep(self._clock())

    def reset(self) -> None:
        """Forget every window."""
        with self._lock:
            self._windows.clear()
            self._calls_since_sweep = 0

    def __len__(self) -> int:
        return len(self._windows)

    def _maybe_sweep(self, now: float) -> None:
        if not self._sweep_interval:
            return
        self._calls_since_sweep += 1
        if self._calls_since_sweep >= self._sweep_interval:
            self._sweep(now)

    def _sweep(self, now: float) -> int:
        expired = [key for key, window in self._windows.items() if now >= window.reset_at]
        for key in expired:
            del self._windows[key]
        self._calls_since_sweep = 0
        if expired:
            logger.debug(f"Swept {len(expired)} expired rate windows")
        return len(expired)


@lru_cache
def get_search_rate_limiter() -> RateLimiter:
    """Process-wide limiter for AI search admissions."""
    return RateLimiter(
        limit=settings.search_rate_limit,
        window_seconds=settings.search_rate_window_seconds,
    )
