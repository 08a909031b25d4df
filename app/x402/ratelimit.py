# app/x402/ratelimit.py
"""
Rate limiting for the x402 payment gateway.

Per-client fixed-window counters held in memory. Each client gets a window
of X402_RATE_LIMIT_WINDOW_SECONDS; the first request opens it, every request
inside it increments the count, and requests beyond X402_RATE_LIMIT_MAX are
rejected until the window resets. A fixed window lets a client burst up to
twice the limit across a window boundary; this is accepted.

Configuration:
- X402_RATE_LIMIT_MAX: Maximum requests per window per client (default: 100)
- X402_RATE_LIMIT_WINDOW_SECONDS: Window size (default: 60)
- X402_RATE_LIMIT_SWEEP_SECONDS: Expired window sweep interval (default: 300)

Rate limiting is applied BEFORE route matching and payment validation, so
free routes are limited too.
"""
import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class RateWindow:
    """Request count for one client within the current fixed window."""
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a single admission check."""
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after_ms: int = 0


class RateLimiter:
    """
    In-memory fixed window rate limiter.

    Windows are created lazily on a client's first request and replaced
    (not incremented) once expired. A lock guards the window map so the
    limiter is safe under threaded servers as well as a single event loop.
    """

    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the rate limiter.

        Args:
            max_requests: Max requests allowed per window. If None, uses config.
            window_seconds: Size of the fixed window in seconds. If None, uses config.
            clock: Time source returning epoch seconds.
        """
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, RateWindow] = {}
        self._lock = threading.Lock()

    @property
    def max_requests(self) -> int:
        """Get the rate limit (lazy load from settings if not set)."""
        if self._max_requests is not None:
            return self._max_requests
        return settings.X402_RATE_LIMIT_MAX

    @property
    def window_seconds(self) -> float:
        """Get the window size in seconds (lazy load from settings if not set)."""
        if self._window_seconds is not None:
            return self._window_seconds
        return settings.X402_RATE_LIMIT_WINDOW_SECONDS

    def admit(self, client_id: str) -> RateLimitResult:
        """
        Count a request for a client and decide whether to admit it.

        Args:
            client_id: Client identity (IP address or payer address)

        Returns:
            RateLimitResult; when rejected, retry_after_ms is the time left
            until the client's window resets
        """
        now = self._clock()
        limit = self.max_requests

        with self._lock:
            window = self._windows.get(client_id)
            if window is None or now > window.reset_at:
                window = RateWindow(count=1, reset_at=now + self.window_seconds)
                self._windows[client_id] = window
            else:
                window.count += 1

            count = window.count
            reset_at = window.reset_at

        remaining = max(0, limit - count)

        if count > limit:
            retry_after_ms = max(0, int(math.ceil((reset_at - now) * 1000)))
            logger.warning(
                f"Rate limit exceeded for {client_id}: "
                f"{count}/{limit} requests, retry in {retry_after_ms}ms"
            )
            return RateLimitResult(
                allowed=False,
                limit=limit,
                remaining=0,
                reset_at=reset_at,
                retry_after_ms=retry_after_ms,
            )

        return RateLimitResult(allowed=True, limit=limit, remaining=remaining, reset_at=reset_at)

    def get_client_stats(self, client_id: str) -> Dict[str, object]:
        """
        Get rate limit statistics for a client without counting a request.

        Args:
            client_id: Client identity

        Returns:
            Dict with current request count, limit, remaining and reset time
        """
        now = self._clock()
        limit = self.max_requests

        with self._lock:
            window = self._windows.get(client_id)
            if window is None or now > window.reset_at:
                count, reset_at = 0, None
            else:
                count, reset_at = window.count, window.reset_at

        return {
            "client_id": client_id,
            "requests_in_window": count,
            "limit": limit,
            "window_seconds": self.window_seconds,
            "remaining": max(0, limit - count),
            "reset_at": reset_at,
        }

    def sweep(self, now: Optional[float] = None) -> int:
        """
        Remove expired windows to bound memory use.

        Args:
            now: Current time; uses the limiter's clock if not provided.

        Returns:
            Number of windows removed
        """
        current = now if now is not None else self._clock()

        with self._lock:
            expired = [
                client_id for client_id, window in self._windows.items()
                if current > window.reset_at
            ]
            for client_id in expired:
                del self._windows[client_id]

        if expired:
            logger.debug(f"Cleaned up {len(expired)} expired rate limit windows")

        return len(expired)

    async def run_periodic_sweep(self, interval_seconds: Optional[float] = None) -> None:
        """
        Sweep expired windows forever on a fixed interval.

        Meant to run as a background task; stops when cancelled.
        """
        interval = (
            interval_seconds if interval_seconds is not None
            else settings.X402_RATE_LIMIT_SWEEP_SECONDS
        )
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    def reset_client(self, client_id: str) -> None:
        """
        Reset rate limit tracking for a client.

        Args:
            client_id: The client identity to reset
        """
        with self._lock:
            removed = self._windows.pop(client_id, None)
        if removed is not None:
            logger.debug(f"Reset rate limit for {client_id}")

    def reset_all(self) -> None:
        """Reset all rate limit tracking."""
        with self._lock:
            self._windows.clear()
        logger.info("Reset all rate limits")

    def __len__(self) -> int:
        return len(self._windows)


def get_rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    """
    Generate rate limit headers for HTTP responses.

    Args:
        result: Outcome of RateLimiter.admit

    Returns:
        Dict of HTTP headers to add to the response
    """
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(int(math.ceil(result.reset_at))),
    }
    if not result.allowed:
        headers["Retry-After"] = str(max(1, int(math.ceil(result.retry_after_ms / 1000))))
    return headers
