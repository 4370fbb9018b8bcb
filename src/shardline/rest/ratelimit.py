"""Rate-limit header parsing and proactive request pacing.

Buckets react to what the server reports; GlobalRateLimiter keeps
authenticated traffic under the documented per-second global cap so that
reactive global blocks stay rare. Uses aiolimiter for async-safe pacing.
"""

import logging
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import Mapping, Optional

from aiolimiter import AsyncLimiter

from ..utils.timing import now

logger = logging.getLogger("shardline.rest.ratelimit")


def _to_float(value: Optional[str]) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring unparsable rate limit header value: {value!r}")
        return None


def server_offset(server_date: Optional[str], local_now: Optional[float] = None) -> float:
    """Seconds the server clock is ahead of the local clock (0 when unknown)."""
    if not server_date:
        return 0.0
    try:
        server_ts = parsedate_to_datetime(server_date).timestamp()
    except (TypeError, ValueError):
        return 0.0
    return server_ts - (now() if local_now is None else local_now)


@dataclass
class RateLimitHeaders:
    """Quota headers from one response. Absent headers stay None."""

    remaining: Optional[int] = None
    limit: Optional[int] = None
    reset: Optional[float] = None  # epoch seconds, server clock
    reset_after: Optional[float] = None  # seconds
    retry_after: Optional[float] = None  # seconds
    is_global: bool = False
    bucket: Optional[str] = None
    server_date: Optional[str] = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "RateLimitHeaders":
        remaining = _to_float(headers.get("x-ratelimit-remaining"))
        limit = _to_float(headers.get("x-ratelimit-limit"))
        return cls(
            remaining=int(remaining) if remaining is not None else None,
            limit=int(limit) if limit is not None else None,
            reset=_to_float(headers.get("x-ratelimit-reset")),
            reset_after=_to_float(headers.get("x-ratelimit-reset-after")),
            retry_after=_to_float(headers.get("retry-after")),
            is_global=str(headers.get("x-ratelimit-global", "")).lower() == "true",
            bucket=headers.get("x-ratelimit-bucket"),
            server_date=headers.get("date"),
        )

    def reset_at(self, local_now: Optional[float] = None) -> float:
        """Local epoch time at which the quota resets.

        Prefers the relative Reset-After; otherwise shifts the absolute
        Reset by the server clock offset. Falls back to now (fail open).
        """
        current = now() if local_now is None else local_now
        if self.reset_after is not None:
            return current + self.reset_after
        if self.reset is not None:
            return self.reset - server_offset(self.server_date, current)
        return current


class GlobalRateLimiter:
    """Async token-bucket pacing for authenticated requests.

    Wraps aiolimiter.AsyncLimiter to provide a simple acquire() interface.
    """

    def __init__(self, rate: float = 50.0, period: float = 1.0):
        """
        Args:
            rate: Requests allowed per period.
            period: Window length in seconds.
        """
        self._limiter = AsyncLimiter(max_rate=rate, time_period=period)
        self._rate = rate
        self._period = period
        logger.info(f"Global rate limiter: {rate} req per {period}s")

    async def acquire(self) -> None:
        """Wait until a token is available. Non-blocking when under limit."""
        await self._limiter.acquire()
