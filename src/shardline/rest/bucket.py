"""Per-route rate-limit bucket.

A Bucket serializes every request for one route key and suspends them
collectively while the route's local quota, the reaction cool-down, or
(for authenticated requests) the dispatcher's global block is in effect.
Deadlines are re-checked in a loop because a response handled by another
caller may move them while we sleep.
"""

import logging
from typing import TYPE_CHECKING, Optional

import httpx

from ..errors import QuotaExceeded
from ..utils.async_queue import AsyncQueue
from ..utils.timing import delay, now
from .ratelimit import RateLimitHeaders
from .routes import is_reaction_route

if TYPE_CHECKING:
    from .dispatcher import PendingRequest, RestDispatcher

logger = logging.getLogger("shardline.rest.bucket")

# Reaction endpoints are limited more strictly than their headers admit
REACTION_COOLDOWN = 0.25


class Bucket:
    """Rate-limit state and FIFO gate for a single route key."""

    def __init__(self, dispatcher: "RestDispatcher", route_key: str, max_retries: int = 3):
        self._dispatcher = dispatcher
        self._queue = AsyncQueue()
        self.route_key = route_key
        self.max_retries = max_retries

        self.remaining = 1
        self.limit: Optional[int] = None
        self.reset_at = 0.0
        self.cooldown_until = 0.0

        self._reaction_route = is_reaction_route(route_key)

    def __repr__(self) -> str:
        return (
            f"<Bucket {self.route_key} remaining={self.remaining} "
            f"reset_at={self.reset_at:.3f} queued={self._queue.remaining}>"
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def global_limited(self) -> bool:
        return self._dispatcher.global_limited

    @property
    def local_limited(self) -> bool:
        return self.remaining <= 0 and now() < self.reset_at

    @property
    def inactive(self) -> bool:
        """No queued requests and no pending deadline."""
        return (
            self._queue.remaining == 0
            and not self.local_limited
            and now() >= self.cooldown_until
        )

    def _wait_time(self, requires_auth: bool) -> float:
        current = now()
        deadline = 0.0
        if requires_auth and self._dispatcher.global_limited:
            deadline = max(deadline, self._dispatcher.global_reset_at)
        if self.remaining <= 0:
            deadline = max(deadline, self.reset_at)
        deadline = max(deadline, self.cooldown_until)
        return deadline - current

    # ------------------------------------------------------------------
    # Queueing
    # ------------------------------------------------------------------

    async def enqueue(self, request: "PendingRequest") -> httpx.Response:
        """Run ``request`` once every earlier request on this route has finished."""
        # Wait for any previous requests to be completed before this one is run
        await self._queue.wait()
        try:
            return await self._execute(request)
        finally:
            # Allow the next request to fire
            self._queue.shift()

    async def _wait_for_quota(self, request: "PendingRequest") -> None:
        while True:
            timeout = self._wait_time(request.requires_auth)
            if timeout <= 0:
                return

            if request.requires_auth and self.global_limited:
                logger.debug(f"Globally rate limited, holding {self.route_key} for {timeout:.3f}s")
            else:
                logger.debug(f"Waiting {timeout:.3f}s for rate limit on {self.route_key}")

            await delay(timeout)

    async def _execute(self, request: "PendingRequest") -> httpx.Response:
        attempt = 0
        while True:
            await self._wait_for_quota(request)

            response = await self._dispatcher.send(request)
            headers = self.update(response.headers, requires_auth=request.requires_auth)

            if response.status_code != 429:
                if self.remaining <= 0:
                    logger.debug(
                        f"Bucket {self.route_key} exhausted, resets in "
                        f"{max(0.0, self.reset_at - now()):.3f}s"
                    )
                return response

            attempt += 1
            if attempt > self.max_retries:
                raise QuotaExceeded(
                    f"{request.method} {request.path} still rate limited after "
                    f"{self.max_retries} retries",
                    retry_after=headers.retry_after or 0.0,
                    status_code=429,
                    response_body=response.text[:500],
                )

            logger.warning(
                f"429 on {request.method} {self.route_key} "
                f"(global={headers.is_global}, retry_after={headers.retry_after}), "
                f"retry {attempt}/{self.max_retries}"
            )

    # ------------------------------------------------------------------
    # Response bookkeeping
    # ------------------------------------------------------------------

    def update(self, raw_headers, requires_auth: bool = True) -> RateLimitHeaders:
        """Apply quota headers from a response to this bucket."""
        headers = RateLimitHeaders.from_headers(raw_headers)
        current = now()

        self.remaining = headers.remaining if headers.remaining is not None else 1
        if headers.limit is not None:
            self.limit = headers.limit
        self.reset_at = headers.reset_at(current)

        if self._reaction_route:
            self.cooldown_until = current + REACTION_COOLDOWN

        retry_after = headers.retry_after
        if retry_after is not None and retry_after > 0:
            if headers.is_global:
                self._dispatcher.set_global_block(retry_after)
                if not requires_auth:
                    # Unauthenticated callers ignore the global block; still back off
                    self.remaining = 0
                    self.reset_at = max(self.reset_at, current + retry_after)
            else:
                self.remaining = 0
                self.reset_at = current + retry_after

        return headers
