"""RestDispatcher - rate-limit aware HTTP client for the platform API.

Resolves each request to a route key, hands it to that route's Bucket and
coordinates the process-wide global block. Uses httpx for transport and
aiolimiter (via GlobalRateLimiter) for proactive pacing.

Usage:
    rest = RestDispatcher(token="...")
    await rest.start()
    message = await rest.request("POST", routes.channel_messages(cid), json={"content": "hi"})
    await rest.close()
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional, Union
from urllib.parse import quote

import httpx

from .. import __version__
from ..errors import NotFoundError, TransportError, UnauthorizedError, UpstreamError
from ..utils.timing import now
from .bucket import Bucket
from .ratelimit import GlobalRateLimiter
from .routes import Route, canonicalize

logger = logging.getLogger("shardline.rest.dispatcher")

DEFAULT_BASE_URL = "https://discord.com/api"
USER_AGENT = f"DiscordBot (https://github.com/shardline/shardline, {__version__})"


@dataclass
class PendingRequest:
    """A request waiting in, or running through, a bucket."""

    method: str
    path: str
    route_key: str
    body: Optional[Any] = None
    params: Optional[Dict[str, Any]] = None
    requires_auth: bool = True
    reason: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)


class RestDispatcher:
    """Routes requests through per-route buckets under a shared global block.

    Invariants:
    - One Bucket per route key, created only in _get_bucket().
    - While globally blocked, new authenticated requests are parked in a
      FIFO replay queue and re-dispatched in order on unblock.
    - Unauthenticated requests never wait on the global block.
    """

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_BASE_URL,
        api_version: int = 10,
        max_retries: int = 3,
        timeout: float = 15.0,
        global_rate: float = 50.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            token: Bot token sent as ``Authorization: Bot <token>``.
            base_url: API root without version (e.g. "https://discord.com/api").
            api_version: API version appended as ``/v<N>``.
            max_retries: 429 re-issues allowed per request before QuotaExceeded.
            timeout: HTTP timeout in seconds.
            global_rate: Authenticated requests per second before pacing kicks in.
            client: Pre-built httpx.AsyncClient (tests pass one with a MockTransport).
        """
        self._token = token
        self.api_url = f"{base_url.rstrip('/')}/v{api_version}"
        self.max_retries = max_retries
        self._timeout = timeout

        self._client = client
        self._owns_client = client is None
        self._limiter = GlobalRateLimiter(rate=global_rate)

        self._buckets: Dict[str, Bucket] = {}
        self._deferred: Deque[asyncio.Future] = deque()

        self.global_blocked = False
        self.global_reset_at = 0.0
        self._unblock_handle: Optional[asyncio.TimerHandle] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Create the HTTP client if one was not supplied."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
            self._owns_client = True
        logger.info(f"RestDispatcher ready for {self.api_url}")

    async def close(self) -> None:
        """Close the HTTP client and cancel a pending unblock."""
        if self._unblock_handle:
            self._unblock_handle.cancel()
            self._unblock_handle = None
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None
        logger.info("RestDispatcher closed")

    # ------------------------------------------------------------------
    # Buckets
    # ------------------------------------------------------------------

    @property
    def buckets(self) -> Dict[str, Bucket]:
        return dict(self._buckets)

    def _get_bucket(self, route_key: str) -> Bucket:
        """Get or create the bucket for a route key."""
        bucket = self._buckets.get(route_key)
        if bucket is None:
            bucket = Bucket(self, route_key, max_retries=self.max_retries)
            self._buckets[route_key] = bucket
            logger.debug(f"Created bucket for {route_key}")
        return bucket

    # ------------------------------------------------------------------
    # Global block
    # ------------------------------------------------------------------

    @property
    def global_limited(self) -> bool:
        return self.global_blocked and now() < self.global_reset_at

    @property
    def deferred_count(self) -> int:
        return len(self._deferred)

    def set_global_block(self, retry_after: float) -> None:
        """Block authenticated traffic for ``retry_after`` seconds."""
        reset_at = now() + retry_after
        if self.global_blocked and reset_at <= self.global_reset_at:
            return

        self.global_blocked = True
        self.global_reset_at = reset_at
        logger.warning(f"Globally rate limited, blocking authenticated requests for {retry_after:.3f}s")

        if self._unblock_handle:
            self._unblock_handle.cancel()
        self._unblock_handle = asyncio.get_running_loop().call_later(retry_after, self.global_unblock)

    def global_unblock(self) -> None:
        """Lift the global block and release deferred requests in order."""
        if self._unblock_handle:
            self._unblock_handle.cancel()
            self._unblock_handle = None
        self.global_blocked = False

        released = 0
        while self._deferred:
            waiter = self._deferred.popleft()
            if not waiter.done():
                waiter.set_result(None)
                released += 1

        logger.info(f"Global rate limit lifted, replaying {released} deferred requests")

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: Union[str, Route],
        *,
        json: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
        authenticate: bool = True,
    ) -> Any:
        """Make a rate-limited request.

        Args:
            method: HTTP method
            path: API path or Route (e.g. "/channels/123/messages")
            json: JSON body. A ``reason`` key is moved into the audit log header.
            params: Query parameters
            reason: Audit log reason
            authenticate: Send the bot token

        Returns:
            Decoded JSON body, raw text, or None for 204.

        Raises:
            UpstreamError subclass for non-success statuses, TransportError on
            network failure, QuotaExceeded if the retry cap is hit.
        """
        path = str(path)
        if not path.startswith("/"):
            path = "/" + path

        pending = PendingRequest(
            method=method.upper(),
            path=path,
            route_key=canonicalize(path),
            body=json,
            params=params,
            requires_auth=authenticate,
            reason=reason,
        )
        response = await self.dispatch(pending)
        return self._interpret(response, pending)

    async def dispatch(self, request: PendingRequest) -> httpx.Response:
        """Send a request through its bucket, deferring it while globally blocked."""
        while request.requires_auth and self.global_blocked:
            waiter = asyncio.get_running_loop().create_future()
            self._deferred.append(waiter)
            logger.debug(f"Deferring {request.method} {request.route_key} until global unblock")
            await waiter

        bucket = self._get_bucket(request.route_key)
        return await bucket.enqueue(request)

    async def send(self, request: PendingRequest) -> httpx.Response:
        """Perform the HTTP call. Called by buckets only; applies no quota logic."""
        if not self._client:
            raise TransportError("RestDispatcher not started")

        headers = {"User-Agent": USER_AGENT, **request.headers}
        body = request.body

        if request.requires_auth:
            await self._limiter.acquire()
            headers["Authorization"] = f"Bot {self._token}"

        reason = request.reason
        if isinstance(body, dict) and "reason" in body:
            body = dict(body)
            body_reason = body.pop("reason")
            if reason is None:
                reason = body_reason
        if reason is not None:
            headers["X-Audit-Log-Reason"] = quote(str(reason), safe=" ")

        url = f"{self.api_url}{request.path}"
        try:
            response = await self._client.request(
                request.method,
                url,
                headers=headers,
                json=body,
                params=request.params,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error on {request.method} {request.path}: {e}")

        logger.debug(f"{request.method} {request.path} -> {response.status_code}")
        return response

    def _interpret(self, response: httpx.Response, request: PendingRequest) -> Any:
        code = response.status_code
        if code == 204:
            return None
        if 200 <= code < 300:
            if not response.content:
                return None
            if response.headers.get("content-type", "").startswith("application/json"):
                return response.json()
            return response.text
        self._raise_for_status(response, request)

    def _raise_for_status(self, response: httpx.Response, request: PendingRequest) -> None:
        """Map HTTP status codes to UpstreamError subtypes."""
        code = response.status_code
        body = response.text[:500]
        msg = f"{request.method} {request.path} -> {code}: {body}"

        if code == 401 or code == 403:
            raise UnauthorizedError(msg, status_code=code, response_body=body)
        elif code == 404:
            raise NotFoundError(msg, status_code=code, response_body=body)
        else:
            raise UpstreamError(msg, status_code=code, response_body=body)
