"""Client - REST dispatcher plus one gateway connection.

Usage:
    client = Client.from_config(ShardlineConfig.from_env())
    client.register_callback(GatewayCallback.EVENT, on_event)
    await client.start()
    await client.wait_until_ready()
    await client.send_message(channel_id, "hello")
    await client.close()
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from .config import ShardlineConfig
from .errors import SessionInvalidated, TransportError
from .gateway.connection import GatewayCallback, GatewayConnection
from .gateway.models import CloseEvent
from .gateway.opcodes import NON_RESUMABLE_CLOSE_CODES
from .rest import routes
from .rest.dispatcher import RestDispatcher

logger = logging.getLogger("shardline.client")


class Client:
    """Owns a RestDispatcher and a GatewayConnection.

    Resumable closes (including zombie detection) and invalidated sessions
    trigger a reconnect with exponential backoff (1s base, capped by
    config.max_reconnect_delay). Close codes that a new IDENTIFY cannot fix
    (bad token, bad intents, ...) stop the client and fail wait_until_ready().
    """

    RECONNECT_BASE_DELAY = 1.0

    def __init__(self, config: ShardlineConfig, rest: Optional[RestDispatcher] = None):
        self.config = config
        self.rest = rest or RestDispatcher(
            token=config.token,
            base_url=config.api_url,
            api_version=config.api_version,
            max_retries=config.rest_max_retries,
            timeout=config.rest_timeout,
            global_rate=config.global_rate,
        )
        self.gateway: Optional[GatewayConnection] = None

        self._callbacks: List[Tuple[GatewayCallback, Callable[..., Awaitable[None]]]] = []
        self._state_changed = asyncio.Event()
        self._fatal_close: Optional[CloseEvent] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._closing = False
        self.reconnect_count = 0

    @classmethod
    def from_config(cls, config: ShardlineConfig) -> "Client":
        return cls(config)

    def register_callback(
        self,
        kind: Union[GatewayCallback, str],
        callback: Callable[..., Awaitable[None]],
    ) -> None:
        """Register a gateway callback. Works before or after start()."""
        kind = GatewayCallback(kind)
        self._callbacks.append((kind, callback))
        if self.gateway:
            self.gateway.register_callback(kind, callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start REST, resolve the gateway URL and open the gateway."""
        self._closing = False
        await self.rest.start()

        url = self.config.gateway_url
        if not url:
            info = await self.fetch_gateway()
            url = info["url"]
            limits = info.get("session_start_limit", {})
            if limits:
                logger.info(
                    f"Session starts remaining: {limits.get('remaining')}/{limits.get('total')}"
                )

        self.gateway = GatewayConnection(
            url=url,
            token=self.config.token,
            intents=self.config.intents,
            shard_id=self.config.shard_id,
            shard_count=self.config.shard_count,
            version=self.config.api_version,
            compress=self.config.compress,
            large_threshold=self.config.large_threshold,
        )
        self.gateway.register_callback(GatewayCallback.READY, self._on_ready)
        self.gateway.register_callback(GatewayCallback.CLOSE, self._on_close)
        for kind, callback in self._callbacks:
            self.gateway.register_callback(kind, callback)

        await self.gateway.connect()

    async def close(self) -> None:
        """Close the gateway and the HTTP client."""
        self._closing = True
        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            await asyncio.gather(self._reconnect_task, return_exceptions=True)
        self._reconnect_task = None

        if self.gateway:
            await self.gateway.close()
        await self.rest.close()
        logger.info("Client closed")

    async def wait_until_ready(self) -> None:
        """Wait for READY (or RESUMED).

        Raises:
            SessionInvalidated: the gateway closed with a non-recoverable code.
        """
        while True:
            if self._fatal_close is not None:
                raise SessionInvalidated(
                    f"Gateway closed: {self._fatal_close.reason or 'unrecoverable'}",
                    status_code=self._fatal_close.code or 0,
                )
            if self.gateway and self.gateway.is_ready:
                return
            self._state_changed.clear()
            await self._state_changed.wait()

    # ------------------------------------------------------------------
    # Gateway callbacks
    # ------------------------------------------------------------------

    async def _on_ready(self, payload: Dict[str, Any]) -> None:
        self._state_changed.set()

    async def _on_close(self, event: CloseEvent) -> None:
        self._state_changed.set()
        if self._closing:
            return

        if event.code in NON_RESUMABLE_CLOSE_CODES or not self.config.reconnect:
            logger.error(f"Gateway closed permanently (code={event.code}): {event.reason}")
            self._fatal_close = event
            return

        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        """Reconnect with exponential backoff. Resumes when the session survived."""
        backoff = self.RECONNECT_BASE_DELAY
        while not self._closing:
            await asyncio.sleep(backoff)
            self.reconnect_count += 1
            try:
                await self.gateway.connect()
                return
            except TransportError as e:
                logger.warning(
                    f"Reconnect #{self.reconnect_count} failed: {e}. Retrying in {backoff:.0f}s"
                )
                backoff = min(backoff * 2, self.config.max_reconnect_delay)

    # ------------------------------------------------------------------
    # REST helpers
    # ------------------------------------------------------------------

    async def fetch_gateway(self) -> Dict[str, Any]:
        """GET /gateway/bot."""
        return await self.rest.request("GET", routes.gateway_bot())

    async def fetch_user(self, user_id: Union[str, int]) -> Dict[str, Any]:
        """GET /users/{user_id}."""
        return await self.rest.request("GET", routes.user(user_id))

    async def send_message(
        self,
        channel_id: Union[str, int],
        content: str,
        **fields: Any,
    ) -> Dict[str, Any]:
        """POST /channels/{channel_id}/messages."""
        body = {"content": content, **fields}
        return await self.rest.request("POST", routes.channel_messages(channel_id), json=body)

    async def delete_message(
        self,
        channel_id: Union[str, int],
        message_id: Union[str, int],
        reason: Optional[str] = None,
    ) -> None:
        """DELETE /channels/{channel_id}/messages/{message_id}."""
        await self.rest.request(
            "DELETE", routes.channel_message(channel_id, message_id), reason=reason
        )

    async def add_reaction(
        self,
        channel_id: Union[str, int],
        message_id: Union[str, int],
        emoji: str,
    ) -> None:
        """PUT /channels/{channel_id}/messages/{message_id}/reactions/{emoji}/@me."""
        await self.rest.request("PUT", routes.message_reaction(channel_id, message_id, emoji))

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def get_health(self) -> Dict[str, Any]:
        """Consolidated health check."""
        health: Dict[str, Any] = {
            "reconnect_count": self.reconnect_count,
            "global_blocked": self.rest.global_limited,
            "deferred_requests": self.rest.deferred_count,
            "buckets": len(self.rest.buckets),
        }
        if self.gateway:
            health["gateway"] = {
                "status": self.gateway.status.value,
                "session_id": self.gateway.session.session_id,
                "sequence": self.gateway.session.sequence,
                "latency": self.gateway.latency,
            }
        return health
