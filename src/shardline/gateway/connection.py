"""GatewayConnection - one persistent gateway session over a websocket.

Runs the protocol state machine (IDLE -> CONNECTED -> READY -> CLOSED),
the heartbeat loop with zombie detection, and the RESUME-vs-IDENTIFY
decision. Decoded dispatches are handed to registered callbacks.

Gateway protocol:
- Server opens with HELLO {heartbeat_interval}; client answers with
  IDENTIFY (fresh session) or RESUME (known session_id) and heartbeats
  every interval.
- Frames: {"op": N, "d": ..., "s": seq, "t": "EVENT_NAME"}
- Two unacknowledged heartbeats in a row mean the socket is a zombie;
  the connection closes itself with a resumable code and reports it.

Reconnect and backoff policy belong to the owner (see Client); a closed
connection only reports why it closed.
"""

import asyncio
import logging
import platform
import random
from collections import defaultdict
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union
from urllib.parse import urlencode

import websockets
from aiolimiter import AsyncLimiter
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..errors import ProtocolError, TransportError
from ..utils.timing import now
from .codec import ZlibStreamInflator, decode_frame, encode_frame
from .models import (
    CloseEvent,
    GatewayFrame,
    HelloPayload,
    IdentifyPayload,
    IdentifyProperties,
    ReadyPayload,
    ResumePayload,
)
from .opcodes import (
    NON_RESUMABLE_CLOSE_CODES,
    RESUMABLE_CLOSE,
    SESSION_RESET_CLOSE_CODES,
    CloseCode,
    ConnectionStatus,
    OpCode,
)
from .session import Session

logger = logging.getLogger("shardline.gateway.connection")

# Unacknowledged heartbeats tolerated before the socket is declared a zombie
MAX_MISSED_ACKS = 2

# Gateway accepts 120 commands per 60 seconds per connection
SEND_RATE = 120
SEND_PERIOD = 60.0


class GatewayCallback(str, Enum):
    READY = "ready"  # callback(payload: dict)
    EVENT = "event"  # callback(name: str, data: Any)
    CLOSE = "close"  # callback(event: CloseEvent)


class GatewayConnection:
    """Single gateway session driven by inbound frames and a heartbeat task.

    Features:
    - IDENTIFY at most once per fresh session, RESUME when a session_id is known
    - Heartbeat task restarted on every HELLO, zombie detection after
      MAX_MISSED_ACKS consecutive misses
    - Optional zlib-stream transport compression
    - Outbound command pacing via aiolimiter
    - EVENT callbacks run as tasks; callback errors are logged and never
      break the read loop
    """

    def __init__(
        self,
        url: str,
        token: str,
        intents: int = 0,
        shard_id: int = 0,
        shard_count: int = 1,
        version: int = 10,
        compress: bool = False,
        large_threshold: int = 50,
        connect_timeout: float = 10.0,
        invalid_session_delay: Tuple[float, float] = (1.0, 5.0),
    ):
        """
        Args:
            url: Gateway URL as returned by GET /gateway/bot (no query string).
            token: Bot token for IDENTIFY / RESUME.
            intents: Gateway intents bitmask.
            shard_id: This connection's shard index.
            shard_count: Total shards.
            version: Gateway protocol version.
            compress: Request zlib-stream transport compression.
            large_threshold: Member count above which guilds arrive without offline members.
            connect_timeout: Seconds allowed for the websocket handshake.
            invalid_session_delay: Bounds of the random wait before re-identifying.
        """
        self._url = url.rstrip("/")
        self._token = token
        self.intents = intents
        self.shard_id = shard_id
        self.shard_count = shard_count
        self.version = version
        self.compress = compress
        self.large_threshold = large_threshold
        self._connect_timeout = connect_timeout
        self._invalid_session_delay = invalid_session_delay

        self.session = Session()

        self._ws = None
        self._reader_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._identify_task: Optional[asyncio.Task] = None
        self._callback_tasks: Set[asyncio.Task] = set()
        self._inflator: Optional[ZlibStreamInflator] = ZlibStreamInflator() if compress else None
        self._limiter = AsyncLimiter(max_rate=SEND_RATE, time_period=SEND_PERIOD)

        self._callbacks: Dict[GatewayCallback, List[Callable[..., Awaitable[None]]]] = defaultdict(list)
        self._identified = False
        self._missed_acks = 0
        self._closing: Optional[CloseEvent] = None
        self.last_close: Optional[CloseEvent] = None

    def __repr__(self) -> str:
        return (
            f"<GatewayConnection shard=[{self.shard_id}, {self.shard_count}] "
            f"status={self.status.value} seq={self.session.sequence}>"
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self.session.status

    @property
    def is_ready(self) -> bool:
        return self.session.status == ConnectionStatus.READY

    @property
    def latency(self) -> Optional[float]:
        return self.session.latency

    @property
    def gateway_url(self) -> str:
        """URL for the next connect, preferring the resume URL when resuming."""
        base = self._url
        if self.session.session_id and self.session.resume_gateway_url:
            base = self.session.resume_gateway_url.rstrip("/")

        query = {"v": self.version, "encoding": "json"}
        if self.compress:
            query["compress"] = "zlib-stream"
        return f"{base}/?{urlencode(query)}"

    def register_callback(
        self,
        kind: Union[GatewayCallback, str],
        callback: Callable[..., Awaitable[None]],
    ) -> None:
        """Register an async callback for ready, event or close notifications."""
        self._callbacks[GatewayCallback(kind)].append(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the websocket and start reading. The server speaks first (HELLO)."""
        if self.status in (ConnectionStatus.CONNECTED, ConnectionStatus.READY):
            logger.warning(f"connect() called while {self.status.value}, ignoring")
            return

        self._identified = False
        self._missed_acks = 0
        self._closing = None
        if self._inflator:
            self._inflator.reset()

        url = self.gateway_url
        logger.info(f"Connecting to gateway {url} (shard {self.shard_id}/{self.shard_count})")

        try:
            ws = await asyncio.wait_for(
                websockets.connect(
                    url,
                    max_size=None,
                    compression=None,
                    # Protocol heartbeats replace websocket keepalive pings
                    ping_interval=None,
                ),
                timeout=self._connect_timeout,
            )
        except asyncio.TimeoutError:
            raise TransportError("Gateway connection timeout")
        except (OSError, WebSocketException) as e:
            raise TransportError(f"Gateway connection failed: {e}")

        self.attach(ws)

    def attach(self, ws) -> None:
        """Adopt an already-open websocket and start the read loop."""
        self._ws = ws
        self.session.status = ConnectionStatus.CONNECTED
        # An ACK owed by the previous transport never arrives on this one
        self.session.last_heartbeat_acked = True
        self._reader_task = asyncio.create_task(self._read_loop(ws))
        logger.info("Gateway connected")

    async def close(self, code: int = CloseCode.NORMAL, reason: str = "") -> None:
        """Close the transport. Codes 1000/1001 end the session server-side."""
        resumable = code not in (CloseCode.NORMAL, CloseCode.GOING_AWAY) and self.session.resumable
        await self._close(CloseEvent(code=int(code), reason=reason, resumable=resumable))

    async def wait_closed(self) -> None:
        """Wait until the read loop has finished."""
        if self._reader_task:
            # A reader cancelled by close() counts as finished
            await asyncio.gather(self._reader_task, return_exceptions=True)

    async def _close(self, event: CloseEvent) -> None:
        ws = self._ws
        if ws is None or self.status == ConnectionStatus.CLOSED:
            return

        self._closing = event
        try:
            await ws.close(code=event.code or CloseCode.NORMAL, reason=event.reason)
        except WebSocketException as e:
            logger.debug(f"Error while closing gateway websocket: {e}")
        await self._handle_close(event.code, event.reason)

    async def _handle_close(self, code: Optional[int], reason: str) -> None:
        if self.status == ConnectionStatus.CLOSED:
            return

        self.session.status = ConnectionStatus.CLOSED
        self._stop_heartbeat()
        self._cancel_identify()

        current = asyncio.current_task()
        if self._reader_task and self._reader_task is not current and not self._reader_task.done():
            self._reader_task.cancel()

        if self._closing is not None:
            event = self._closing
        else:
            resumable = (
                code not in NON_RESUMABLE_CLOSE_CODES
                and code not in SESSION_RESET_CLOSE_CODES
                and self.session.resumable
            )
            event = CloseEvent(code=code, reason=reason or "", resumable=resumable)

        self._ws = None
        self.last_close = event

        if not event.resumable:
            self.session.reset()

        log = logger.warning if event.zombie or not event.resumable else logger.info
        log(
            f"Gateway closed (code={event.code}, reason={event.reason!r}, "
            f"resumable={event.resumable}, zombie={event.zombie})"
        )
        await self._emit(GatewayCallback.CLOSE, event)

    # ------------------------------------------------------------------
    # Read loop
    # ------------------------------------------------------------------

    async def _read_loop(self, ws) -> None:
        try:
            async for raw in ws:
                await self._receive(raw)
        except ConnectionClosed as e:
            logger.info(f"Gateway websocket closed: {e}")
        except TransportError as e:
            logger.error(f"Gateway transport error: {e}")

        await self._handle_close(getattr(ws, "close_code", None), getattr(ws, "close_reason", "") or "")

    async def _receive(self, raw: Union[str, bytes]) -> None:
        try:
            if isinstance(raw, (bytes, bytearray)) and self._inflator is not None:
                raw = self._inflator.feed(raw)
                if raw is None:
                    return
            frame = decode_frame(raw)
        except ProtocolError as e:
            logger.warning(f"Dropping malformed gateway frame: {e}")
            return

        await self.handle_frame(frame)

    # ------------------------------------------------------------------
    # Protocol state machine
    # ------------------------------------------------------------------

    async def handle_frame(self, frame: GatewayFrame) -> None:
        """Apply one decoded frame: sequence first, then event name, then opcode."""
        self.session.update_sequence(frame.s)

        try:
            if frame.t == "READY":
                await self._on_ready(frame.d)
            elif frame.t == "RESUMED":
                self.session.status = ConnectionStatus.READY
                logger.info(f"Session {self.session.session_id} resumed at seq {self.session.sequence}")
                await self._emit(GatewayCallback.READY, {"session_id": self.session.session_id, "resumed": True})

            if frame.op == OpCode.DISPATCH:
                if frame.t:
                    await self._emit(GatewayCallback.EVENT, frame.t, frame.d)
            elif frame.op == OpCode.HEARTBEAT:
                await self.send_heartbeat()
            elif frame.op == OpCode.HEARTBEAT_ACK:
                self.session.last_heartbeat_acked = True
                self.session.last_heartbeat_received = now()
            elif frame.op == OpCode.HELLO:
                await self._on_hello(frame.d)
            elif frame.op == OpCode.INVALID_SESSION:
                await self._on_invalid_session(bool(frame.d))
            elif frame.op == OpCode.RECONNECT:
                logger.info("Server requested reconnect")
                await self._close(CloseEvent(
                    code=RESUMABLE_CLOSE,
                    reason="Server requested reconnect",
                    resumable=self.session.resumable,
                ))
            else:
                logger.debug(f"Ignoring gateway opcode {frame.op}")
        except ProtocolError as e:
            logger.warning(f"Dropping gateway frame op={frame.op} t={frame.t}: {e}")

    async def _on_ready(self, data: Any) -> None:
        try:
            ready = ReadyPayload.model_validate(data)
        except ValidationError as e:
            raise ProtocolError(f"Invalid READY payload: {e.error_count()} errors")

        self.session.session_id = ready.session_id
        self.session.resume_gateway_url = ready.resume_gateway_url
        self.session.status = ConnectionStatus.READY
        self.session.last_heartbeat_acked = True
        logger.info(f"Gateway READY (session {ready.session_id})")

        await self.send_heartbeat()
        await self._emit(GatewayCallback.READY, data)

    async def _on_hello(self, data: Any) -> None:
        try:
            hello = HelloPayload.model_validate(data)
        except ValidationError as e:
            raise ProtocolError(f"Invalid HELLO payload: {e.error_count()} errors")

        self.session.heartbeat_interval_ms = hello.heartbeat_interval
        self._start_heartbeat(hello.heartbeat_interval / 1000.0)

        if self.session.session_id:
            await self.resume()
        else:
            await self.identify()
            await self.send_heartbeat()

    async def _on_invalid_session(self, resumable: bool) -> None:
        logger.warning(f"Invalid session (resumable={resumable})")
        self.session.invalidate()
        self._identified = False

        if resumable:
            low, high = self._invalid_session_delay
            self._cancel_identify()
            self._identify_task = asyncio.create_task(self._identify_later(random.uniform(low, high)))
            return

        await self._close(CloseEvent(
            code=CloseCode.NORMAL,
            reason="Session invalidated",
            resumable=False,
        ))

    async def _identify_later(self, delay: float) -> None:
        """Re-identify after ``delay`` without holding up the read loop."""
        await asyncio.sleep(delay)
        try:
            await self.identify()
        except TransportError as e:
            logger.error(f"Re-identify failed: {e}")

    def _cancel_identify(self) -> None:
        task = self._identify_task
        self._identify_task = None
        if task and task is not asyncio.current_task() and not task.done():
            task.cancel()

    # ------------------------------------------------------------------
    # Outbound control messages
    # ------------------------------------------------------------------

    async def send(self, op: int, d: Any = None) -> bool:
        """Send one control message. Returns False if the connection is closed."""
        if self._ws is None or self.status == ConnectionStatus.CLOSED:
            logger.debug(f"Not sending op {op}: connection closed")
            return False

        await self._limiter.acquire()
        try:
            await self._ws.send(encode_frame(op, d))
        except ConnectionClosed as e:
            raise TransportError(f"Gateway send failed (op {op}): {e}")
        return True

    async def identify(self) -> bool:
        """Send IDENTIFY once for the current fresh session."""
        if self._identified:
            logger.warning("IDENTIFY already sent for this session, not sending again")
            return False

        payload = IdentifyPayload(
            token=self._token,
            intents=int(self.intents),
            shard=[self.shard_id, self.shard_count],
            v=self.version,
            properties=IdentifyProperties(os=platform.system().lower() or "unknown"),
            compress=False,
            large_threshold=self.large_threshold,
        )
        self._identified = True
        logger.info(f"Identifying shard {self.shard_id}/{self.shard_count} (intents={self.intents})")
        return await self.send(OpCode.IDENTIFY, payload.model_dump())

    async def resume(self) -> bool:
        """Send RESUME for the known session."""
        payload = ResumePayload(
            token=self._token,
            session_id=self.session.session_id,
            seq=max(self.session.sequence, 0),
        )
        logger.info(f"Resuming session {payload.session_id} at seq {payload.seq}")
        return await self.send(OpCode.RESUME, payload.model_dump())

    async def send_heartbeat(self) -> bool:
        """Send HEARTBEAT with the last sequence and expect an ACK."""
        self.session.last_heartbeat_acked = False
        self.session.last_heartbeat_sent = now()
        sequence = self.session.sequence if self.session.sequence >= 0 else None
        return await self.send(OpCode.HEARTBEAT, sequence)

    # ------------------------------------------------------------------
    # Heartbeat task
    # ------------------------------------------------------------------

    def _start_heartbeat(self, interval: float) -> None:
        self._stop_heartbeat()
        self._missed_acks = 0
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(interval))
        logger.debug(f"Heartbeating every {interval:.3f}s")

    def _stop_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _heartbeat_loop(self, interval: float) -> None:
        while self.status != ConnectionStatus.CLOSED:
            await asyncio.sleep(interval)

            if self.session.last_heartbeat_acked:
                self._missed_acks = 0
            else:
                self._missed_acks += 1
                logger.debug(f"Heartbeat not acknowledged ({self._missed_acks}/{MAX_MISSED_ACKS})")

            if self._missed_acks >= MAX_MISSED_ACKS:
                logger.warning(
                    f"No heartbeat ACK for {MAX_MISSED_ACKS} intervals, closing zombie connection"
                )
                await self._close(CloseEvent(
                    code=RESUMABLE_CLOSE,
                    reason="Heartbeat ACK timeout",
                    resumable=self.session.resumable,
                    zombie=True,
                ))
                return

            try:
                await self.send_heartbeat()
            except TransportError as e:
                logger.error(f"Heartbeat failed: {e}")
                return

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    async def _emit(self, kind: GatewayCallback, *args: Any) -> None:
        """Invoke callbacks for ``kind``.

        EVENT callbacks run as their own tasks so a slow handler (e.g. one
        waiting out a REST quota) never delays heartbeat ACK processing.
        READY and CLOSE callbacks are awaited in order.
        """
        for callback in list(self._callbacks.get(kind, ())):
            if kind == GatewayCallback.EVENT:
                task = asyncio.create_task(self._run_callback(kind, callback, args))
                self._callback_tasks.add(task)
                task.add_done_callback(self._callback_tasks.discard)
            else:
                await self._run_callback(kind, callback, args)

    async def _run_callback(
        self,
        kind: GatewayCallback,
        callback: Callable[..., Awaitable[None]],
        args: Tuple[Any, ...],
    ) -> None:
        try:
            await callback(*args)
        except Exception as e:
            logger.error(f"Callback error for {kind.value}: {e}", exc_info=True)
