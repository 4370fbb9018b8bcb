"""shardline - gateway session and rate-limited REST client for a chat platform API.

Public exports:
    Client: REST dispatcher + gateway connection facade
    ShardlineConfig: environment-driven configuration
    RestDispatcher, Route: rate-limited REST requests
    GatewayConnection, GatewayCallback: gateway session

Error hierarchy:
    ShardlineError (base)
    TransportError
    ProtocolError
    SessionInvalidated
    QuotaExceeded
    UpstreamError
        UnauthorizedError
        NotFoundError
"""

__version__ = "0.1.0"

from .client import Client
from .config import ShardlineConfig, setup_logging
from .errors import (
    NotFoundError,
    ProtocolError,
    QuotaExceeded,
    SessionInvalidated,
    ShardlineError,
    TransportError,
    UnauthorizedError,
    UpstreamError,
)
from .gateway import ConnectionStatus, GatewayCallback, GatewayConnection, Intents, OpCode
from .rest import RestDispatcher, Route, canonicalize

__all__ = [
    "Client",
    "ShardlineConfig",
    "setup_logging",
    "RestDispatcher",
    "Route",
    "canonicalize",
    "GatewayConnection",
    "GatewayCallback",
    "ConnectionStatus",
    "Intents",
    "OpCode",
    "ShardlineError",
    "TransportError",
    "ProtocolError",
    "SessionInvalidated",
    "QuotaExceeded",
    "UpstreamError",
    "UnauthorizedError",
    "NotFoundError",
]
