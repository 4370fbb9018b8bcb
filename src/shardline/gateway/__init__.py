"""Gateway - persistent push-event session.

Public exports:
    GatewayConnection: websocket transport, heartbeats, protocol state machine
    GatewayCallback: callback kinds accepted by register_callback()
    Session: resume token and heartbeat bookkeeping
    OpCode, CloseCode, ConnectionStatus, Intents: protocol constants

Models (Pydantic v2):
    GatewayFrame, IdentifyPayload, ResumePayload, HelloPayload, ReadyPayload, CloseEvent
"""

from .codec import ZlibStreamInflator, decode_frame, encode_frame
from .connection import GatewayCallback, GatewayConnection
from .models import (
    CloseEvent,
    GatewayFrame,
    HelloPayload,
    IdentifyPayload,
    IdentifyProperties,
    ReadyPayload,
    ResumePayload,
)
from .opcodes import CloseCode, ConnectionStatus, Intents, OpCode
from .session import Session

__all__ = [
    "GatewayConnection",
    "GatewayCallback",
    "Session",
    "OpCode",
    "CloseCode",
    "ConnectionStatus",
    "Intents",
    "GatewayFrame",
    "IdentifyPayload",
    "IdentifyProperties",
    "ResumePayload",
    "HelloPayload",
    "ReadyPayload",
    "CloseEvent",
    "encode_frame",
    "decode_frame",
    "ZlibStreamInflator",
]
