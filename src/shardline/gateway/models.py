"""Pydantic v2 models for gateway frames and control payloads.

Every frame shares the {op, d, s, t} envelope; the payload models below
describe ``d`` for the control messages the connection sends or reads.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class GatewayFrame(BaseModel):
    """Decoded gateway envelope."""
    op: int
    d: Any = None
    s: Optional[int] = None
    t: Optional[str] = None

    model_config = {"extra": "ignore"}


# ---------------------------------------------------------------------------
# Outbound payloads
# ---------------------------------------------------------------------------

class IdentifyProperties(BaseModel):
    os: str
    browser: str = "shardline"
    device: str = "shardline"


class IdentifyPayload(BaseModel):
    """d of IDENTIFY (op 2)."""
    token: str
    intents: int
    shard: List[int]  # [shard_id, shard_count]
    v: int
    properties: IdentifyProperties
    compress: bool = False
    large_threshold: int = 50


class ResumePayload(BaseModel):
    """d of RESUME (op 6)."""
    token: str
    session_id: str
    seq: int


# ---------------------------------------------------------------------------
# Inbound payloads
# ---------------------------------------------------------------------------

class HelloPayload(BaseModel):
    """d of HELLO (op 10)."""
    heartbeat_interval: int  # milliseconds

    model_config = {"extra": "allow"}


class ReadyPayload(BaseModel):
    """d of the READY dispatch."""
    session_id: str
    resume_gateway_url: Optional[str] = None
    v: Optional[int] = None
    user: Dict[str, Any] = Field(default_factory=dict)
    shard: Optional[List[int]] = None

    model_config = {"extra": "allow"}


class CloseEvent(BaseModel):
    """Why a connection reached CLOSED."""
    code: Optional[int] = None
    reason: str = ""
    resumable: bool = False
    zombie: bool = False
