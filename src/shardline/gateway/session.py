"""Per-connection gateway session state."""

from dataclasses import dataclass
from typing import Optional

from .opcodes import ConnectionStatus


@dataclass
class Session:
    """Resume token and heartbeat bookkeeping for one GatewayConnection.

    Mutated only by the owning connection's packet handler and heartbeat
    task. ``sequence`` never decreases while the session is alive; only
    reset() or an invalidated session lowers it.
    """

    sequence: int = -1
    session_id: Optional[str] = None
    resume_gateway_url: Optional[str] = None
    last_heartbeat_acked: bool = True
    heartbeat_interval_ms: Optional[int] = None
    status: ConnectionStatus = ConnectionStatus.IDLE

    last_heartbeat_sent: Optional[float] = None
    last_heartbeat_received: Optional[float] = None

    @property
    def resumable(self) -> bool:
        return self.session_id is not None

    @property
    def latency(self) -> Optional[float]:
        """Seconds between the last heartbeat and its ack."""
        if self.last_heartbeat_sent is None or self.last_heartbeat_received is None:
            return None
        if self.last_heartbeat_received < self.last_heartbeat_sent:
            return None
        return self.last_heartbeat_received - self.last_heartbeat_sent

    def update_sequence(self, sequence: Optional[int]) -> None:
        if sequence is not None and sequence > self.sequence:
            self.sequence = sequence

    def invalidate(self) -> None:
        """Server rejected the session; the next handshake must IDENTIFY."""
        self.session_id = None
        self.resume_gateway_url = None
        self.sequence = 0

    def reset(self) -> None:
        """Forget everything after an unrecoverable session loss."""
        self.sequence = -1
        self.session_id = None
        self.resume_gateway_url = None
        self.last_heartbeat_acked = True
        self.heartbeat_interval_ms = None
        self.last_heartbeat_sent = None
        self.last_heartbeat_received = None
