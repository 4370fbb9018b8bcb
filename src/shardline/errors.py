"""Structured error hierarchy for shardline.

All errors inherit from ShardlineError, enabling uniform catch-all
handling while allowing granular recovery for specific failure modes.
Quota handling (429s, clock skew) stays inside the REST layer; callers
normally see only success, UpstreamError, or an unrecoverable session.
"""


class ShardlineError(Exception):
    """Base exception for all shardline errors."""

    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class TransportError(ShardlineError):
    """Network or WebSocket connection failure. Surfaced, never retried."""
    pass


class ProtocolError(ShardlineError):
    """Malformed or unexpected gateway frame."""
    pass


class SessionInvalidated(ShardlineError):
    """Gateway session can no longer be resumed."""
    pass


class QuotaExceeded(ShardlineError):
    """Rate limit still exceeded after the retry cap (429)."""

    def __init__(self, message: str, retry_after: float = 0.0, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class UpstreamError(ShardlineError):
    """Non-success HTTP status returned by the API."""
    pass


class UnauthorizedError(UpstreamError):
    """401 or 403 - bad token or missing permissions."""
    pass


class NotFoundError(UpstreamError):
    """404 - unknown resource."""
    pass
