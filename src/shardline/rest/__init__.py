"""REST layer - rate-limit aware HTTP dispatch.

Public exports:
    RestDispatcher: bucket map, global block, replay queue, httpx transport
    Bucket: per-route FIFO quota gate
    PendingRequest: a queued or in-flight request
    Route, canonicalize: explicit path builder and route-key folding
    RateLimitHeaders, GlobalRateLimiter: quota header parsing and pacing
"""

from . import routes
from .bucket import Bucket
from .dispatcher import PendingRequest, RestDispatcher
from .ratelimit import GlobalRateLimiter, RateLimitHeaders
from .routes import Route, canonicalize

__all__ = [
    "RestDispatcher",
    "Bucket",
    "PendingRequest",
    "Route",
    "canonicalize",
    "routes",
    "RateLimitHeaders",
    "GlobalRateLimiter",
]
