"""Route construction and rate-limit route keys.

Requests that share one server-side quota must map to the same route key.
Numeric ids are folded to ``:id`` except directly after a top-level
resource (channels, guilds, webhooks), whose id scopes the quota. Reaction
routes are limited per template, so the emoji and the per-user segment are
folded as well.

    canonicalize("/channels/1234567890123456/messages/9876543210987654")
    -> "/channels/1234567890123456/messages/:id"
"""

import re
from typing import List, Union
from urllib.parse import quote

# Channel, guild and webhook ids define their own quota
MAJOR_PARAMETERS = {"channels", "guilds", "webhooks"}

SNOWFLAKE_RE = re.compile(r"^\d{15,21}$")


class Route:
    """An API path built from an explicit, ordered list of segments.

    Route("channels", channel_id, "messages").path == "/channels/<id>/messages"
    """

    __slots__ = ("segments",)

    def __init__(self, *segments: Union[str, int]):
        self.segments: List[str] = [str(s).strip("/") for s in segments if str(s).strip("/")]

    def __truediv__(self, segment: Union[str, int]) -> "Route":
        return Route(*self.segments, segment)

    @property
    def path(self) -> str:
        return "/" + "/".join(self.segments)

    @property
    def key(self) -> str:
        return canonicalize(self.path)

    def __str__(self) -> str:
        return self.path

    def __repr__(self) -> str:
        return f"Route({self.path!r})"

    def __eq__(self, other) -> bool:
        if isinstance(other, Route):
            return self.segments == other.segments
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(self.segments))


def canonicalize(path: Union[str, Route]) -> str:
    """Fold a concrete path into its rate-limit route key."""
    path = str(path).split("?", 1)[0]
    segments = [s for s in path.split("/") if s]

    folded: List[str] = []
    for index, segment in enumerate(segments):
        previous = segments[index - 1] if index > 0 else ""
        before_previous = segments[index - 2] if index > 1 else ""

        if previous == "reactions":
            folded.append(":emoji")
        elif before_previous == "reactions":
            folded.append(":user_id")
        elif SNOWFLAKE_RE.match(segment) and previous not in MAJOR_PARAMETERS:
            folded.append(":id")
        else:
            folded.append(segment)

    return "/" + "/".join(folded)


def is_reaction_route(route_key: str) -> bool:
    return "/reactions" in route_key


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

def gateway_bot() -> Route:
    return Route("gateway", "bot")


def user(user_id: Union[str, int]) -> Route:
    return Route("users", user_id)


def channel(channel_id: Union[str, int]) -> Route:
    return Route("channels", channel_id)


def channel_messages(channel_id: Union[str, int]) -> Route:
    return Route("channels", channel_id, "messages")


def channel_message(channel_id: Union[str, int], message_id: Union[str, int]) -> Route:
    return Route("channels", channel_id, "messages", message_id)


def message_reaction(
    channel_id: Union[str, int],
    message_id: Union[str, int],
    emoji: str,
    user_id: Union[str, int] = "@me",
) -> Route:
    """PUT/DELETE a single user's reaction. ``emoji`` is URL-encoded."""
    return Route(
        "channels", channel_id, "messages", message_id,
        "reactions", quote(emoji, safe=":"), user_id,
    )


def guild(guild_id: Union[str, int]) -> Route:
    return Route("guilds", guild_id)


def guild_member(guild_id: Union[str, int], user_id: Union[str, int]) -> Route:
    return Route("guilds", guild_id, "members", user_id)
