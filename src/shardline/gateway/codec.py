"""Gateway frame encoding.

Text frames carry JSON. With ``compress=zlib-stream`` the server sends
binary frames that are chunks of one long zlib stream; a message is
complete when the buffered data ends with the Z_SYNC_FLUSH suffix.
"""

import json
import zlib
from typing import Any, Optional, Union

from pydantic import ValidationError

from ..errors import ProtocolError
from .models import GatewayFrame

ZLIB_SUFFIX = b"\x00\x00\xff\xff"


def encode_frame(op: int, d: Any = None) -> str:
    """Serialize an outbound control message."""
    return json.dumps({"op": int(op), "d": d}, separators=(",", ":"))


def decode_frame(raw: Union[str, bytes]) -> GatewayFrame:
    """Parse one complete message into a GatewayFrame.

    Raises:
        ProtocolError: not JSON, not an object, or missing/invalid ``op``.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Undecodable gateway frame: {e}")

    if not isinstance(data, dict):
        raise ProtocolError(f"Gateway frame is not an object: {type(data).__name__}")

    try:
        return GatewayFrame.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid gateway frame: {e.errors()[0].get('msg', e)}")


class ZlibStreamInflator:
    """Reassembles and inflates a zlib-stream transport."""

    def __init__(self):
        self._inflator = zlib.decompressobj()
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> Optional[bytes]:
        """Add a binary chunk. Returns the inflated message once complete."""
        self._buffer.extend(chunk)
        if len(self._buffer) < 4 or self._buffer[-4:] != ZLIB_SUFFIX:
            return None

        try:
            message = self._inflator.decompress(bytes(self._buffer))
        except zlib.error as e:
            # The shared context is unusable after an error; start over
            self.reset()
            raise ProtocolError(f"Corrupt zlib stream: {e}")
        finally:
            self._buffer.clear()
        return message

    def reset(self) -> None:
        self._inflator = zlib.decompressobj()
        self._buffer.clear()

